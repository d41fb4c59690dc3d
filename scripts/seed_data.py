#!/usr/bin/env python3
"""
Seed the lending database with the default checklist and a demo item.

Creates the tables if needed, seeds the checklist catalog from the active
configuration, and -- when the store holds no items yet -- adds a demo
subject, item and borrower and mints copies of the item through the
InventoryCoordinator.  The configured lending rules are printed with the
demo data so they can be handed to borrowers.  Safe to run repeatedly.

Usage:
    python3 scripts/seed_data.py
    python3 scripts/seed_data.py --database-url sqlite:///demo.db --copies 5
    python3 scripts/seed_data.py --reset
"""

import argparse
import sys
from dataclasses import replace
from pathlib import Path

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from lending_config import get_active_config  # noqa: E402
from lending_kernel.db.engine import Storage  # noqa: E402
from lending_kernel.selectors.inventory_selector import InventorySelector  # noqa: E402
from lending_kernel.services.inventory_coordinator import InventoryCoordinator  # noqa: E402
from lending_kernel.services.reference_data_service import ReferenceDataService  # noqa: E402

DEMO_SUBJECT = ("Geography", "1º ESO")
DEMO_ITEM = {
    "title": "Atlas",
    "author": "School Atlas Group",
    "isbn": "9788400000001",
    "publisher": "Demo Press",
    "price": "24.90",
}
DEMO_BORROWER = {"name": "Demo Student", "nia": "0000001", "course": "1º ESO"}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Seed the lending database")
    parser.add_argument(
        "--config",
        help="Configuration YAML (default: $LENDING_CONFIG or packaged defaults)",
    )
    parser.add_argument("--database-url", help="Override the configured database URL")
    parser.add_argument(
        "--copies", type=int, default=3, help="Copies to mint of the demo item"
    )
    parser.add_argument(
        "--reset", action="store_true", help="Drop and recreate all tables first"
    )
    args = parser.parse_args(argv)

    config = get_active_config(args.config)
    settings = config.database
    if args.database_url:
        settings = replace(settings, url=args.database_url)

    with Storage.from_config(settings) as storage:
        if args.reset:
            storage.drop_tables()
        storage.create_tables()

        with storage.session_scope() as session:
            reference = ReferenceDataService(session)
            parts = reference.seed_checklist(config.catalog.checklist)
            print(f"Checklist parts created: {len(parts)}")

            if InventorySelector(session).list_items():
                print("Items already present; demo data not added.")
                return 0

            name, course = DEMO_SUBJECT
            subject = reference.create_subject(name, course=course)
            item = reference.create_item(subject_id=subject.id, **DEMO_ITEM)
            borrower = reference.create_borrower(**DEMO_BORROWER)

        session = storage.session()
        try:
            coordinator = InventoryCoordinator(session, policy=config.policy)
            copies = coordinator.mint_copies(item.id, args.copies)
        finally:
            session.close()

    print(f"Item:     {item.title} ({item.id})")
    print(f"Borrower: {borrower.name} ({borrower.id})")
    print("Copies:   " + ", ".join(c.code for c in copies))
    if config.lending_rules:
        print("Lending rules:")
        for number, rule in enumerate(config.lending_rules, start=1):
            print(f"  {number}. {rule}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
