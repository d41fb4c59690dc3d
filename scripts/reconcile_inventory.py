#!/usr/bin/env python3
"""
Recount item counters and audit copy availability.

Compares every item's cached ``total_copies`` / ``available_copies`` /
``last_serial`` with a recount of its copies, and every copy's availability
with the active loans referencing it.  With ``--repair`` drifted counters
are rewritten under the item row lock.  Copy violations are reported only;
they need a human decision.

Exit status:
    0  everything consistent (or all drift repaired)
    1  unrepaired counter drift or copy violations found

Usage:
    python3 scripts/reconcile_inventory.py
    python3 scripts/reconcile_inventory.py --repair
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
from lending_kernel.services.reconciliation_service import (  # noqa: E402
    ReconciliationService,
)


def _print_report(drifts, violations) -> None:
    if not drifts and not violations:
        print("Inventory consistent.")
        return
    for d in drifts:
        state = "repaired" if d.repaired else "DRIFT"
        print(
            f"[{state}] {d.title}: total {d.cached_total} -> {d.counted_total}, "
            f"available {d.cached_available} -> {d.counted_available}, "
            f"last_serial {d.cached_last_serial} (max {d.max_serial})"
        )
    for v in violations:
        loans = ", ".join(str(i) for i in v.active_loan_ids) or "none"
        print(f"[COPY] {v.code}: {v.reason} (active loans: {loans})")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Recount and audit inventory state")
    parser.add_argument(
        "--config",
        help="Configuration YAML (default: $LENDING_CONFIG or packaged defaults)",
    )
    parser.add_argument("--database-url", help="Override the configured database URL")
    parser.add_argument(
        "--repair", action="store_true", help="Rewrite drifted item counters"
    )
    args = parser.parse_args(argv)

    config = get_active_config(args.config)
    settings = config.database
    if args.database_url:
        settings = replace(settings, url=args.database_url)

    with Storage.from_config(settings) as storage:
        with storage.session_scope() as session:
            service = ReconciliationService(session)
            drifts = service.recount_items(repair=args.repair)
            violations = service.audit_copies()

    _print_report(drifts, violations)
    unrepaired = [d for d in drifts if not d.repaired]
    return 1 if unrepaired or violations else 0


if __name__ == "__main__":
    sys.exit(main())
