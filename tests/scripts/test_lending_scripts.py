"""Tests for scripts/seed_data.py and scripts/reconcile_inventory.py."""

import importlib.util
from pathlib import Path

import pytest
from sqlalchemy import update

from lending_kernel.db.engine import Storage
from lending_kernel.models.item import Item
from lending_kernel.selectors.inventory_selector import InventorySelector

SCRIPTS = Path(__file__).resolve().parents[2] / "scripts"


def _load(name: str):
    spec = importlib.util.spec_from_file_location(f"_script_{name}", SCRIPTS / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def database_url(tmp_path, monkeypatch):
    monkeypatch.delenv("LENDING_CONFIG", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    return f"sqlite:///{tmp_path / 'scripts.db'}"


@pytest.fixture
def seed():
    return _load("seed_data")


@pytest.fixture
def reconcile():
    return _load("reconcile_inventory")


class TestSeedScript:
    def test_seeds_demo_data_once(self, seed, database_url, capsys):
        assert seed.main(["--database-url", database_url, "--copies", "2"]) == 0
        first = capsys.readouterr().out
        assert "Checklist parts created: 4" in first
        assert "1ESO-ATL-001, 1ESO-ATL-002" in first
        assert "Lending rules:" in first
        assert "  1. Cover the book" in first

        assert seed.main(["--database-url", database_url]) == 0
        second = capsys.readouterr().out
        assert "Checklist parts created: 0" in second
        assert "demo data not added" in second

    def test_reset_recreates_the_store(self, seed, database_url, capsys):
        seed.main(["--database-url", database_url, "--copies", "1"])
        seed.main(["--database-url", database_url, "--copies", "3", "--reset"])

        with Storage.open(database_url) as storage:
            with storage.session_scope() as session:
                items = InventorySelector(session).list_items()
        assert [(i.title, i.total_copies) for i in items] == [("Atlas", 3)]


class TestReconcileScript:
    def test_consistent_store(self, seed, reconcile, database_url, capsys):
        seed.main(["--database-url", database_url])
        assert reconcile.main(["--database-url", database_url]) == 0
        assert "Inventory consistent." in capsys.readouterr().out

    def test_drift_reported_then_repaired(self, seed, reconcile, database_url, capsys):
        seed.main(["--database-url", database_url, "--copies", "3"])
        with Storage.open(database_url) as storage:
            with storage.session_scope() as session:
                session.execute(update(Item).values(available_copies=0))
        capsys.readouterr()

        assert reconcile.main(["--database-url", database_url]) == 1
        assert "[DRIFT] Atlas" in capsys.readouterr().out

        assert reconcile.main(["--database-url", database_url, "--repair"]) == 0
        assert "[repaired] Atlas" in capsys.readouterr().out

        assert reconcile.main(["--database-url", database_url]) == 0
