"""Tests for the Storage handle and storage error translation."""

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from lending_config.schema import DatabaseSettings
from lending_kernel.db.engine import Storage, translate_storage_error
from lending_kernel.exceptions import (
    DeadlockError,
    LockTimeoutError,
    StorageFailureError,
    error_kind,
)


class _PgError(Exception):
    def __init__(self, message: str, pgcode: str):
        super().__init__(message)
        self.pgcode = pgcode


def _operational(orig: Exception) -> OperationalError:
    return OperationalError("SELECT 1", {}, orig)


class TestTranslateStorageError:
    def test_postgres_deadlock(self):
        error = translate_storage_error(
            _operational(_PgError("deadlock detected", "40P01")), "open_loan"
        )
        assert isinstance(error, DeadlockError)
        assert error.operation == "open_loan"

    def test_postgres_lock_timeout(self):
        error = translate_storage_error(
            _operational(_PgError("canceling statement due to lock timeout", "55P03")),
            "close_loan",
        )
        assert isinstance(error, LockTimeoutError)

    def test_sqlite_busy(self):
        error = translate_storage_error(
            _operational(Exception("database is locked")), "mint_copies"
        )
        assert isinstance(error, LockTimeoutError)
        assert error.detail == "database is locked"

    def test_anything_else_is_a_generic_failure(self):
        error = translate_storage_error(
            _operational(Exception("server closed the connection")), "get_loan"
        )
        assert type(error) is StorageFailureError
        assert error.retryable is True
        assert error_kind(error) == "storage_failure"


class TestStorageLifecycle:
    def test_open_use_close(self, tmp_path):
        storage = Storage.open(f"sqlite:///{tmp_path / 'life.db'}", lock_timeout_ms=250)
        storage.create_tables()
        with storage.session_scope() as session:
            assert session.execute(text("SELECT 1")).scalar() == 1
        storage.close()

        assert storage.is_closed
        with pytest.raises(RuntimeError):
            storage.session()

    def test_from_config(self, tmp_path):
        settings = DatabaseSettings(url=f"sqlite:///{tmp_path / 'cfg.db'}", lock_timeout_ms=300)
        with Storage.from_config(settings) as storage:
            assert storage.dialect_name == "sqlite"
            assert storage.lock_timeout_ms == 300
        assert storage.is_closed

    def test_session_scope_rolls_back_on_error(self, tmp_path):
        from lending_kernel.services.reference_data_service import ReferenceDataService

        with Storage.open(f"sqlite:///{tmp_path / 'rb.db'}") as storage:
            storage.create_tables()
            with pytest.raises(RuntimeError):
                with storage.session_scope() as session:
                    ReferenceDataService(session).create_subject("Mathematics")
                    raise RuntimeError("abort")
            with storage.session_scope() as session:
                assert ReferenceDataService(session).list_subjects() == []
