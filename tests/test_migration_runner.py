"""
Tests for the Alembic migration runner helpers.
"""

from unittest.mock import patch

from app.db.migration_runner import (
    MigrationStatus,
    check_migrations_status,
    get_sync_database_url,
    run_migrations,
)

HEAD_REVISION = "2026_09_01_0000"


class TestGetSyncDatabaseUrl:
    """Tests for async to sync URL conversion."""

    def test_asyncpg_becomes_psycopg2(self):
        url = get_sync_database_url("postgresql+asyncpg://u:p@db:5432/ledger")
        assert url == "postgresql+psycopg2://u:p@db:5432/ledger"

    def test_aiosqlite_becomes_sqlite(self):
        assert get_sync_database_url("sqlite+aiosqlite:///ledger.db") == "sqlite:///ledger.db"

    def test_defaults_to_settings(self):
        assert get_sync_database_url().startswith("postgresql+psycopg2://")


class TestMigrationStatus:
    """Tests for MigrationStatus.pending."""

    def test_up_to_date(self):
        assert not MigrationStatus(HEAD_REVISION, HEAD_REVISION).pending

    def test_behind(self):
        assert MigrationStatus(None, HEAD_REVISION).pending

    def test_error_is_not_pending(self):
        assert not MigrationStatus(None, None, error="boom").pending


class TestCheckMigrationsStatus:
    """Tests for check_migrations_status against a scratch SQLite file."""

    def test_fresh_database_is_behind_head(self, tmp_path):
        status = check_migrations_status(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")

        assert status.error is None
        assert status.current_revision is None
        assert status.head_revision == HEAD_REVISION
        assert status.pending

    def test_missing_config(self, tmp_path):
        with patch("app.db.migration_runner.ALEMBIC_INI_PATH", tmp_path / "missing.ini"):
            status = check_migrations_status("sqlite:///unused.db")

        assert status.error == "Alembic config not found"


class TestRunMigrations:
    """Tests for run_migrations."""

    def test_skips_without_config(self, tmp_path):
        with patch("app.db.migration_runner.ALEMBIC_INI_PATH", tmp_path / "missing.ini"), patch(
            "app.db.migration_runner.command"
        ) as mock_command:
            run_migrations("sqlite:///unused.db")

        mock_command.upgrade.assert_not_called()

    def test_up_to_date_does_not_upgrade(self, tmp_path):
        with patch(
            "app.db.migration_runner._get_current_revision", return_value=HEAD_REVISION
        ), patch("app.db.migration_runner.command") as mock_command:
            run_migrations(f"sqlite:///{tmp_path / 'ledger.db'}")

        mock_command.upgrade.assert_not_called()

    def test_pending_upgrades_to_head(self, tmp_path):
        with patch("app.db.migration_runner._get_current_revision", return_value=None), patch(
            "app.db.migration_runner.command"
        ) as mock_command:
            run_migrations(f"sqlite:///{tmp_path / 'ledger.db'}")

        mock_command.upgrade.assert_called_once()
        assert mock_command.upgrade.call_args.args[1] == "head"
