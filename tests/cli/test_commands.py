"""Tests for CLI commands."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

from typer.testing import CliRunner

from docmigrate.cli.commands.migrate import get_runner, sanitize_description
from docmigrate.cli.main import app
from docmigrate.core.config import settings
from docmigrate.core.database import db_manager
from docmigrate.migrations.models import (
    BackupResult,
    BackupVerification,
    Direction,
    MigrationContext,
    MigrationRecord,
    MigrationRunResult,
    MigrationStatus,
    ValidationResult,
)
from docmigrate.migrations.repository import load_migration_file

runner = CliRunner()


def make_runner_mock(run_result=None):
    mock_runner = MagicMock()
    mock_runner.run_migrations = AsyncMock(return_value=run_result or MigrationRunResult())
    return mock_runner


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert "docmigrate version" in result.output


class TestGetRunner:
    def test_runner_uses_database_context(self):
        ctx = MigrationContext(db=MagicMock(), client=MagicMock())

        with patch.object(db_manager, "build_context", return_value=ctx):
            migration_runner = get_runner("db/migrations")

        assert migration_runner.repository.location == "db/migrations"
        assert migration_runner.safety.environment == settings.environment
        ctx.db.__getitem__.assert_any_call(settings.migrations_collection)


class TestUpCommand:
    """Tests for migrate up and the default command."""

    def test_up_success(self):
        mock_runner = make_runner_mock(MigrationRunResult(migrations_run=["001_a", "002_b"]))

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate", "up"])

        assert result.exit_code == 0
        assert "001_a" in result.output
        assert "002_b" in result.output
        options = mock_runner.run_migrations.call_args[0][0]
        assert options.direction == Direction.UP
        assert options.dry_run is False

    def test_default_runs_up(self):
        mock_runner = make_runner_mock()

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate"])

        assert result.exit_code == 0
        assert "No migrations to run" in result.output
        mock_runner.run_migrations.assert_awaited_once()

    def test_up_options_are_passed(self):
        mock_runner = make_runner_mock()

        with patch(
            "docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner
        ) as mock_get_runner:
            result = runner.invoke(
                app,
                ["migrate", "up", "--only", "002_b", "--dry-run", "--force", "--validate",
                 "--backup", "--dir", "db/migrations"],
            )

        assert result.exit_code == 0
        assert "DRY RUN" in result.output
        mock_get_runner.assert_called_with("db/migrations")
        options = mock_runner.run_migrations.call_args[0][0]
        assert options.target == "002_b"
        assert options.dry_run is True
        assert options.force is True
        assert options.validate is True
        assert options.backup is True

    def test_up_failure_exits_non_zero(self):
        run_result = MigrationRunResult(success=False, errors=["Migration 002_b failed: boom"])

        with patch(
            "docmigrate.cli.commands.migrate.get_runner",
            return_value=make_runner_mock(run_result),
        ):
            result = runner.invoke(app, ["migrate", "up"])

        assert result.exit_code == 1
        assert "boom" in result.output

    def test_up_unexpected_error(self):
        mock_runner = MagicMock()
        mock_runner.run_migrations = AsyncMock(side_effect=Exception("connection refused"))

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate", "up"])

        assert result.exit_code == 1
        assert "connection refused" in result.output


class TestDownCommand:
    """Tests for migrate down."""

    def test_down_requires_confirmation(self):
        mock_runner = make_runner_mock()

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate", "down"], input="n\n")

        assert result.exit_code == 0
        assert "Rollback cancelled" in result.output
        mock_runner.run_migrations.assert_not_called()

    def test_down_confirmed(self):
        mock_runner = make_runner_mock(MigrationRunResult(migrations_run=["002_b"]))

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate", "down"], input="y\n")

        assert result.exit_code == 0
        options = mock_runner.run_migrations.call_args[0][0]
        assert options.direction == Direction.DOWN
        assert options.force is False
        assert options.confirm is True

    def test_down_force_skips_prompt(self):
        mock_runner = make_runner_mock()

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate", "down", "--force"])

        assert result.exit_code == 0
        assert mock_runner.run_migrations.call_args[0][0].force is True

    def test_down_yes_confirms_without_forcing(self):
        mock_runner = make_runner_mock()

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate", "down", "--yes"])

        assert result.exit_code == 0
        options = mock_runner.run_migrations.call_args[0][0]
        assert options.confirm is True
        assert options.force is False


class TestStatusCommand:
    def test_status(self):
        last = MigrationRecord(
            migration_id="001_a",
            description="A",
            applied_at=datetime(2024, 3, 1, 12, 0, 0),
            author="alice",
            environment="staging",
            status=MigrationStatus.COMPLETED,
        )
        failed = MigrationRecord(
            migration_id="002_b",
            description="B",
            applied_at=datetime(2024, 3, 2),
            author="bob",
            environment="staging",
            status=MigrationStatus.FAILED,
            error="boom",
        )
        mock_runner = MagicMock()
        mock_runner.get_status = AsyncMock(
            return_value={
                "status": {
                    "total": 3,
                    "applied": 1,
                    "pending": 2,
                    "failed": 1,
                    "last_migration": last,
                },
                "available_migrations": ["001_a", "002_b", "003_c"],
                "applied_migrations": ["001_a"],
                "pending_migrations": ["002_b", "003_c"],
                "failed_migrations": [failed],
            }
        )

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate", "status"])

        assert result.exit_code == 0
        assert "Migration Status" in result.output
        assert "003_c" in result.output
        assert "boom" in result.output

    def test_status_error(self):
        mock_runner = MagicMock()
        mock_runner.get_status = AsyncMock(side_effect=Exception("unreachable"))

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate", "status"])

        assert result.exit_code == 1


class TestValidateCommand:
    def test_validate_success(self):
        mock_runner = MagicMock()
        mock_runner.validate_migrations = AsyncMock(return_value=ValidationResult(valid=True))

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate", "validate", "--applied"])

        assert result.exit_code == 0
        mock_runner.validate_migrations.assert_awaited_once_with(check_applied=True)

    def test_validate_failure(self):
        mock_runner = MagicMock()
        mock_runner.validate_migrations = AsyncMock(
            return_value=ValidationResult.from_lists(
                ["Missing migration number 002 (found 003)"], []
            )
        )

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate", "validate"])

        assert result.exit_code == 1
        assert "Missing migration number 002" in result.output


class TestResetCommand:
    def test_reset_requires_confirm(self):
        mock_runner = MagicMock()
        mock_runner.reset = AsyncMock(return_value=2)

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate", "reset"])

        assert result.exit_code == 1
        mock_runner.reset.assert_not_called()

    def test_reset_confirmed(self):
        mock_runner = MagicMock()
        mock_runner.reset = AsyncMock(return_value=2)

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate", "reset", "--confirm"])

        assert result.exit_code == 0
        assert "Cleared 2 migration record(s)" in result.output

    def test_reset_refused_in_production(self, monkeypatch):
        monkeypatch.setattr(settings, "environment", "production")
        mock_runner = MagicMock()
        mock_runner.reset = AsyncMock(return_value=2)

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate", "reset", "--confirm"])

        assert result.exit_code == 1
        mock_runner.reset.assert_not_called()


class TestCreateCommand:
    def test_sanitize_description(self):
        assert sanitize_description("Add Timezone to users!") == "add_timezone_to_users"
        assert sanitize_description("  drop -- legacy   index ") == "drop_legacy_index"
        assert sanitize_description("!!!") == ""

    def test_create_first_migration(self, tmp_path):
        result = runner.invoke(
            app,
            ["migrate", "create", "Add timezone to users", "--author", "alice",
             "--dir", str(tmp_path)],
        )

        assert result.exit_code == 0
        path = tmp_path / "001_add_timezone_to_users.py"
        content = path.read_text()
        assert 'migration_id = "001_add_timezone_to_users"' in content
        assert 'author = "alice"' in content
        assert "async def up(ctx: MigrationContext)" in content

    def test_create_next_number(self, tmp_path):
        (tmp_path / "001_a.py").write_text("")
        (tmp_path / "002_b.py").write_text("")

        result = runner.invoke(app, ["migrate", "create", "seed plans", "--dir", str(tmp_path)])

        assert result.exit_code == 0
        assert (tmp_path / "003_seed_plans.py").exists()

    def test_create_quotes_description_safely(self, tmp_path):
        description = 'Move "legacy" files out of C:\\temp\\'

        result = runner.invoke(
            app, ["migrate", "create", description, "--author", "o'brien", "--dir", str(tmp_path)]
        )

        assert result.exit_code == 0
        migration = load_migration_file(str(tmp_path / "001_move_legacy_files_out_of_ctemp.py"))
        assert migration.description == description
        assert migration.author == "o'brien"

    def test_create_rejects_empty_description(self, tmp_path):
        result = runner.invoke(app, ["migrate", "create", "???", "--dir", str(tmp_path)])

        assert result.exit_code == 1
        assert list(tmp_path.iterdir()) == []


class TestVerifyCommand:
    def test_verify_clean(self):
        mock_runner = MagicMock()
        mock_runner.verify_checksums = AsyncMock(return_value=[])

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate", "verify"])

        assert result.exit_code == 0
        assert "checksums are valid" in result.output

    def test_verify_mismatch(self):
        mock_runner = MagicMock()
        mock_runner.verify_checksums = AsyncMock(
            return_value=[
                {"migration_id": "001_a", "expected_checksum": "x", "actual_checksum": "y"}
            ]
        )

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate", "verify"])

        assert result.exit_code == 1
        assert "001_a" in result.output


class TestBackupCommands:
    """Tests for backup, restore and verify-backup."""

    def test_backup(self):
        mock_runner = MagicMock()
        mock_runner.safety.create_backup = AsyncMock(
            return_value=BackupResult(
                success=True,
                timestamp=datetime(2024, 3, 1),
                backup_path="backups/app_backup_1",
                size=2048,
                collections=["users"],
            )
        )

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(
                app, ["migrate", "backup", "--include", "users", "--out", "backups"]
            )

        assert result.exit_code == 0
        assert "2.0 KB" in result.output
        options = mock_runner.safety.create_backup.call_args[0][0]
        assert options.include_collections == ["users"]
        assert options.output_dir == "backups"

    def test_backup_failure(self):
        mock_runner = MagicMock()
        mock_runner.safety.create_backup = AsyncMock(
            return_value=BackupResult(
                success=False, timestamp=datetime(2024, 3, 1), error="mongodump not found"
            )
        )

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate", "backup"])

        assert result.exit_code == 1

    def test_restore_requires_confirmation(self):
        mock_runner = MagicMock()
        mock_runner.safety.restore_from_backup = AsyncMock()

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate", "restore", "backups/x"], input="n\n")

        assert result.exit_code == 0
        mock_runner.safety.restore_from_backup.assert_not_called()

    def test_restore(self):
        mock_runner = MagicMock()
        mock_runner.safety.restore_from_backup = AsyncMock(
            return_value=BackupResult(
                success=True, timestamp=datetime(2024, 3, 1), backup_path="backups/x"
            )
        )

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate", "restore", "backups/x", "--yes"])

        assert result.exit_code == 0
        mock_runner.safety.restore_from_backup.assert_awaited_once_with("backups/x")

    def test_verify_backup_invalid(self):
        mock_runner = MagicMock()
        mock_runner.safety.verify_backup = AsyncMock(
            return_value=BackupVerification(
                valid=False, collections=1, total_size=0, errors=["Empty backup file: users.bson"]
            )
        )

        with patch("docmigrate.cli.commands.migrate.get_runner", return_value=mock_runner):
            result = runner.invoke(app, ["migrate", "verify-backup", "backups/x"])

        assert result.exit_code == 1
        assert "users.bson" in result.output
