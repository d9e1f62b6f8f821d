"""
Static correctness checks on migrations and on the migration sequence.
"""

import re
from datetime import date
from typing import Any, Union

from docmigrate.migrations.exceptions import MigrationLoadError
from docmigrate.migrations.models import ValidationResult
from docmigrate.migrations.repository import (
    DirectoryMigrationRepository,
    MigrationRepository,
    import_migration_module,
    sequence_number,
)

MIGRATION_ID_PATTERN = re.compile(r"\d{3}_[a-z0-9_]+")
DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")

RepositoryLike = Union[MigrationRepository, str]


def _as_repository(repository: RepositoryLike) -> MigrationRepository:
    if isinstance(repository, MigrationRepository):
        return repository
    return DirectoryMigrationRepository(repository)


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or value.strip() == ""


class MigrationValidator:
    """Stateless validation of migration metadata and file sequencing."""

    def validate_migration(self, migration: Any) -> ValidationResult:
        """
        Validate a migration for completeness and correctness.

        Errors: missing id/description/author/created_at, malformed id,
        non-callable up/down/validate. A malformed created_at is only a warning.
        """
        errors: list[str] = []
        warnings: list[str] = []

        migration_id = getattr(migration, "id", None)
        created_at = getattr(migration, "created_at", None)

        if _is_blank(migration_id):
            errors.append("Migration ID is required")
        if _is_blank(getattr(migration, "description", None)):
            errors.append("Migration description is required")
        if _is_blank(getattr(migration, "author", None)):
            errors.append("Migration author is required")
        if _is_blank(created_at):
            errors.append("Migration created_at date is required")

        if not _is_blank(migration_id) and not self.is_valid_migration_id(migration_id):
            errors.append(
                "Migration ID must follow format: ###_description (e.g., 001_add_user_preferences)"
            )

        if not _is_blank(created_at) and not self.is_valid_date(created_at):
            warnings.append("Migration created_at should be in YYYY-MM-DD format")

        if not callable(getattr(migration, "up", None)):
            errors.append("Migration must have an up() method")
        if not callable(getattr(migration, "down", None)):
            errors.append("Migration must have a down() method")

        validate = getattr(migration, "validate", None)
        if validate is not None and not callable(validate):
            errors.append("Migration validate() must be a function if provided")

        return ValidationResult.from_lists(errors, warnings)

    def validate_migration_files(self, repository: RepositoryLike) -> ValidationResult:
        """
        Validate migration naming and sequencing.

        Sequence numbers must start at 001, have no gaps or duplicates, and
        appear in ascending order in the repository listing.
        """
        errors: list[str] = []
        warnings: list[str] = []
        repository = _as_repository(repository)

        try:
            names = repository.list_names()
        except OSError as e:
            return ValidationResult.from_lists(
                [f"Cannot read migration directory: {e}"], warnings
            )

        numbers: list[int] = []
        for name in names:
            number = sequence_number(name)
            if number is None:
                errors.append(f"File {name} doesn't follow naming convention ###_description")
            else:
                numbers.append(number)

        seen: set[int] = set()
        duplicates: list[int] = []
        previous = 0
        for number in numbers:
            if number in seen:
                if number not in duplicates:
                    duplicates.append(number)
                continue
            if number < previous or number == 0:
                errors.append(f"Migration number {number:03d} is out of sequence")
            seen.add(number)
            previous = max(previous, number)

        expected = 1
        for number in sorted(n for n in seen if n > 0):
            while expected < number:
                errors.append(f"Missing migration number {expected:03d} (found {number:03d})")
                expected += 1
            expected = number + 1

        if duplicates:
            errors.append(
                "Duplicate migration numbers found: "
                + ", ".join(f"{number:03d}" for number in duplicates)
            )

        return ValidationResult.from_lists(errors, warnings)

    def get_next_migration_number(self, repository: RepositoryLike) -> str:
        """max(existing) + 1, zero-padded to 3 digits; "001" when there are none."""
        try:
            names = _as_repository(repository).list_names()
        except OSError:
            return "001"

        numbers = [sequence_number(name) or 0 for name in names]
        return f"{max([0, *numbers]) + 1:03d}"

    def validate_migration_file(self, file_path: str) -> ValidationResult:
        """Check that a migration file exists and can be imported."""
        errors: list[str] = []
        warnings: list[str] = []

        try:
            module = import_migration_module(file_path)
        except MigrationLoadError as e:
            return ValidationResult.from_lists([str(e)], warnings)

        if not hasattr(module, "migration") and not (
            hasattr(module, "up") and hasattr(module, "down")
        ):
            errors.append("Migration file must define up() and down(), or a migration object")

        return ValidationResult.from_lists(errors, warnings)

    @staticmethod
    def is_valid_migration_id(migration_id: str) -> bool:
        return bool(MIGRATION_ID_PATTERN.fullmatch(migration_id))

    @staticmethod
    def is_valid_date(value: str) -> bool:
        if not DATE_PATTERN.fullmatch(value):
            return False
        try:
            date.fromisoformat(value)
        except ValueError:
            return False
        return True
