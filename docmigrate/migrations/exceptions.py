"""
Exception hierarchy for the migration engine.

Every class carries an ``error_code`` for programmatic handling, following
the service-wide error code scheme.
"""

from typing import Optional


class ErrorCode:
    """Error codes for migration failures."""

    MIGRATION_ERROR = "ERR_MIG_1000"
    VALIDATION_ERROR = "ERR_MIG_1001"
    LOAD_ERROR = "ERR_MIG_1002"
    CONNECTIVITY_ERROR = "ERR_MIG_2001"
    CONCURRENCY_ERROR = "ERR_MIG_2002"
    LOCK_ERROR = "ERR_MIG_2003"
    RESOURCE_ERROR = "ERR_MIG_2004"
    EXECUTION_ERROR = "ERR_MIG_3001"
    TRANSACTION_ERROR = "ERR_MIG_3002"
    TOOL_ERROR = "ERR_MIG_4001"


class MigrationError(Exception):
    """Base exception for migration errors."""

    error_code: str = ErrorCode.MIGRATION_ERROR


class MigrationValidationError(MigrationError):
    """Malformed migration metadata or a broken id sequence."""

    error_code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class MigrationLoadError(MigrationError):
    """A migration source could not be imported."""

    error_code = ErrorCode.LOAD_ERROR


class MigrationConnectivityError(MigrationError):
    """The database is unreachable."""

    error_code = ErrorCode.CONNECTIVITY_ERROR


class MigrationConcurrencyError(MigrationError):
    """Another migration run is in progress."""

    error_code = ErrorCode.CONCURRENCY_ERROR


class MigrationLockError(MigrationConcurrencyError):
    """Raised when unable to acquire the migration lock."""

    error_code = ErrorCode.LOCK_ERROR


class MigrationResourceError(MigrationError):
    """Not enough local resources (disk space) to run safely."""

    error_code = ErrorCode.RESOURCE_ERROR


class MigrationExecutionError(MigrationError):
    """A migration's up/down raised or reported failure."""

    error_code = ErrorCode.EXECUTION_ERROR


class MigrationTransactionError(MigrationError):
    """A sub-operation inside a transactional batch failed."""

    error_code = ErrorCode.TRANSACTION_ERROR


class MigrationToolError(MigrationError):
    """The external dump/restore tool exited with a non-zero status."""

    error_code = ErrorCode.TOOL_ERROR

    def __init__(self, command: str, returncode: Optional[int], stderr: str = ""):
        super().__init__(f"{command} failed with code {returncode}: {stderr.strip()}")
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
