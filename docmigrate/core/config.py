import os

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Configuration class for environment variables and migration engine settings.
    """

    # Service settings
    service_name: str = os.getenv("SERVICE_NAME", "docmigrate")
    environment: str = os.getenv("ENVIRONMENT", "development")
    debug: bool = os.getenv("DEBUG", "True").lower() == "true"

    # Logging settings
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    json_logs: bool = os.getenv("JSON_LOGS", "False").lower() == "true"

    # MongoDB settings
    mongodb: str = os.getenv("MONGODB", "mongodb://localhost:27017")
    mongodb_database: str = os.getenv("MONGODB_DATABASE", "app")

    # MongoDB connection pool settings
    mongo_max_pool_size: int = int(os.getenv("MONGO_MAX_POOL_SIZE", "10"))
    mongo_min_pool_size: int = int(os.getenv("MONGO_MIN_POOL_SIZE", "0"))
    mongo_connect_timeout_ms: int = int(os.getenv("MONGO_CONNECT_TIMEOUT_MS", "5000"))
    mongo_server_selection_timeout_ms: int = int(
        os.getenv("MONGO_SERVER_SELECTION_TIMEOUT_MS", "5000")
    )
    mongo_socket_timeout_ms: int = int(os.getenv("MONGO_SOCKET_TIMEOUT_MS", "0"))

    # Migration settings
    migrations_dir: str = os.getenv("MIGRATIONS_DIR", "migrations")
    migrations_collection: str = os.getenv("MIGRATIONS_COLLECTION", "migrations")
    migrations_lock_collection: str = os.getenv(
        "MIGRATIONS_LOCK_COLLECTION", "migration_locks"
    )
    migrations_lock_timeout: int = int(os.getenv("MIGRATIONS_LOCK_TIMEOUT", "300"))

    # Backup settings
    backup_dir: str = os.getenv("BACKUP_DIR", "backups")
    mongodump_bin: str = os.getenv("MONGODUMP_BIN", "mongodump")
    mongorestore_bin: str = os.getenv("MONGORESTORE_BIN", "mongorestore")

    # Safety thresholds
    disk_space_warning_mb: int = int(os.getenv("DISK_SPACE_WARNING_MB", "1000"))
    disk_space_blocker_mb: int = int(os.getenv("DISK_SPACE_BLOCKER_MB", "100"))
    large_database_bytes: int = int(
        os.getenv("LARGE_DATABASE_BYTES", str(10 * 1024 * 1024 * 1024))
    )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    # Environment-specific logging configuration
    @property
    def logging_config(self) -> dict:
        """
        Returns logging configuration based on environment.
        """
        base_config = {
            "app_name": self.service_name,
            "log_level": self.log_level,
            "json_logs": self.json_logs,
        }

        if self.environment == "development":
            base_config.update({"json_logs": False, "log_level": "DEBUG" if self.debug else "INFO"})

        return base_config

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
