from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"

DEFAULT_CONVERSATION_COLLECTIONS = ("conversations", "chats", "serviceChats")
DEFAULT_MESSAGE_COLLECTIONS = ("messages", "chatMessages")
DEFAULT_SERVICE_FIELD_NAMES = ("serviceId", "service_id", "serviceID", "service")
DEFAULT_PARTICIPANT_FIELD_NAMES = ("participants",)


def merge_name_list(defaults: tuple[str, ...], configured: str | None) -> list[str]:
    """
    Merge built-in names with a comma-separated override.

    Built-ins come first; configured entries are trimmed, blanks dropped and
    duplicates removed while keeping the first occurrence.
    """
    names = list(defaults)
    if configured:
        names.extend(part.strip() for part in configured.split(","))
    return list(dict.fromkeys(name for name in names if name))


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"
    METRICS_DEBUG: bool = False

    # Relational store
    DATABASE_URL: str | None = None

    # Firebase / Firestore
    FIREBASE_SERVICE_ACCOUNT: str | None = None
    FIREBASE_SERVICE_ACCOUNT_PATH: str | None = None
    FIREBASE_PROJECT_ID: str | None = None

    # Speculative document-store schema (comma-separated, merged with defaults)
    FIRESTORE_CONVERSATION_COLLECTIONS: str = ""
    FIRESTORE_MESSAGE_COLLECTIONS: str = ""
    FIRESTORE_SERVICE_FIELD_NAMES: str = ""
    FIRESTORE_PARTICIPANT_FIELD_NAMES: str = ""

    # Metrics tuning
    SERVICE_RESPONSE_TIME_MIN_PAIRS: int = 3
    CALENDAR_TIMEZONE: str = "UTC"
    SUCCESS_CANCELLATION_POLICY: str = "all"

    # =================================================================
    # DATABASE POOL SETTINGS - read-only workload, small pool
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def conversation_collections(self) -> list[str]:
        return merge_name_list(
            DEFAULT_CONVERSATION_COLLECTIONS, self.FIRESTORE_CONVERSATION_COLLECTIONS
        )

    def message_collections(self) -> list[str]:
        return merge_name_list(DEFAULT_MESSAGE_COLLECTIONS, self.FIRESTORE_MESSAGE_COLLECTIONS)

    def service_field_names(self) -> list[str]:
        return merge_name_list(DEFAULT_SERVICE_FIELD_NAMES, self.FIRESTORE_SERVICE_FIELD_NAMES)

    def participant_field_names(self) -> list[str]:
        return merge_name_list(
            DEFAULT_PARTICIPANT_FIELD_NAMES, self.FIRESTORE_PARTICIPANT_FIELD_NAMES
        )

    def min_response_pairs(self) -> int:
        """Minimum pair count before the robust reduction kicks in (never below 1)."""
        return max(self.SERVICE_RESPONSE_TIME_MIN_PAIRS, 1)

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update(
                {
                    "min_size": 1,
                    "max_size": 4,
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
