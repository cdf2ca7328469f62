import os
from dataclasses import dataclass
from typing import Optional


def get_env(key: str, default: str = "") -> str:
    return os.environ.get(key, default).strip()


@dataclass(frozen=True)
class Settings:

    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db: str = "jobboard"
    redis_url: Optional[str] = None
    log_level: str = "INFO"
    notification_feed_limit: int = 10

    @classmethod
    def from_env(cls) -> "Settings":
        limit = get_env("NOTIFICATION_FEED_LIMIT", "10")
        return cls(
            mongodb_url=get_env("MONGODB_URL", cls.mongodb_url),
            mongodb_db=get_env("MONGODB_DB", cls.mongodb_db),
            redis_url=get_env("REDIS_URL") or None,
            log_level=get_env("LOG_LEVEL", cls.log_level).upper(),
            notification_feed_limit=int(limit) if limit.isdigit() else 10,
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
