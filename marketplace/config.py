"""
Marketplace service: configuration

Every knob comes from the environment, read once at start-up into an
immutable `Settings` object that the app factory hands to its collaborators.
"""

import os

from pydantic import BaseModel, ConfigDict

DEFAULT_STATUSES = ("pending", "confirmed", "delivered", "cancelled")


def _flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    database_url: str = "sqlite+aiosqlite:///./data.db"
    redis_url: str = "redis://localhost:6379"
    session_ttl: int = 86400
    store_timeout: float = 5.0
    publish_timeout: float = 2.0
    order_statuses: tuple[str, ...] = DEFAULT_STATUSES
    chat_participant_check: bool = False
    events_channel: str = "market_events"
    seed_data: bool = True
    log_level: str = "INFO"
    port: int = 3000

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        statuses = os.environ.get("ORDER_STATUSES")
        return cls(
            database_url=os.environ.get("DATABASE_URL", cls.model_fields["database_url"].default),
            redis_url=os.environ.get("REDIS_URL", cls.model_fields["redis_url"].default),
            session_ttl=int(os.environ.get("SESSION_TTL", 86400)),
            store_timeout=float(os.environ.get("STORE_TIMEOUT", 5.0)),
            publish_timeout=float(os.environ.get("PUBLISH_TIMEOUT", 2.0)),
            order_statuses=(
                tuple(s.strip() for s in statuses.split(",") if s.strip())
                if statuses
                else DEFAULT_STATUSES
            ),
            chat_participant_check=_flag("CHAT_PARTICIPANT_CHECK", False),
            events_channel=os.environ.get("EVENTS_CHANNEL", "market_events"),
            seed_data=_flag("SEED_DATA", True),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            port=int(os.environ.get("PORT", 3000)),
        )
