"""Storage layer - Database schemas and repositories."""

from fomo_relay.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from fomo_relay.storage.models import (
    Base,
    CachedTokenAddressModel,
    KnownTokenModel,
    NotificationModel,
    SentMessageModel,
    TraderModel,
    UserModel,
    UserTraderModel,
)
from fomo_relay.storage.repos import (
    CachedTokenAddressDTO,
    CachedTokenAddressRepository,
    KnownTokenDTO,
    KnownTokenRepository,
    NotificationDTO,
    NotificationRepository,
    SentMessageDTO,
    SentMessageRepository,
    TickerActivity,
    TraderDTO,
    TraderRepository,
    UserDTO,
    UserRepository,
    UserTraderRepository,
)

__all__ = [
    "Base",
    "CachedTokenAddressDTO",
    "CachedTokenAddressModel",
    "CachedTokenAddressRepository",
    "DatabaseManager",
    "KnownTokenDTO",
    "KnownTokenModel",
    "KnownTokenRepository",
    "NotificationDTO",
    "NotificationModel",
    "NotificationRepository",
    "SentMessageDTO",
    "SentMessageModel",
    "SentMessageRepository",
    "TickerActivity",
    "TraderDTO",
    "TraderModel",
    "TraderRepository",
    "UserDTO",
    "UserModel",
    "UserRepository",
    "UserTraderRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
