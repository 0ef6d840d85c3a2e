"""
Dependency Injection Container for TaskHub.

Owns every service instance for one application: configuration, the
persistence collaborator, the credential services and the real-time core.
Nothing here is module-level state; routes reach services through
`request.app.state.container`.

USAGE:
    container = ApplicationContainer()
    await container.initialize()
    app.state.container = container

    # In tests, inject a seeded store:
    container = ApplicationContainer(config=config, persistence=InMemoryPersistence())
"""

from typing import TYPE_CHECKING, Any

from .auth.refresh_registry import RefreshTokenRegistry
from .auth.token_service import TokenService
from .persistence import InMemoryPersistence
from .realtime.event_router import EventRouter
from .realtime.message_validator import WebSocketMessageValidator
from .realtime.messaging import MessageBroadcaster
from .realtime.notification_dispatcher import NotificationDispatcher
from .realtime.presence_registry import PresenceRegistry, PresenceService
from .realtime.rate_limiter import RateLimiter
from .structured_logging.enhanced_logging_config import get_logger

if TYPE_CHECKING:
    from .app.task_registry import TaskRegistry
    from .config.models import AppConfig
    from .persistence.protocols import PersistenceGateway
    from .persistence.sql import DatabaseManager

logger = get_logger(__name__)


class ApplicationContainer:
    """
    Service container for one TaskHub application.

    Services are NOT built in __init__; call initialize(). This allows
    container creation without side effects.
    """

    def __init__(self, config: "AppConfig | None" = None, persistence: "PersistenceGateway | None" = None):
        self.config: AppConfig | None = config
        self.persistence: PersistenceGateway | None = persistence
        self.database_manager: DatabaseManager | None = None
        self.task_registry: TaskRegistry | None = None

        self.refresh_registry: RefreshTokenRegistry | None = None
        self.token_service: TokenService | None = None

        self.presence_registry: PresenceRegistry | None = None
        self.presence_service: PresenceService | None = None
        self.broadcaster: MessageBroadcaster | None = None
        self.notification_dispatcher: NotificationDispatcher | None = None
        self.message_validator: WebSocketMessageValidator | None = None
        self.rate_limiter: RateLimiter | None = None
        self.event_router: EventRouter | None = None

        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Build every service in dependency order. Idempotent."""
        if self._initialized:
            return

        from .app.task_registry import TaskRegistry
        from .config import get_config

        if self.config is None:
            self.config = get_config()
        config = self.config
        logger.info("Initializing ApplicationContainer", **config.describe())

        self.task_registry = TaskRegistry()
        if self.persistence is None:
            self.persistence = await self._build_persistence()

        self.refresh_registry = RefreshTokenRegistry()
        self.token_service = TokenService(config.security, self.refresh_registry)

        timeout = config.realtime.persistence_timeout_seconds
        self.presence_registry = PresenceRegistry()
        self.broadcaster = MessageBroadcaster(self.presence_registry)
        self.presence_service = PresenceService(
            self.presence_registry, self.persistence, self.broadcaster, persistence_timeout=timeout
        )
        self.notification_dispatcher = NotificationDispatcher(
            self.persistence, self.presence_registry, self.broadcaster, persistence_timeout=timeout
        )
        self.message_validator = WebSocketMessageValidator(
            max_message_size=config.realtime.max_message_size,
            max_json_depth=config.realtime.max_json_depth,
            max_string_length=config.realtime.max_string_length,
        )
        self.rate_limiter = RateLimiter(
            max_messages_per_minute=config.realtime.max_messages_per_minute,
            message_window=config.realtime.message_window,
        )
        self.event_router = EventRouter(
            self.presence_registry,
            self.presence_service,
            self.persistence,
            self.broadcaster,
            self.notification_dispatcher,
            persistence_timeout=timeout,
        )

        self._initialized = True
        logger.info("ApplicationContainer initialized")

    async def _build_persistence(self) -> "PersistenceGateway":
        assert self.config is not None
        database = self.config.database
        if database.is_memory:
            logger.warning("Using in-memory persistence; data is lost on restart")
            return InMemoryPersistence()

        from .persistence.sql import DatabaseManager, SqlPersistence

        self.database_manager = DatabaseManager(database)
        if database.url.startswith("sqlite"):
            await self.database_manager.create_tables()
        return SqlPersistence(self.database_manager)

    def start_background_tasks(self) -> None:
        """Start the periodic refresh token sweep."""
        assert self.task_registry is not None and self.token_service is not None and self.config is not None
        self.task_registry.register_task(
            self.token_service.run_sweep_loop(self.config.security.refresh_sweep_interval_seconds),
            "auth/refresh_token_sweep",
            "lifecycle",
        )

    def health(self) -> dict[str, Any]:
        registry_stats = self.presence_registry.stats() if self.presence_registry is not None else {}
        return {
            "initialized": self._initialized,
            "persistence": type(self.persistence).__name__ if self.persistence is not None else None,
            "refresh_tokens": len(self.refresh_registry) if self.refresh_registry is not None else 0,
            "realtime": registry_stats,
            "tasks": self.task_registry.get_registry_info() if self.task_registry is not None else {},
        }

    async def shutdown(self) -> None:
        """Stop background tasks, then release persistence. Best effort."""
        logger.info("Shutting down ApplicationContainer...")
        if self.task_registry is not None:
            await self.task_registry.shutdown_all()
        if self.persistence is not None:
            try:
                await self.persistence.close()
            except RuntimeError as e:
                logger.error("Error closing persistence", error=str(e), exc_info=True)
        self._initialized = False
        logger.info("ApplicationContainer shutdown complete")
