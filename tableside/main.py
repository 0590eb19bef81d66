"""Composition root: build the client core from settings."""
from dataclasses import dataclass
from typing import Optional

from tableside.config.database import get_supabase_client
from tableside.config.logging import get_logger, setup_logging
from tableside.config.settings import Settings, settings as default_settings
from tableside.core.backend import BackendDataService
from tableside.services.auth import FileProfileCache, MemoryProfileCache, ProfileCache, SessionResolver
from tableside.services.backend import SupabaseDataService
from tableside.services.orders import CustomerOrderFeed
from tableside.services.tables import TableReservationManager

logger = get_logger(__name__)


@dataclass
class TablesideApp:
    """Everything a UI layer needs, wired to one backend."""
    settings: Settings
    backend: BackendDataService
    resolver: SessionResolver
    tables: TableReservationManager
    orders: CustomerOrderFeed

    async def start(self) -> "TablesideApp":
        """Resolve the persisted session. Never fails; an unreachable backend leaves the user anonymous."""
        principal = await self.resolver.initialize()
        logger.info(f"{self.settings.PROJECT_NAME} started as {principal.role.value}")
        return self

    async def aclose(self) -> None:
        await self.resolver.aclose()
        logger.info(f"{self.settings.PROJECT_NAME} shut down")

    async def __aenter__(self) -> "TablesideApp":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def build_profile_cache(config: Settings) -> ProfileCache:
    if config.PROFILE_CACHE_PATH:
        return FileProfileCache(config.PROFILE_CACHE_PATH)
    return MemoryProfileCache()


def build_app(backend: BackendDataService, config: Optional[Settings] = None) -> TablesideApp:
    """Wire the components around an existing backend."""
    config = config or default_settings
    timeout = config.BACKEND_TIMEOUT_SECONDS
    return TablesideApp(
        settings=config,
        backend=backend,
        resolver=SessionResolver(backend, cache=build_profile_cache(config), timeout=timeout),
        tables=TableReservationManager(backend, timeout=timeout),
        orders=CustomerOrderFeed(backend, timeout=timeout),
    )


async def create_app(config: Optional[Settings] = None) -> TablesideApp:
    """Configure logging, connect to Supabase and wire the components."""
    config = config or default_settings
    setup_logging(config)
    logger.info(f"Starting {config.PROJECT_NAME} v{config.VERSION} ({config.ENVIRONMENT})")

    client = await get_supabase_client(config)
    backend = SupabaseDataService(client, timeout=config.BACKEND_TIMEOUT_SECONDS)
    return build_app(backend, config)
