"""Dependency injection container for the application."""

from dependency_injector import containers, providers

from core.config import Settings
from core.cache import CacheManager
from core.cleanup import CleanupService
from core.persistence import create_persistent_store
from services.duplicate_check import DuplicateChecker
from services.screenshot import ScreenshotService
from services.task_queue import TaskQueue
from services.tools import ToolsService


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Durable backing for persistent cache entries (Redis or memory)
    persistent_store = providers.Singleton(
        create_persistent_store,
        settings=settings
    )

    # Fetch-or-compute cache
    cache = providers.Singleton(
        CacheManager.from_settings,
        settings=settings,
        store=persistent_store
    )

    # Screenshot worker (job handler for the screenshot queue)
    screenshot_service = providers.Singleton(
        ScreenshotService,
        settings=settings
    )

    # Background screenshot job queue
    screenshot_queue = providers.Singleton(
        TaskQueue.from_settings,
        handler=screenshot_service.provided.capture,
        settings=settings,
        id_prefix="screenshot"
    )

    duplicate_checker = providers.Singleton(
        DuplicateChecker,
        cache=cache,
        settings=settings
    )

    # Published tool catalog read through the cache
    tools_service = providers.Singleton(
        ToolsService,
        cache=cache,
        settings=settings
    )

    cleanup_service = providers.Singleton(
        CleanupService,
        cache=cache,
        queue=screenshot_queue,
        interval=settings.provided.cleanup_interval
    )


# Global container instance
container = Container()
