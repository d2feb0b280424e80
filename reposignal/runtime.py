"""
Process-wide collaborators, built once at startup and passed explicitly.

Nothing in the bot reaches for module-level queue or client singletons;
handlers receive a BotRuntime instead.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable

from .action_dispatcher import ActionDispatcher
from .activity_log import ActivityLogger
from .backend_api import BackendAPI
from .cleanup_queue import CleanupScheduler, PersistentCleanupStore
from .cleanup_worker import CleanupWorkerPool
from .config import BotSettings
from .github_client import GitHubClientFactory

logger = logging.getLogger("runtime")


@dataclass
class BotRuntime:
    backend: BackendAPI
    activity: ActivityLogger
    github_factory: GitHubClientFactory
    store: PersistentCleanupStore
    scheduler: CleanupScheduler
    dispatcher: ActionDispatcher
    pool: CleanupWorkerPool


def build_runtime(settings: BotSettings, clock: Callable[[], float] = time.time) -> BotRuntime:
    backend = BackendAPI(
        settings.backend_url,
        settings.bot_api_key,
        timeout=settings.http_timeout,
    )
    activity = ActivityLogger(backend)
    github_factory = GitHubClientFactory(
        api_base=settings.github_api_base,
        token=settings.github_token,
        app_id=settings.github_app_id,
        private_key=settings.github_app_private_key,
        timeout=settings.http_timeout,
    )
    store = PersistentCleanupStore(settings.cleanup_state_file)
    scheduler = CleanupScheduler(store, clock=clock)
    dispatcher = ActionDispatcher(backend, activity, scheduler)
    pool = CleanupWorkerPool(
        store,
        github_factory,
        activity,
        concurrency=settings.cleanup_concurrency,
        poll_interval=settings.cleanup_poll_interval,
        clock=clock,
    )
    logger.info(
        f"Runtime built: backend={settings.backend_url}, "
        f"queue={settings.cleanup_state_file}, workers={settings.cleanup_concurrency}"
    )
    return BotRuntime(
        backend=backend,
        activity=activity,
        github_factory=github_factory,
        store=store,
        scheduler=scheduler,
        dispatcher=dispatcher,
        pool=pool,
    )
