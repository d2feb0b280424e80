"""
Pytest configuration for Reposignal bot tests.

This module provides:
1. Async test support without pytest-asyncio
2. Fakes for the GitHub and backend collaborators
3. A deterministic clock and a temp-file cleanup queue
"""

import asyncio
import functools
from unittest.mock import MagicMock, AsyncMock

import pytest

from reposignal.activity_log import ActivityLogger
from reposignal.action_dispatcher import ActionDispatcher
from reposignal.cleanup_queue import CleanupScheduler, PersistentCleanupStore
from reposignal.cleanup_worker import CleanupWorkerPool
from reposignal.context_validator import (
    Actor,
    Thread,
    ThreadKind,
    ValidationContext,
)
from reposignal.github_client import PullRequest
from reposignal.runtime import BotRuntime


# -----------------------------------------------------------------------------
# Async Test Support
# -----------------------------------------------------------------------------
def async_test(func):
    """
    Decorator to run async tests without pytest-asyncio.

    Usage:
        @async_test
        async def test_something(self):
            result = await some_async_function()
            assert result is not None
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return asyncio.run(func(*args, **kwargs))
    return wrapper


# -----------------------------------------------------------------------------
# Clock
# -----------------------------------------------------------------------------
class FakeClock:
    """Manually advanced clock returning seconds, like time.time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: int) -> None:
        self.now += ms / 1000


@pytest.fixture
def clock():
    return FakeClock()


# -----------------------------------------------------------------------------
# Collaborator fakes
# -----------------------------------------------------------------------------
def make_github(permission: str = "write", pull_request: PullRequest = None):
    """GitHub client fake with every call the bot makes stubbed."""
    github = MagicMock()
    github.get_collaborator_permission = AsyncMock(return_value=permission)
    github.get_pull_request = AsyncMock(return_value=pull_request)
    github.create_comment = AsyncMock(return_value=9001)
    github.delete_comment = AsyncMock(return_value=None)
    github.get_repository = AsyncMock(return_value={})
    github.list_languages = AsyncMock(return_value={})
    return github


def make_backend():
    backend = MagicMock()
    backend.sync_installation = AsyncMock(return_value={"id": 77})
    backend.add_repository = AsyncMock(return_value={})
    backend.update_repository_metadata = AsyncMock(return_value={})
    backend.classify_issue = AsyncMock(return_value={})
    backend.delete_issue = AsyncMock(return_value={})
    backend.submit_feedback = AsyncMock(return_value={})
    backend.write_log = AsyncMock(return_value={})
    backend.get_languages = AsyncMock(return_value=[])
    backend.get_frameworks = AsyncMock(return_value=[])
    backend.get_domains = AsyncMock(return_value=[])
    return backend


def make_factory(github):
    factory = MagicMock()
    factory.for_installation = AsyncMock(return_value=github)
    return factory


@pytest.fixture
def github():
    return make_github()


@pytest.fixture
def backend():
    return make_backend()


@pytest.fixture
def github_factory(github):
    return make_factory(github)


@pytest.fixture
def activity(backend):
    return ActivityLogger(backend)


@pytest.fixture
def store(tmp_path):
    return PersistentCleanupStore(tmp_path / "cleanup_queue.json")


@pytest.fixture
def scheduler(store, clock):
    return CleanupScheduler(store, clock=clock)


@pytest.fixture
def dispatcher(backend, activity, scheduler):
    return ActionDispatcher(backend, activity, scheduler)


@pytest.fixture
def pool(store, github_factory, activity, clock):
    return CleanupWorkerPool(store, github_factory, activity, concurrency=5, clock=clock)


@pytest.fixture
def runtime(backend, activity, github_factory, store, scheduler, dispatcher, pool):
    return BotRuntime(
        backend=backend,
        activity=activity,
        github_factory=github_factory,
        store=store,
        scheduler=scheduler,
        dispatcher=dispatcher,
        pool=pool,
    )


# -----------------------------------------------------------------------------
# Validation contexts
# -----------------------------------------------------------------------------
def issue_context(login: str = "alice", github_id: int = 101, comment_id: int = 5001) -> ValidationContext:
    return ValidationContext(
        actor=Actor(login=login, github_id=github_id),
        thread=Thread(
            owner="acme",
            repo="widgets",
            repo_id=42,
            number=7,
            entity_id=700007,
            kind=ThreadKind.ISSUE,
        ),
        installation_id=555,
        comment_id=comment_id,
    )


def pr_context(login: str = "bob", github_id: int = 202, comment_id: int = 6001) -> ValidationContext:
    return ValidationContext(
        actor=Actor(login=login, github_id=github_id),
        thread=Thread(
            owner="acme",
            repo="widgets",
            repo_id=42,
            number=12,
            entity_id=800012,
            kind=ThreadKind.PULL_REQUEST,
        ),
        installation_id=555,
        comment_id=comment_id,
    )


def merged_pr(author_id: int = 202, merged: bool = True) -> PullRequest:
    return PullRequest(
        id=990012,
        number=12,
        merged=merged,
        author_id=author_id,
        author_login="bob",
        state="closed",
    )


# -----------------------------------------------------------------------------
# Session Configuration
# -----------------------------------------------------------------------------
def pytest_configure(config):
    """Configure pytest session."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async (custom implementation)"
    )
