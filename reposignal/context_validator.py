"""
Context Validator

Decides whether a parsed command batch may execute, given who commented and
where. Two disjoint policies, selected by which sub-grammar matched:

MAINTAINER POLICY (difficulty / type / hide):
- ALLOW iff the commenter's permission on the repository is write, maintain
  or admin
- ONE permission lookup per invocation
- Lookup failure -> DENY (fail closed)

CONTRIBUTOR POLICY (rate difficulty / rate responsiveness):
- ALLOW iff ALL hold:
  1. the thread is a pull request
  2. the pull request is merged
  3. the commenter is the pull request author
- ONE pull request fetch per invocation
- "Feedback not yet recorded" is enforced by the backend, not here
- Bound entity is the pull request's platform id, NEVER the thread number

SILENT DENY: a denial produces no comment, no audit entry and no log line.
Callers must not be able to tell which check failed.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union, FrozenSet

from .command_grammar import CommandBatch
from .github_client import GitHubClient, GitHubAPIError

MAINTAINER_PERMISSIONS: FrozenSet[str] = frozenset({"write", "maintain", "admin"})


class ThreadKind(str, Enum):
    ISSUE = "issue"
    PULL_REQUEST = "pull_request"


class Policy(str, Enum):
    MAINTAINER = "maintainer"
    CONTRIBUTOR = "contributor"


@dataclass(frozen=True)
class Actor:
    """The commenting user."""
    login: str
    github_id: int


@dataclass(frozen=True)
class Thread:
    """The issue or pull request thread the comment was posted in."""
    owner: str
    repo: str
    repo_id: int
    number: int
    entity_id: int
    kind: ThreadKind


@dataclass(frozen=True)
class ValidationContext:
    """Built fresh per inbound comment; never persisted."""
    actor: Actor
    thread: Thread
    installation_id: int
    comment_id: int


@dataclass(frozen=True)
class Allow:
    bound_entity: int


@dataclass(frozen=True)
class Deny:
    pass


Decision = Union[Allow, Deny]
DENY = Deny()


def select_policy(batch: CommandBatch) -> Optional[Policy]:
    """Pick the policy for a batch, or None when nothing was triggered."""
    if not batch.triggered:
        return None
    if batch.rate_requested:
        return Policy.CONTRIBUTOR
    return Policy.MAINTAINER


class ContextValidator:
    """Evaluates the maintainer and contributor policies against GitHub."""

    def __init__(self, github: GitHubClient):
        self._github = github

    async def validate(self, batch: CommandBatch, context: ValidationContext) -> Decision:
        policy = select_policy(batch)
        if policy == Policy.MAINTAINER:
            return await self.validate_maintainer(context)
        if policy == Policy.CONTRIBUTOR:
            return await self.validate_contributor(context)
        return DENY

    async def validate_maintainer(self, context: ValidationContext) -> Decision:
        thread = context.thread
        try:
            permission = await self._github.get_collaborator_permission(
                thread.owner, thread.repo, context.actor.login
            )
        except (GitHubAPIError, KeyError):
            return DENY

        if permission not in MAINTAINER_PERMISSIONS:
            return DENY
        return Allow(bound_entity=thread.entity_id)

    async def validate_contributor(self, context: ValidationContext) -> Decision:
        thread = context.thread
        if thread.kind != ThreadKind.PULL_REQUEST:
            return DENY

        try:
            pull_request = await self._github.get_pull_request(
                thread.owner, thread.repo, thread.number
            )
        except (GitHubAPIError, KeyError):
            return DENY

        if not pull_request.merged:
            return DENY
        if pull_request.author_id is None or pull_request.author_id != context.actor.github_id:
            return DENY
        return Allow(bound_entity=pull_request.id)
