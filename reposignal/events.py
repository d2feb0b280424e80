"""
Webhook Event Table

One explicit mapping from event kind ("<event>.<action>") to handler.
Every handler receives the process runtime and the raw payload; none of
them reach for module-level collaborators.

| Kind                            | Handler                                   |
|---------------------------------|-------------------------------------------|
| issue_comment.created           | parse -> validate -> dispatch             |
| issues.opened                   | post classification nudge, cleanup in 5m  |
| pull_request.closed             | if merged: feedback nudge (cleanup in 1h) |
|                                 | and delete linked issues from the backend |
| installation.created            | sync installation + repositories          |
| installation_repositories.added | sync added repositories                   |

Handlers catch and log their own failures; nothing propagates to the
webhook receiver.
"""

import logging
import re
from typing import Dict, Any, Callable, Awaitable, List

from .activity_log import EntityType
from .backend_api import BackendAPIError, actor_descriptor
from .cleanup_queue import (
    CleanupJob,
    FEEDBACK_NUDGE_CLEANUP_DELAY_MS,
    ISSUE_NUDGE_CLEANUP_DELAY_MS,
)
from .command_grammar import parse_commands
from .context_validator import Actor, Thread, ThreadKind, ValidationContext
from .github_client import GitHubAPIError
from .installation import handle_installation_created, handle_installation_repositories_added
from .runtime import BotRuntime

logger = logging.getLogger("events")

ISSUE_NUDGE = (
    "👋 Thanks for opening this issue! Maintainers can classify it using:\n\n"
    "`/reposignal difficulty <1-5>`\n"
    "`/reposignal type <docs|bug|feature|refactor|test|infra>`\n\n"
    "Or hide it from discovery: `/reposignal hide`"
)

FEEDBACK_NUDGE = (
    "🎉 Thanks for your contribution!\n\n"
    "Help us improve by sharing your experience:\n\n"
    "`/reposignal rate difficulty <1-5>`\n"
    "`/reposignal rate responsiveness <1-5>`\n\n"
    "Your feedback is anonymous and helps future contributors."
)

# closes #12, fixed #3, resolves #7 ...
LINKED_ISSUE_PATTERN = re.compile(r"(close[sd]?|fix(e[sd])?|resolve[sd]?)\s+#(\d+)", re.IGNORECASE)

EventHandler = Callable[[BotRuntime, Dict[str, Any]], Awaitable[None]]


def event_kind(event: str, payload: Dict[str, Any]) -> str:
    """Combine the webhook event name with the payload action."""
    action = payload.get("action")
    return f"{event}.{action}" if action else event


def linked_issue_numbers(body: str) -> List[int]:
    """Issue numbers referenced by closing keywords in a pull request body."""
    if not body:
        return []
    return [int(match.group(3)) for match in LINKED_ISSUE_PATTERN.finditer(body)]


def _repo_coordinates(repository: Dict[str, Any]):
    return repository["owner"]["login"], repository["name"], repository["id"]


def build_validation_context(payload: Dict[str, Any]) -> ValidationContext:
    """ValidationContext for an issue_comment payload. Built fresh per comment."""
    issue = payload["issue"]
    sender = payload["sender"]
    owner, repo, repo_id = _repo_coordinates(payload["repository"])
    kind = ThreadKind.PULL_REQUEST if issue.get("pull_request") else ThreadKind.ISSUE
    return ValidationContext(
        actor=Actor(login=sender["login"], github_id=sender["id"]),
        thread=Thread(
            owner=owner,
            repo=repo,
            repo_id=repo_id,
            number=issue["number"],
            entity_id=issue["id"],
            kind=kind,
        ),
        installation_id=payload["installation"]["id"],
        comment_id=payload["comment"]["id"],
    )


# -----------------------------------------------------------------------------
# Handlers
# -----------------------------------------------------------------------------
async def handle_issue_comment_created(runtime: BotRuntime, payload: Dict[str, Any]) -> None:
    # The bot's own nudges quote the commands they describe
    if payload.get("sender", {}).get("type") == "Bot":
        return

    batch = parse_commands(payload.get("comment", {}).get("body") or "")
    if not batch.triggered:
        return

    try:
        context = build_validation_context(payload)
        github = await runtime.github_factory.for_installation(context.installation_id)
        await runtime.dispatcher.handle_command(batch, context, github)
    except (GitHubAPIError, BackendAPIError, KeyError) as e:
        logger.error(f"Failed to handle issue comment: {e}")


async def handle_issues_opened(runtime: BotRuntime, payload: Dict[str, Any]) -> None:
    try:
        issue = payload["issue"]
        owner, repo, _ = _repo_coordinates(payload["repository"])
        installation_id = payload["installation"]["id"]

        github = await runtime.github_factory.for_installation(installation_id)
        comment_id = await github.create_comment(owner, repo, issue["number"], ISSUE_NUDGE)
        await runtime.activity.log_bot(
            "issue_nudge_posted",
            EntityType.ISSUE,
            f"issue#{issue['id']}",
            {"issueNumber": issue["number"]},
        )
        await runtime.scheduler.schedule(
            CleanupJob(
                owner=owner,
                repo=repo,
                comment_id=comment_id,
                installation_id=installation_id,
                issue_number=issue["number"],
            ),
            ISSUE_NUDGE_CLEANUP_DELAY_MS,
        )
        logger.info(f"Posted classification nudge on {owner}/{repo}#{issue['number']}")
    except (GitHubAPIError, BackendAPIError, KeyError) as e:
        logger.error(f"Failed to handle issue opened: {e}")


async def handle_pull_request_closed(runtime: BotRuntime, payload: Dict[str, Any]) -> None:
    pull_request = payload.get("pull_request") or {}
    if not pull_request.get("merged"):
        return

    try:
        owner, repo, repo_id = _repo_coordinates(payload["repository"])
        installation_id = payload["installation"]["id"]
        number = pull_request["number"]

        github = await runtime.github_factory.for_installation(installation_id)
        comment_id = await github.create_comment(owner, repo, number, FEEDBACK_NUDGE)
        await runtime.activity.log_bot(
            "feedback_prompted",
            EntityType.REPO,
            f"repo#{repo_id}",
            {"prNumber": number},
        )
        await runtime.scheduler.schedule(
            CleanupJob(
                owner=owner,
                repo=repo,
                comment_id=comment_id,
                installation_id=installation_id,
                issue_number=number,
            ),
            FEEDBACK_NUDGE_CLEANUP_DELAY_MS,
        )
        logger.info(f"Posted feedback nudge on {owner}/{repo}#{number}")
    except (GitHubAPIError, BackendAPIError, KeyError) as e:
        logger.error(f"Failed to handle pull request merged: {e}")
        return

    await _delete_linked_issues(runtime, repo_id, pull_request)


async def _delete_linked_issues(
    runtime: BotRuntime,
    repo_id: int,
    pull_request: Dict[str, Any],
) -> None:
    """Remove issues closed by a merged pull request from discovery."""
    number = pull_request.get("number")
    try:
        for issue_number in linked_issue_numbers(pull_request.get("body") or ""):
            # Body references carry the issue number, not its platform id
            await runtime.backend.delete_issue(
                github_repo_id=repo_id,
                github_issue_id=issue_number,
                actor=actor_descriptor("bot"),
            )
            await runtime.activity.log_bot(
                "issue_deleted",
                EntityType.ISSUE,
                f"issue#{issue_number}",
                {"reason": "pr_merged", "prNumber": number, "repoId": repo_id},
            )
            logger.info(f"Deleted issue #{issue_number} linked from PR #{number}")
    except BackendAPIError as e:
        logger.error(f"Failed to delete linked issues for PR #{number}: {e}")


# -----------------------------------------------------------------------------
# Event table
# -----------------------------------------------------------------------------
EVENT_HANDLERS: Dict[str, EventHandler] = {
    "issue_comment.created": handle_issue_comment_created,
    "issues.opened": handle_issues_opened,
    "pull_request.closed": handle_pull_request_closed,
    "installation.created": handle_installation_created,
    "installation_repositories.added": handle_installation_repositories_added,
}


async def dispatch_event(kind: str, payload: Dict[str, Any], runtime: BotRuntime) -> bool:
    """
    Route one webhook delivery to its handler.

    Returns False when the kind has no handler (the delivery is ignored).
    """
    handler = EVENT_HANDLERS.get(kind)
    if handler is None:
        logger.debug(f"Ignoring event {kind}")
        return False
    await handler(runtime, payload)
    return True
