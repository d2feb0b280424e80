"""
Action Dispatcher

The ONLY place where a validated command mutates backend state.

For every ALLOW decision:
1. Exactly ONE backend mutation per command batch
   - maintainer: classify_issue with all present fields merged
   - contributor: submit_feedback (anonymous, no actor field)
2. Exactly ONE confirmation comment
3. ONE cleanup job per message of the exchange (command + confirmation),
   each at 60 seconds

The order is strict: mutation -> confirmation -> cleanup scheduling.

If the mutation (or the confirmation post) fails, the exchange aborts:
no confirmation, no cleanup, no audit entry. The failure goes to the
operational log only and the triggering comment is left in place.

Maintainer commands are not deduplicated (re-applying is harmless).
Contributor feedback dedup belongs to the backend.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, List

from .activity_log import ActivityLogger, EntityType
from .backend_api import BackendAPI, BackendAPIError, actor_descriptor
from .cleanup_queue import CleanupJob, CleanupScheduler, COMMAND_CLEANUP_DELAY_MS
from .command_grammar import CommandBatch, describe_changes
from .context_validator import (
    Allow,
    ContextValidator,
    Policy,
    ValidationContext,
    select_policy,
)
from .github_client import GitHubClient, GitHubAPIError

logger = logging.getLogger("action_dispatcher")

FEEDBACK_CONFIRMATION = "✅ Thank you for your anonymous feedback!"


def maintainer_confirmation(changes: List[str]) -> str:
    return f"✅ Issue updated: {', '.join(changes)}"


@dataclass
class DispatchResult:
    """What one successful exchange produced."""
    policy: Policy
    confirmation_comment_id: int
    cleanup_job_ids: List[str] = field(default_factory=list)
    changes: List[str] = field(default_factory=list)


class ActionDispatcher:
    """Runs validated command batches against the backend and the thread."""

    def __init__(
        self,
        backend: BackendAPI,
        activity: ActivityLogger,
        scheduler: CleanupScheduler,
    ):
        self._backend = backend
        self._activity = activity
        self._scheduler = scheduler

    async def handle_command(
        self,
        batch: CommandBatch,
        context: ValidationContext,
        github: GitHubClient,
    ) -> Optional[DispatchResult]:
        """
        Validate then dispatch one comment's command batch.

        Returns None on deny, on an empty batch and on aborted exchanges.
        """
        policy = select_policy(batch)
        if policy is None:
            return None

        # Nothing well-formed to apply: skip the external lookup entirely
        if policy == Policy.MAINTAINER and not batch.has_maintainer_commands:
            return None
        if policy == Policy.CONTRIBUTOR and not batch.has_ratings:
            return None

        decision = await ContextValidator(github).validate(batch, context)
        if not isinstance(decision, Allow):
            return None

        if policy == Policy.MAINTAINER:
            return await self.dispatch_maintainer(batch, context, decision, github)
        return await self.dispatch_contributor(batch, context, decision, github)

    async def dispatch_maintainer(
        self,
        batch: CommandBatch,
        context: ValidationContext,
        decision: Allow,
        github: GitHubClient,
    ) -> Optional[DispatchResult]:
        if not batch.has_maintainer_commands:
            return None

        thread = context.thread
        changes = describe_changes(batch)
        try:
            await self._backend.classify_issue(
                github_repo_id=thread.repo_id,
                github_issue_id=decision.bound_entity,
                actor=actor_descriptor("user", context.actor.github_id, context.actor.login),
                difficulty=batch.difficulty,
                issue_type=batch.issue_type.value if batch.issue_type else None,
                hidden=True if batch.hide else None,
            )
            confirmation_id = await github.create_comment(
                thread.owner, thread.repo, thread.number, maintainer_confirmation(changes)
            )
        except (BackendAPIError, GitHubAPIError) as e:
            logger.error(f"Failed to handle maintainer command on {thread.owner}/{thread.repo}#{thread.number}: {e}")
            return None

        job_ids = await self._schedule_exchange_cleanup(context, confirmation_id)
        logger.info(
            f"Issue #{thread.number} updated by {context.actor.login}: {', '.join(changes)}"
        )
        return DispatchResult(
            policy=Policy.MAINTAINER,
            confirmation_comment_id=confirmation_id,
            cleanup_job_ids=job_ids,
            changes=changes,
        )

    async def dispatch_contributor(
        self,
        batch: CommandBatch,
        context: ValidationContext,
        decision: Allow,
        github: GitHubClient,
    ) -> Optional[DispatchResult]:
        if not batch.has_ratings:
            return None

        thread = context.thread
        try:
            # ANONYMOUS: no actor information leaves the bot
            await self._backend.submit_feedback(
                github_pr_id=decision.bound_entity,
                github_repo_id=thread.repo_id,
                difficulty_rating=batch.difficulty_rating,
                responsiveness_rating=batch.responsiveness_rating,
            )
            await self._activity.log_contributor(
                "feedback_received",
                EntityType.REPO,
                f"repo#{thread.repo_id}",
                {
                    "difficulty_rating": batch.difficulty_rating,
                    "responsiveness_rating": batch.responsiveness_rating,
                },
            )
            confirmation_id = await github.create_comment(
                thread.owner, thread.repo, thread.number, FEEDBACK_CONFIRMATION
            )
        except (BackendAPIError, GitHubAPIError) as e:
            logger.error(f"Failed to handle contributor feedback on {thread.owner}/{thread.repo}#{thread.number}: {e}")
            return None

        job_ids = await self._schedule_exchange_cleanup(context, confirmation_id)
        logger.info(f"Anonymous feedback received on PR #{thread.number}")
        return DispatchResult(
            policy=Policy.CONTRIBUTOR,
            confirmation_comment_id=confirmation_id,
            cleanup_job_ids=job_ids,
        )

    async def _schedule_exchange_cleanup(
        self,
        context: ValidationContext,
        confirmation_id: int,
    ) -> List[str]:
        """One job for the command comment, one for the confirmation."""
        thread = context.thread
        job_ids = []
        for comment_id in (context.comment_id, confirmation_id):
            job_ids.append(await self._scheduler.schedule(
                CleanupJob(
                    owner=thread.owner,
                    repo=thread.repo,
                    comment_id=comment_id,
                    installation_id=context.installation_id,
                    issue_number=thread.number,
                ),
                COMMAND_CLEANUP_DELAY_MS,
            ))
        return job_ids
