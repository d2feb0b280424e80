"""
Unit Tests for the Action Dispatcher

Test coverage for:
- One mutation, one confirmation, two 60s cleanup jobs per allowed batch
- Maintainer classification merge (difficulty + type + hide in one call)
- Anonymous contributor feedback and its audit entry
- Denied batches: no mutation, no comment, no cleanup
- Aborted exchanges on backend / GitHub failures
"""

from reposignal.action_dispatcher import (
    FEEDBACK_CONFIRMATION,
    maintainer_confirmation,
)
from reposignal.backend_api import BackendAPIError
from reposignal.cleanup_queue import COMMAND_CLEANUP_DELAY_MS, CleanupJobState
from reposignal.command_grammar import parse_commands
from reposignal.context_validator import Policy
from reposignal.github_client import GitHubAPIError

from tests.conftest import async_test, issue_context, make_github, merged_pr, pr_context


class TestMaintainerDispatch:

    @async_test
    async def test_difficulty_and_type_in_one_comment(self, dispatcher, backend, store):
        github = make_github(permission="write")
        batch = parse_commands("/reposignal difficulty 3\n/reposignal type bug")

        result = await dispatcher.handle_command(batch, issue_context(), github)

        assert result.policy == Policy.MAINTAINER
        backend.classify_issue.assert_awaited_once_with(
            github_repo_id=42,
            github_issue_id=700007,
            actor={"type": "user", "githubId": 101, "username": "alice"},
            difficulty=3,
            issue_type="bug",
            hidden=None,
        )
        github.create_comment.assert_awaited_once_with(
            "acme", "widgets", 7, "✅ Issue updated: difficulty 3, type bug"
        )

        jobs = await store.list_jobs()
        assert len(jobs) == 2
        assert {j.job.comment_id for j in jobs} == {5001, 9001}
        assert all(j.delay_ms == COMMAND_CLEANUP_DELAY_MS for j in jobs)
        assert all(j.state == CleanupJobState.PENDING for j in jobs)
        assert all(j.job.installation_id == 555 and j.job.issue_number == 7 for j in jobs)
        assert sorted(result.cleanup_job_ids) == sorted(j.job_id for j in jobs)

    @async_test
    async def test_hide_sends_hidden_flag(self, dispatcher, backend):
        github = make_github(permission="admin")
        await dispatcher.handle_command(parse_commands("/reposignal hide"), issue_context(), github)

        kwargs = backend.classify_issue.await_args.kwargs
        assert kwargs["hidden"] is True
        assert kwargs["difficulty"] is None
        assert kwargs["issue_type"] is None
        github.create_comment.assert_awaited_once_with(
            "acme", "widgets", 7, "✅ Issue updated: hidden from discovery"
        )

    @async_test
    async def test_repeated_command_reapplies(self, dispatcher, backend):
        github = make_github(permission="maintain")
        batch = parse_commands("/reposignal difficulty 2")
        await dispatcher.handle_command(batch, issue_context(comment_id=1), github)
        await dispatcher.handle_command(batch, issue_context(comment_id=2), github)
        assert backend.classify_issue.await_count == 2

    @async_test
    async def test_non_collaborator_gets_nothing(self, dispatcher, backend, store):
        github = make_github(permission="none")
        result = await dispatcher.handle_command(
            parse_commands("/reposignal hide"), issue_context(), github
        )

        assert result is None
        backend.classify_issue.assert_not_awaited()
        backend.write_log.assert_not_awaited()
        github.create_comment.assert_not_awaited()
        assert await store.list_jobs() == []

    @async_test
    async def test_malformed_batch_skips_lookup(self, dispatcher):
        github = make_github(permission="admin")
        result = await dispatcher.handle_command(
            parse_commands("/reposignal difficulty 11"), issue_context(), github
        )
        assert result is None
        github.get_collaborator_permission.assert_not_awaited()

    @async_test
    async def test_backend_failure_aborts_exchange(self, dispatcher, backend, store):
        github = make_github(permission="write")
        backend.classify_issue.side_effect = BackendAPIError("Failed to classify issue", 500)

        result = await dispatcher.handle_command(
            parse_commands("/reposignal type docs"), issue_context(), github
        )

        assert result is None
        github.create_comment.assert_not_awaited()
        backend.write_log.assert_not_awaited()
        # Command comment stays in place
        assert await store.list_jobs() == []

    @async_test
    async def test_confirmation_failure_schedules_nothing(self, dispatcher, store):
        github = make_github(permission="write")
        github.create_comment.side_effect = GitHubAPIError("POST failed: HTTP 403", 403)

        result = await dispatcher.handle_command(
            parse_commands("/reposignal type docs"), issue_context(), github
        )

        assert result is None
        assert await store.list_jobs() == []


class TestContributorDispatch:

    @async_test
    async def test_pr_author_rates_difficulty(self, dispatcher, backend, store):
        github = make_github(pull_request=merged_pr())
        result = await dispatcher.handle_command(
            parse_commands("/reposignal rate difficulty 4"), pr_context(), github
        )

        assert result.policy == Policy.CONTRIBUTOR
        backend.submit_feedback.assert_awaited_once_with(
            github_pr_id=990012,
            github_repo_id=42,
            difficulty_rating=4,
            responsiveness_rating=None,
        )
        backend.write_log.assert_awaited_once_with({
            "actorType": "contributor",
            "actorGithubId": None,
            "actorUsername": None,
            "action": "feedback_received",
            "entityType": "repo",
            "entityId": "repo#42",
            "context": {"difficulty_rating": 4, "responsiveness_rating": None},
        })
        github.create_comment.assert_awaited_once_with(
            "acme", "widgets", 12, FEEDBACK_CONFIRMATION
        )

        jobs = await store.list_jobs()
        assert {j.job.comment_id for j in jobs} == {6001, 9001}
        assert all(j.delay_ms == 60_000 for j in jobs)

    @async_test
    async def test_other_user_on_merged_pr(self, dispatcher, backend, store):
        github = make_github(pull_request=merged_pr())
        result = await dispatcher.handle_command(
            parse_commands("/reposignal rate responsiveness 1"),
            pr_context(login="mallory", github_id=303),
            github,
        )

        assert result is None
        backend.submit_feedback.assert_not_awaited()
        github.create_comment.assert_not_awaited()
        assert await store.list_jobs() == []

    @async_test
    async def test_rate_on_issue_thread(self, dispatcher, backend):
        github = make_github(pull_request=merged_pr())
        result = await dispatcher.handle_command(
            parse_commands("/reposignal rate difficulty 4"), issue_context(), github
        )
        assert result is None
        backend.submit_feedback.assert_not_awaited()

    @async_test
    async def test_duplicate_feedback_rejected_by_backend(self, dispatcher, backend, store):
        github = make_github(pull_request=merged_pr())
        backend.submit_feedback.side_effect = BackendAPIError("Failed to submit feedback", 409)

        result = await dispatcher.handle_command(
            parse_commands("/reposignal rate difficulty 4"), pr_context(), github
        )

        assert result is None
        backend.write_log.assert_not_awaited()
        github.create_comment.assert_not_awaited()
        assert await store.list_jobs() == []


class TestConfirmationText:

    def test_maintainer_confirmation_lists_changes(self):
        assert maintainer_confirmation(["difficulty 5", "type test"]) == (
            "✅ Issue updated: difficulty 5, type test"
        )
