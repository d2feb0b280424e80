"""
Unit Tests for the Backend API Client and Activity Log

Test coverage for:
- Bearer credential on every request
- Endpoint paths and payload shapes
- Anonymous feedback (no actor on the wire)
- Error mapping to BackendAPIError
- Actor identity rules of the activity log
"""

import json
import logging

import httpx
import pytest

from reposignal.activity_log import ActivityLogger, ActorType, EntityType, LogEntry
from reposignal.backend_api import BackendAPI, BackendAPIError, actor_descriptor

from tests.conftest import async_test, make_backend

API_KEY = "secret-bot-key"


class RecordingTransport:
    """Collects requests and answers each with a canned response."""

    def __init__(self, status_code: int = 200, body=None):
        self.requests = []
        self.status_code = status_code
        self.body = {"ok": True} if body is None else body

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)

    @property
    def last_json(self):
        return json.loads(self.requests[-1].content)


def make_api(handler) -> BackendAPI:
    return BackendAPI("http://backend.test/", API_KEY, transport=httpx.MockTransport(handler))


class TestRequests:

    @async_test
    async def test_bearer_header(self):
        recorder = RecordingTransport()
        await make_api(recorder).write_log({"action": "x"})

        request = recorder.requests[0]
        assert request.headers["Authorization"] == f"Bearer {API_KEY}"
        assert request.url == "http://backend.test/bot/logs"

    @async_test
    async def test_classify_sends_only_present_fields(self):
        recorder = RecordingTransport()
        await make_api(recorder).classify_issue(
            github_repo_id=42,
            github_issue_id=700007,
            actor=actor_descriptor("user", 101, "alice"),
            difficulty=3,
        )

        assert recorder.requests[0].url.path == "/bot/issues/classify"
        assert recorder.last_json == {
            "githubRepoId": 42,
            "githubIssueId": 700007,
            "actor": {"type": "user", "githubId": 101, "username": "alice"},
            "difficulty": 3,
        }

    @async_test
    async def test_feedback_has_no_actor(self):
        recorder = RecordingTransport()
        await make_api(recorder).submit_feedback(
            github_pr_id=990012, github_repo_id=42, difficulty_rating=4
        )

        body = recorder.last_json
        assert body == {
            "githubPrId": 990012,
            "githubRepoId": 42,
            "difficultyRating": 4,
            "responsivenessRating": None,
        }
        assert "actor" not in body

    @async_test
    async def test_delete_issue_uses_delete_verb(self):
        recorder = RecordingTransport()
        await make_api(recorder).delete_issue(42, 3, actor_descriptor("bot"))

        request = recorder.requests[0]
        assert request.method == "DELETE"
        assert request.url.path == "/bot/issues"
        assert recorder.last_json["actor"]["type"] == "bot"

    @async_test
    async def test_add_repository_drops_missing_fields(self):
        recorder = RecordingTransport()
        await make_api(recorder).add_repository(
            installation_id=77, github_repo_id=42, owner="acme", name="widgets", state="off"
        )
        assert recorder.last_json == {
            "installationId": 77,
            "githubRepoId": 42,
            "owner": "acme",
            "name": "widgets",
            "state": "off",
        }

    @async_test
    async def test_settings_path(self):
        recorder = RecordingTransport()
        await make_api(recorder).update_repository_settings(42, {"state": "public"})
        assert recorder.requests[0].url.path == "/bot/repositories/42/settings"
        assert recorder.last_json == {"repoId": 42, "state": "public"}

    @async_test
    async def test_frameworks_flattened(self):
        recorder = RecordingTransport(body={
            "frontend": [{"matchingName": "react"}],
            "backend": [{"matchingName": "django"}, {"matchingName": "fastapi"}],
        })
        frameworks = await make_api(recorder).get_frameworks()
        assert [f["matchingName"] for f in frameworks] == ["react", "django", "fastapi"]

    @async_test
    async def test_empty_response_body(self):
        def handler(request):
            return httpx.Response(204)

        assert await make_api(handler).write_log({"action": "x"}) == {}


class TestErrors:

    @async_test
    async def test_http_error_raises(self):
        recorder = RecordingTransport(status_code=409, body={"error": "exists"})
        with pytest.raises(BackendAPIError) as exc_info:
            await make_api(recorder).submit_feedback(1, 2, difficulty_rating=3)
        assert exc_info.value.status_code == 409

    @async_test
    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(BackendAPIError) as exc_info:
            await make_api(handler).get_domains()
        assert exc_info.value.status_code is None

    @async_test
    async def test_credential_never_logged(self, caplog):
        recorder = RecordingTransport(status_code=500)
        with caplog.at_level(logging.DEBUG):
            with pytest.raises(BackendAPIError):
                await make_api(recorder).write_log({"action": "x"})
        assert API_KEY not in caplog.text


class TestActivityLog:

    def test_entry_shape(self):
        entry = LogEntry(ActorType.SYSTEM, "comment_cleaned_up", EntityType.COMMENT, "comment#1")
        assert entry.to_dict() == {
            "actorType": "system",
            "actorGithubId": None,
            "actorUsername": None,
            "action": "comment_cleaned_up",
            "entityType": "comment",
            "entityId": "comment#1",
            "context": None,
        }

    @async_test
    async def test_maintainer_carries_identity(self):
        backend = make_backend()
        await ActivityLogger(backend).log_maintainer(
            101, "alice", "settings_updated", EntityType.REPO, "repo#42"
        )
        sent = backend.write_log.await_args.args[0]
        assert sent["actorType"] == "maintainer"
        assert (sent["actorGithubId"], sent["actorUsername"]) == (101, "alice")

    @async_test
    async def test_contributor_is_anonymous(self):
        backend = make_backend()
        await ActivityLogger(backend).log_contributor(
            "feedback_received", EntityType.REPO, "repo#42", {"difficulty_rating": 4}
        )
        sent = backend.write_log.await_args.args[0]
        assert sent["actorType"] == "contributor"
        assert sent["actorGithubId"] is None
        assert sent["actorUsername"] is None

    @async_test
    async def test_bot_entry(self):
        backend = make_backend()
        await ActivityLogger(backend).log_bot(
            "issue_nudge_posted", EntityType.ISSUE, "issue#9", {"issueNumber": 3}
        )
        sent = backend.write_log.await_args.args[0]
        assert sent["actorType"] == "bot"
        assert sent["context"] == {"issueNumber": 3}
