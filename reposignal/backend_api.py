"""
Backend API Client

All bot -> backend communication goes through this client.
Uses ONLY the /bot/* and /meta/* endpoints of the Reposignal backend.

IMPORTANT:
- Every request carries the bearer credential; the credential is NEVER logged
- submit_feedback has NO actor parameter: contributor feedback is anonymous
  by construction
- Any non-2xx response or transport error raises BackendAPIError
"""

import logging
from typing import Optional, Dict, Any, List

import httpx

logger = logging.getLogger("backend_api")

DEFAULT_TIMEOUT = 30.0


class BackendAPIError(Exception):
    """Raised when a backend call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def actor_descriptor(
    actor_type: str,
    github_id: Optional[int] = None,
    username: Optional[str] = None,
) -> Dict[str, Any]:
    """Build the actor object expected by classify/metadata/delete endpoints."""
    return {
        "type": actor_type,
        "githubId": github_id,
        "username": username,
    }


class BackendAPI:
    """
    Async client for the Reposignal backend.

    A fresh httpx.AsyncClient is opened per request; `transport` may be
    supplied to route requests elsewhere (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }
        self._timeout = timeout
        self._transport = transport

    async def _request(
        self,
        method: str,
        endpoint: str,
        action: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{endpoint}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=self._headers, json=data)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"Failed to {action}: HTTP {status} from {endpoint}")
            raise BackendAPIError(f"Failed to {action}: {e.response.reason_phrase}", status) from e
        except httpx.HTTPError as e:
            logger.error(f"Failed to {action}: {e.__class__.__name__} calling {endpoint}")
            raise BackendAPIError(f"Failed to {action}: {e}") from e

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    # -------------------------------------------------------------------------
    # Installation lifecycle
    # -------------------------------------------------------------------------
    async def sync_installation(
        self,
        installation: Dict[str, Any],
        repositories: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """
        POST /bot/installations/sync

        installation: {githubInstallationId, accountType ('user'|'org'),
                       accountLogin, setupCompleted?}
        """
        payload: Dict[str, Any] = {"installation": installation}
        if repositories is not None:
            payload["repositories"] = repositories
        return await self._request("POST", "/bot/installations/sync", "sync installation", payload)

    async def add_repository(
        self,
        installation_id: int,
        github_repo_id: int,
        owner: str,
        name: str,
        reposignal_description: Optional[str] = None,
        state: Optional[str] = None,
        stars_count: Optional[int] = None,
        forks_count: Optional[int] = None,
        open_issues_count: Optional[int] = None,
    ) -> Dict[str, Any]:
        """POST /bot/repositories/add"""
        payload = {
            "installationId": installation_id,
            "githubRepoId": github_repo_id,
            "owner": owner,
            "name": name,
            "reposignalDescription": reposignal_description,
            "state": state,
            "starsCount": stars_count,
            "forksCount": forks_count,
            "openIssuesCount": open_issues_count,
        }
        return await self._request(
            "POST", "/bot/repositories/add", "add repository",
            {k: v for k, v in payload.items() if v is not None},
        )

    async def update_repository_metadata(
        self,
        github_repo_id: int,
        actor: Dict[str, Any],
        languages: Optional[List[Dict[str, Any]]] = None,
        frameworks: Optional[List[Dict[str, Any]]] = None,
        domains: Optional[List[str]] = None,
        tags: Optional[List[str]] = None,
        stars_count: Optional[int] = None,
        forks_count: Optional[int] = None,
        open_issues_count: Optional[int] = None,
    ) -> Dict[str, Any]:
        """POST /bot/repositories/metadata"""
        payload = {
            "githubRepoId": github_repo_id,
            "languages": languages,
            "frameworks": frameworks,
            "domains": domains,
            "tags": tags,
            "starsCount": stars_count,
            "forksCount": forks_count,
            "openIssuesCount": open_issues_count,
            "actor": actor,
        }
        return await self._request(
            "POST", "/bot/repositories/metadata", "update repository metadata",
            {k: v for k, v in payload.items() if v is not None},
        )

    async def update_repository_settings(
        self,
        repo_id: int,
        settings: Dict[str, Any],
        actor: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        POST /bot/repositories/{id}/settings

        settings may carry reposignalDescription, state, allowUnclassified,
        allowClassification, allowInference, feedbackEnabled.

        Kept for the backend contract. No webhook flow in this bot changes
        repository settings.
        """
        payload = {"repoId": repo_id, **settings}
        if actor is not None:
            payload["actor"] = actor
        return await self._request(
            "POST", f"/bot/repositories/{repo_id}/settings", "update repository settings", payload
        )

    # -------------------------------------------------------------------------
    # Issues & feedback
    # -------------------------------------------------------------------------
    async def classify_issue(
        self,
        github_repo_id: int,
        github_issue_id: int,
        actor: Dict[str, Any],
        difficulty: Optional[int] = None,
        issue_type: Optional[str] = None,
        hidden: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        POST /bot/issues/classify

        difficulty, issueType and hidden are independent; absent fields are
        left untouched by the backend. The backend writes the audit entry for
        classification using the supplied actor.
        """
        payload: Dict[str, Any] = {
            "githubRepoId": github_repo_id,
            "githubIssueId": github_issue_id,
            "actor": actor,
        }
        if difficulty is not None:
            payload["difficulty"] = difficulty
        if issue_type is not None:
            payload["issueType"] = issue_type
        if hidden is not None:
            payload["hidden"] = hidden
        return await self._request("POST", "/bot/issues/classify", "classify issue", payload)

    async def delete_issue(
        self,
        github_repo_id: int,
        github_issue_id: int,
        actor: Dict[str, Any],
    ) -> Dict[str, Any]:
        """DELETE /bot/issues"""
        payload = {
            "githubRepoId": github_repo_id,
            "githubIssueId": github_issue_id,
            "actor": actor,
        }
        return await self._request("DELETE", "/bot/issues", "delete issue", payload)

    async def submit_feedback(
        self,
        github_pr_id: int,
        github_repo_id: int,
        difficulty_rating: Optional[int] = None,
        responsiveness_rating: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        POST /bot/feedback

        ANONYMOUS: there is deliberately no actor field on this call.
        Duplicate feedback for the same pull request is rejected by the backend.
        """
        payload = {
            "githubPrId": github_pr_id,
            "githubRepoId": github_repo_id,
            "difficultyRating": difficulty_rating,
            "responsivenessRating": responsiveness_rating,
        }
        return await self._request("POST", "/bot/feedback", "submit feedback", payload)

    async def write_log(self, entry: Dict[str, Any]) -> Dict[str, Any]:
        """POST /bot/logs"""
        return await self._request("POST", "/bot/logs", "write log", entry)

    # -------------------------------------------------------------------------
    # Canonical metadata
    # -------------------------------------------------------------------------
    async def get_languages(self) -> List[Dict[str, Any]]:
        """GET /meta/languages"""
        return await self._request("GET", "/meta/languages", "fetch languages")

    async def get_frameworks(self) -> List[Dict[str, Any]]:
        """
        GET /meta/frameworks

        The backend groups frameworks by category
        ({"frontend": [...], "backend": [...], ...}); flatten to one list.
        """
        data = await self._request("GET", "/meta/frameworks", "fetch frameworks")
        if isinstance(data, list):
            return data
        frameworks: List[Dict[str, Any]] = []
        for category, items in data.items():
            if isinstance(items, list):
                frameworks.extend(items)
        logger.debug(f"Fetched {len(frameworks)} frameworks from {len(data)} categories")
        return frameworks

    async def get_domains(self) -> List[Dict[str, Any]]:
        """GET /meta/domains"""
        return await self._request("GET", "/meta/domains", "fetch domains")
