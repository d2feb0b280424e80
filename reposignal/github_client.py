"""
GitHub REST API Client

Thin async wrapper around the collaboration-platform endpoints the bot needs:
- Collaborator permission level
- Pull request lookup (merge state, author)
- Create / delete issue comments
- Repository details and languages (installation sync)

Every call is a suspension point. Non-2xx responses and transport errors
raise GitHubAPIError carrying the HTTP status when there is one.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any, Callable, Tuple

import httpx
import jwt

logger = logging.getLogger("github_client")

GITHUB_API_BASE = "https://api.github.com"
GITHUB_ACCEPT = "application/vnd.github+json"
DEFAULT_TIMEOUT = 30.0

# Refresh installation tokens this long before GitHub expires them
TOKEN_REFRESH_MARGIN_SECONDS = 300

# GitHub rejects app JWTs valid for more than 10 minutes
APP_JWT_BACKDATE_SECONDS = 60
APP_JWT_LIFETIME_SECONDS = 540


class GitHubAPIError(Exception):
    """Raised when a GitHub API call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class PullRequest:
    """Pull request fields the contributor policy relies on."""
    id: int
    number: int
    merged: bool
    author_id: Optional[int]
    author_login: Optional[str]
    state: str


class GitHubClient:
    """GitHub client authorized with a single token."""

    def __init__(
        self,
        token: str,
        api_base: str = GITHUB_API_BASE,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": GITHUB_ACCEPT,
        }
        self._timeout = timeout
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.api_base}{path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=self._headers, json=json)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise GitHubAPIError(
                f"{method} {path} failed: HTTP {e.response.status_code}",
                e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise GitHubAPIError(f"{method} {path} failed: {e.__class__.__name__}: {e}") from e

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def get_collaborator_permission(self, owner: str, repo: str, username: str) -> str:
        """Return the permission level (admin, maintain, write, triage, read, none)."""
        data = await self._request(
            "GET", f"/repos/{owner}/{repo}/collaborators/{username}/permission"
        )
        return data.get("permission", "none")

    async def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequest:
        data = await self._request("GET", f"/repos/{owner}/{repo}/pulls/{number}")
        user = data.get("user") or {}
        return PullRequest(
            id=data["id"],
            number=data["number"],
            merged=bool(data.get("merged")),
            author_id=user.get("id"),
            author_login=user.get("login"),
            state=data.get("state", "unknown"),
        )

    async def create_comment(self, owner: str, repo: str, issue_number: int, body: str) -> int:
        """Post a comment on an issue or pull request thread; returns the comment id."""
        data = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{issue_number}/comments",
            json={"body": body},
        )
        return data["id"]

    async def delete_comment(self, owner: str, repo: str, comment_id: int) -> None:
        await self._request("DELETE", f"/repos/{owner}/{repo}/issues/comments/{comment_id}")

    async def get_repository(self, owner: str, repo: str) -> Dict[str, Any]:
        return await self._request("GET", f"/repos/{owner}/{repo}")

    async def list_languages(self, owner: str, repo: str) -> Dict[str, int]:
        """Language name -> bytes of code."""
        return await self._request("GET", f"/repos/{owner}/{repo}/languages") or {}


class GitHubClientFactory:
    """
    Builds clients authorized for a given installation.

    With an app id and private key configured, every token request is
    authorized by a freshly signed RS256 app JWT, and installation access
    tokens minted through POST /app/installations/{id}/access_tokens are
    cached until shortly before expiry. Without app credentials, the static
    token is used for every installation.
    """

    def __init__(
        self,
        api_base: str = GITHUB_API_BASE,
        token: Optional[str] = None,
        app_id: Optional[str] = None,
        private_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.api_base = api_base.rstrip("/")
        self._token = token
        self._app_id = app_id
        self._private_key = private_key
        self._timeout = timeout
        self._transport = transport
        self._clock = clock
        # installation id -> (token, expiry as epoch seconds)
        self._tokens: Dict[int, Tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    @property
    def uses_app_auth(self) -> bool:
        return bool(self._app_id and self._private_key)

    async def for_installation(self, installation_id: int) -> GitHubClient:
        token = await self._installation_token(installation_id)
        return GitHubClient(
            token,
            api_base=self.api_base,
            timeout=self._timeout,
            transport=self._transport,
        )

    def app_jwt(self) -> str:
        """Sign a short-lived app JWT. Issued a minute in the past for clock drift."""
        now = int(self._clock())
        claims = {
            "iat": now - APP_JWT_BACKDATE_SECONDS,
            "exp": now + APP_JWT_LIFETIME_SECONDS,
            "iss": str(self._app_id),
        }
        try:
            return jwt.encode(claims, self._private_key, algorithm="RS256")
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise GitHubAPIError(f"Failed to sign app JWT for app {self._app_id}: {e}") from e

    async def _installation_token(self, installation_id: int) -> str:
        if not self.uses_app_auth:
            if not self._token:
                raise GitHubAPIError("No GitHub credentials configured")
            return self._token

        async with self._lock:
            cached = self._tokens.get(installation_id)
            if cached and cached[1] - TOKEN_REFRESH_MARGIN_SECONDS > self._clock():
                return cached[0]

            url = f"{self.api_base}/app/installations/{installation_id}/access_tokens"
            headers = {"Authorization": f"Bearer {self.app_jwt()}", "Accept": GITHUB_ACCEPT}
            try:
                async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                    response = await client.post(url, headers=headers)
                    response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise GitHubAPIError(
                    f"Installation token request failed for {installation_id}: "
                    f"HTTP {e.response.status_code}",
                    e.response.status_code,
                ) from e
            except httpx.HTTPError as e:
                raise GitHubAPIError(f"Installation token request failed for {installation_id}: {e}") from e

            data = response.json()
            expires_at = datetime.fromisoformat(data["expires_at"].replace("Z", "+00:00")).timestamp()
            self._tokens[installation_id] = (data["token"], expires_at)
            logger.info(f"Minted access token for installation {installation_id}")
            return data["token"]
