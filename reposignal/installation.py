"""
Installation Lifecycle

Handles installation.created and installation_repositories.added.

Flow:
1. Installation created -> sync installation with the backend
2. Each repository is added with state 'off' and its GitHub metadata
3. The backend flips repositories to 'public' once setup completes there

Metadata matching:
- GitHub description becomes the reposignal description
- Languages from the languages API, plus topics naming a known language
- Frameworks and domains from repository topics
- Matching is against canonical names from /meta/*, after normalization
  (lowercase, whitespace removed)

A failure on one repository is logged and does not stop the others.
"""

import logging
import re
from typing import Dict, Any, List

from .activity_log import EntityType
from .backend_api import BackendAPIError, actor_descriptor
from .github_client import GitHubAPIError, GitHubClient
from .runtime import BotRuntime

logger = logging.getLogger("installation")

_WHITESPACE = re.compile(r"\s+")


def normalize_for_matching(value: str) -> str:
    """Lowercase and strip all whitespace."""
    return _WHITESPACE.sub("", value.lower())


def account_type(installation: Dict[str, Any]) -> str:
    account = installation.get("account") or {}
    return "org" if account.get("type") == "Organization" else "user"


def match_metadata(
    api_languages: Dict[str, int],
    topics: List[str],
    canonical_languages: List[Dict[str, Any]],
    canonical_frameworks: List[Dict[str, Any]],
    canonical_domains: List[Dict[str, Any]],
) -> Dict[str, List[Any]]:
    """
    Map GitHub languages and topics onto canonical backend names.

    Returns {"languages": [{matchingName, bytes}], "frameworks":
    [{matchingName, source}], "domains": [matchingName]}.
    """
    language_names = {l["matchingName"] for l in canonical_languages}
    framework_names = {f["matchingName"] for f in canonical_frameworks}
    domain_names = {d["matchingName"] for d in canonical_domains}

    languages: List[Dict[str, Any]] = []
    seen = set()
    for language, size in api_languages.items():
        name = normalize_for_matching(language)
        if name in language_names and name not in seen:
            languages.append({"matchingName": name, "bytes": size})
            seen.add(name)

    # Topics can name languages too; only add ones the API did not report
    for topic in topics:
        name = normalize_for_matching(topic)
        if name in language_names and name not in seen:
            languages.append({"matchingName": name, "bytes": 0})
            seen.add(name)

    frameworks = [
        {"matchingName": normalize_for_matching(t), "source": "inferred"}
        for t in topics
        if normalize_for_matching(t) in framework_names
    ]
    domains = [
        normalize_for_matching(t)
        for t in topics
        if normalize_for_matching(t) in domain_names
    ]
    return {"languages": languages, "frameworks": frameworks, "domains": domains}


async def add_repository_with_metadata(
    runtime: BotRuntime,
    github: GitHubClient,
    installation_id: int,
    repo: Dict[str, Any],
) -> bool:
    """Add one repository (state 'off') and push its metadata. Returns success."""
    owner, name = repo["full_name"].split("/", 1)
    try:
        details = await github.get_repository(owner, name)
        await runtime.backend.add_repository(
            installation_id=installation_id,
            github_repo_id=repo["id"],
            owner=owner,
            name=name,
            reposignal_description=details.get("description") or None,
            state="off",
            stars_count=details.get("stargazers_count"),
            forks_count=details.get("forks_count"),
            open_issues_count=details.get("open_issues_count"),
        )

        api_languages = await github.list_languages(owner, name)
        canonical_languages = await runtime.backend.get_languages()
        canonical_frameworks = await runtime.backend.get_frameworks()
        canonical_domains = await runtime.backend.get_domains()

        topics = details.get("topics") or []
        matched = match_metadata(
            api_languages, topics, canonical_languages, canonical_frameworks, canonical_domains
        )
        logger.debug(f"{owner}/{name} matched metadata: {matched}, topics: {topics}")

        if matched["languages"] or matched["frameworks"] or matched["domains"] or topics:
            await runtime.backend.update_repository_metadata(
                github_repo_id=repo["id"],
                actor=actor_descriptor("system"),
                languages=matched["languages"] or None,
                frameworks=matched["frameworks"] or None,
                domains=matched["domains"] or None,
                tags=topics or None,
                stars_count=details.get("stargazers_count"),
                forks_count=details.get("forks_count"),
                open_issues_count=details.get("open_issues_count"),
            )

        logger.info(f"Repository {owner}/{name} added with metadata")
        return True
    except (BackendAPIError, GitHubAPIError) as e:
        logger.error(f"Failed to add repository {owner}/{name} with metadata: {e}")
        return False


async def _sync_installation(runtime: BotRuntime, installation: Dict[str, Any]) -> int:
    account = installation.get("account") or {}
    result = await runtime.backend.sync_installation({
        "githubInstallationId": installation["id"],
        "accountType": account_type(installation),
        "accountLogin": account.get("login") or "",
    })
    return result["id"]


async def _add_repositories(
    runtime: BotRuntime,
    github: GitHubClient,
    backend_installation_id: int,
    repositories: List[Dict[str, Any]],
) -> None:
    for repo in repositories:
        await add_repository_with_metadata(runtime, github, backend_installation_id, repo)
        await runtime.activity.log_system("repository_added", EntityType.REPO, f"repo#{repo['id']}")


async def handle_installation_created(runtime: BotRuntime, payload: Dict[str, Any]) -> None:
    installation = payload["installation"]
    repositories = payload.get("repositories") or []
    try:
        backend_id = await _sync_installation(runtime, installation)
        github = await runtime.github_factory.for_installation(installation["id"])
        await _add_repositories(runtime, github, backend_id, repositories)
        await runtime.activity.log_system(
            "installation_created",
            EntityType.INSTALLATION,
            f"installation#{installation['id']}",
        )
        logger.info(f"Installation created: {installation['id']} with {len(repositories)} repositories")
    except (BackendAPIError, GitHubAPIError, KeyError) as e:
        logger.error(f"Failed to handle installation.created: {e}")


async def handle_installation_repositories_added(runtime: BotRuntime, payload: Dict[str, Any]) -> None:
    installation = payload["installation"]
    repositories = payload.get("repositories_added") or []
    try:
        backend_id = await _sync_installation(runtime, installation)
        github = await runtime.github_factory.for_installation(installation["id"])
        await _add_repositories(runtime, github, backend_id, repositories)
        logger.info(f"Added {len(repositories)} repositories to installation {installation['id']}")
    except (BackendAPIError, GitHubAPIError, KeyError) as e:
        logger.error(f"Failed to handle installation_repositories.added: {e}")
