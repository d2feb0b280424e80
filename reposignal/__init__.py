"""
Reposignal Bot Module

GitHub App companion for the Reposignal backend. Helps maintainers classify
issues through slash commands and collects anonymous feedback from
contributors on merged pull requests.

Features:
- Command grammar for `/reposignal ...` comments
  * Maintainer commands: difficulty <1-5>, type <docs|bug|feature|refactor|test|infra>, hide
  * Contributor commands: rate difficulty <1-5>, rate responsiveness <1-5>
- Context validation (fail closed, silent deny)
  * Maintainers: write / maintain / admin permission only
  * Contributors: author of the merged pull request only
- Action dispatch: ONE backend mutation + ONE confirmation per command batch
- Ephemeral messages: every comment the bot posts or consumes is deleted later
  * Durable cleanup queue (channel "reposignal-cleanup", job "delete-comment")
  * Worker pool (5 executors), 3 attempts, exponential backoff from 5s
- Installation lifecycle sync with repository metadata matching

The bot owns ZERO persistent state besides the cleanup queue.
All data is stored in the backend via /bot/* endpoints.
"""

__version__ = "1.2.0"

SERVICE_NAME = "reposignal-bot"
