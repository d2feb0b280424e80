"""
Activity Log

Wraps backend log writes with the actor identity rules:

+-------------+----------------------+----------------------------------+
| Actor type  | Identity fields      | Used for                         |
+-------------+----------------------+----------------------------------+
| system      | always null          | autonomous events (cleanup, sync)|
| bot         | always null          | nudges, inferred actions         |
| maintainer  | github id + username | human-triggered actions          |
| contributor | ALWAYS null          | anonymous feedback               |
+-------------+----------------------+----------------------------------+

Only log_maintainer accepts identity arguments. The other methods have no
identity parameter, so a contributor entry can never carry one.
Entries are write-once and never read back.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any

from .backend_api import BackendAPI

logger = logging.getLogger("activity_log")


class ActorType(str, Enum):
    SYSTEM = "system"
    BOT = "bot"
    MAINTAINER = "maintainer"
    CONTRIBUTOR = "contributor"


class EntityType(str, Enum):
    REPO = "repo"
    ISSUE = "issue"
    INSTALLATION = "installation"
    FEEDBACK = "feedback"
    COMMENT = "comment"


@dataclass(frozen=True)
class LogEntry:
    """Immutable audit entry sent to POST /bot/logs."""
    actor_type: ActorType
    action: str
    entity_type: EntityType
    entity_id: str
    actor_github_id: Optional[int] = None
    actor_username: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actorType": self.actor_type.value,
            "actorGithubId": self.actor_github_id,
            "actorUsername": self.actor_username,
            "action": self.action,
            "entityType": self.entity_type.value,
            "entityId": self.entity_id,
            "context": self.context,
        }


class ActivityLogger:
    """Audit log writer bound to one backend client."""

    def __init__(self, backend: BackendAPI):
        self._backend = backend

    async def write(self, entry: LogEntry) -> None:
        await self._backend.write_log(entry.to_dict())
        logger.debug(f"Logged {entry.actor_type.value} action {entry.action} on {entry.entity_id}")

    async def log_system(
        self,
        action: str,
        entity_type: EntityType,
        entity_id: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log with system actor (autonomous events)."""
        await self.write(LogEntry(ActorType.SYSTEM, action, entity_type, entity_id, context=context))

    async def log_bot(
        self,
        action: str,
        entity_type: EntityType,
        entity_id: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log with bot actor (autonomous inference/actions)."""
        await self.write(LogEntry(ActorType.BOT, action, entity_type, entity_id, context=context))

    async def log_maintainer(
        self,
        github_id: int,
        username: str,
        action: str,
        entity_type: EntityType,
        entity_id: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log with maintainer actor (human-triggered actions).

        Part of the backend logging contract. The bot's own flows never call
        it: maintainer classifications are attributed by the backend from the
        actor descriptor sent with the mutation.
        """
        await self.write(LogEntry(
            ActorType.MAINTAINER,
            action,
            entity_type,
            entity_id,
            actor_github_id=github_id,
            actor_username=username,
            context=context,
        ))

    async def log_contributor(
        self,
        action: str,
        entity_type: EntityType,
        entity_id: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log with contributor actor. ALWAYS anonymous."""
        await self.write(LogEntry(ActorType.CONTRIBUTOR, action, entity_type, entity_id, context=context))
