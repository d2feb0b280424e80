"""
Command Grammar

Parses free-form comment text into typed Reposignal commands.

Grammar (keywords case-insensitive, tokens separated by any whitespace):

    command      := TRIGGER maintainer | TRIGGER "rate" rating
    maintainer   := "difficulty" LEVEL | "type" ISSUE_TYPE | "hide"
    rating       := "difficulty" LEVEL | "responsiveness" LEVEL
    TRIGGER      := "/reposignal"
    LEVEL        := "1" | "2" | "3" | "4" | "5"
    ISSUE_TYPE   := "docs" | "bug" | "feature" | "refactor" | "test" | "infra"

A comment may contain any number of commands. An argument outside its
domain makes that command a non-match; it is never an error.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, List, Union, Dict, Tuple, Callable

TRIGGER = "/reposignal"
RATE_KEYWORD = "rate"
LEVEL_RANGE = range(1, 6)
LEVEL_TOKENS = frozenset(str(level) for level in LEVEL_RANGE)


class IssueType(str, Enum):
    """Issue types accepted by `/reposignal type`."""
    DOCS = "docs"
    BUG = "bug"
    FEATURE = "feature"
    REFACTOR = "refactor"
    TEST = "test"
    INFRA = "infra"


class ArgumentKind(str, Enum):
    """Typed argument domains of the grammar."""
    NONE = "none"
    LEVEL = "level"
    ISSUE_TYPE = "issue_type"


# -----------------------------------------------------------------------------
# Commands (immutable, payload only)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class SetDifficulty:
    level: int


@dataclass(frozen=True)
class SetType:
    issue_type: IssueType


@dataclass(frozen=True)
class Hide:
    pass


@dataclass(frozen=True)
class RateDifficulty:
    level: int


@dataclass(frozen=True)
class RateResponsiveness:
    level: int


MaintainerCommand = Union[SetDifficulty, SetType, Hide]
RateCommand = Union[RateDifficulty, RateResponsiveness]
Command = Union[SetDifficulty, SetType, Hide, RateDifficulty, RateResponsiveness]

Production = Tuple[ArgumentKind, Callable[..., Command]]

MAINTAINER_GRAMMAR: Dict[str, Production] = {
    "difficulty": (ArgumentKind.LEVEL, SetDifficulty),
    "type": (ArgumentKind.ISSUE_TYPE, SetType),
    "hide": (ArgumentKind.NONE, Hide),
}

RATE_GRAMMAR: Dict[str, Production] = {
    "difficulty": (ArgumentKind.LEVEL, RateDifficulty),
    "responsiveness": (ArgumentKind.LEVEL, RateResponsiveness),
}


@dataclass(frozen=True)
class CommandBatch:
    """
    Every command found in one comment.

    `commands` keeps document order. The properties resolve each field to
    its first occurrence, so repeated commands never produce two values.
    """
    commands: Tuple[Command, ...] = ()
    triggered: bool = False
    rate_requested: bool = False

    def _first(self, kind: type) -> Optional[Command]:
        for command in self.commands:
            if isinstance(command, kind):
                return command
        return None

    @property
    def difficulty(self) -> Optional[int]:
        command = self._first(SetDifficulty)
        return command.level if command else None

    @property
    def issue_type(self) -> Optional[IssueType]:
        command = self._first(SetType)
        return command.issue_type if command else None

    @property
    def hide(self) -> bool:
        return self._first(Hide) is not None

    @property
    def difficulty_rating(self) -> Optional[int]:
        command = self._first(RateDifficulty)
        return command.level if command else None

    @property
    def responsiveness_rating(self) -> Optional[int]:
        command = self._first(RateResponsiveness)
        return command.level if command else None

    @property
    def has_maintainer_commands(self) -> bool:
        return self.difficulty is not None or self.issue_type is not None or self.hide

    @property
    def has_ratings(self) -> bool:
        return self.difficulty_rating is not None or self.responsiveness_rating is not None


# -----------------------------------------------------------------------------
# Tokenizer & parser
# -----------------------------------------------------------------------------
# Markdown and punctuation hugging a token, e.g. `/reposignal hide` or "hide."
TOKEN_WRAPPERS = "`*_~.,;:!?()[]{}\"'"


def tokenize(text: str) -> List[str]:
    """
    Split comment text into lowercase whitespace-delimited tokens.

    Surrounding markdown and punctuation is stripped from each token; the
    argument domains are still checked on the cleaned token.
    """
    tokens = (token.strip(TOKEN_WRAPPERS) for token in text.lower().split())
    return [token for token in tokens if token]


def _parse_argument(kind: ArgumentKind, token: Optional[str]) -> Tuple[bool, object]:
    """Return (matched, value) for a typed argument token."""
    if kind == ArgumentKind.NONE:
        return True, None
    if token is None:
        return False, None
    if kind == ArgumentKind.LEVEL:
        if token in LEVEL_TOKENS:
            return True, int(token)
        return False, None
    if kind == ArgumentKind.ISSUE_TYPE:
        try:
            return True, IssueType(token)
        except ValueError:
            return False, None
    return False, None


def _apply(grammar: Dict[str, Production], tokens: List[str], pos: int) -> Optional[Command]:
    """Match one production of `grammar` starting at tokens[pos]."""
    if pos >= len(tokens) or tokens[pos] not in grammar:
        return None
    kind, build = grammar[tokens[pos]]
    arg_token = tokens[pos + 1] if pos + 1 < len(tokens) else None
    matched, value = _parse_argument(kind, arg_token)
    if not matched:
        return None
    return build() if kind == ArgumentKind.NONE else build(value)


def parse_commands(text: str) -> CommandBatch:
    """
    Parse every command in a comment body.

    Text without the trigger token returns an empty, untriggered batch.
    """
    if not text:
        return CommandBatch()

    tokens = tokenize(text)
    commands: List[Command] = []
    triggered = False
    rate_requested = False

    for pos, token in enumerate(tokens):
        if token != TRIGGER:
            continue
        triggered = True
        nxt = pos + 1
        if nxt < len(tokens) and tokens[nxt] == RATE_KEYWORD:
            rate_requested = True
            command = _apply(RATE_GRAMMAR, tokens, nxt + 1)
        else:
            command = _apply(MAINTAINER_GRAMMAR, tokens, nxt)
        if command is not None:
            commands.append(command)

    return CommandBatch(
        commands=tuple(commands),
        triggered=triggered,
        rate_requested=rate_requested,
    )


def describe_changes(batch: CommandBatch) -> List[str]:
    """Human-readable list of applied classification fields."""
    changes: List[str] = []
    if batch.difficulty is not None:
        changes.append(f"difficulty {batch.difficulty}")
    if batch.issue_type is not None:
        changes.append(f"type {batch.issue_type.value}")
    if batch.hide:
        changes.append("hidden from discovery")
    return changes
