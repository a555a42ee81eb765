from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.ai_feature.sandbox import ExecutionResult


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Turn(BaseModel):
    """
    One message in a conversation. Frozen once built.

    An assistant turn that carries generated code always carries the
    execution result for it as well (possibly a failed one).
    """

    role: Role
    text: str
    timestamp: datetime = Field(default_factory=_utcnow)
    generated_code: Optional[str] = None
    execution: Optional[ExecutionResult] = None
    action: Optional[str] = None
    suggestions: Tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def code_requires_execution(self) -> "Turn":
        if self.generated_code is not None and self.execution is None:
            raise ValueError("a turn with generated code must carry its execution result")
        return self


class ConversationStore:
    """
    Append-only, ordered turn history of one session.

    Not thread-safe: a session is driven by one orchestration at a time.
    """

    def __init__(self):
        self._turns: List[Turn] = []

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)

    def recent(self, n: int) -> List[Turn]:
        """Last n turns, oldest first. Fewer if the history is shorter."""
        if n <= 0:
            return []
        return list(self._turns[-n:])

    def all(self) -> Tuple[Turn, ...]:
        return tuple(self._turns)

    def clear(self) -> None:
        self._turns = []

    def __len__(self) -> int:
        return len(self._turns)


class Session:
    def __init__(self, session_id: str, store: Optional[ConversationStore] = None):
        self.session_id = session_id
        self.created_at = _utcnow()
        self.store = store if store is not None else ConversationStore()

    def __repr__(self) -> str:
        return f"Session(session_id={self.session_id!r}, turns={len(self.store)})"


class SessionRegistry:
    """In-memory sessions for the lifetime of the process."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(session_id)
            self._sessions[session_id] = session
        return session

    def clear(self, session_id: str) -> None:
        """Drop the session and its history. Unknown ids are ignored."""
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.store.clear()

    def reset(self) -> None:
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)
