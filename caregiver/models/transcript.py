"""Rolling conversation transcript kept by a voice session."""

from __future__ import annotations

from collections import deque
from typing import Literal

from pydantic import BaseModel

Role = Literal["user", "assistant"]


class TranscriptTurn(BaseModel):
    role: Role
    text: str


class TranscriptLog:
    """The last ``max_turns`` completed turns, oldest first."""

    def __init__(self, max_turns: int = 10) -> None:
        self._turns: deque[TranscriptTurn] = deque(maxlen=max_turns)

    def append(self, role: Role, text: str) -> TranscriptTurn:
        turn = TranscriptTurn(role=role, text=text)
        self._turns.append(turn)
        return turn

    @property
    def turns(self) -> list[TranscriptTurn]:
        return list(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def clear(self) -> None:
        self._turns.clear()
