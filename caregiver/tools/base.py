"""Tool interface for functions the voice model may call."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from caregiver.state import AppState


@dataclass
class ToolResult:
    success: bool
    message: str
    data: dict = field(default_factory=dict)

    def to_response(self) -> dict:
        """Payload sent back to the model as the function response."""
        response: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.data:
            response["data"] = self.data
        return response

    @classmethod
    def failure(cls, message: str) -> "ToolResult":
        return cls(success=False, message=message)


class BaseTool(ABC):
    """A named capability the model can invoke with JSON arguments."""

    def __init__(self, state: AppState) -> None:
        self._state = state

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters_schema(self) -> dict: ...

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult: ...

    def declaration(self) -> dict:
        """Function declaration in the shape the live API expects."""
        decl = {"name": self.name, "description": self.description}
        if self.parameters_schema.get("properties"):
            decl["parameters"] = self.parameters_schema
        return decl


def patient_not_found(name: str) -> ToolResult:
    return ToolResult.failure(f"Patient {name} not found. Please add the patient first.")


def missing_arguments(kwargs: dict, *names: str) -> ToolResult | None:
    missing = [n for n in names if kwargs.get(n) in (None, "")]
    if missing:
        return ToolResult.failure(f"Missing required argument(s): {', '.join(missing)}")
    return None


def normalize_time(value: str) -> str:
    """'9:05' → '09:05'.  Raises ValueError for anything that isn't HH:MM."""
    return datetime.strptime(str(value).strip(), "%H:%M").strftime("%H:%M")


def invalid_time(value: Any) -> ToolResult:
    return ToolResult.failure(
        f"Invalid time: {value}. Please use 24-hour HH:MM format."
    )
