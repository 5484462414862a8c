"""Routes function calls from the live model to the caregiver tools.

Every call yields exactly one ToolResult, including unknown names and
tools that raise, so the session can always answer the model.  Results
of successful mutations are tagged ``persistence: "accepted"``: the local
view has changed and the store write is still in flight.
"""

from __future__ import annotations

import logging
from typing import Any

from caregiver.state import AppState, WriteOutcome
from caregiver.tools.base import BaseTool, ToolResult
from caregiver.tools.medicines import AddMedicineTool
from caregiver.tools.patients import AddPatientTool, ListStatusTool
from caregiver.tools.reminders import SetReminderTool

log = logging.getLogger("caregiver.tools.dispatcher")

MUTATING_TOOLS = {"addPatient", "addMedicine", "setReminder"}


class ToolDispatcher:
    def __init__(self, state: AppState, tools: list[BaseTool] | None = None) -> None:
        self._state = state
        self._tools: dict[str, BaseTool] = {}
        for tool in tools if tools is not None else self._default_tools(state):
            self._tools[tool.name] = tool

    @staticmethod
    def _default_tools(state: AppState) -> list[BaseTool]:
        return [
            AddPatientTool(state),
            AddMedicineTool(state),
            SetReminderTool(state),
            ListStatusTool(state),
        ]

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def declarations(self) -> list[dict]:
        return [tool.declaration() for tool in self._tools.values()]

    async def dispatch(self, name: str, args: dict[str, Any] | None) -> ToolResult:
        tool = self._tools.get(name)
        if tool is None:
            log.warning("Model called unknown tool %r", name)
            return ToolResult.failure(f"Unknown function: {name}")

        log.info("Tool call: %s(%s)", name, args)
        try:
            result = await tool.execute(**(args or {}))
        except Exception as e:
            log.exception("Tool %s failed", name)
            return ToolResult.failure(str(e) or "Error executing function")

        if result.success and name in MUTATING_TOOLS:
            result.data["persistence"] = WriteOutcome.ACCEPTED.value
        log.info("Tool result: %s -> %s", name, result.message)
        return result
