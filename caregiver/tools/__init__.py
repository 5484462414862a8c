"""Model-callable tools for the caregiver assistant."""

from .base import BaseTool, ToolResult
from .dispatcher import ToolDispatcher
from .medicines import AddMedicineTool
from .patients import AddPatientTool, ListStatusTool
from .reminders import SetReminderTool

__all__ = [
    "AddMedicineTool",
    "AddPatientTool",
    "BaseTool",
    "ListStatusTool",
    "SetReminderTool",
    "ToolDispatcher",
    "ToolResult",
]
