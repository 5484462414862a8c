"""setReminder: a one-off task for a patient at HH:MM."""

from __future__ import annotations

from typing import Any

from caregiver.tools.base import (
    BaseTool,
    ToolResult,
    invalid_time,
    missing_arguments,
    normalize_time,
    patient_not_found,
)


class SetReminderTool(BaseTool):
    @property
    def name(self) -> str:
        return "setReminder"

    @property
    def description(self) -> str:
        return (
            "Set a reminder or alert for a patient. Use this for tasks like "
            '"check blood pressure", "doctor appointment", etc.'
        )

    @property
    def parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "patientName": {
                    "type": "string",
                    "description": "Name of the patient for this reminder",
                },
                "task": {
                    "type": "string",
                    "description": 'Description of the task (e.g., "Check blood pressure")',
                },
                "time": {
                    "type": "string",
                    "description": 'Time for the reminder in 24-hour format HH:MM (e.g., "15:30")',
                },
            },
            "required": ["patientName", "task", "time"],
        }

    async def execute(self, **kwargs: Any) -> ToolResult:
        problem = missing_arguments(kwargs, "patientName", "task", "time")
        if problem:
            return problem

        patient_name = str(kwargs["patientName"])
        task = str(kwargs["task"]).strip()

        patient = self._state.find_patient(patient_name)
        if patient is None:
            return patient_not_found(patient_name)

        try:
            time = normalize_time(kwargs["time"])
        except ValueError:
            return invalid_time(kwargs["time"])

        reminder = self._state.add_reminder(patient.id, task, time)
        return ToolResult(
            success=True,
            message=f'Reminder "{task}" set for {patient_name} at {time}',
            data={"reminderId": reminder.id, "patientId": patient.id},
        )
