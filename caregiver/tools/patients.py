"""Patient roster tools: register a patient, read back the roster."""

from __future__ import annotations

import logging
from typing import Any

from caregiver.tools.base import BaseTool, ToolResult, missing_arguments

log = logging.getLogger("caregiver.tools.patients")


class AddPatientTool(BaseTool):
    @property
    def name(self) -> str:
        return "addPatient"

    @property
    def description(self) -> str:
        return "Register a new patient in the system. Use this when user wants to add a patient."

    @property
    def parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Full name of the patient"},
                "age": {"type": "number", "description": "Age of the patient in years"},
                "condition": {
                    "type": "string",
                    "description": "Medical condition or health issue of the patient",
                },
            },
            "required": ["name", "age", "condition"],
        }

    async def execute(self, **kwargs: Any) -> ToolResult:
        problem = missing_arguments(kwargs, "name")
        if problem:
            return problem

        name = str(kwargs["name"]).strip()
        try:
            age = int(float(kwargs.get("age") or 0))
        except (TypeError, ValueError):
            return ToolResult.failure(f"Invalid age: {kwargs.get('age')}")

        patient = self._state.add_patient(name, age, str(kwargs.get("condition") or ""))
        return ToolResult(
            success=True,
            message=f"Patient {name} added successfully",
            data={"patientId": patient.id},
        )


class ListStatusTool(BaseTool):
    @property
    def name(self) -> str:
        return "listStatus"

    @property
    def description(self) -> str:
        return (
            "Get a summary of all current patients in the system. "
            'Use when user asks "who are the patients" or "list patients".'
        )

    @property
    def parameters_schema(self) -> dict:
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> ToolResult:
        patients = self._state.patients
        if not patients:
            return ToolResult(success=True, message="No patients registered yet.")

        return ToolResult(
            success=True,
            message=f"Current patients: {', '.join(p.name for p in patients)}",
            data={
                "patients": [
                    {"name": p.name, "age": p.age, "condition": p.condition}
                    for p in patients
                ],
            },
        )
