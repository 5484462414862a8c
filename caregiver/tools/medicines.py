"""addMedicine: schedule a daily dose for a patient named by voice.

The model passes the patient's name as heard, so it is resolved against
the roster (exact match first, then partial).  A stock of zero or none
means the caregiver didn't say; the default stock applies.
"""

from __future__ import annotations

import logging
from typing import Any

from caregiver.tools.base import (
    BaseTool,
    ToolResult,
    invalid_time,
    missing_arguments,
    normalize_time,
    patient_not_found,
)

log = logging.getLogger("caregiver.tools.medicines")


class AddMedicineTool(BaseTool):
    @property
    def name(self) -> str:
        return "addMedicine"

    @property
    def description(self) -> str:
        return (
            "Add a medicine schedule for an existing patient. "
            "Use this when user wants to add medicine or medication."
        )

    @property
    def parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "patientName": {
                    "type": "string",
                    "description": "Name of the patient who needs this medicine",
                },
                "medicineName": {
                    "type": "string",
                    "description": "Name of the medicine or medication",
                },
                "dosage": {
                    "type": "string",
                    "description": 'Dosage amount (e.g., "2 tablets", "5ml", "1 pill")',
                },
                "schedule": {
                    "type": "string",
                    "description": 'Time to take medicine in 24-hour format HH:MM (e.g., "09:00", "21:00")',
                },
                "stock": {
                    "type": "number",
                    "description": "Number of doses/pills/tablets available in stock",
                },
            },
            "required": ["patientName", "medicineName", "dosage", "schedule", "stock"],
        }

    async def execute(self, **kwargs: Any) -> ToolResult:
        problem = missing_arguments(kwargs, "patientName", "medicineName", "schedule")
        if problem:
            return problem

        patient_name = str(kwargs["patientName"])
        medicine_name = str(kwargs["medicineName"]).strip()

        patient = self._state.find_patient(patient_name)
        if patient is None:
            log.info("addMedicine: no patient matches %r", patient_name)
            return patient_not_found(patient_name)

        try:
            schedule = normalize_time(kwargs["schedule"])
        except ValueError:
            return invalid_time(kwargs["schedule"])

        try:
            stock = int(float(kwargs.get("stock") or 0))
        except (TypeError, ValueError):
            stock = 0

        medicine = self._state.add_medicine(
            patient.id,
            medicine_name,
            str(kwargs.get("dosage") or ""),
            schedule,
            max(stock, 0),
        )
        return ToolResult(
            success=True,
            message=f"Medicine {medicine_name} scheduled for {patient_name} at {schedule}",
            data={"medicineId": medicine.id, "patientId": patient.id, "stock": medicine.stock},
        )
