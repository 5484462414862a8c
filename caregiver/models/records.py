"""Pydantic models for the caregiver records.

Field names are snake_case in Python and camelCase on the wire
(``patient_id`` ↔ ``patientId``), matching the REST backend's JSON.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


def new_id() -> str:
    return uuid.uuid4().hex[:12]


class Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=new_id)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Patient(Record):
    name: str
    age: int = 0
    condition: str = ""


class Medicine(Record):
    patient_id: str
    name: str
    dosage: str = ""
    schedule: str = Field(pattern=HHMM_PATTERN)  # HH:MM
    stock: int = Field(default=30, ge=0)


class Reminder(Record):
    patient_id: str
    task: str
    time: str = Field(pattern=HHMM_PATTERN)  # HH:MM
    completed: bool = False


class DoctorNote(Record):
    patient_id: str
    note: str
    timestamp: datetime = Field(default_factory=datetime.now)


class Alert(Record):
    """Transient notification; never persisted."""

    type: Literal["critical", "info"]
    title: str
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)
    source_id: Optional[str] = None
    source_type: Optional[Literal["medicine", "reminder"]] = None


# ── Request bodies ─────────────────────────────────────────────────


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PatientCreate(_Payload):
    name: str = Field(min_length=1)
    age: int = Field(default=0, ge=0)
    condition: str = ""


class MedicineCreate(_Payload):
    patient_id: str
    name: str = Field(min_length=1)
    dosage: str = ""
    schedule: str = Field(pattern=HHMM_PATTERN)
    stock: Optional[int] = Field(default=None, ge=0)


class ReminderCreate(_Payload):
    patient_id: str
    task: str = Field(min_length=1)
    time: str = Field(pattern=HHMM_PATTERN)


class DoctorNoteCreate(_Payload):
    patient_id: str
    note: str = Field(min_length=1)


class RescheduleRequest(_Payload):
    time: str = Field(pattern=HHMM_PATTERN)


class PatientSummary(_Payload):
    patient: Patient
    medicines: list[Medicine]
    reminders: list[Reminder]
    notes: list[DoctorNote]
