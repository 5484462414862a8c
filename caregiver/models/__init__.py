"""Pydantic models for caregiver records and transcripts."""

from .records import (
    Alert,
    DoctorNote,
    DoctorNoteCreate,
    Medicine,
    MedicineCreate,
    Patient,
    PatientCreate,
    PatientSummary,
    Reminder,
    ReminderCreate,
    RescheduleRequest,
)
from .transcript import TranscriptLog, TranscriptTurn

__all__ = [
    "Alert",
    "DoctorNote",
    "DoctorNoteCreate",
    "Medicine",
    "MedicineCreate",
    "Patient",
    "PatientCreate",
    "PatientSummary",
    "Reminder",
    "ReminderCreate",
    "RescheduleRequest",
    "TranscriptLog",
    "TranscriptTurn",
]
