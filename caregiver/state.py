"""Application state shared by the REST API and the voice tools.

AppState holds the in-memory view of every collection.  Each mutation
updates that view synchronously and then hands the write to the record
store as a background task, so callers (a voice tool answering the model,
a REST handler) never wait on the backend.

Write lifecycle::

    ACCEPTED   applied locally, store write in flight
    PERSISTED  store acknowledged the write
    FAILED     store rejected it (logged; the local view is kept)

``flush()`` awaits every in-flight write.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from caregiver.alerts import TITLE_REMINDER, AlertFeed
from caregiver.config import runtime_settings
from caregiver.errors import RecordStoreError, UnknownRecordError
from caregiver.models import (
    Alert,
    DoctorNote,
    Medicine,
    Patient,
    PatientSummary,
    Reminder,
)
from caregiver.models.records import Record
from caregiver.store import RecordStore

log = logging.getLogger("caregiver.state")


class WriteOutcome(str, Enum):
    ACCEPTED = "accepted"
    PERSISTED = "persisted"
    FAILED = "failed"


@dataclass(eq=False)
class PendingWrite:
    op: str              # create | update | delete
    collection: str
    record_id: str
    outcome: WriteOutcome = WriteOutcome.ACCEPTED
    error: str = ""
    task: Optional[asyncio.Task] = field(default=None, repr=False)


def _hhmm(moment: datetime) -> str:
    return moment.strftime("%H:%M")


def resolve_patient(patients: list[Patient], query: str) -> Patient | None:
    """Find a patient by spoken name.

    An exact case-insensitive match wins; otherwise the first patient
    whose name contains the query, or is contained in it.
    """
    q = query.strip().casefold()
    if not q:
        return None
    for p in patients:
        if p.name.casefold() == q:
            return p
    for p in patients:
        name = p.name.casefold()
        if q in name or name in q:
            return p
    return None


class AppState:
    def __init__(self, store: RecordStore) -> None:
        self.store = store
        self.patients: list[Patient] = []
        self.medicines: list[Medicine] = []
        self.reminders: list[Reminder] = []
        self.notes: list[DoctorNote] = []
        self.alerts = AlertFeed()
        self._pending: set[PendingWrite] = set()
        self._history: deque[PendingWrite] = deque(maxlen=200)
        self._tails: dict[tuple[str, str], asyncio.Task] = {}

    # ── Persistence ───────────────────────────────────────────────

    async def load(self) -> None:
        """Replace the in-memory view with the store's contents."""
        self.patients = [Patient.model_validate(r) for r in await self.store.list("patients")]
        self.medicines = [Medicine.model_validate(r) for r in await self.store.list("medicines")]
        self.reminders = [Reminder.model_validate(r) for r in await self.store.list("reminders")]
        self.notes = [DoctorNote.model_validate(r) for r in await self.store.list("doctornotes")]
        log.info(
            "Loaded %d patients, %d medicines, %d reminders, %d notes",
            len(self.patients), len(self.medicines), len(self.reminders), len(self.notes),
        )

    def _persist(self, op: str, collection: str, record: Record) -> PendingWrite:
        write = PendingWrite(op=op, collection=collection, record_id=record.id)
        payload = record.to_wire()
        key = (collection, record.id)
        previous = self._tails.get(key)
        write.task = asyncio.get_running_loop().create_task(
            self._run_write(write, payload, previous)
        )
        self._tails[key] = write.task
        self._pending.add(write)
        return write

    async def _run_write(
        self, write: PendingWrite, payload: dict, previous: Optional[asyncio.Task]
    ) -> None:
        try:
            # writes to one record reach the store in the order they were made
            if previous is not None and not previous.done():
                await asyncio.wait({previous})
            if write.op == "create":
                await self.store.create(write.collection, payload)
            elif write.op == "update":
                await self.store.update(write.collection, payload)
            else:
                await self.store.delete(write.collection, write.record_id)
            write.outcome = WriteOutcome.PERSISTED
        except RecordStoreError as e:
            write.outcome = WriteOutcome.FAILED
            write.error = str(e)
            log.error("Failed to %s %s/%s: %s", write.op, write.collection, write.record_id, e)
        except Exception as e:
            write.outcome = WriteOutcome.FAILED
            write.error = str(e) or type(e).__name__
            log.exception("Unexpected error during %s %s/%s", write.op, write.collection, write.record_id)
        finally:
            key = (write.collection, write.record_id)
            if self._tails.get(key) is write.task:
                del self._tails[key]
            self._pending.discard(write)
            self._history.append(write)

    @property
    def pending_writes(self) -> list[PendingWrite]:
        return list(self._pending)

    @property
    def settled_writes(self) -> list[PendingWrite]:
        return list(self._history)

    async def flush(self) -> list[PendingWrite]:
        """Wait for every in-flight write and return them settled."""
        writes = list(self._pending)
        await asyncio.gather(
            *(w.task for w in writes if w.task is not None), return_exceptions=True,
        )
        return writes

    # ── Lookups ───────────────────────────────────────────────────

    def get_patient(self, patient_id: str) -> Patient:
        for p in self.patients:
            if p.id == patient_id:
                return p
        raise UnknownRecordError(f"Patient {patient_id} not found")

    def find_patient(self, name: str) -> Patient | None:
        return resolve_patient(self.patients, name)

    def _medicine(self, medicine_id: str) -> Medicine:
        for m in self.medicines:
            if m.id == medicine_id:
                return m
        raise UnknownRecordError(f"Medicine {medicine_id} not found")

    def _reminder(self, reminder_id: str) -> Reminder:
        for r in self.reminders:
            if r.id == reminder_id:
                return r
        raise UnknownRecordError(f"Reminder {reminder_id} not found")

    def _alert(self, alert_id: str) -> Alert:
        alert = self.alerts.get(alert_id)
        if alert is None:
            raise UnknownRecordError(f"Alert {alert_id} not found")
        return alert

    def _patient_name(self, patient_id: str) -> str:
        return next((p.name for p in self.patients if p.id == patient_id), "patient")

    # ── Patients ──────────────────────────────────────────────────

    def add_patient(self, name: str, age: int = 0, condition: str = "") -> Patient:
        patient = Patient(name=name, age=age, condition=condition)
        self.patients.append(patient)
        self._persist("create", "patients", patient)
        log.info("Patient added: %s (%s)", patient.name, patient.id)
        return patient

    def delete_patient(self, patient_id: str) -> Patient:
        """Remove a patient with their medicines, reminders and notes."""
        patient = self.get_patient(patient_id)
        meds = [m for m in self.medicines if m.patient_id == patient_id]
        rems = [r for r in self.reminders if r.patient_id == patient_id]
        notes = [n for n in self.notes if n.patient_id == patient_id]

        self.patients.remove(patient)
        self.medicines = [m for m in self.medicines if m.patient_id != patient_id]
        self.reminders = [r for r in self.reminders if r.patient_id != patient_id]
        self.notes = [n for n in self.notes if n.patient_id != patient_id]
        self.alerts.remove_for_sources([m.id for m in meds] + [r.id for r in rems])

        self._persist("delete", "patients", patient)
        for collection, records in (("medicines", meds), ("reminders", rems), ("doctornotes", notes)):
            for record in records:
                self._persist("delete", collection, record)

        log.info(
            "Patient deleted: %s (+%d medicines, %d reminders, %d notes)",
            patient.id, len(meds), len(rems), len(notes),
        )
        return patient

    def patient_summary(self, patient_id: str) -> PatientSummary:
        patient = self.get_patient(patient_id)
        return PatientSummary(
            patient=patient,
            medicines=[m for m in self.medicines if m.patient_id == patient_id],
            reminders=[r for r in self.reminders if r.patient_id == patient_id],
            notes=sorted(
                (n for n in self.notes if n.patient_id == patient_id),
                key=lambda n: n.timestamp,
                reverse=True,
            ),
        )

    # ── Medicines ─────────────────────────────────────────────────

    def add_medicine(
        self,
        patient_id: str,
        name: str,
        dosage: str,
        schedule: str,
        stock: Optional[int] = None,
    ) -> Medicine:
        self.get_patient(patient_id)
        medicine = Medicine(
            patient_id=patient_id,
            name=name,
            dosage=dosage,
            schedule=schedule,
            stock=stock or runtime_settings["default_medicine_stock"],
        )
        self.medicines.append(medicine)
        self._persist("create", "medicines", medicine)
        log.info("Medicine added: %s for %s at %s", medicine.name, patient_id, schedule)
        return medicine

    def delete_medicine(self, medicine_id: str) -> Medicine:
        medicine = self._medicine(medicine_id)
        self.medicines.remove(medicine)
        self.alerts.remove_for_sources([medicine_id])
        self._persist("delete", "medicines", medicine)
        return medicine

    # ── Reminders ─────────────────────────────────────────────────

    def add_reminder(self, patient_id: str, task: str, time: str) -> Reminder:
        self.get_patient(patient_id)
        reminder = Reminder(patient_id=patient_id, task=task, time=time)
        self.reminders.append(reminder)
        self._persist("create", "reminders", reminder)
        log.info("Reminder added: %r for %s at %s", task, patient_id, time)
        return reminder

    def complete_reminder(self, reminder_id: str) -> Reminder:
        reminder = self._reminder(reminder_id)
        if not reminder.completed:
            reminder.completed = True
            self._persist("update", "reminders", reminder)
        return reminder

    # ── Doctor notes ──────────────────────────────────────────────

    def add_doctor_note(self, patient_id: str, note: str) -> DoctorNote:
        self.get_patient(patient_id)
        record = DoctorNote(patient_id=patient_id, note=note)
        self.notes.insert(0, record)
        self._persist("create", "doctornotes", record)
        return record

    # ── Alerts ────────────────────────────────────────────────────

    def raise_alert(self, type, title, message, source_id=None, source_type=None) -> Alert:
        return self.alerts.add(type, title, message, source_id, source_type)

    def mark_taken(self, alert_id: str) -> Medicine | Reminder | None:
        """Dose taken: stock drops by one (floor zero).  Reminder: completed."""
        alert = self._alert(alert_id)
        if alert.source_type == "medicine" and alert.source_id:
            medicine = self._medicine(alert.source_id)
            medicine.stock = max(0, medicine.stock - 1)
            self._persist("update", "medicines", medicine)
            return medicine
        if alert.source_type == "reminder" and alert.source_id:
            return self.complete_reminder(alert.source_id)
        return None

    def snooze(self, alert_id: str, now: datetime | None = None) -> Reminder | None:
        """Create a follow-up reminder a few minutes from ``now``."""
        alert = self._alert(alert_id)
        now = now or datetime.now()
        at = _hhmm(now + timedelta(minutes=runtime_settings["snooze_minutes"]))

        if alert.source_type == "medicine" and alert.source_id:
            medicine = self._medicine(alert.source_id)
            return self.add_reminder(medicine.patient_id, f"SNOOZE: {medicine.name} dose", at)
        if alert.source_type == "reminder" and alert.source_id:
            reminder = self._reminder(alert.source_id)
            return self.add_reminder(reminder.patient_id, f"SNOOZE: {reminder.task}", at)
        return None

    def reschedule(self, alert_id: str, time: str) -> Medicine | Reminder | None:
        alert = self._alert(alert_id)
        if alert.source_type == "medicine" and alert.source_id:
            medicine = self._medicine(alert.source_id)
            medicine.schedule = time
            self._persist("update", "medicines", medicine)
            return medicine
        if alert.source_type == "reminder" and alert.source_id:
            reminder = self._reminder(alert.source_id)
            reminder.time = time
            self._persist("update", "reminders", reminder)
            return reminder
        return None

    def check_due(self, now: datetime | None = None) -> list[Alert]:
        """Evaluate schedules once at ``now`` and return the alerts raised."""
        now = now or datetime.now()
        current = _hhmm(now)
        minute = now.strftime("%Y-%m-%d %H:%M")
        raised: list[Alert] = []

        for med in self.medicines:
            patient_name = self._patient_name(med.patient_id)
            if med.schedule == current:
                alert = self.alerts.add_dose_due(
                    med.id, minute, f"{med.name} dose for {patient_name} is due now.",
                )
                if alert is not None:
                    raised.append(alert)
            if med.stock < runtime_settings["low_stock_threshold"]:
                alert = self.alerts.add_low_stock(med.id, f"{med.name} stock is low ({med.stock}).")
                if alert is not None:
                    raised.append(alert)

        for rem in self.reminders:
            if rem.time == current and not rem.completed:
                raised.append(self.alerts.add(
                    "info", TITLE_REMINDER,
                    f"{rem.task} for {self._patient_name(rem.patient_id)}",
                    rem.id, "reminder",
                ))
                self.complete_reminder(rem.id)

        return raised
