"""Tests for the caregiver tools and the ToolDispatcher."""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from caregiver.state import AppState, resolve_patient
from caregiver.store import InMemoryRecordStore
from caregiver.tools.base import BaseTool, ToolResult, normalize_time
from caregiver.tools.dispatcher import ToolDispatcher


@pytest.fixture
def state():
    return AppState(InMemoryRecordStore())


@pytest.fixture
def dispatcher(state):
    return ToolDispatcher(state)


# ── Patient resolution ──────────────────────────────────────────


class TestResolvePatient:
    async def test_partial_match(self, state):
        john = state.add_patient("John Doe", 70)
        assert resolve_patient(state.patients, "john") is john

    async def test_query_containing_name(self, state):
        mary = state.add_patient("Mary", 80)
        assert resolve_patient(state.patients, "Mary Smith") is mary

    async def test_exact_match_preferred(self, state):
        state.add_patient("Johnathan", 50)
        john = state.add_patient("John", 60)
        assert resolve_patient(state.patients, "JOHN") is john

    async def test_no_match(self, state):
        state.add_patient("Mary", 80)
        assert resolve_patient(state.patients, "Zzyx") is None

    async def test_blank_query(self, state):
        state.add_patient("Mary", 80)
        assert resolve_patient(state.patients, "  ") is None


# ── addPatient ──────────────────────────────────────────────────


class TestAddPatient:
    async def test_registers_patient(self, state, dispatcher):
        result = await dispatcher.dispatch(
            "addPatient", {"name": "Mary", "age": 80, "condition": "arthritis"}
        )
        assert result.success
        assert result.message == "Patient Mary added successfully"
        assert result.data["patientId"] == state.patients[0].id
        assert result.data["persistence"] == "accepted"
        assert state.patients[0].condition == "arthritis"

    async def test_float_age_from_model(self, state, dispatcher):
        await dispatcher.dispatch("addPatient", {"name": "Ravi", "age": 72.0})
        assert state.patients[0].age == 72

    async def test_missing_name(self, state, dispatcher):
        result = await dispatcher.dispatch("addPatient", {"age": 40})
        assert not result.success
        assert "name" in result.message
        assert state.patients == []

    async def test_bad_age(self, state, dispatcher):
        result = await dispatcher.dispatch("addPatient", {"name": "X", "age": "old"})
        assert not result.success
        assert state.patients == []


# ── addMedicine ─────────────────────────────────────────────────


class TestAddMedicine:
    async def test_unknown_patient(self, state, dispatcher):
        result = await dispatcher.dispatch("addMedicine", {
            "patientName": "Zzyx", "medicineName": "Aspirin",
            "dosage": "1 tablet", "schedule": "09:00", "stock": 10,
        })
        assert not result.success
        assert result.message == "Patient Zzyx not found. Please add the patient first."
        assert "persistence" not in result.data
        assert state.medicines == []

    async def test_partial_name_creates_one_medicine(self, state, dispatcher):
        john = state.add_patient("John Doe", 70)
        result = await dispatcher.dispatch("addMedicine", {
            "patientName": "john", "medicineName": "Metformin",
            "dosage": "500mg", "schedule": "08:00", "stock": 60,
        })
        assert result.success
        assert len(state.medicines) == 1
        assert state.medicines[0].patient_id == john.id
        assert state.medicines[0].stock == 60

    @pytest.mark.parametrize("stock", [0, None, ""])
    async def test_unspecified_stock_defaults_to_30(self, state, dispatcher, stock):
        state.add_patient("Mary", 80)
        args = {"patientName": "Mary", "medicineName": "Aspirin", "schedule": "09:00"}
        if stock is not None:
            args["stock"] = stock
        result = await dispatcher.dispatch("addMedicine", args)
        assert result.success
        assert state.medicines[0].stock == 30
        assert result.data["stock"] == 30

    async def test_schedule_is_normalized(self, state, dispatcher):
        state.add_patient("Mary", 80)
        result = await dispatcher.dispatch("addMedicine", {
            "patientName": "Mary", "medicineName": "Aspirin", "schedule": "9:05",
        })
        assert result.success
        assert state.medicines[0].schedule == "09:05"
        assert result.message == "Medicine Aspirin scheduled for Mary at 09:05"

    async def test_invalid_schedule(self, state, dispatcher):
        state.add_patient("Mary", 80)
        result = await dispatcher.dispatch("addMedicine", {
            "patientName": "Mary", "medicineName": "Aspirin", "schedule": "25:00",
        })
        assert not result.success
        assert "HH:MM" in result.message
        assert state.medicines == []


# ── setReminder ─────────────────────────────────────────────────


class TestSetReminder:
    async def test_sets_reminder(self, state, dispatcher):
        mary = state.add_patient("Mary", 80)
        result = await dispatcher.dispatch("setReminder", {
            "patientName": "mary", "task": "Check blood pressure", "time": "15:30",
        })
        assert result.success
        assert result.message == 'Reminder "Check blood pressure" set for mary at 15:30'
        reminder = state.reminders[0]
        assert reminder.patient_id == mary.id
        assert not reminder.completed

    async def test_unknown_patient(self, state, dispatcher):
        result = await dispatcher.dispatch("setReminder", {
            "patientName": "Nobody", "task": "Walk", "time": "10:00",
        })
        assert not result.success
        assert result.message == "Patient Nobody not found. Please add the patient first."
        assert state.reminders == []


# ── listStatus ──────────────────────────────────────────────────


class TestListStatus:
    async def test_empty(self, dispatcher):
        result = await dispatcher.dispatch("listStatus", {})
        assert result.to_response() == {"success": True, "message": "No patients registered yet."}

    async def test_lists_patients(self, state, dispatcher):
        state.add_patient("Mary", 80, "arthritis")
        state.add_patient("John Doe", 70)
        result = await dispatcher.dispatch("listStatus", None)
        assert result.message == "Current patients: Mary, John Doe"
        assert result.data["patients"] == [
            {"name": "Mary", "age": 80, "condition": "arthritis"},
            {"name": "John Doe", "age": 70, "condition": ""},
        ]


# ── Dispatcher ──────────────────────────────────────────────────


class ExplodingTool(BaseTool):
    name = "explode"
    description = "Always fails"
    parameters_schema = {"type": "object", "properties": {}}

    async def execute(self, **kwargs):
        raise RuntimeError("kaboom")


class TestDispatcher:
    async def test_unknown_function(self, dispatcher):
        result = await dispatcher.dispatch("deletePatient", {"name": "x"})
        assert not result.success
        assert result.message == "Unknown function: deletePatient"

    async def test_tool_exception_becomes_failure(self, state):
        dispatcher = ToolDispatcher(state, tools=[ExplodingTool(state)])
        result = await dispatcher.dispatch("explode", {})
        assert result == ToolResult(success=False, message="kaboom")

    async def test_extra_arguments_ignored(self, dispatcher):
        result = await dispatcher.dispatch("listStatus", {"verbose": True})
        assert result.success

    def test_declarations(self, dispatcher):
        decls = {d["name"]: d for d in dispatcher.declarations()}
        assert set(decls) == {"addPatient", "addMedicine", "setReminder", "listStatus"}
        assert "parameters" not in decls["listStatus"]
        assert decls["addMedicine"]["parameters"]["required"] == [
            "patientName", "medicineName", "dosage", "schedule", "stock",
        ]
        assert decls["setReminder"]["parameters"]["properties"]["time"]["type"] == "string"


class TestNormalizeTime:
    @pytest.mark.parametrize("raw,expected", [("9:05", "09:05"), ("21:00", "21:00"), (" 07:30 ", "07:30")])
    def test_valid(self, raw, expected):
        assert normalize_time(raw) == expected

    @pytest.mark.parametrize("raw", ["9am", "24:00", "12:60", ""])
    def test_invalid(self, raw):
        with pytest.raises(ValueError):
            normalize_time(raw)
