"""Integration tests for the service facades.

Drives both services end to end through ``submit``: invoker parsing,
atomic commit, event emission after commit, snapshot persistence and
error reporting by kind.
"""

import pytest
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from provenance.models.custody import AgentJob, CaseStatus
from provenance.models.inspection import StaffRole, TrackState, WorkState
from provenance.models.transactions import (
    AddAcquisition,
    AddAnalysis,
    AddAutomaticAnalysis,
    AddCalibration,
    AddEvidence,
    AddParticipant,
    CloseCase,
    CloseWork,
    CreateWork,
    EndCalibration,
    GetCalibration,
    OpenCase,
    RegisterTube,
    TransferEvidence,
)
from provenance.persistence.event_log import EventKind, EventLog
from provenance.persistence.state_store import StateStore
from provenance.policy.resolver import PolicyResolver
from provenance.service import CustodyService, InspectionService

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

NOW = datetime(2026, 5, 4, 8, 30, tzinfo=timezone.utc)

A1 = "custody.network.Agent#A1"
A2 = "custody.network.Agent#A2"
D1 = "custody.network.Deposit#D1"


def _clock() -> datetime:
    return NOW


def _make_resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


def _make_custody(**kwargs: Any) -> CustodyService:
    service = CustodyService(_make_resolver(), clock=_clock, **kwargs)
    service.register_deposit("D1", office="Central", name="Central evidence room")
    service.register_agent("A1", office="Central", job=AgentJob.OFFICER, name="Ada")
    service.register_agent("A2", office="Central", job=AgentJob.DETECTIVE)
    return service


def _evidence(case_id: str, evidence_id: str) -> AddEvidence:
    return AddEvidence(case_id, evidence_id, "e3b0c4", "sha256", "Laptop image", "e01")


class _BrokenEventLog(EventLog):
    def emit(self, kind, actor_id, payload, timestamp_utc=None):
        raise OSError("event sink unavailable")


class _ReadOnlyStateStore(StateStore):
    def save(self, store, directory) -> None:
        raise OSError("read-only filesystem")


# =====================================================================
# Custody
# =====================================================================


class TestCustodyFlow:
    def test_open_add_transfer_close(self) -> None:
        service = _make_custody()

        assert service.submit(A1, OpenCase("C1", "Fraud")).success
        assert service.submit(A1, AddParticipant("C1", "A2", "AGENT")).success
        assert service.submit(A1, _evidence("C1", "E1")).success
        assert service.submit(A1, _evidence("C1", "E2")).success

        result = service.submit(A1, TransferEvidence("E1", "A2", "AGENT"))
        assert result.success
        assert result.data["owner"] == A2

        result = service.submit(A1, CloseCase("C1", "Charges filed"))
        assert result.success
        assert result.data["repatriated"] == ["E1", "E2"]

        case = service.get_case("C1")
        assert case.status == CaseStatus.CLOSED
        assert [str(e.owner) for e in service.case_evidence("C1")] == [D1, D1]

    def test_custody_chain(self) -> None:
        service = _make_custody()
        service.submit(A1, OpenCase("C1", "Fraud"))
        service.submit(A1, AddParticipant("C1", "A2", "AGENT"))
        service.submit(A1, _evidence("C1", "E1"))
        service.submit(A1, TransferEvidence("E1", "A2", "AGENT"))
        service.submit(A1, CloseCase("C1", "Done"))

        chain = service.custody_chain("E1")
        assert [str(owner) for owner, _ in chain] == [A1, A2, D1]
        assert [till for _, till in chain] == [NOW, NOW, None]

    def test_reads_for_unknown_ids(self) -> None:
        service = _make_custody()
        assert service.get_case("C404") is None
        assert service.case_evidence("C404") == []
        assert service.custody_chain("E404") == []

    def test_events_recorded_in_order(self) -> None:
        service = _make_custody()
        service.submit(A1, OpenCase("C1", "Fraud"))
        service.submit(A1, _evidence("C1", "E1"))

        events = service.event_log.events()
        assert [e.event_kind for e in events] == [
            EventKind.CASE_OPENED, EventKind.EVIDENCE_ADDED,
        ]
        assert events[0].actor_id == "A1"
        assert events[0].timestamp_utc == "2026-05-04T08:30:00Z"

    def test_resource_uri_invoker(self) -> None:
        service = _make_custody()
        assert service.submit("resource:" + A1, OpenCase("C1", "Fraud")).success


class TestCustodyErrors:
    @pytest.mark.parametrize("invoker, tx, kind", [
        (A2, CloseCase("C1", "x"), "not_authorized"),
        (A1, CloseCase("C9", "x"), "not_found"),
        (A1, OpenCase("C1", "again"), "conflict"),
        (A1, AddParticipant("C1", "A2", "ROBOT"), "invalid_input"),
        (D1, OpenCase("C2", "x"), "not_authorized"),
    ])
    def test_error_kinds(self, invoker: str, tx: Any, kind: str) -> None:
        service = _make_custody()
        service.submit(A1, OpenCase("C1", "Fraud"))
        result = service.submit(invoker, tx)
        assert not result.success
        assert result.error_kind == kind
        assert result.errors

    def test_closed_case_kind(self) -> None:
        service = _make_custody()
        service.submit(A1, OpenCase("C1", "Fraud"))
        service.submit(A1, CloseCase("C1", "Done"))
        result = service.submit(A1, _evidence("C1", "E1"))
        assert result.error_kind == "invalid_state"

    def test_rejected_transaction_emits_nothing(self) -> None:
        service = _make_custody()
        service.submit(A1, OpenCase("C1", "Fraud"))
        before = service.event_log.count
        service.submit(A2, CloseCase("C1", "x"))
        assert service.event_log.count == before

    def test_close_is_atomic(self) -> None:
        service = _make_custody()
        service.submit(A1, OpenCase("C1", "Fraud"))
        service.submit(A1, _evidence("C1", "E1"))
        service.directory.remove("Deposit", "D1")
        events_before = service.event_log.count

        result = service.submit(A1, CloseCase("C1", "Done"))
        assert not result.success
        assert result.error_kind == "not_found"
        assert service.get_case("C1").status == CaseStatus.OPENED
        assert str(service.get_evidence("E1").owner) == A1
        assert service.event_log.count == events_before

    def test_unsupported_transaction(self) -> None:
        service = _make_custody()
        result = service.submit(A1, CreateWork("W1", "Not custody"))
        assert not result.success
        assert result.error_kind == "invalid_input"
        assert "CreateWork" in result.errors[0]
        assert not service.supports(CreateWork)

    def test_malformed_invoker(self) -> None:
        service = _make_custody()
        result = service.submit("A1", OpenCase("C1", "Fraud"))
        assert result.error_kind == "not_authorized"
        assert service.get_case("C1") is None

    def test_second_deposit_for_office(self) -> None:
        service = _make_custody()
        result = service.register_deposit("D9", office="Central")
        assert not result.success
        assert result.error_kind == "invalid_input"


class TestCustodyPersistence:
    def test_restart_recovers_state(self, tmp_path: Path) -> None:
        state_path = tmp_path / "state.json"
        log_path = tmp_path / "events.jsonl"
        service = _make_custody(
            state_store=StateStore(state_path), event_log=EventLog(log_path),
        )
        service.submit(A1, OpenCase("C1", "Fraud"))
        service.submit(A1, _evidence("C1", "E1"))
        service.submit(A1, CloseCase("C1", "Done"))

        restarted = CustodyService(
            _make_resolver(),
            state_store=StateStore(state_path),
            event_log=EventLog(log_path),
            clock=_clock,
        )
        assert restarted.get_case("C1").status == CaseStatus.CLOSED
        assert [str(o) for o, _ in restarted.custody_chain("E1")] == [A1, D1]
        assert restarted.directory.get("Agent", "A1").name == "Ada"
        assert restarted.event_log.count == 3
        assert restarted.submit(A1, OpenCase("C2", "Arson")).success

    def test_event_sink_failure_keeps_commit(self) -> None:
        service = _make_custody(event_log=_BrokenEventLog())
        result = service.submit(A1, OpenCase("C1", "Fraud"))
        assert result.success
        assert service.get_case("C1") is not None

    def test_snapshot_failure_degrades(self, tmp_path: Path) -> None:
        service = CustodyService(
            _make_resolver(),
            state_store=_ReadOnlyStateStore(tmp_path / "state.json"),
            clock=_clock,
        )
        result = service.register_deposit("D1", office="Central")
        assert result.success
        assert "warning" in result.data
        assert service.persistence_degraded

        service.register_agent("A1", office="Central", job=AgentJob.OFFICER)
        result = service.submit(A1, OpenCase("C1", "Fraud"))
        assert result.success
        assert "Persistence degraded" in result.data["warning"]
        assert service.get_case("C1") is not None


# =====================================================================
# Inspection
# =====================================================================


ADM = "inspection.nuclear.Staff#ADM"
ACQ = "inspection.nuclear.Staff#ACQ"
AN1 = "inspection.nuclear.Staff#AN1"
AN2 = "inspection.nuclear.Staff#AN2"
ADV = "inspection.nuclear.Staff#ADV"
AUTO = "inspection.nuclear.Staff#AUTO"


class _MidTube:
    def defect_kind(self, kinds):
        return kinds[-1]

    def position(self, tube_length):
        return tube_length / 2


def _make_inspection(auto_enabled: bool = True) -> InspectionService:
    resolver = _make_resolver()
    if not auto_enabled:
        resolver = PolicyResolver({
            "version": "manual-only",
            "custody": {"case_opening_jobs": ["OFFICER"]},
            "inspection": {
                "automatic_analysis": {
                    "enabled": False,
                    "defect_kinds": ["fissure"],
                    "indication_modulus": 4,
                },
            },
        })
    service = InspectionService(resolver, clock=_clock, generator=_MidTube())
    service.register_staff("ADM", StaffRole.ADMIN)
    service.register_staff("ACQ", StaffRole.ACQUISITOR)
    service.register_staff("AN1", StaffRole.ANALYST)
    service.register_staff("AN2", StaffRole.ANALYST)
    service.register_staff("ADV", StaffRole.ADVANCED_ANALYST)
    service.register_staff("AUTO", StaffRole.AUTO)
    return service


def _prepare_calibration(service: InspectionService) -> None:
    assert service.submit(ADM, RegisterTube("T1", 1.0, 2.0, 10.0)).success
    assert service.submit(ADM, CreateWork("W1", "Unit 2 outage")).success
    assert service.submit(ADM, AddCalibration("W1", "CAL1", "EC probe")).success
    assert service.submit(ACQ, AddAcquisition("CAL1", "T1", "ACQ1", "acq1.dat", "h1")).success


class TestInspectionFlow:
    def test_full_work_lifecycle(self) -> None:
        service = _make_inspection()
        _prepare_calibration(service)
        assert service.get_work("W1").state == WorkState.WORK_IN_PROGRESS

        for analyst, track in ((AN1, "PRIMARY"), (AN2, "SECONDARY")):
            assert service.submit(analyst, GetCalibration("CAL1", track)).success
            assert service.submit(analyst, AddAnalysis("ACQ1", f"AN-{track}", ("clean",))).success
            assert service.submit(analyst, EndCalibration("CAL1", track)).success

        assert service.submit(ADV, GetCalibration("CAL1", "RESOLUTION")).success
        assert service.submit(ADV, AddAnalysis("ACQ1", "AN-RES", ("clean",))).success
        assert service.submit(ADV, EndCalibration("CAL1", "RESOLUTION")).success

        result = service.submit(ADM, CloseWork("W1"))
        assert result.success
        assert service.get_work("W1").state == WorkState.FINISHED
        assert service.calibration("CAL1").resolution_state == TrackState.FINISHED
        assert len(service.acquisition_analyses("ACQ1")) == 3

    def test_reads(self) -> None:
        service = _make_inspection()
        _prepare_calibration(service)
        assert [c.cal_id for c in service.work_calibrations("W1")] == ["CAL1"]
        assert [a.acq_id for a in service.calibration_acquisitions("CAL1")] == ["ACQ1"]
        assert service.acquisition_analyses("ACQ1") == []
        assert service.work_calibrations("W404") == []
        assert service.calibration_acquisitions("CAL404") == []
        assert service.calibration("CAL404") is None

    def test_automatic_analysis(self) -> None:
        service = _make_inspection()
        _prepare_calibration(service)
        result = service.submit(AUTO, AddAutomaticAnalysis("ACQ1", "AUTO-1", ("3", "3")))
        assert result.success
        assert result.data["indications"] == ["Detected dent, position 5.0"] * 3

    def test_automatic_analysis_not_offered_when_disabled(self) -> None:
        service = _make_inspection(auto_enabled=False)
        _prepare_calibration(service)
        assert not service.supports(AddAutomaticAnalysis)
        result = service.submit(AUTO, AddAutomaticAnalysis("ACQ1", "AUTO-1", ("3",)))
        assert result.error_kind == "invalid_input"


class TestInspectionErrors:
    def test_take_empty_calibration(self) -> None:
        service = _make_inspection()
        service.submit(ADM, CreateWork("W1", "x"))
        service.submit(ADM, AddCalibration("W1", "CAL1", "probe"))
        result = service.submit(AN1, GetCalibration("CAL1", "PRIMARY"))
        assert result.error_kind == "invalid_state"

    def test_custody_identity_is_not_staff(self) -> None:
        service = _make_inspection()
        result = service.submit(A1, CreateWork("W1", "x"))
        assert result.error_kind == "not_authorized"

    def test_second_taker_conflicts(self) -> None:
        service = _make_inspection()
        _prepare_calibration(service)
        service.submit(AN1, GetCalibration("CAL1", "PRIMARY"))
        result = service.submit(AN2, GetCalibration("CAL1", "PRIMARY"))
        assert result.error_kind == "conflict"
        assert service.calibration("CAL1").primary_analyst.identifier == "AN1"

    def test_close_work_with_open_calibration(self) -> None:
        service = _make_inspection()
        _prepare_calibration(service)
        result = service.submit(ADM, CloseWork("W1"))
        assert result.error_kind == "invalid_state"
        assert service.get_work("W1").state == WorkState.WORK_IN_PROGRESS
