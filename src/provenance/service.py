"""Provenance services — facades that run transactions against the store.

Two independently deployable services share one transaction processor:
- CustodyService: cases, participants, evidence intake and transfer
- InspectionService: tubes, works, calibrations, acquisitions, analyses

For every submitted transaction the processor:
1. Resolves the invoking identity (a fully qualified identifier).
2. Opens a store transaction and builds a request-scoped context.
3. Runs the handler. Any validation failure aborts with no writes.
4. Commits, then emits the buffered domain events to the event log.
5. Snapshots state to the StateStore, if one is wired.

All operations produce typed results. Failures never raise out of
``submit``; they come back as ``ServiceResult(success=False, ...)``
carrying the error kind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from provenance.context import PendingEvent, TransactionContext
from provenance.custody.engine import CustodyEngine
from provenance.errors import NotAuthorized, TransactionError, UnsupportedTransaction
from provenance.inspection.engine import InspectionEngine
from provenance.inspection.heuristics import IndicationGenerator
from provenance.models.custody import Agent, AgentJob, Case, Deposit, Evidence
from provenance.models.inspection import (
    Acquisition,
    Analysis,
    Calibration,
    Staff,
    StaffRole,
    Work,
)
from provenance.models.reference import Reference
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
from provenance.participants.directory import Participant, ParticipantDirectory
from provenance.persistence.asset_store import AssetStore, StoreError, StoreTransaction
from provenance.persistence.event_log import EventLog
from provenance.persistence.queries import (
    ACQUISITIONS_BY_CALIBRATION,
    CALIBRATIONS_BY_WORK,
    EVIDENCES_BY_CASE,
    QueryService,
)
from provenance.persistence.state_store import StateStore
from provenance.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)

Handler = Callable[[TransactionContext, Any], dict[str, Any]]


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[str] = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TransactionProcessor:
    """Runs transaction handlers atomically and records their events.

    Collaborators are injected; anything not supplied starts empty and
    in memory. When a state store is given and no asset store or
    directory is, both are recovered from its snapshot.
    """

    def __init__(
        self,
        store: Optional[AssetStore] = None,
        directory: Optional[ParticipantDirectory] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        if state_store is not None:
            store = store or state_store.load_assets()
            directory = directory or state_store.load_directory()
        self._store = store or AssetStore()
        self._directory = directory or ParticipantDirectory()
        self._event_log = event_log if event_log is not None else EventLog()
        self._state_store = state_store
        self._clock = clock
        self._handlers: dict[type, Handler] = {}

        # Set when a snapshot write fails after a commit. The in-memory
        # store is authoritative; the snapshot is stale until the next
        # successful write.
        self._persistence_degraded: bool = False

    @property
    def store(self) -> AssetStore:
        return self._store

    @property
    def directory(self) -> ParticipantDirectory:
        return self._directory

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def persistence_degraded(self) -> bool:
        return self._persistence_degraded

    def _register(self, tx_type: type, handler: Handler) -> None:
        self._handlers[tx_type] = handler

    def supports(self, tx_type: type) -> bool:
        return tx_type in self._handlers

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def submit(self, invoker: Union[str, Reference], tx: Any) -> ServiceResult:
        """Run one transaction on behalf of ``invoker``."""
        tx_name = type(tx).__name__
        handler = self._handlers.get(type(tx))
        if handler is None:
            return self._rejected(
                tx_name, invoker, UnsupportedTransaction(f"Unsupported transaction: {tx_name}"),
            )

        if isinstance(invoker, str):
            try:
                invoker = Reference.parse(invoker)
            except ValueError as e:
                return self._rejected(tx_name, invoker, NotAuthorized(str(e)))

        now = self._clock()
        try:
            with self._store.transaction() as view:
                ctx = TransactionContext(
                    invoker=invoker,
                    store=view,
                    directory=self._directory,
                    queries=QueryService(view, self._directory),
                    now=now,
                )
                data = handler(ctx, tx)
        except TransactionError as e:
            return self._rejected(tx_name, invoker, e)
        except StoreError as e:
            logger.error("%s by %s hit a store failure: %s", tx_name, invoker, e)
            return ServiceResult(
                success=False, errors=[f"Store failure: {e}"], error_kind="store_error",
            )

        logger.info("%s committed by %s", tx_name, invoker)
        self._emit_events(ctx.pending_events, now)

        warning = self._safe_persist_post_commit()
        if warning:
            data = dict(data, warning=warning)
        return ServiceResult(success=True, data=data)

    def _rejected(
        self, tx_name: str, invoker: Any, error: TransactionError,
    ) -> ServiceResult:
        logger.warning(
            "%s by %s rejected (%s): %s", tx_name, invoker, error.kind, error,
        )
        return ServiceResult(success=False, errors=[str(error)], error_kind=error.kind)

    def _emit_events(self, events: list[PendingEvent], at: datetime) -> None:
        """Hand committed events to the sink. A sink failure never undoes a commit."""
        for event in events:
            try:
                self._event_log.emit(event.kind, event.actor_id, event.payload, at)
            except (ValueError, OSError) as e:
                logger.error("Event sink failure for %s: %s", event.kind.value, e)

    # ------------------------------------------------------------------
    # Participant provisioning
    # ------------------------------------------------------------------

    def _register_participant(self, participant: Participant) -> ServiceResult:
        try:
            self._directory.register(participant)
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)], error_kind="invalid_input")
        warning = self._safe_persist_post_commit()
        data: dict[str, Any] = {"participant": str(participant.reference)}
        if warning:
            data["warning"] = warning
        return ServiceResult(success=True, data=data)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _read_queries(self) -> QueryService:
        # An uncommitted view over committed state; never written to
        return QueryService(StoreTransaction(self._store), self._directory)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _safe_persist_post_commit(self) -> Optional[str]:
        """Snapshot state after a commit.

        MUST NOT roll back: the transaction is already committed. On
        failure, sets the degraded flag and returns a warning string.
        """
        if self._state_store is None:
            return None
        try:
            self._state_store.save(self._store, self._directory)
            self._persistence_degraded = False
            return None
        except OSError as e:
            self._persistence_degraded = True
            logger.error("State snapshot failed: %s", e)
            return f"Persistence degraded: {e}; transaction committed but the snapshot is stale"


class CustodyService(TransactionProcessor):
    """Chain-of-custody facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = CustodyService(resolver)
        service.register_deposit("D-1", office="Central")
        service.register_agent("A-1", office="Central", job=AgentJob.OFFICER)

        service.submit("custody.network.Agent#A-1", OpenCase("C-1", "Burglary"))
        service.submit("custody.network.Agent#A-1", AddEvidence("C-1", "E-1", ...))
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        store: Optional[AssetStore] = None,
        directory: Optional[ParticipantDirectory] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        super().__init__(store, directory, event_log, state_store, clock)
        self._engine = CustodyEngine(resolver)
        self._register(OpenCase, self._engine.open_case)
        self._register(CloseCase, self._engine.close_case)
        self._register(AddParticipant, self._engine.add_participant)
        self._register(AddEvidence, self._engine.add_evidence)
        self._register(TransferEvidence, self._engine.transfer_evidence)

    def register_agent(
        self, badge_number: str, office: str, job: AgentJob, name: str = "",
    ) -> ServiceResult:
        return self._register_participant(Agent(badge_number, office, job, name))

    def register_deposit(self, participant_id: str, office: str, name: str = "") -> ServiceResult:
        return self._register_participant(Deposit(participant_id, office, name))

    def get_case(self, case_id: str) -> Optional[Case]:
        return self._store.get(Case.TYPE_NAME, case_id)

    def get_evidence(self, evidence_id: str) -> Optional[Evidence]:
        return self._store.get(Evidence.TYPE_NAME, evidence_id)

    def case_evidence(self, case_id: str) -> list[Evidence]:
        case = self.get_case(case_id)
        if case is None:
            return []
        return self._read_queries().run(EVIDENCES_BY_CASE, case=case.reference)

    def custody_chain(self, evidence_id: str) -> list[tuple[Reference, Optional[datetime]]]:
        """Every custodian in hand-over order with the end of their custody.

        The last entry is the current owner, with no end time.
        """
        evidence = self.get_evidence(evidence_id)
        if evidence is None:
            return []
        chain: list[tuple[Reference, Optional[datetime]]] = [
            (o.owner, o.till) for o in evidence.older_owners
        ]
        chain.append((evidence.owner, None))
        return chain


class InspectionService(TransactionProcessor):
    """Tube inspection facade.

    Usage:
        service = InspectionService(resolver)
        service.register_staff("ADM-1", StaffRole.ADMIN)
        service.submit("inspection.nuclear.Staff#ADM-1", CreateWork("W-1", "Unit 2"))

    Automatic analysis is available when the policy enables it; a
    custom ``generator`` makes its output reproducible.
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        store: Optional[AssetStore] = None,
        directory: Optional[ParticipantDirectory] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
        clock: Callable[[], datetime] = _utc_now,
        generator: Optional[IndicationGenerator] = None,
    ) -> None:
        super().__init__(store, directory, event_log, state_store, clock)
        self._engine = InspectionEngine(resolver, generator)
        self._register(RegisterTube, self._engine.register_tube)
        self._register(CreateWork, self._engine.create_work)
        self._register(AddCalibration, self._engine.add_calibration)
        self._register(CloseWork, self._engine.close_work)
        self._register(GetCalibration, self._engine.get_calibration)
        self._register(EndCalibration, self._engine.end_calibration)
        self._register(AddAcquisition, self._engine.add_acquisition)
        self._register(AddAnalysis, self._engine.add_analysis)
        if self._engine.automatic_analysis_enabled:
            self._register(AddAutomaticAnalysis, self._engine.add_automatic_analysis)

    def register_staff(self, staff_id: str, role: StaffRole, name: str = "") -> ServiceResult:
        return self._register_participant(Staff(staff_id, role, name))

    def get_work(self, work_id: str) -> Optional[Work]:
        return self._store.get(Work.TYPE_NAME, work_id)

    def calibration(self, cal_id: str) -> Optional[Calibration]:
        return self._store.get(Calibration.TYPE_NAME, cal_id)

    def work_calibrations(self, work_id: str) -> list[Calibration]:
        work = self.get_work(work_id)
        if work is None:
            return []
        return self._read_queries().run(CALIBRATIONS_BY_WORK, work=work.reference)

    def calibration_acquisitions(self, cal_id: str) -> list[Acquisition]:
        calibration = self.calibration(cal_id)
        if calibration is None:
            return []
        return self._read_queries().run(
            ACQUISITIONS_BY_CALIBRATION, calibration=calibration.reference,
        )

    def acquisition_analyses(self, acq_id: str) -> list[Analysis]:
        acquisition = self._store.get(Acquisition.TYPE_NAME, acq_id)
        if acquisition is None:
            return []
        return [
            a for a in self._store.all(Analysis.TYPE_NAME)
            if a.acquisition == acquisition.reference
        ]
