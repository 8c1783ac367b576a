"""Inspection engine — tubes, work orders, calibrations, acquisitions, analyses.

One engine serves both deployments: the automatic-analysis transaction
is an optional capability switched on by policy.

Roles:
    ADMIN             registers tubes, creates/closes works, adds calibrations
    ACQUISITOR        records acquisitions
    ANALYST           takes and finishes primary/secondary tracks
    ADVANCED_ANALYST  takes and finishes the resolution track
    AUTO              records automatic analyses

Derived state:
- A work becomes WORK_IN_PROGRESS with its first calibration and
  FINISHED only when every calibration's resolution track is FINISHED.
- A track can only be finished once its assignee has analysed every
  acquisition of the calibration.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from provenance.context import TransactionContext
from provenance.errors import (
    AlreadyAnalyzed,
    AlreadyAssigned,
    CalibrationsUnfinished,
    EmptyCalibration,
    IncompleteAnalysis,
    InvalidInput,
    NotAssignee,
    NotStaff,
    PrereqNotMet,
    RoleMismatch,
    TrackFinished,
    UnsupportedTransaction,
    WorkFinished,
)
from provenance.inspection.heuristics import (
    IndicationGenerator,
    RandomIndicationGenerator,
    automatic_indications,
)
from provenance.models.inspection import (
    ANALYST_ROLES,
    Acquisition,
    Analysis,
    AnalysisMethod,
    AnalysisType,
    Calibration,
    Staff,
    StaffRole,
    TrackState,
    Tube,
    Work,
    WorkState,
)
from provenance.models.transactions import (
    AddAcquisition,
    AddAnalysis,
    AddAutomaticAnalysis,
    AddCalibration,
    CloseWork,
    CreateWork,
    EndCalibration,
    GetCalibration,
    RegisterTube,
)
from provenance.persistence.event_log import EventKind
from provenance.persistence.queries import (
    ACQUISITIONS_BY_CALIBRATION,
    ANALYSIS_BY_ACQUISITION_AND_ANALYST,
    CALIBRATIONS_BY_WORK,
)
from provenance.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)


class InspectionEngine:
    """Transaction handlers for the tube inspection pipeline."""

    def __init__(
        self,
        resolver: PolicyResolver,
        generator: Optional[IndicationGenerator] = None,
    ) -> None:
        self._auto_policy = resolver.automatic_analysis()
        self._generator = generator or RandomIndicationGenerator()

    @property
    def automatic_analysis_enabled(self) -> bool:
        return self._auto_policy.enabled

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def register_tube(self, ctx: TransactionContext, tx: RegisterTube) -> dict[str, Any]:
        self._staff(ctx, {StaffRole.ADMIN}, "Only an admin can register a tube")
        ctx.require_unused(Tube.TYPE_NAME, tx.tube_id)
        if tx.length <= 0:
            raise InvalidInput(f"Tube length must be positive, got {tx.length}")

        tube = Tube(
            tube_id=tx.tube_id, pos_x=tx.pos_x, pos_y=tx.pos_y, length=tx.length,
        )
        ctx.store.add(tube)
        ctx.emit(EventKind.TUBE_REGISTERED, tube_id=tube.tube_id)
        return {"tube_id": tube.tube_id}

    def create_work(self, ctx: TransactionContext, tx: CreateWork) -> dict[str, Any]:
        self._staff(ctx, {StaffRole.ADMIN}, "Only an admin can create a new work")
        ctx.require_unused(Work.TYPE_NAME, tx.work_id)

        work = Work(
            work_id=tx.work_id,
            description=tx.description,
            state=WorkState.PLANNED,
            work_date=ctx.now,
        )
        ctx.store.add(work)
        ctx.emit(EventKind.WORK_CREATED, work_id=work.work_id)
        return {"work_id": work.work_id, "state": work.state.value}

    def add_calibration(self, ctx: TransactionContext, tx: AddCalibration) -> dict[str, Any]:
        """Add a calibration to a work; the first one starts the work."""
        self._staff(ctx, {StaffRole.ADMIN}, "Only an admin can add a new calibration")
        work: Work = ctx.require(Work.TYPE_NAME, tx.work_id)
        if work.state == WorkState.FINISHED:
            raise WorkFinished(f"Work {tx.work_id} is finished")
        ctx.require_unused(Calibration.TYPE_NAME, tx.cal_id)

        existing = ctx.queries.run(CALIBRATIONS_BY_WORK, work=work.reference)
        calibration = Calibration(
            cal_id=tx.cal_id,
            equipment=tx.equipment,
            work=work.reference,
            cal_date=ctx.now,
        )
        ctx.store.add(calibration)

        if not existing:
            work.state = WorkState.WORK_IN_PROGRESS
            ctx.store.update(work)
            logger.debug("Work %s started with calibration %s", work.work_id, tx.cal_id)

        ctx.emit(
            EventKind.CALIBRATION_ADDED, work_id=work.work_id, cal_id=tx.cal_id,
        )
        return {"cal_id": tx.cal_id, "work_state": work.state.value}

    def close_work(self, ctx: TransactionContext, tx: CloseWork) -> dict[str, Any]:
        """Finish a work. Every calibration must have its resolution finished."""
        self._staff(ctx, {StaffRole.ADMIN}, "Only an admin can close a work")
        work: Work = ctx.require(Work.TYPE_NAME, tx.work_id)

        for calibration in ctx.queries.run(CALIBRATIONS_BY_WORK, work=work.reference):
            if calibration.resolution_state != TrackState.FINISHED:
                raise CalibrationsUnfinished(
                    f"Calibration {calibration.cal_id} of work {tx.work_id} "
                    f"is not finished"
                )

        work.state = WorkState.FINISHED
        ctx.store.update(work)
        ctx.emit(EventKind.WORK_CLOSED, work_id=work.work_id)
        return {"work_id": work.work_id, "state": work.state.value}

    # ------------------------------------------------------------------
    # Calibration tracks
    # ------------------------------------------------------------------

    def get_calibration(self, ctx: TransactionContext, tx: GetCalibration) -> dict[str, Any]:
        """Take one analysis track of a calibration.

        PRIMARY/SECONDARY go to analysts on unassigned tracks. RESOLUTION
        goes to an advanced analyst once both other tracks are finished.
        """
        calibration: Calibration = ctx.require(Calibration.TYPE_NAME, tx.cal_id)
        if not ctx.queries.run(ACQUISITIONS_BY_CALIBRATION, calibration=calibration.reference):
            raise EmptyCalibration(
                f"Calibration {tx.cal_id} has no acquisitions and can not be assigned yet"
            )

        staff = self._staff(
            ctx, ANALYST_ROLES,
            "Only an analyst or an advanced analyst can take a calibration",
        )
        track = _analysis_type(tx.type)

        if track == AnalysisType.RESOLUTION:
            if staff.role != StaffRole.ADVANCED_ANALYST:
                raise RoleMismatch("A resolution can only be assigned to an advanced analyst")
            if (calibration.primary_state != TrackState.FINISHED
                    or calibration.secondary_state != TrackState.FINISHED):
                raise PrereqNotMet(
                    "A resolution can only be assigned when primary and "
                    "secondary analysis are finished"
                )
        elif staff.role != StaffRole.ANALYST:
            raise RoleMismatch(
                f"Only an analyst can take the {track.value.lower()} analysis"
            )

        if calibration.track_state(track) != TrackState.NOT_ASSIGNED:
            raise AlreadyAssigned(
                f"The {track.value.lower()} analysis of calibration {tx.cal_id} "
                f"is already assigned"
            )

        calibration.assign(track, staff.reference)
        ctx.store.update(calibration)
        ctx.emit(
            EventKind.CALIBRATION_ASSIGNED,
            cal_id=tx.cal_id,
            type=track.value,
            analyst_id=staff.staff_id,
        )
        return {"cal_id": tx.cal_id, "type": track.value, "state": TrackState.WORK_IN_PROGRESS.value}

    def end_calibration(self, ctx: TransactionContext, tx: EndCalibration) -> dict[str, Any]:
        """Finish a track. The assignee must have analysed every acquisition."""
        calibration: Calibration = ctx.require(Calibration.TYPE_NAME, tx.cal_id)
        track = _analysis_type(tx.type)

        assignee = calibration.track_assignee(track)
        if assignee is None or assignee != ctx.invoker:
            raise NotAssignee(
                f"Only the assigned analyst can finalize the "
                f"{track.value.lower()} analysis"
            )
        if calibration.track_state(track) != TrackState.WORK_IN_PROGRESS:
            raise TrackFinished(
                f"The {track.value.lower()} analysis of calibration {tx.cal_id} "
                f"is already finished"
            )

        acquisitions = ctx.queries.run(
            ACQUISITIONS_BY_CALIBRATION, calibration=calibration.reference,
        )
        for acquisition in acquisitions:
            if not self._has_analysed(ctx, acquisition):
                raise IncompleteAnalysis(
                    f"Acquisition {acquisition.acq_id} has not been analysed. "
                    f"All acquisitions of the calibration must be analysed to finish it"
                )

        calibration.finish(track)
        ctx.store.update(calibration)
        ctx.emit(
            EventKind.CALIBRATION_FINISHED,
            cal_id=tx.cal_id,
            type=track.value,
            analyst_id=ctx.invoker.identifier,
        )
        return {"cal_id": tx.cal_id, "type": track.value, "state": TrackState.FINISHED.value}

    # ------------------------------------------------------------------
    # Acquisitions and analyses
    # ------------------------------------------------------------------

    def add_acquisition(self, ctx: TransactionContext, tx: AddAcquisition) -> dict[str, Any]:
        staff = self._staff(
            ctx, {StaffRole.ACQUISITOR}, "Only an acquisitor can add acquisitions",
        )
        calibration: Calibration = ctx.require(Calibration.TYPE_NAME, tx.cal_id)
        tube: Tube = ctx.require(Tube.TYPE_NAME, tx.tube_id)
        ctx.require_unused(Acquisition.TYPE_NAME, tx.acq_id)

        acquisition = Acquisition(
            acq_id=tx.acq_id,
            filename=tx.filename,
            hash=tx.hash,
            tube=tube.reference,
            calibration=calibration.reference,
            acquisitor=staff.reference,
            acq_date=ctx.now,
        )
        ctx.store.add(acquisition)
        ctx.emit(
            EventKind.ACQUISITION_ADDED,
            acq_id=tx.acq_id,
            filename=tx.filename,
            hash=tx.hash,
        )
        return {"acq_id": tx.acq_id}

    def add_analysis(self, ctx: TransactionContext, tx: AddAnalysis) -> dict[str, Any]:
        """Record a manual analysis. One per analyst and acquisition."""
        staff = self._staff(
            ctx, ANALYST_ROLES,
            "Only an analyst or an advanced analyst can add analyses",
        )
        acquisition: Acquisition = ctx.require(Acquisition.TYPE_NAME, tx.acq_id)
        if self._has_analysed(ctx, acquisition):
            raise AlreadyAnalyzed(
                f"Acquisition {tx.acq_id} has already been analysed by {staff.staff_id}"
            )
        ctx.require_unused(Analysis.TYPE_NAME, tx.analysis_id)

        analysis = Analysis(
            analysis_id=tx.analysis_id,
            method=AnalysisMethod.MANUAL,
            acquisition=acquisition.reference,
            analyst=staff.reference,
            indications=tuple(tx.indications),
            analysis_date=ctx.now,
        )
        ctx.store.add(analysis)
        self._emit_analysis(ctx, analysis)
        return {"analysis_id": tx.analysis_id, "indications": list(analysis.indications)}

    def add_automatic_analysis(
        self, ctx: TransactionContext, tx: AddAutomaticAnalysis,
    ) -> dict[str, Any]:
        """Record a heuristic analysis computed from raw acquisition readings."""
        if not self._auto_policy.enabled:
            raise UnsupportedTransaction("Automatic analysis is not enabled")

        staff = self._staff(
            ctx, {StaffRole.AUTO}, "Staff must have role AUTO to add automatic analyses",
        )
        acquisition: Acquisition = ctx.require(Acquisition.TYPE_NAME, tx.acq_id)
        tube: Tube = ctx.require(Tube.TYPE_NAME, acquisition.tube.identifier)
        if self._has_analysed(ctx, acquisition):
            raise AlreadyAnalyzed(
                f"Acquisition {tx.acq_id} has already been analysed by {staff.staff_id}"
            )
        ctx.require_unused(Analysis.TYPE_NAME, tx.analysis_id)

        indications = automatic_indications(
            tx.raw_data,
            tube.length,
            self._generator,
            self._auto_policy.defect_kinds,
            self._auto_policy.indication_modulus,
        )
        analysis = Analysis(
            analysis_id=tx.analysis_id,
            method=AnalysisMethod.AUTOMATIC,
            acquisition=acquisition.reference,
            analyst=staff.reference,
            indications=tuple(indications),
            analysis_date=ctx.now,
        )
        ctx.store.add(analysis)
        self._emit_analysis(ctx, analysis)
        return {"analysis_id": tx.analysis_id, "indications": indications}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _staff(
        self,
        ctx: TransactionContext,
        roles: set[StaffRole] | frozenset[StaffRole],
        message: str,
    ) -> Staff:
        """Resolve the caller to a staff member holding one of ``roles``."""
        staff = None
        if ctx.invoker_is(Staff.TYPE_NAME):
            staff = ctx.participant(Staff.TYPE_NAME, ctx.invoker.identifier)
        if staff is None:
            raise NotStaff(
                f"The participant with identifier {ctx.invoker.identifier} "
                f"is not a staff member"
            )
        if staff.role not in roles:
            raise RoleMismatch(message)
        return staff

    def _has_analysed(self, ctx: TransactionContext, acquisition: Acquisition) -> bool:
        return bool(ctx.queries.run(
            ANALYSIS_BY_ACQUISITION_AND_ANALYST,
            acquisition=acquisition.reference,
            analyst=ctx.invoker,
        ))

    def _emit_analysis(self, ctx: TransactionContext, analysis: Analysis) -> None:
        ctx.emit(
            EventKind.ANALYSIS_ADDED,
            analysis_id=analysis.analysis_id,
            acq_id=analysis.acquisition.identifier,
            method=analysis.method.value,
            indications=len(analysis.indications),
        )


def _analysis_type(value: str) -> AnalysisType:
    try:
        return AnalysisType(value)
    except ValueError:
        raise InvalidInput(f"Invalid analysis type: {value}") from None
