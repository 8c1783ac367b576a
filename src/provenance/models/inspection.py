"""Inspection data models — tubes, works, calibrations, acquisitions, analyses.

A work order groups calibrations. Each calibration collects acquisitions
(captured signals of a tube) and is analysed on three independent tracks:

    primary     — an ANALYST
    secondary   — another ANALYST
    resolution  — an ADVANCED_ANALYST, only after primary and secondary

Track lifecycle: NOT_ASSIGNED → WORK_IN_PROGRESS → FINISHED.
Work lifecycle:  PLANNED → WORK_IN_PROGRESS → FINISHED.
Neither goes backwards.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar, Optional

from provenance.models.reference import INSPECTION_NAMESPACE, Reference


class StaffRole(str, enum.Enum):
    ADMIN = "ADMIN"
    ACQUISITOR = "ACQUISITOR"
    ANALYST = "ANALYST"
    ADVANCED_ANALYST = "ADVANCED_ANALYST"
    AUTO = "AUTO"


ANALYST_ROLES = frozenset({StaffRole.ANALYST, StaffRole.ADVANCED_ANALYST})


class WorkState(str, enum.Enum):
    PLANNED = "PLANNED"
    WORK_IN_PROGRESS = "WORK_IN_PROGRESS"
    FINISHED = "FINISHED"


class TrackState(str, enum.Enum):
    """State of one analysis track of a calibration."""
    NOT_ASSIGNED = "NOT_ASSIGNED"
    WORK_IN_PROGRESS = "WORK_IN_PROGRESS"
    FINISHED = "FINISHED"


class AnalysisType(str, enum.Enum):
    """The three analysis tracks of a calibration."""
    PRIMARY = "PRIMARY"
    SECONDARY = "SECONDARY"
    RESOLUTION = "RESOLUTION"


class AnalysisMethod(str, enum.Enum):
    MANUAL = "MANUAL"
    AUTOMATIC = "AUTOMATIC"


@dataclass
class Staff:
    TYPE_NAME: ClassVar[str] = "Staff"

    staff_id: str
    role: StaffRole
    name: str = ""

    @property
    def identifier(self) -> str:
        return self.staff_id

    @property
    def reference(self) -> Reference:
        return Reference(INSPECTION_NAMESPACE, self.TYPE_NAME, self.staff_id)


@dataclass(frozen=True)
class Tube:
    """A steam-generator tube. Position and length are fixed at registration."""
    TYPE_NAME: ClassVar[str] = "Tube"

    tube_id: str
    pos_x: float
    pos_y: float
    length: float

    @property
    def identifier(self) -> str:
        return self.tube_id

    @property
    def reference(self) -> Reference:
        return Reference(INSPECTION_NAMESPACE, self.TYPE_NAME, self.tube_id)


@dataclass
class Work:
    TYPE_NAME: ClassVar[str] = "Work"

    work_id: str
    description: str
    state: WorkState = WorkState.PLANNED
    work_date: Optional[datetime] = None

    @property
    def identifier(self) -> str:
        return self.work_id

    @property
    def reference(self) -> Reference:
        return Reference(INSPECTION_NAMESPACE, self.TYPE_NAME, self.work_id)


@dataclass
class Calibration:
    """A calibration of a work with its three analysis tracks.

    Assignee references stay None until the track is taken.
    """
    TYPE_NAME: ClassVar[str] = "Calibration"

    cal_id: str
    equipment: str
    work: Reference
    cal_date: Optional[datetime] = None
    primary_state: TrackState = TrackState.NOT_ASSIGNED
    secondary_state: TrackState = TrackState.NOT_ASSIGNED
    resolution_state: TrackState = TrackState.NOT_ASSIGNED
    primary_analyst: Optional[Reference] = None
    secondary_analyst: Optional[Reference] = None
    advanced_analyst: Optional[Reference] = None

    @property
    def identifier(self) -> str:
        return self.cal_id

    @property
    def reference(self) -> Reference:
        return Reference(INSPECTION_NAMESPACE, self.TYPE_NAME, self.cal_id)

    def track_state(self, track: AnalysisType) -> TrackState:
        return getattr(self, _TRACK_FIELDS[track][0])

    def track_assignee(self, track: AnalysisType) -> Optional[Reference]:
        return getattr(self, _TRACK_FIELDS[track][1])

    def assign(self, track: AnalysisType, analyst: Reference) -> None:
        state_field, assignee_field = _TRACK_FIELDS[track]
        setattr(self, state_field, TrackState.WORK_IN_PROGRESS)
        setattr(self, assignee_field, analyst)

    def finish(self, track: AnalysisType) -> None:
        setattr(self, _TRACK_FIELDS[track][0], TrackState.FINISHED)


_TRACK_FIELDS: dict[AnalysisType, tuple[str, str]] = {
    AnalysisType.PRIMARY: ("primary_state", "primary_analyst"),
    AnalysisType.SECONDARY: ("secondary_state", "secondary_analyst"),
    AnalysisType.RESOLUTION: ("resolution_state", "advanced_analyst"),
}


@dataclass(frozen=True)
class Acquisition:
    """A captured inspection signal of one tube within one calibration."""
    TYPE_NAME: ClassVar[str] = "Acquisition"

    acq_id: str
    filename: str
    hash: str
    tube: Reference
    calibration: Reference
    acquisitor: Reference
    acq_date: Optional[datetime] = None

    @property
    def identifier(self) -> str:
        return self.acq_id

    @property
    def reference(self) -> Reference:
        return Reference(INSPECTION_NAMESPACE, self.TYPE_NAME, self.acq_id)


@dataclass(frozen=True)
class Analysis:
    TYPE_NAME: ClassVar[str] = "Analysis"

    analysis_id: str
    method: AnalysisMethod
    acquisition: Reference
    analyst: Reference
    indications: tuple[str, ...] = field(default_factory=tuple)
    analysis_date: Optional[datetime] = None

    @property
    def identifier(self) -> str:
        return self.analysis_id

    @property
    def reference(self) -> Reference:
        return Reference(INSPECTION_NAMESPACE, self.TYPE_NAME, self.analysis_id)
