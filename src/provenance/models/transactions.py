"""Transaction input records — one per transaction handler.

Enum-valued fields are carried as plain strings so that an unknown value
reaches the handler and is rejected there, in its place in the check order.
"""

from __future__ import annotations

from dataclasses import dataclass, field


# ---------------------------------------------------------------------------
# Custody
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OpenCase:
    case_id: str
    description: str


@dataclass(frozen=True)
class CloseCase:
    case_id: str
    resolution: str


@dataclass(frozen=True)
class AddParticipant:
    case_id: str
    participant_id: str
    participant_type: str


@dataclass(frozen=True)
class AddEvidence:
    case_id: str
    evidence_id: str
    hash: str
    hash_type: str
    description: str
    extension: str


@dataclass(frozen=True)
class TransferEvidence:
    evidence_id: str
    participant_id: str
    participant_type: str


# ---------------------------------------------------------------------------
# Inspection
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RegisterTube:
    tube_id: str
    pos_x: float
    pos_y: float
    length: float


@dataclass(frozen=True)
class CreateWork:
    work_id: str
    description: str


@dataclass(frozen=True)
class AddCalibration:
    work_id: str
    cal_id: str
    equipment: str


@dataclass(frozen=True)
class CloseWork:
    work_id: str


@dataclass(frozen=True)
class GetCalibration:
    cal_id: str
    type: str


@dataclass(frozen=True)
class EndCalibration:
    cal_id: str
    type: str


@dataclass(frozen=True)
class AddAcquisition:
    cal_id: str
    tube_id: str
    acq_id: str
    filename: str
    hash: str


@dataclass(frozen=True)
class AddAnalysis:
    acq_id: str
    analysis_id: str
    indications: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AddAutomaticAnalysis:
    acq_id: str
    analysis_id: str
    raw_data: tuple[str, ...] = field(default_factory=tuple)
