"""Custody data models — cases, evidence, agents and deposits.

A case is opened by a police agent and enrols participants (agents and
the evidence deposit of an office). Evidence always sits with exactly one
enrolled participant; every hand-over is recorded in an append-only
ownership history so the full chain of custody can be reconstructed.

Invariants:
- Case status moves OPENED → CLOSED only. ``opened_by`` never changes.
- Evidence ``case`` never changes.
- ``older_owners`` only grows; recorded entries are frozen.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar, Optional

from provenance.models.reference import CUSTODY_NAMESPACE, Reference


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class CaseStatus(str, enum.Enum):
    OPENED = "OPENED"
    CLOSED = "CLOSED"


class AgentJob(str, enum.Enum):
    """Police roles. Which of them may open a case is policy-driven."""
    OFFICER = "OFFICER"
    DETECTIVE = "DETECTIVE"
    FORENSIC = "FORENSIC"
    ADMINISTRATIVE = "ADMINISTRATIVE"


class ParticipantType(str, enum.Enum):
    """Participant kinds that can be enrolled in a case or own evidence."""
    AGENT = "AGENT"
    DEPOSIT = "DEPOSIT"

    @property
    def type_name(self) -> str:
        return PARTICIPANT_TYPE_NAMES[self]


PARTICIPANT_TYPE_NAMES: dict[ParticipantType, str] = {
    ParticipantType.AGENT: "Agent",
    ParticipantType.DEPOSIT: "Deposit",
}


def participant_ref(participant_type: ParticipantType, participant_id: str) -> Reference:
    return Reference(CUSTODY_NAMESPACE, participant_type.type_name, participant_id)


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------

@dataclass
class Agent:
    """A police agent, identified by badge number and attached to an office."""
    TYPE_NAME: ClassVar[str] = "Agent"

    badge_number: str
    office: str
    job: AgentJob
    name: str = ""

    @property
    def identifier(self) -> str:
        return self.badge_number

    @property
    def reference(self) -> Reference:
        return Reference(CUSTODY_NAMESPACE, self.TYPE_NAME, self.badge_number)


@dataclass
class Deposit:
    """The evidence deposit of an office. One deposit per office."""
    TYPE_NAME: ClassVar[str] = "Deposit"

    participant_id: str
    office: str
    name: str = ""

    @property
    def identifier(self) -> str:
        return self.participant_id

    @property
    def reference(self) -> Reference:
        return Reference(CUSTODY_NAMESPACE, self.TYPE_NAME, self.participant_id)


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OwnerRecord:
    """One past custodian: who held the evidence and until when."""
    owner: Reference
    till: datetime


@dataclass
class Case:
    """A criminal case and the participants enrolled in it."""
    TYPE_NAME: ClassVar[str] = "Case"

    case_id: str
    description: str
    opened_by: Reference
    participants: list[Reference] = field(default_factory=list)
    status: CaseStatus = CaseStatus.OPENED
    resolution: str = ""
    opening_date: Optional[datetime] = None
    closure_date: Optional[datetime] = None

    @property
    def identifier(self) -> str:
        return self.case_id

    @property
    def reference(self) -> Reference:
        return Reference(CUSTODY_NAMESPACE, self.TYPE_NAME, self.case_id)

    @property
    def is_open(self) -> bool:
        return self.status == CaseStatus.OPENED


@dataclass
class Evidence:
    """A piece of digital evidence and its custody history.

    The content itself lives outside the ledger; only its hash is kept.
    """
    TYPE_NAME: ClassVar[str] = "Evidence"

    evidence_id: str
    hash: str
    hash_type: str
    description: str
    extension: str
    owner: Reference
    case: Reference
    older_owners: tuple[OwnerRecord, ...] = ()
    addition_date: Optional[datetime] = None

    @property
    def identifier(self) -> str:
        return self.evidence_id

    @property
    def reference(self) -> Reference:
        return Reference(CUSTODY_NAMESPACE, self.TYPE_NAME, self.evidence_id)

    def hand_over(self, new_owner: Reference, at: datetime) -> None:
        """Record the current owner in the history and assign a new one."""
        self.older_owners = self.older_owners + (OwnerRecord(self.owner, at),)
        self.owner = new_owner
