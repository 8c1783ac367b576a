"""Participant directory — registry of everyone who can invoke transactions.

Holds agents and deposits (custody) and staff members (inspection),
keyed by type name and identifier. Provisioning happens here, outside
any transaction; handlers only read.

Thread-safety: this class is not thread-safe. The caller must
synchronise access if used from multiple threads.
"""

from __future__ import annotations

from typing import Optional, Union

from provenance.models.custody import Agent, Deposit
from provenance.models.inspection import Staff
from provenance.models.reference import Reference

Participant = Union[Agent, Deposit, Staff]

PARTICIPANT_CLASSES: dict[str, type] = {
    Agent.TYPE_NAME: Agent,
    Deposit.TYPE_NAME: Deposit,
    Staff.TYPE_NAME: Staff,
}


class ParticipantDirectory:
    """Registry of all participants, one bucket per participant type."""

    def __init__(self) -> None:
        self._participants: dict[str, dict[str, Participant]] = {
            name: {} for name in PARTICIPANT_CLASSES
        }

    def register(self, participant: Participant) -> None:
        """Register a participant or replace an existing one.

        Raises ValueError if the identifier is blank or, for deposits,
        if another deposit already serves the same office.
        """
        canonical_id = participant.identifier.strip()
        if not canonical_id:
            raise ValueError("Cannot register participant with blank ID")
        if isinstance(participant, Deposit):
            for other in self._participants[Deposit.TYPE_NAME].values():
                if other.office == participant.office and other.participant_id != canonical_id:
                    raise ValueError(
                        f"Office {participant.office} already has deposit "
                        f"{other.participant_id}"
                    )
            participant.participant_id = canonical_id
        elif isinstance(participant, Agent):
            participant.badge_number = canonical_id
        else:
            participant.staff_id = canonical_id
        self._participants[participant.TYPE_NAME][canonical_id] = participant

    def remove(self, type_name: str, identifier: str) -> None:
        self._bucket(type_name).pop(identifier.strip(), None)

    def get(self, type_name: str, identifier: str) -> Optional[Participant]:
        """Look up a participant by type name and id."""
        return self._bucket(type_name).get(identifier.strip())

    def resolve(self, ref: Reference) -> Optional[Participant]:
        """Look up the participant a reference points to."""
        if ref.type_name not in self._participants:
            return None
        return self.get(ref.type_name, ref.identifier)

    def all(self, type_name: str) -> list[Participant]:
        return list(self._bucket(type_name).values())

    def all_participants(self) -> list[Participant]:
        return [p for bucket in self._participants.values() for p in bucket.values()]

    @property
    def count(self) -> int:
        return sum(len(b) for b in self._participants.values())

    def _bucket(self, type_name: str) -> dict[str, Participant]:
        try:
            return self._participants[type_name]
        except KeyError:
            raise ValueError(f"Unknown participant type: {type_name}") from None
