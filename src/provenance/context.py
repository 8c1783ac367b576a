"""Transaction context — everything one transaction is allowed to touch.

A context is built per invocation by the service layer and handed to the
handler. It carries the invoking identity, the staged store view, the
participant directory, the named query service and a fixed timestamp for
the whole transaction. Events emitted by the handler are buffered here
and only reach the event sink after the transaction commits.

Also holds the lookups and predicates shared by both engines.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from provenance.errors import DuplicateId, NotFound, WrongType
from provenance.models.custody import ParticipantType, participant_ref
from provenance.models.reference import Reference
from provenance.participants.directory import ParticipantDirectory
from provenance.persistence.asset_store import StoreTransaction
from provenance.persistence.event_log import EventKind
from provenance.persistence.queries import QueryService


@dataclass(frozen=True)
class PendingEvent:
    """A domain event waiting for its transaction to commit."""
    kind: EventKind
    actor_id: str
    payload: dict[str, Any]


@dataclass
class TransactionContext:
    invoker: Reference
    store: StoreTransaction
    directory: ParticipantDirectory
    queries: QueryService
    now: datetime
    pending_events: list[PendingEvent] = field(default_factory=list)

    def emit(self, kind: EventKind, **payload: Any) -> None:
        self.pending_events.append(
            PendingEvent(kind=kind, actor_id=self.invoker.identifier, payload=payload)
        )

    def invoker_is(self, type_name: str) -> bool:
        return self.invoker.type_name == type_name

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def require(self, type_name: str, identifier: str) -> Any:
        """Fetch an asset or raise NotFound."""
        entity = self.store.get(type_name, identifier)
        if entity is None:
            raise NotFound(f"{type_name} {identifier} does not exist")
        return entity

    def require_unused(self, type_name: str, identifier: str) -> None:
        if self.store.exists(type_name, identifier):
            raise DuplicateId(f"The id {identifier} is already in use by a {type_name}")

    def participant(self, type_name: str, identifier: str) -> Optional[Any]:
        return self.directory.get(type_name, identifier)


# ----------------------------------------------------------------------
# Involvement predicates
# ----------------------------------------------------------------------

def parse_participant_type(value: str) -> ParticipantType:
    try:
        return ParticipantType(value)
    except ValueError:
        raise WrongType(f"Wrong participant type: {value}") from None


def is_involved(participants: Iterable[Reference], candidate: Reference) -> bool:
    """Exact type + id match against a case's participant list."""
    return any(p == candidate for p in participants)


def is_participant_involved(
    participants: Iterable[Reference],
    participant_id: str,
    participant_type: str,
) -> bool:
    """Involvement check for a raw (type, id) pair.

    An unknown type is never involved; rejecting it is the caller's job.
    """
    try:
        ptype = ParticipantType(participant_type)
    except ValueError:
        return False
    return is_involved(participants, participant_ref(ptype, participant_id))
