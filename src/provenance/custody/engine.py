"""Custody engine — cases, participant enrolment, evidence intake and transfer.

Each handler validates in a fixed order and raises on the first failed
check, so the error a caller sees is deterministic. Handlers write only
through the context's staged store view; the service layer commits.

Invariants enforced:
- Only agents in an opening job open cases; only the opener closes
  them or enrols others.
- Nothing changes on a closed case.
- Evidence is only ever held by a participant enrolled in its case.
- Custody history is appended on every hand-over, including the
  automatic return to the office deposit when a case closes.
"""

from __future__ import annotations

import logging
from typing import Any

from provenance.context import (
    TransactionContext,
    is_involved,
    is_participant_involved,
    parse_participant_type,
)
from provenance.errors import (
    AlreadyClosed,
    AlreadyInvolved,
    CaseClosed,
    DepositNotFound,
    NotAuthorized,
    NotFound,
    NotInvolved,
)
from provenance.models.custody import (
    Agent,
    Case,
    CaseStatus,
    Deposit,
    Evidence,
    participant_ref,
)
from provenance.models.transactions import (
    AddEvidence,
    AddParticipant,
    CloseCase,
    OpenCase,
    TransferEvidence,
)
from provenance.persistence.event_log import EventKind
from provenance.persistence.queries import DEPOSIT_BY_OFFICE, EVIDENCES_BY_CASE
from provenance.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)


class CustodyEngine:
    """Transaction handlers for the chain-of-custody domain."""

    def __init__(self, resolver: PolicyResolver) -> None:
        self._opening_jobs = resolver.case_opening_jobs()

    # ------------------------------------------------------------------
    # Cases
    # ------------------------------------------------------------------

    def open_case(self, ctx: TransactionContext, tx: OpenCase) -> dict[str, Any]:
        """Open a case owned by the calling agent.

        The case starts with two participants: the agent and the
        evidence deposit of the agent's office.
        """
        if not ctx.invoker_is(Agent.TYPE_NAME):
            raise NotAuthorized("Only police agents can open a case")
        ctx.require_unused(Case.TYPE_NAME, tx.case_id)

        agent = self._calling_agent(ctx)
        if agent.job not in self._opening_jobs:
            allowed = ", ".join(sorted(j.value for j in self._opening_jobs))
            raise NotAuthorized(f"Only {allowed} agents can open a case")

        deposit = self._office_deposit(ctx, agent.office)

        case = Case(
            case_id=tx.case_id,
            description=tx.description,
            opened_by=agent.reference,
            participants=[agent.reference, deposit.reference],
            status=CaseStatus.OPENED,
            opening_date=ctx.now,
        )
        ctx.store.add(case)
        ctx.emit(
            EventKind.CASE_OPENED,
            case_id=case.case_id,
            opened_by=agent.badge_number,
        )
        return {"case_id": case.case_id, "status": case.status.value}

    def close_case(self, ctx: TransactionContext, tx: CloseCase) -> dict[str, Any]:
        """Close a case and return all its evidence to the office deposit.

        Evidence already held by the deposit is left untouched; every
        other piece gets a history record and the deposit as new owner.
        The repatriated evidence is written as a single batch.
        """
        case: Case = ctx.require(Case.TYPE_NAME, tx.case_id)
        if case.opened_by != ctx.invoker:
            raise NotAuthorized(
                f"Only agent {case.opened_by.identifier} can close the case"
            )
        if not case.is_open:
            raise AlreadyClosed(f"Case {case.case_id} is already closed")

        case.status = CaseStatus.CLOSED
        case.resolution = tx.resolution
        case.closure_date = ctx.now
        ctx.store.update(case)

        agent = self._calling_agent(ctx)
        deposit_ref = self._office_deposit(ctx, agent.office).reference

        repatriated: list[Evidence] = []
        for evidence in ctx.queries.run(EVIDENCES_BY_CASE, case=case.reference):
            if evidence.owner != deposit_ref:
                evidence.hand_over(deposit_ref, ctx.now)
                repatriated.append(evidence)
        ctx.store.update_all(repatriated)

        if repatriated:
            logger.info(
                "Case %s closed: %d evidence item(s) returned to deposit %s",
                case.case_id, len(repatriated), deposit_ref.identifier,
            )
        ctx.emit(
            EventKind.CASE_CLOSED,
            case_id=case.case_id,
            repatriated=[e.evidence_id for e in repatriated],
        )
        return {
            "case_id": case.case_id,
            "status": case.status.value,
            "repatriated": [e.evidence_id for e in repatriated],
        }

    def add_participant(self, ctx: TransactionContext, tx: AddParticipant) -> dict[str, Any]:
        """Enrol an agent or a deposit in an open case."""
        case: Case = ctx.require(Case.TYPE_NAME, tx.case_id)
        if not case.is_open:
            raise CaseClosed(f"Case {tx.case_id} is closed")
        if case.opened_by != ctx.invoker:
            raise NotAuthorized(
                f"Only agent {case.opened_by.identifier} can add other "
                f"participants to the case {tx.case_id}"
            )
        if is_participant_involved(case.participants, tx.participant_id, tx.participant_type):
            raise AlreadyInvolved(
                f"{tx.participant_type} {tx.participant_id} is already "
                f"involved in case {tx.case_id}"
            )

        ptype = parse_participant_type(tx.participant_type)
        party = ctx.participant(ptype.type_name, tx.participant_id)
        if party is None:
            raise NotFound(f"{ptype.value} {tx.participant_id} does not exist")

        case.participants.append(party.reference)
        ctx.store.update(case)
        ctx.emit(
            EventKind.PARTICIPANT_ADDED,
            case_id=tx.case_id,
            participant_type=ptype.value,
            participant_id=party.identifier,
        )
        return {"case_id": tx.case_id, "participants": len(case.participants)}

    # ------------------------------------------------------------------
    # Evidence
    # ------------------------------------------------------------------

    def add_evidence(self, ctx: TransactionContext, tx: AddEvidence) -> dict[str, Any]:
        """Register a new piece of evidence held by the calling agent."""
        if not ctx.invoker_is(Agent.TYPE_NAME):
            raise NotAuthorized("Only police agents can upload evidences")

        case: Case = ctx.require(Case.TYPE_NAME, tx.case_id)
        if not case.is_open:
            raise CaseClosed(f"Case {tx.case_id} is closed")
        if not is_involved(case.participants, ctx.invoker):
            raise NotInvolved(
                f"Agent {ctx.invoker.identifier} is not involved in case "
                f"{tx.case_id} and can not add evidences to it"
            )
        ctx.require_unused(Evidence.TYPE_NAME, tx.evidence_id)

        evidence = Evidence(
            evidence_id=tx.evidence_id,
            hash=tx.hash,
            hash_type=tx.hash_type,
            description=tx.description,
            extension=tx.extension,
            owner=ctx.invoker,
            case=case.reference,
            older_owners=(),
            addition_date=ctx.now,
        )
        ctx.store.add(evidence)
        ctx.emit(
            EventKind.EVIDENCE_ADDED,
            evidence_id=tx.evidence_id,
            case_id=tx.case_id,
            participant_id=ctx.invoker.identifier,
        )
        return {"evidence_id": tx.evidence_id, "owner": str(ctx.invoker)}

    def transfer_evidence(self, ctx: TransactionContext, tx: TransferEvidence) -> dict[str, Any]:
        """Hand evidence over to another participant of the same case."""
        evidence: Evidence = ctx.require(Evidence.TYPE_NAME, tx.evidence_id)
        if evidence.owner != ctx.invoker:
            raise NotAuthorized(
                f"Only the owner of the evidence ({evidence.owner.identifier}) "
                f"can transfer it"
            )

        case: Case = ctx.require(Case.TYPE_NAME, evidence.case.identifier)
        if not is_participant_involved(case.participants, tx.participant_id, tx.participant_type):
            raise NotInvolved(
                f"{tx.participant_type} {tx.participant_id} is not involved in "
                f"case {case.case_id}; evidence {tx.evidence_id} can not be transferred"
            )
        if not case.is_open:
            raise CaseClosed(f"Case {case.case_id} is closed")

        new_owner = participant_ref(
            parse_participant_type(tx.participant_type), tx.participant_id,
        )
        old_owner = evidence.owner
        evidence.hand_over(new_owner, ctx.now)
        ctx.store.update(evidence)
        ctx.emit(
            EventKind.EVIDENCE_TRANSFERRED,
            evidence_id=tx.evidence_id,
            old_owner_id=old_owner.identifier,
            new_owner_id=new_owner.identifier,
        )
        return {
            "evidence_id": tx.evidence_id,
            "owner": str(new_owner),
            "history_length": len(evidence.older_owners),
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _calling_agent(self, ctx: TransactionContext) -> Agent:
        agent = ctx.participant(Agent.TYPE_NAME, ctx.invoker.identifier)
        if agent is None:
            raise NotFound(f"Agent {ctx.invoker.identifier} does not exist")
        return agent

    def _office_deposit(self, ctx: TransactionContext, office: str) -> Deposit:
        matches = ctx.queries.run(DEPOSIT_BY_OFFICE, office=office)
        if not matches:
            raise DepositNotFound(f"No deposit found for office {office}")
        return matches[0]
