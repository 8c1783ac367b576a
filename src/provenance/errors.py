"""Transaction errors.

Every validation failure aborts its transaction. The five taxonomy classes
below are what callers branch on (via ``kind``); the concrete subclasses
name the specific precondition that failed.
"""

from __future__ import annotations


class TransactionError(Exception):
    """Base class for all transaction validation failures."""
    kind = "transaction_error"


class NotAuthorized(TransactionError):
    """Role or ownership mismatch."""
    kind = "not_authorized"


class NotFound(TransactionError):
    """A referenced entity does not exist."""
    kind = "not_found"


class Conflict(TransactionError):
    """Duplicate id, already-assigned track or already-involved participant."""
    kind = "conflict"


class InvalidState(TransactionError):
    """Target is in the wrong lifecycle phase."""
    kind = "invalid_state"


class InvalidInput(TransactionError):
    """Unknown enum value or malformed input."""
    kind = "invalid_input"


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

class NotStaff(NotAuthorized):
    pass


class RoleMismatch(NotAuthorized):
    pass


class NotAssignee(NotAuthorized):
    pass


class NotInvolved(NotAuthorized):
    pass


# ---------------------------------------------------------------------------
# Referential
# ---------------------------------------------------------------------------

class DepositNotFound(NotFound):
    pass


class DuplicateId(Conflict):
    pass


class AlreadyInvolved(Conflict):
    pass


class AlreadyAssigned(Conflict):
    pass


class AlreadyAnalyzed(Conflict):
    pass


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class CaseClosed(InvalidState):
    pass


class AlreadyClosed(InvalidState):
    pass


class PrereqNotMet(InvalidState):
    pass


class EmptyCalibration(InvalidState):
    pass


class IncompleteAnalysis(InvalidState):
    pass


class WorkFinished(InvalidState):
    pass


class CalibrationsUnfinished(InvalidState):
    pass


class TrackFinished(InvalidState):
    pass


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------

class WrongType(InvalidInput):
    pass


class UnsupportedTransaction(InvalidInput):
    pass
