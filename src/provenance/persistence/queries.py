"""Named query service — the indexed lookups the transaction handlers need.

Queries are registered by name and take keyword parameters. Every query
returns a list ordered by insertion into the store. Queries run against
the transaction view, so they see writes staged earlier in the same
transaction.

Registered queries:
    GetDepositByOffice(office)
    EvidencesByCase(case)
    CalibrationsByWork(work)
    AcquisitionsByCalibration(calibration)
    AnalysisByAcquisitionAndAnalyst(acquisition, analyst)
"""

from __future__ import annotations

from typing import Any, Callable

from provenance.models.custody import Deposit, Evidence
from provenance.models.inspection import Acquisition, Analysis, Calibration
from provenance.models.reference import Reference
from provenance.participants.directory import ParticipantDirectory
from provenance.persistence.asset_store import StoreTransaction

DEPOSIT_BY_OFFICE = "GetDepositByOffice"
EVIDENCES_BY_CASE = "EvidencesByCase"
CALIBRATIONS_BY_WORK = "CalibrationsByWork"
ACQUISITIONS_BY_CALIBRATION = "AcquisitionsByCalibration"
ANALYSIS_BY_ACQUISITION_AND_ANALYST = "AnalysisByAcquisitionAndAnalyst"

QueryFn = Callable[..., list[Any]]

_QUERIES: dict[str, QueryFn] = {}


def _named(name: str) -> Callable[[QueryFn], QueryFn]:
    def register(fn: QueryFn) -> QueryFn:
        _QUERIES[name] = fn
        return fn
    return register


@_named(DEPOSIT_BY_OFFICE)
def _deposit_by_office(
    view: StoreTransaction, directory: ParticipantDirectory, *, office: str,
) -> list[Deposit]:
    return [d for d in directory.all(Deposit.TYPE_NAME) if d.office == office]


@_named(EVIDENCES_BY_CASE)
def _evidences_by_case(
    view: StoreTransaction, directory: ParticipantDirectory, *, case: Reference,
) -> list[Evidence]:
    return [e for e in view.all(Evidence.TYPE_NAME) if e.case == case]


@_named(CALIBRATIONS_BY_WORK)
def _calibrations_by_work(
    view: StoreTransaction, directory: ParticipantDirectory, *, work: Reference,
) -> list[Calibration]:
    return [c for c in view.all(Calibration.TYPE_NAME) if c.work == work]


@_named(ACQUISITIONS_BY_CALIBRATION)
def _acquisitions_by_calibration(
    view: StoreTransaction, directory: ParticipantDirectory, *, calibration: Reference,
) -> list[Acquisition]:
    return [
        a for a in view.all(Acquisition.TYPE_NAME)
        if a.calibration == calibration
    ]


@_named(ANALYSIS_BY_ACQUISITION_AND_ANALYST)
def _analysis_by_acquisition_and_analyst(
    view: StoreTransaction,
    directory: ParticipantDirectory,
    *,
    acquisition: Reference,
    analyst: Reference,
) -> list[Analysis]:
    return [
        a for a in view.all(Analysis.TYPE_NAME)
        if a.acquisition == acquisition and a.analyst == analyst
    ]


class QueryService:
    """Executes registered named queries against one transaction view."""

    def __init__(self, view: StoreTransaction, directory: ParticipantDirectory) -> None:
        self._view = view
        self._directory = directory

    def run(self, name: str, **params: Any) -> list[Any]:
        """Run a named query. Raises KeyError for an unknown query name."""
        try:
            fn = _QUERIES[name]
        except KeyError:
            raise KeyError(f"Unknown query: {name}") from None
        return fn(self._view, self._directory, **params)

    @staticmethod
    def names() -> list[str]:
        return sorted(_QUERIES)
