"""State store — JSON snapshot persistence for assets and participants.

Stores and recovers:
- Custody assets (cases, evidence with full ownership history)
- Inspection assets (tubes, works, calibrations, acquisitions, analyses)
- The participant directory (agents, deposits, staff)

References are stored as fully qualified identifiers and timestamps as
ISO-8601 strings. Writes go to a temporary file that replaces the
snapshot in one rename, so a crash never leaves a half-written file.
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from provenance.models.custody import (
    Agent,
    AgentJob,
    Case,
    CaseStatus,
    Deposit,
    Evidence,
    OwnerRecord,
)
from provenance.models.inspection import (
    Acquisition,
    Analysis,
    AnalysisMethod,
    Calibration,
    Staff,
    StaffRole,
    TrackState,
    Tube,
    Work,
    WorkState,
)
from provenance.models.reference import Reference
from provenance.participants.directory import ParticipantDirectory
from provenance.persistence.asset_store import AssetStore


def _ref(ref: Optional[Reference]) -> Optional[str]:
    return ref.fully_qualified_identifier if ref is not None else None


def _parse_ref(text: Optional[str]) -> Optional[Reference]:
    return Reference.parse(text) if text else None


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_ts(text: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(text) if text else None


def _atomic_write(path: Path, content: str) -> None:
    """Write via temp file + rename so the snapshot is never half-written."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


# ----------------------------------------------------------------------
# Asset codecs
# ----------------------------------------------------------------------

def _case_to_dict(c: Case) -> dict[str, Any]:
    return {
        "case_id": c.case_id,
        "description": c.description,
        "opened_by": _ref(c.opened_by),
        "participants": [_ref(p) for p in c.participants],
        "status": c.status.value,
        "resolution": c.resolution,
        "opening_date": _ts(c.opening_date),
        "closure_date": _ts(c.closure_date),
    }


def _case_from_dict(data: dict[str, Any]) -> Case:
    return Case(
        case_id=data["case_id"],
        description=data["description"],
        opened_by=Reference.parse(data["opened_by"]),
        participants=[Reference.parse(p) for p in data["participants"]],
        status=CaseStatus(data["status"]),
        resolution=data.get("resolution", ""),
        opening_date=_parse_ts(data.get("opening_date")),
        closure_date=_parse_ts(data.get("closure_date")),
    )


def _evidence_to_dict(e: Evidence) -> dict[str, Any]:
    return {
        "evidence_id": e.evidence_id,
        "hash": e.hash,
        "hash_type": e.hash_type,
        "description": e.description,
        "extension": e.extension,
        "owner": _ref(e.owner),
        "case": _ref(e.case),
        "older_owners": [
            {"owner": _ref(o.owner), "till": _ts(o.till)}
            for o in e.older_owners
        ],
        "addition_date": _ts(e.addition_date),
    }


def _evidence_from_dict(data: dict[str, Any]) -> Evidence:
    return Evidence(
        evidence_id=data["evidence_id"],
        hash=data["hash"],
        hash_type=data["hash_type"],
        description=data["description"],
        extension=data["extension"],
        owner=Reference.parse(data["owner"]),
        case=Reference.parse(data["case"]),
        older_owners=tuple(
            OwnerRecord(Reference.parse(o["owner"]), _parse_ts(o["till"]))
            for o in data.get("older_owners", [])
        ),
        addition_date=_parse_ts(data.get("addition_date")),
    )


def _tube_to_dict(t: Tube) -> dict[str, Any]:
    return {
        "tube_id": t.tube_id,
        "pos_x": t.pos_x,
        "pos_y": t.pos_y,
        "length": t.length,
    }


def _tube_from_dict(data: dict[str, Any]) -> Tube:
    return Tube(
        tube_id=data["tube_id"],
        pos_x=data["pos_x"],
        pos_y=data["pos_y"],
        length=data["length"],
    )


def _work_to_dict(w: Work) -> dict[str, Any]:
    return {
        "work_id": w.work_id,
        "description": w.description,
        "state": w.state.value,
        "work_date": _ts(w.work_date),
    }


def _work_from_dict(data: dict[str, Any]) -> Work:
    return Work(
        work_id=data["work_id"],
        description=data["description"],
        state=WorkState(data["state"]),
        work_date=_parse_ts(data.get("work_date")),
    )


def _calibration_to_dict(c: Calibration) -> dict[str, Any]:
    return {
        "cal_id": c.cal_id,
        "equipment": c.equipment,
        "work": _ref(c.work),
        "cal_date": _ts(c.cal_date),
        "primary_state": c.primary_state.value,
        "secondary_state": c.secondary_state.value,
        "resolution_state": c.resolution_state.value,
        "primary_analyst": _ref(c.primary_analyst),
        "secondary_analyst": _ref(c.secondary_analyst),
        "advanced_analyst": _ref(c.advanced_analyst),
    }


def _calibration_from_dict(data: dict[str, Any]) -> Calibration:
    return Calibration(
        cal_id=data["cal_id"],
        equipment=data["equipment"],
        work=Reference.parse(data["work"]),
        cal_date=_parse_ts(data.get("cal_date")),
        primary_state=TrackState(data["primary_state"]),
        secondary_state=TrackState(data["secondary_state"]),
        resolution_state=TrackState(data["resolution_state"]),
        primary_analyst=_parse_ref(data.get("primary_analyst")),
        secondary_analyst=_parse_ref(data.get("secondary_analyst")),
        advanced_analyst=_parse_ref(data.get("advanced_analyst")),
    )


def _acquisition_to_dict(a: Acquisition) -> dict[str, Any]:
    return {
        "acq_id": a.acq_id,
        "filename": a.filename,
        "hash": a.hash,
        "tube": _ref(a.tube),
        "calibration": _ref(a.calibration),
        "acquisitor": _ref(a.acquisitor),
        "acq_date": _ts(a.acq_date),
    }


def _acquisition_from_dict(data: dict[str, Any]) -> Acquisition:
    return Acquisition(
        acq_id=data["acq_id"],
        filename=data["filename"],
        hash=data["hash"],
        tube=Reference.parse(data["tube"]),
        calibration=Reference.parse(data["calibration"]),
        acquisitor=Reference.parse(data["acquisitor"]),
        acq_date=_parse_ts(data.get("acq_date")),
    )


def _analysis_to_dict(a: Analysis) -> dict[str, Any]:
    return {
        "analysis_id": a.analysis_id,
        "method": a.method.value,
        "acquisition": _ref(a.acquisition),
        "analyst": _ref(a.analyst),
        "indications": list(a.indications),
        "analysis_date": _ts(a.analysis_date),
    }


def _analysis_from_dict(data: dict[str, Any]) -> Analysis:
    return Analysis(
        analysis_id=data["analysis_id"],
        method=AnalysisMethod(data["method"]),
        acquisition=Reference.parse(data["acquisition"]),
        analyst=Reference.parse(data["analyst"]),
        indications=tuple(data.get("indications", [])),
        analysis_date=_parse_ts(data.get("analysis_date")),
    )


_ASSET_CODECS: dict[str, tuple[Callable[[Any], dict[str, Any]], Callable[[dict[str, Any]], Any]]] = {
    Case.TYPE_NAME: (_case_to_dict, _case_from_dict),
    Evidence.TYPE_NAME: (_evidence_to_dict, _evidence_from_dict),
    Tube.TYPE_NAME: (_tube_to_dict, _tube_from_dict),
    Work.TYPE_NAME: (_work_to_dict, _work_from_dict),
    Calibration.TYPE_NAME: (_calibration_to_dict, _calibration_from_dict),
    Acquisition.TYPE_NAME: (_acquisition_to_dict, _acquisition_from_dict),
    Analysis.TYPE_NAME: (_analysis_to_dict, _analysis_from_dict),
}


class StateStore:
    """JSON file-based snapshot of the asset store and directory.

    Usage:
        state = StateStore(Path("data/provenance_state.json"))
        state.save(store, directory)

        # On recovery:
        store = state.load_assets()
        directory = state.load_directory()
    """

    def __init__(self, storage_path: Path) -> None:
        self._path = storage_path
        self._state: dict[str, Any] = {}
        if storage_path.exists():
            self._load()

    def _load(self) -> None:
        with self._path.open("r", encoding="utf-8") as f:
            self._state = json.load(f)

    def _save(self) -> None:
        _atomic_write(
            self._path,
            json.dumps(self._state, indent=2, sort_keys=True, ensure_ascii=False),
        )

    def save(self, store: AssetStore, directory: ParticipantDirectory) -> None:
        """Snapshot both the assets and the participant directory."""
        self._state["assets"] = self._serialize_assets(store)
        self._state["participants"] = self._serialize_participants(directory)
        self._save()

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    def _serialize_assets(self, store: AssetStore) -> dict[str, list[dict[str, Any]]]:
        assets: dict[str, list[dict[str, Any]]] = {}
        for type_name, (encode, _) in _ASSET_CODECS.items():
            assets[type_name] = [encode(e) for e in store.all(type_name)]
        return assets

    def load_assets(self) -> AssetStore:
        """Deserialize all assets into a fresh store."""
        store = AssetStore()
        for type_name, entries in self._state.get("assets", {}).items():
            codec = _ASSET_CODECS.get(type_name)
            if codec is None:
                raise ValueError(f"Unknown asset type in snapshot: {type_name}")
            _, decode = codec
            store.restore(decode(data) for data in entries)
        return store

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    def _serialize_participants(
        self, directory: ParticipantDirectory,
    ) -> dict[str, list[dict[str, Any]]]:
        return {
            Agent.TYPE_NAME: [
                {
                    "badge_number": a.badge_number,
                    "office": a.office,
                    "job": a.job.value,
                    "name": a.name,
                }
                for a in directory.all(Agent.TYPE_NAME)
            ],
            Deposit.TYPE_NAME: [
                {
                    "participant_id": d.participant_id,
                    "office": d.office,
                    "name": d.name,
                }
                for d in directory.all(Deposit.TYPE_NAME)
            ],
            Staff.TYPE_NAME: [
                {
                    "staff_id": s.staff_id,
                    "role": s.role.value,
                    "name": s.name,
                }
                for s in directory.all(Staff.TYPE_NAME)
            ],
        }

    def load_directory(self) -> ParticipantDirectory:
        """Deserialize the participant directory."""
        directory = ParticipantDirectory()
        data = self._state.get("participants", {})
        for a in data.get(Agent.TYPE_NAME, []):
            directory.register(Agent(
                badge_number=a["badge_number"],
                office=a["office"],
                job=AgentJob(a["job"]),
                name=a.get("name", ""),
            ))
        for d in data.get(Deposit.TYPE_NAME, []):
            directory.register(Deposit(
                participant_id=d["participant_id"],
                office=d["office"],
                name=d.get("name", ""),
            ))
        for s in data.get(Staff.TYPE_NAME, []):
            directory.register(Staff(
                staff_id=s["staff_id"],
                role=StaffRole(s["role"]),
                name=s.get("name", ""),
            ))
        return directory
