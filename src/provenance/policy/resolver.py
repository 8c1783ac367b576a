"""Policy resolver — loads runtime_policy.json and exposes every runtime
decision as a typed method call.

No magic. No defaults. If a value is missing from the config, it fails loud.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from provenance.models.custody import AgentJob


@dataclass(frozen=True)
class AutomaticAnalysisPolicy:
    """Resolved settings for the automatic analysis capability."""
    enabled: bool
    defect_kinds: tuple[str, ...]
    indication_modulus: int


class PolicyResolver:
    """Loads and resolves runtime policy.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        jobs = resolver.case_opening_jobs()
        auto = resolver.automatic_analysis()
    """

    def __init__(self, policy: dict[str, Any]) -> None:
        self._policy = policy
        self._validate()

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        """Load from the canonical config directory."""
        return cls(_load_json(config_dir / "runtime_policy.json"))

    def _validate(self) -> None:
        if "version" not in self._policy:
            raise ValueError("runtime_policy.json missing version")
        # Resolve everything once so a broken file fails at load time
        self.case_opening_jobs()
        self.automatic_analysis()

    @property
    def version(self) -> str:
        return str(self._policy["version"])

    # ------------------------------------------------------------------
    # Custody
    # ------------------------------------------------------------------

    def case_opening_jobs(self) -> frozenset[AgentJob]:
        """Agent jobs allowed to open a case."""
        raw = self._policy["custody"]["case_opening_jobs"]
        if not raw:
            raise ValueError("custody.case_opening_jobs must not be empty")
        return frozenset(AgentJob(j) for j in raw)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def automatic_analysis(self) -> AutomaticAnalysisPolicy:
        """Settings of the automatic (heuristic) analysis capability."""
        cfg = self._policy["inspection"]["automatic_analysis"]
        kinds = tuple(cfg["defect_kinds"])
        modulus = int(cfg["indication_modulus"])
        if not kinds:
            raise ValueError("inspection.automatic_analysis.defect_kinds must not be empty")
        if modulus < 1:
            raise ValueError(
                f"indication_modulus must be >= 1, got {modulus}"
            )
        return AutomaticAnalysisPolicy(
            enabled=bool(cfg["enabled"]),
            defect_kinds=kinds,
            indication_modulus=modulus,
        )


def _load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file or raise with clear path."""
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)
