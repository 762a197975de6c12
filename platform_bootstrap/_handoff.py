"""Typed documents passed from one phase to the next.

Each phase ends by writing an artifact; the next phase refuses to start
without it and re-reads it on every run, so a re-run of an upstream phase is
always picked up. Artifacts are overwritten, never appended to.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

from ._bootstrap_errors import ArtifactError, MissingArtifactError
from ._state_store import write_atomically

logger = logging.getLogger(__name__)

ARTIFACT_SCHEMA_VERSION = 1


class Phase(StrEnum):
    """Ordered phases of a deployment."""

    INFRASTRUCTURE = "infrastructure"
    MANAGEMENT_PLANE = "management-plane"
    WORKLOAD_CLUSTER = "workload-cluster"

    @property
    def entrypoint(self) -> str:
        """Return the CLI that produces this phase's artifact."""
        return {
            Phase.INFRASTRUCTURE: "provision_infrastructure",
            Phase.MANAGEMENT_PLANE: "bootstrap_management_plane",
            Phase.WORKLOAD_CLUSTER: "provision_workload_cluster",
        }[self]


def fingerprint(payload: Mapping[str, Any]) -> str:
    """Return a stable digest of ``payload``.

    Examples
    --------
    >>> fingerprint({"b": 1, "a": 2}) == fingerprint({"a": 2, "b": 1})
    True
    """
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class PhaseArtifact:
    """Outputs of a completed phase."""

    phase: Phase
    payload: Mapping[str, Any]
    produced_at: str
    fingerprint: str
    schema_version: int = ARTIFACT_SCHEMA_VERSION

    def require(self, key: str) -> Any:
        """Return ``payload[key]`` or raise :class:`ArtifactError`."""
        if key not in self.payload or self.payload[key] in (None, ""):
            msg = f"{self.phase} artifact lacks {key!r}"
            raise ArtifactError(msg, phase=self.phase.value)
        return self.payload[key]

    def to_mapping(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "schema_version": self.schema_version,
            "produced_at": self.produced_at,
            "fingerprint": self.fingerprint,
            "payload": dict(self.payload),
        }

    @classmethod
    def from_mapping(cls, data: Any) -> PhaseArtifact:
        if not isinstance(data, dict):
            raise ArtifactError("artifact must be a JSON object")
        try:
            phase = Phase(data.get("phase"))
        except ValueError as exc:
            msg = f"unknown artifact phase {data.get('phase')!r}"
            raise ArtifactError(msg) from exc
        version = data.get("schema_version")
        if version != ARTIFACT_SCHEMA_VERSION:
            msg = f"unsupported artifact schema version {version!r}"
            raise ArtifactError(msg, phase=phase.value)
        payload = data.get("payload")
        if not isinstance(payload, dict):
            raise ArtifactError("artifact payload must be an object", phase=phase.value)
        return cls(
            phase=phase,
            payload=payload,
            produced_at=str(data.get("produced_at", "")),
            fingerprint=str(data.get("fingerprint") or fingerprint(payload)),
            schema_version=version,
        )


def build_artifact(
    phase: Phase,
    inputs: Mapping[str, Any],
    *,
    now: Callable[[], datetime] | None = None,
) -> PhaseArtifact:
    """Build the artifact for ``phase`` from its outputs.

    The payload must be JSON-serialisable.
    """
    payload = json.loads(json.dumps(dict(inputs)))
    produced = (now or (lambda: datetime.now(UTC)))()
    return PhaseArtifact(
        phase=phase,
        payload=payload,
        produced_at=produced.isoformat(),
        fingerprint=fingerprint(payload),
    )


class ArtifactStore:
    """One JSON document per phase under the deployment's artifact directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def path_for(self, phase: Phase) -> Path:
        return self.directory / f"{phase.value}.json"

    def exists(self, phase: Phase) -> bool:
        return self.path_for(phase).exists()

    def write(self, artifact: PhaseArtifact) -> Path:
        """Write ``artifact``, replacing any previous one for the phase."""
        path = self.path_for(artifact.phase)
        write_atomically(path, json.dumps(artifact.to_mapping(), indent=2))
        logger.info("Wrote %s artifact to %s", artifact.phase, path)
        return path

    def load(self, phase: Phase) -> PhaseArtifact:
        """Return the artifact of ``phase`` or raise a precondition failure."""
        path = self.path_for(phase)
        if not path.exists():
            msg = f"no {phase.value} artifact at {path}"
            raise MissingArtifactError(
                msg,
                phase=phase.value,
                remediation=f"Run {phase.entrypoint} first.",
            )
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            msg = f"failed to parse {path}: {exc}"
            raise ArtifactError(msg, phase=phase.value) from exc
        artifact = PhaseArtifact.from_mapping(data)
        if artifact.phase is not phase:
            msg = f"{path} holds a {artifact.phase.value} artifact"
            raise ArtifactError(msg, phase=phase.value)
        return artifact

    def discard(self, phase: Phase) -> bool:
        """Delete the artifact of ``phase``; return whether one existed."""
        path = self.path_for(phase)
        if not path.exists():
            return False
        path.unlink()
        return True


__all__ = [
    "ARTIFACT_SCHEMA_VERSION",
    "ArtifactStore",
    "Phase",
    "PhaseArtifact",
    "build_artifact",
    "fingerprint",
]
