"""
pgpverify Artifacts

Artifacts to verify, as listed in a YAML manifest:

    artifacts:
      - group_id: junit
        artifact_id: junit
        version: "4.12"
        file: libs/junit-4.12.jar
        signature: libs/junit-4.12.jar.asc   # defaults to <file>.asc

Relative paths are resolved against the manifest's directory. Skip
filters drop SNAPSHOT and POM artifacts before verification.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from pgpverify.pgp.results import ArtifactInfo

SNAPSHOT = "SNAPSHOT"
SIGNATURE_EXTENSION = ".asc"
_TIMESTAMP_VERSION = re.compile(r"^(.*)-(\d{8}\.\d{6})-(\d+)$")


class ManifestError(ValueError):
    """Raised for an unreadable or invalid artifact manifest."""


@dataclass(frozen=True)
class Artifact:
    """A resolved (or unresolved) artifact and its detached signature."""

    group_id: str
    artifact_id: str
    version: str
    type: str = "jar"
    classifier: Optional[str] = None
    file: Optional[Path] = None
    signature_file: Optional[Path] = None

    @property
    def base_version(self) -> str:
        """Version with a timestamped snapshot collapsed to ``-SNAPSHOT``."""
        match = _TIMESTAMP_VERSION.match(self.version)
        if match:
            return f"{match.group(1)}-{SNAPSHOT}"
        return self.version

    @property
    def is_snapshot(self) -> bool:
        return self.base_version.endswith(SNAPSHOT)

    @property
    def id(self) -> str:
        parts = [self.group_id, self.artifact_id, self.type]
        if self.classifier:
            parts.append(self.classifier)
        parts.append(self.base_version)
        return ":".join(parts)

    @property
    def key(self) -> str:
        """Coordinates as a keys map pattern."""
        return f"{self.group_id}:{self.artifact_id}:{self.type}:{self.version}"

    @property
    def info(self) -> ArtifactInfo:
        return ArtifactInfo(
            group_id=self.group_id,
            artifact_id=self.artifact_id,
            type=self.type,
            version=self.version,
            classifier=self.classifier,
        )

    def __str__(self) -> str:
        return self.id


# =============================================================================
# Manifest
# =============================================================================

class ManifestEntry(BaseModel):
    group_id: str
    artifact_id: str
    version: str
    type: str = "jar"
    classifier: Optional[str] = None
    file: Optional[Path] = None
    signature: Optional[Path] = None

    @field_validator("version", mode="before")
    @classmethod
    def version_as_text(cls, v):
        # YAML reads an unquoted 4.12 as a float
        return str(v) if isinstance(v, (int, float)) else v

    model_config = {"extra": "forbid"}


class Manifest(BaseModel):
    artifacts: List[ManifestEntry] = Field(default_factory=list)


def _resolve(base: Path, path: Optional[Path]) -> Optional[Path]:
    if path is None:
        return None
    return path if path.is_absolute() else base / path


def load_manifest(path: Path) -> List[Artifact]:
    """Read artifacts from a YAML manifest.

    Raises:
        ManifestError: If the file cannot be parsed or fails validation.
    """
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ManifestError(f"Cannot read manifest {path}: {e}") from e

    try:
        manifest = Manifest.model_validate(data)
    except ValidationError as e:
        raise ManifestError(f"Invalid manifest {path}:\n{e}") from e

    base = path.parent
    artifacts = []
    for entry in manifest.artifacts:
        file = _resolve(base, entry.file)
        signature = _resolve(base, entry.signature)
        if signature is None and file is not None:
            signature = file.with_name(file.name + SIGNATURE_EXTENSION)
        artifacts.append(Artifact(
            group_id=entry.group_id,
            artifact_id=entry.artifact_id,
            version=entry.version,
            type=entry.type,
            classifier=entry.classifier,
            file=file,
            signature_file=signature,
        ))
    return artifacts


# =============================================================================
# Skip filters
# =============================================================================

SkipFilter = Callable[[Artifact], bool]


def snapshot_skipper(artifact: Artifact) -> bool:
    return artifact.is_snapshot


def pom_skipper(artifact: Artifact) -> bool:
    return artifact.type.lower() == "pom"


def build_skip_filters(verify_snapshots: bool, verify_pom_files: bool) -> List[SkipFilter]:
    filters: List[SkipFilter] = []
    if not verify_snapshots:
        filters.append(snapshot_skipper)
    if not verify_pom_files:
        filters.append(pom_skipper)
    return filters


def filter_artifacts(artifacts: Iterable[Artifact], skip_filters: Iterable[SkipFilter]) -> List[Artifact]:
    skip_filters = list(skip_filters)
    return [a for a in artifacts if not any(skip(a) for skip in skip_filters)]
