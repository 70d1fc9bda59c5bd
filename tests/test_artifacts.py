"""
Tests for artifact manifests and skip filters.
"""
import pytest

from pgpverify.artifacts import (
    Artifact,
    ManifestError,
    build_skip_filters,
    filter_artifacts,
    load_manifest,
    pom_skipper,
    snapshot_skipper,
)
from pgpverify.pgp.results import ArtifactInfo

pytestmark = pytest.mark.core


class TestArtifact:
    def test_id_and_key(self):
        artifact = Artifact("junit", "junit", "4.12")
        assert artifact.id == "junit:junit:jar:4.12"
        assert artifact.key == "junit:junit:jar:4.12"
        assert str(artifact) == artifact.id
        assert artifact.info == ArtifactInfo("junit", "junit", "jar", "4.12")

    def test_classifier_in_id(self):
        artifact = Artifact("org.example", "app", "1.0", classifier="sources")
        assert artifact.id == "org.example:app:jar:sources:1.0"
        assert str(artifact.info) == "org.example:app:jar:sources:1.0"

    def test_timestamped_snapshot(self):
        artifact = Artifact("org.example", "app", "1.0-20200517.083000-3")
        assert artifact.base_version == "1.0-SNAPSHOT"
        assert artifact.is_snapshot
        assert artifact.id == "org.example:app:jar:1.0-SNAPSHOT"
        assert artifact.key == "org.example:app:jar:1.0-20200517.083000-3"

    def test_release_is_not_snapshot(self):
        assert not Artifact("a", "b", "1.0").is_snapshot


class TestLoadManifest:
    def test_paths_resolve_against_manifest(self, tmp_path):
        manifest = tmp_path / "artifacts.yaml"
        manifest.write_text(
            "artifacts:\n"
            "  - group_id: junit\n"
            "    artifact_id: junit\n"
            "    version: 4.12\n"
            "    file: libs/junit-4.12.jar\n"
            "  - group_id: junit\n"
            "    artifact_id: junit\n"
            "    type: pom\n"
            "    version: '4.12'\n"
            "    file: /abs/junit-4.12.pom\n"
            "    signature: /abs/junit-4.12.pom.sig\n"
            "  - group_id: org.example\n"
            "    artifact_id: missing\n"
            "    version: '1'\n"
        )
        jar, pom, missing = load_manifest(manifest)

        assert jar.version == "4.12"
        assert jar.file == tmp_path / "libs" / "junit-4.12.jar"
        assert jar.signature_file == tmp_path / "libs" / "junit-4.12.jar.asc"
        assert pom.type == "pom"
        assert str(pom.signature_file).endswith("junit-4.12.pom.sig")
        assert pom.file.is_absolute()
        assert missing.file is None
        assert missing.signature_file is None

    def test_empty_manifest(self, tmp_path):
        manifest = tmp_path / "artifacts.yaml"
        manifest.write_text("")
        assert load_manifest(manifest) == []

    def test_missing_file(self, tmp_path):
        with pytest.raises(ManifestError, match="Cannot read manifest"):
            load_manifest(tmp_path / "missing.yaml")

    def test_unknown_field(self, tmp_path):
        manifest = tmp_path / "artifacts.yaml"
        manifest.write_text("artifacts:\n  - {group_id: a, artifact_id: b, version: '1', colour: red}\n")
        with pytest.raises(ManifestError, match="Invalid manifest"):
            load_manifest(manifest)

    def test_invalid_yaml(self, tmp_path):
        manifest = tmp_path / "artifacts.yaml"
        manifest.write_text("artifacts: [\n")
        with pytest.raises(ManifestError, match="Cannot read manifest"):
            load_manifest(manifest)


class TestSkipFilters:
    ARTIFACTS = [
        Artifact("a", "lib", "1.0"),
        Artifact("a", "lib", "1.1-SNAPSHOT"),
        Artifact("a", "lib", "1.0", type="pom"),
    ]

    def test_individual_skippers(self):
        release, snapshot, pom = self.ARTIFACTS
        assert snapshot_skipper(snapshot) and not snapshot_skipper(release)
        assert pom_skipper(pom) and not pom_skipper(release)

    @pytest.mark.parametrize("snapshots,poms,expected", [
        (False, True, ["1.0:jar", "1.0:pom"]),
        (True, True, ["1.0:jar", "1.1-SNAPSHOT:jar", "1.0:pom"]),
        (False, False, ["1.0:jar"]),
        (True, False, ["1.0:jar", "1.1-SNAPSHOT:jar"]),
    ])
    def test_build_skip_filters(self, snapshots, poms, expected):
        kept = filter_artifacts(self.ARTIFACTS, build_skip_filters(snapshots, poms))
        assert [f"{a.version}:{a.type}" for a in kept] == expected
