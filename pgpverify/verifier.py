#!/usr/bin/env python3
"""
pgpverify Verifier

Runs signature checks over a list of artifacts and applies the keys map
policy to every result:

- a valid signature must come from a key the keys map allows
- broken signatures, missing keys and missing signatures are accepted
  only where the keys map says so (``badSig``, ``noKey``, ``noSig``)
- weak hash algorithms warn, or fail the run when configured
- unresolved artifacts and processing errors abort the run

A checksum over the artifact ids lets a repeated run over the same
artifacts finish early.
"""
from __future__ import annotations

import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from pgpverify.artifacts import Artifact, build_skip_filters, filter_artifacts, load_manifest
from pgpverify.config import VerifyConfig
from pgpverify.keyserver.cache import KeyCache
from pgpverify.keysmap import KeysMap, KeysMapFilter
from pgpverify.pgp.keys import fingerprint_for_master, key_id_description
from pgpverify.pgp.reports import write_report_as_json
from pgpverify.pgp.results import SignatureCheckResult, SignatureStatus
from pgpverify.pgp.signatures import check_signature, check_weak_hash_algorithm, resolve_signature
from pgpverify.sanitize import sanitize_for_log

logger = logging.getLogger(__name__)

CHECKSUM_FILE_NAME = "pgpverify-prior-validation-checksum"

RESULT_FORMAT = "%s PGP Signature %s\n       %s UserIds: %s"

EMPTY_KEYS_MAP_WARNING = (
    "No keysmap specified in configuration or keysmap contains no entries. PGPVerify will only "
    "check artifacts against their signature. File corruption will be detected. However, without a "
    "keysmap as a reference for trust, valid signatures of any public key will be accepted."
)


class VerificationFailure(Exception):
    """Raised when a verification run must fail."""


# =============================================================================
# Prior validation checksum
# =============================================================================

class ValidationChecksum:
    """SHA-256 over the ordered artifact ids of a successful run.

    A disabled checksum never matches and is never saved.
    """

    def __init__(
        self,
        destination_dir: Optional[Path],
        artifacts: Iterable[Artifact],
        disabled: bool = False,
    ):
        self.file = Path(destination_dir) / CHECKSUM_FILE_NAME if destination_dir is not None else None
        self.checksum = b"" if disabled or self.file is None else self._calculate(artifacts)

    @staticmethod
    def _calculate(artifacts: Iterable[Artifact]) -> bytes:
        digest = hashlib.sha256()
        for artifact in artifacts:
            digest.update(artifact.id.encode("utf-8"))
            digest.update(b"\0")
        result = digest.digest()
        logger.debug("Checksum of resolved artifacts: %s", result.hex())
        return result

    @property
    def disabled(self) -> bool:
        return not self.checksum

    def check_validation(self) -> bool:
        """True only when a prior run saved the same checksum."""
        if self.disabled:
            return False
        try:
            return self.file.read_bytes() == self.checksum
        except OSError as e:
            logger.debug("Validation of artifacts against prior validation run failed with: %s", e)
            return False

    def save_checksum(self) -> None:
        if self.disabled:
            return
        try:
            self.file.parent.mkdir(parents=True, exist_ok=True)
            self.file.write_bytes(self.checksum)
        except OSError as e:
            logger.debug("Failed to save checksum after successful artifact validation: %s", e)


# =============================================================================
# Policy
# =============================================================================

class Verifier:
    """Applies the keys map policy to signature check results."""

    def __init__(
        self,
        keys_map: KeysMap,
        key_cache: KeyCache,
        fail_weak_signature: bool = False,
        quiet: bool = False,
    ):
        self.keys_map = keys_map
        self.key_cache = key_cache
        self.fail_weak_signature = fail_weak_signature
        self.quiet = quiet

    def _info(self, message: str, *args) -> None:
        if not self.quiet:
            logger.info(message, *args)

    def check(self, artifact: Artifact) -> SignatureCheckResult:
        return check_signature(artifact.info, artifact.file, artifact.signature_file, self.key_cache)

    def verify(self, artifacts: Sequence[Artifact], max_workers: int = 1) -> List[SignatureCheckResult]:
        """Check every artifact; results keep the order of ``artifacts``."""
        if max_workers <= 1 or len(artifacts) <= 1:
            return [self.check(artifact) for artifact in artifacts]
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            return list(executor.map(self.check, artifacts))

    def process_result(self, artifact: Artifact, result: SignatureCheckResult) -> bool:
        """Decide whether ``result`` is acceptable for ``artifact``.

        Returns:
            True when the result is consistent with the keys map.

        Raises:
            VerificationFailure: For an unresolved artifact, a processing
                error, or a weak signature with ``fail_weak_signature`` set.
        """
        status = result.status
        info = artifact.info

        if status is SignatureStatus.ARTIFACT_NOT_RESOLVED:
            raise VerificationFailure(f"Artifact not resolved: {artifact.id}")

        if status is SignatureStatus.ERROR:
            raise VerificationFailure(
                f"Failed to process signature for artifact {artifact.id} - {result.error_message}"
            ) from result.error_cause

        if status is SignatureStatus.SIGNATURE_ERROR:
            if self.keys_map.is_broken_signature(info):
                self._info("%s PGP Signature is broken, consistent with keys map.", artifact.id)
                return True
            logger.error(
                "Failed to process signature for artifact %s - %s", artifact.id, result.error_message
            )
            return False

        if status is SignatureStatus.SIGNATURE_NOT_RESOLVED:
            return self._verify_signature_unavailable(artifact)

        if status is SignatureStatus.SIGNATURE_VALID:
            self._verify_weak_signature(result)
            if not self.keys_map.is_valid_key(info, result.key):
                allowed = f"{artifact.key} = {fingerprint_for_master(result.key)}"
                logger.error(
                    "Not allowed artifact %s and keyID:\n\t%s\n\t%s",
                    artifact.id, allowed, result.key_show_url,
                )
                return False
            logger.debug(
                "signature.KeyAlgorithm: %s signature.hashAlgorithm: %s",
                result.key.algorithm, result.signature.hash_algorithm,
            )
            self._info(RESULT_FORMAT, artifact.id, "OK", key_id_description(result.key), self._uids(result))
            return True

        if status is SignatureStatus.SIGNATURE_INVALID:
            if self.keys_map.is_broken_signature(info):
                self._info("%s PGP Signature is broken, consistent with keys map.", artifact.id)
                return True
            logger.error(
                RESULT_FORMAT, artifact.id, "INVALID", key_id_description(result.key), self._uids(result)
            )
            return False

        if status is SignatureStatus.KEY_NOT_FOUND:
            return self._verify_key_not_found(artifact, result)

        return False

    @staticmethod
    def _uids(result: SignatureCheckResult) -> str:
        return "[" + ", ".join(sanitize_for_log(uid) for uid in result.key.uids) + "]"

    def _verify_weak_signature(self, result: SignatureCheckResult) -> None:
        try:
            weak = check_weak_hash_algorithm(result.signature)
        except ValueError as e:
            raise VerificationFailure(str(e)) from e
        if weak is None:
            return
        message = f"Weak signature algorithm used: {weak}"
        if self.fail_weak_signature:
            logger.error(message)
            raise VerificationFailure(message)
        logger.warning(message)

    def _verify_signature_unavailable(self, artifact: Artifact) -> bool:
        if self.keys_map.is_empty():
            logger.warning("No signature for %s", artifact.id)
            return True
        if self.keys_map.is_no_signature(artifact.info):
            self._info("%s PGP Signature unavailable, consistent with keys map.", artifact.id)
            return True
        if self.keys_map.is_with_key(artifact.info):
            logger.error("Unsigned artifact is listed with key in keys map: %s", artifact.id)
        else:
            logger.error("Unsigned artifact not listed in keys map: %s", artifact.id)
        return False

    def _verify_key_not_found(self, artifact: Artifact, result: SignatureCheckResult) -> bool:
        revocation = result.revocation_signature
        if revocation is not None and result.signature is not None:
            key_id = result.signature.key_id
            if self.keys_map.is_valid_key_without_public_key(artifact.info, key_id):
                self._info(
                    "%s PGP key %s is revoked and has no public key, consistent with keys map.",
                    artifact.id, key_id,
                )
                return True
            logger.error(
                "PGP key %s for artifact %s has been revoked and public key is not available - %s %s",
                key_id, artifact.id, revocation.reason_as_string, sanitize_for_log(revocation.description),
            )
            return False

        if self.keys_map.is_key_missing(artifact.info):
            self._info("%s PGP key not found on keyserver, consistent with keys map.", artifact.id)
            return True

        logger.error("PGP key %s not found on keyserver for artifact %s", result.key_show_url, artifact.id)
        return False

    def process_results(
        self,
        artifacts: Sequence[Artifact],
        results: Sequence[SignatureCheckResult],
        report_file: Optional[Path] = None,
    ) -> None:
        """Write the report, apply the policy and fail on any error.

        Raises:
            VerificationFailure: When any result is rejected.
        """
        if report_file is not None:
            try:
                write_report_as_json(report_file, results)
            except OSError as e:
                raise VerificationFailure(f"Cannot write report {report_file}: {e}") from e

        errors = [not self.process_result(artifact, result) for artifact, result in zip(artifacts, results)]
        if any(errors):
            raise VerificationFailure("Signature errors")


# =============================================================================
# Run
# =============================================================================

def build_keys_map(config: VerifyConfig) -> KeysMap:
    """Load every configured keys map location into one map.

    Raises:
        KeysMapError: For malformed content.
        OSError: When a location cannot be read.
    """
    keys_map = KeysMap()
    for location in config.keys_map_locations:
        keys_map.load(
            location.location,
            includes=[KeysMapFilter(f.pattern, f.value) for f in location.includes],
            excludes=[KeysMapFilter(f.pattern, f.value) for f in location.excludes],
        )
    if keys_map.is_empty():
        logger.warning(EMPTY_KEYS_MAP_WARNING)
    return keys_map


def run_check(
    config: VerifyConfig,
    manifest_path: Path,
    key_cache: Optional[KeyCache] = None,
    checksum_dir: Optional[Path] = None,
) -> List[SignatureCheckResult]:
    """Verify every artifact of a manifest under ``config``.

    ``checksum_dir`` defaults to the manifest's directory. Returns the
    check results, or an empty list when a prior run already validated
    the same artifacts.

    Raises:
        VerificationFailure: When the run fails.
    """
    manifest_path = Path(manifest_path)
    artifacts = filter_artifacts(
        load_manifest(manifest_path),
        build_skip_filters(config.verify_snapshots, config.verify_pom_files),
    )

    checksum = ValidationChecksum(
        checksum_dir if checksum_dir is not None else manifest_path.parent,
        artifacts,
        disabled=config.disable_checksum,
    )
    if checksum.check_validation():
        if not config.quiet:
            logger.info(
                "Artifacts were already validated in a previous run. "
                "Execution finished early as the checksum for the collection of artifacts "
                "has not changed."
            )
        return []

    keys_map = build_keys_map(config)
    if key_cache is None:
        key_cache = build_key_cache(config)

    verifier = Verifier(keys_map, key_cache, config.fail_weak_signature, config.quiet)
    results = verifier.verify(artifacts, config.max_workers)
    verifier.process_results(artifacts, results, config.report_file)
    checksum.save_checksum()
    return results


def prefetch_keys(
    config: VerifyConfig,
    manifest_path: Path,
    key_cache: Optional[KeyCache] = None,
) -> List[SignatureCheckResult]:
    """Resolve the signature and key of every manifest artifact into the cache.

    Nothing is verified. Returns the results of artifacts whose signature
    or key could not be resolved; each one is also logged as a warning.
    """
    artifacts = filter_artifacts(
        load_manifest(Path(manifest_path)),
        build_skip_filters(config.verify_snapshots, config.verify_pom_files),
    )
    if key_cache is None:
        key_cache = build_key_cache(config)

    unresolved = []
    for artifact in artifacts:
        result = resolve_signature(artifact.info, artifact.file, artifact.signature_file, key_cache)
        if result is None:
            continue
        unresolved.append(result)
        if not config.quiet:
            logger.warning(
                "Resolve signature and key for: %s - %s %s",
                artifact.id, result.status.value, sanitize_for_log(result.error_message or ""),
            )
    return unresolved


def default_cache_dir() -> Path:
    return Path.home() / ".pgpverify" / "pgpkeys-cache"


def build_key_cache(config: VerifyConfig) -> KeyCache:
    """Key cache at the configured path (or the default) over the configured servers."""
    return KeyCache.from_config(config.cache_path or default_cache_dir(), config.key_server)
