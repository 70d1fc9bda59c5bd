"""
pgpverify JSON Reports

Serializes verification results to a JSON document with camelCase keys.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pgpverify.pgp.keyid import fingerprint_to_hex
from pgpverify.pgp.results import SignatureCheckResult

logger = logging.getLogger(__name__)


def _date(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat(timespec="milliseconds")


def _drop_none(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def result_to_dict(result: SignatureCheckResult) -> Dict[str, Any]:
    artifact = result.artifact
    data: Dict[str, Any] = {
        "artifact": _drop_none({
            "groupId": artifact.group_id,
            "artifactId": artifact.artifact_id,
            "type": artifact.type,
            "version": artifact.version,
            "classifier": artifact.classifier,
        }),
        "status": result.status.value,
    }

    if result.key is not None:
        key = result.key
        data["key"] = _drop_none({
            "fingerprint": fingerprint_to_hex(key.fingerprint),
            "master": fingerprint_to_hex(key.master) if key.master else None,
            "uids": list(key.uids),
            "version": key.version,
            "algorithm": key.algorithm,
            "bits": key.bits,
            "date": _date(key.date),
        })

    if result.signature is not None:
        signature = result.signature
        data["signature"] = _drop_none({
            "hashAlgorithm": signature.hash_algorithm,
            "keyAlgorithm": signature.key_algorithm,
            "keyId": str(signature.key_id),
            "date": _date(signature.date),
            "version": signature.version,
        })

    if result.revocation_signature is not None:
        revocation = result.revocation_signature
        data["revocationSignature"] = _drop_none({
            "date": _date(revocation.date),
            "reason": revocation.reason,
            "description": revocation.description,
        })

    data["keyShowUrl"] = result.key_show_url
    data["errorMessage"] = result.error_message
    return _drop_none(data)


def write_report_as_json(report_file: Path, results: Iterable[SignatureCheckResult]) -> None:
    """Write all results as a JSON array, creating parent directories."""
    report: List[Dict[str, Any]] = [result_to_dict(r) for r in results]
    report_file = Path(report_file)
    report_file.parent.mkdir(parents=True, exist_ok=True)
    report_file.write_text(json.dumps(report, indent=2) + "\n", encoding="utf-8")
    logger.info("Verification report written to %s", report_file)
