"""
pgpverify - OpenPGP signature verification for build artifacts.

pgpverify provides:
- Detached signature verification against keys fetched from HKP key servers
- A disk-backed key cache with a negative cache for keys that do not exist
- A keys map trust policy binding artifact patterns to permitted signer keys
- JSON reports of per-artifact verification results
"""

__version__ = "0.3.0"
__author__ = "pgpverify contributors"
