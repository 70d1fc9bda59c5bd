"""
Pydantic models for pgpverify configuration.

These models define the schema of the ``pgpverify`` section in
~/.pgpverify/config.yaml. They provide:
- Type-safe configuration loading with automatic validation
- Human-readable error messages for invalid configuration
- Defaults matching the command line options
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

SERVER_SEPARATORS = re.compile(r"[;,\s]+")

DEFAULT_KEY_SERVERS = "hkps://keyserver.ubuntu.com;hkps://keys.openpgp.org"


def split_servers(value: str) -> List[str]:
    """Split a key server list on ``;``, ``,`` or whitespace."""
    return [s for s in SERVER_SEPARATORS.split(value or "") if s]


# ============================================================================
# Key servers
# ============================================================================


class ProxyConfig(BaseModel):
    """Outbound HTTP proxy for key server traffic."""
    host: str
    port: int = Field(default=8080, gt=0, lt=65536)
    username: Optional[str] = None
    password: Optional[str] = None
    protocol: str = "http"

    model_config = {"extra": "allow"}


class KeyServerConfig(BaseModel):
    """Key server access, timeouts and retry behaviour."""
    servers: str = DEFAULT_KEY_SERVERS
    load_balance: bool = True
    connect_timeout: float = Field(default=1.0, gt=0)
    read_timeout: float = Field(default=5.0, gt=0)
    max_retries: int = Field(default=5, ge=1)
    backoff_base_delay: float = Field(default=0.5, ge=0)
    not_found_refresh_hours: float = Field(default=24.0, ge=0)
    offline: bool = False
    proxy: Optional[ProxyConfig] = None

    @field_validator("servers")
    @classmethod
    def validate_servers(cls, v: str) -> str:
        if not split_servers(v):
            raise ValueError("At least one key server is required")
        return v

    @property
    def server_list(self) -> List[str]:
        return split_servers(self.servers)

    model_config = {"extra": "allow"}


# ============================================================================
# Keys map locations
# ============================================================================


class FilterConfig(BaseModel):
    """Include or exclude filter applied to a keys map after parsing."""
    pattern: str = ".*"
    value: str = "any"

    @field_validator("pattern")
    @classmethod
    def validate_regex(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid regex pattern: {e}") from e
        return v


class KeysMapLocationConfig(BaseModel):
    """One keys map source: a path, file: URL or http(s) URL."""
    location: str
    includes: List[FilterConfig] = Field(default_factory=list)
    excludes: List[FilterConfig] = Field(default_factory=list)


# ============================================================================
# Top level
# ============================================================================


class VerifyConfig(BaseModel):
    """Root configuration for a verification run."""
    cache_path: Optional[Path] = None
    key_server: KeyServerConfig = Field(default_factory=KeyServerConfig)
    keys_map_locations: List[KeysMapLocationConfig] = Field(default_factory=list)
    fail_weak_signature: bool = False
    verify_snapshots: bool = False
    verify_pom_files: bool = True
    report_file: Optional[Path] = None
    disable_checksum: bool = False
    quiet: bool = False
    max_workers: int = Field(default=1, ge=1)

    @field_validator("keys_map_locations", mode="before")
    @classmethod
    def accept_plain_locations(cls, v):
        if isinstance(v, str):
            v = [v]
        if isinstance(v, list):
            return [{"location": item} if isinstance(item, str) else item for item in v]
        return v

    @model_validator(mode="after")
    def check_report_file(self) -> "VerifyConfig":
        if self.report_file is not None and self.report_file.is_dir():
            raise ValueError(f"report_file ({self.report_file}) must not be a directory")
        return self

    model_config = {"extra": "allow"}
