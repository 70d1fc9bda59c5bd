#!/usr/bin/env python3
"""
pgpverify Log Sanitizing

Text that comes from key servers, keys or signatures is attacker
controlled; it is escaped before it reaches a log line.
"""
from typing import Optional


def sanitize_for_log(text: Optional[str]) -> Optional[str]:
    """Escape control characters in text that came from key servers or keys.

    Replaces newlines, carriage returns, tabs, null bytes and ANSI escapes.
    """
    if text is None:
        return None
    return (
        text
        .replace("\x00", "\\x00")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
        .replace("\x1b", "\\x1b")
    )
