"""
Shared utility functions for parsing and data manipulation

Provides common helpers for:
- String parsing: Environment variable conversion (parse_bool, parse_int, parse_float, split_csv)
- Color parsing: Calendar hex colors to packed integers
- Stable identifiers: Hashing text into signed 64-bit ids

These utilities are used throughout calwake for configuration parsing and data handling.
"""

from __future__ import annotations

import hashlib
import socket


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Interpret env-style booleans."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_int(value: str | None, default: int) -> int:
    """Best-effort int parser with fallback."""
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_float(value: str | None, default: float) -> float:
    """Best-effort float parser with fallback."""
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def split_csv(value: str | None) -> list[str]:
    """Split comma-separated strings into trimmed tokens."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def sanitize_topic_segment(value: str) -> str:
    """Convert hostnames into MQTT-safe topic segments."""
    return value.lower().replace(".", "_").replace("/", "_").replace("+", "_").replace("#", "_")


def default_hostname() -> str:
    return socket.gethostname()


def stable_int64(*parts: str) -> int:
    """Hash text parts into a non-negative id that fits a signed 64-bit integer."""
    digest = hashlib.blake2b("\x1f".join(parts).encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") & 0x7FFF_FFFF_FFFF_FFFF


def parse_hex_color(value: str | None, default: int = 0) -> int:
    """Parse '#RRGGBB' / '#AARRGGBB' strings into an ARGB int (opaque when alpha is absent)."""
    if not value:
        return default
    text = value.strip().lstrip("#")
    if len(text) not in (6, 8):
        return default
    try:
        parsed = int(text, 16)
    except ValueError:
        return default
    if len(text) == 6:
        parsed |= 0xFF000000
    # Keep the signed 32-bit view used for display colors.
    if parsed >= 0x80000000:
        parsed -= 0x100000000
    return parsed
