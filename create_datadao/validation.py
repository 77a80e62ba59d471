"""Synchronous input validators for interactive prompts.

Each validator returns ``None`` when the input is acceptable, otherwise the
message to show before asking again.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Optional
from urllib.parse import urlparse

Validator = Callable[[str], Optional[str]]

_HEX_RE = re.compile(r"^0x[0-9a-fA-F]+$")
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def validate_repo_url(value: str, host: str = "github.com") -> str | None:
    """Accept ``https://<host>/<owner>/<repo>`` (optionally ending in ``.git``)."""
    text = value.strip()
    if not text:
        return "Repository URL is required"

    parsed = urlparse(text)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return f"Enter a full URL such as https://{host}/<owner>/<repo>"
    if parsed.netloc.lower() not in (host, f"www.{host}"):
        return f"Repository must be hosted on {host} (got {parsed.netloc})"

    parts = [p for p in parsed.path.split("/") if p]
    if len(parts) != 2:
        return f"URL must point at a repository: https://{host}/<owner>/<repo>"
    return None


def repo_url_validator(host: str = "github.com") -> Validator:
    return lambda value: validate_repo_url(value, host)


def validate_release_url(value: str) -> str | None:
    """Accept a ``.tar.gz`` release asset served from GitHub."""
    text = value.strip()
    if not text:
        return "Proof URL is required"
    if not text.endswith(".tar.gz"):
        return "URL must point to a .tar.gz file"
    host = urlparse(text).netloc.lower()
    if not (host == "github.com" or host.endswith(".githubusercontent.com")):
        return "URL should be from GitHub releases"
    return None


def validate_hex_key(value: str, label: str = "Encryption key") -> str | None:
    """Accept a ``0x``-prefixed hex string with an even number of digits."""
    text = value.strip()
    if not text:
        return f"{label} is required"
    if not text.startswith("0x"):
        return f"{label} must start with 0x"
    if not _HEX_RE.match(text) or len(text) % 2:
        return f"{label} must be hex-encoded (0-9, a-f)"
    return None


def validate_address(value: str) -> str | None:
    if not _ADDRESS_RE.match(value.strip()):
        return "Address must be 0x followed by 40 hex characters"
    return None


def validate_positive_int(value: str) -> str | None:
    text = value.strip()
    if not text:
        return "A number is required"
    if not text.isdigit():
        return "Must be a non-negative whole number"
    return None
