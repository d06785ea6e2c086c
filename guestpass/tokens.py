"""Invitation token minting and check-in payload parsing."""

from __future__ import annotations

import re
import uuid
from urllib.parse import parse_qs, urlsplit

from .errors import ValidationError
from .utils import join_url

INVITATION_PATH = "invitation"

_token_pattern = re.compile(r"^[A-Za-z0-9_-]{8,64}$")
_invitation_path_pattern = re.compile(rf"(?:^|/){INVITATION_PATH}/([A-Za-z0-9_-]+)/?$")


def mint_invitation_token() -> str:
    return str(uuid.uuid4())


def invitation_url(base_url: str, token: str) -> str:
    """Return the public invitation link, also used as the check-in payload."""
    return join_url(base_url, f"{INVITATION_PATH}/{token}")


def _invalid(raw: str) -> ValidationError:
    return ValidationError(
        "INVALID_TOKEN_FORMAT", f"Could not read an invitation token from {raw!r}"
    )


def parse_checkin_token(raw: str | None) -> str:
    """Extract the invitation token from a bare token or a URL carrying one.

    URLs and relative paths are accepted when they end in
    ``invitation/<token>`` or when they carry a ``token`` query parameter.
    Anything else is rejected.
    """
    cleaned = (raw or "").strip()
    if not cleaned:
        raise ValidationError("INVALID_TOKEN_FORMAT", "A check-in code is required")

    if "/" not in cleaned and "?" not in cleaned:
        if _token_pattern.match(cleaned):
            return cleaned
        raise _invalid(cleaned)

    parts = urlsplit(cleaned)
    match = _invitation_path_pattern.search(parts.path)
    if match and _token_pattern.match(match.group(1)):
        return match.group(1)
    for candidate in parse_qs(parts.query).get("token", []):
        candidate = candidate.strip()
        if _token_pattern.match(candidate):
            return candidate
    raise _invalid(cleaned)
