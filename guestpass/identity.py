"""Request-scoped caller identity."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Identity:
    """The authenticated organizer, as vouched for by the upstream auth layer."""

    user_id: str
    email: str = ""
    full_name: str = ""

    @property
    def display_name(self) -> str:
        return self.full_name or self.email
