"""Identity context consumed by the workflow core.

The identity provider (login, password reset) lives outside RadLIMS. It hands
every session a signed token carrying the acting principal; the core only
reads the fields below.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class Role(str, enum.Enum):
    """Qualification levels of the acting principal."""

    collector = "collector"
    analyst = "analyst"
    analyst_assistant = "analyst_assistant"
    technical_lead = "technical_lead"
    ministry_officer = "ministry_officer"
    association_admin = "association_admin"
    super_admin = "super_admin"


@dataclass(frozen=True)
class Identity:
    """Authenticated principal.

    Attributes:
        user_id: Stable identifier from the identity provider
        display_name: Name recorded as the actor of history entries
        role: Qualification level
        assigned_labs: Codes of the inspection offices the user works for
    """

    user_id: str
    display_name: str
    role: Role
    assigned_labs: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.super_admin

    def can_access_lab(self, lab: str) -> bool:
        """Super admins see every lab; everyone else only their assigned ones."""
        return self.is_super_admin or lab in self.assigned_labs

    def to_claims(self) -> dict:
        return {
            "sub": self.user_id,
            "name": self.display_name,
            "role": self.role.value,
            "labs": sorted(self.assigned_labs),
        }

    @classmethod
    def from_claims(cls, claims: dict) -> Identity:
        """Build an identity from decoded token claims.

        Raises:
            KeyError: If a required claim is missing
            ValueError: If the role is unknown or labs is not a list of codes
        """
        labs = claims.get("labs") or []
        if not isinstance(labs, list) or not all(isinstance(lab, str) for lab in labs):
            raise ValueError(f"labs claim must be a list of lab codes, got {labs!r}")
        return cls(
            user_id=str(claims["sub"]),
            display_name=str(claims["name"]),
            role=Role(claims["role"]),
            assigned_labs=frozenset(labs),
        )
