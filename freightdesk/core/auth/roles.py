# freightdesk/core/auth/roles.py
from typing import Optional

from freightdesk.shared.schemas.lifecycle import UserRole

# Older mobile clients still send the French role names
_ROLE_ALIASES = {
    "transporteur": UserRole.TRANSPORTER.value,
    "coordinateur": UserRole.COORDINATOR.value,
    "administrateur": UserRole.ADMIN.value,
}

STAFF_ROLES = [UserRole.COORDINATOR.value, UserRole.ADMIN.value]


def normalize_role(role: Optional[str]) -> Optional[str]:
    if role is None:
        return None
    value = role.strip().lower()
    return _ROLE_ALIASES.get(value, value)


def is_staff(role: Optional[str]) -> bool:
    return normalize_role(role) in STAFF_ROLES
