from dataclasses import dataclass, field
from typing import List, Optional, Set

from fastapi import Depends, Header, HTTPException, status


@dataclass(frozen=True)
class Identity:
    """Already-authenticated caller, supplied by the gateway in front of the API."""

    actor_id: int
    clinic_id: int
    roles: List[str] = field(default_factory=list)


def _split_roles(value: Optional[str]) -> List[str]:
    # "lead, admin" -> ["lead", "admin"]
    if not value:
        return []
    return [r.strip().lower() for r in value.split(",") if r.strip()]


def get_identity(
    x_actor_id: Optional[int] = Header(default=None),
    x_clinic_id: Optional[int] = Header(default=None),
    x_actor_roles: Optional[str] = Header(default=None),
) -> Identity:
    if x_actor_id is None or x_clinic_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing identity context",
        )
    return Identity(actor_id=x_actor_id, clinic_id=x_clinic_id, roles=_split_roles(x_actor_roles))


def role_required(allowed_roles: List[str]):
    allowed_set: Set[str] = set(r.strip().lower() for r in (allowed_roles or []))

    def wrapper(identity: Identity = Depends(get_identity)):
        user_roles = set(identity.roles)

        # Admin bypass
        if "admin" in user_roles:
            return identity

        if not user_roles.intersection(allowed_set):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )

        return identity

    return wrapper
