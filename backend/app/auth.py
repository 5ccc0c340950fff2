"""Header-based crew identity for the labs API."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status

# purpose: read the crew member already identified upstream and pass it explicitly into services
# inputs: X-Crew-Member-Id and X-Crew-Role request headers
# outputs: CrewIdentity dependency values, role guards for supervisor and admin operations
# status: active

ROLE_LEVELS: dict[str, int] = {
    "crew": 10,
    "supervisor": 50,
    "admin": 100,
}


@dataclass(frozen=True)
class CrewIdentity:
    crew_member_id: UUID
    role: str = "crew"

    @property
    def level(self) -> int:
        return ROLE_LEVELS.get(self.role, 0)


def get_current_crew_member(
    x_crew_member_id: str | None = Header(default=None),
    x_crew_role: str | None = Header(default=None),
) -> CrewIdentity:
    if not x_crew_member_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Crew member not identified")
    try:
        crew_member_id = UUID(x_crew_member_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid crew member id") from exc
    role = (x_crew_role or "crew").strip().lower()
    if role not in ROLE_LEVELS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown crew role {role!r}")
    return CrewIdentity(crew_member_id=crew_member_id, role=role)


def require_supervisor(identity: CrewIdentity = Depends(get_current_crew_member)) -> CrewIdentity:
    if identity.level < ROLE_LEVELS["supervisor"]:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Supervisor role required")
    return identity


def require_labs_admin(identity: CrewIdentity = Depends(get_current_crew_member)) -> CrewIdentity:
    if identity.level < ROLE_LEVELS["admin"]:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Labs admin role required")
    return identity
