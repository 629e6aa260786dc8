import json
from dataclasses import dataclass

from fastapi import Header, HTTPException, Request, status

# platform roles issued by auth-service
CUSTOMER = "user"
PROVIDER = "handyman"
ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    user_id: str
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles


def get_actor(
    request: Request,
    x_user_sub: str | None = Header(default=None),
    x_user_roles: str | None = Header(default=None),
) -> Actor:
    """
    Identity as forwarded by the gateway after it validated the bearer token.
    """
    if not x_user_sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Sub header",
        )

    try:
        roles = json.loads(x_user_roles) if x_user_roles else []
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Malformed X-User-Roles header",
        )
    if not isinstance(roles, list):
        roles = []

    request.state.user_sub = x_user_sub
    request.state.user_roles = roles
    return Actor(user_id=x_user_sub, roles=frozenset(str(r).lower() for r in roles))


def require_role(actor: Actor, allowed_roles: list[str]):
    if not actor.roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Roles missing in token",
        )

    allowed = {r.lower() for r in allowed_roles}
    if actor.roles.isdisjoint(allowed):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access forbidden for this role",
        )
