import json

from fastapi import HTTPException, Request, status


def get_current_user(request: Request) -> dict:
    """
    Identity is established by the gateway, which forwards the verified
    subject and roles as headers.
    """
    sub = request.headers.get("X-User-Sub")
    if not sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Sub header",
        )

    try:
        user_id = int(sub)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-Sub header",
        )

    raw_roles = request.headers.get("X-User-Roles") or "[]"
    try:
        roles = json.loads(raw_roles)
    except ValueError:
        roles = [r.strip() for r in raw_roles.split(",") if r.strip()]
    if not isinstance(roles, list):
        roles = []

    request.state.user_sub = user_id
    request.state.user_roles = roles

    return {"sub": user_id, "roles": roles}


def is_admin(payload: dict) -> bool:
    return "admin" in {str(r).lower() for r in payload.get("roles") or []}


def require_role(payload: dict, allowed_roles: list[str]):
    token_roles = payload.get("roles")

    if not isinstance(token_roles, list) or not token_roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Roles missing in request",
        )

    allowed = {r.lower() for r in allowed_roles}
    roles = {str(r).lower() for r in token_roles}

    if roles.isdisjoint(allowed):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access forbidden for this role",
        )
