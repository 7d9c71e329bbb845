"""FastAPI dependencies for authentication and authorization.

Identity lives in a separate service; this API trusts the signed JWT.

Dependencies:
  get_current_user        → decode JWT, return CurrentUser built from claims;
                            a token without `permissions` gets its role defaults
  require_permission(...) → restrict to specific granular permissions
"""

from dataclasses import dataclass, field

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from app.auth.jwt import decode_token
from app.auth.permissions import has_permission, resolve_permissions

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


@dataclass
class CurrentUser:
    id: str
    role: str
    permissions: list[str] = field(default_factory=list)
    cluster_id: str | None = None


# ── Core user dependency ────────────────────────────────────

async def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    payload = decode_token(token)
    user_id: str | None = payload.get("sub")
    if not user_id or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    role = payload.get("role", "")
    if "permissions" in payload:
        permissions = list(payload["permissions"])
    else:
        permissions = resolve_permissions(role)
    return CurrentUser(
        id=user_id,
        role=role,
        permissions=permissions,
        cluster_id=payload.get("cluster_id"),
    )


# ── Permission-based access control ─────────────────────────

def require_permission(*perms: str):
    """Dependency factory: restrict to users who hold ALL listed permissions.

    Usage:
        @router.post("/form")
        async def form(user: CurrentUser = Depends(require_permission("group.write"))):
            ...
    """
    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        missing = [p for p in perms if not has_permission(user.permissions, p)]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(missing)}",
            )
        return user

    return _check
