from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from clinic_api.auth import jwt_handler
from clinic_api.core.records import Caller

security = HTTPBearer(auto_error=False)

CALLER_ROLES = ("doctor", "patient")


def get_current_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Caller:
    if credentials is None:
        raise HTTPException(status_code=401, detail="No token provided")

    try:
        payload = jwt_handler.decode_access_token(credentials.credentials)
    except Exception as exc:
        raise HTTPException(status_code=401, detail="Invalid or expired token") from exc

    subject = payload.get("sub")
    role = payload.get("role")
    if not subject or role not in CALLER_ROLES:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    try:
        caller_id = int(subject)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=401, detail="Invalid token subject") from exc

    return Caller(id=caller_id, role=role)


def require_roles(*roles: str):
    """Dependency factory admitting only callers whose role is in ``roles``."""

    def dependency(caller: Caller = Depends(get_current_caller)) -> Caller:
        if caller.role not in roles:
            raise HTTPException(status_code=403, detail="Access denied")
        return caller

    return dependency
