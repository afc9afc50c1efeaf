# range_controller/auth.py
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from range_controller.schemas import Identity

TRUE_VALUES = ("1", "true", "yes")


def require_controller_token(request: Request, authorization: Optional[str] = Header(None)):
    expected = request.app.state.services.settings.controller_token
    if expected:
        if not authorization:
            raise HTTPException(status_code=401, detail="Missing Authorization header")
        parts = authorization.split()
        if len(parts) != 2 or parts[0].lower() != "bearer" or parts[1] != expected:
            raise HTTPException(status_code=401, detail="Invalid token")
    return True


def get_identity(
    x_remote_user: Optional[str] = Header(None),
    x_remote_admin: Optional[str] = Header(None),
    authorized: bool = Depends(require_controller_token),
) -> Identity:
    """
    The session layer in front of this service authenticates the user and
    forwards who they are in X-Remote-User / X-Remote-Admin.
    """
    username = (x_remote_user or "").strip()
    if not username:
        raise HTTPException(status_code=401, detail="Not authenticated")
    is_admin = (x_remote_admin or "").strip().lower() in TRUE_VALUES
    return Identity(username=username, is_admin=is_admin)


def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return identity
