from typing import Optional
from fastapi import Depends, Header, HTTPException, Query, status
from pydantic import BaseModel

from . import config


class AccessContext(BaseModel):
    role: str
    user: str = "admin"


def resolve_access_context(
    x_access_token: Optional[str] = Header(default=None, alias="X-Access-Token"),
    x_user: Optional[str] = Header(default=None, alias="X-User"),
    token: Optional[str] = Query(default=None),
) -> AccessContext:
    candidate = x_access_token or token
    if not candidate:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing access token")
    if config.ADMIN_ACCESS_TOKEN and candidate == config.ADMIN_ACCESS_TOKEN:
        return AccessContext(role="admin", user=(x_user or "admin").strip() or "admin")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid access token")


def require_admin_access(context: AccessContext = Depends(resolve_access_context)) -> AccessContext:
    if context.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return context
