"""FastAPI dependencies for the route API.

Provides:
- Current user resolution (X-User-Id header, set by the auth gateway)
"""

from typing import Optional

from fastapi import Header, HTTPException


def get_current_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> str:
    """Resolve the authenticated user.

    Authentication happens upstream; this service only trusts the header it
    forwards. A missing or blank header is a 401.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()
