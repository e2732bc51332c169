from fastapi import Request, HTTPException, Depends
from typing import Dict, Any

COOKIE_NAME = "sb_access"


def extract_token(request: Request) -> str:
    # Hybride: priorité au Bearer, fallback cookie
    token = ""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
    if not token:
        token = request.cookies.get(COOKIE_NAME) or ""
    return token


def get_current_user(request: Request) -> Dict[str, Any]:
    token = extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        from billing.users.repository import get_user_from_token
        user = get_user_from_token(token)
        if not user.get("id"):
            raise HTTPException(status_code=401, detail="Unauthorized")
        return user
    except HTTPException:
        raise
    except Exception:
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_user(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return user


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Forbidden")
    return user
