"""
Shared FastAPI dependencies: bearer token verification and role guards.

Tokens are issued by the identity bridge and carry:
- id: auth uid
- role: "admin" or "student"
- student_id: the linked student (students only)
"""
from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt

import config
from logging_config import bind_request_context

ADMIN_ROLE = "admin"
STUDENT_ROLE = "student"


def verify_token(request: Request) -> dict:
    auth = request.headers.get("Authorization")
    if not auth or not auth.startswith("Bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    token = auth.split(" ")[1]
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid token")
    bind_request_context(user_id=payload.get("id"), role=payload.get("role"))
    return payload


def require_admin(token: dict = Depends(verify_token)) -> dict:
    if token.get("role") != ADMIN_ROLE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return token


def is_admin(token: dict) -> bool:
    return token.get("role") == ADMIN_ROLE


def ensure_student_access(token: dict, student_id: str) -> None:
    """Admins see everyone; students only themselves."""
    if is_admin(token):
        return
    if token.get("role") == STUDENT_ROLE and token.get("student_id") == student_id:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to access this student")


def actor(token: dict) -> str:
    """Who to record in created_by / refunded_by fields."""
    return token.get("email") or token.get("id") or "unknown"
