import time

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from ..config import ACCESS_TOKEN_TTL_SECONDS, JWT_ALGORITHM, JWT_SECRET

REFRESH_TOKEN_TTL_SECONDS = 7 * 24 * 3600

ROLE_USER = "user"
ROLE_PROVIDER = "serviceProvider"

bearer_scheme = HTTPBearer(auto_error=False)


def issue_token(sub: str, role: str, kind: str = "access", ttl_seconds: int | None = None) -> str:
    if ttl_seconds is None:
        ttl_seconds = ACCESS_TOKEN_TTL_SECONDS if kind == "access" else REFRESH_TOKEN_TTL_SECONDS
    now = int(time.time())
    claims = {"sub": sub, "role": role, "kind": kind, "iat": now, "exp": now + ttl_seconds}
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str, kind: str = "access") -> dict:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    if payload.get("kind") != kind:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Wrong token type",
        )
    return payload


def _bearer(creds: HTTPAuthorizationCredentials | None) -> str:
    token = None
    if creds and creds.scheme.lower() == "bearer":
        token = creds.credentials

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Bearer token",
        )
    return token


def get_current_user(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
):
    payload = decode_token(_bearer(creds))
    request.state.user_sub = payload.get("sub")
    request.state.user_role = payload.get("role")
    return payload


def get_refresh_claims(creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)):
    return decode_token(_bearer(creds), kind="refresh")


def require_role(payload: dict, role: str) -> str:
    if payload.get("role") != role:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access forbidden for this role",
        )
    return payload["sub"]
