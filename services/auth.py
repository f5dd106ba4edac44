# services/auth.py
"""
Bearer token extraction.

The brokerage token is passed straight through to the upstream API; this
service does not verify it. It only keys cache entries (hashed) and builds
the upstream client.
"""
import re

from fastapi import HTTPException, Request, status

_BEARER_RE = re.compile(r"^Bearer\s+(\S.*)$", re.IGNORECASE)


def get_bearer_token(request: Request) -> str:
    auth = request.headers.get("Authorization")
    if not auth:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No auth header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    match = _BEARER_RE.match(auth.strip())
    if not match:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid header format",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return match.group(1).strip()
