import secrets

from fastapi import HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import settings

bearer_scheme = HTTPBearer(auto_error=False)


async def verify_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> None:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    # An empty token would let any "Bearer " header through
    if not settings.AUTH_TOKEN or not secrets.compare_digest(
        credentials.credentials, settings.AUTH_TOKEN
    ):
        raise HTTPException(status_code=403, detail="Invalid token")
