import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from .errors import Unauthenticated

log = logging.getLogger("uvicorn.error").getChild("security")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/token", auto_error=False)


class CredentialValidator:
    """Turns a bearer token into a known user id, or raises Unauthenticated."""

    def __init__(self, secret_key: str, algorithm: str, store):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.store = store

    async def validate(self, token: Optional[str]) -> int:
        if not token:
            raise Unauthenticated("Access denied, token missing or malformed")
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            log.info("[auth] token rejected: %s", e)
            raise Unauthenticated("Invalid token")

        subject = payload.get("sub", payload.get("id"))
        try:
            user_id = int(subject)
        except (TypeError, ValueError):
            raise Unauthenticated("Invalid token payload")

        if await self.store.get_user(user_id) is None:
            raise Unauthenticated("User not found")
        return user_id


async def get_current_user_id(request: Request, token: Optional[str] = Depends(oauth2_scheme)) -> int:
    return await request.app.state.credentials.validate(token)
