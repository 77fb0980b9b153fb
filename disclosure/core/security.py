from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import BaseModel
from disclosure.core.config import settings
from disclosure.core.errors import AuthenticationError, AuthorizationError

http_bearer = HTTPBearer(auto_error=False)

class Principal(BaseModel):
    user_id: str
    roles: list[str] = []
    scopes: list[str] = []

def _decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG], audience=settings.REQUIRED_AUDIENCE)
        return payload
    except JWTError as e:
        raise AuthenticationError(f"Invalid token: {e}")

def issue_token(user_id: str, scopes: list[str] | None = None, roles: list[str] | None = None) -> str:
    claims = {"sub": user_id, "scopes": scopes or [], "roles": roles or []}
    if settings.REQUIRED_AUDIENCE:
        claims["aud"] = settings.REQUIRED_AUDIENCE
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

async def get_principal(creds: HTTPAuthorizationCredentials | None = Depends(http_bearer)) -> Principal:
    # In local, allow missing token and act as the dev user
    if creds is None and settings.ENV == "local":
        return Principal(user_id=settings.DEV_USER_ID, roles=["admin"], scopes=["*"])
    if creds is None:
        raise AuthenticationError("Missing token")

    data = _decode_token(creds.credentials)
    user_id = str(data.get("sub") or data.get("user_id") or "").strip()
    if not user_id:
        raise AuthenticationError("Token has no subject")
    return Principal(user_id=user_id, roles=data.get("roles", []), scopes=data.get("scopes", []))

def require_scopes(*needed: str):
    def dep(principal: Principal = Depends(get_principal)) -> Principal:
        if "*" in principal.scopes:
            return principal
        if not set(needed).issubset(set(principal.scopes)):
            raise AuthorizationError("Insufficient scopes")
        return principal
    return dep
