from typing import Optional

from fastapi import Header, HTTPException
from jose import jwt, JWTError

from storefront.config import get_jwt_secret


class InvalidTokenError(Exception):
    pass


def decode_token(token: Optional[str]) -> str:
    """Return the buyer email carried by a signed access token."""
    secret = get_jwt_secret()
    if not token or not secret:
        raise InvalidTokenError("Missing token")
    try:
        claims = jwt.decode(token, secret, algorithms=["HS256"])
    except JWTError as exc:
        raise InvalidTokenError(str(exc)) from exc

    email = claims.get("email") or claims.get("sub")
    if not email:
        raise InvalidTokenError("Token has no email claim")
    return email


def verify_token(authorization: str = Header(...)) -> str:
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise InvalidTokenError("Unsupported scheme")
        return decode_token(token)
    except (ValueError, InvalidTokenError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
