from bson import ObjectId
from jose import JWTError, jwt

from config import env

# Tokens are minted by the identity service; this API only reads them.


def _require_jwt_secret() -> str:
    secret = (env.JWT_SECRET or "").strip()
    if not secret:
        raise RuntimeError("JWT_SECRET is not configured")
    return secret


def read_identity(token: str) -> dict:
    """
    Verify signature and expiry, then map the claims to a user.
    Raises JWTError for anything that does not identify a user.
    """
    claims = jwt.decode(token, _require_jwt_secret(), algorithms=[env.JWT_ALGORITHM])

    sub = claims.get("sub")
    if not sub or not ObjectId.is_valid(sub):
        raise JWTError("Token subject is not a user id")

    return {
        "_id": ObjectId(sub),
        "name": claims.get("name"),
        "email": claims.get("email"),
    }
