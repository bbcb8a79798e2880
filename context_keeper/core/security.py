from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from context_keeper.core.config import Settings

ALGORITHM = "HS256"
DEFAULT_TOKEN_LIFETIME = timedelta(hours=24)


class TokenError(Exception):
    """Base error for session token problems."""


class MalformedToken(TokenError):
    pass


class InvalidSignature(TokenError):
    pass


class TokenExpired(TokenError):
    pass


def claims_for_user(user_id: str, login: str, github_token: str, email: str = "") -> dict[str, Any]:
    return {
        "sub": user_id,
        "login": login,
        "email": email,
        "github_token": github_token,
    }


def create_access_token(
    claims: dict[str, Any],
    secret: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    if not secret:
        raise ValueError("secret must not be empty")

    to_encode = claims.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta if expires_delta is not None else DEFAULT_TOKEN_LIFETIME)

    to_encode.update({"iat": int(now.timestamp()), "exp": int(expire.timestamp())})
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


def decode_access_token(token: str, secret: str) -> dict[str, Any]:
    """
    Verifies a token produced by create_access_token and returns its claims.

    Raises:
        MalformedToken: the token is not a structurally valid JWT
        InvalidSignature: the signature does not match the secret
        TokenExpired: the signature is valid but the token has expired
    """
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as e:
        raise MalformedToken(str(e)) from e

    if header.get("alg") != ALGORITHM:
        raise MalformedToken(f"unsupported algorithm: {header.get('alg')!r}")

    try:
        return jwt.decode(token, secret, algorithms=[ALGORITHM])
    except ExpiredSignatureError as e:
        raise TokenExpired(str(e)) from e
    except JWTError as e:
        raise InvalidSignature(str(e)) from e


def create_session_token(settings: Settings, claims: dict[str, Any]) -> str:
    return create_access_token(
        claims,
        settings.jwt_secret,
        expires_delta=timedelta(hours=settings.jwt_expire_hours),
    )


def decode_session_token(settings: Settings, token: str) -> dict[str, Any]:
    return decode_access_token(token, settings.jwt_secret)
