import os
import time

import jwt


JWT_SECRET = os.getenv("AUTH_JWT_SECRET", "change-me")
JWT_AUDIENCE = os.getenv("AUTH_JWT_AUDIENCE", "authenticated")
JWT_ALGORITHM = os.getenv("AUTH_JWT_ALGORITHM", "HS256")
JWT_ACCESS_TTL_SEC = int(os.getenv("AUTH_JWT_ACCESS_TTL_SEC", "3600"))


def create_access_token(user_id: str, email: str | None = None) -> tuple[str, int]:
    """Tokens normally come from the auth provider; this mints compatible ones for scripts."""
    now = int(time.time())
    exp = now + JWT_ACCESS_TTL_SEC
    payload = {
        "sub": user_id,
        "email": email,
        "role": "authenticated",
        "iat": now,
        "exp": exp,
        "aud": JWT_AUDIENCE,
    }
    token = jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)
    return token, exp


def verify_access_token(token: str) -> dict | None:
    try:
        payload = jwt.decode(
            token,
            JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            audience=JWT_AUDIENCE,
        )
    except jwt.PyJWTError:
        return None
    if not payload.get("sub"):
        return None
    return payload
