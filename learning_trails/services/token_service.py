"""JWT access token validation (ES256).

Tokens are issued by the platform's auth service; this service only
verifies them and reads the student id from `sub`.  In production the
issuer's public key comes from JWT_PUBLIC_KEY (PEM).  Without it an
ephemeral key pair is generated on import so dev and tests can mint
their own tokens with create_access_token().
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from learning_trails.core.config import SETTINGS

ALGORITHM = "ES256"
ISSUER = "learning-trails"
AUDIENCE = "learning-trails"
ACCESS_TOKEN_TTL_MIN = 15

if SETTINGS.jwt_public_key:
    _private_key: ec.EllipticCurvePrivateKey | None = None
    _public_key = serialization.load_pem_public_key(
        SETTINGS.jwt_public_key.encode("utf-8")
    )
else:
    _private_key = ec.generate_private_key(ec.SECP256R1())
    _public_key = _private_key.public_key()


def create_access_token(*, sub: str, roles: list[str] | None = None) -> str:
    """Sign an access token with the local key (dev/test only)."""
    if _private_key is None:
        raise RuntimeError("tokens cannot be minted when JWT_PUBLIC_KEY is set")
    now = datetime.now(UTC)
    payload = {
        "sub": sub,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "exp": now + timedelta(minutes=ACCESS_TOKEN_TTL_MIN),
        "iat": now,
        "jti": str(uuid.uuid4()),
        "roles": roles or ["student"],
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and claims, return the payload.

    Pins the algorithm to ES256 to rule out alg:none and alg switching.
    Raises jwt.ExpiredSignatureError, jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=AUDIENCE,
        options={"require": ["sub", "exp", "iat", "jti"]},
    )
