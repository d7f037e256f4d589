"""JWT signing helpers for CRM user auth tests (plain functions, not fixtures)."""

from __future__ import annotations

import time

import jwt
from cryptography.hazmat.primitives.asymmetric import rsa

TEST_ISSUER = "https://auth.corretta.example/auth/v1"
TEST_AUDIENCE = "authenticated"
TEST_KID = "test-key-1"


def _generate_rsa_keypair():
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return private_key, private_key.public_key()


def _create_jwks(public_key, kid: str = TEST_KID) -> dict:
    """Publish `public_key` the way the auth provider's JWKS endpoint does."""
    jwk = jwt.algorithms.RSAAlgorithm.to_jwk(public_key, as_dict=True)
    jwk.update(kid=kid, use="sig", alg="RS256")
    return {"keys": [jwk]}


def _create_token(
    private_key,
    kid: str = TEST_KID,
    sub: str = "7d4f5a3e-1111-4c2b-9a51-0a6f4b2f9c10",
    iss: str = TEST_ISSUER,
    aud: str = TEST_AUDIENCE,
    exp: int | None = None,
) -> str:
    now = int(time.time())
    claims = {
        "sub": sub,
        "iss": iss,
        "aud": aud,
        "iat": now,
        "exp": exp if exp is not None else now + 3600,
    }
    return jwt.encode(claims, private_key, algorithm="RS256", headers={"kid": kid})
