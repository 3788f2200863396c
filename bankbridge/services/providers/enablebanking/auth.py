"""
EnableBanking application JWT.

EnableBanking authenticates the application with an RS256 JWT signed by the
application's private key, with the application id as ``kid``. Tokens are
valid for 20 hours (the API allows at most 24) and are kept in the
credential cache so signing happens once per token lifetime.
"""

import base64
import binascii
import time
from typing import Callable

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    load_pem_private_key,
)
from jose import jwt as jose_jwt

from bankbridge.core.credentials import CredentialGrant

JWT_ISSUER = "enablebanking.com"
JWT_AUDIENCE = "api.enablebanking.com"
JWT_LIFETIME_SECONDS = 20 * 60 * 60


def load_private_key(key_content: str) -> RSAPrivateKey:
    """
    Load the application key from base64-encoded PEM content.

    Raises:
        ValueError: When the content is not base64, not PEM, or not an RSA key
    """
    if not key_content:
        raise ValueError("EnableBanking is not configured. Set ENABLEBANKING_KEY_CONTENT.")

    try:
        pem = base64.b64decode(key_content, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("ENABLEBANKING_KEY_CONTENT is not valid base64") from exc

    key = load_pem_private_key(pem, password=None)
    if not isinstance(key, RSAPrivateKey):
        raise ValueError("ENABLEBANKING_KEY_CONTENT must be an RSA private key")
    return key


class EnableBankingJwtIssuer:
    """Signs application JWTs. Signed assertions have no refresh step."""

    supports_refresh = False

    def __init__(
        self,
        application_id: str,
        key_content: str,
        clock: Callable[[], float] = time.time,
    ):
        self._application_id = application_id
        self._key_content = key_content
        self._clock = clock
        self._signing_key = None

    def _key(self) -> str:
        if self._signing_key is None:
            private_key = load_private_key(self._key_content)
            self._signing_key = private_key.private_bytes(
                Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
            ).decode("ascii")
        return self._signing_key

    def sign(self) -> str:
        issued_at = int(self._clock())
        return jose_jwt.encode(
            {
                "iss": JWT_ISSUER,
                "aud": JWT_AUDIENCE,
                "iat": issued_at,
                "exp": issued_at + JWT_LIFETIME_SECONDS,
            },
            self._key(),
            algorithm="RS256",
            headers={"kid": self._application_id},
        )

    async def issue(self) -> CredentialGrant:
        return CredentialGrant(access_token=self.sign(), expires_in=JWT_LIFETIME_SECONDS)

    async def refresh(self, refresh_token: str) -> CredentialGrant:
        raise NotImplementedError("EnableBanking application JWTs are re-signed, not refreshed")
