"""Pytest configuration and shared fixtures."""

import base64
from unittest.mock import AsyncMock

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from bankbridge.config import Settings
from bankbridge.core.cache import MemoryCache
from bankbridge.core.credentials import CredentialCache
from bankbridge.core.retry import RetryPolicy


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def rsa_key_content() -> str:
    """Base64-encoded PEM private key, as ENABLEBANKING_KEY_CONTENT expects."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return base64.b64encode(pem).decode("ascii")


@pytest.fixture
def settings(rsa_key_content) -> Settings:
    """Settings with test credentials for every vendor; ignores any local .env."""
    return Settings(
        _env_file=None,
        REDIS_URL="",
        PLAID_CLIENT_ID="test-client-id",
        PLAID_SECRET="test-secret",
        PLAID_STATUS_URL="",
        GOCARDLESS_SECRET_ID="test-secret-id",
        GOCARDLESS_SECRET_KEY="test-secret-key",
        ENABLEBANKING_APPLICATION_ID="test-application-id",
        ENABLEBANKING_KEY_CONTENT=rsa_key_content,
        ENABLEBANKING_REDIRECT_URL="https://app.example.com/callback",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_cache(clock) -> MemoryCache:
    return MemoryCache(clock=clock)


@pytest.fixture
def credential_cache(memory_cache, clock) -> CredentialCache:
    return CredentialCache(memory_cache, clock=clock)


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Stand-in for asyncio.sleep that records requested delays."""
    return AsyncMock()


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=60.0, jitter_factor=0.0)
