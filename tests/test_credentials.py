"""Tests for credential providers."""

import asyncio
import json
import time
from unittest.mock import AsyncMock, patch

import keyring.errors
import pytest

from camscout.config import CredentialsConfig
from camscout.credentials import (
    KeyringCredentialProvider,
    StaticCredentialProvider,
    get_credentials_with_retry,
)
from camscout.exceptions import CredentialsError
from camscout.models.common import Credentials


@pytest.fixture
def keyring_provider():
    return KeyringCredentialProvider(CredentialsConfig(keyring_service_name="camscout-test"))


async def test_keyring_provider_reads_json_entry(keyring_provider):
    entry = json.dumps({"username": "admin", "password": "secret"})
    with patch("keyring.get_password", return_value=entry) as get_password:
        creds = await keyring_provider.get_credentials("credentials001")

    get_password.assert_called_once_with("camscout-test", "credentials001")
    assert creds == Credentials(username="admin", password="secret")


@pytest.mark.parametrize("stored", [None, "", "not json", json.dumps({"username": "admin"})])
async def test_keyring_provider_rejects_missing_or_invalid_entries(keyring_provider, stored):
    with patch("keyring.get_password", return_value=stored):
        with pytest.raises(CredentialsError) as exc_info:
            await keyring_provider.get_credentials("credentials001")
    assert exc_info.value.secret_path == "credentials001"


async def test_keyring_provider_without_backend(keyring_provider):
    with patch("keyring.get_password", side_effect=keyring.errors.NoKeyringError()):
        with pytest.raises(CredentialsError):
            await keyring_provider.get_credentials("credentials001")


async def test_keyring_provider_stores_entry(keyring_provider):
    with patch("keyring.set_password") as set_password:
        await keyring_provider.store_credentials("cam-1", Credentials(username="u", password="p"))

    service, path, payload = set_password.call_args.args
    assert (service, path) == ("camscout-test", "cam-1")
    assert json.loads(payload) == {"username": "u", "password": "p"}


async def test_static_provider(tmp_path):
    path = tmp_path / "secrets.json"
    path.write_text(json.dumps({"credentials001": {"username": "admin", "password": "pw"}}))
    provider = StaticCredentialProvider.from_file(path)

    assert (await provider.get_credentials("credentials001")).password == "pw"
    with pytest.raises(CredentialsError):
        await provider.get_credentials("missing")


async def test_retry_returns_once_credentials_appear():
    provider = AsyncMock()
    provider.get_credentials.side_effect = [
        CredentialsError("not yet"),
        CredentialsError("not yet"),
        Credentials(username="admin", password="pw"),
    ]

    creds = await get_credentials_with_retry(provider, "credentials001", retry_interval_seconds=0.01, max_wait_seconds=1)

    assert creds.username == "admin"
    assert provider.get_credentials.await_count == 3


async def test_retry_gives_up_after_max_wait():
    provider = StaticCredentialProvider()

    started = time.monotonic()
    with pytest.raises(CredentialsError):
        await asyncio.wait_for(
            get_credentials_with_retry(provider, "credentials001", retry_interval_seconds=0.02, max_wait_seconds=0.1),
            timeout=2,
        )
    assert time.monotonic() - started < 1


async def test_retry_with_zero_wait_tries_once():
    provider = AsyncMock()
    provider.get_credentials.side_effect = CredentialsError("absent")

    with pytest.raises(CredentialsError):
        await get_credentials_with_retry(provider, "credentials001", retry_interval_seconds=1, max_wait_seconds=0)

    assert provider.get_credentials.await_count == 1
