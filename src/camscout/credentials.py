"""
Credential lookup for device secret paths.
"""
import abc
import asyncio
import json
from collections.abc import Mapping

import keyring
import keyring.errors
import structlog
from pydantic import ValidationError

from .config import CredentialsConfig
from .exceptions import CredentialsError
from .models.common import Credentials

logger = structlog.get_logger(__name__)


class BaseCredentialProvider(abc.ABC):
    """Resolves a secret path to a username/password pair."""

    @abc.abstractmethod
    async def get_credentials(self, secret_path: str) -> Credentials:
        """Returns the credentials stored at `secret_path`. Raises CredentialsError if unavailable."""
        pass


class KeyringCredentialProvider(BaseCredentialProvider):
    """
    Reads credentials from the system keyring. Each secret path is one entry
    holding a JSON object {"username": ..., "password": ...}.
    """

    def __init__(self, credentials_config: CredentialsConfig):
        self.service_name = credentials_config.keyring_service_name
        self.logger = logger.bind(storage_type="keyring", service_name=self.service_name)

    async def get_credentials(self, secret_path: str) -> Credentials:
        try:
            item_json = await asyncio.to_thread(keyring.get_password, self.service_name, secret_path)
        except keyring.errors.NoKeyringError as e:
            self.logger.error("No keyring backend found. Please install a keyring provider (e.g., SecretService).")
            raise CredentialsError("No keyring backend available.", secret_path=secret_path) from e
        except keyring.errors.KeyringError as e:
            raise CredentialsError(f"Failed to read keyring entry for '{secret_path}': {e}", secret_path=secret_path) from e

        if not item_json:
            raise CredentialsError(f"No credentials stored at '{secret_path}'", secret_path=secret_path)
        try:
            return Credentials.model_validate_json(item_json)
        except ValidationError as e:
            self.logger.warning("Invalid credentials entry in keyring", secret_path=secret_path, error=str(e))
            raise CredentialsError(f"Invalid credentials stored at '{secret_path}'", secret_path=secret_path) from e

    async def store_credentials(self, secret_path: str, credentials: Credentials) -> None:
        """Writes credentials for `secret_path`; used by provisioning tooling."""
        try:
            await asyncio.to_thread(keyring.set_password, self.service_name, secret_path, credentials.model_dump_json())
        except keyring.errors.KeyringError as e:
            raise CredentialsError(f"Failed to store credentials for '{secret_path}': {e}", secret_path=secret_path) from e
        self.logger.debug("Stored credentials in keyring", secret_path=secret_path)


class StaticCredentialProvider(BaseCredentialProvider):
    """Credentials from an in-memory mapping: secret path -> {"username", "password"}."""

    def __init__(self, secrets: Mapping[str, Credentials | Mapping[str, str]] | None = None):
        self._secrets: dict[str, Credentials] = {}
        for path, value in (secrets or {}).items():
            self._secrets[path] = value if isinstance(value, Credentials) else Credentials(**value)

    @classmethod
    def from_file(cls, file_path) -> "StaticCredentialProvider":
        with open(file_path) as f:
            return cls(json.load(f))

    async def get_credentials(self, secret_path: str) -> Credentials:
        try:
            return self._secrets[secret_path]
        except KeyError:
            raise CredentialsError(f"No credentials stored at '{secret_path}'", secret_path=secret_path) from None


async def get_credentials_with_retry(
    provider: BaseCredentialProvider,
    secret_path: str,
    retry_interval_seconds: float,
    max_wait_seconds: float,
) -> Credentials:
    """
    Polls `provider` every `retry_interval_seconds` until credentials appear or
    `max_wait_seconds` have elapsed, then re-raises the last CredentialsError.
    Blocks the caller for at most roughly `max_wait_seconds`.
    """
    loop = asyncio.get_running_loop()
    give_up_at = loop.time() + max_wait_seconds
    while True:
        try:
            return await provider.get_credentials(secret_path)
        except CredentialsError as e:
            remaining = give_up_at - loop.time()
            if remaining <= 0:
                raise
            logger.warning("Unable to retrieve camera credentials, retrying", secret_path=secret_path,
                           error=str(e), remaining_seconds=round(remaining, 1))
            await asyncio.sleep(min(retry_interval_seconds, remaining))
