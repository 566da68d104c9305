"""Credential lookup behind a single ``get(name)`` interface.

Environment variables are always available. The OS secret store is used only
when the optional ``keyring`` distribution is installed; its presence is checked
at runtime so the pipeline never depends on it.
"""

from __future__ import annotations

import importlib.util
import logging
import os
from collections.abc import Sequence
from typing import Protocol

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "nft-static-data"

REQUIRED_CREDENTIALS: dict[str, str] = {
    "PINNING_SERVICE_URL": "Pinning service endpoint URL",
    "PINNING_API_KEY": "Pinning service API key",
}


class CredentialProvider(Protocol):
    def get(self, name: str) -> str | None: ...


class EnvCredentialProvider:
    def get(self, name: str) -> str | None:
        value = os.getenv(name)
        return value or None


class KeyringCredentialProvider:
    """Reads secrets from the OS keychain via ``keyring``."""

    def __init__(self, service: str = KEYRING_SERVICE) -> None:
        self._service = service

    @staticmethod
    def is_available() -> bool:
        return importlib.util.find_spec("keyring") is not None

    def get(self, name: str) -> str | None:
        if not self.is_available():
            return None
        import keyring
        from keyring.errors import KeyringError

        try:
            return keyring.get_password(self._service, name)
        except KeyringError:
            logger.warning("Keyring lookup failed for %s", name, exc_info=True)
            return None

    def set(self, name: str, value: str) -> bool:
        if not self.is_available():
            logger.warning("Keyring not available - install the 'keyring' extra")
            return False
        import keyring
        from keyring.errors import KeyringError

        try:
            keyring.set_password(self._service, name, value)
        except KeyringError:
            logger.error("Failed to store credential %s in keyring", name, exc_info=True)
            return False
        logger.info("Credential stored in keyring: %s", name)
        return True


class ChainedCredentialProvider:
    """First non-empty answer wins."""

    def __init__(self, providers: Sequence[CredentialProvider]) -> None:
        self._providers = list(providers)

    def get(self, name: str) -> str | None:
        for provider in self._providers:
            value = provider.get(name)
            if value:
                return value
        return None


def default_provider() -> CredentialProvider:
    providers: list[CredentialProvider] = [EnvCredentialProvider()]
    if KeyringCredentialProvider.is_available():
        providers.append(KeyringCredentialProvider())
    return ChainedCredentialProvider(providers)


def mask_credential(value: str | None, visible_start: int = 2, visible_end: int = 2) -> str:
    """Mask a secret for display, keeping the first and last two characters."""
    if not value:
        return "(not set)"
    if len(value) < visible_start + visible_end + 3:
        return "*" * max(len(value), 4)
    hidden = "*" * min(len(value) - visible_start - visible_end, 8)
    return f"{value[:visible_start]}{hidden}{value[-visible_end:]}"


def missing_credentials(provider: CredentialProvider) -> list[str]:
    return [name for name in REQUIRED_CREDENTIALS if not provider.get(name)]
