"""Value sources queried by the resolution engine, highest precedence first."""

from fleet_secrets.providers.base import ProviderAvailability, ProviderState, SourceProvider
from fleet_secrets.providers.encrypted_store import EncryptedStoreProvider
from fleet_secrets.providers.environment import EnvironmentProvider
from fleet_secrets.providers.placeholder import (
    PlaceholderProvider,
    placeholder_pattern,
    validate_placeholder_format,
)

__all__ = [
    "EncryptedStoreProvider",
    "EnvironmentProvider",
    "PlaceholderProvider",
    "ProviderAvailability",
    "ProviderState",
    "SourceProvider",
    "placeholder_pattern",
    "validate_placeholder_format",
]
