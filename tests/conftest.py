"""Shared fixtures: throwaway X25519 key pairs and sealed target artifacts."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

import pytest

from fleet_secrets.constants import DEFAULT_KEY_TABLE
from fleet_secrets.crypto.envelope import EnvelopeCodec
from fleet_secrets.crypto.keys import PublicKey, public_key_text, write_private_key
from fleet_secrets.domain.models import EncryptedArtifact, KeyCatalog, KeyMaterialContext


@dataclass(frozen=True)
class KeyPair:
    private_path: Path
    public: PublicKey

    @property
    def context(self) -> KeyMaterialContext:
        return KeyMaterialContext(self.private_path)

    @property
    def public_text(self) -> str:
        return public_key_text(self.public)


@pytest.fixture
def make_key_pair(tmp_path: Path) -> Callable[[str], KeyPair]:
    def factory(name: str = "robot") -> KeyPair:
        path = tmp_path / "keys" / f"{name}.key"
        path.parent.mkdir(parents=True, exist_ok=True)
        return KeyPair(private_path=path, public=write_private_key(path))

    return factory


@pytest.fixture
def catalog() -> KeyCatalog:
    return KeyCatalog.from_table(DEFAULT_KEY_TABLE)


@pytest.fixture
def seal() -> Callable[..., EncryptedArtifact]:
    codec = EnvelopeCodec()

    def factory(
        plaintext: Mapping[str, str], recipients: Iterable[KeyPair], *, scope: str
    ) -> EncryptedArtifact:
        return codec.seal(plaintext, [pair.public for pair in recipients], scope=scope)

    return factory


@pytest.fixture
def write_artifact(tmp_path: Path) -> Callable[[str, EncryptedArtifact | bytes], Path]:
    """Write an artifact under ``tmp_path/secrets`` using the default file convention."""

    def factory(target_id: str, artifact: EncryptedArtifact | bytes) -> Path:
        path = tmp_path / "secrets" / f"{target_id}.secrets.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        data = artifact.data if isinstance(artifact, EncryptedArtifact) else artifact
        path.write_bytes(data)
        return path

    return factory
