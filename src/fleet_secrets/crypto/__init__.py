"""X25519 keys and the per-target envelope codec."""

from fleet_secrets.crypto.envelope import (
    DecryptError,
    DecryptFailure,
    EnvelopeCodec,
    EnvelopeHeader,
)
from fleet_secrets.crypto.keys import (
    KeyFormatError,
    PrivateKey,
    PublicKey,
    fingerprint,
    load_private_key,
    load_public_key,
    load_public_key_file,
    public_key_text,
    raw_public_bytes,
    write_private_key,
)

__all__ = [
    "DecryptError",
    "DecryptFailure",
    "EnvelopeCodec",
    "EnvelopeHeader",
    "KeyFormatError",
    "PrivateKey",
    "PublicKey",
    "fingerprint",
    "load_private_key",
    "load_public_key",
    "load_public_key_file",
    "public_key_text",
    "raw_public_bytes",
    "write_private_key",
]
