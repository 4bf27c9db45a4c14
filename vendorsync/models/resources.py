"""Companion documents (Secrets, ConfigMaps) and trusted key sets."""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field

from vendorsync.errors import ConfigError

_PUBLIC_KEY_BLOCK = re.compile(
    r"-----BEGIN PGP PUBLIC KEY BLOCK-----.*?-----END PGP PUBLIC KEY BLOCK-----",
    re.DOTALL,
)


class TrustedKeySet(BaseModel):
    """ASCII-armored PGP public keys trusted for one content entry.

    Order is preserved for reproducible logging only; trust is decided by
    membership.
    """

    model_config = ConfigDict(frozen=True)

    keys: tuple[str, ...] = ()

    @classmethod
    def from_armored(cls, *blobs: str) -> TrustedKeySet:
        """Split one or more armored blobs into individual key blocks."""
        keys: list[str] = []
        for blob in blobs:
            keys.extend(m.group(0) for m in _PUBLIC_KEY_BLOCK.finditer(blob))
        return cls(keys=tuple(keys))

    def __len__(self) -> int:
        return len(self.keys)


class ResourceBundle(BaseModel):
    """Secrets and ConfigMaps supplied alongside the manifest.

    Secret values are stored decoded (bytes); ConfigMap values as text.
    """

    model_config = ConfigDict(frozen=True)

    secrets: dict[str, dict[str, bytes]] = Field(default_factory=dict)
    config_maps: dict[str, dict[str, str]] = Field(default_factory=dict)

    def secret_data(self, name: str) -> dict[str, bytes]:
        try:
            return self.secrets[name]
        except KeyError:
            raise ConfigError(f"Expected to find Secret '{name}' in the input") from None

    def config_map_data(self, name: str) -> dict[str, str]:
        try:
            return self.config_maps[name]
        except KeyError:
            raise ConfigError(f"Expected to find ConfigMap '{name}' in the input") from None

    def trusted_keys(self, secret_name: str) -> TrustedKeySet:
        """Collect every public key held by a Secret, in key order."""
        data = self.secret_data(secret_name)
        blobs = [data[k].decode("utf-8", errors="replace") for k in sorted(data)]
        key_set = TrustedKeySet.from_armored(*blobs)
        if not key_set:
            raise ConfigError(
                f"Expected Secret '{secret_name}' to contain at least one "
                "armored PGP public key"
            )
        return key_set
