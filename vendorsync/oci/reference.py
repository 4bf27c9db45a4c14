"""OCI image reference parsing (``registry/repo[:tag][@digest]``)."""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict

from vendorsync.errors import ConfigError

DEFAULT_REGISTRY = "index.docker.io"
_DOCKER_HUB_ALIASES = {"docker.io", "index.docker.io", "registry-1.docker.io"}
_DOCKER_HUB_API = "registry-1.docker.io"

_DIGEST_RE = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-zA-Z0-9=_-]+$")
_TAG_RE = re.compile(r"^[\w][\w.-]{0,127}$")


class ImageReference(BaseModel):
    """A parsed image reference.  ``tag`` and ``digest`` may both be empty."""

    model_config = ConfigDict(frozen=True)

    registry: str
    repository: str
    tag: str = ""
    digest: str = ""

    @classmethod
    def parse(cls, ref: str) -> ImageReference:
        ref = ref.strip()
        if not ref:
            raise ConfigError("Image reference must not be empty")

        name, digest = ref, ""
        if "@" in ref:
            name, digest = ref.split("@", 1)
            if not _DIGEST_RE.match(digest):
                raise ConfigError(f"Invalid digest in image reference '{ref}'")

        tag = ""
        last_slash = name.rfind("/")
        last_colon = name.rfind(":")
        if last_colon > last_slash:
            name, tag = name[:last_colon], name[last_colon + 1:]
            if not _TAG_RE.match(tag):
                raise ConfigError(f"Invalid tag in image reference '{ref}'")

        first, _, rest = name.partition("/")
        if rest and ("." in first or ":" in first or first == "localhost"):
            registry, repository = first, rest
        else:
            registry, repository = DEFAULT_REGISTRY, name

        if registry in _DOCKER_HUB_ALIASES:
            registry = DEFAULT_REGISTRY
            if "/" not in repository:
                repository = f"library/{repository}"

        if not repository or repository != repository.lower():
            raise ConfigError(f"Invalid repository in image reference '{ref}'")

        return cls(registry=registry, repository=repository, tag=tag, digest=digest)

    # ------------------------------------------------------------------
    # Derived forms
    # ------------------------------------------------------------------

    @property
    def api_host(self) -> str:
        """Host that actually serves the registry API."""
        return _DOCKER_HUB_API if self.registry == DEFAULT_REGISTRY else self.registry

    @property
    def scheme(self) -> str:
        host = self.registry.split(":", 1)[0]
        return "http" if host in ("localhost", "127.0.0.1") else "https"

    @property
    def name(self) -> str:
        """``registry/repository`` without tag or digest."""
        return f"{self.registry}/{self.repository}"

    @property
    def identifier(self) -> str:
        """The digest if pinned, otherwise the tag (``latest`` by default)."""
        return self.digest or self.tag or "latest"

    def with_digest(self, digest: str) -> ImageReference:
        return self.model_copy(update={"digest": digest})

    def with_tag(self, tag: str) -> ImageReference:
        return self.model_copy(update={"tag": tag})

    def pinned(self) -> str:
        """``registry/repository@digest``; requires a digest."""
        if not self.digest:
            raise ValueError(f"Reference {self} is not pinned to a digest")
        return f"{self.name}@{self.digest}"

    def __str__(self) -> str:
        out = self.name
        if self.tag:
            out += f":{self.tag}"
        if self.digest:
            out += f"@{self.digest}"
        return out
