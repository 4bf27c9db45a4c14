"""Minimal OCI distribution client over httpx.

Covers what the image and bundle fetchers need: manifest resolution
(including multi-platform indexes), tag listing, and blob download.
Anonymous bearer-token auth is negotiated from ``WWW-Authenticate``
challenges; credentials can be supplied per registry.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from vendorsync.errors import FetchError, RefNotFoundError, SourceUnreachableError
from vendorsync.oci.reference import ImageReference

logger = logging.getLogger(__name__)

MEDIA_OCI_INDEX = "application/vnd.oci.image.index.v1+json"
MEDIA_OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
MEDIA_DOCKER_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
MEDIA_DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"

_INDEX_TYPES = {MEDIA_OCI_INDEX, MEDIA_DOCKER_LIST}
_ACCEPT = ", ".join(
    [MEDIA_OCI_MANIFEST, MEDIA_DOCKER_MANIFEST, MEDIA_OCI_INDEX, MEDIA_DOCKER_LIST]
)
_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')
_LINK_NEXT = re.compile(r'<([^>]+)>;\s*rel="next"')
_DEFAULT_PLATFORM = ("linux", "amd64")


class Descriptor(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    media_type: str = Field(default="", alias="mediaType")
    digest: str
    size: int = 0
    annotations: dict[str, str] = Field(default_factory=dict)
    platform: dict[str, Any] = Field(default_factory=dict)


class ImageManifest(BaseModel):
    """A resolved single-platform manifest and the digest it was served under."""

    model_config = ConfigDict(frozen=True)

    digest: str
    media_type: str
    config: Descriptor
    layers: list[Descriptor]


class RegistryClient:
    """Talks to OCI registries.

    Parameters
    ----------
    http_client:
        Injected ``httpx.Client``; tests pass one built on ``MockTransport``.
    timeout:
        Seconds before a request is abandoned when building a default client.
    credentials:
        Optional ``{registry: (username, password)}`` for basic/token auth.
    """

    def __init__(
        self,
        http_client: httpx.Client | None = None,
        *,
        timeout: float = 60.0,
        credentials: dict[str, tuple[str, str]] | None = None,
    ) -> None:
        self._http = http_client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._credentials = credentials or {}
        self._tokens: dict[tuple[str, str], str] = {}

    def close(self) -> None:
        self._http.close()

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _url(self, ref: ImageReference, path: str) -> str:
        return f"{ref.scheme}://{ref.api_host}/v2/{ref.repository}/{path}"

    def _fetch_token(self, ref: ImageReference, challenge: str) -> str | None:
        scheme, _, params_text = challenge.partition(" ")
        if scheme.lower() != "bearer":
            return None
        params = dict(_CHALLENGE_PARAM.findall(params_text))
        realm = params.pop("realm", "")
        if not realm:
            return None
        params.setdefault("scope", f"repository:{ref.repository}:pull")
        auth = self._credentials.get(ref.registry)
        try:
            resp = self._http.get(realm, params=params, auth=auth)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise SourceUnreachableError(f"Obtaining registry token from {realm}: {exc}") from exc
        body = resp.json()
        return body.get("token") or body.get("access_token")

    def _request(
        self, method: str, ref: ImageReference, path: str, *, headers: dict[str, str] | None = None,
        stream: bool = False, url: str | None = None,
    ) -> httpx.Response:
        url = url or self._url(ref, path)
        headers = dict(headers or {})
        key = (ref.registry, ref.repository)
        if key in self._tokens:
            headers["Authorization"] = f"Bearer {self._tokens[key]}"

        try:
            request = self._http.build_request(method, url, headers=headers)
            resp = self._http.send(request, stream=stream)
            if resp.status_code == 401 and "Authorization" not in headers:
                challenge = resp.headers.get("WWW-Authenticate", "")
                resp.close()
                token = self._fetch_token(ref, challenge)
                if token is None and ref.registry in self._credentials:
                    request = self._http.build_request(method, url, headers=headers)
                    user, password = self._credentials[ref.registry]
                    resp = self._http.send(
                        request, stream=stream, auth=httpx.BasicAuth(user, password)
                    )
                elif token is not None:
                    self._tokens[key] = token
                    headers["Authorization"] = f"Bearer {token}"
                    request = self._http.build_request(method, url, headers=headers)
                    resp = self._http.send(request, stream=stream)
        except httpx.HTTPError as exc:
            raise SourceUnreachableError(f"Contacting registry {ref.registry}: {exc}") from exc

        if resp.status_code == 404:
            resp.close()
            raise RefNotFoundError(f"Not found in registry: {ref} ({path})")
        if resp.status_code >= 400:
            resp.close()
            raise SourceUnreachableError(
                f"Registry {ref.registry} returned HTTP {resp.status_code} for {path}"
            )
        return resp

    # ------------------------------------------------------------------
    # Manifests
    # ------------------------------------------------------------------

    def _get_manifest_raw(self, ref: ImageReference, identifier: str) -> tuple[bytes, str, str]:
        resp = self._request("GET", ref, f"manifests/{identifier}", headers={"Accept": _ACCEPT})
        body = resp.content
        computed = "sha256:" + hashlib.sha256(body).hexdigest()
        digest = resp.headers.get("Docker-Content-Digest") or computed
        if identifier.startswith("sha256:") and computed != identifier:
            raise FetchError(f"Manifest for {ref} does not match requested digest {identifier}")
        media_type = resp.headers.get("Content-Type", "").split(";", 1)[0].strip()
        if not media_type:
            media_type = json.loads(body).get("mediaType", MEDIA_OCI_MANIFEST)
        return body, digest, media_type

    def resolve(self, ref: ImageReference) -> ImageManifest:
        """Resolve *ref* to a single-platform manifest.

        An index is narrowed to ``linux/amd64`` (or its first entry).  The
        returned digest is that of the index when one was served, so the
        pinned reference stays platform-independent.
        """
        body, digest, media_type = self._get_manifest_raw(ref, ref.identifier)
        doc = json.loads(body)
        top_digest = digest

        if media_type in _INDEX_TYPES or "manifests" in doc:
            entries = [Descriptor.model_validate(m) for m in doc.get("manifests", [])]
            if not entries:
                raise FetchError(f"Image index {ref} lists no manifests")
            chosen = next(
                (
                    e for e in entries
                    if (e.platform.get("os"), e.platform.get("architecture")) == _DEFAULT_PLATFORM
                ),
                entries[0],
            )
            body, _, media_type = self._get_manifest_raw(ref, chosen.digest)
            doc = json.loads(body)

        try:
            return ImageManifest(
                digest=top_digest,
                media_type=media_type,
                config=Descriptor.model_validate(doc["config"]),
                layers=[Descriptor.model_validate(layer) for layer in doc.get("layers", [])],
            )
        except (KeyError, ValueError) as exc:
            raise FetchError(f"Malformed manifest for {ref}: {exc}") from exc

    def list_tags(self, ref: ImageReference) -> list[str]:
        """Return every tag in the repository, following pagination."""
        tags: list[str] = []
        url: str | None = None
        while True:
            resp = self._request("GET", ref, "tags/list", url=url)
            tags.extend(resp.json().get("tags") or [])
            match = _LINK_NEXT.search(resp.headers.get("Link", ""))
            if not match:
                return tags
            url = str(httpx.URL(self._url(ref, "tags/list")).join(match.group(1)))

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    def get_blob(self, ref: ImageReference, digest: str) -> bytes:
        resp = self._request("GET", ref, f"blobs/{digest}")
        data = resp.content
        if "sha256:" + hashlib.sha256(data).hexdigest() != digest:
            raise FetchError(f"Blob {digest} from {ref.name} failed digest verification")
        return data

    def download_blob(self, ref: ImageReference, digest: str, dest: Path) -> None:
        """Stream a blob to *dest*, verifying its digest."""
        hasher = hashlib.sha256()
        resp = self._request("GET", ref, f"blobs/{digest}", stream=True)
        try:
            with Path(dest).open("wb") as fh:
                for chunk in resp.iter_bytes():
                    hasher.update(chunk)
                    fh.write(chunk)
        except httpx.HTTPError as exc:
            raise SourceUnreachableError(f"Downloading blob {digest}: {exc}") from exc
        finally:
            resp.close()
        if "sha256:" + hasher.hexdigest() != digest:
            raise FetchError(f"Blob {digest} from {ref.name} failed digest verification")

    def get_config(self, ref: ImageReference, manifest: ImageManifest) -> dict[str, Any]:
        return json.loads(self.get_blob(ref, manifest.config.digest))
