"""Manifest and lock document loading.

The input stream is multi-document YAML: exactly one ``kind: Config``
document plus any number of ``Secret`` / ``ConfigMap`` documents that
content entries reference by name.
"""

from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path
from typing import Any

import semver
import yaml
from pydantic import BaseModel, ValidationError

from vendorsync import __version__
from vendorsync.errors import ConfigError
from vendorsync.models.lock import LockDocument
from vendorsync.models.manifest import API_VERSION, Manifest
from vendorsync.models.resources import ResourceBundle

logger = logging.getLogger(__name__)


def _format_validation_error(what: str, exc: ValidationError) -> str:
    details = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return f"Invalid {what}: {details}"


def _doc_name(doc: dict[str, Any], kind: str) -> str:
    name = (doc.get("metadata") or {}).get("name")
    if not name:
        raise ConfigError(f"Expected {kind} document to have metadata.name")
    return str(name)


def _decode_secret(doc: dict[str, Any]) -> dict[str, bytes]:
    name = _doc_name(doc, "Secret")
    data: dict[str, bytes] = {}
    for key, value in (doc.get("data") or {}).items():
        try:
            data[key] = base64.b64decode(str(value), validate=True)
        except binascii.Error as exc:
            raise ConfigError(f"Secret '{name}' key '{key}' is not valid base64") from exc
    for key, value in (doc.get("stringData") or {}).items():
        data[key] = str(value).encode("utf-8")
    return data


def _check_minimum_version(manifest: Manifest) -> None:
    required = manifest.minimum_required_version
    if not required:
        return
    try:
        too_old = semver.Version.parse(__version__) < semver.Version.parse(required.lstrip("v"))
    except ValueError as exc:
        raise ConfigError(f"Invalid minimumRequiredVersion '{required}'") from exc
    if too_old:
        raise ConfigError(
            f"vendorsync version '{__version__}' does not meet the minimum "
            f"required version '{required}'"
        )


def load_manifest(text: str) -> tuple[Manifest, ResourceBundle]:
    """Parse a manifest stream into a ``Manifest`` and its resources."""
    try:
        documents = [d for d in yaml.safe_load_all(text) if d is not None]
    except yaml.YAMLError as exc:
        raise ConfigError(f"Parsing manifest YAML: {exc}") from exc

    config_doc: dict[str, Any] | None = None
    secrets: dict[str, dict[str, bytes]] = {}
    config_maps: dict[str, dict[str, str]] = {}

    for doc in documents:
        if not isinstance(doc, dict):
            raise ConfigError("Expected every YAML document to be a mapping")
        kind = doc.get("kind")
        if kind == "Config":
            if config_doc is not None:
                raise ConfigError("Expected exactly one Config document, found several")
            config_doc = doc
        elif kind == "Secret":
            secrets[_doc_name(doc, "Secret")] = _decode_secret(doc)
        elif kind == "ConfigMap":
            config_maps[_doc_name(doc, "ConfigMap")] = {
                str(k): str(v) for k, v in (doc.get("data") or {}).items()
            }
        else:
            raise ConfigError(f"Unexpected document kind {kind!r}")

    if config_doc is None:
        raise ConfigError("Expected to find a Config document")
    if config_doc.get("apiVersion") != API_VERSION:
        raise ConfigError(
            f"Expected apiVersion '{API_VERSION}', got {config_doc.get('apiVersion')!r}"
        )

    try:
        manifest = Manifest.model_validate(config_doc)
    except ValidationError as exc:
        raise ConfigError(_format_validation_error("Config", exc)) from exc

    _check_minimum_version(manifest)
    logger.debug(
        "Loaded manifest with %d directories, %d secrets, %d config maps.",
        len(manifest.directories), len(secrets), len(config_maps),
    )
    return manifest, ResourceBundle(secrets=secrets, config_maps=config_maps)


def load_manifest_file(path: Path) -> tuple[Manifest, ResourceBundle]:
    """Read and parse a manifest file."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Reading manifest {path}: {exc}") from exc
    return load_manifest(text)


def load_lock(text: str) -> LockDocument:
    """Parse a ``kind: LockConfig`` document."""
    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Parsing lock YAML: {exc}") from exc
    if not isinstance(doc, dict) or doc.get("kind") != "LockConfig":
        raise ConfigError("Expected a LockConfig document")
    try:
        return LockDocument.model_validate(doc)
    except ValidationError as exc:
        raise ConfigError(_format_validation_error("LockConfig", exc)) from exc


def load_lock_file(path: Path) -> LockDocument:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Reading lock file {path}: {exc}") from exc
    return load_lock(text)


def dump_document(model: BaseModel) -> str:
    """Serialize a manifest or lock model to YAML with wire-format keys."""
    data = model.model_dump(mode="json", by_alias=True, exclude_none=True)
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)
