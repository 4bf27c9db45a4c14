"""Tests for manifest and lock document loading."""

from __future__ import annotations

import base64

import pytest
import yaml

from vendorsync.errors import ConfigError
from vendorsync.manifest import dump_document, load_lock, load_manifest
from vendorsync.models.lock import GitLock, LockContent, LockDirectory, LockDocument
from vendorsync.models.manifest import SourceKind

CONFIG = """\
apiVersion: vendorsync.dev/v1alpha1
kind: Config
directories:
- path: vendor
  contents:
  - path: lib
    git:
      url: https://example.com/lib.git
      ref: v1.0.0
      verification:
        publicKeysSecretRef:
          name: keys
    includePaths: ["src/**/*"]
  - path: notes
    inline:
      paths:
        README.md: hello
"""


class TestLoadManifest:
    def test_config_and_resources(self):
        key = base64.b64encode(b"-----BEGIN PGP PUBLIC KEY BLOCK-----").decode()
        text = CONFIG + f"""---
apiVersion: v1
kind: Secret
metadata:
  name: keys
data:
  trusted.pub: {key}
stringData:
  extra: plain
---
apiVersion: v1
kind: ConfigMap
metadata:
  name: files
data:
  a.txt: A
"""
        manifest, resources = load_manifest(text)
        directory = manifest.directories[0]
        assert directory.path == "vendor"
        lib, notes = directory.contents
        assert lib.kind is SourceKind.GIT
        assert lib.git.verification.public_keys_secret_ref.name == "keys"
        assert lib.include_paths == ["src/**/*"]
        assert notes.kind is SourceKind.INLINE
        assert resources.secret_data("keys")["trusted.pub"].startswith(b"-----BEGIN")
        assert resources.secret_data("keys")["extra"] == b"plain"
        assert resources.config_map_data("files") == {"a.txt": "A"}

    def test_exactly_one_source_required(self):
        text = CONFIG.replace("    inline:\n", "    directory:\n      path: x\n    inline:\n")
        with pytest.raises(ConfigError, match="exactly one of"):
            load_manifest(text)

    def test_no_source_rejected(self):
        text = """\
apiVersion: vendorsync.dev/v1alpha1
kind: Config
directories:
- path: vendor
  contents:
  - path: empty
"""
        with pytest.raises(ConfigError, match="found 0"):
            load_manifest(text)

    def test_unknown_field_rejected(self):
        with pytest.raises(ConfigError, match="Invalid Config"):
            load_manifest(CONFIG.replace("ref: v1.0.0", "ref: v1.0.0\n      refz: typo"))

    def test_git_ref_or_selection(self):
        text = CONFIG.replace("      ref: v1.0.0\n", "")
        with pytest.raises(ConfigError, match="refSelection"):
            load_manifest(text)

    def test_wrong_api_version(self):
        with pytest.raises(ConfigError, match="apiVersion"):
            load_manifest(CONFIG.replace("vendorsync.dev/v1alpha1", "example.com/v9"))

    def test_missing_config(self):
        with pytest.raises(ConfigError, match="Config document"):
            load_manifest("apiVersion: v1\nkind: ConfigMap\nmetadata:\n  name: x\n")

    def test_two_configs(self):
        with pytest.raises(ConfigError, match="exactly one Config"):
            load_manifest(CONFIG + "---\n" + CONFIG)

    def test_unknown_kind(self):
        with pytest.raises(ConfigError, match="Unexpected document kind"):
            load_manifest(CONFIG + "---\nkind: Deployment\n")

    def test_invalid_base64_secret(self):
        text = CONFIG + "---\nkind: Secret\nmetadata:\n  name: bad\ndata:\n  k: '***'\n"
        with pytest.raises(ConfigError, match="base64"):
            load_manifest(text)

    def test_invalid_yaml(self):
        with pytest.raises(ConfigError, match="Parsing manifest YAML"):
            load_manifest("directories: [unclosed")

    def test_minimum_required_version(self):
        text = CONFIG.replace("kind: Config\n", "kind: Config\nminimumRequiredVersion: 99.0.0\n")
        with pytest.raises(ConfigError, match="minimum required version"):
            load_manifest(text)
        ok = CONFIG.replace("kind: Config\n", "kind: Config\nminimumRequiredVersion: 0.1.0\n")
        manifest, _ = load_manifest(ok)
        assert manifest.minimum_required_version == "0.1.0"


class TestLockDocuments:
    def _lock(self) -> LockDocument:
        return LockDocument(
            directories=[
                LockDirectory(
                    path="vendor",
                    contents=[
                        LockContent.build(
                            "lib", GitLock(sha="a" * 40, tags=["v1.0.0"], commit_title="Release")
                        )
                    ],
                )
            ]
        )

    def test_dump_uses_wire_names(self):
        data = yaml.safe_load(dump_document(self._lock()))
        assert data["apiVersion"] == "vendorsync.dev/v1alpha1"
        assert data["kind"] == "LockConfig"
        entry = data["directories"][0]["contents"][0]
        assert entry["git"] == {"sha": "a" * 40, "tags": ["v1.0.0"], "commitTitle": "Release"}
        assert "hg" not in entry

    def test_round_trip(self):
        doc = self._lock()
        assert load_lock(dump_document(doc)) == doc

    def test_find_content(self):
        doc = self._lock()
        assert doc.find_content("vendor", "lib").git.sha == "a" * 40
        assert doc.find_content("vendor", "missing") is None
        assert doc.find_content("other", "lib") is None

    def test_not_a_lock(self):
        with pytest.raises(ConfigError, match="LockConfig"):
            load_lock("kind: Config\n")
