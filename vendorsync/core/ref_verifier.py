"""PGP verification of Git commit and tag objects.

Trust policy
------------
A reference is trusted when its embedded signature verifies against *any*
key in the supplied ``TrustedKeySet``.  Keys are tried one at a time, each
in its own throwaway GnuPG home, and the scan stops at the first match.
Position in the set never matters: an unrelated key listed before the
signer's key does not cause a failure.

Outcomes
--------
- no signature section          -> ``MissingSignatureError``
- signature, no matching key    -> ``UnknownSignerError``
- signature, some key matches   -> return normally

The verifier holds no state between calls.
"""

from __future__ import annotations

import logging
import tempfile
from enum import Enum
from pathlib import Path

import gnupg
from pydantic import BaseModel, ConfigDict

from vendorsync.errors import MissingSignatureError, UnknownSignerError
from vendorsync.models.resources import TrustedKeySet

logger = logging.getLogger(__name__)

SIGNATURE_SECTION = "PGP SIGNATURE"
_SIG_BEGIN = f"-----BEGIN {SIGNATURE_SECTION}-----"
_SIG_END = f"-----END {SIGNATURE_SECTION}-----"
_COMMIT_SIG_HEADERS = ("gpgsig ", "gpgsig-sha256 ")


class ObjectKind(str, Enum):
    COMMIT = "commit"
    TAG = "tag"


class SignedObject(BaseModel):
    """A raw Git object as printed by ``git cat-file <kind> <name>``."""

    model_config = ConfigDict(frozen=True)

    kind: ObjectKind
    name: str  # sha or tag name, for messages
    raw: bytes


class ExtractedSignature(BaseModel):
    model_config = ConfigDict(frozen=True)

    payload: bytes
    signature: str


# ---------------------------------------------------------------------------
# Signature extraction
# ---------------------------------------------------------------------------


def _extract_commit_signature(raw: bytes) -> ExtractedSignature | None:
    """Pull the ``gpgsig`` header out of a commit object.

    The signed payload is the commit with that header (and its
    space-prefixed continuation lines) removed.
    """
    text = raw.decode("utf-8", errors="surrogateescape")
    header, sep, message = text.partition("\n\n")
    payload_lines: list[str] = []
    sig_lines: list[str] = []
    in_sig = False

    for line in header.split("\n"):
        if in_sig and line.startswith(" "):
            sig_lines.append(line[1:])
            continue
        in_sig = False
        if line.startswith(_COMMIT_SIG_HEADERS):
            in_sig = True
            sig_lines.append(line.split(" ", 1)[1])
            continue
        payload_lines.append(line)

    signature = "\n".join(sig_lines)
    if _SIG_BEGIN not in signature:
        return None

    payload = "\n".join(payload_lines) + sep + message
    return ExtractedSignature(
        payload=payload.encode("utf-8", errors="surrogateescape"),
        signature=signature.strip() + "\n",
    )


def _extract_tag_signature(raw: bytes) -> ExtractedSignature | None:
    """Split the trailing armored signature off an annotated tag object."""
    text = raw.decode("utf-8", errors="surrogateescape")
    start = text.rfind(_SIG_BEGIN)
    if start == -1 or _SIG_END not in text[start:]:
        return None
    return ExtractedSignature(
        payload=text[:start].encode("utf-8", errors="surrogateescape"),
        signature=text[start:],
    )


def extract_signature(obj: SignedObject) -> ExtractedSignature | None:
    """Return the payload/signature pair, or ``None`` if the object is unsigned."""
    if obj.kind == ObjectKind.COMMIT:
        return _extract_commit_signature(obj.raw)
    return _extract_tag_signature(obj.raw)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class RefVerifier:
    """Checks Git objects against a trusted key set.

    Parameters
    ----------
    gpg_binary:
        Name or path of the ``gpg`` executable used by python-gnupg.
    """

    def __init__(self, gpg_binary: str = "gpg") -> None:
        self._gpg_binary = gpg_binary

    def verify(self, obj: SignedObject, trusted_keys: TrustedKeySet) -> None:
        """Return normally if *obj* is signed by a member of *trusted_keys*.

        Raises
        ------
        MissingSignatureError
            The object has no ``PGP SIGNATURE`` section.
        UnknownSignerError
            A signature is present but no trusted key verifies it.
        """
        extracted = extract_signature(obj)
        if extracted is None:
            raise MissingSignatureError(
                f"Expected to find {obj.kind.value} signature: Expected to find "
                f"section '{SIGNATURE_SECTION}', but did not"
            )

        for index, key in enumerate(trusted_keys.keys):
            if self._verify_with_key(extracted, key):
                logger.info(
                    "Verified %s %s against trusted key #%d.", obj.kind.value, obj.name, index
                )
                return

        raise UnknownSignerError(
            f"Checking {obj.kind.value} signature for {obj.name}: "
            "signature made by unknown entity "
            f"(tried {len(trusted_keys)} trusted key(s))"
        )

    def _verify_with_key(self, extracted: ExtractedSignature, armored_key: str) -> bool:
        """Verify against exactly one key, isolated in a fresh keyring."""
        with tempfile.TemporaryDirectory(prefix="vendorsync-gpg-") as home:
            gpg = gnupg.GPG(gpgbinary=self._gpg_binary, gnupghome=home)
            imported = gpg.import_keys(armored_key)
            if not imported.fingerprints:
                logger.warning("Skipping trusted key that failed to import: %s", imported.stderr)
                return False

            sig_path = Path(home) / "object.sig"
            sig_path.write_text(extracted.signature, encoding="utf-8")
            result = gpg.verify_data(str(sig_path), extracted.payload)

        logger.debug("gpg verify status=%r valid=%s", result.status, result.valid)
        return bool(result.valid)
