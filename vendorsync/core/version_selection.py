"""Tag selection via semantic-version constraints.

Constraint grammar (whitespace or comma separated comparators are ANDed,
``||`` separates alternatives)::

    >1.0.0 <3.0.0
    >=1.2, <2 || 3.0.0
    ^1.4.0          (>=1.4.0 <2.0.0)
    ~1.4.0          (>=1.4.0 <1.5.0)

Tags may carry a leading ``v``; the original tag string is returned.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

import semver

from vendorsync.errors import RefNotFoundError
from vendorsync.models.manifest import VersionSelection

_COMPARATOR = re.compile(r"(>=|<=|!=|==|>|<|=|\^|~)?\s*v?(\d+(?:\.\d+){0,2}[0-9A-Za-z.+\-]*)")


def parse_version(tag: str) -> semver.Version | None:
    """Parse a tag as semver, tolerating a ``v`` prefix and short forms."""
    candidate = tag[1:] if tag.startswith("v") else tag
    try:
        return semver.Version.parse(candidate, optional_minor_and_patch=True)
    except ValueError:
        return None


def _expand(op: str, version: semver.Version) -> list[tuple[str, semver.Version]]:
    if op == "^":
        if version.major > 0:
            upper = version.bump_major()
        elif version.minor > 0:
            upper = version.bump_minor()
        else:
            upper = version.bump_patch()
        return [(">=", version), ("<", upper)]
    if op == "~":
        return [(">=", version), ("<", version.bump_minor())]
    if op in ("", "="):
        return [("==", version)]
    return [(op, version)]


def parse_constraints(expression: str) -> list[list[tuple[str, semver.Version]]]:
    """Parse a constraint expression into OR-groups of AND-ed comparators."""
    groups: list[list[tuple[str, semver.Version]]] = []
    for alternative in expression.split("||"):
        alternative = alternative.strip()
        if not alternative:
            continue
        comparators: list[tuple[str, semver.Version]] = []
        consumed = 0
        for match in _COMPARATOR.finditer(alternative):
            gap = alternative[consumed:match.start()].strip(" ,")
            if gap:
                raise ValueError(f"Invalid constraint near {gap!r} in {expression!r}")
            version = parse_version(match.group(2))
            if version is None:
                raise ValueError(f"Invalid version {match.group(2)!r} in {expression!r}")
            comparators.extend(_expand(match.group(1) or "", version))
            consumed = match.end()
        if alternative[consumed:].strip(" ,"):
            raise ValueError(f"Invalid constraint {expression!r}")
        groups.append(comparators)
    return groups


def _satisfies(version: semver.Version, groups: list[list[tuple[str, semver.Version]]]) -> bool:
    if not groups:
        return True
    return any(
        all(version.match(f"{op}{bound}") for op, bound in group) for group in groups
    )


def _prerelease_allowed(version: semver.Version, selection: VersionSelection) -> bool:
    if version.prerelease is None:
        return True
    prereleases = selection.semver.prereleases
    if prereleases is None:
        return False
    if not prereleases.identifiers:
        return True
    head = str(version.prerelease).split(".", 1)[0]
    return head in prereleases.identifiers


def select_highest(tags: Iterable[str], selection: VersionSelection, *, what: str) -> str:
    """Return the highest tag satisfying *selection*.

    Raises ``RefNotFoundError`` when no tag qualifies, and ``ValueError`` for
    a malformed constraint expression.
    """
    groups = parse_constraints(selection.semver.constraints)
    best: tuple[semver.Version, str] | None = None
    for tag in tags:
        version = parse_version(tag)
        if version is None or not _prerelease_allowed(version, selection):
            continue
        if not _satisfies(version, groups):
            continue
        if best is None or version > best[0]:
            best = (version, tag)

    if best is None:
        raise RefNotFoundError(
            f"Expected to find at least one version of {what} matching "
            f"constraint '{selection.semver.constraints}', but found none"
        )
    return best[1]
