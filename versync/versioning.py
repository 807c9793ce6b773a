"""
Parses and compares semantic version strings.

Only the strict `major.minor.patch[-prerelease][+build]` shape is accepted
(a single leading 'v' is tolerated so release tags can be passed directly).
Anything else raises InvalidVersionError instead of being padded or truncated.
"""

import re
from dataclasses import dataclass
from functools import total_ordering
from typing import Tuple, Union

_SEMVER_RE = re.compile(
    r'^(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)'
    r'(?:-(?P<prerelease>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?'
    r'(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$'
)


class InvalidVersionError(ValueError):
    """Raised when a string is not a semantic version."""
    pass


def _identifier_key(identifier: str) -> Tuple[int, Union[int, str]]:
    # Numeric identifiers sort before alphanumeric ones.
    if identifier.isdigit():
        return (0, int(identifier))
    return (1, identifier)


@total_ordering
@dataclass(frozen=True, eq=False)
class SemVer:
    """A parsed semantic version. Build metadata is ignored for ordering."""
    major: int
    minor: int
    patch: int
    prerelease: Tuple[str, ...] = ()
    build: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, value: str) -> 'SemVer':
        if not isinstance(value, str):
            raise InvalidVersionError(f"version must be a string, got {type(value).__name__}")
        text = value.strip()
        if text[:1] in ('v', 'V'):
            text = text[1:]
        match = _SEMVER_RE.match(text)
        if not match:
            raise InvalidVersionError(f"'{value}' is not a valid semantic version (expected x.y.z)")
        prerelease = match.group('prerelease')
        build = match.group('build')
        if prerelease and any(p.isdigit() and len(p) > 1 and p.startswith('0') for p in prerelease.split('.')):
            raise InvalidVersionError(f"'{value}' has a numeric pre-release identifier with a leading zero")
        return cls(
            int(match.group('major')),
            int(match.group('minor')),
            int(match.group('patch')),
            tuple(prerelease.split('.')) if prerelease else (),
            tuple(build.split('.')) if build else (),
        )

    def sort_key(self) -> tuple:
        # A release (no pre-release) sorts after any of its pre-releases.
        if not self.prerelease:
            pre_key: tuple = (1,)
        else:
            pre_key = (0, tuple(_identifier_key(p) for p in self.prerelease))
        return (self.major, self.minor, self.patch, pre_key)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self.sort_key() == other.sort_key()

    def __lt__(self, other: 'SemVer') -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def __hash__(self) -> int:
        return hash(self.sort_key())

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += '-' + '.'.join(self.prerelease)
        if self.build:
            text += '+' + '.'.join(self.build)
        return text


def parse_version(value: str) -> SemVer:
    """Parses a version string, raising InvalidVersionError if it is not semver."""
    return SemVer.parse(value)


def normalize_version(value: str) -> str:
    """Returns the canonical text of a version, e.g. 'v1.2.3' -> '1.2.3'."""
    return str(SemVer.parse(value))


def compare_versions(local: str, remote: str) -> int:
    """
    Compares two version strings.

    Returns:
        -1 if remote is newer, 0 if equal, 1 if local is newer.
    """
    local_ver = SemVer.parse(local)
    remote_ver = SemVer.parse(remote)
    if local_ver < remote_ver:
        return -1
    if local_ver > remote_ver:
        return 1
    return 0


def is_newer(current: str, latest: str) -> bool:
    """True when `latest` sorts strictly after `current`."""
    return compare_versions(current, latest) < 0
