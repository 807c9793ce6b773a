"""
Reads and rewrites the version token of project manifests.

Each supported manifest syntax has an adapter exposing the same two operations:
`detect_mismatch` (find the current token and compare it with the authoritative
version) and `rewrite` (replace only the token's characters). Nothing outside
the token's span is ever re-serialized, so diffs stay one line wide.
"""

import abc
import json
import re
import logging
from dataclasses import dataclass
from json.decoder import scanstring
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence, Tuple

from .config import FormatKind, ManifestDescriptor
from .exceptions import ManifestUnreadable, VersionFieldMissing
from .versioning import InvalidVersionError, parse_version

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r'[ \t\n\r]*')
_DECODER = json.JSONDecoder()
_BOM = '\ufeff'


@dataclass(frozen=True)
class MatchResult:
    """Outcome of comparing a manifest's version token to the authoritative one."""
    matches: bool
    old: str
    new: str


@dataclass(frozen=True)
class TokenSpan:
    start: int
    end: int
    value: str


def read_text(path: Path) -> str:
    """Reads a manifest without newline translation so rewrites keep CRLF files intact."""
    try:
        with open(path, 'r', encoding='utf-8', newline='') as f:
            return f.read()
    except FileNotFoundError:
        raise ManifestUnreadable(path, "file not found")
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestUnreadable(path, str(e))


def write_text(path: Path, content: str):
    with open(path, 'w', encoding='utf-8', newline='') as f:
        f.write(content)


class ManifestAdapter(abc.ABC):
    """Common contract for all manifest formats."""

    def __init__(self, path: Optional[Path] = None):
        self.path = path

    @abc.abstractmethod
    def locate(self, content: str) -> TokenSpan:
        """Finds the version token, raising VersionFieldMissing if there is none."""

    @abc.abstractmethod
    def rule(self) -> str:
        """Describes the extraction rule for error messages."""

    def extract(self, content: str) -> str:
        return self.locate(content).value

    def detect_mismatch(self, content: str, authoritative: str) -> MatchResult:
        current = self.extract(content)
        return MatchResult(matches=current == authoritative, old=current, new=authoritative)

    def rewrite(self, content: str, new_version: str) -> str:
        span = self.locate(content)
        return content[:span.start] + self._encode(new_version) + content[span.end:]

    def _encode(self, version: str) -> str:
        return version

    def _missing(self) -> VersionFieldMissing:
        return VersionFieldMissing(self.path, self.rule())


class StructuredDocumentAdapter(ManifestAdapter):
    """Handles JSON documents, addressing the version by an exact key path."""

    def __init__(self, key_path: Sequence[str] = ('version',), path: Optional[Path] = None):
        super().__init__(path)
        self.key_path: Tuple[str, ...] = tuple(key_path)

    def rule(self) -> str:
        return f"key '{'.'.join(self.key_path)}'"

    def locate(self, content: str) -> TokenSpan:
        offset = 1 if content.startswith(_BOM) else 0
        try:
            document = json.loads(content[offset:])
        except json.JSONDecodeError as e:
            raise ManifestUnreadable(self.path or Path('<document>'), f"invalid JSON: {e}")

        # Resolve semantically first so a missing or non-string field is reported as such.
        node = document
        for key in self.key_path:
            if not isinstance(node, dict) or key not in node:
                raise self._missing()
            node = node[key]
        if not isinstance(node, str):
            raise self._missing()

        idx = offset
        for key in self.key_path:
            idx = self._find_member_value(content, idx, key)
        value, end = scanstring(content, idx + 1)
        return TokenSpan(idx, end, value)

    def _encode(self, version: str) -> str:
        return json.dumps(version)

    @staticmethod
    def _skip_ws(content: str, idx: int) -> int:
        return _WHITESPACE.match(content, idx).end()

    def _find_member_value(self, content: str, idx: int, key: str) -> int:
        """
        Returns the index where the value of `key` starts in the object at `idx`.

        The document is already known to be valid JSON. Duplicate keys resolve to
        the last occurrence, matching what json.loads reports.
        """
        idx = self._skip_ws(content, idx)
        idx = self._skip_ws(content, idx + 1)  # past '{'
        found = -1
        while content[idx] != '}':
            name, idx = scanstring(content, idx + 1)
            idx = self._skip_ws(content, idx)
            idx = self._skip_ws(content, idx + 1)  # past ':'
            if name == key:
                found = idx
            _, idx = _DECODER.raw_decode(content, idx)
            idx = self._skip_ws(content, idx)
            if content[idx] == ',':
                idx = self._skip_ws(content, idx + 1)
        if found < 0:
            raise self._missing()
        return found


class LineOrientedAdapter(ManifestAdapter):
    """Handles line-based files (TOML, INI, ...) using the first match of a pattern."""

    _HEADER = re.compile(r'^[ \t]*\[(?P<name>[^\[\]\r\n]+)\][ \t]*(?:#[^\r\n]*)?\r?$', re.MULTILINE)
    _ANY_HEADER = re.compile(r'^[ \t]*\[', re.MULTILINE)

    def __init__(self, pattern: str, section: Optional[str] = None, path: Optional[Path] = None):
        super().__init__(path)
        self.pattern = re.compile(pattern, re.MULTILINE)
        self.section = section

    def rule(self) -> str:
        where = f" in [{self.section}]" if self.section else ""
        return f"pattern /{self.pattern.pattern}/{where}"

    def _region(self, content: str) -> Tuple[int, int]:
        if not self.section:
            return 0, len(content)
        for header in self._HEADER.finditer(content):
            if header.group('name').strip() == self.section:
                start = header.end()
                following = self._ANY_HEADER.search(content, start + 1)
                return start, following.start() if following else len(content)
        raise self._missing()

    def locate(self, content: str) -> TokenSpan:
        start, end = self._region(content)
        match = self.pattern.search(content, start, end)
        if not match or match.group('version') is None:
            raise self._missing()
        return TokenSpan(match.start('version'), match.end('version'), match.group('version'))


_ADAPTER_FACTORIES: Dict[FormatKind, Callable[[ManifestDescriptor, Optional[Path]], ManifestAdapter]] = {
    FormatKind.STRUCTURED: lambda d, p: StructuredDocumentAdapter(d.key_path, path=p),
    FormatKind.LINE_ORIENTED: lambda d, p: LineOrientedAdapter(d.pattern, d.section, path=p),
}


def adapter_for(descriptor: ManifestDescriptor, path: Optional[Path] = None) -> ManifestAdapter:
    """Returns the adapter that understands the descriptor's format."""
    try:
        factory = _ADAPTER_FACTORIES[descriptor.kind]
    except KeyError:
        raise ValueError(f"No adapter registered for format '{descriptor.kind}'")
    return factory(descriptor, path)


class VersionSource:
    """Reads the authoritative version from the primary manifest."""

    def __init__(self, path: Path, key_path: Sequence[str] = ('version',)):
        self.path = Path(path)
        self.adapter = StructuredDocumentAdapter(key_path, path=self.path)

    def read(self) -> str:
        """
        Returns the authoritative version string.

        Raises:
            ManifestUnreadable: The file is missing, is not JSON, or holds no valid semver.
            VersionFieldMissing: The version field is absent or not a string.
        """
        version = self.adapter.extract(read_text(self.path))
        try:
            canonical = str(parse_version(version))
        except InvalidVersionError as e:
            raise ManifestUnreadable(self.path, str(e))
        # Copied verbatim into every dependent manifest, so no 'v' prefix or padding.
        if canonical != version:
            raise ManifestUnreadable(self.path, f"'{version}' is not a plain semantic version (expected '{canonical}')")
        logger.debug(f"Authoritative version from {self.path.name}: {version}")
        return version
