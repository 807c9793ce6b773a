"""Checks GitHub for newer application releases and starts updates."""
import asyncio
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Protocol, Sequence

import aiohttp
from pydantic import BaseModel, ConfigDict, computed_field, field_validator

from ._version import __version__
from .config import UpdaterSettings
from .constants import REQUEST_HEADERS
from .exceptions import (
    CheckFailureReason, UpdateAlreadyInProgress, UpdateCheckFailed, UpdateTriggerFailed,
)
from .versioning import InvalidVersionError, is_newer, normalize_version

SessionFactory = Callable[..., aiohttp.ClientSession]


class VersionInfo(BaseModel):
    """
    Result of an update check.

    `has_update` is always computed from the two versions and cannot be
    passed in. Both versions are validated semver, stored without a 'v' prefix.
    """
    model_config = ConfigDict(frozen=True, extra='forbid')

    current: str
    latest: str
    download_url: Optional[str] = None

    @field_validator('current', 'latest')
    def validate_version(cls, value: str) -> str:
        return normalize_version(value)

    @computed_field
    @property
    def has_update(self) -> bool:
        return is_newer(self.current, self.latest)


@dataclass(frozen=True)
class RemoteRelease:
    """The latest release as reported by a remote source."""
    tag: str
    url: Optional[str] = None


class ReleaseSource(Protocol):
    name: str

    async def fetch_latest(self) -> RemoteRelease:
        ...


class GitHubApiSource:
    """Reads `releases/latest` from the GitHub REST API."""
    name = 'github-api'

    def __init__(self, settings: UpdaterSettings, session_factory: SessionFactory = aiohttp.ClientSession):
        self.settings = settings
        self.session_factory = session_factory

    async def fetch_latest(self) -> RemoteRelease:
        url = self.settings.latest_release_api_url
        timeout = aiohttp.ClientTimeout(total=self.settings.request_timeout)
        try:
            async with self.session_factory(timeout=timeout) as session:
                async with session.get(url, headers=REQUEST_HEADERS) as response:
                    if response.status == 403 and response.headers.get('x-ratelimit-remaining') == '0':
                        raise UpdateCheckFailed(CheckFailureReason.NETWORK, "GitHub API rate limit exceeded")
                    if response.status >= 400:
                        text = await response.text()
                        raise UpdateCheckFailed(CheckFailureReason.NETWORK, f"GitHub API error: {response.status} - {text[:200]}")
                    data = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise UpdateCheckFailed(CheckFailureReason.NETWORK, str(e) or type(e).__name__) from e
        except asyncio.TimeoutError as e:
            raise UpdateCheckFailed(CheckFailureReason.NETWORK, "request timed out") from e
        except ValueError as e:  # json.JSONDecodeError
            raise UpdateCheckFailed(CheckFailureReason.REMOTE_FORMAT, f"response is not JSON: {e}") from e

        if not isinstance(data, dict):
            raise UpdateCheckFailed(CheckFailureReason.REMOTE_FORMAT, f"unexpected API response type: {type(data).__name__}")
        tag = data.get('tag_name')
        if not isinstance(tag, str) or not tag.strip():
            raise UpdateCheckFailed(CheckFailureReason.REMOTE_FORMAT, "no version tag in API response")
        html_url = data.get('html_url')
        return RemoteRelease(tag.strip(), html_url if isinstance(html_url, str) and html_url else None)


class ReleasePageSource:
    """Falls back to the public releases page, which redirects to the latest tag."""
    name = 'releases-page'

    def __init__(self, settings: UpdaterSettings, session_factory: SessionFactory = aiohttp.ClientSession):
        self.settings = settings
        self.session_factory = session_factory
        path = re.escape(f"/{settings.github_owner}/{settings.github_repo}/releases/tag/")
        self.tag_pattern = re.compile(path + r'([^"\'?#/<>\s]+)')

    async def fetch_latest(self) -> RemoteRelease:
        url = f"{self.settings.releases_url}/latest"
        timeout = aiohttp.ClientTimeout(total=self.settings.request_timeout)
        headers = {'User-Agent': REQUEST_HEADERS['User-Agent']}
        try:
            async with self.session_factory(timeout=timeout) as session:
                async with session.get(url, headers=headers, allow_redirects=True) as response:
                    if response.status >= 400:
                        raise UpdateCheckFailed(CheckFailureReason.NETWORK, f"Failed to fetch releases page: {response.status}")
                    final_url = str(response.url)
                    html = await response.text()
        except aiohttp.ClientError as e:
            raise UpdateCheckFailed(CheckFailureReason.NETWORK, str(e) or type(e).__name__) from e
        except asyncio.TimeoutError as e:
            raise UpdateCheckFailed(CheckFailureReason.NETWORK, "request timed out") from e

        match = self.tag_pattern.search(final_url) or self.tag_pattern.search(html)
        if not match:
            raise UpdateCheckFailed(CheckFailureReason.REMOTE_FORMAT, "could not extract version from releases page")
        tag = match.group(1)
        return RemoteRelease(tag, f"{self.settings.releases_url}/tag/{tag}")


def default_sources(settings: UpdaterSettings, session_factory: SessionFactory = aiohttp.ClientSession) -> List[ReleaseSource]:
    sources: List[ReleaseSource] = [GitHubApiSource(settings, session_factory)]
    if settings.use_release_page_fallback:
        sources.append(ReleasePageSource(settings, session_factory))
    return sources


class UpdateDetector:
    """Compares the running version against the latest remote release."""

    def __init__(self, sources: Sequence[ReleaseSource], current_version: str = __version__):
        self.sources = list(sources)
        self.current_version = current_version
        self.logger = logging.getLogger(__name__)

    async def check(self, local_version: Optional[str] = None) -> VersionInfo:
        """
        Fetches the latest release (never cached) and compares it with `local_version`.

        Sources are tried in order; the next one is only used when the previous failed.

        Raises:
            UpdateCheckFailed: Every source failed, or a version could not be parsed.
        """
        local = local_version or self.current_version
        self.logger.info("Checking for application updates...")
        last_error: Optional[UpdateCheckFailed] = None
        for source in self.sources:
            try:
                release = await source.fetch_latest()
                info = self._build_info(local, release)
            except UpdateCheckFailed as e:
                self.logger.warning(f"Update source '{source.name}' failed: {e}")
                last_error = e
                continue
            self.logger.info(f"Current version: {info.current}, Latest version found: {info.latest}")
            return info
        if last_error is None:
            last_error = UpdateCheckFailed(CheckFailureReason.NETWORK, "no release sources configured")
        raise last_error

    @staticmethod
    def _build_info(local: str, release: RemoteRelease) -> VersionInfo:
        try:
            current = normalize_version(local)
        except InvalidVersionError as e:
            raise UpdateCheckFailed(CheckFailureReason.PARSE, f"local version: {e}") from e
        try:
            latest = normalize_version(release.tag)
        except InvalidVersionError as e:
            raise UpdateCheckFailed(CheckFailureReason.PARSE, f"remote version: {e}") from e
        has_update = is_newer(current, latest)
        return VersionInfo(current=current, latest=latest, download_url=release.url if has_update else None)


class UpdateOutcome(str, Enum):
    NO_UPDATE_AVAILABLE = 'no-update-available'
    INSTALLED = 'installed'
    DEFERRED = 'deferred'
    UNKNOWN = 'unknown'


@dataclass(frozen=True)
class UpdateResult:
    """What the platform updater did, plus a message for display."""
    outcome: UpdateOutcome
    message: str
    version_info: Optional[VersionInfo] = None
    manual_url: Optional[str] = None


class PlatformUpdater(Protocol):
    async def run(self) -> UpdateResult:
        """Decides whether an update is needed and performs it."""
        ...


class UpdateState:
    """
    Shared single-flight marker for update triggers.

    One instance is created by the host and handed to every UpdateTrigger.
    """

    def __init__(self):
        self.lock = asyncio.Lock()
        self.in_flight: Optional[asyncio.Task] = None

    @property
    def busy(self) -> bool:
        return self.in_flight is not None and not self.in_flight.done()


class UpdateTrigger:
    """Starts the platform update, making sure only one runs at a time."""

    def __init__(self, updater: PlatformUpdater, state: UpdateState, join_in_flight: bool = True):
        """
        Initializes the UpdateTrigger.

        Args:
            updater: The platform update mechanism.
            state: Shared in-flight marker.
            join_in_flight: If True a concurrent caller waits for the running update;
                if False it fails with UpdateAlreadyInProgress.
        """
        self.updater = updater
        self.state = state
        self.join_in_flight = join_in_flight
        self.logger = logging.getLogger(__name__)

    async def trigger(self) -> UpdateResult:
        """
        Runs the platform updater, or joins the run already in progress.

        Raises:
            UpdateTriggerFailed: The updater failed.
            UpdateAlreadyInProgress: An update is running and joining is disabled.
        """
        async with self.state.lock:
            task = self.state.in_flight
            if task is None or task.done():
                task = asyncio.create_task(self._run(), name="App-Update")
                task.add_done_callback(self._clear_in_flight)
                self.state.in_flight = task
            elif not self.join_in_flight:
                raise UpdateAlreadyInProgress("An update is already in progress.")
            else:
                self.logger.info("Update already in progress, waiting for its result.")

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.done():
                self.logger.warning("Stopped waiting for a running update; its outcome is unknown.")
            raise

    async def shutdown(self, timeout: float = 0) -> Optional[UpdateResult]:
        """
        Reports on an in-flight update when the host is closing.

        Returns None if nothing was running, the real result if it finishes
        within `timeout`, otherwise an UNKNOWN outcome.
        """
        task = self.state.in_flight
        if task is None:
            return None
        if not task.done() and timeout > 0:
            await asyncio.wait({task}, timeout=timeout)
        if not task.done():
            self.logger.warning("Application closing while an update is running; outcome unknown.")
            return UpdateResult(UpdateOutcome.UNKNOWN, "The update was still running when the application closed. Its outcome is unknown.")
        if task.cancelled() or task.exception() is not None:
            return UpdateResult(UpdateOutcome.UNKNOWN, "The update did not report a result.")
        return task.result()

    async def _run(self) -> UpdateResult:
        try:
            result = await self.updater.run()
        except (UpdateTriggerFailed, asyncio.CancelledError):
            raise
        except UpdateCheckFailed as e:
            raise UpdateTriggerFailed(f"Update check failed: {e}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, json.JSONDecodeError) as e:
            raise UpdateTriggerFailed(f"Update failed: {e}") from e
        self.logger.info(f"Update finished: {result.outcome.value}")
        return result

    def _clear_in_flight(self, task: asyncio.Task) -> None:
        if self.state.in_flight is task:
            self.state.in_flight = None
        if not task.cancelled():
            task.exception()  # Mark as retrieved; callers re-raise it themselves.
