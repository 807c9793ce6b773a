"""Downloads the platform installer for a new release and launches it."""
import asyncio
import os
import platform
import subprocess
import sys
import tempfile
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional

import aiofiles
import aiohttp

from .app_updater import SessionFactory, UpdateDetector, UpdateOutcome, UpdateResult, VersionInfo
from .config import UpdaterSettings
from .constants import DOWNLOAD_SOCK_READ_TIMEOUT, REQUEST_HEADERS
from .exceptions import UpdateTriggerFailed

Opener = Callable[[Path], Awaitable[None]]


def detect_arch(machine: Optional[str] = None) -> str:
    """Maps the CPU architecture to the release asset naming ('aarch64' or 'x64')."""
    machine = (machine if machine is not None else platform.machine()).lower()
    if machine in ('arm64', 'aarch64'):
        return 'aarch64'
    return 'x64'


async def open_with_system(path: Path) -> None:
    """Opens a file with the OS default handler, which starts the installer."""
    if sys.platform == 'win32':
        await asyncio.to_thread(os.startfile, str(path))
    elif sys.platform == 'darwin':
        await asyncio.to_thread(subprocess.run, ['open', str(path)], check=True)
    else:
        await asyncio.to_thread(subprocess.run, ['xdg-open', str(path)], check=True)


class ReleaseInstaller:
    """
    Platform updater backed by GitHub release assets.

    Checks for a newer release itself, so it is safe to run without a prior
    check. When the automatic install cannot complete but a release page is
    known, the result is DEFERRED with a manual download link.
    """
    CHUNK_SIZE = 8192

    def __init__(self, detector: UpdateDetector, settings: UpdaterSettings,
                 session_factory: SessionFactory = aiohttp.ClientSession,
                 opener: Opener = open_with_system,
                 download_dir: Optional[Path] = None,
                 platform_name: str = sys.platform,
                 arch: Optional[str] = None):
        self.detector = detector
        self.settings = settings
        self.session_factory = session_factory
        self.opener = opener
        self.download_dir = download_dir or Path(tempfile.gettempdir())
        self.platform_name = platform_name
        self.arch = arch or detect_arch()
        self.logger = logging.getLogger(__name__)

    def asset_name(self, version: str) -> str:
        app = self.settings.app_name
        if self.platform_name == 'darwin':
            return f"{app}_{version}_{self.arch}.dmg"
        if self.platform_name == 'win32':
            return f"{app}_{version}_{self.arch}-setup.exe"
        linux_arch = 'aarch64' if self.arch == 'aarch64' else 'amd64'
        return f"{app}_{version}_{linux_arch}.AppImage"

    def asset_url(self, version: str) -> str:
        tag = f"{self.settings.tag_prefix}{version}"
        return f"{self.settings.releases_url}/download/{tag}/{self.asset_name(version)}"

    async def run(self) -> UpdateResult:
        info = await self.detector.check()
        if not info.has_update:
            self.logger.info("No update available.")
            return UpdateResult(UpdateOutcome.NO_UPDATE_AVAILABLE, "You are already running the latest version.", info)

        headline = f"New version found! Current version: {info.current}, latest version: {info.latest}"
        self.logger.info(headline)
        try:
            installer_path = await self.download(info)
            await self.opener(installer_path)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, subprocess.CalledProcessError, UpdateTriggerFailed) as e:
            self.logger.warning(f"Automatic install failed: {e}")
            if info.download_url:
                message = f"{headline}\nAutomatic install failed: {e}\nPlease download and install manually: {info.download_url}"
                return UpdateResult(UpdateOutcome.DEFERRED, message, info, manual_url=info.download_url)
            raise UpdateTriggerFailed(f"Update failed: {e}") from e

        self.logger.info(f"Installer started: {installer_path}")
        message = f"{headline}\nUpdate downloaded. The installer has been started; follow its prompts to finish."
        return UpdateResult(UpdateOutcome.INSTALLED, message, info)

    async def download(self, info: VersionInfo) -> Path:
        """Confirms the platform asset exists, then streams it to a temp directory."""
        url = self.asset_url(info.latest)
        target_dir = self.download_dir / f"{self.settings.app_name}_update_{info.latest}"
        await asyncio.to_thread(target_dir.mkdir, parents=True, exist_ok=True)
        save_path = target_dir / self.asset_name(info.latest)

        timeout = aiohttp.ClientTimeout(total=None, sock_connect=self.settings.request_timeout,
                                        sock_read=DOWNLOAD_SOCK_READ_TIMEOUT)
        headers = {'User-Agent': REQUEST_HEADERS['User-Agent']}
        async with self.session_factory(timeout=timeout) as session:
            async with session.head(url, headers=headers, allow_redirects=True) as r:
                if r.status >= 400:
                    raise UpdateTriggerFailed(f"No installer for platform {self.platform_name}/{self.arch} ({r.status})")

            self.logger.info(f"Downloading update from {url}")
            async with session.get(url, headers=headers) as r:
                r.raise_for_status()
                bytes_downloaded = 0
                async with aiofiles.open(save_path, 'wb') as f_out:
                    async for chunk in r.content.iter_chunked(self.CHUNK_SIZE):
                        await f_out.write(chunk)
                        bytes_downloaded += len(chunk)

        if not save_path.exists() or bytes_downloaded == 0:
            raise UpdateTriggerFailed("Downloaded installer is missing or empty.")
        self.logger.info(f"Download complete: {save_path} ({bytes_downloaded} bytes)")
        return save_path
