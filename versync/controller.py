"""
Defines the UpdateController, the query surface a host UI calls at runtime.

Every method returns plain data for display. Errors are caught here and turned
into messages so an update problem never takes the host application down.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from ._version import __version__
from .app_updater import (
    PlatformUpdater, SessionFactory, UpdateDetector, UpdateOutcome, UpdateState, UpdateTrigger,
    default_sources,
)
from .config import UpdaterSettings
from .exceptions import UpdateAlreadyInProgress, UpdateCheckFailed, UpdateTriggerFailed
from .installer import ReleaseInstaller


class UpdateController:
    """Owns the runtime update components for one application instance."""

    def __init__(self, detector: UpdateDetector, trigger: UpdateTrigger, current_version: str = __version__):
        """
        Initializes the UpdateController.

        Args:
            detector: Used for on-demand update checks.
            trigger: Used to start the platform update.
            current_version: The running application's version.
        """
        self.detector = detector
        self.trigger = trigger
        self.current_version = current_version
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings: UpdaterSettings, current_version: str = __version__,
                      session_factory: SessionFactory = aiohttp.ClientSession,
                      updater: Optional[PlatformUpdater] = None,
                      state: Optional[UpdateState] = None) -> 'UpdateController':
        detector = UpdateDetector(default_sources(settings, session_factory), current_version)
        updater = updater or ReleaseInstaller(detector, settings, session_factory)
        trigger = UpdateTrigger(updater, state or UpdateState())
        return cls(detector, trigger, current_version)

    def get_app_version(self) -> Dict[str, str]:
        return {'version': self.current_version}

    async def check_for_updates(self) -> Dict[str, Any]:
        """Returns {'success': True, 'info': VersionInfo} or {'success': False, 'error': ..., 'reason': ...}."""
        try:
            info = await self.detector.check(self.current_version)
        except UpdateCheckFailed as e:
            self.logger.warning(f"Failed to check for updates: {e}")
            return {'success': False, 'error': f"Failed to check for updates: {e.detail}", 'reason': e.reason.value}
        except Exception:
            self.logger.exception("An unexpected error occurred during update check.")
            return {'success': False, 'error': "An unexpected error occurred while checking for updates.", 'reason': 'unexpected'}
        if info.has_update:
            self.logger.info(f"New version available: {info.latest}")
        return {'success': True, 'info': info}

    async def trigger_update_check(self) -> Dict[str, Any]:
        """Returns {'success': True, 'outcome': ..., 'message': ...} or {'success': False, 'error': ...}."""
        try:
            result = await self.trigger.trigger()
        except UpdateAlreadyInProgress as e:
            return {'success': False, 'error': str(e)}
        except UpdateTriggerFailed as e:
            self.logger.warning(f"Update failed: {e}")
            return {'success': False, 'error': f"Update failed: {e}"}
        except asyncio.CancelledError:
            raise
        except Exception:
            self.logger.exception("An unexpected error occurred during update.")
            return {'success': False, 'error': "An unexpected error occurred while updating."}
        response = {'success': True, 'outcome': result.outcome.value, 'message': result.message}
        if result.outcome is UpdateOutcome.DEFERRED and result.manual_url:
            response['url'] = result.manual_url
        return response

    async def shutdown(self, timeout: float = 0) -> Optional[str]:
        """Called when the host closes; returns a message if an update's outcome is unknown."""
        result = await self.trigger.shutdown(timeout)
        if result is not None and result.outcome is UpdateOutcome.UNKNOWN:
            return result.message
        return None
