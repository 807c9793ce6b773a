"""
Defines application-wide constants, paths, and defaults.

This module centralizes the default manifest layout, URLs, timeouts and
subprocess behavior.
"""

import sys
import subprocess
from pathlib import Path

# Use a user-specific directory for logs to avoid permission issues.
USER_DATA_DIR: Path = Path.home() / '.versync'
LOG_DIR: Path = USER_DATA_DIR / 'logs'

# Project-level configuration, looked up in the project root.
CONFIG_FILENAME = 'versync.json'

# Centralize subprocess creation flags to avoid console windows on Windows.
SUBPROCESS_CREATION_FLAGS = subprocess.CREATE_NO_WINDOW if sys.platform == 'win32' else 0

# --- Default manifest layout (Tauri style project) ---
PRIMARY_MANIFEST = 'package.json'
NATIVE_DIR = 'src-tauri'
TAURI_CONF = f'{NATIVE_DIR}/tauri.conf.json'
CARGO_TOML = f'{NATIVE_DIR}/Cargo.toml'
CARGO_LOCK = f'{NATIVE_DIR}/Cargo.lock'

# `version = "x.y.z"` at the start of a line.
DEFAULT_LINE_PATTERN = r'^version\s*=\s*"(?P<version>[^"\r\n]*)"'

LOCK_BUILD_TOOL = 'cargo'
LOCK_BUILD_ARGS = ('check',)
LOCK_REGEN_TIMEOUT = 300.0  # seconds
STAGING_TIMEOUT = 30.0  # seconds

LOG_PREFIX = '[versync]'

# --- Application Update Checker ---
APP_NAME = 'mirror'
GITHUB_OWNER = 'Godi13'
GITHUB_REPO = 'mirror'
GITHUB_API_BASE = 'https://api.github.com'
GITHUB_WEB_BASE = 'https://github.com'
REQUEST_HEADERS = {
    'User-Agent': 'mirror-app',
    'Accept': 'application/vnd.github+json',
}
REQUEST_TIMEOUT = 10.0  # seconds, per request
DOWNLOAD_SOCK_READ_TIMEOUT = 60.0
