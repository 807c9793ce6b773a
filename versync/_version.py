"""
Defines the application's version string.

This is the version reported by `get_app_version` and compared against the
latest release during update checks.
"""

__version__ = "0.2.0"
