"""Version information for appgen.

Single source of truth for version number.
"""

__version__ = "2.0.0"
__version_info__ = tuple(int(part) for part in __version__.split("."))

# Version history:
# 2.0.0 - Retry/poll engines, correlation ids, sanitized errors
# 1.0.0 - Initial release
