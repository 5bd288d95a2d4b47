"""
Versioning
Simplified major.minor.patch comparison and download filename helpers
"""

import re
from pathlib import PurePosixPath
from urllib.parse import urlparse, unquote

DEFAULT_VERSION = "1.0.0"

_LEADING_DIGITS = re.compile(r'^\s*(\d+)')


def _components(version):
    """Split a version string into exactly three integers.

    Missing components count as 0, and so does any component without a
    leading number. Pre-release and build suffixes are ignored.
    """
    parts = (version or '').strip().lstrip('vV').split('.')
    numbers = []
    for part in parts[:3]:
        match = _LEADING_DIGITS.match(part)
        numbers.append(int(match.group(1)) if match else 0)
    while len(numbers) < 3:
        numbers.append(0)
    return tuple(numbers)


def compare_versions(left, right):
    """Compare two version strings.

    Args:
        left: str - First version
        right: str - Second version

    Returns:
        int - -1 if left < right, 0 if equal, 1 if left > right
    """
    a = _components(left)
    b = _components(right)
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def is_newer(candidate, current):
    return compare_versions(candidate, current) > 0


def max_version(*versions):
    """Return the greatest non-empty version, or DEFAULT_VERSION."""
    best = None
    for version in versions:
        if not version:
            continue
        if best is None or compare_versions(version, best) > 0:
            best = version
    return best or DEFAULT_VERSION


def filename_from_url(download_url):
    """Extract the archive filename from a download URL.

    Args:
        download_url: str - Full download URL

    Returns:
        str - Filename, or empty string when the URL has no path
    """
    if not download_url:
        return ''
    parsed = urlparse(download_url)
    if not parsed.path:
        return ''
    return PurePosixPath(unquote(parsed.path).replace('\\', '/')).name
