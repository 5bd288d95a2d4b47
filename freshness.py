"""
Freshness Resolver
Decides whether an installed addon is stale against the catalog or its upstream
"""

import logging
from dataclasses import dataclass, replace

from addon_errors import NetworkFailure
from github_client import newest_fingerprint, parse_repo_url
from versioning import is_newer, max_version

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Freshness:
    version_stale: bool = False
    filename_stale: bool = False
    corrupted: bool = False
    source_stale: bool = False

    @property
    def needs_update(self):
        return self.version_stale or self.filename_stale or self.corrupted or self.source_stale


class FreshnessResolver:
    def __init__(self, fingerprint_source=None):
        """Initialize freshness resolver.

        Args:
            fingerprint_source: Optional FingerprintSource - Upstream lookups;
                without one, source staleness is never reported
        """
        self.fingerprint_source = fingerprint_source

    def version_stale(self, addon):
        local = max_version(addon.local_version, addon.backend_version)
        return is_newer(addon.entry.version, local)

    def filename_stale(self, addon):
        current = addon.entry.filename
        return bool(addon.installed_filename) and bool(current) and addon.installed_filename != current

    def source_stale(self, addon):
        """Compare the stored fingerprint with the newest upstream one.

        Only applies when the entry links a source repository and the sidecar
        carries a fingerprint. Lookup failures count as not stale.
        """
        if self.fingerprint_source is None or addon.source_fingerprint is None:
            return False
        repo = parse_repo_url(addon.entry.source_repo_url)
        if repo is None:
            return False
        try:
            upstream = newest_fingerprint(self.fingerprint_source, *repo)
        except NetworkFailure as e:
            log.warning("Fingerprint lookup for %s failed: %s", addon.folder, e)
            return False
        if upstream is None:
            return False
        return upstream.value != addon.source_fingerprint.value

    def check(self, addon):
        return Freshness(
            version_stale=self.version_stale(addon),
            filename_stale=self.filename_stale(addon),
            corrupted=addon.corrupted,
            source_stale=self.source_stale(addon),
        )

    def needs_update(self, addon):
        return self.check(addon).needs_update

    def annotate(self, installed):
        """Return a copy of the installed map with needs_update filled in."""
        return {
            folder: replace(addon, needs_update=self.needs_update(addon))
            for folder, addon in installed.items()
        }
