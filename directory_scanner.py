"""
Directory Scanner
Matches top-level AddOns folders to catalog entries
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

from addon_errors import AddonManagerError, FilesystemFailure, MalformedCatalogData
from addon_models import Conflict, InstalledAddon, ScanResult
from install_record import InstallRecord, create_record, read_record, write_record
from toc_manifest import read_version

log = logging.getLogger(__name__)


def build_main_folder_index(catalog, errors=None):
    """Map every main folder name to the catalog entries claiming it.

    Entries without a main folder are reported and left out. Entries with
    several main folders are indexed under each of them.

    Args:
        catalog: iterable - CatalogEntry objects
        errors: Optional list - Receives MalformedCatalogData for skipped entries

    Returns:
        dict - folder name -> list of CatalogEntry
    """
    index = {}
    for entry in catalog:
        if not entry.folder_list:
            error = MalformedCatalogData(entry.id, 'empty folder list')
        elif entry.main_folder is None:
            error = MalformedCatalogData(entry.id, 'no main folder')
        else:
            error = None
        if error:
            log.warning("Skipping malformed catalog entry: %s", error)
            if errors is not None:
                errors.append(error)
            continue
        if len(entry.main_folders) > 1:
            log.warning("Catalog entry %s declares %d main folders: %s",
                        entry.id, len(entry.main_folders), ", ".join(entry.main_folders))
        for main_folder in entry.main_folders:
            index.setdefault(main_folder, []).append(entry)
    return index


class DirectoryScanner:
    def __init__(self, gateway, max_workers=8):
        """Initialize directory scanner.

        Args:
            gateway: FilesystemGateway - Gateway rooted at the AddOns directory
            max_workers: int - Folders inspected in parallel
        """
        self.gateway = gateway
        self.max_workers = max_workers

    def scan(self, catalog):
        """Scan the AddOns directory against the catalog.

        Args:
            catalog: iterable - Every CatalogEntry of the current catalog

        Returns:
            ScanResult - Installed addons keyed by main folder, the conflict
            queue, and the per-folder errors that were skipped

        Raises:
            FilesystemFailure - If the AddOns directory itself cannot be listed
        """
        catalog = list(catalog)
        result = ScanResult()
        index = build_main_folder_index(catalog, result.errors)
        by_id = {entry.id: entry for entry in catalog}

        try:
            present = self.gateway.list_dir()
        except OSError as e:
            raise FilesystemFailure(f"Cannot list {self.gateway.root}: {e}", self.gateway.root) from e
        present_set = frozenset(present)

        candidates = [folder for folder in present if folder in index]
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            outcomes = list(pool.map(
                lambda folder: self._scan_folder_safe(folder, index[folder], present_set, by_id),
                candidates,
            ))

        for folder, outcome in zip(candidates, outcomes):
            if isinstance(outcome, InstalledAddon):
                result.installed[folder] = outcome
            elif isinstance(outcome, Conflict):
                result.conflicts.append(outcome)
            elif isinstance(outcome, Exception):
                result.errors.append(outcome)

        log.info("Scan found %d installed addon(s), %d conflict(s)",
                 len(result.installed), len(result.conflicts))
        return result

    def _scan_folder_safe(self, folder, matches, present, by_id):
        try:
            return self._scan_folder(folder, matches, present, by_id)
        except (OSError, AddonManagerError) as e:
            log.error("Skipping folder %s: %s", folder, e)
            return e

    def _scan_folder(self, folder, matches, present, by_id):
        local_version = read_version(self.gateway, folder)
        record = read_record(self.gateway, folder)

        if record is not None and record.addon_id is not None:
            entry = by_id.get(record.addon_id)
            if entry is not None:
                if not record.filename:
                    record = self._repair_filename(folder, entry, record)
                return self._installed(folder, entry, record, local_version, present)

        if len(matches) == 1:
            entry = matches[0]
            if record is None or record.addon_id != entry.id:
                record = self._adopt(folder, entry, record)
            return self._installed(folder, entry, record, local_version, present)

        log.info("Folder %s is claimed by %d catalog entries", folder, len(matches))
        return Conflict(folder=folder, candidates=tuple(matches))

    def _adopt(self, folder, entry, existing):
        record = InstallRecord.for_entry(entry)
        if existing is not None:
            return record
        try:
            if create_record(self.gateway, folder, record):
                log.debug("Created sidecar for %s (addon %s)", folder, entry.id)
        except AddonManagerError as e:
            log.warning("Could not create sidecar for %s: %s", folder, e)
        return record

    def _repair_filename(self, folder, entry, record):
        record = replace(record, filename=entry.filename)
        try:
            write_record(self.gateway, folder, record)
        except AddonManagerError as e:
            log.warning("Could not repair sidecar for %s: %s", folder, e)
        return record

    def _installed(self, folder, entry, record, local_version, present):
        missing = frozenset(name for name in entry.folder_names if name not in present)
        return InstalledAddon(
            entry=entry,
            folder=folder,
            local_version=local_version,
            installed_filename=record.filename,
            backend_version=record.backend_version,
            source_fingerprint=record.fingerprint,
            corrupted=bool(missing),
            missing_folders=missing,
        )
