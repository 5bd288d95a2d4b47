"""
Deletion
Removes an addon's folders without touching folders owned by addons being kept
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor

from addon_errors import AddonManagerError, FilesystemFailure, PathViolation
from addon_models import DeletionReport
from dependency_graph import all_descendants
from toc_manifest import normalize_title, read_title

log = logging.getLogger(__name__)

DELETE_ATTEMPTS = 3
DELETE_BACKOFF = 0.2


def delete_folder_with_retry(gateway, folder, attempts=DELETE_ATTEMPTS, backoff=DELETE_BACKOFF, sleep=time.sleep):
    """Delete a top-level folder and verify it is gone.

    Args:
        gateway: FilesystemGateway - Gateway rooted at the AddOns directory
        folder: str - Folder name
        attempts: int - Total tries (first try plus retries)
        backoff: float - Delay before retry n is backoff * n seconds
        sleep: callable - Sleep function (replaced in tests)

    Raises:
        PathViolation - Immediately, if the folder resolves outside the root
        FilesystemFailure - If the folder still exists after every attempt
    """
    path = gateway.ensure_inside(folder)
    last_error = None
    for attempt in range(1, attempts + 1):
        try:
            gateway.delete_folder_recursive(path)
        except FilesystemFailure as e:
            last_error = e
        if not gateway.exists(path):
            return
        if attempt < attempts:
            log.warning("Attempt %d to delete %s failed, retrying", attempt, folder)
            sleep(backoff * attempt)
    raise FilesystemFailure(f"Failed to delete folder {folder}: {last_error or 'still present'}", path)


def delete_folders(gateway, folders, sleep=time.sleep, max_workers=4):
    """Delete disjoint folders concurrently, best effort.

    Returns:
        tuple - (list of deleted names, dict of failed name -> reason)
    """
    folders = list(folders)

    def _delete(folder):
        try:
            delete_folder_with_retry(gateway, folder, sleep=sleep)
        except AddonManagerError as e:
            return e
        return None

    deleted = []
    failed = {}
    if not folders:
        return deleted, failed
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        outcomes = list(pool.map(_delete, folders))
    for folder, error in zip(folders, outcomes):
        if error is None:
            deleted.append(folder)
        else:
            log.error("Could not delete %s: %s", folder, error)
            failed[folder] = str(error)
    return deleted, failed


def protected_folders(installed, deletion_ids):
    """Every folder listed by an installed addon that is being kept."""
    protected = set()
    for addon in installed.values():
        if addon.id not in deletion_ids:
            protected.update(addon.entry.folder_names)
    return protected


def plan_deletion(candidates, installed, deletion_ids):
    """Split candidate folders into those to delete and those to keep.

    Pure set computation: a folder listed by any installed addon outside the
    deletion set is never deleted.

    Args:
        candidates: iterable - Folder names considered for deletion
        installed: dict - folder -> InstalledAddon
        deletion_ids: iterable - Catalog ids being removed

    Returns:
        tuple - (sorted folders to delete, sorted protected folders)
    """
    candidates = set(candidates)
    protected = protected_folders(installed, set(deletion_ids))
    return sorted(candidates - protected), sorted(candidates & protected)


class DeletionOrchestrator:
    def __init__(self, gateway, sleep=time.sleep):
        """Initialize deletion orchestrator.

        Args:
            gateway: FilesystemGateway - Gateway rooted at the AddOns directory
            sleep: callable - Sleep used between delete retries
        """
        self.gateway = gateway
        self._sleep = sleep

    def deletion_set(self, target, installed, keep_ids=()):
        """The target plus every descendant the caller did not choose to keep."""
        keep_ids = set(keep_ids)
        members = [target]
        for child in all_descendants(target, installed):
            if child.id not in keep_ids:
                members.append(child)
        return members

    def candidate_folders(self, members):
        """Folders on disk that belong to the members.

        A folder qualifies if its manifest title normalizes to a member's
        title, or if a member declares it.
        """
        present = self.gateway.list_dir()
        titles = {normalize_title(member.entry.display_title) for member in members}
        titles.discard('')

        candidates = set()
        for folder in present:
            try:
                title = read_title(self.gateway, folder)
            except OSError as e:
                log.warning("Could not read manifest title of %s: %s", folder, e)
                continue
            if title is not None and normalize_title(title) in titles:
                candidates.add(folder)

        present_set = set(present)
        for member in members:
            candidates.update(name for name in member.entry.folder_names if name in present_set)
        return candidates

    def delete(self, target, installed, keep_ids=()):
        """Delete an addon and the descendants not listed in keep_ids.

        Args:
            target: InstalledAddon - Addon the user removes
            installed: dict - folder -> InstalledAddon from the latest scan
            keep_ids: iterable - Descendant ids that must survive

        Returns:
            DeletionReport - Deleted, failed and protected folders
        """
        members = self.deletion_set(target, installed, keep_ids)
        deletion_ids = {member.id for member in members}
        candidates = self.candidate_folders(members)
        to_delete, protected = plan_deletion(candidates, installed, deletion_ids)

        report = DeletionReport(protected=protected)
        safe = []
        for folder in to_delete:
            try:
                self.gateway.ensure_inside(folder)
            except PathViolation as e:
                log.error("Refusing to delete %s: %s", folder, e)
                report.failed[folder] = str(e)
                continue
            safe.append(folder)

        deleted, failed = delete_folders(self.gateway, safe, sleep=self._sleep)
        report.deleted.extend(deleted)
        report.failed.update(failed)
        log.info('Deleted "%s": %d folder(s) removed, %d kept, %d failed',
                 target.entry.title, len(report.deleted), len(protected), len(report.failed))
        return report
