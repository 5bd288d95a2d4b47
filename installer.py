"""
Installer
Runs the install state machine for one addon: resolve, check bundles, delete,
download, extract, normalize and write the install record
"""

import logging
import tempfile
import time

from addon_errors import FilesystemFailure, MalformedCatalogData, NetworkFailure
from addon_models import PipelineState, PipelineStep
from deletion import delete_folders
from dependency_graph import exclusive_children, family_of
from folder_structure_detector import FolderStructureDetector
from install_record import InstallRecord, write_record
from toc_manifest import read_version, toc_path, update_version
from versioning import max_version

log = logging.getLogger(__name__)

MAX_NESTING_DEPTH = 3


class _Run:
    """Current state of one pipeline run plus its observer."""

    def __init__(self, state, on_state):
        self.state = state
        self._on_state = on_state

    def publish(self, state):
        self.state = state
        if self._on_state is not None:
            self._on_state(state)
        return state

    def advance(self, step, message=''):
        return self.publish(self.state.advance(step, message))

    def progress(self, percent):
        if percent != self.state.progress:
            self.publish(self.state.with_progress(percent))

    def warn(self, warning):
        log.warning(warning)
        self.publish(self.state.with_warning(warning))


class InstallerPipeline:
    def __init__(self, gateway, downloader, fetch_entry=None, sleep=time.sleep):
        """Initialize the installer pipeline.

        Args:
            gateway: FilesystemGateway - Gateway rooted at the AddOns directory
            downloader: Downloader - Archive downloader
            fetch_entry: Optional callable(id) - Looks up catalog entries that
                are missing from the local catalog (variation parents)
            sleep: callable - Sleep used between delete retries
        """
        self.gateway = gateway
        self.downloader = downloader
        self.fetch_entry = fetch_entry
        self.detector = FolderStructureDetector(gateway)
        self._sleep = sleep

    def run(self, entry, installed, catalog_by_id, reinstall=False, skip_bundle_check=False, on_state=None):
        """Install (or reinstall) one catalog entry.

        Args:
            entry: CatalogEntry - Entry the user asked for
            installed: dict - folder -> InstalledAddon from the latest scan
            catalog_by_id: dict - id -> CatalogEntry
            reinstall: bool - Reinstall flow; implies skip_bundle_check
            skip_bundle_check: bool - Do not pause for bundled children
            on_state: Optional callable(PipelineState) - Receives every transition

        Returns:
            PipelineState - Terminal state: DONE, FAILED or NEEDS_CONFIRMATION
        """
        run = _Run(PipelineState(addon_id=entry.id), on_state)
        try:
            run.advance(PipelineStep.RESOLVING_TARGET, f'Resolving "{entry.title}"')
            main_folder = entry.main_folder
            if main_folder is None:
                raise MalformedCatalogData(entry.id, 'no main folder')
            if not entry.download_url and not entry.source_repo_url:
                raise NetworkFailure(f'The source URL for "{entry.title}" could not be found')
            family = self.resolve_family(entry, catalog_by_id)

            run.advance(PipelineStep.CHECKING_BUNDLES, 'Checking bundled addons')
            if not (reinstall or skip_bundle_check):
                bundled = exclusive_children(family, installed)
                if bundled:
                    log.info('Install of "%s" would remove %d bundled addon(s)', entry.title, len(bundled))
                    return run.publish(run.state.needs_confirmation(bundled))

            previous = self._previous_fingerprint(entry, installed)

            run.advance(PipelineStep.DELETING, 'Deleting previous folders')
            self._delete_family(run, family, installed)

            with tempfile.TemporaryDirectory() as temp_dir:
                run.advance(PipelineStep.DOWNLOADING, 'Downloading addon')
                download = self.downloader.download(entry, temp_dir, on_progress=run.progress)
                fingerprint = download.fingerprint or previous

                run.advance(PipelineStep.EXTRACTING, 'Extracting addon')
                before_dirs = self.gateway.list_dir()
                before_entries = self.gateway.list_entries()
                self.gateway.extract_archive(download.path)
                new_folders = self.detector.new_top_level_entries(before_dirs, self.gateway.list_dir())

            run.advance(PipelineStep.NORMALIZING, 'Restructuring folder')
            self.normalize(entry, new_folders, run)
            self.remove_scaffolding(before_entries)

            run.advance(PipelineStep.WRITING_RECORD, 'Writing install record')
            self.write_record(entry, fingerprint, run)

            return run.advance(PipelineStep.DONE, f'"{entry.title}" installed')
        except Exception as e:
            log.exception('Installation of "%s" failed', entry.title)
            return run.publish(run.state.fail(f'The addon could not be installed: {e}'))

    def resolve_family(self, entry, catalog_by_id):
        """The variation family the install operates on.

        Missing parents and variants are looked up through fetch_entry.
        """
        catalog_by_id = dict(catalog_by_id)
        catalog_by_id.setdefault(entry.id, entry)
        if self.fetch_entry is not None:
            current = entry
            while current.variation_of is not None and current.variation_of not in catalog_by_id:
                parent = self.fetch_entry(current.variation_of)
                if parent is None:
                    break
                catalog_by_id[parent.id] = parent
                current = parent
        root, family = family_of(entry, catalog_by_id)
        if self.fetch_entry is not None:
            missing = [vid for vid in root.variant_ids if vid not in catalog_by_id]
            for variant_id in missing:
                variant = self.fetch_entry(variant_id)
                if variant is not None:
                    catalog_by_id[variant.id] = variant
            if missing:
                root, family = family_of(entry, catalog_by_id)
        return family

    def _previous_fingerprint(self, entry, installed):
        for addon in installed.values():
            if addon.id == entry.id and addon.source_fingerprint is not None:
                return addon.source_fingerprint
        return None

    def family_folders(self, family, installed):
        """Folders of installed family members that no other installed addon lists.

        Raises:
            PathViolation - If a folder name resolves outside the root
        """
        family_ids = {member.id for member in family}
        folders = set()
        for member in installed.values():
            if member.id not in family_ids:
                continue
            for folder in member.entry.folder_names:
                shared = any(
                    other.id != member.id and folder in other.entry.folder_names
                    for other in installed.values()
                )
                if shared:
                    log.info("Keeping %s, still used by another installed addon", folder)
                    continue
                self.gateway.ensure_inside(folder)
                folders.add(folder)
        return sorted(folder for folder in folders if self.gateway.exists(folder))

    def _delete_family(self, run, family, installed):
        folders = self.family_folders(family, installed)
        _, failed = delete_folders(self.gateway, folders, sleep=self._sleep)
        for folder, reason in failed.items():
            run.warn(f"Failed to delete folder {folder}: {reason}")

    def normalize(self, entry, new_folders, run=None):
        """Bring the extracted layout in line with the catalog's folder list.

        Args:
            entry: CatalogEntry - Entry being installed
            new_folders: list - Top-level folders created by the extraction
            run: Optional _Run - Receives warnings
        """
        main_folder = entry.main_folder
        layout = self.detector.detect_layout(new_folders, entry)
        folder = layout['folder']

        if layout['structure'] == 'multi':
            log.info("Flattening %s into the AddOns directory", folder)
            self.gateway.move_children(folder, self.gateway.root)
        elif layout['structure'] == 'rename':
            log.info("Renaming %s to %s", folder, main_folder)
            self.gateway.copy_recursive(folder, main_folder)
            self.gateway.delete_folder_recursive(folder)

        self.collapse_nesting(main_folder, run)

    def collapse_nesting(self, folder, run=None):
        """Collapse '<folder>/<folder>' nesting, at most MAX_NESTING_DEPTH levels.

        Returns:
            int - Number of levels collapsed
        """
        depth = 0
        while self.detector.is_self_nested(folder):
            if depth >= MAX_NESTING_DEPTH:
                message = f"{folder} is still nested inside itself after {depth} passes"
                if run is not None:
                    run.warn(message)
                else:
                    log.warning(message)
                break
            log.info("Found a double folder %s/%s, flattening", folder, folder)
            self.gateway.move_children(f"{folder}/{folder}", folder)
            depth += 1
        return depth

    def remove_scaffolding(self, before_entries=()):
        """Delete repository scaffolding files the install left in the AddOns root."""
        existing = set(before_entries)
        removed = []
        for name in self.detector.scaffolding_present():
            if name in existing:
                continue
            self.gateway.delete_file(name)
            removed.append(name)
        return removed

    def write_record(self, entry, fingerprint, run=None):
        main_folder = entry.main_folder
        if not self.gateway.is_dir(main_folder):
            raise FilesystemFailure(f'Main folder "{main_folder}" missing after extraction', main_folder)

        record = InstallRecord.for_entry(entry, backend_version=entry.version, fingerprint=fingerprint)
        write_record(self.gateway, main_folder, record)

        if self.gateway.exists(toc_path(main_folder)):
            local = read_version(self.gateway, main_folder)
            update_version(self.gateway, main_folder, max_version(local, entry.version))
        else:
            message = f'No .toc file found in main folder "{main_folder}"'
            if run is not None:
                run.warn(message)
            else:
                log.warning(message)
        return record
