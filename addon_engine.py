"""
Addon Engine
Facade the user interface talks to: scan, conflicts, install, delete and
update-all against one AddOns directory
"""

import base64
import binascii
import json
import logging
import time

from addon_errors import AddonManagerError
from addon_models import PipelineStep, ScanResult, UpdateSummary
from catalog_client import CatalogClient
from deletion import DeletionOrchestrator
from dependency_graph import same_family
from directory_scanner import DirectoryScanner
from downloader import Downloader
from filesystem_gateway import FilesystemGateway
from freshness import FreshnessResolver
from github_client import GitHubClient
from install_record import InstallRecord, write_record
from installer import InstallerPipeline
from manager_settings import addons_dir_for
from update_all import UpdateAllOrchestrator

log = logging.getLogger(__name__)


class AddonEngine:
    def __init__(self, addons_dir, catalog=(), catalog_client=None, github=None,
                 downloader=None, notify=None, sleep=time.sleep):
        """Initialize the engine for one AddOns directory.

        Args:
            addons_dir: str/Path - The game's Interface/AddOns directory
            catalog: iterable - Initial CatalogEntry list
            catalog_client: Optional CatalogClient - Used by load_catalog and
                for entries missing from the loaded catalog
            github: Optional GitHubClient - Source downloads and fingerprints
            downloader: Optional Downloader - Defaults to one sharing github
            notify: Optional callable(message, level) - User-facing messages
            sleep: callable - Sleep used between delete retries
        """
        self.gateway = FilesystemGateway(addons_dir)
        self.catalog_client = catalog_client
        self.github = github
        self.downloader = downloader or Downloader(github=github)
        self.notify = notify

        self.scanner = DirectoryScanner(self.gateway)
        self.resolver = FreshnessResolver(github)
        self.installer = InstallerPipeline(
            self.gateway,
            self.downloader,
            fetch_entry=catalog_client.fetch_entry if catalog_client else None,
            sleep=sleep,
        )
        self.deleter = DeletionOrchestrator(self.gateway, sleep=sleep)

        self.catalog = list(catalog)
        self.installed = {}
        self.conflicts = []
        self.errors = []

    @classmethod
    def from_settings(cls, settings, notify=None):
        """Build an engine from a ManagerSettings store.

        Raises:
            AddonManagerError - If the game path or catalog URL is not configured
        """
        game_path = settings.get_setting('game_path')
        if not game_path:
            raise AddonManagerError("No game path configured")
        if not settings.get_setting('catalog_url'):
            raise AddonManagerError("No catalog URL configured")
        github = GitHubClient(token=settings.github_token())
        catalog_client = CatalogClient(
            settings.get_setting('catalog_url'),
            settings.get_setting('expansion'),
        )
        return cls(addons_dir_for(game_path), catalog_client=catalog_client, github=github, notify=notify)

    def _notify(self, message, level='info'):
        log.log(logging.WARNING if level in ('warning', 'error') else logging.INFO, message)
        if self.notify:
            self.notify(message, level)

    @property
    def catalog_by_id(self):
        return {entry.id: entry for entry in self.catalog}

    def load_catalog(self):
        """Replace the catalog with a full fetch from the catalog client."""
        if self.catalog_client is None:
            raise AddonManagerError("No catalog client configured")
        self.catalog = self.catalog_client.fetch_all()
        return self.catalog

    def find_entry(self, addon_id):
        entry = self.catalog_by_id.get(addon_id)
        if entry is None and self.catalog_client is not None:
            entry = self.catalog_client.fetch_entry(addon_id)
        return entry

    def find_installed(self, addon_id):
        for addon in self.installed.values():
            if addon.id == addon_id:
                return addon
        return None

    def scan(self):
        """Scan the AddOns directory and annotate freshness.

        Returns:
            ScanResult - Annotated installed map, conflicts and skipped errors
        """
        result = self.scanner.scan(self.catalog)
        self.installed = self.resolver.annotate(result.installed)
        self.conflicts = list(result.conflicts)
        self.errors = list(result.errors)
        return ScanResult(installed=dict(self.installed), conflicts=list(self.conflicts), errors=list(self.errors))

    def resolve_conflict(self, conflict_id, chosen_entry, reinstall=False):
        """Bind a conflicting folder to the entry the user picked.

        Args:
            conflict_id: str - Conflict id (the folder name)
            chosen_entry: CatalogEntry - One of the conflict's candidates
            reinstall: bool - Reinstall the chosen entry after binding

        Returns:
            InstalledAddon - The folder's addon after the rescan, or None

        Raises:
            AddonManagerError - Unknown conflict or entry not among its candidates
        """
        conflict = next((c for c in self.conflicts if c.id == conflict_id), None)
        if conflict is None:
            raise AddonManagerError(f"No pending conflict for {conflict_id}")
        if chosen_entry.id not in {candidate.id for candidate in conflict.candidates}:
            raise AddonManagerError(f'"{chosen_entry.title}" is not a candidate for {conflict.folder}')

        write_record(self.gateway, conflict.folder, InstallRecord.for_entry(chosen_entry))
        log.info("Bound %s to catalog entry %s", conflict.folder, chosen_entry.id)

        self.scan()
        if reinstall:
            self.install(chosen_entry, reinstall=True)
        return self.installed.get(conflict.folder)

    def install(self, entry, reinstall=False, skip_bundle_check=False, on_state=None, batch=False):
        """Run the installer pipeline for one entry.

        Outside of a batch, a finished install rescans and notifies.

        Returns:
            PipelineState - Terminal state of the run
        """
        state = self.installer.run(
            entry,
            self.installed,
            self.catalog_by_id,
            reinstall=reinstall,
            skip_bundle_check=skip_bundle_check,
            on_state=on_state,
        )
        if batch or state.step is PipelineStep.NEEDS_CONFIRMATION:
            return state

        self.scan()
        if state.succeeded:
            verb = 'reinstalled' if reinstall else 'installed'
            self._notify(f'"{entry.title}" {verb} successfully')
            for warning in state.warnings:
                self._notify(warning, 'warning')
        else:
            self._notify(state.error, 'error')
        return state

    def delete(self, target, keep_ids=()):
        """Uninstall an addon, keeping the descendants named in keep_ids.

        Returns:
            DeletionReport - Deleted, failed and protected folders
        """
        report = self.deleter.delete(target, self.installed, keep_ids)
        self.scan()
        if report.success:
            self._notify(f'"{target.entry.title}" uninstalled')
        else:
            self._notify(f'"{target.entry.title}" partially uninstalled, '
                         f'{len(report.failed)} folder(s) could not be deleted', 'warning')
        return report

    def update_all(self, on_progress=None):
        """Reinstall every addon flagged needs_update.

        Returns:
            UpdateSummary - Updated, failed and skipped addons
        """
        orchestrator = UpdateAllOrchestrator(
            install=lambda entry: self.install(entry, reinstall=True, batch=True),
            rescan=self.scan,
            notify=self._notify,
        )
        return orchestrator.run(self.installed, on_progress)

    def switch_variation(self, current, variation, on_state=None):
        """Replace an installed addon by another member of its variation family.

        Raises:
            AddonManagerError - If the variation belongs to another family
        """
        catalog_by_id = self.catalog_by_id
        catalog_by_id.setdefault(variation.id, variation)
        if not same_family(current, variation, catalog_by_id):
            raise AddonManagerError(f'"{variation.title}" is not a variation of "{current.entry.title}"')

        state = self.install(variation, skip_bundle_check=True, on_state=on_state, batch=True)
        if state.succeeded:
            self.scan()
            self._notify(f"Switched to variation: {variation.title}")
        else:
            self._notify(state.error, 'error')
        return state

    def export_code(self, installed=None):
        """Share code for the installed addons: base64 of a JSON list of ids."""
        installed = self.installed if installed is None else installed
        ids = sorted({addon.id for addon in installed.values()})
        return base64.b64encode(json.dumps(ids).encode('utf-8')).decode('ascii')

    @staticmethod
    def decode_code(code):
        """Decode a share code into catalog ids.

        Raises:
            AddonManagerError - If the code is not a base64 JSON list of ids
        """
        try:
            ids = json.loads(base64.b64decode((code or '').strip(), validate=True).decode('utf-8'))
        except (binascii.Error, UnicodeDecodeError, ValueError) as e:
            raise AddonManagerError(f"Invalid import code: {e}") from e
        if not isinstance(ids, list):
            raise AddonManagerError("Invalid import code: expected a list of addon ids")
        try:
            return [int(addon_id) for addon_id in ids]
        except (TypeError, ValueError) as e:
            raise AddonManagerError(f"Invalid import code: {e}") from e

    def import_code(self, code, on_progress=None):
        """Install every addon listed in a share code as one batch.

        Returns:
            UpdateSummary - Installed, failed and skipped (unknown id) addons
        """
        ids = self.decode_code(code)
        summary = UpdateSummary()
        total = len(ids)
        for current, addon_id in enumerate(ids, start=1):
            entry = self.find_entry(addon_id)
            if entry is None:
                log.warning("Import skipped unknown addon id %s", addon_id)
                summary.skipped.append(str(addon_id))
                continue
            if on_progress:
                on_progress(entry.title, current, total)
            state = self.install(entry, skip_bundle_check=True, batch=True)
            if state.succeeded:
                summary.updated.append(entry.title)
            else:
                summary.failed[entry.title] = state.error
        self.scan()
        self._notify(summary.message().replace('Updated', 'Imported', 1),
                     'warning' if summary.failed else 'info')
        return summary
