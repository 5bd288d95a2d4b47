"""
Workers
QThread wrappers that run engine operations off the UI thread
"""

import logging

from PyQt6.QtCore import QThread, pyqtSignal

from addon_models import PipelineStep

log = logging.getLogger(__name__)


class ScanWorker(QThread):
    finished = pyqtSignal(object)  # ScanResult
    error = pyqtSignal(str)
    progress = pyqtSignal(str)

    def __init__(self, engine, reload_catalog=False):
        """Initialize scan worker.

        Args:
            engine: AddonEngine - Engine instance
            reload_catalog: bool - Fetch the catalog before scanning
        """
        super().__init__()
        self.engine = engine
        self.reload_catalog = reload_catalog

    def run(self):
        """Scan the AddOns directory.

        Emits: finished(result) or error(message)
        """
        try:
            if self.reload_catalog:
                self.progress.emit("Fetching addon catalog...")
                self.engine.load_catalog()
            self.progress.emit("Scanning installed addons...")
            self.finished.emit(self.engine.scan())
        except Exception as e:
            log.exception("Scan failed")
            self.error.emit(str(e))


class InstallWorker(QThread):
    """Thread worker for one addon installation.

    Signals:
        state_changed(state) - Every pipeline transition
        progress(percent) - Download progress
        confirmation_required(state) - Bundled addons would be removed
        finished(success, message) - Installation complete
    """
    state_changed = pyqtSignal(object)
    progress = pyqtSignal(int)
    confirmation_required = pyqtSignal(object)
    finished = pyqtSignal(bool, str)

    def __init__(self, engine, entry, reinstall=False, skip_bundle_check=False):
        """Initialize installation worker.

        Args:
            engine: AddonEngine - Engine instance
            entry: CatalogEntry - Entry to install
            reinstall: bool - Reinstall flow
            skip_bundle_check: bool - Install even if bundled addons go away
        """
        super().__init__()
        self.engine = engine
        self.entry = entry
        self.reinstall = reinstall
        self.skip_bundle_check = skip_bundle_check

    def _on_state(self, state):
        self.state_changed.emit(state)
        if state.step is PipelineStep.DOWNLOADING:
            self.progress.emit(state.progress)

    def run(self):
        """Execute the installer pipeline.

        Emits: state_changed for each step, then confirmation_required or finished
        """
        try:
            state = self.engine.install(
                self.entry,
                reinstall=self.reinstall,
                skip_bundle_check=self.skip_bundle_check,
                on_state=self._on_state,
            )
        except Exception as e:
            log.exception("Install worker failed")
            self.finished.emit(False, str(e))
            return

        if state.step is PipelineStep.NEEDS_CONFIRMATION:
            self.confirmation_required.emit(state)
        elif state.succeeded:
            self.finished.emit(True, state.message)
        else:
            self.finished.emit(False, state.error or state.message)


class DeleteWorker(QThread):
    finished = pyqtSignal(object)  # DeletionReport
    error = pyqtSignal(str)

    def __init__(self, engine, target, keep_ids=()):
        """Initialize delete worker.

        Args:
            engine: AddonEngine - Engine instance
            target: InstalledAddon - Addon to uninstall
            keep_ids: iterable - Bundled addon ids to keep
        """
        super().__init__()
        self.engine = engine
        self.target = target
        self.keep_ids = tuple(keep_ids)

    def run(self):
        try:
            self.finished.emit(self.engine.delete(self.target, self.keep_ids))
        except Exception as e:
            log.exception("Delete worker failed")
            self.error.emit(str(e))


class UpdateAllWorker(QThread):
    """Worker thread for update-all"""
    finished = pyqtSignal(object)  # UpdateSummary
    progress = pyqtSignal(str, int, int)
    error = pyqtSignal(str)

    def __init__(self, engine):
        super().__init__()
        self.engine = engine

    def _on_progress(self, title, current, total):
        self.progress.emit(f"Updating {title}...", current, total)

    def run(self):
        """Update every stale addon.

        Emits: progress(message, current, total), finished(summary)
        """
        try:
            self.finished.emit(self.engine.update_all(on_progress=self._on_progress))
        except Exception as e:
            log.exception("Update-all worker failed")
            self.error.emit(str(e))


class ConflictWorker(QThread):
    finished = pyqtSignal(object)  # InstalledAddon or None
    error = pyqtSignal(str)

    def __init__(self, engine, conflict_id, entry, reinstall=False):
        """Initialize conflict worker.

        Args:
            engine: AddonEngine - Engine instance
            conflict_id: str - Conflict id (folder name)
            entry: CatalogEntry - Candidate chosen by the user
            reinstall: bool - Reinstall after binding
        """
        super().__init__()
        self.engine = engine
        self.conflict_id = conflict_id
        self.entry = entry
        self.reinstall = reinstall

    def run(self):
        try:
            self.finished.emit(self.engine.resolve_conflict(self.conflict_id, self.entry, reinstall=self.reinstall))
        except Exception as e:
            log.exception("Conflict worker failed")
            self.error.emit(str(e))
