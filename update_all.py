"""
Update All
Reinstalls every installed addon flagged as needing an update, one at a time
"""

import logging
from collections import deque

from addon_models import UpdateSummary

log = logging.getLogger(__name__)


class UpdateAllOrchestrator:
    def __init__(self, install, rescan=None, notify=None):
        """Initialize update-all orchestrator.

        Args:
            install: callable(entry) -> PipelineState - Runs one reinstall in batch mode
            rescan: Optional callable() - Runs once after the whole batch
            notify: Optional callable(message, level) - Receives the summary
        """
        self.install = install
        self.rescan = rescan
        self.notify = notify
        self.queue = deque()

    def pending(self, installed):
        """Installed addons flagged needs_update, in folder order, once per id."""
        stale = {}
        for folder in sorted(installed):
            addon = installed[folder]
            if addon.needs_update:
                stale.setdefault(addon.id, addon)
        return list(stale.values())

    def run(self, installed, on_progress=None):
        """Update every stale addon sequentially.

        Args:
            installed: dict - folder -> annotated InstalledAddon
            on_progress: Optional callable(title, current, total)

        Returns:
            UpdateSummary - Updated, failed and skipped addons
        """
        summary = UpdateSummary()
        stale = self.pending(installed)
        self.queue.extend(addon.id for addon in stale)
        total = len(stale)

        for current, addon in enumerate(stale, start=1):
            entry = addon.entry
            if on_progress:
                on_progress(entry.title, current, total)

            if not entry.download_url:
                log.warning('Skipping "%s": no download URL', entry.title)
                summary.skipped.append(entry.title)
            else:
                log.info("Updating %s (%d/%d)", entry.title, current, total)
                state = self.install(entry)
                if state.succeeded:
                    summary.updated.append(entry.title)
                else:
                    summary.failed[entry.title] = state.error or state.message
            self.queue.popleft()

        message = summary.message()
        log.info(message)
        if self.notify:
            self.notify(message, 'warning' if summary.failed else 'info')
        if self.rescan:
            self.rescan()
        return summary
