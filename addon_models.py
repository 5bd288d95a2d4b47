"""
Addon Models
Value objects shared by the scanner, resolver, installer and orchestrators
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from versioning import DEFAULT_VERSION, filename_from_url

_PHP_ARRAY_ITEM = re.compile(r'i:\d+;i:(\d+);')


def parse_serialized_php_array(serialized):
    """Extract the integer values of a PHP-serialized integer array.

    Args:
        serialized: str - e.g. 'a:2:{i:0;i:12;i:1;i:15;}'

    Returns:
        list - Integer values in order of appearance
    """
    if not serialized:
        return []
    return [int(value) for value in _PHP_ARRAY_ITEM.findall(serialized)]


def _parse_id(value):
    if value in (None, '', '0', 0, False):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_id_list(value):
    if not value:
        return ()
    if isinstance(value, str):
        return tuple(parse_serialized_php_array(value))
    ids = []
    for item in value:
        parsed = _parse_id(item)
        if parsed is not None:
            ids.append(parsed)
    return tuple(ids)


def _is_main_flag(flag):
    if isinstance(flag, str):
        return flag.strip() in ('1', 'true', 'True')
    return bool(flag)


def _text(value):
    if isinstance(value, dict):
        value = value.get('rendered', '')
    return html.unescape(value or '').strip()


@dataclass(frozen=True)
class CatalogEntry:
    """One addon record as published by the remote catalog."""

    id: int
    title: str
    version: str = DEFAULT_VERSION
    download_url: str = ''
    source_repo_url: Optional[str] = None
    folder_list: tuple = ()
    variation_of: Optional[int] = None
    variant_ids: tuple = ()
    toc_title: str = ''

    @classmethod
    def from_api(cls, record):
        """Build an entry from a catalog JSON record.

        Args:
            record: dict - Raw record with a 'custom_fields' mapping

        Returns:
            CatalogEntry - Parsed entry (possibly not well formed)
        """
        fields = record.get('custom_fields') or {}
        folders = []
        for item in fields.get('folder_list') or []:
            if not item:
                continue
            name = str(item[0]).strip()
            is_main = _is_main_flag(item[1]) if len(item) > 1 else False
            if name:
                folders.append((name, is_main))
        website = (fields.get('website_link') or '').strip()
        return cls(
            id=int(record['id']),
            title=_text(record.get('title')),
            version=(fields.get('version') or DEFAULT_VERSION).strip(),
            download_url=(fields.get('file') or '').strip(),
            source_repo_url=website or None,
            folder_list=tuple(folders),
            variation_of=_parse_id(fields.get('variation')),
            variant_ids=_parse_id_list(fields.get('has_variations')),
            toc_title=_text(fields.get('title_toc')),
        )

    @property
    def folder_names(self):
        return tuple(name for name, _ in self.folder_list)

    @property
    def main_folders(self):
        return tuple(name for name, is_main in self.folder_list if is_main)

    @property
    def main_folder(self):
        mains = self.main_folders
        return mains[0] if mains else None

    @property
    def is_well_formed(self):
        return bool(self.folder_list) and len(self.main_folders) == 1

    @property
    def filename(self):
        return filename_from_url(self.download_url)

    @property
    def display_title(self):
        return self.toc_title or self.title


@dataclass(frozen=True)
class Fingerprint:
    """Upstream release tag or short commit id."""

    kind: str
    value: str
    date: Optional[datetime] = None

    def serialize(self):
        return f"{self.kind}:{self.value}"

    @classmethod
    def parse(cls, text):
        """Parse 'release:v1.2' / 'commit:abc1234' or a bare value."""
        text = (text or '').strip()
        if not text:
            return None
        kind, sep, value = text.partition(':')
        if sep and kind in ('release', 'commit') and value.strip():
            return cls(kind=kind, value=value.strip())
        return cls(kind='unknown', value=text)


@dataclass(frozen=True)
class InstalledAddon:
    """An addon found on disk, keyed by its main folder."""

    entry: CatalogEntry
    folder: str
    local_version: str = DEFAULT_VERSION
    installed_filename: str = ''
    backend_version: str = ''
    source_fingerprint: Optional[Fingerprint] = None
    corrupted: bool = False
    missing_folders: frozenset = frozenset()
    needs_update: bool = False

    @property
    def id(self):
        return self.entry.id


@dataclass(frozen=True)
class Conflict:
    """A folder claimed as main by several catalog entries."""

    folder: str
    candidates: tuple

    @property
    def id(self):
        return self.folder


@dataclass
class ScanResult:
    installed: dict = field(default_factory=dict)
    conflicts: list = field(default_factory=list)
    errors: list = field(default_factory=list)


class PipelineStep(Enum):
    IDLE = 'idle'
    RESOLVING_TARGET = 'resolving_target'
    CHECKING_BUNDLES = 'checking_bundles'
    DELETING = 'deleting'
    DOWNLOADING = 'downloading'
    EXTRACTING = 'extracting'
    NORMALIZING = 'normalizing'
    WRITING_RECORD = 'writing_record'
    DONE = 'done'
    FAILED = 'failed'
    NEEDS_CONFIRMATION = 'needs_confirmation'


TERMINAL_STEPS = frozenset({
    PipelineStep.DONE,
    PipelineStep.FAILED,
    PipelineStep.NEEDS_CONFIRMATION,
})


@dataclass(frozen=True)
class PipelineState:
    """Immutable snapshot of one installation request.

    Each step of the installer returns a new state; nothing is mutated in
    place, so every snapshot handed to a callback stays valid.
    """

    addon_id: int
    step: PipelineStep = PipelineStep.IDLE
    progress: int = 0
    message: str = ''
    error: Optional[str] = None
    bundled: tuple = ()
    warnings: tuple = ()
    fingerprint: Optional[Fingerprint] = None

    def advance(self, step, message=''):
        if self.is_terminal:
            raise ValueError(f"Cannot leave terminal step {self.step.value}")
        return replace(self, step=step, message=message, progress=0)

    def with_progress(self, percent):
        return replace(self, progress=max(0, min(100, int(percent))))

    def with_warning(self, warning):
        return replace(self, warnings=self.warnings + (warning,))

    def fail(self, error):
        return replace(self, step=PipelineStep.FAILED, error=str(error), message=str(error))

    def needs_confirmation(self, bundled):
        return replace(
            self,
            step=PipelineStep.NEEDS_CONFIRMATION,
            bundled=tuple(bundled),
            message='Bundled addons would be removed',
        )

    @property
    def is_terminal(self):
        return self.step in TERMINAL_STEPS

    @property
    def succeeded(self):
        return self.step is PipelineStep.DONE


@dataclass
class DeletionReport:
    deleted: list = field(default_factory=list)
    failed: dict = field(default_factory=dict)
    protected: list = field(default_factory=list)

    @property
    def success(self):
        return not self.failed


@dataclass
class UpdateSummary:
    updated: list = field(default_factory=list)
    failed: dict = field(default_factory=dict)
    skipped: list = field(default_factory=list)

    def message(self):
        text = f"Updated {len(self.updated)} addon(s)"
        if self.failed:
            text += f", {len(self.failed)} failed"
        if self.skipped:
            text += f", {len(self.skipped)} skipped"
        return text
