"""
Install Record
The plain-text sidecar written next to each installed main folder
"""

import logging
from dataclasses import dataclass
from typing import Optional

from addon_models import Fingerprint

log = logging.getLogger(__name__)

SIDECAR_SUFFIX = '.addoninfo'


@dataclass(frozen=True)
class InstallRecord:
    addon_id: Optional[int] = None
    folders: tuple = ()
    filename: str = ''
    backend_version: str = ''
    fingerprint: Optional[Fingerprint] = None

    @classmethod
    def for_entry(cls, entry, backend_version='', fingerprint=None):
        """Build the record describing a catalog entry."""
        return cls(
            addon_id=entry.id,
            folders=entry.folder_names,
            filename=entry.filename,
            backend_version=backend_version,
            fingerprint=fingerprint,
        )


def sidecar_path(folder):
    return f"{folder}/{folder}{SIDECAR_SUFFIX}"


def parse_record(content):
    """Parse sidecar text.

    Unknown keys are ignored; a malformed field becomes empty instead of
    failing the whole read.

    Args:
        content: str - Sidecar file content

    Returns:
        InstallRecord - Parsed record
    """
    values = {}
    for line in (content or '').splitlines():
        key, sep, value = line.partition(':')
        if not sep:
            continue
        values[key.strip().lower()] = value.strip()

    addon_id = None
    raw_id = values.get('id', '')
    try:
        addon_id = int(raw_id) if raw_id else None
    except ValueError:
        log.warning("Ignoring malformed sidecar ID %r", raw_id)

    folders = tuple(f.strip() for f in values.get('folders', '').split(',') if f.strip())
    return InstallRecord(
        addon_id=addon_id,
        folders=folders,
        filename=values.get('filename', ''),
        backend_version=values.get('backendversion', ''),
        fingerprint=Fingerprint.parse(values.get('gitfingerprint', '')),
    )


def format_record(record):
    lines = [
        f"ID: {record.addon_id}",
        f"Folders: {','.join(record.folders)}",
    ]
    if record.backend_version:
        lines.append(f"BackendVersion: {record.backend_version}")
    lines.append(f"Filename: {record.filename}")
    if record.fingerprint:
        lines.append(f"GitFingerprint: {record.fingerprint.serialize()}")
    return '\n'.join(lines) + '\n'


def read_record(gateway, folder):
    """Read a folder's sidecar.

    Returns:
        InstallRecord or None if the sidecar does not exist
    """
    path = sidecar_path(folder)
    if not gateway.exists(path):
        return None
    return parse_record(gateway.read_file(path))


def write_record(gateway, folder, record):
    """Write a folder's sidecar, replacing any previous one."""
    gateway.overwrite(sidecar_path(folder), format_record(record))


def create_record(gateway, folder, record):
    """Create a folder's sidecar only if none exists yet.

    Returns:
        bool - True if a new sidecar was written
    """
    return gateway.write_file(sidecar_path(folder), format_record(record))
