from __future__ import annotations

import logging
import os
import sys
import zipfile
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from addon_models import CatalogEntry  # noqa: E402
from downloader import DownloadResult  # noqa: E402
from filesystem_gateway import FilesystemGateway  # noqa: E402


def make_entry(addon_id, title, folders, version="1.0.0", download_url=None, source_repo_url=None,
               variation_of=None, variant_ids=(), mains=None):
    """Catalog entry whose first folder is the main one unless mains is given."""
    mains = {folders[0]} if mains is None and folders else set(mains or ())
    if download_url is None:
        download_url = f"https://catalog.test/files/{title.lower().replace(' ', '-')}-{version}.zip"
    return CatalogEntry(
        id=addon_id,
        title=title,
        version=version,
        download_url=download_url,
        source_repo_url=source_repo_url,
        folder_list=tuple((name, name in mains) for name in folders),
        variation_of=variation_of,
        variant_ids=tuple(variant_ids),
    )


def write_addon(root, folder, version="1.0.0", title=None, sidecar=None):
    path = Path(root) / folder
    path.mkdir(parents=True, exist_ok=True)
    (path / f"{folder}.toc").write_text(
        f"## Interface: 30300\n## Title: {title or folder}\n## Version: {version}\n",
        encoding="utf-8",
    )
    if sidecar is not None:
        (path / f"{folder}.addoninfo").write_text(sidecar, encoding="utf-8")
    return path


def build_zip(path, files):
    with zipfile.ZipFile(path, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return Path(path)


class FakeDownloader:
    """Writes a prepared archive instead of downloading one."""

    def __init__(self, files=None, files_by_id=None, fingerprint=None):
        self.files = files or {}
        self.files_by_id = files_by_id or {}
        self.fingerprint = fingerprint
        self.calls = []

    def download(self, entry, dest_dir, on_progress=None):
        self.calls.append(entry.id)
        files = self.files_by_id.get(entry.id, self.files)
        path = build_zip(Path(dest_dir) / f"{entry.id}.zip", files)
        if on_progress:
            on_progress(50)
            on_progress(100)
        return DownloadResult(path=path, source="catalog", fingerprint=self.fingerprint)


@pytest.fixture
def addons_dir(tmp_path):
    path = tmp_path / "Game" / "Interface" / "AddOns"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def gateway(addons_dir):
    return FilesystemGateway(addons_dir)


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.fixture(scope="session")
def qapp():
    os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
    from PyQt6.QtCore import QCoreApplication

    app = QCoreApplication.instance() or QCoreApplication([])
    yield app
