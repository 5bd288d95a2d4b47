"""
Downloader
Fetches an addon archive from its source repository or the catalog's hosted file
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional

import requests

from addon_errors import FilesystemFailure, NetworkFailure, PathViolation
from addon_models import Fingerprint
from github_client import parse_repo_url

log = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
RAMP_STEP = 5
RAMP_CAP = 95


class ProgressRamp:
    """Synthetic progress for downloads without a known size.

    Advances a fixed step per chunk and never reaches 100 on its own.
    """

    def __init__(self, step=RAMP_STEP, cap=RAMP_CAP):
        self.step = step
        self.cap = cap
        self.value = 0

    def tick(self):
        self.value = min(self.value + self.step, self.cap)
        return self.value


@dataclass(frozen=True)
class DownloadResult:
    path: Path
    source: str
    fingerprint: Optional[Fingerprint] = None


def _archive_name(entry):
    slug = re.sub(r'\W+', '_', entry.display_title.strip().lower()).strip('_')
    return f"{slug or entry.id}.zip"


def _catalog_target(entry, dest_dir):
    """Where the catalog file is saved inside dest_dir.

    Raises:
        PathViolation - If the name would land outside dest_dir
    """
    name = PurePosixPath(entry.filename.replace('\\', '/')).name
    if name in ('', '.', '..'):
        name = _archive_name(entry)
    target = dest_dir / name
    if not target.resolve().is_relative_to(dest_dir.resolve()):
        raise PathViolation(target, dest_dir)
    return target


class Downloader:
    def __init__(self, session=None, github=None):
        """Initialize downloader.

        Args:
            session: Optional requests.Session - Shared HTTP session
            github: Optional GitHubClient - Enables repository archive downloads
        """
        self.session = session or requests.Session()
        self.github = github

    def download(self, entry, dest_dir, on_progress=None):
        """Download an entry's archive into dest_dir.

        A GitHub website link is tried first (default branch zipball); any
        failure there falls back to the catalog's hosted file.

        Args:
            entry: CatalogEntry - Entry to download
            dest_dir: Path - Temporary directory receiving the archive
            on_progress: Optional callable(int) - Percentage callback

        Returns:
            DownloadResult - Archive path, source used and fetched fingerprint

        Raises:
            NetworkFailure - If no source could be downloaded
        """
        dest_dir = Path(dest_dir)
        repo = parse_repo_url(entry.source_repo_url) if self.github else None
        if repo:
            try:
                return self._download_repository(entry, repo, dest_dir, on_progress)
            except (NetworkFailure, ValueError) as e:
                log.warning("Repository download for %s failed, using catalog file: %s", entry.id, e)

        if not entry.download_url:
            raise NetworkFailure(f'No download URL for "{entry.title}"')
        target = _catalog_target(entry, dest_dir)
        self._fetch(entry.download_url, target, on_progress)
        return DownloadResult(path=target, source='catalog')

    def _download_repository(self, entry, repo, dest_dir, on_progress):
        owner, name = repo
        branch = self.github.default_branch(owner, name)
        url = self.github.archive_url(owner, name, branch)
        headers = self.github.headers()
        total = self._content_length(url, headers)
        target = dest_dir / _archive_name(entry)
        self._fetch(url, target, on_progress, headers=headers, total=total)

        fingerprint = None
        try:
            fingerprint = self.github.fetch_fingerprint(owner, name)
        except NetworkFailure as e:
            log.warning("Could not fetch fingerprint for %s/%s: %s", owner, name, e)
        return DownloadResult(path=target, source='github', fingerprint=fingerprint)

    def _content_length(self, url, headers):
        try:
            response = self.session.head(url, headers=headers, allow_redirects=True, timeout=10)
        except requests.RequestException as e:
            log.debug("HEAD %s failed, size unknown: %s", url, e)
            return None
        return _parse_length(response.headers.get('Content-Length'))

    def _fetch(self, url, target, on_progress, headers=None, total=None):
        try:
            response = self.session.get(url, headers=headers, stream=True, timeout=(10, 60))
            response.raise_for_status()
        except requests.RequestException as e:
            raise NetworkFailure(f"Download of {url} failed: {e}") from e

        total = total or _parse_length(response.headers.get('Content-Length'))
        ramp = ProgressRamp()
        received = 0
        try:
            with open(target, 'wb') as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if not chunk:
                        continue
                    f.write(chunk)
                    received += len(chunk)
                    if on_progress is None:
                        continue
                    if total:
                        on_progress(min(received * 100 // total, 99))
                    else:
                        on_progress(ramp.tick())
        except requests.RequestException as e:
            raise NetworkFailure(f"Download of {url} interrupted: {e}") from e
        except OSError as e:
            raise FilesystemFailure(f"Could not save {target}: {e}", target) from e
        finally:
            response.close()

        if on_progress is not None:
            on_progress(100)
        return target


def _parse_length(value):
    try:
        length = int(value)
    except (TypeError, ValueError):
        return None
    return length if length > 0 else None
