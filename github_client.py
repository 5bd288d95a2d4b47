"""
GitHub Client
Release/commit lookups used for source fingerprints and repository archive downloads
"""

import logging
import os
import re
import time
from datetime import datetime
from typing import Protocol

import requests

from addon_errors import NetworkFailure
from addon_models import Fingerprint

log = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
SHORT_SHA_LENGTH = 7

_REPO_URL = re.compile(r'^https?://(?:www\.)?github\.com/([^/\s?#]+)/([^/\s?#]+)', re.IGNORECASE)


def parse_repo_url(url):
    """Extract (owner, repo) from a github.com URL.

    Args:
        url: str - Repository or website URL

    Returns:
        tuple - (owner, repo), or None if the URL is not a GitHub repository
    """
    if not url:
        return None
    match = _REPO_URL.match(url.strip())
    if not match:
        return None
    owner, repo = match.group(1), match.group(2)
    if repo.endswith('.git'):
        repo = repo[:-4]
    return owner, repo


def _parse_date(text):
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00'))
    except ValueError:
        return None


class FingerprintSource(Protocol):
    def fetch_latest_release(self, owner, repo): ...

    def fetch_latest_commit(self, owner, repo): ...


def newest_fingerprint(source, owner, repo):
    """Pick the chronologically newer of the latest release and latest commit.

    Args:
        source: FingerprintSource - Anything exposing the two fetch calls
        owner: str - Repository owner
        repo: str - Repository name

    Returns:
        Fingerprint or None if neither lookup produced a value
    """
    release = source.fetch_latest_release(owner, repo)
    commit = source.fetch_latest_commit(owner, repo)
    if release is None or commit is None:
        return release or commit
    if release.date is None:
        return commit
    if commit.date is None:
        return release
    return commit if commit.date > release.date else release


class GitHubClient:
    def __init__(self, token=None, session=None, max_retries=3, retry_delay=2, sleep=time.sleep):
        """Initialize the client.

        Args:
            token: Optional str - API token; falls back to GITHUB_TOKEN
            session: Optional requests.Session - Shared HTTP session
            max_retries: int - Attempts when rate limited
            retry_delay: int - Base delay in seconds, doubled per attempt
            sleep: callable - Sleep function (replaced in tests)
        """
        self.token = token or os.environ.get('GITHUB_TOKEN')
        self.session = session or requests.Session()
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep

    def headers(self, accept=None):
        headers = {'Accept': accept or 'application/vnd.github+json'}
        if self.token:
            headers['Authorization'] = f'token {self.token}'
        return headers

    def _is_rate_limited(self, response):
        if response.status_code not in (403, 429):
            return False
        try:
            message = response.json().get('message', '')
        except ValueError:
            return response.status_code == 429
        return 'rate limit' in message.lower()

    def _get(self, url):
        """GET an API URL, backing off while rate limited.

        Raises:
            NetworkFailure - On transport errors or exhausted retries
        """
        for attempt in range(self.max_retries):
            try:
                response = self.session.get(url, headers=self.headers(), timeout=10)
            except requests.RequestException as e:
                raise NetworkFailure(f"GitHub request failed: {e}") from e

            if not self._is_rate_limited(response):
                return response
            if attempt < self.max_retries - 1:
                wait_time = self.retry_delay * (2 ** attempt)
                log.warning("GitHub API rate limited, retrying in %ss", wait_time)
                self._sleep(wait_time)
        raise NetworkFailure("GitHub API rate limit exceeded")

    def default_branch(self, owner, repo):
        response = self._get(f"{GITHUB_API}/repos/{owner}/{repo}")
        if response.status_code != 200:
            raise NetworkFailure(f"Repository {owner}/{repo} lookup failed ({response.status_code})")
        return response.json().get('default_branch') or 'main'

    def fetch_latest_release(self, owner, repo):
        """Latest published release.

        Returns:
            Fingerprint or None if the repository has no release
        """
        response = self._get(f"{GITHUB_API}/repos/{owner}/{repo}/releases/latest")
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise NetworkFailure(f"Release lookup for {owner}/{repo} failed ({response.status_code})")
        data = response.json()
        tag = data.get('tag_name')
        if not tag:
            return None
        return Fingerprint('release', tag, _parse_date(data.get('published_at')))

    def fetch_latest_commit(self, owner, repo, branch=None):
        """Latest commit of the default (or given) branch, as a short id."""
        branch = branch or self.default_branch(owner, repo)
        response = self._get(f"{GITHUB_API}/repos/{owner}/{repo}/commits/{branch}")
        if response.status_code != 200:
            raise NetworkFailure(f"Commit lookup for {owner}/{repo}@{branch} failed ({response.status_code})")
        data = response.json()
        sha = data.get('sha')
        if not sha:
            return None
        committer = (data.get('commit') or {}).get('committer') or {}
        return Fingerprint('commit', sha[:SHORT_SHA_LENGTH], _parse_date(committer.get('date')))

    def fetch_fingerprint(self, owner, repo):
        return newest_fingerprint(self, owner, repo)

    def archive_url(self, owner, repo, branch):
        return f"{GITHUB_API}/repos/{owner}/{repo}/zipball/{branch}"
