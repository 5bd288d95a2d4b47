"""
Catalog Client
Paged access to the remote addon catalog
"""

import logging
import time

import requests

from addon_errors import MalformedCatalogData, NetworkFailure
from addon_models import CatalogEntry

log = logging.getLogger(__name__)

CACHE_TTL = 5 * 60


class CatalogClient:
    def __init__(self, base_url, expansion, session=None, clock=time.monotonic):
        """Initialize catalog client.

        Args:
            base_url: str - Catalog site root, e.g. 'https://example.org'
            expansion: str - Game flavor the catalog is partitioned by
            session: Optional requests.Session - Shared HTTP session
            clock: callable - Monotonic clock used for cache expiry
        """
        self.base_url = base_url.rstrip('/')
        self.expansion = expansion
        self.session = session or requests.Session()
        self._clock = clock
        self._cache = {}

    @property
    def addons_url(self):
        return f"{self.base_url}/wp-json/wp/v2/{self.expansion}-addons"

    def _cached(self, key):
        hit = self._cache.get(key)
        if hit is None:
            return None
        stored_at, value = hit
        if self._clock() - stored_at >= CACHE_TTL:
            del self._cache[key]
            return None
        return value

    def _store(self, key, value):
        self._cache[key] = (self._clock(), value)
        return value

    def clear_cache(self):
        self._cache.clear()

    def _parse_records(self, records):
        entries = []
        for record in records:
            try:
                entries.append(CatalogEntry.from_api(record))
            except (KeyError, TypeError, ValueError) as e:
                error = MalformedCatalogData(record.get('id', '?') if isinstance(record, dict) else '?', str(e))
                log.warning("Skipping catalog record: %s", error)
        return entries

    def fetch_page(self, page=1, per_page=100, search=''):
        """Fetch one page of catalog entries.

        Args:
            page: int - 1-based page number
            per_page: int - Page size
            search: str - Optional search term

        Returns:
            tuple - (list of CatalogEntry, total page count)

        Raises:
            NetworkFailure - If the request fails
        """
        key = ('page', page, per_page, search)
        cached = self._cached(key)
        if cached is not None:
            return cached

        params = {'page': page, 'per_page': per_page, 'search': search}
        try:
            response = self.session.get(self.addons_url, params=params, timeout=10)
            response.raise_for_status()
            records = response.json()
        except (requests.RequestException, ValueError) as e:
            raise NetworkFailure(f"Catalog page {page} could not be fetched: {e}") from e

        try:
            total_pages = int(response.headers.get('X-WP-TotalPages', 1))
        except ValueError:
            total_pages = 1
        return self._store(key, (self._parse_records(records), max(total_pages, 1)))

    def fetch_all(self, per_page=100):
        """Fetch every page of the catalog."""
        entries = []
        page = 1
        total_pages = 1
        while page <= total_pages:
            batch, total_pages = self.fetch_page(page, per_page)
            entries.extend(batch)
            page += 1
        log.info("Fetched %d catalog entries", len(entries))
        return entries

    def fetch_entry(self, addon_id):
        """Fetch a single catalog entry by id.

        Returns:
            CatalogEntry or None if the catalog has no such entry
        """
        key = ('entry', addon_id)
        cached = self._cached(key)
        if cached is not None:
            return cached
        try:
            response = self.session.get(f"{self.addons_url}/{addon_id}", timeout=10)
        except requests.RequestException as e:
            raise NetworkFailure(f"Catalog entry {addon_id} could not be fetched: {e}") from e
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise NetworkFailure(f"Catalog entry {addon_id} lookup failed ({response.status_code})")
        entries = self._parse_records([response.json()])
        if not entries:
            return None
        return self._store(key, entries[0])
