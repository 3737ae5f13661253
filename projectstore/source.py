import logging
import time
from urllib.parse import quote

import requests

from .exceptions import CatalogLoadError

GVIZ_URL = 'https://docs.google.com/spreadsheets/d/{sheet_id}/gviz/tq?tqx=out:json&sheet={sheet_name}'


def build_sheet_url(sheet_id, sheet_name):
    """URL of the gviz JSON export of one sheet in a Google Spreadsheet."""
    return GVIZ_URL.format(sheet_id=sheet_id, sheet_name=quote(sheet_name))


class CatalogSource:
    """Fetches the raw catalog payload.

    Only transport concerns live here (timeout, retries, HTTP status).
    The body is returned untouched; unwrapping and parsing belong to the
    normalizer.
    """

    def __init__(self, url, timeout=10, retries=2, http=None, logger=None):
        self.url = url
        self.timeout = timeout
        self.retries = retries
        self.http = http or requests
        self.logger = logger or logging.getLogger(__name__)

    def fetch(self):
        attempts = self.retries + 1
        last_error = None
        for attempt in range(1, attempts + 1):
            try:
                self.logger.info(f"Fetching catalog from {self.url} (attempt {attempt}/{attempts})")
                response = self.http.get(
                    self.url,
                    params={'t': int(time.time() * 1000)},
                    timeout=self.timeout,
                )
                response.raise_for_status()
                return response.text
            except requests.exceptions.RequestException as e:
                last_error = e
                self.logger.warning(f"Catalog fetch attempt {attempt} failed: {e}")
        raise CatalogLoadError(f'Could not fetch catalog from {self.url}: {last_error}')
