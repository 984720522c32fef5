"""
Update Notice
-------------
Background check for a newer release of this package.

The check runs once on a daemon thread and leaves at most one notice in
a slot owned by the UpdateNotifier instance. The first user-facing
output takes it with take_notice(), which also clears it.
"""

from importlib import metadata
from threading import Lock, Thread
from typing import Optional
import logging

import httpx

DEFAULT_INDEX_URL = "https://pypi.org/pypi"
DISTRIBUTION_NAME = "d2l-client"


def installed_version(distribution: str = DISTRIBUTION_NAME) -> str:
    """Installed version of a distribution, or 0.0.0 when not installed."""
    try:
        return metadata.version(distribution)
    except metadata.PackageNotFoundError:
        return "0.0.0"


class UpdateNotifier:
    """Producer/consumer slot for a one-time update notice."""

    def __init__(
        self,
        distribution: str = DISTRIBUTION_NAME,
        current_version: Optional[str] = None,
        index_url: str = DEFAULT_INDEX_URL,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self._distribution = distribution
        self._current = current_version or installed_version(distribution)
        self._index_url = index_url.rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport
        self._notice: Optional[str] = None
        self._lock = Lock()
        self._thread: Optional[Thread] = None
        self._logger = logging.getLogger("d2l.infra.update")

    def start(self) -> None:
        """Start the background check (at most once per instance)."""
        if self._thread is not None:
            return
        self._thread = Thread(target=self.check, name="d2l-update-check", daemon=True)
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the background check to finish."""
        if self._thread is not None:
            self._thread.join(timeout)

    def check(self) -> Optional[str]:
        """Query the package index and record a notice if a newer release exists."""
        latest = self._fetch_latest()
        if latest is None or latest == self._current:
            return None

        notice = (
            f"Update available: v{self._current} -> v{latest}. "
            f"Run `pip install -U {self._distribution}` to update."
        )
        with self._lock:
            self._notice = notice
        self._logger.info(notice)
        return notice

    def _fetch_latest(self) -> Optional[str]:
        url = f"{self._index_url}/{self._distribution}/json"
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.get(url)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            self._logger.debug(f"Update check failed: {e}")
            return None

        info = data.get("info") if isinstance(data, dict) else None
        latest = info.get("version") if isinstance(info, dict) else None
        if not isinstance(latest, str) or not latest:
            self._logger.debug("Update check returned no version")
            return None
        return latest.strip()

    def take_notice(self) -> Optional[str]:
        """Return the pending notice and clear it."""
        with self._lock:
            notice, self._notice = self._notice, None
        return notice
