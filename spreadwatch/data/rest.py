"""Blocking JSON-over-HTTP helper used by the venue APIs."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from spreadwatch.errors import DecodeError, VenueConnectionError


class RestClient:
    """Thin wrapper over :class:`requests.Session` with typed failures.

    Transport failures and non-2xx responses raise
    :class:`VenueConnectionError`; bodies that are not JSON raise
    :class:`DecodeError`. Callers decide whether an error is fatal (startup
    metadata) or skippable (a single poll tick).
    """

    def __init__(
        self,
        venue: str,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.venue = venue
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

    def get(self, path: str = "", params: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("GET", path, params=params)

    def post(self, path: str = "", json: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("POST", path, json=json)

    def close(self) -> None:
        self.session.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            self.logger.debug("%s %s failed: %s", method, url, exc)
            raise VenueConnectionError(self.venue, f"{method} {url} failed: {exc}") from exc
        try:
            return response.json()
        except ValueError as exc:
            raise DecodeError(self.venue, f"{method} {url} returned a non-JSON body") from exc

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json", "Accept": "application/json"}


def safe_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


__all__ = ["RestClient", "safe_float"]
