"""REST client for listing servers from the Scaleway compute API."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urljoin

import requests

from .. import __version__
from ..config import ScalewayConfig
from ..exceptions import ConfigError, InventoryError
from .models import InstanceRecord

logger = logging.getLogger(__name__)

PER_PAGE = 100


class ScalewayClient:
    """Thin wrapper around the Scaleway compute API servers listing."""

    def __init__(self, config: ScalewayConfig):
        self._base = config.effective_api_url
        self._organization = config.organization
        self._all_states = config.all_states
        self._session = requests.Session()
        self._session.headers["X-Auth-Token"] = config.token
        self._session.headers["User-Agent"] = f"prometheus-scaleway-sd/{__version__}"
        self._timeout = config.timeout

    def check_credentials(self) -> None:
        """Make one authenticated request so a bad token fails at startup.

        Raises ConfigError when the token is rejected, InventoryError for any
        other failure.
        """
        params: dict[str, Any] = {"per_page": 1}
        if self._organization:
            params["organization"] = self._organization
        try:
            self._get(f"{self._base}/servers", params=params)
        except InventoryError as exc:
            if exc.status_code in (401, 403):
                raise ConfigError(f"Scaleway rejected the credentials (HTTP {exc.status_code})") from exc
            raise
        logger.info("Scaleway credentials accepted")

    def list_instances(self) -> list[InstanceRecord]:
        """Return all servers of the organization, following pagination."""
        records: list[InstanceRecord] = []
        url: str | None = f"{self._base}/servers"
        params: dict[str, Any] | None = {"per_page": PER_PAGE}
        if self._organization:
            params["organization"] = self._organization

        while url:
            resp = self._get(url, params=params)
            for raw in self._servers(resp):
                if not isinstance(raw, dict):
                    logger.warning("Ignoring non-object server entry: %r", raw)
                    continue
                record = InstanceRecord.from_api(raw)
                if not self._all_states and record.state != "running":
                    logger.debug("Skipping server %s in state %s", record.identifier, record.state)
                    continue
                records.append(record)

            next_link = resp.links.get("next", {}).get("url")
            url = urljoin(url, next_link) if next_link else None
            params = None  # the next link carries its own query string

        logger.debug("Listed %d servers", len(records))
        return records

    @staticmethod
    def _servers(resp: requests.Response) -> list[Any]:
        try:
            body = resp.json()
        except ValueError as exc:
            raise InventoryError(f"Invalid JSON from Scaleway API: {exc}", response_body=resp.text) from exc
        if not isinstance(body, dict) or not isinstance(body.get("servers"), list):
            raise InventoryError("Unexpected response from Scaleway API", response_body=resp.text)
        return body["servers"]

    def _get(self, url: str, params: dict[str, Any] | None = None) -> requests.Response:
        logger.debug("GET %s params=%s", url, params)

        try:
            resp = self._session.get(url, params=params, timeout=self._timeout)
        except requests.RequestException as exc:
            raise InventoryError(f"Request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise InventoryError(
                f"HTTP {resp.status_code} on GET {url}: {resp.text}",
                status_code=resp.status_code,
                response_body=resp.text,
            )

        return resp
