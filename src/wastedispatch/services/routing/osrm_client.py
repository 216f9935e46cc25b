"""HTTP client for interacting with OSRM services."""

from __future__ import annotations

import logging
import time
from typing import Sequence

import httpx

from ...config import settings
from ...errors import CollaboratorUnavailable

logger = logging.getLogger(__name__)


class OSRMClient:
    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
    ) -> None:
        self.base_url = (base_url or settings.osrm_base_url or "").rstrip("/")
        if not self.base_url:
            raise ValueError("OSRM base URL is not configured.")
        self.profile = profile or settings.osrm_profile
        self.timeout = timeout if timeout is not None else settings.osrm_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.osrm_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.osrm_backoff_seconds

    def _get_client(self) -> httpx.Client:
        # One client per call; enrichment runs on worker threads.
        return httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0)),
            limits=httpx.Limits(max_connections=1, max_keepalive_connections=0),
        )

    def route(self, coordinates: Sequence[tuple[float, float]]) -> dict:
        """Get the road route through ``coordinates`` in the given order.

        Args:
            coordinates: Sequence of (lat, lon) waypoints.

        Returns:
            The first OSRM route: ``distance`` (m), ``duration`` (s) and a
            GeoJSON LineString ``geometry``.

        Raises:
            CollaboratorUnavailable: on timeout, network failure, non-success
                status, or a response without a usable route.
        """
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for OSRM route.")

        coordinate_str = ";".join(f"{lon},{lat}" for lat, lon in coordinates)
        params = {
            "overview": "full",
            "geometries": "geojson",
            "steps": "false",
        }
        url = f"{self.base_url}/route/v1/{self.profile}/{coordinate_str}"

        client = self._get_client()
        try:
            attempt = 0
            while True:
                try:
                    response = client.get(url, params=params)
                    response.raise_for_status()
                    data = response.json()
                    if data.get("code") != "Ok":
                        raise CollaboratorUnavailable(
                            f"OSRM route request failed: {data.get('message', data.get('code', 'unknown error'))}"
                        )
                    routes = data.get("routes") or []
                    if not routes:
                        raise CollaboratorUnavailable("OSRM returned no route for the requested waypoints.")
                    return routes[0]
                except httpx.HTTPStatusError as exc:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise CollaboratorUnavailable(
                            f"OSRM responded with status {exc.response.status_code}"
                        ) from exc
                    time.sleep(self.backoff_seconds * attempt)
                except httpx.TimeoutException as exc:
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.warning("OSRM route request timed out after %d attempts: %s", attempt, exc)
                        raise CollaboratorUnavailable("OSRM route request timed out") from exc
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug("OSRM route timeout, retrying in %.1fs (attempt %d/%d)", wait_time, attempt, self.max_retries)
                    time.sleep(wait_time)
                except (httpx.NetworkError, OSError) as exc:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise CollaboratorUnavailable(
                            f"Failed to connect to OSRM service at {self.base_url}: {exc}"
                        ) from exc
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug("OSRM network error, retrying in %.1fs (attempt %d/%d): %s", wait_time, attempt, self.max_retries, exc)
                    time.sleep(wait_time)
                except (httpx.HTTPError, ValueError) as exc:
                    # protocol errors and undecodable bodies are not retried
                    raise CollaboratorUnavailable(f"Invalid OSRM response: {exc}") from exc
        finally:
            client.close()


def check_health(base_url: str | None = None) -> bool:
    """Check OSRM service health with a minimal two-point route request."""
    base = base_url or settings.osrm_base_url
    if not base:
        return False
    try:
        test_coords = "79.861,6.927;79.870,6.920"
        url = f"{base.rstrip('/')}/route/v1/{settings.osrm_profile}/{test_coords}"
        response = httpx.get(url, params={"overview": "false"}, timeout=5.0)
        response.raise_for_status()
        return response.json().get("code") == "Ok"
    except (httpx.HTTPError, ValueError):
        return False
