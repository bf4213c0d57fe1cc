from __future__ import annotations

# `logging` reports dropped stations and feed failures without crashing the poller.
import logging
# Typing helpers keep the raw-JSON boundary explicit while we normalize into dataclasses.
from typing import Any, Mapping, Optional

# `requests` performs HTTP calls; we wrap it to centralize retries and error handling.
import requests
# `HTTPAdapter` lets us mount a retry policy onto a `requests.Session`.
from requests.adapters import HTTPAdapter
# `Retry` implements backoff for transient failures (rate limits, 5xx), without manual sleep loops.
from urllib3.util.retry import Retry

# `FeedSettings` carries the endpoint and retry knobs from config.
from bicingpulse.config.models import FeedSettings
# Records are normalized once here so the store never sees raw feed shapes.
from bicingpulse.schemas.core import StationRecord


logger = logging.getLogger(__name__)


# Raised for HTTP failures and unexpected payload shapes from the live feed.
class FeedRequestError(RuntimeError):
    pass


def parse_network_payload(payload: Any) -> list[StationRecord]:
    """
    Normalize a CityBikes `/v2/networks/<id>` payload into station records.

    - Non-numeric counts and coordinates become 0.
    - Stations left at (0, 0) after sanitizing are dropped (no real station sits there).
    """

    # The feed wraps stations in `{"network": {"stations": [...]}}`.
    if not isinstance(payload, Mapping):
        raise FeedRequestError(f"Unexpected feed payload type: {type(payload).__name__}")
    network = payload.get("network")
    stations = network.get("stations") if isinstance(network, Mapping) else None
    if not isinstance(stations, list):
        raise FeedRequestError("Feed payload missing `network.stations`")

    records: list[StationRecord] = []
    dropped = 0
    for item in stations:
        if not isinstance(item, Mapping):
            dropped += 1
            continue
        record = StationRecord.from_feed(item)
        # Coordinates that sanitize to zero mean the upstream record was broken.
        if record.latitude == 0 or record.longitude == 0:
            dropped += 1
            continue
        records.append(record)

    if dropped:
        logger.warning("Dropped %s stations with invalid data from feed", dropped)
    return records


class CityBikesClient:
    """
    Minimal client for the public CityBikes network endpoint.

    - No authentication; one GET returns every station of the network.
    - Retries are handled via a requests adapter for transient failures.
    """

    def __init__(
        self,
        *,
        api_url: str,
        timeout_s: float = 30.0,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
        user_agent: str = "bicingpulse/0.1.0",
        session: Optional[requests.Session] = None,
    ) -> None:
        self._api_url = api_url
        self._timeout_s = timeout_s

        # A `Session` reuses connections (keep-alive) which is both faster and friendlier to the API.
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": user_agent, "Accept": "application/json"})

        retry = Retry(
            total=max_retries,
            connect=max_retries,
            read=max_retries,
            status=max_retries,
            backoff_factor=backoff_factor,
            # Retry only on status codes that are likely transient or rate-limit related.
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=("GET",),
            respect_retry_after_header=True,
            # Do not raise inside urllib3; we surface a single `FeedRequestError` with context.
            raise_on_status=False,
        )
        self._session.mount("https://", HTTPAdapter(max_retries=retry))
        self._session.mount("http://", HTTPAdapter(max_retries=retry))

    @classmethod
    def from_settings(cls, settings: FeedSettings) -> "CityBikesClient":
        return cls(
            api_url=settings.api_url,
            timeout_s=settings.timeout_s,
            max_retries=settings.max_retries,
            backoff_factor=settings.backoff_factor,
        )

    def fetch_stations(self) -> list[StationRecord]:
        try:
            resp = self._session.get(self._api_url, timeout=self._timeout_s)
        except requests.RequestException as e:
            raise FeedRequestError(f"Feed request failed url={self._api_url}: {e}") from e

        # Treat any 4xx/5xx as an error; the poller decides whether to back off.
        if resp.status_code >= 400:
            raise FeedRequestError(f"Feed request failed ({resp.status_code}) url={self._api_url} body={resp.text[:500]}")
        try:
            payload = resp.json()
        except ValueError as e:
            raise FeedRequestError(f"Feed returned invalid JSON url={self._api_url}") from e
        return parse_network_payload(payload)

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "CityBikesClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
