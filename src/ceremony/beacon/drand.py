"""Public randomness beacon client (drand HTTP API).

A fetch has exactly three outcomes:
- AVAILABLE:         the round exists and carries hex randomness.
- NOT_YET_AVAILABLE: the round is in the future (HTTP 404/425). Not retried
                     within the run; the caller tries again later.
- TRANSIENT_ERROR:   network fault, timeout, 5xx or malformed payload
                     that persisted through the retry policy.

None of these raise. A ceremony must never treat beacon unavailability
as a permanent failure.
"""

from __future__ import annotations

import enum
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from ceremony.config import RetryPolicy
from ceremony.crypto.checksum import sha256_bytes


logger = logging.getLogger(__name__)

_HEX_RE = re.compile(r"[0-9a-fA-F]+")
_NOT_YET_STATUSES = {404, 425}


class BeaconStatus(str, enum.Enum):
    AVAILABLE = "available"
    NOT_YET_AVAILABLE = "not_yet_available"
    TRANSIENT_ERROR = "transient_error"


@dataclass(frozen=True)
class BeaconFetch:
    """Outcome of fetching one beacon round."""
    round_id: int
    status: BeaconStatus
    randomness: Optional[str] = None
    attempts: int = 0
    error_message: str = ""

    @property
    def available(self) -> bool:
        return self.status == BeaconStatus.AVAILABLE


def derive_beacon_hash(randomness: str) -> str:
    """Fixed-size beacon value: SHA-256 over the hex randomness text.

    Hashes the ASCII hex string as published by the beacon, so anyone
    can reproduce it with ``echo -n <randomness> | sha256sum``.
    """
    return sha256_bytes(randomness.encode("ascii"))


class DrandClient:
    """Fetches a committed round from a drand HTTP endpoint.

    Usage:
        client = DrandClient("https://api.drand.sh/public/{round}", RetryPolicy())
        fetch = client.get_round(4_512_345)
        if fetch.available:
            beacon = derive_beacon_hash(fetch.randomness)
    """

    def __init__(
        self,
        endpoint: str,
        retry: RetryPolicy,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._endpoint = endpoint
        self._retry = retry
        self._transport = transport
        self._sleep = sleep
        self._clock = clock

    def url_for(self, round_id: int) -> str:
        return self._endpoint.format(round=round_id)

    def get_round(self, round_id: int) -> BeaconFetch:
        if round_id <= 0:
            raise ValueError(f"Beacon round must be a positive integer, got {round_id}")

        url = self.url_for(round_id)
        timeout = httpx.Timeout(self._retry.overall_timeout, connect=self._retry.connect_timeout)
        delays = self._retry.delays()
        last_error = ""
        attempts = 0

        with httpx.Client(
            timeout=timeout,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            for attempt in range(self._retry.max_attempts):
                attempts = attempt + 1
                try:
                    response = self._fetch(client, url)
                except httpx.HTTPError as exc:
                    last_error = f"{type(exc).__name__}: {exc}"
                    logger.warning("BEACON: attempt %d failed: %s", attempts, last_error)
                else:
                    if response.status_code in _NOT_YET_STATUSES:
                        logger.info("BEACON: round %d not available yet (HTTP %d)",
                                    round_id, response.status_code)
                        return BeaconFetch(
                            round_id=round_id,
                            status=BeaconStatus.NOT_YET_AVAILABLE,
                            attempts=attempts,
                            error_message=f"HTTP {response.status_code}",
                        )
                    if response.status_code == 200:
                        randomness = _randomness_from(response)
                        if randomness is not None:
                            return BeaconFetch(
                                round_id=round_id,
                                status=BeaconStatus.AVAILABLE,
                                randomness=randomness,
                                attempts=attempts,
                            )
                        last_error = "response has no usable randomness field"
                    else:
                        last_error = f"HTTP {response.status_code}"
                        if response.status_code < 500:
                            break
                    logger.warning("BEACON: attempt %d failed: %s", attempts, last_error)

                if attempt < len(delays):
                    self._sleep(delays[attempt])

        return BeaconFetch(
            round_id=round_id,
            status=BeaconStatus.TRANSIENT_ERROR,
            attempts=attempts,
            error_message=last_error,
        )

    def _fetch(self, client: httpx.Client, url: str) -> httpx.Response:
        """GET with a wall-clock deadline over the whole attempt.

        httpx timeouts apply per network operation, so a server dripping
        bytes slowly could otherwise hold one attempt open indefinitely.
        """
        deadline = self._clock() + self._retry.overall_timeout
        with client.stream("GET", url) as response:
            body = bytearray()
            for chunk in response.iter_raw():
                body.extend(chunk)
                if self._clock() > deadline:
                    raise httpx.ReadTimeout(
                        f"response not complete within {self._retry.overall_timeout:.0f}s",
                        request=response.request,
                    )
            return httpx.Response(
                response.status_code,
                headers=response.headers,
                content=bytes(body),
                request=response.request,
            )


def _randomness_from(response: httpx.Response) -> Optional[str]:
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    randomness = payload.get("randomness")
    if not isinstance(randomness, str) or not randomness or not _HEX_RE.fullmatch(randomness):
        return None
    return randomness
