"""
OpenTSDB time-series sink.

High level (PDL perspective)
----------------------------
Every normalized observation becomes one DataPoint, tagged with the subject
key, and is PUT to an OpenTSDB server over its HTTP API.

Key behaviors
-------------
- One POST per point to ``<openTSDBUrl><apiPut>`` with the JSON body
  ``{"metric", "timestamp", "value", "tags"}``; timestamps are epoch
  milliseconds, which OpenTSDB accepts directly.
- Small retry/backoff on network errors and 5xx answers; a 4xx answer is not retried.
- A point that still cannot be stored raises `SinkUnavailable`. The run must
  stop there: nothing of the current run is persisted afterwards.
"""

from __future__ import annotations

import logging
import time
import typing
from dataclasses import dataclass, field

import requests

logger = logging.getLogger(__name__)

DEFAULT_API_PUT = "/api/put"


class SinkUnavailable(RuntimeError):
    """Raised when the time-series server rejects or cannot receive a point."""


@dataclass(frozen=True)
class DataPoint:
    """
    Attributes:
        metric: Canonical metric name (e.g. 'vitals.perMin.HeartRate').
        timestamp: Epoch milliseconds of the observation.
        value: Numeric measurement value.
        tags: Tag set; always carries 'subjectId'.
    """

    metric: str
    timestamp: int
    value: int | float
    tags: typing.Mapping[str, str] = field(default_factory=dict)

    def to_json(self) -> dict[str, typing.Any]:
        return {
            "metric": self.metric,
            "timestamp": self.timestamp,
            "value": self.value,
            "tags": dict(self.tags),
        }


class TimeSeriesSink(typing.Protocol):
    def store(self, point: DataPoint) -> None:
        ...


# ------------------------------------------------------------------------------
# Small utilities
# ------------------------------------------------------------------------------


def _sleep_backoff(i: int) -> None:
    """
    Sleep using a small exponential backoff.
    Sequence ~ 0.25s, 0.5s, 1s.
    """
    time.sleep(0.25 * (2**i))


def _post_json(
    session: requests.Session, url: str, payload: dict, *, timeout: float, attempts: int
) -> None:
    """
    POST `payload` with simple retry/backoff.

    Connection failures, timeouts and 5xx answers are retried; a 4xx answer
    means the point itself was rejected and fails at once. Raises
    SinkUnavailable once the point cannot be stored.
    """
    last_exc: Exception | None = None
    for i in range(attempts):
        try:
            resp = session.post(url, json=payload, timeout=timeout)
            resp.raise_for_status()
            return
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status is not None and status < 500:
                raise SinkUnavailable(f"Point rejected by {url} ({status}): {e}") from e
            last_exc = e
        except (requests.ConnectionError, requests.Timeout) as e:
            last_exc = e
        except requests.RequestException as e:
            raise SinkUnavailable(f"Failed to store point at {url}: {e}") from e
        logger.debug(f"PUT to {url} failed (attempt {i + 1}/{attempts}): {last_exc}")
        if i + 1 < attempts:
            _sleep_backoff(i)
    raise SinkUnavailable(f"Failed to store point at {url}: {last_exc}") from last_exc


# ------------------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------------------


class OpenTSDBSink:
    def __init__(
        self,
        base_url: str,
        api_put: str = DEFAULT_API_PUT,
        *,
        timeout: float = 10.0,
        attempts: int = 3,
        session: requests.Session | None = None,
    ):
        self.url = base_url.rstrip("/") + "/" + (api_put or DEFAULT_API_PUT).lstrip("/")
        self.timeout = timeout
        self.attempts = max(1, attempts)
        self._session = session or requests.Session()
        self.stored = 0

    def store(self, point: DataPoint) -> None:
        _post_json(
            self._session,
            self.url,
            point.to_json(),
            timeout=self.timeout,
            attempts=self.attempts,
        )
        self.stored += 1

    def close(self) -> None:
        self._session.close()
