#!/usr/bin/env python3
"""
Prometheus Metrics Provider
===========================

Thin client for the Prometheus HTTP range-query API. Every call is bounded
by a timeout and every failure surfaces as ProviderQueryError.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import requests

from exceptions import ProviderQueryError

logger = logging.getLogger(__name__)

QUERY_RANGE_PATH = "/api/v1/query_range"


@dataclass
class TrafficWindow:
    """One returned series: (timestamp, value) samples in strictly increasing time order"""
    labels: Dict[str, str]
    samples: List[Tuple[float, float]] = field(default_factory=list)

    def __post_init__(self):
        previous = None
        for timestamp, value in self.samples:
            if previous is not None and timestamp <= previous:
                raise ValueError(f"sample timestamps must be strictly increasing (got {timestamp} after {previous})")
            if value < 0:
                raise ValueError(f"sample values must be non-negative rates (got {value})")
            previous = timestamp


def normalize_base_url(host: str) -> str:
    if "://" not in host:
        host = f"http://{host}"
    return host.rstrip("/")


class PrometheusProvider:
    """Range queries against a Prometheus-compatible HTTP API"""

    def __init__(self, base_url: str, session: Optional[requests.Session] = None):
        self.base_url = normalize_base_url(base_url)
        self.session = session or requests.Session()

    def range_query(self, query: str, start: datetime, end: datetime, step_seconds: int,
                    timeout: float) -> Tuple[List[TrafficWindow], List[str]]:
        """Run a range query and return (series, warnings).

        The PromQL evaluation timeout is half of the HTTP timeout so the
        server gives up before the client does.
        """
        params = {
            "query": query,
            "start": f"{start.timestamp():.3f}",
            "end": f"{end.timestamp():.3f}",
            "step": f"{step_seconds}s",
            "timeout": f"{max(timeout / 2, 1):g}s",
        }
        url = f"{self.base_url}{QUERY_RANGE_PATH}"
        try:
            response = self.session.get(url, params=params, timeout=timeout)
        except requests.exceptions.Timeout as e:
            raise ProviderQueryError("Prometheus query timed out", context={"query": query}, cause=e)
        except requests.exceptions.RequestException as e:
            raise ProviderQueryError("Prometheus request failed", context={"query": query}, cause=e)

        payload = self._decode(response, query)
        if payload.get("status") != "success":
            raise ProviderQueryError(
                f"Prometheus returned {payload.get('errorType', 'error')}: {payload.get('error', 'unknown error')}",
                context={"query": query},
            )

        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise ProviderQueryError("Malformed Prometheus payload: data is not an object", context={"query": query})
        if data.get("resultType") != "matrix":
            raise ProviderQueryError(
                f"Unexpected Prometheus result type: {data.get('resultType')}",
                context={"query": query},
            )

        result = data.get("result") or []
        if not isinstance(result, list):
            raise ProviderQueryError("Malformed Prometheus payload: result is not a list", context={"query": query})
        try:
            series = [self._parse_series(item) for item in result]
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderQueryError("Malformed Prometheus matrix", context={"query": query}, cause=e)

        return series, list(payload.get("warnings") or [])

    def _decode(self, response: requests.Response, query: str) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderQueryError(
                f"Prometheus returned non-JSON response (HTTP {response.status_code})",
                context={"query": query},
                cause=e,
            )
        if not isinstance(payload, dict):
            raise ProviderQueryError("Prometheus returned an unexpected payload", context={"query": query})
        if response.status_code != 200 and payload.get("status") == "success":
            raise ProviderQueryError(f"Prometheus returned HTTP {response.status_code}", context={"query": query})
        return payload

    def _parse_series(self, item: Dict[str, Any]) -> TrafficWindow:
        samples = [(float(ts), float(value)) for ts, value in item["values"]]
        return TrafficWindow(labels=dict(item.get("metric") or {}), samples=samples)

    def close(self):
        self.session.close()
