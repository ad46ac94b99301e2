#!/usr/bin/env python3
"""
Window-Rate Evaluator
=====================

Answers whether a pod received (near) zero network traffic since local
midnight. One observed sample at or above the epsilon anywhere in the
window is enough to call the pod active; a missing series or a failed
query is never read as idle.
"""

import logging
from datetime import datetime
from typing import Callable, Optional, Tuple

from exceptions import ProviderQueryError
from scaling_decision import WindowSignal

logger = logging.getLogger(__name__)

NETWORK_RECEIVE_QUERY = 'rate(container_network_receive_bytes_total{{namespace="{namespace}",pod="{pod}"}}[{window}])'


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _promql_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class WindowRateEvaluator:
    """Classifies one pod's receive-rate window as idle, active or inconclusive"""

    def __init__(self, metrics_provider, epsilon: float = 0.001, rate_window: str = "3m",
                 step_seconds: int = 60, timeout: float = 10.0,
                 clock: Callable[[], datetime] = datetime.now):
        self.metrics_provider = metrics_provider
        self.epsilon = epsilon
        self.rate_window = rate_window
        self.step_seconds = step_seconds
        self.timeout = timeout
        self.clock = clock

    def build_query(self, namespace: str, pod: str) -> str:
        return NETWORK_RECEIVE_QUERY.format(
            namespace=_promql_string(namespace),
            pod=_promql_string(pod),
            window=self.rate_window,
        )

    def evaluate(self, namespace: str, pod: str, timeout: Optional[float] = None) -> Tuple[WindowSignal, str]:
        """Return the signal together with a short human-readable reason"""
        query = self.build_query(namespace, pod)
        end = self.clock()
        start = start_of_day(end)
        call_timeout = min(self.timeout, timeout) if timeout is not None else self.timeout

        try:
            series, warnings = self.metrics_provider.range_query(
                query, start, end, self.step_seconds, call_timeout
            )
        except ProviderQueryError as e:
            logger.warning(f"Pod: {pod} Namespace: {namespace} receive-rate query failed: {e}")
            return WindowSignal.INCONCLUSIVE, f"metrics query failed: {e.message}"

        if warnings:
            logger.warning(f"Pod: {pod} Namespace: {namespace} receive-rate query returned warnings: {warnings}")
            return WindowSignal.INCONCLUSIVE, "metrics query returned warnings"

        if not any(window.samples for window in series):
            logger.info(f"Pod: {pod} Namespace: {namespace} has no receive-rate series since {start:%Y-%m-%d %H:%M}")
            return WindowSignal.INCONCLUSIVE, "no receive-rate series for pod"

        for window in series:
            for timestamp, value in window.samples:
                if not value < self.epsilon:
                    return WindowSignal.ACTIVE, (
                        f"receive rate {value:g} B/s at {datetime.fromtimestamp(timestamp):%H:%M:%S} "
                        f">= {self.epsilon:g}"
                    )

        return WindowSignal.IDLE, f"receive rate below {self.epsilon:g} B/s since {start:%Y-%m-%d %H:%M}"
