#!/usr/bin/env python3
"""
Flow-Existence Checker
======================

Looks for corroborating flow records for a pod: resolve its name to every
flow id the store knows, then ask per id whether any flow ended after the
cutoff. Any id with records wins; any failed lookup without a positive
answer makes the whole check fail rather than read as "no records".
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple

from exceptions import ProviderQueryError
from scaling_decision import FlowSignal

logger = logging.getLogger(__name__)


def flow_cutoff(now: datetime, check_days: int) -> datetime:
    """Local midnight of the day check_days before now"""
    day = now - timedelta(days=check_days)
    return day.replace(hour=0, minute=0, second=0, microsecond=0)


class FlowExistenceChecker:

    def __init__(self, flow_store, timeout: float = 5.0):
        self.flow_store = flow_store
        self.timeout = timeout

    def check(self, pod: str, cutoff: datetime, timeout: Optional[float] = None) -> Tuple[FlowSignal, str]:
        call_timeout = min(self.timeout, timeout) if timeout is not None else self.timeout

        try:
            flow_ids = self.flow_store.resolve_ids(pod, call_timeout)
        except ProviderQueryError as e:
            logger.warning(f"Failed to resolve flow ids for Pod: {pod}: {e}")
            return FlowSignal.LOOKUP_FAILED, f"flow id lookup failed: {e.message}"

        if not flow_ids:
            return FlowSignal.NO_RECORDS, "pod name not known to the flow store"

        failed = []
        for flow_id in flow_ids:
            try:
                if self.flow_store.has_flow_since(flow_id, cutoff, call_timeout):
                    return FlowSignal.HAS_RECORDS, f"flow records for id {flow_id} since {cutoff:%Y-%m-%d}"
            except ProviderQueryError as e:
                logger.warning(f"Failed to check flow records for Pod: {pod} id: {flow_id}: {e}")
                failed.append(flow_id)

        if failed:
            return FlowSignal.LOOKUP_FAILED, f"flow record lookup failed for ids {failed}"
        return FlowSignal.NO_RECORDS, f"no flow records for ids {list(flow_ids)} since {cutoff:%Y-%m-%d}"
