#!/usr/bin/env python3
"""
Idle Workload Sweep
===================

One pass over every Deployment in the cluster: filter by policy, evaluate
each in-scope workload's pods on a bounded worker pool, and scale down the
workloads that have an eligible pod.

Each workload is handled by exactly one task, so actuation for the same
workload never runs concurrently. Nothing is cached between workloads or
between runs. When the overall deadline passes or the sweep is cancelled,
workloads whose evaluation has not finished are reported as cancelled and
are never acted upon.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Callable, Dict, List, Optional

from decision_engine import reduce_verdicts
from exceptions import ProviderQueryError
from flow_check import flow_cutoff
from k8s_cluster_state import Workload
from scaling_decision import ScaleVerdict, SweepReport, WorkloadDecision

logger = logging.getLogger(__name__)

MIN_CALL_TIMEOUT = 0.1


class SweepDeadline:
    """Overall deadline plus an explicit cancellation flag"""

    def __init__(self, seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._cancelled = threading.Event()
        self._expires_at = clock() + seconds if seconds is not None else None

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(self._expires_at - self._clock(), 0.0)

    def expired(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._expires_at is not None and self._clock() >= self._expires_at

    def call_timeout(self) -> Optional[float]:
        """Upper bound for the next external call, or None when there is no deadline"""
        remaining = self.remaining()
        if remaining is None:
            return None
        return max(remaining, MIN_CALL_TIMEOUT)


class IdleSweeper:

    def __init__(self, cluster_state, policy_filter, combinator, actuator,
                 check_days: int = 7, max_workers: int = 4,
                 deadline_seconds: Optional[float] = None,
                 list_timeout: float = 10.0,
                 clock: Callable[[], datetime] = datetime.now):
        self.cluster_state = cluster_state
        self.policy_filter = policy_filter
        self.combinator = combinator
        self.actuator = actuator
        self.check_days = check_days
        self.max_workers = max_workers
        self.deadline_seconds = deadline_seconds
        self.list_timeout = list_timeout
        self.clock = clock

    def run(self, deadline: Optional[SweepDeadline] = None) -> SweepReport:
        """Run one sweep. ClusterUnavailableError from listing workloads propagates."""
        if deadline is None:
            deadline = SweepDeadline(self.deadline_seconds)
        started = time.monotonic()
        report = SweepReport(started_at=self.clock().isoformat())

        workloads = self.cluster_state.list_workloads(timeout=self._list_timeout(deadline))
        cutoff = flow_cutoff(self.clock(), self.check_days)
        logger.info(f"Sweeping {len(workloads)} deployments, flow record cutoff {cutoff:%Y-%m-%d %H:%M:%S}")

        decisions: Dict[str, WorkloadDecision] = {}
        in_scope: List[Workload] = []
        for workload in workloads:
            reason = self.policy_filter.exclusion_reason(workload)
            if reason:
                logger.info(f"Skipping Deployment: {workload.name} Namespace: {workload.namespace}, "
                            f"excluded by rule: {reason}")
                decisions[workload.key] = WorkloadDecision(
                    workload.namespace, workload.name, status="excluded",
                    reason=reason, verdict=ScaleVerdict.EXCLUDED,
                )
            else:
                in_scope.append(workload)

        if in_scope:
            decisions.update(self._evaluate_all(in_scope, cutoff, deadline))

        report.workloads = [decisions[w.key] for w in workloads]
        report.cancelled = deadline.cancelled or report.count("cancelled") > 0
        report.finished_at = self.clock().isoformat()
        report.elapsed_seconds = round(time.monotonic() - started, 3)
        return report

    def _evaluate_all(self, workloads: List[Workload], cutoff: datetime,
                      deadline: SweepDeadline) -> Dict[str, WorkloadDecision]:
        results: Dict[str, WorkloadDecision] = {}
        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="idle-sweep")
        futures: Dict[Future, Workload] = {}
        try:
            for workload in workloads:
                futures[executor.submit(self.evaluate_workload, workload, cutoff, deadline)] = workload

            _, not_done = wait(futures, timeout=deadline.remaining())
            if not_done:
                logger.warning(f"Sweep deadline reached with {len(not_done)} deployments unfinished, cancelling")
                deadline.cancel()
                for future in not_done:
                    future.cancel()
        finally:
            executor.shutdown(wait=True)

        for future, workload in futures.items():
            if future.cancelled():
                results[workload.key] = self._cancelled(workload)
                continue
            try:
                results[workload.key] = future.result()
            except Exception as e:
                logger.exception(f"Unexpected error evaluating Deployment: {workload.name} "
                                 f"Namespace: {workload.namespace}")
                results[workload.key] = WorkloadDecision(
                    workload.namespace, workload.name, status="skipped",
                    reason=f"unexpected error: {e}",
                )
        return results

    def _list_timeout(self, deadline: SweepDeadline) -> float:
        bound = deadline.call_timeout()
        if bound is None:
            return self.list_timeout
        return min(self.list_timeout, bound)

    def _cancelled(self, workload: Workload) -> WorkloadDecision:
        logger.warning(f"Deployment: {workload.name} Namespace: {workload.namespace} evaluation cancelled, "
                       f"no action taken")
        return WorkloadDecision(workload.namespace, workload.name, status="cancelled",
                                reason="sweep cancelled before evaluation finished")

    def evaluate_workload(self, workload: Workload, cutoff: datetime,
                          deadline: SweepDeadline) -> WorkloadDecision:
        """Evaluate every pod of one workload and act on the reduced verdict"""
        if deadline.expired():
            return self._cancelled(workload)

        try:
            instances = self.cluster_state.list_instances(workload, timeout=self._list_timeout(deadline))
        except ProviderQueryError as e:
            logger.warning(f"Failed to list pods for Deployment: {workload.name} "
                           f"Namespace: {workload.namespace}: {e}")
            return WorkloadDecision(workload.namespace, workload.name, status="skipped",
                                    reason=f"pod listing failed: {e.message}")

        if not instances:
            logger.info(f"Deployment: {workload.name} Namespace: {workload.namespace} has no running pods, "
                        f"no action")
            return WorkloadDecision(workload.namespace, workload.name, status="no_action",
                                    reason="no running pods")

        instance_decisions = []
        for instance in instances:
            if deadline.expired():
                return self._cancelled(workload)
            instance_decisions.append(self.combinator.decide(instance, cutoff, timeout=deadline.call_timeout()))

        verdict = reduce_verdicts(instance_decisions)
        if deadline.expired():
            return self._cancelled(workload)

        if not verdict.is_eligible:
            near_misses = sum(1 for d in instance_decisions if d.near_miss)
            reason = "no eligible pods"
            if near_misses:
                reason += f" ({near_misses} near-miss in safe mode)"
            logger.info(f"Deployment: {workload.name} Namespace: {workload.namespace} not scaled: {reason}")
            return WorkloadDecision(workload.namespace, workload.name, status="no_action", reason=reason,
                                    verdict=verdict, instances=instance_decisions)

        eligible = [d.instance for d in instance_decisions if d.verdict.is_eligible]
        reason = f"eligible pods: {', '.join(eligible)}"
        logger.info(f"Deployment: {workload.name} Namespace: {workload.namespace} verdict {verdict.value}, "
                    f"{reason}")
        actuation = self.actuator.scale_to_zero(workload)
        return WorkloadDecision(workload.namespace, workload.name, status="scale_down", reason=reason,
                                verdict=verdict, instances=instance_decisions, actuation=actuation)
