#!/usr/bin/env python3
"""
Decision Combinator
===================

Combines the receive-rate signal and the optional flow-record cross-check
under the configured safety mode into one verdict per pod, then reduces a
workload's pod verdicts into a single scale-down decision.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional, Tuple

from k8s_cluster_state import Instance
from scaling_decision import (
    FlowSignal,
    InstanceDecision,
    SafetyMode,
    ScaleVerdict,
    WindowSignal,
)

logger = logging.getLogger(__name__)


class DecisionCombinator:

    def __init__(self, window_evaluator, flow_checker=None,
                 use_flow_check: bool = False,
                 safety_mode: SafetyMode = SafetyMode.SAFE):
        if use_flow_check and flow_checker is None:
            raise ValueError("flow_checker is required when use_flow_check is enabled")
        self.window_evaluator = window_evaluator
        self.flow_checker = flow_checker
        self.use_flow_check = use_flow_check
        self.safety_mode = safety_mode

    @staticmethod
    def combine(window_signal: WindowSignal, flow_signal: Optional[FlowSignal],
                use_flow_check: bool, safety_mode: SafetyMode) -> Tuple[ScaleVerdict, bool]:
        """Pure transition table. Returns (verdict, near_miss)."""
        if window_signal == WindowSignal.IDLE:
            return ScaleVerdict.ELIGIBLE_IDLE, False
        if not use_flow_check or flow_signal is None:
            return ScaleVerdict.NOT_ELIGIBLE, False
        if flow_signal == FlowSignal.NO_RECORDS:
            if safety_mode == SafetyMode.UNSAFE:
                return ScaleVerdict.ELIGIBLE_AMBIGUOUS, False
            return ScaleVerdict.NOT_ELIGIBLE, True
        return ScaleVerdict.NOT_ELIGIBLE, False

    def decide(self, instance: Instance, cutoff: datetime,
               timeout: Optional[float] = None) -> InstanceDecision:
        pod, namespace = instance.name, instance.namespace
        window_signal, window_reason = self.window_evaluator.evaluate(namespace, pod, timeout=timeout)

        if window_signal == WindowSignal.IDLE:
            logger.info(f"Deployment Pod: {pod} Namespace: {namespace} has no network traffic, "
                        f"eligible for scale down ({window_reason})")
            return InstanceDecision(namespace, pod, ScaleVerdict.ELIGIBLE_IDLE, window_reason,
                                    window_signal=window_signal)

        if not self.use_flow_check:
            reason = f"{window_reason}; flow cross-check disabled"
            logger.info(f"Deployment Pod: {pod} Namespace: {namespace} not eligible: {reason}")
            return InstanceDecision(namespace, pod, ScaleVerdict.NOT_ELIGIBLE, reason,
                                    window_signal=window_signal)

        flow_signal, flow_reason = self.flow_checker.check(pod, cutoff, timeout=timeout)
        verdict, near_miss = self.combine(window_signal, flow_signal, True, self.safety_mode)
        reason = f"{window_reason}; {flow_reason}"

        if verdict == ScaleVerdict.ELIGIBLE_AMBIGUOUS:
            logger.info(f"Deployment Pod: {pod} Namespace: {namespace} has traffic but no flow records, "
                        f"eligible for scale down in unsafe mode")
        elif near_miss:
            logger.warning(f"NEAR-MISS Deployment Pod: {pod} Namespace: {namespace} has traffic but no flow "
                           f"records, not scaling in safe mode")
        else:
            logger.info(f"Deployment Pod: {pod} Namespace: {namespace} not eligible: {reason}")

        return InstanceDecision(namespace, pod, verdict, reason, window_signal=window_signal,
                                flow_signal=flow_signal, near_miss=near_miss)


def reduce_verdicts(decisions: Iterable[InstanceDecision]) -> ScaleVerdict:
    """A workload scales down when any of its pods is eligible"""
    verdicts = [d.verdict for d in decisions]
    if ScaleVerdict.ELIGIBLE_IDLE in verdicts:
        return ScaleVerdict.ELIGIBLE_IDLE
    if ScaleVerdict.ELIGIBLE_AMBIGUOUS in verdicts:
        return ScaleVerdict.ELIGIBLE_AMBIGUOUS
    return ScaleVerdict.NOT_ELIGIBLE
