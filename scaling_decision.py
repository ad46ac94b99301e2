#!/usr/bin/env python3
"""
Common decision contracts for idle workload scale-down.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class WindowSignal(str, Enum):
    """Outcome of the traffic-rate window check."""
    IDLE = "idle"
    ACTIVE = "active"
    INCONCLUSIVE = "inconclusive"


class FlowSignal(str, Enum):
    """Outcome of the flow-record existence check."""
    HAS_RECORDS = "has_records"
    NO_RECORDS = "no_records"
    LOOKUP_FAILED = "lookup_failed"


class SafetyMode(str, Enum):
    SAFE = "safe"
    UNSAFE = "unsafe"

    @classmethod
    def from_flag(cls, safe_scale: bool) -> "SafetyMode":
        return cls.SAFE if safe_scale else cls.UNSAFE


class ScaleVerdict(str, Enum):
    ELIGIBLE_IDLE = "eligible_idle"
    ELIGIBLE_AMBIGUOUS = "eligible_ambiguous"
    NOT_ELIGIBLE = "not_eligible"
    EXCLUDED = "excluded"

    @property
    def is_eligible(self) -> bool:
        return self in (ScaleVerdict.ELIGIBLE_IDLE, ScaleVerdict.ELIGIBLE_AMBIGUOUS)


@dataclass
class InstanceDecision:
    namespace: str
    instance: str
    verdict: ScaleVerdict
    reason: str
    window_signal: Optional[WindowSignal] = None
    flow_signal: Optional[FlowSignal] = None
    near_miss: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "namespace": self.namespace,
            "instance": self.instance,
            "verdict": self.verdict.value,
            "reason": self.reason,
            "window_signal": self.window_signal.value if self.window_signal else None,
            "flow_signal": self.flow_signal.value if self.flow_signal else None,
            "near_miss": self.near_miss,
        }


@dataclass
class ActuationResult:
    """What happened when a scale-down was requested for one workload.

    status is one of "scaled", "noop", "dry_run" or "failed".
    """
    status: str
    observed_replicas: Optional[int] = None
    error: Optional[Dict[str, Any]] = None

    @property
    def success(self) -> bool:
        return self.status != "failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "observed_replicas": self.observed_replicas,
            "error": self.error,
        }


@dataclass
class WorkloadDecision:
    """Per-workload outcome of one sweep.

    status is one of "excluded", "skipped", "no_action", "scale_down" or
    "cancelled".
    """
    namespace: str
    name: str
    status: str
    reason: str = ""
    verdict: ScaleVerdict = ScaleVerdict.NOT_ELIGIBLE
    instances: List[InstanceDecision] = field(default_factory=list)
    actuation: Optional[ActuationResult] = None

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "namespace": self.namespace,
            "name": self.name,
            "status": self.status,
            "reason": self.reason,
            "verdict": self.verdict.value,
            "instances": [i.to_dict() for i in self.instances],
            "actuation": self.actuation.to_dict() if self.actuation else None,
        }


@dataclass
class SweepReport:
    started_at: str
    finished_at: Optional[str] = None
    elapsed_seconds: float = 0.0
    cancelled: bool = False
    workloads: List[WorkloadDecision] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for w in self.workloads if w.status == status)

    def actuation_count(self, status: str) -> int:
        return sum(
            1 for w in self.workloads
            if w.actuation is not None and w.actuation.status == status
        )

    def summary(self) -> Dict[str, int]:
        return {
            "workloads": len(self.workloads),
            "excluded": self.count("excluded"),
            "skipped": self.count("skipped"),
            "no_action": self.count("no_action"),
            "scale_down": self.count("scale_down"),
            "cancelled": self.count("cancelled"),
            "scaled": self.actuation_count("scaled"),
            "dry_run": self.actuation_count("dry_run"),
            "failed": self.actuation_count("failed"),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "elapsed_seconds": self.elapsed_seconds,
            "cancelled": self.cancelled,
            "summary": self.summary(),
            "workloads": [w.to_dict() for w in self.workloads],
        }
