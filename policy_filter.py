#!/usr/bin/env python3
"""
Policy Filter
=============

Decides whether a workload is in scope for idle detection at all. Each rule
excludes on its own; the first matching rule is reported as the reason.
"""

import logging
from typing import Callable, Iterable, List, Optional, Tuple

from k8s_cluster_state import Workload

logger = logging.getLogger(__name__)

DEFAULT_LOAD_NAMESPACE_PREFIX = "load-"
DEFAULT_RESERVED_NODE_POOLS = ("load", "staging")


class PolicyFilter:
    """Pure exclusion predicate over workloads"""

    def __init__(self, ignore_namespaces: Iterable[str] = (),
                 ignore_deployments: Iterable[str] = (),
                 ignore_annotation: str = "",
                 load_namespace_prefix: str = DEFAULT_LOAD_NAMESPACE_PREFIX,
                 reserved_node_pools: Iterable[str] = DEFAULT_RESERVED_NODE_POOLS):
        self.ignore_namespaces = frozenset(ignore_namespaces)
        self.ignore_deployments = frozenset(ignore_deployments)
        self.ignore_annotation = ignore_annotation
        self.load_namespace_prefix = load_namespace_prefix
        self.reserved_node_pools = frozenset(reserved_node_pools)

        self.rules: List[Tuple[str, Callable[[Workload], bool]]] = [
            ("already scaled down", self._already_scaled_down),
            ("load-test namespace", self._load_test_namespace),
            ("ignore annotation set", self._ignore_annotation_set),
            ("ignored namespace", self._ignored_namespace),
            ("ignored deployment", self._ignored_deployment),
            ("reserved node pool affinity", self._reserved_node_affinity),
        ]

    @classmethod
    def from_config(cls, cfg) -> "PolicyFilter":
        return cls(
            ignore_namespaces=cfg.ignore_namespaces,
            ignore_deployments=cfg.ignore_deployments,
            ignore_annotation=cfg.ignore_annotations,
            load_namespace_prefix=cfg.load_namespace_prefix,
            reserved_node_pools=cfg.reserved_node_pools,
        )

    def exclusion_reason(self, workload: Workload) -> Optional[str]:
        """Return the first matching exclusion rule name, or None when in scope"""
        for name, rule in self.rules:
            if rule(workload):
                return name
        return None

    def matching_rules(self, workload: Workload) -> List[str]:
        return [name for name, rule in self.rules if rule(workload)]

    def is_in_scope(self, workload: Workload) -> bool:
        return self.exclusion_reason(workload) is None

    def _already_scaled_down(self, workload: Workload) -> bool:
        return workload.replicas < 1

    def _load_test_namespace(self, workload: Workload) -> bool:
        return bool(self.load_namespace_prefix) and workload.namespace.startswith(self.load_namespace_prefix)

    def _ignore_annotation_set(self, workload: Workload) -> bool:
        if not self.ignore_annotation:
            return False
        return workload.annotations.get(self.ignore_annotation) == "true"

    def _ignored_namespace(self, workload: Workload) -> bool:
        return workload.namespace in self.ignore_namespaces

    def _ignored_deployment(self, workload: Workload) -> bool:
        return workload.name in self.ignore_deployments

    def _reserved_node_affinity(self, workload: Workload) -> bool:
        for term in workload.node_selector_terms or []:
            for match in term:
                for value in match.get("values") or []:
                    if value in self.reserved_node_pools:
                        return True
        return False
