"""Shared fixtures for idle scaler tests.

In-memory fakes stand in for the cluster, the metrics provider and the flow
store so decision logic can be exercised without any network access.
"""

from typing import Dict, List

import pytest

from k8s_cluster_state import Instance, Workload
from prometheus_provider import TrafficWindow


class FakeClusterState:
    def __init__(self, workloads=None, instances=None):
        self.workloads: List[Workload] = list(workloads or [])
        self.instances: Dict[str, object] = dict(instances or {})
        self.updates = []
        self.list_instance_calls = []
        self.list_workload_timeouts = []
        self.update_error = None
        self.observed_override = None

    def list_workloads(self, timeout=None):
        self.list_workload_timeouts.append(timeout)
        return list(self.workloads)

    def list_instances(self, workload, timeout=None):
        self.list_instance_calls.append(workload.key)
        result = self.instances.get(workload.key, [])
        if isinstance(result, Exception):
            raise result
        return list(result)

    def update_desired_replicas(self, workload, replicas):
        self.updates.append((workload.key, replicas))
        if self.update_error is not None:
            raise self.update_error
        observed = replicas if self.observed_override is None else self.observed_override
        return Workload(workload.namespace, workload.name, observed, dict(workload.selector))


class FakeMetricsProvider:
    """Maps pod name to lists of per-series sample values; warnings and errors are keyed the same way"""

    def __init__(self, series=None, warnings=None, errors=None):
        self.series = dict(series or {})
        self.warnings = dict(warnings or {})
        self.errors = dict(errors or {})
        self.calls = []
        self.hook = None

    def range_query(self, query, start, end, step_seconds, timeout):
        self.calls.append({"query": query, "start": start, "end": end,
                           "step": step_seconds, "timeout": timeout})
        if self.hook is not None:
            self.hook(query)
        for pod, error in self.errors.items():
            if f'pod="{pod}"' in query:
                raise error
        for pod, series in self.series.items():
            if f'pod="{pod}"' in query:
                windows = [
                    TrafficWindow({"pod": pod}, [(1700000000.0 + 60 * i, v) for i, v in enumerate(values)])
                    for values in series
                ]
                return windows, list(self.warnings.get(pod, []))
        return [], []


class FakeFlowStore:
    """ids: pod name -> list of ids (or exception); flows: id -> bool (or exception)"""

    def __init__(self, ids=None, flows=None):
        self.ids = dict(ids or {})
        self.flows = dict(flows or {})
        self.resolve_calls = []
        self.exists_calls = []

    def resolve_ids(self, pod_name, timeout):
        self.resolve_calls.append((pod_name, timeout))
        result = self.ids.get(pod_name, [])
        if isinstance(result, Exception):
            raise result
        return list(result)

    def has_flow_since(self, pod_id, cutoff, timeout):
        self.exists_calls.append((pod_id, cutoff, timeout))
        result = self.flows.get(pod_id, False)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def make_workload():
    def _make(name="web", namespace="default", replicas=3, annotations=None,
              node_selector_terms=None, selector=None):
        return Workload(
            namespace=namespace,
            name=name,
            replicas=replicas,
            selector=selector if selector is not None else {"app": name},
            annotations=annotations or {},
            node_selector_terms=node_selector_terms,
            last_known_replicas=replicas,
        )
    return _make


@pytest.fixture
def make_instance():
    def _make(name="web-0", namespace="default"):
        return Instance(namespace=namespace, name=name)
    return _make


@pytest.fixture
def fake_metrics():
    return FakeMetricsProvider()

