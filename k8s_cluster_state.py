#!/usr/bin/env python3
"""
Kubernetes Cluster State
========================

Reads Deployments and their Pods from the cluster and applies replica
count updates. This is the only module that talks to the Kubernetes API.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from exceptions import ActuationError, ClusterUnavailableError, ProviderQueryError

logger = logging.getLogger(__name__)

LIST_PAGE_SIZE = 500


@dataclass
class Instance:
    """One running replica (pod) of a workload"""
    namespace: str
    name: str


@dataclass
class Workload:
    """A Deployment as seen by the scaler"""
    namespace: str
    name: str
    replicas: int
    selector: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    # Required node-affinity terms; each term is a list of match expressions
    # shaped like {"key": ..., "operator": ..., "values": [...]}.
    node_selector_terms: Optional[List[List[Dict[str, Any]]]] = None
    last_known_replicas: Optional[int] = None

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def label_selector(self) -> str:
        return ",".join(f"{k}={v}" for k, v in sorted(self.selector.items()))

    @classmethod
    def from_deployment(cls, deployment: Any) -> "Workload":
        metadata = deployment.metadata
        spec = deployment.spec
        replicas = spec.replicas if spec.replicas is not None else 1
        selector = {}
        if spec.selector is not None and spec.selector.match_labels:
            selector = dict(spec.selector.match_labels)
        status_replicas = None
        if deployment.status is not None:
            status_replicas = deployment.status.replicas
        return cls(
            namespace=metadata.namespace,
            name=metadata.name,
            replicas=replicas,
            selector=selector,
            annotations=dict(metadata.annotations or {}),
            node_selector_terms=_required_node_selector_terms(spec),
            last_known_replicas=status_replicas,
        )


def _required_node_selector_terms(spec: Any) -> Optional[List[List[Dict[str, Any]]]]:
    """Extract required node-affinity match expressions from a Deployment spec."""
    template = spec.template
    if template is None or template.spec is None or template.spec.affinity is None:
        return None
    node_affinity = template.spec.affinity.node_affinity
    if node_affinity is None:
        return None
    required = node_affinity.required_during_scheduling_ignored_during_execution
    if required is None or not required.node_selector_terms:
        return None

    terms = []
    for term in required.node_selector_terms:
        expressions = []
        for match in term.match_expressions or []:
            expressions.append({
                "key": match.key,
                "operator": match.operator,
                "values": list(match.values or []),
            })
        terms.append(expressions)
    return terms


class KubernetesClusterState:
    """Cluster-state provider backed by the official Kubernetes client"""

    def __init__(self, kubeconfig_path: Optional[str] = None,
                 apps_api: Optional[client.AppsV1Api] = None,
                 core_api: Optional[client.CoreV1Api] = None):
        self.kubeconfig_path = kubeconfig_path
        if apps_api is None or core_api is None:
            api_client = self._initialize_k8s_client()
            apps_api = apps_api or client.AppsV1Api(api_client)
            core_api = core_api or client.CoreV1Api(api_client)
        self.apps_api = apps_api
        self.core_api = core_api

    def _initialize_k8s_client(self) -> client.ApiClient:
        """Initialize Kubernetes client"""
        try:
            if self.kubeconfig_path:
                logger.info(f"Loading kubeconfig from: {self.kubeconfig_path}")
                config.load_kube_config(config_file=self.kubeconfig_path)
            else:
                # In-cluster first, since the scaler normally runs as a CronJob
                try:
                    config.load_incluster_config()
                    logger.info("Using in-cluster config")
                except config.ConfigException:
                    config.load_kube_config()
                    logger.info("Using default kubeconfig")
            return client.ApiClient()
        except Exception as e:
            logger.error(f"Failed to initialize Kubernetes client: {e}")
            raise ClusterUnavailableError("Failed to initialize Kubernetes client", cause=e)

    def list_workloads(self, timeout: Optional[float] = None) -> List[Workload]:
        """List every Deployment in every namespace; timeout bounds each page request"""
        workloads = []
        continue_token = None
        try:
            while True:
                kwargs: Dict[str, Any] = {"limit": LIST_PAGE_SIZE}
                if timeout is not None:
                    kwargs["_request_timeout"] = timeout
                if continue_token:
                    kwargs["_continue"] = continue_token
                page = self.apps_api.list_deployment_for_all_namespaces(**kwargs)
                workloads.extend(Workload.from_deployment(d) for d in page.items)
                continue_token = page.metadata._continue if page.metadata else None
                if not continue_token:
                    break
        except Exception as e:
            logger.error(f"Failed to list deployments: {e}")
            raise ClusterUnavailableError("Failed to list deployments", cause=e)

        logger.info(f"Found {len(workloads)} deployments in the cluster")
        return workloads

    def list_instances(self, workload: Workload, timeout: Optional[float] = None) -> List[Instance]:
        """List the pods selected by a workload's matchLabels"""
        selector = workload.label_selector
        if not selector:
            logger.warning(f"Deployment {workload.key} has no matchLabels selector, no pods listed")
            return []

        kwargs: Dict[str, Any] = {"label_selector": selector}
        if timeout is not None:
            kwargs["_request_timeout"] = timeout
        try:
            pods = self.core_api.list_namespaced_pod(workload.namespace, **kwargs)
        except Exception as e:
            raise ProviderQueryError(
                "Failed to list pods for deployment",
                context={"deployment": workload.name, "namespace": workload.namespace},
                cause=e,
            )
        return [Instance(namespace=pod.metadata.namespace or workload.namespace, name=pod.metadata.name)
                for pod in pods.items]

    def update_desired_replicas(self, workload: Workload, replicas: int) -> Workload:
        """Patch spec.replicas and return the workload as the API server reports it"""
        body = {"spec": {"replicas": replicas}}
        try:
            updated = self.apps_api.patch_namespaced_deployment(workload.name, workload.namespace, body)
        except ApiException as e:
            raise ActuationError(
                f"API server rejected replica update: {e.status} {e.reason}",
                context={"deployment": workload.name, "namespace": workload.namespace},
                cause=e,
            )
        except Exception as e:
            raise ActuationError(
                "Replica update failed",
                context={"deployment": workload.name, "namespace": workload.namespace},
                cause=e,
            )
        return Workload.from_deployment(updated)
