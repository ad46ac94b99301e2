#!/usr/bin/env python3
"""
Scale Actuator
==============

Sets an eligible workload's desired replicas to zero and verifies the API
server reports exactly zero afterwards. Failures are reported, not retried.
"""

import logging

from exceptions import ActuationError, ConsistencyError
from k8s_cluster_state import Workload
from scaling_decision import ActuationResult

logger = logging.getLogger(__name__)


class ScaleActuator:

    def __init__(self, cluster_state, dry_run: bool = True):
        self.cluster_state = cluster_state
        self.dry_run = dry_run

    def scale_to_zero(self, workload: Workload) -> ActuationResult:
        if workload.replicas < 1:
            logger.info(f"Deployment: {workload.name} Namespace: {workload.namespace} already at "
                        f"{workload.replicas} replicas, nothing to do")
            return ActuationResult(status="noop", observed_replicas=workload.replicas)

        if self.dry_run:
            logger.info(f"DRY RUN: would scale Deployment: {workload.name} Namespace: {workload.namespace} "
                        f"from {workload.replicas} to 0 replicas")
            return ActuationResult(status="dry_run", observed_replicas=workload.replicas)

        logger.info(f"🔄 Scaling down Deployment: {workload.name} Namespace: {workload.namespace} "
                    f"from {workload.replicas} to 0 replicas")
        try:
            observed = self.cluster_state.update_desired_replicas(workload, 0)
        except ActuationError as e:
            logger.error(f"❌ Deployment: {workload.name} Namespace: {workload.namespace} scale down failed: {e}")
            return ActuationResult(status="failed", error=e.to_dict())

        if observed.replicas != 0:
            error = ConsistencyError(
                f"observed {observed.replicas} replicas after scaling to 0",
                context={"deployment": workload.name, "namespace": workload.namespace},
            )
            logger.error(f"❌ Deployment: {workload.name} Namespace: {workload.namespace} scale down failed: {error}")
            return ActuationResult(status="failed", observed_replicas=observed.replicas, error=error.to_dict())

        workload.replicas = 0
        logger.info(f"✅ Deployment: {workload.name} Namespace: {workload.namespace} scaled down to 0 replicas")
        return ActuationResult(status="scaled", observed_replicas=0)
