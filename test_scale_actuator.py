"""Tests for the verified, idempotent scale-to-zero actuator."""

from conftest import FakeClusterState
from exceptions import ActuationError
from scale_actuator import ScaleActuator


class TestScaleActuator:

    def test_scales_to_zero_and_verifies(self, make_workload):
        cluster = FakeClusterState()
        workload = make_workload(replicas=3)
        result = ScaleActuator(cluster, dry_run=False).scale_to_zero(workload)

        assert result.status == "scaled"
        assert result.observed_replicas == 0
        assert cluster.updates == [("default/web", 0)]
        assert workload.replicas == 0

    def test_second_call_is_noop(self, make_workload):
        cluster = FakeClusterState()
        actuator = ScaleActuator(cluster, dry_run=False)
        workload = make_workload(replicas=2)

        actuator.scale_to_zero(workload)
        second = actuator.scale_to_zero(workload)

        assert second.status == "noop"
        assert second.success
        assert len(cluster.updates) == 1

    def test_already_zero_is_noop(self, make_workload):
        cluster = FakeClusterState()
        result = ScaleActuator(cluster, dry_run=False).scale_to_zero(make_workload(replicas=0))
        assert result.status == "noop"
        assert cluster.updates == []

    def test_dry_run_does_not_mutate(self, make_workload, caplog):
        cluster = FakeClusterState()
        workload = make_workload(replicas=3)
        with caplog.at_level("INFO"):
            result = ScaleActuator(cluster, dry_run=True).scale_to_zero(workload)
        assert result.status == "dry_run"
        assert cluster.updates == []
        assert workload.replicas == 3
        assert "DRY RUN" in caplog.text

    def test_update_error_is_reported(self, make_workload):
        cluster = FakeClusterState()
        cluster.update_error = ActuationError("API server rejected replica update: 409 Conflict")
        workload = make_workload(replicas=3)
        result = ScaleActuator(cluster, dry_run=False).scale_to_zero(workload)

        assert result.status == "failed"
        assert result.error["error_type"] == "ActuationError"
        assert workload.replicas == 3
        assert len(cluster.updates) == 1

    def test_observed_mismatch_is_consistency_error(self, make_workload):
        cluster = FakeClusterState()
        cluster.observed_override = 3
        workload = make_workload(replicas=3)
        result = ScaleActuator(cluster, dry_run=False).scale_to_zero(workload)

        assert result.status == "failed"
        assert result.observed_replicas == 3
        assert result.error["error_type"] == "ConsistencyError"
        assert workload.replicas == 3
