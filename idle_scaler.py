#!/usr/bin/env python3
"""
Idle Workload Scaler
====================

Finds Deployments whose pods receive no real network traffic and scales
them to zero replicas. Intended to run once per invocation (e.g. from a
CronJob); dry-run unless scale_enable is set.
"""

import argparse
import json
import logging
import signal
import sys
from typing import List, Optional

from config import DEFAULT_CLICKHOUSE_HTTP_PORT, IdleScalerConfig, load_config
from decision_engine import DecisionCombinator
from exceptions import ClusterUnavailableError, ConfigurationError
from flow_check import FlowExistenceChecker
from flow_store import ClickHouseFlowStore
from idle_sweeper import IdleSweeper, SweepDeadline
from k8s_cluster_state import KubernetesClusterState
from logging_utils import apply_logging_config, configure_logging
from policy_filter import PolicyFilter
from prometheus_provider import PrometheusProvider
from scale_actuator import ScaleActuator
from scaling_decision import SafetyMode, SweepReport
from window_rate import WindowRateEvaluator

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED_ACTIONS = 1
EXIT_FATAL = 2


def build_flow_store(cfg: IdleScalerConfig) -> Optional[ClickHouseFlowStore]:
    if not cfg.use_deepflow:
        return None
    return ClickHouseFlowStore(
        cfg.deepflow_host,
        username=cfg.deepflow_clickhouse_username,
        password=cfg.deepflow_clickhouse_password,
        default_port=DEFAULT_CLICKHOUSE_HTTP_PORT,
    )


def build_sweeper(cfg: IdleScalerConfig, cluster_state=None, metrics_provider=None,
                  flow_store=None) -> IdleSweeper:
    """Wire the components from config. Collaborators may be injected."""
    if cluster_state is None:
        cluster_state = KubernetesClusterState(cfg.kubeconfig_path)
    if metrics_provider is None:
        metrics_provider = PrometheusProvider(cfg.prometheus_host)
    if flow_store is None:
        flow_store = build_flow_store(cfg)

    window_evaluator = WindowRateEvaluator(
        metrics_provider,
        epsilon=cfg.idle_epsilon,
        rate_window=cfg.rate_window,
        step_seconds=cfg.query_step_seconds,
        timeout=cfg.metrics_timeout_seconds,
    )
    flow_checker = None
    if cfg.use_deepflow:
        flow_checker = FlowExistenceChecker(flow_store, timeout=cfg.flow_timeout_seconds)

    combinator = DecisionCombinator(
        window_evaluator,
        flow_checker=flow_checker,
        use_flow_check=cfg.use_deepflow,
        safety_mode=SafetyMode.from_flag(cfg.safe_scale),
    )
    return IdleSweeper(
        cluster_state,
        PolicyFilter.from_config(cfg),
        combinator,
        ScaleActuator(cluster_state, dry_run=not cfg.scale_enable),
        check_days=cfg.deepflow_check_days,
        max_workers=cfg.max_workers,
        deadline_seconds=cfg.sweep_deadline_seconds,
        list_timeout=cfg.metrics_timeout_seconds,
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Scale Deployments with no network traffic down to zero replicas")
    parser.add_argument("--config", default=None, help="YAML config file (default: $IDLE_SCALER_CONFIG or ./config.yaml)")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", dest="scale_enable", action="store_false", default=None,
                      help="Log decisions without scaling")
    mode.add_argument("--live", dest="scale_enable", action="store_true", help="Apply scale-downs")
    safety = parser.add_mutually_exclusive_group()
    safety.add_argument("--safe", dest="safe_scale", action="store_true", default=None,
                        help="Do not act on traffic without corroborating flow records")
    safety.add_argument("--unsafe", dest="safe_scale", action="store_false",
                        help="Act on traffic without corroborating flow records")
    parser.add_argument("--workers", dest="max_workers", type=int, default=None)
    parser.add_argument("--deadline", dest="sweep_deadline_seconds", type=float, default=None,
                        help="Overall sweep deadline in seconds")
    parser.add_argument("--kubeconfig", dest="kubeconfig_path", default=None)
    parser.add_argument("--log-level", dest="log_level", default=None)
    parser.add_argument("--log-file", dest="log_file", default=None)
    parser.add_argument("--report-json", default=None, help="Write the sweep report to this path")
    parser.set_defaults(scale_enable=None, safe_scale=None)
    return parser.parse_args(argv)


def log_summary(report: SweepReport):
    summary = report.summary()
    logger.info("-" * 73)
    logger.info(
        f"Sweep finished in {report.elapsed_seconds:.1f}s: {summary['workloads']} deployments, "
        f"{summary['excluded']} excluded, {summary['skipped']} skipped, {summary['no_action']} no action, "
        f"{summary['scaled']} scaled, {summary['dry_run']} would scale, {summary['failed']} failed, "
        f"{summary['cancelled']} cancelled"
    )


def write_report(report: SweepReport, path: str):
    with open(path, "w") as f:
        json.dump(report.to_dict(), f, indent=2)
    logger.info(f"Sweep report written to: {path}")


def run_sweep(sweeper: IdleSweeper, cfg: IdleScalerConfig) -> Optional[SweepReport]:
    """Run one sweep with SIGINT/SIGTERM cancelling it; None when the sweep aborted"""
    deadline = SweepDeadline(cfg.sweep_deadline_seconds)

    def handle_signal(signum, frame):
        logger.warning(f"Received signal {signum}, cancelling sweep")
        deadline.cancel()

    previous_handlers = {
        signum: signal.signal(signum, handle_signal) for signum in (signal.SIGTERM, signal.SIGINT)
    }
    try:
        return sweeper.run(deadline)
    except ClusterUnavailableError as e:
        logger.error(f"Sweep aborted: {e}")
        return None
    finally:
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level or "INFO", args.log_file)

    try:
        cfg = load_config(args.config).with_overrides(
            scale_enable=args.scale_enable,
            safe_scale=args.safe_scale,
            max_workers=args.max_workers,
            sweep_deadline_seconds=args.sweep_deadline_seconds,
            kubeconfig_path=args.kubeconfig_path,
            log_level=args.log_level,
            log_file=args.log_file,
        )
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_FATAL

    apply_logging_config(cfg.log_level, cfg.log_file)

    logger.info(f"Safety mode: {SafetyMode.from_flag(cfg.safe_scale).value}, "
                f"flow cross-check: {'enabled' if cfg.use_deepflow else 'disabled'}, "
                f"mode: {'live' if cfg.scale_enable else 'dry run'}")

    metrics_provider = PrometheusProvider(cfg.prometheus_host)
    flow_store = build_flow_store(cfg)
    try:
        try:
            sweeper = build_sweeper(cfg, metrics_provider=metrics_provider, flow_store=flow_store)
        except ClusterUnavailableError as e:
            logger.error(f"Cannot start: {e}")
            return EXIT_FATAL

        report = run_sweep(sweeper, cfg)
        if report is None:
            return EXIT_FATAL
    finally:
        metrics_provider.close()
        if flow_store is not None:
            flow_store.close()

    log_summary(report)
    if args.report_json:
        write_report(report, args.report_json)

    return EXIT_FAILED_ACTIONS if report.actuation_count("failed") else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
