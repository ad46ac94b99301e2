"""Tests for the Prometheus range-query client."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest
import requests

from exceptions import ProviderQueryError
from prometheus_provider import PrometheusProvider, TrafficWindow, normalize_base_url
from scaling_decision import WindowSignal
from window_rate import WindowRateEvaluator

START = datetime(2026, 10, 19, 0, 0, 0)
END = datetime(2026, 10, 19, 12, 0, 0)


def response(payload, status_code=200):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload
    return resp


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


def matrix(*series, warnings=None):
    payload = {
        "status": "success",
        "data": {"resultType": "matrix", "result": list(series)},
    }
    if warnings:
        payload["warnings"] = warnings
    return payload


class TestPrometheusProvider:

    def test_parses_matrix(self, session):
        session.get.return_value = response(matrix(
            {"metric": {"pod": "web-0", "interface": "eth0"},
             "values": [[1760832000, "0"], [1760832060, "0.0004"]]},
        ))
        series, warnings = PrometheusProvider("prom:9090", session=session).range_query(
            "up", START, END, 60, 10.0)

        assert warnings == []
        assert len(series) == 1
        assert series[0].labels == {"pod": "web-0", "interface": "eth0"}
        assert series[0].samples == [(1760832000.0, 0.0), (1760832060.0, 0.0004)]

    def test_request_parameters(self, session):
        session.get.return_value = response(matrix())
        PrometheusProvider("http://prom:9090/", session=session).range_query("up", START, END, 60, 10.0)

        args, kwargs = session.get.call_args
        assert args[0] == "http://prom:9090/api/v1/query_range"
        assert kwargs["timeout"] == 10.0
        params = kwargs["params"]
        assert params["query"] == "up"
        assert params["step"] == "60s"
        assert params["timeout"] == "5s"
        assert float(params["start"]) == START.timestamp()
        assert float(params["end"]) == END.timestamp()

    def test_returns_warnings(self, session):
        session.get.return_value = response(matrix(warnings=["query hit max samples"]))
        _, warnings = PrometheusProvider("prom", session=session).range_query("up", START, END, 60, 10.0)
        assert warnings == ["query hit max samples"]

    def test_timeout_raises_provider_error(self, session):
        session.get.side_effect = requests.exceptions.ReadTimeout("read timed out")
        with pytest.raises(ProviderQueryError, match="timed out"):
            PrometheusProvider("prom", session=session).range_query("up", START, END, 60, 10.0)

    def test_connection_error_raises_provider_error(self, session):
        session.get.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(ProviderQueryError):
            PrometheusProvider("prom", session=session).range_query("up", START, END, 60, 10.0)

    def test_error_status(self, session):
        session.get.return_value = response(
            {"status": "error", "errorType": "bad_data", "error": "parse error"}, status_code=400)
        with pytest.raises(ProviderQueryError, match="bad_data: parse error"):
            PrometheusProvider("prom", session=session).range_query("up(", START, END, 60, 10.0)

    def test_non_matrix_result(self, session):
        session.get.return_value = response(
            {"status": "success", "data": {"resultType": "vector", "result": []}})
        with pytest.raises(ProviderQueryError, match="vector"):
            PrometheusProvider("prom", session=session).range_query("up", START, END, 60, 10.0)

    def test_non_json_body(self, session):
        resp = MagicMock()
        resp.status_code = 502
        resp.json.side_effect = ValueError("no json")
        session.get.return_value = resp
        with pytest.raises(ProviderQueryError, match="HTTP 502"):
            PrometheusProvider("prom", session=session).range_query("up", START, END, 60, 10.0)

    def test_out_of_order_samples_are_malformed(self, session):
        session.get.return_value = response(matrix(
            {"metric": {}, "values": [[1760832060, "0"], [1760832000, "0"]]},
        ))
        with pytest.raises(ProviderQueryError, match="Malformed"):
            PrometheusProvider("prom", session=session).range_query("up", START, END, 60, 10.0)

    @pytest.mark.parametrize("payload", [
        {"status": "success", "data": ["oops"]},
        {"status": "success", "data": "matrix"},
        {"status": "success", "data": {"resultType": "matrix", "result": {"metric": {}}}},
    ])
    def test_malformed_data_raises_provider_error(self, session, payload):
        session.get.return_value = response(payload)
        with pytest.raises(ProviderQueryError, match="Malformed"):
            PrometheusProvider("prom", session=session).range_query("up", START, END, 60, 10.0)

    def test_malformed_data_is_inconclusive_for_evaluator(self, session):
        session.get.return_value = response({"status": "success", "data": ["oops"]})
        evaluator = WindowRateEvaluator(PrometheusProvider("prom", session=session),
                                        clock=lambda: END)
        signal, reason = evaluator.evaluate("default", "web-0")
        assert signal == WindowSignal.INCONCLUSIVE
        assert "Malformed" in reason


class TestTrafficWindow:

    def test_rejects_negative_rate(self):
        with pytest.raises(ValueError):
            TrafficWindow({}, [(1.0, -0.5)])

    def test_rejects_repeated_timestamp(self):
        with pytest.raises(ValueError):
            TrafficWindow({}, [(1.0, 0.0), (1.0, 0.0)])

    @pytest.mark.parametrize("host,expected", [
        ("prom:9090", "http://prom:9090"),
        ("https://prom.example.com/", "https://prom.example.com"),
    ])
    def test_normalize_base_url(self, host, expected):
        assert normalize_base_url(host) == expected
