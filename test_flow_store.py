"""Tests for the DeepFlow ClickHouse HTTP client."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest
import requests

from exceptions import ProviderQueryError
from flow_store import ClickHouseFlowStore, FLOW_EXISTS_QUERY, POD_ID_QUERY, clickhouse_http_url


def response(payload=None, status_code=200, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    resp.json.return_value = payload
    return resp


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def store(session):
    return ClickHouseFlowStore("clickhouse.deepflow", username="reader", password="secret", session=session)


class TestClickHouseFlowStore:

    def test_resolve_ids_is_parameterized(self, store, session):
        session.post.return_value = response({"data": [{"id": "42"}, {"id": 43}]})
        pod_name = "web-0' OR '1'='1"

        assert store.resolve_ids(pod_name, timeout=2.0) == [42, 43]

        args, kwargs = session.post.call_args
        assert args[0] == "http://clickhouse.deepflow:8123/"
        assert kwargs["data"] == POD_ID_QUERY.encode("utf-8")
        assert pod_name.encode("utf-8") not in kwargs["data"]
        assert kwargs["params"]["param_name"] == pod_name
        assert kwargs["params"]["max_execution_time"] == 2
        assert kwargs["auth"] == ("reader", "secret")
        assert kwargs["timeout"] == 2.0

    def test_resolve_ids_empty(self, store, session):
        session.post.return_value = response({"data": []})
        assert store.resolve_ids("web-0", timeout=2.0) == []

    def test_has_flow_since(self, store, session):
        session.post.return_value = response({"data": [{"found": 1}]})
        assert store.has_flow_since(42, datetime(2026, 10, 12, 15, 30), timeout=3.0) is True

        _, kwargs = session.post.call_args
        assert kwargs["data"] == FLOW_EXISTS_QUERY.encode("utf-8")
        assert kwargs["params"]["param_pod_id"] == 42
        assert kwargs["params"]["param_cutoff"] == "2026-10-12 00:00:00.000"

    def test_has_no_flow(self, store, session):
        session.post.return_value = response({"data": [{"found": 0}]})
        assert store.has_flow_since(42, datetime(2026, 10, 12), timeout=3.0) is False

    def test_server_error(self, store, session):
        session.post.return_value = response(status_code=500, text="Code: 60. DB::Exception: Table doesn't exist")
        with pytest.raises(ProviderQueryError, match="HTTP 500"):
            store.resolve_ids("web-0", timeout=2.0)

    def test_timeout(self, store, session):
        session.post.side_effect = requests.exceptions.ConnectTimeout("timed out")
        with pytest.raises(ProviderQueryError, match="timed out"):
            store.has_flow_since(1, datetime(2026, 10, 12), timeout=1.0)

    def test_malformed_rows(self, store, session):
        session.post.return_value = response({"data": [{"name": "web-0"}]})
        with pytest.raises(ProviderQueryError):
            store.resolve_ids("web-0", timeout=2.0)

    def test_missing_exists_row(self, store, session):
        session.post.return_value = response({"data": []})
        with pytest.raises(ProviderQueryError):
            store.has_flow_since(1, datetime(2026, 10, 12), timeout=1.0)


@pytest.mark.parametrize("host,expected", [
    ("clickhouse", "http://clickhouse:8123/"),
    ("clickhouse:18123", "http://clickhouse:18123/"),
    ("https://ch.example.com", "https://ch.example.com:8123/"),
    ("https://ch.example.com:8443/", "https://ch.example.com:8443/"),
])
def test_clickhouse_http_url(host, expected):
    assert clickhouse_http_url(host) == expected
