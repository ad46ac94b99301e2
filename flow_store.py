#!/usr/bin/env python3
"""
DeepFlow Flow Store
===================

Record-store client for the DeepFlow ClickHouse tables, spoken over the
ClickHouse HTTP interface. Queries are always sent with server-side
parameters (param_*), never by splicing values into SQL text.
"""

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import requests

from exceptions import ProviderQueryError

logger = logging.getLogger(__name__)

DEFAULT_HTTP_PORT = 8123

POD_ID_QUERY = "SELECT id FROM flow_tag.pod_map WHERE name = {name:String} FORMAT JSON"

FLOW_EXISTS_QUERY = (
    "SELECT EXISTS("
    "SELECT 1 FROM flow_log.l7_flow_log "
    "WHERE (pod_id_0 = {pod_id:UInt64} OR pod_id_1 = {pod_id:UInt64}) "
    "AND end_time > {cutoff:DateTime64(3)} LIMIT 1"
    ") AS found FORMAT JSON"
)

CUTOFF_FORMAT = "%Y-%m-%d 00:00:00.000"


def clickhouse_http_url(host: str, default_port: int = DEFAULT_HTTP_PORT) -> str:
    """Turn host, host:port or a full URL into the HTTP interface base URL"""
    if "://" not in host:
        host = f"http://{host}"
    parts = urlsplit(host)
    netloc = parts.netloc
    if parts.port is None:
        netloc = f"{netloc}:{default_port}"
    return f"{parts.scheme}://{netloc}{parts.path}".rstrip("/") + "/"


class ClickHouseFlowStore:
    """Name-to-id resolution and id-keyed flow existence checks"""

    def __init__(self, host: str, username: str = "default", password: str = "",
                 session: Optional[requests.Session] = None,
                 default_port: int = DEFAULT_HTTP_PORT):
        self.url = clickhouse_http_url(host, default_port)
        self.auth = (username, password)
        self.session = session or requests.Session()

    def _query(self, sql: str, params: Dict[str, Any], timeout: float) -> List[Dict[str, Any]]:
        query_params = {f"param_{k}": v for k, v in params.items()}
        query_params["max_execution_time"] = max(1, math.ceil(timeout))
        query_params["output_format_json_quote_64bit_integers"] = 0
        try:
            response = self.session.post(
                self.url,
                params=query_params,
                data=sql.encode("utf-8"),
                auth=self.auth,
                timeout=timeout,
            )
        except requests.exceptions.Timeout as e:
            raise ProviderQueryError("Flow store query timed out", context=params, cause=e)
        except requests.exceptions.RequestException as e:
            raise ProviderQueryError("Flow store request failed", context=params, cause=e)

        if response.status_code != 200:
            raise ProviderQueryError(
                f"Flow store returned HTTP {response.status_code}: {response.text.strip()[:200]}",
                context=params,
            )
        try:
            return list(response.json()["data"])
        except (ValueError, KeyError, TypeError) as e:
            raise ProviderQueryError("Malformed flow store response", context=params, cause=e)

    def resolve_ids(self, pod_name: str, timeout: float) -> List[int]:
        """All flow_tag ids recorded for a pod name (may be several)"""
        rows = self._query(POD_ID_QUERY, {"name": pod_name}, timeout)
        try:
            return [int(row["id"]) for row in rows]
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderQueryError("Malformed pod_map row", context={"name": pod_name}, cause=e)

    def has_flow_since(self, pod_id: int, cutoff: datetime, timeout: float) -> bool:
        """Whether any L7 flow has this pod id at either end and ended after the cutoff"""
        params = {"pod_id": pod_id, "cutoff": cutoff.strftime(CUTOFF_FORMAT)}
        rows = self._query(FLOW_EXISTS_QUERY, params, timeout)
        if len(rows) != 1:
            raise ProviderQueryError(f"Expected one EXISTS row, got {len(rows)}", context=params)
        try:
            return int(rows[0]["found"]) != 0
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderQueryError("Malformed EXISTS row", context=params, cause=e)

    def close(self):
        self.session.close()
