# deployment_engine/health/rpc.py

import itertools
from typing import Any, List, Optional

import requests

from deployment_engine.core.errors import RpcError


class JsonRpcClient:
    """Minimal JSON-RPC 2.0 client for the local blockchain node."""

    def __init__(self, url: str = "http://localhost:8545", timeout: float = 5):
        self.url = url
        self.timeout = timeout
        self._ids = itertools.count(1)

    def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": next(self._ids),
        }
        try:
            response = requests.post(self.url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise RpcError(f"RPC {method} failed: {e}")

        if response.status_code != 200:
            raise RpcError(f"RPC {method} failed [{response.status_code}]: {response.text[:200]}")

        try:
            body = response.json()
        except ValueError:
            raise RpcError(f"RPC {method} returned non-JSON response")

        if not isinstance(body, dict):
            raise RpcError(f"RPC {method} returned unexpected payload")
        if body.get("error"):
            raise RpcError(f"RPC {method} error: {body['error']}")
        if "result" not in body:
            raise RpcError(f"RPC {method} response has no result")
        return body["result"]
