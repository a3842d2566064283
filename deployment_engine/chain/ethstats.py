# deployment_engine/chain/ethstats.py
"""Ethstats primus endpoint: ask for the current node list."""

import asyncio
import json
import logging
import time
from typing import List

import websockets
from websockets.exceptions import WebSocketException

logger = logging.getLogger(__name__)

READY_MESSAGE = json.dumps({"emit": ["ready"]})
DEFAULT_TIMEOUT = 10


def parse_enodes(message) -> List[str]:
    """
    Pull ``enode://`` URLs out of an ``{"emit": [name, {"nodes": [...]}]}`` frame.

    Anything that does not have that shape yields an empty list.
    """
    try:
        payload = json.loads(message) if isinstance(message, (str, bytes)) else message
        nodes = payload["emit"][1]["nodes"]
    except (ValueError, KeyError, IndexError, TypeError):
        return []

    found = []

    def walk(value):
        if isinstance(value, str):
            if value.startswith("enode://") and value not in found:
                found.append(value)
        elif isinstance(value, dict):
            for v in value.values():
                walk(v)
        elif isinstance(value, list):
            for v in value:
                walk(v)

    walk(nodes)
    return found


class EthstatsClient:

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout

    async def fetch_enodes_async(self, endpoint: str) -> List[str]:
        deadline = time.monotonic() + self.timeout
        async with websockets.connect(endpoint, open_timeout=self.timeout) as ws:
            await ws.send(READY_MESSAGE)
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return []
                try:
                    message = await asyncio.wait_for(ws.recv(), timeout=remaining)
                except asyncio.TimeoutError:
                    return []
                enodes = parse_enodes(message)
                if enodes:
                    return enodes

    def fetch_enodes(self, endpoint: str) -> List[str]:
        """Blocking wrapper; connection errors yield an empty list."""
        try:
            return asyncio.run(self.fetch_enodes_async(endpoint))
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.warning(f"Ethstats query failed: {e}")
            return []
