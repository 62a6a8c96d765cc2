from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from benchnet.shared.cli import sanitize_url_for_log
from benchnet.shared.errors import RPCError

logger = logging.getLogger(__name__)

_RFC3339_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d{1,9}))?(Z|[+-]\d{2}:\d{2})$"
)


def parse_rfc3339_nanos(value: str) -> int:
    """Parse a node timestamp (nanosecond precision) to Unix nanoseconds."""
    match = _RFC3339_RE.match(value.strip())
    if match is None:
        raise ValueError(f"invalid RFC3339 timestamp: {value!r}")
    base, fraction, offset = match.groups()
    tz = "+00:00" if offset == "Z" else offset
    moment = datetime.fromisoformat(f"{base}{tz}").astimezone(timezone.utc)
    nanos = int((fraction or "0").ljust(9, "0"))
    whole = int(moment.timestamp())
    return whole * 1_000_000_000 + nanos


@dataclass
class NodeStatus:
    latest_block_height: int
    earliest_block_height: int
    catching_up: bool


@dataclass
class Block:
    height: int
    time_ns: int
    txs: List[bytes] = field(default_factory=list)
    last_commit_round: int = 0

    @property
    def size(self) -> int:
        """Bytes of transaction data in the block."""
        return sum(len(tx) for tx in self.txs)


class NodeRPCClient:
    """
    Async client for a node's JSON-over-HTTP status endpoint.

    - Single attempt per call; callers that poll own the retry budget
    - Every transport, HTTP or payload failure surfaces as ``RPCError``
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if "://" not in base_url:
            base_url = f"http://{base_url}"
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "NodeRPCClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def status(self) -> NodeStatus:
        result = await self._call("status")
        try:
            sync = result["sync_info"]
            return NodeStatus(
                latest_block_height=int(sync["latest_block_height"]),
                earliest_block_height=int(sync.get("earliest_block_height", 0)),
                catching_up=bool(sync.get("catching_up", False)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise RPCError(f"malformed status payload from {self._safe_url}: {exc}") from exc

    async def block(self, height: Optional[int] = None) -> Block:
        params = {"height": str(height)} if height is not None else None
        result = await self._call("block", params)
        try:
            block = result["block"]
            header = block["header"]
            raw_txs = (block.get("data") or {}).get("txs") or []
            return Block(
                height=int(header["height"]),
                time_ns=parse_rfc3339_nanos(header["time"]),
                txs=[base64.b64decode(tx) for tx in raw_txs],
                last_commit_round=int((block.get("last_commit") or {}).get("round", 0)),
            )
        except (KeyError, TypeError, ValueError, binascii.Error) as exc:
            raise RPCError(f"malformed block payload from {self._safe_url}: {exc}") from exc

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @property
    def _safe_url(self) -> str:
        return sanitize_url_for_log(self.base_url)

    async def _call(self, method: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/{method}"
        try:
            resp = await self._client.get(url, params=params)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as exc:
            raise RPCError(
                f"{method} returned {exc.response.status_code} from {self._safe_url}"
            ) from exc
        except (httpx.RequestError, httpx.TimeoutException) as exc:
            raise RPCError(f"{method} failed for {self._safe_url}: {exc}") from exc
        except ValueError as exc:
            raise RPCError(f"{method} returned invalid JSON from {self._safe_url}") from exc

        if not isinstance(payload, dict):
            raise RPCError(f"{method} returned unexpected payload from {self._safe_url}")
        if payload.get("error"):
            error = payload["error"]
            detail = error.get("data") or error.get("message") if isinstance(error, dict) else error
            raise RPCError(f"{method} error from {self._safe_url}: {detail}")
        result = payload.get("result")
        if not isinstance(result, dict):
            raise RPCError(f"{method} returned no result from {self._safe_url}")
        logger.debug({"rpc": {"method": method, "url": self._safe_url}})
        return result


__all__ = ["Block", "NodeRPCClient", "NodeStatus", "parse_rfc3339_nanos"]
