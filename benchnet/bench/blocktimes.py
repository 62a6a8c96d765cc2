"""Per-height block statistics collected from a running network."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from benchnet.rpc.client import Block, NodeRPCClient
from benchnet.shared.errors import BenchmarkError, RPCError

logger = logging.getLogger(__name__)

CSV_HEADER = ["height", "block time", "block size", "last commit round"]


@dataclass(frozen=True)
class BlockTimeRow:
    height: int
    block_time_ns: int
    block_size: int
    last_commit_round: int
    tx_count: int = 0

    @classmethod
    def from_block(cls, block: Block) -> "BlockTimeRow":
        return cls(
            height=block.height,
            block_time_ns=block.time_ns,
            block_size=block.size,
            last_commit_round=block.last_commit_round,
            tx_count=len(block.txs),
        )

    def as_csv(self) -> List[str]:
        return [str(self.height), str(self.block_time_ns), str(self.block_size), str(self.last_commit_round)]


async def read_block_times(
    clients: Sequence[NodeRPCClient],
    start_height: Optional[int] = None,
    end_height: Optional[int] = None,
) -> List[BlockTimeRow]:
    """Read every block in range from the first client that can serve it.

    A failing client is dropped for the rest of the sweep and the same height
    is retried on the next one; running out of clients is an error.
    """
    if not clients:
        raise BenchmarkError("no node clients to read blocks from")

    if start_height is None or end_height is None:
        try:
            status = await clients[0].status()
        except RPCError as exc:
            raise BenchmarkError(f"cannot read chain status: {exc}") from exc
        start_height = status.earliest_block_height if start_height is None else start_height
        end_height = status.latest_block_height if end_height is None else end_height

    rows: List[BlockTimeRow] = []
    index = 0
    height = max(start_height, 1)
    while height <= end_height:
        try:
            block = await clients[index].block(height)
        except RPCError as exc:
            logger.warning({"block_times": {"height": height, "client": index, "error": str(exc)}})
            index += 1
            if index == len(clients):
                raise BenchmarkError(f"all nodes failed to get block at height {height}") from exc
            continue
        rows.append(BlockTimeRow.from_block(block))
        height += 1
    return rows


def write_block_times_csv(rows: Iterable[BlockTimeRow], path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_HEADER)
        for row in rows:
            writer.writerow(row.as_csv())
    logger.info({"block_times": {"csv": str(path)}})
    return path


__all__ = ["BlockTimeRow", "CSV_HEADER", "read_block_times", "write_block_times_csv"]
