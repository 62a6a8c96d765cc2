from .benchmark import BenchResult, BenchTest, check_throughput
from .blocktimes import BlockTimeRow, read_block_times, write_block_times_csv

__all__ = [
    "BenchResult",
    "BenchTest",
    "BlockTimeRow",
    "check_throughput",
    "read_block_times",
    "write_block_times_csv",
]
