"""Per-instance resource footprints.

Quantities use Kubernetes notation ("200Mi", "300m") so the same values
can be handed to a cluster scheduler or converted for the Docker CLI.
"""

from __future__ import annotations

import re
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

_QUANTITY_RE = re.compile(r"^\s*([0-9]+(?:\.[0-9]+)?)\s*([A-Za-z]*)\s*$")

_BINARY_SUFFIXES = {
    "Ki": 1 << 10,
    "Mi": 1 << 20,
    "Gi": 1 << 30,
    "Ti": 1 << 40,
}

_DECIMAL_SUFFIXES = {
    "": 1,
    "k": 10**3,
    "K": 10**3,
    "M": 10**6,
    "G": 10**9,
    "T": 10**12,
}


def parse_memory_quantity(value: str) -> int:
    """Convert a memory quantity such as ``200Mi`` or ``1G`` to bytes."""
    match = _QUANTITY_RE.match(str(value))
    if not match:
        raise ValueError(f"invalid memory quantity: {value!r}")
    number, suffix = match.groups()
    multiplier = _BINARY_SUFFIXES.get(suffix) or _DECIMAL_SUFFIXES.get(suffix)
    if multiplier is None:
        raise ValueError(f"unknown unit in memory quantity: {value!r}")
    return int(Decimal(number) * multiplier)


def parse_cpu_quantity(value: str) -> Decimal:
    """Convert a CPU quantity such as ``300m`` or ``2`` to cores."""
    match = _QUANTITY_RE.match(str(value))
    if not match:
        raise ValueError(f"invalid cpu quantity: {value!r}")
    number, suffix = match.groups()
    if suffix == "m":
        return Decimal(number) / Decimal(1000)
    if suffix:
        raise ValueError(f"unknown unit in cpu quantity: {value!r}")
    return Decimal(number)


class Resources(BaseModel):
    """Resource footprint of one deployed instance."""

    memory_request: str = Field(default="200Mi", description="Memory the scheduler reserves.")
    memory_limit: str = Field(default="200Mi", description="Hard memory ceiling.")
    cpu: str = Field(default="300m", description="CPU allotment (cores or millicores).")
    volume: str = Field(default="1Gi", description="Size of the data volume.")

    @field_validator("memory_request", "memory_limit", "volume")
    @classmethod
    def _check_memory(cls, value: str) -> str:
        parse_memory_quantity(value)
        return value

    @field_validator("cpu")
    @classmethod
    def _check_cpu(cls, value: str) -> str:
        parse_cpu_quantity(value)
        return value

    @property
    def memory_limit_bytes(self) -> int:
        return parse_memory_quantity(self.memory_limit)

    @property
    def memory_request_bytes(self) -> int:
        return parse_memory_quantity(self.memory_request)

    @property
    def cpu_cores(self) -> Decimal:
        return parse_cpu_quantity(self.cpu)


DEFAULT_RESOURCES = Resources(
    memory_request="200Mi",
    memory_limit="200Mi",
    cpu="300m",
    volume="1Gi",
)

MAX_VALIDATOR_RESOURCES = Resources(
    memory_request="10Gi",
    memory_limit="12Gi",
    cpu="6",
    volume="1Gi",
)

MAX_TX_CLIENT_RESOURCES = Resources(
    memory_request="1Gi",
    memory_limit="1Gi",
    cpu="2",
    volume="1Gi",
)

__all__ = [
    "Resources",
    "DEFAULT_RESOURCES",
    "MAX_VALIDATOR_RESOURCES",
    "MAX_TX_CLIENT_RESOURCES",
    "parse_memory_quantity",
    "parse_cpu_quantity",
]
