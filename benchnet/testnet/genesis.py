"""Genesis document construction.

The genesis document is a pure function of the validator nodes, the funded
accounts and the modifier list. Everything random was consumed earlier by
the key generator, so identical inputs always produce identical bytes.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from benchnet.shared.errors import GenesisError, NoValidatorsError

from .accounts import GenesisAccount
from .keygen import KeyPair

BOND_DENOM = "utia"
POWER_REDUCTION = 1_000_000
VALIDATOR_FEE_BUFFER = 1_000_000_000

Modifier = Callable[[Dict[str, Any]], Dict[str, Any]]


class GenesisParticipant(Protocol):
    name: str
    start_height: int
    self_delegation: int

    @property
    def signing_key(self) -> KeyPair: ...

    @property
    def account_key(self) -> KeyPair: ...


def default_consensus_params() -> Dict[str, Any]:
    return {
        "block": {"max_bytes": "1974272", "max_gas": "-1", "time_iota_ms": "1"},
        "evidence": {
            "max_age_num_blocks": "100000",
            "max_age_duration": "172800000000000",
            "max_bytes": "1048576",
        },
        "validator": {"pub_key_types": ["ed25519"]},
        "version": {"app_version": "1"},
    }


def format_genesis_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def validator_power(self_delegation: int) -> int:
    return max(1, self_delegation // POWER_REDUCTION)


@dataclass(frozen=True)
class GenesisDocument:
    """Finished genesis. ``to_json`` is canonical so every node gets the same bytes."""

    data: Mapping[str, Any]

    @property
    def chain_id(self) -> str:
        return self.data["chain_id"]

    @property
    def validators(self) -> List[Dict[str, Any]]:
        return list(self.data.get("validators", []))

    def validator_names(self) -> List[str]:
        return [v["name"] for v in self.validators]

    def to_json(self) -> bytes:
        return json.dumps(self.data, sort_keys=True, indent=2).encode("utf-8")


class GenesisBuilder:
    def __init__(
        self,
        chain_id: str,
        genesis_time: datetime,
        consensus_params: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.chain_id = chain_id
        self.genesis_time = genesis_time
        self.consensus_params = copy.deepcopy(
            dict(consensus_params) if consensus_params is not None else default_consensus_params()
        )

    def build(
        self,
        genesis_nodes: Sequence[GenesisParticipant],
        accounts: Sequence[GenesisAccount],
        modifiers: Iterable[Modifier] = (),
    ) -> GenesisDocument:
        if not genesis_nodes:
            raise NoValidatorsError("no validators: the genesis node set is empty")
        late = [n.name for n in genesis_nodes if n.start_height != 0]
        if late:
            raise GenesisError(f"nodes with non-zero start height cannot be in genesis: {late}")

        validators = [n for n in genesis_nodes if n.self_delegation > 0]
        if not validators:
            raise NoValidatorsError("no validators: every genesis node has zero self-delegation")

        names = [a.name for a in accounts] + [n.name for n in genesis_nodes]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise GenesisError(f"duplicate genesis participants: {duplicates}")

        document = self._base_document(validators, accounts)
        for modifier in modifiers:
            document = self._apply(modifier, document)
        return GenesisDocument(data=document)

    def _apply(self, modifier: Modifier, document: Dict[str, Any]) -> Dict[str, Any]:
        label = getattr(modifier, "__name__", repr(modifier))
        try:
            result = modifier(copy.deepcopy(document))
        except Exception as exc:
            raise GenesisError(f"genesis modifier {label} failed: {exc}") from exc
        if not isinstance(result, dict):
            raise GenesisError(
                f"genesis modifier {label} returned {type(result).__name__}, expected a mapping"
            )
        return result

    def _base_document(
        self,
        validators: Sequence[GenesisParticipant],
        accounts: Sequence[GenesisAccount],
    ) -> Dict[str, Any]:
        auth_accounts: List[Dict[str, Any]] = []
        balances: List[Dict[str, Any]] = []
        gen_txs: List[Dict[str, Any]] = []
        validator_entries: List[Dict[str, Any]] = []

        def fund(address: str, amount: int) -> None:
            auth_accounts.append(
                {
                    "@type": "/cosmos.auth.v1beta1.BaseAccount",
                    "address": address,
                    "pub_key": None,
                    "account_number": str(len(auth_accounts)),
                    "sequence": "0",
                }
            )
            balances.append(
                {"address": address, "coins": [{"denom": BOND_DENOM, "amount": str(amount)}]}
            )

        for account in accounts:
            fund(account.address, account.initial_tokens)

        for node in validators:
            account_address = node.account_key.address
            fund(account_address, node.self_delegation + VALIDATOR_FEE_BUFFER)
            gen_txs.append(_create_validator_tx(node))
            validator_entries.append(
                {
                    "address": node.signing_key.address,
                    "pub_key": node.signing_key.comet_public_key(),
                    "power": str(validator_power(node.self_delegation)),
                    "name": node.name,
                }
            )

        return {
            "chain_id": self.chain_id,
            "genesis_time": format_genesis_time(self.genesis_time),
            "initial_height": "1",
            "consensus_params": copy.deepcopy(self.consensus_params),
            "validators": validator_entries,
            "app_hash": "",
            "app_state": {
                "auth": {"accounts": auth_accounts},
                "bank": {"balances": balances},
                "genutil": {"gen_txs": gen_txs},
                "staking": {"params": {"bond_denom": BOND_DENOM}},
                "gov": {
                    "deposit_params": {
                        "min_deposit": [{"denom": BOND_DENOM, "amount": "10000000000"}],
                        "max_deposit_period": "604800s",
                    },
                    "voting_params": {"voting_period": "604800s"},
                },
                "blob": {"params": {"gas_per_blob_byte": 8, "gov_max_square_size": "64"}},
            },
        }


def _create_validator_tx(node: GenesisParticipant) -> Dict[str, Any]:
    address = node.account_key.address
    return {
        "body": {
            "messages": [
                {
                    "@type": "/cosmos.staking.v1beta1.MsgCreateValidator",
                    "description": {"moniker": node.name},
                    "commission": {
                        "rate": "0.100000000000000000",
                        "max_rate": "0.200000000000000000",
                        "max_change_rate": "0.010000000000000000",
                    },
                    "min_self_delegation": "1",
                    "delegator_address": address,
                    "validator_address": address,
                    "pubkey": {
                        "@type": "/cosmos.crypto.ed25519.PubKey",
                        "key": node.signing_key.public_key_b64,
                    },
                    "value": {"denom": BOND_DENOM, "amount": str(node.self_delegation)},
                }
            ],
            "memo": node.name,
        },
        "auth_info": {
            "signer_infos": [
                {
                    "public_key": {
                        "@type": "/cosmos.crypto.secp256k1.PubKey",
                        "key": node.account_key.public_key_b64,
                    },
                    "sequence": "0",
                }
            ]
        },
    }


# ---------------------------------------------------------------------------
# Modifiers
# ---------------------------------------------------------------------------


def set_blob_params(gov_max_square_size: int = 64, gas_per_blob_byte: int = 8) -> Modifier:
    if gov_max_square_size <= 0 or gov_max_square_size & (gov_max_square_size - 1):
        raise GenesisError("gov_max_square_size must be a positive power of two")

    def set_blob_params_modifier(document: Dict[str, Any]) -> Dict[str, Any]:
        params = document["app_state"].setdefault("blob", {}).setdefault("params", {})
        params["gov_max_square_size"] = str(gov_max_square_size)
        params["gas_per_blob_byte"] = gas_per_blob_byte
        return document

    return set_blob_params_modifier


def immediate_proposals() -> Modifier:
    """Shrink deposit and voting periods so governance is usable from block one."""

    def immediate_proposals_modifier(document: Dict[str, Any]) -> Dict[str, Any]:
        gov = document["app_state"].setdefault("gov", {})
        deposit = gov.setdefault("deposit_params", {})
        deposit["min_deposit"] = [{"denom": BOND_DENOM, "amount": "1"}]
        deposit["max_deposit_period"] = "1s"
        gov.setdefault("voting_params", {})["voting_period"] = "1s"
        return document

    return immediate_proposals_modifier


def set_consensus_params(
    max_block_bytes: Optional[int] = None,
    app_version: Optional[int] = None,
) -> Modifier:
    def set_consensus_params_modifier(document: Dict[str, Any]) -> Dict[str, Any]:
        params = document.setdefault("consensus_params", {})
        if max_block_bytes is not None:
            if max_block_bytes <= 0:
                raise ValueError("max_block_bytes must be positive")
            params.setdefault("block", {})["max_bytes"] = str(max_block_bytes)
        if app_version is not None:
            params.setdefault("version", {})["app_version"] = str(app_version)
        return document

    return set_consensus_params_modifier


__all__ = [
    "BOND_DENOM",
    "GenesisBuilder",
    "GenesisDocument",
    "Modifier",
    "default_consensus_params",
    "format_genesis_time",
    "immediate_proposals",
    "set_blob_params",
    "set_consensus_params",
    "validator_power",
]
