"""Chain client adapters (web3 + dry-run)."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, Sequence

from .errors import RevertError, TransportError
from .ids import canonical_args, dry_run_account, dry_run_address, dry_run_tx_hash
from .security import redact_rpc_url

logger = logging.getLogger(__name__)

_TRANSIENT_MARKERS = (
    "nonce too low",
    "nonce too high",
    "replacement transaction underpriced",
    "already known",
    "timeout",
    "timed out",
    "header not found",
    "rate limit",
    "too many requests",
)


@dataclass(frozen=True)
class DeploymentReceipt:
    address: str
    tx_hash: str | None = None


class ChainClient(Protocol):
    def accounts(self) -> dict[str, str]:
        ...

    def submit(self, contract_name: str, constructor_args: Sequence[Any]) -> DeploymentReceipt:
        ...

    def transact(self, contract_name: str, address: str, method: str, args: Sequence[Any]) -> str | None:
        ...


class DryRunChainClient:
    """Deterministic stand-in that never touches a network.

    Addresses derive from (network, contract, args); repeated identical deploys get a fresh
    salt so each call still yields a distinct address.
    """

    def __init__(self, network: str, named_accounts: dict[str, str] | None = None) -> None:
        self.network = network
        self._accounts = {"deployer": dry_run_account(f"{network}|deployer"), **(named_accounts or {})}
        self._issued: dict[str, int] = {}
        self.calls: list[tuple[str, str, tuple[Any, ...]]] = []

    def accounts(self) -> dict[str, str]:
        return dict(self._accounts)

    def submit(self, contract_name: str, constructor_args: Sequence[Any]) -> DeploymentReceipt:
        base = dry_run_address(self.network, contract_name, tuple(constructor_args))
        salt = self._issued.get(base, 0)
        self._issued[base] = salt + 1
        address = base if salt == 0 else dry_run_address(self.network, contract_name, tuple(constructor_args), salt)
        self.calls.append(("submit", contract_name, tuple(constructor_args)))
        return DeploymentReceipt(address=address, tx_hash=dry_run_tx_hash(self.network, address))

    def transact(self, contract_name: str, address: str, method: str, args: Sequence[Any]) -> str | None:
        self.calls.append(("transact", f"{contract_name}.{method}", tuple(args)))
        return dry_run_tx_hash(self.network, address, method, *args)


class ArtifactLoader:
    """Reads compiled contract JSON (``abi`` + ``bytecode``) from a Hardhat-style build tree."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._cache: dict[str, dict[str, Any]] = {}

    def load(self, contract_name: str) -> dict[str, Any]:
        if contract_name in self._cache:
            return self._cache[contract_name]
        candidates = [
            path
            for path in sorted(self.root.rglob(f"{contract_name}.json"))
            if not path.name.endswith(".dbg.json")
        ]
        if not candidates:
            raise RevertError(f"ARTIFACT_MISSING:{contract_name} under {self.root}")
        data = json.loads(candidates[0].read_text(encoding="utf-8"))
        if "abi" not in data:
            raise RevertError(f"ARTIFACT_INVALID:{candidates[0]} has no abi")
        self._cache[contract_name] = data
        return data


class Web3ChainClient:
    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        artifacts_root: Path,
        *,
        chain_id: int | None = None,
        request_timeout_seconds: int = 30,
        confirm_timeout_seconds: int = 180,
        named_accounts: dict[str, str] | None = None,
    ) -> None:
        from eth_account import Account
        from web3 import Web3

        self._web3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout_seconds}))
        self._account = Account.from_key(private_key)
        self._artifacts = ArtifactLoader(artifacts_root)
        self._chain_id = chain_id
        self._confirm_timeout_seconds = confirm_timeout_seconds
        self._named_accounts = dict(named_accounts or {})
        self._rpc_label = redact_rpc_url(rpc_url)
        self._pending: dict[str, Any] = {}

    @classmethod
    def from_profile(cls, profile: Any) -> "Web3ChainClient":
        if not profile.rpc_url:
            raise ValueError(f"rpc_url missing for network {profile.network}")
        private_key = os.getenv(profile.private_key_env, "").strip()
        if not private_key:
            raise ValueError(f"missing environment variable: {profile.private_key_env}")
        return cls(
            profile.rpc_url,
            private_key,
            Path(profile.artifacts_root),
            chain_id=profile.chain_id,
            request_timeout_seconds=profile.request_timeout_seconds,
            confirm_timeout_seconds=profile.confirm_timeout_seconds,
            named_accounts=profile.named_accounts,
        )

    def accounts(self) -> dict[str, str]:
        accounts = dict(self._named_accounts)
        accounts["deployer"] = self._account.address
        return accounts

    def submit(self, contract_name: str, constructor_args: Sequence[Any]) -> DeploymentReceipt:
        artifact = self._artifacts.load(contract_name)
        bytecode = artifact.get("bytecode")
        if not bytecode or bytecode == "0x":
            raise RevertError(f"ARTIFACT_NOT_DEPLOYABLE:{contract_name} has no bytecode")
        contract = self._web3.eth.contract(abi=artifact["abi"], bytecode=bytecode)
        receipt = self._send(
            lambda tx: contract.constructor(*constructor_args).build_transaction(tx),
            pending_key=f"deploy|{contract_name}|{canonical_args(tuple(constructor_args))}",
        )
        address = receipt.get("contractAddress")
        if not address:
            raise RevertError(f"NO_CONTRACT_ADDRESS:{contract_name}")
        return DeploymentReceipt(address=str(address), tx_hash=receipt["transactionHash"].to_0x_hex())

    def transact(self, contract_name: str, address: str, method: str, args: Sequence[Any]) -> str | None:
        from web3.exceptions import Web3Exception

        artifact = self._artifacts.load(contract_name)
        try:
            contract = self._web3.eth.contract(address=self._web3.to_checksum_address(address), abi=artifact["abi"])
            function = contract.get_function_by_name(method)
        except (Web3Exception, ValueError) as exc:
            raise RevertError(f"CALL_INVALID:{contract_name}.{method}: {exc}") from exc
        receipt = self._send(
            lambda tx: function(*args).build_transaction(tx),
            pending_key=f"call|{address.lower()}|{method}|{canonical_args(tuple(args))}",
        )
        return receipt["transactionHash"].to_0x_hex()

    def _send(self, build: Any, pending_key: str) -> Any:
        """Sign, submit and confirm one transaction.

        A transaction that was broadcast but not confirmed stays pending under ``pending_key``;
        the next attempt with the same key waits on it instead of broadcasting a duplicate.
        """
        import requests
        from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

        try:
            tx_hash = self._pending.get(pending_key)
            if tx_hash is None:
                tx: dict[str, Any] = {
                    "from": self._account.address,
                    "nonce": self._web3.eth.get_transaction_count(self._account.address, "pending"),
                }
                if self._chain_id is not None:
                    tx["chainId"] = self._chain_id
                signed = self._account.sign_transaction(build(tx))
                tx_hash = self._web3.eth.send_raw_transaction(signed.raw_transaction)
                self._pending[pending_key] = tx_hash
                logger.info("DEPLOY: transaction submitted (rpc=%s tx=%s)", self._rpc_label, tx_hash.to_0x_hex())
            else:
                logger.info("DEPLOY: awaiting previously submitted transaction (tx=%s)", tx_hash.to_0x_hex())
            receipt = self._web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._confirm_timeout_seconds)
        except ContractLogicError as exc:
            raise RevertError(f"CONTRACT_LOGIC_ERROR:{exc}") from exc
        except TimeExhausted as exc:
            raise TransportError(f"CONFIRMATION_TIMEOUT:{exc}") from exc
        except requests.exceptions.RequestException as exc:
            raise TransportError(f"RPC_UNAVAILABLE:{self._rpc_label}: {exc}") from exc
        except (Web3Exception, ValueError) as exc:
            message = str(exc)
            if any(marker in message.lower() for marker in _TRANSIENT_MARKERS):
                raise TransportError(f"RPC_TRANSIENT:{message}") from exc
            raise RevertError(f"RPC_REJECTED:{message}") from exc
        self._pending.pop(pending_key, None)
        if receipt.get("status") == 0:
            raise RevertError(f"TRANSACTION_REVERTED:{receipt['transactionHash'].to_0x_hex()}")
        return receipt
