from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Sequence

import pytest

from deploy_orchestrator.chain import DeploymentReceipt
from deploy_orchestrator.errors import (
    CyclicDependency,
    DeploymentLocked,
    RevertError,
    TransportError,
    UnknownAccount,
    UnknownArtifact,
)
from deploy_orchestrator.executor import DeploymentExecutor
from deploy_orchestrator.models import ArtifactState
from deploy_orchestrator.orchestrator import DeploymentOrchestrator
from deploy_orchestrator.registry import ArtifactSpec, HookSpec, NamedAccount, Reference
from deploy_orchestrator.retry import RetryPolicy
from deploy_orchestrator.state_store import JsonStateStore

DEPLOYER = "0x" + "d" * 40
NETWORK = "localhost"


class StubChainClient:
    def __init__(
        self,
        addresses: list[str] | None = None,
        failures: dict[str, list[Exception]] | None = None,
        hook_failures: dict[str, list[Exception]] | None = None,
    ) -> None:
        self.addresses = list(addresses or [])
        self.failures = {key: list(value) for key, value in (failures or {}).items()}
        self.hook_failures = {key: list(value) for key, value in (hook_failures or {}).items()}
        self.submitted: list[tuple[str, tuple[Any, ...]]] = []
        self.transactions: list[tuple[str, str, str, tuple[Any, ...]]] = []
        self._counter = 0

    def accounts(self) -> dict[str, str]:
        return {"deployer": DEPLOYER}

    def submit(self, contract_name: str, constructor_args: Sequence[Any]) -> DeploymentReceipt:
        self.submitted.append((contract_name, tuple(constructor_args)))
        planned = self.failures.get(contract_name)
        if planned:
            raise planned.pop(0)
        self._counter += 1
        address = self.addresses.pop(0) if self.addresses else "0x" + f"{self._counter:040x}"
        return DeploymentReceipt(address=address, tx_hash="0x" + f"{self._counter:064x}")

    def transact(self, contract_name: str, address: str, method: str, args: Sequence[Any]) -> str | None:
        self.transactions.append((contract_name, address, method, tuple(args)))
        planned = self.hook_failures.get(method)
        if planned:
            raise planned.pop(0)
        return "0x" + "ab" * 32

    def submitted_names(self) -> list[str]:
        return [name for name, _ in self.submitted]


def _orchestrator(
    tmp_path: Path,
    client: StubChainClient,
    sleeps: list[float] | None = None,
    **kwargs: Any,
) -> DeploymentOrchestrator:
    recorded = sleeps if sleeps is not None else []
    executor = DeploymentExecutor(
        client,
        RetryPolicy(max_attempts=3, base_backoff_ms=10, max_backoff_ms=40),
        sleeper=recorded.append,
    )
    return DeploymentOrchestrator(executor, JsonStateStore(tmp_path / "state.json"), **kwargs)


def _five_specs() -> list[ArtifactSpec]:
    return [
        ArtifactSpec("AccessManager", constructor_args=(NamedAccount("deployer"),)),
        ArtifactSpec("SignatureManager", constructor_args=("sahaai", "1")),
        ArtifactSpec("TokenManager", constructor_args=(NamedAccount("deployer"), Reference("AccessManager"))),
        ArtifactSpec("SubscriptionManager", constructor_args=("0.001", "0.005", "0.008")),
        ArtifactSpec(
            "SahaaiManager",
            constructor_args=(
                "sahaai",
                "S",
                Reference("SubscriptionManager"),
                Reference("SignatureManager"),
                Reference("TokenManager"),
                Reference("AccessManager"),
            ),
        ),
    ]


def test_declaration_order_scenario_records_deterministic_addresses(tmp_path: Path) -> None:
    specs = [ArtifactSpec("A"), ArtifactSpec("B"), ArtifactSpec("C", depends_on=("A", "B"))]
    client = StubChainClient(addresses=["0x1", "0x2", "0x3"])

    result = _orchestrator(tmp_path, client).run(specs, NETWORK)

    assert client.submitted_names() == ["A", "B", "C"]
    assert result.artifacts == {"A": "0x1", "B": "0x2", "C": "0x3"}
    assert result.succeeded
    persisted = json.loads((tmp_path / "state.json").read_text(encoding="utf-8"))
    assert persisted == {NETWORK: {"A": "0x1", "B": "0x2", "C": "0x3"}}


def test_cycle_aborts_before_any_chain_call(tmp_path: Path) -> None:
    specs = [
        ArtifactSpec("X", constructor_args=(Reference("Y"),)),
        ArtifactSpec("Y", depends_on=("X",)),
    ]
    client = StubChainClient()

    with pytest.raises(CyclicDependency) as excinfo:
        _orchestrator(tmp_path, client).run(specs, NETWORK)

    assert excinfo.value.cycle == ["X", "Y"]
    assert client.submitted == []
    assert not (tmp_path / "state.json").exists()
    assert not (tmp_path / "state.json.lock").exists()


def test_references_receive_recorded_addresses(tmp_path: Path) -> None:
    client = StubChainClient()

    result = _orchestrator(tmp_path, client).run(_five_specs(), NETWORK)

    access = result.artifacts["AccessManager"]
    token_args = dict(client.submitted)["TokenManager"]
    assert token_args == (DEPLOYER, access)
    sahaai_args = dict(client.submitted)["SahaaiManager"]
    assert sahaai_args == (
        "sahaai",
        "S",
        result.artifacts["SubscriptionManager"],
        result.artifacts["SignatureManager"],
        result.artifacts["TokenManager"],
        access,
    )


def test_second_run_after_success_deploys_nothing(tmp_path: Path) -> None:
    first = _orchestrator(tmp_path, StubChainClient()).run(_five_specs(), NETWORK)

    client = StubChainClient()
    second = _orchestrator(tmp_path, client).run(_five_specs(), NETWORK)

    assert client.submitted == []
    assert second.artifacts == first.artifacts
    assert all(item.reused for item in second.outcomes)
    assert second.deployed == []
    assert second.succeeded


def test_resume_after_failure_reuses_completed_prefix(tmp_path: Path) -> None:
    specs = _five_specs()
    failing = StubChainClient(failures={"TokenManager": [RevertError("execution reverted")]})

    first = _orchestrator(tmp_path, failing).run(specs, NETWORK)

    assert first.failed_artifact == "TokenManager"
    assert first.pending == ["SubscriptionManager", "SahaaiManager"]
    assert set(first.artifacts) == {"AccessManager", "SignatureManager"}
    assert not first.succeeded
    failed = next(item for item in first.outcomes if item.name == "TokenManager")
    assert failed.state == ArtifactState.FAILED
    assert failed.reason_code == "REVERTED"
    assert failing.submitted_names().count("TokenManager") == 1

    client = StubChainClient()
    second = _orchestrator(tmp_path, client).run(specs, NETWORK)

    assert client.submitted_names() == ["TokenManager", "SubscriptionManager", "SahaaiManager"]
    assert dict(client.submitted)["TokenManager"] == (DEPLOYER, first.artifacts["AccessManager"])
    assert second.artifacts["AccessManager"] == first.artifacts["AccessManager"]
    assert second.artifacts["SignatureManager"] == first.artifacts["SignatureManager"]
    assert second.succeeded


def test_transient_errors_are_retried_with_backoff(tmp_path: Path) -> None:
    client = StubChainClient(failures={"A": [TransportError("timeout"), TransportError("nonce too low")]})
    sleeps: list[float] = []
    orchestrator = _orchestrator(tmp_path, client, sleeps)

    result = orchestrator.run([ArtifactSpec("A")], NETWORK)

    assert result.succeeded
    assert client.submitted_names() == ["A", "A", "A"]
    assert sleeps == [0.01, 0.02]
    assert orchestrator.store.records(NETWORK)[0].attempts == 3


def test_retry_exhaustion_fails_the_artifact(tmp_path: Path) -> None:
    client = StubChainClient(failures={"A": [TransportError("timeout")] * 3})

    result = _orchestrator(tmp_path, client).run([ArtifactSpec("A"), ArtifactSpec("B")], NETWORK)

    assert result.failed_artifact == "A"
    assert result.outcomes[0].reason_code == "RETRY_EXHAUSTED"
    assert result.pending == ["B"]
    assert client.submitted_names() == ["A", "A", "A"]


def test_continue_on_error_skips_only_dependents(tmp_path: Path) -> None:
    specs = [
        ArtifactSpec("A"),
        ArtifactSpec("B", constructor_args=(Reference("A"),)),
        ArtifactSpec("C"),
        ArtifactSpec("D", depends_on=("B",)),
    ]
    client = StubChainClient(failures={"A": [RevertError("bad constructor")]})

    result = _orchestrator(tmp_path, client, continue_on_error=True).run(specs, NETWORK)

    assert client.submitted_names() == ["A", "C"]
    assert result.failed_artifact == "A"
    assert result.pending == ["B", "D"]
    blocked = {item.name: item.blocked_by for item in result.outcomes if item.blocked_by}
    assert blocked == {"B": "A", "D": "B"}
    assert set(result.artifacts) == {"C"}
    assert any("blocked by A" in line for line in result.summary_lines())


def test_cancellation_is_honoured_between_artifacts(tmp_path: Path) -> None:
    cancel = threading.Event()

    class CancellingClient(StubChainClient):
        def submit(self, contract_name: str, constructor_args: Sequence[Any]) -> DeploymentReceipt:
            receipt = super().submit(contract_name, constructor_args)
            cancel.set()
            return receipt

    client = CancellingClient()
    specs = [ArtifactSpec("A"), ArtifactSpec("B"), ArtifactSpec("C")]
    hooks = [HookSpec("grant", target="A", method="grant", args=(Reference("B"),))]

    result = _orchestrator(tmp_path, client, cancel_event=cancel).run(specs, NETWORK, hooks)

    assert client.submitted_names() == ["A"]
    assert result.cancelled
    assert result.pending == ["B", "C"]
    assert result.hook_results == []
    assert JsonStateStore(tmp_path / "state.json").load(NETWORK) == {"A": result.artifacts["A"]}


def test_hooks_run_after_all_artifacts_and_are_not_repeated(tmp_path: Path) -> None:
    specs = _five_specs()
    hooks = [
        HookSpec(
            "authorize_sahaai_manager",
            target="AccessManager",
            method="grantAccess",
            args=(Reference("SahaaiManager"),),
        )
    ]
    client = StubChainClient()

    first = _orchestrator(tmp_path, client).run(specs, NETWORK, hooks)

    assert client.transactions == [
        ("AccessManager", first.artifacts["AccessManager"], "grantAccess", (first.artifacts["SahaaiManager"],))
    ]
    assert first.hook_results[0].ok
    assert first.hook_results[0].tx_hash == "0x" + "ab" * 32

    rerun_client = StubChainClient()
    second = _orchestrator(tmp_path, rerun_client).run(specs, NETWORK, hooks)
    assert rerun_client.transactions == []
    assert second.hook_results[0].skipped
    assert second.succeeded

    forced_client = StubChainClient()
    third = _orchestrator(tmp_path, forced_client).run(specs, NETWORK, hooks, force_hooks=True)
    assert len(forced_client.transactions) == 1
    assert not third.hook_results[0].skipped


def test_hook_failure_is_reported_without_rollback(tmp_path: Path) -> None:
    specs = [ArtifactSpec("AccessManager"), ArtifactSpec("TokenManager")]
    hooks = [
        HookSpec("grant", target="AccessManager", method="grantAccess", args=(Reference("TokenManager"),)),
        HookSpec("configure", target="TokenManager", method="setLimit", args=(10,)),
    ]
    client = StubChainClient(hook_failures={"grantAccess": [RevertError("AccessControl: missing role")]})

    result = _orchestrator(tmp_path, client).run(specs, NETWORK, hooks)

    assert [hook.ok for hook in result.hook_results] == [False, True]
    assert "missing role" in (result.hook_results[0].error or "")
    assert not result.succeeded
    assert JsonStateStore(tmp_path / "state.json").load(NETWORK) == result.artifacts
    assert len(result.artifacts) == 2


def test_hooks_are_skipped_when_an_artifact_failed(tmp_path: Path) -> None:
    specs = [ArtifactSpec("A"), ArtifactSpec("B")]
    hooks = [HookSpec("grant", target="A", method="grant", args=(Reference("B"),))]
    client = StubChainClient(failures={"B": [RevertError("boom")]})

    result = _orchestrator(tmp_path, client).run(specs, NETWORK, hooks)

    assert client.transactions == []
    assert result.hook_results == []


def test_forced_redeploy_replaces_recorded_address(tmp_path: Path) -> None:
    specs = [ArtifactSpec("A"), ArtifactSpec("B", constructor_args=(Reference("A"),))]
    first = _orchestrator(tmp_path, StubChainClient(addresses=["0xa1", "0xb1"])).run(specs, NETWORK)

    client = StubChainClient(addresses=["0xa2"])
    orchestrator = _orchestrator(tmp_path, client)
    second = orchestrator.run(specs, NETWORK, force=["A"])

    assert client.submitted_names() == ["A"]
    assert first.artifacts == {"A": "0xa1", "B": "0xb1"}
    assert second.artifacts == {"A": "0xa2", "B": "0xb1"}
    records = {record.name: record.address for record in orchestrator.store.records(NETWORK)}
    assert records == {"A": "0xa2", "B": "0xb1"}


def test_force_all_redeploys_everything(tmp_path: Path) -> None:
    specs = [ArtifactSpec("A"), ArtifactSpec("B", constructor_args=(Reference("A"),))]
    _orchestrator(tmp_path, StubChainClient()).run(specs, NETWORK)

    client = StubChainClient(addresses=["0xa2", "0xb2"])
    result = _orchestrator(tmp_path, client).run(specs, NETWORK, force_all=True)

    assert client.submitted == [("A", ()), ("B", ("0xa2",))]
    assert result.artifacts == {"A": "0xa2", "B": "0xb2"}


def test_unknown_force_target_is_rejected(tmp_path: Path) -> None:
    client = StubChainClient()
    with pytest.raises(UnknownArtifact):
        _orchestrator(tmp_path, client).run([ArtifactSpec("A")], NETWORK, force=["Missing"])
    assert client.submitted == []


def test_unknown_hook_target_is_rejected_before_deploying(tmp_path: Path) -> None:
    client = StubChainClient()
    hooks = [HookSpec("grant", target="Ghost", method="grant")]
    with pytest.raises(UnknownArtifact):
        _orchestrator(tmp_path, client).run([ArtifactSpec("A")], NETWORK, hooks)
    assert client.submitted == []


def test_held_lock_prevents_concurrent_runs(tmp_path: Path) -> None:
    client = StubChainClient()
    orchestrator = _orchestrator(tmp_path, client)

    with orchestrator.store.lock(owner="other-run"):
        with pytest.raises(DeploymentLocked) as excinfo:
            orchestrator.run([ArtifactSpec("A")], NETWORK)

    assert "other-run" in str(excinfo.value)
    assert client.submitted == []
    assert orchestrator.run([ArtifactSpec("A")], NETWORK).succeeded


def test_networks_are_namespaced(tmp_path: Path) -> None:
    specs = [ArtifactSpec("A")]
    _orchestrator(tmp_path, StubChainClient(addresses=["0xaa"])).run(specs, "localhost")

    client = StubChainClient(addresses=["0xbb"])
    result = _orchestrator(tmp_path, client).run(specs, "sepolia")

    assert client.submitted_names() == ["A"]
    persisted = json.loads((tmp_path / "state.json").read_text(encoding="utf-8"))
    assert persisted == {"localhost": {"A": "0xaa"}, "sepolia": {"A": "0xbb"}}
    assert result.artifacts == {"A": "0xbb"}


def test_unknown_named_account_aborts_before_any_chain_call(tmp_path: Path) -> None:
    specs = [ArtifactSpec("A"), ArtifactSpec("B", constructor_args=(NamedAccount("treasury"),))]
    client = StubChainClient()

    with pytest.raises(UnknownAccount) as excinfo:
        _orchestrator(tmp_path, client).run(specs, NETWORK)

    assert excinfo.value.name == "treasury"
    assert excinfo.value.referenced_by == "B"
    assert client.submitted == []
    assert not (tmp_path / "state.json").exists()


def test_unknown_named_account_in_hook_aborts_before_deploying(tmp_path: Path) -> None:
    hooks = [HookSpec("fund", target="A", method="setTreasury", args=(NamedAccount("treasury"),))]
    client = StubChainClient()

    with pytest.raises(UnknownAccount, match="hook fund"):
        _orchestrator(tmp_path, client).run([ArtifactSpec("A")], NETWORK, hooks)

    assert client.submitted == []


def test_client_side_hook_error_is_reported_and_later_hooks_run(tmp_path: Path) -> None:
    specs = [ArtifactSpec("AccessManager"), ArtifactSpec("TokenManager")]
    hooks = [
        HookSpec("grant", target="AccessManager", method="grantAcess", args=(Reference("TokenManager"),)),
        HookSpec("configure", target="TokenManager", method="setLimit", args=(10,)),
    ]
    client = StubChainClient(
        hook_failures={"grantAcess": [ValueError("Could not find any function with matching name")]}
    )

    result = _orchestrator(tmp_path, client).run(specs, NETWORK, hooks)

    assert [hook.name for hook in result.hook_results] == ["grant", "configure"]
    assert [hook.ok for hook in result.hook_results] == [False, True]
    assert "matching name" in (result.hook_results[0].error or "")
    assert [call[2] for call in client.transactions] == ["grantAcess", "setLimit"]
    assert not result.succeeded
    assert any("hook grant: failed" in line for line in result.summary_lines())
