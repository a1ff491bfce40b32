"""Single-artifact deployment with argument resolution and bounded retries."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Sequence

from .chain import ChainClient
from .config import is_hex_address
from .errors import DeploymentFailed, RevertError, TransportError, UnresolvedReference
from .models import DeployedArtifact
from .registry import ArgValue, ArtifactSpec, HookSpec, NamedAccount, Reference
from .retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def resolve_args(
    args: Sequence[ArgValue],
    deployed: Mapping[str, str],
    accounts: Mapping[str, str],
) -> list[Any]:
    resolved: list[Any] = []
    for arg in args:
        if isinstance(arg, Reference):
            address = deployed.get(arg.name)
            if address is None:
                raise UnresolvedReference(arg.name)
            resolved.append(address)
        elif isinstance(arg, NamedAccount):
            address = accounts.get(arg.name)
            if address is None:
                raise UnresolvedReference(f"account:{arg.name}")
            resolved.append(address)
        else:
            resolved.append(arg)
    return resolved


@dataclass
class DeploymentExecutor:
    chain_client: ChainClient
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    sleeper: Callable[[float], None] = time.sleep
    clock: Callable[[], datetime] = _utc_now

    def __post_init__(self) -> None:
        self._accounts: dict[str, str] | None = None

    def accounts(self) -> dict[str, str]:
        if self._accounts is None:
            self._accounts = dict(self.chain_client.accounts())
        return self._accounts

    def resolve(self, spec: ArtifactSpec, deployed: Mapping[str, str]) -> list[Any]:
        return resolve_args(spec.constructor_args, deployed, self.accounts())

    def resolve_hook_args(self, hook: HookSpec, deployed: Mapping[str, str]) -> list[Any]:
        return resolve_args(hook.args, deployed, self.accounts())

    def deploy(self, spec: ArtifactSpec, network: str, deployed: Mapping[str, str]) -> DeployedArtifact:
        return self.submit(spec, network, self.resolve(spec, deployed))

    def submit(self, spec: ArtifactSpec, network: str, args: Sequence[Any]) -> DeployedArtifact:
        args = list(args)
        logger.info(
            "DEPLOY: submitting artifact (network=%s name=%s contract=%s args=%d)",
            network,
            spec.name,
            spec.contract_name,
            len(args),
        )

        def _on_retry(attempt: int, delay: float, exc: BaseException) -> None:
            logger.warning(
                "DEPLOY: transient failure, retrying (name=%s attempt=%d delay=%.2fs error=%s)",
                spec.name,
                attempt,
                delay,
                exc,
            )

        try:
            receipt, attempts = with_retry(
                lambda: self.chain_client.submit(spec.contract_name, args),
                policy=self.retry_policy,
                retry_on=(TransportError,),
                sleeper=self.sleeper,
                on_retry=_on_retry,
            )
        except TransportError as exc:
            raise DeploymentFailed(spec.name, exc, reason_code="RETRY_EXHAUSTED") from exc
        except RevertError as exc:
            raise DeploymentFailed(spec.name, exc, reason_code="REVERTED") from exc

        if not is_hex_address(receipt.address):
            raise DeploymentFailed(spec.name, ValueError(f"invalid address {receipt.address!r}"), "INVALID_ADDRESS")
        artifact = DeployedArtifact(
            name=spec.name,
            address=receipt.address,
            network=network,
            deployed_at_utc=self.clock().isoformat(),
            contract=spec.contract_name,
            tx_hash=receipt.tx_hash,
            attempts=attempts,
        )
        logger.info(
            "DEPLOY: artifact deployed (network=%s name=%s address=%s attempts=%d)",
            network,
            spec.name,
            artifact.address,
            attempts,
        )
        return artifact

    def transact(
        self,
        label: str,
        contract_name: str,
        address: str,
        method: str,
        args: Sequence[Any],
    ) -> str | None:
        """Send a state-changing call with the same retry policy as deploys."""

        def _on_retry(attempt: int, delay: float, exc: BaseException) -> None:
            logger.warning(
                "DEPLOY: transient failure, retrying (call=%s attempt=%d delay=%.2fs error=%s)",
                label,
                attempt,
                delay,
                exc,
            )

        tx_hash, _ = with_retry(
            lambda: self.chain_client.transact(contract_name, address, method, args),
            policy=self.retry_policy,
            retry_on=(TransportError,),
            sleeper=self.sleeper,
            on_retry=_on_retry,
        )
        return tx_hash
