"""Post-deploy wiring calls between already deployed artifacts."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Sequence

from .errors import HookFailed, UnresolvedReference
from .executor import DeploymentExecutor
from .ids import hook_fingerprint
from .models import HookResult
from .registry import ArtifactSpec, HookSpec
from .state_store import JsonStateStore

logger = logging.getLogger(__name__)


class HookRunner:
    def __init__(self, executor: DeploymentExecutor, store: JsonStateStore) -> None:
        self.executor = executor
        self.store = store

    def run(
        self,
        hooks: Sequence[HookSpec],
        specs: Sequence[ArtifactSpec],
        network: str,
        deployed: Mapping[str, str],
        *,
        force: bool = False,
    ) -> list[HookResult]:
        """Apply hooks in declaration order; a failing hook never stops the ones after it."""
        contracts = {spec.name: spec.contract_name for spec in specs}
        results: list[HookResult] = []
        for hook in hooks:
            try:
                results.append(self._apply(hook, contracts, network, deployed, force))
            except HookFailed as exc:
                logger.error("DEPLOY: hook failed (network=%s hook=%s error=%s)", network, hook.name, exc.cause)
                results.append(HookResult(name=hook.name, ok=False, error=str(exc.cause)))
        return results

    def _apply(
        self,
        hook: HookSpec,
        contracts: Mapping[str, str],
        network: str,
        deployed: Mapping[str, str],
        force: bool,
    ) -> HookResult:
        try:
            target = deployed.get(hook.target)
            if target is None:
                raise UnresolvedReference(hook.target)
            args = self.executor.resolve_hook_args(hook, deployed)
        except UnresolvedReference as exc:
            raise HookFailed(hook.name, exc) from exc
        fingerprint = hook_fingerprint(target, hook.method, args)
        if not force and self.store.hook_applied(network, hook.name, fingerprint):
            logger.info("DEPLOY: hook already applied, skipping (network=%s hook=%s)", network, hook.name)
            return HookResult(name=hook.name, ok=True, skipped=True)
        try:
            tx_hash = self.executor.transact(hook.name, contracts[hook.target], target, hook.method, args)
        except Exception as exc:
            # Chain and client-side errors alike are reported per hook.
            raise HookFailed(hook.name, exc) from exc
        self.store.record_hook(network, hook.name, fingerprint, tx_hash)
        logger.info(
            "DEPLOY: hook applied (network=%s hook=%s target=%s.%s tx=%s)",
            network,
            hook.name,
            hook.target,
            hook.method,
            tx_hash,
        )
        return HookResult(name=hook.name, ok=True, tx_hash=tx_hash)
