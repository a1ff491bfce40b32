"""Deployment orchestration: resolve order, deploy, record, then wire hooks."""

from __future__ import annotations

import logging
import threading
from typing import Iterable, Sequence

from .errors import DeploymentFailed, UnknownArtifact, UnresolvedReference
from .executor import DeploymentExecutor
from .hooks import HookRunner
from .models import ALLOWED_TRANSITIONS, ArtifactOutcome, ArtifactState, DeploymentResult
from .registry import ArtifactSpec, HookSpec
from .resolver import resolve_order, validate_accounts, validate_hooks
from .state_store import JsonStateStore


class DeploymentOrchestrator:
    def __init__(
        self,
        executor: DeploymentExecutor,
        store: JsonStateStore,
        *,
        continue_on_error: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.executor = executor
        self.store = store
        self.continue_on_error = continue_on_error
        self.cancel_event = cancel_event or threading.Event()
        self.hook_runner = HookRunner(executor, store)

    def run(
        self,
        specs: Sequence[ArtifactSpec],
        network: str,
        hooks: Sequence[HookSpec] = (),
        *,
        force: Iterable[str] = (),
        force_all: bool = False,
        force_hooks: bool = False,
    ) -> DeploymentResult:
        # Validation happens before the lock and before any chain call.
        ordered = resolve_order(specs)
        validate_hooks(hooks, specs)
        validate_accounts(ordered, hooks, self.executor.accounts())
        forced = {spec.name for spec in ordered} if force_all else set(force)
        for name in sorted(forced):
            if not any(spec.name == name for spec in ordered):
                raise UnknownArtifact(name, referenced_by="--force")
        self.logger.info(
            "DEPLOY: run started (network=%s artifacts=%d hooks=%d order=%s retry_backoff_ms=%s)",
            network,
            len(ordered),
            len(hooks),
            ",".join(spec.name for spec in ordered),
            list(self.executor.retry_policy.backoff_schedule_ms()),
        )
        with self.store.lock():
            deployed = self.store.load(network)
            return self._run_locked(ordered, network, hooks, deployed, forced, force_hooks)

    def _run_locked(
        self,
        ordered: list[ArtifactSpec],
        network: str,
        hooks: Sequence[HookSpec],
        deployed: dict[str, str],
        forced: set[str],
        force_hooks: bool,
    ) -> DeploymentResult:
        states = {spec.name: ArtifactState.PENDING for spec in ordered}
        outcomes = {spec.name: ArtifactOutcome(name=spec.name, state=ArtifactState.PENDING) for spec in ordered}
        unavailable: set[str] = set()
        failed_artifact: str | None = None
        cancelled = False

        for spec in ordered:
            if self.cancel_event.is_set():
                cancelled = True
                self.logger.warning("DEPLOY: cancellation requested, stopping before %s", spec.name)
                break
            blocker = next((name for name in spec.dependencies() if name in unavailable), None)
            if blocker is not None:
                unavailable.add(spec.name)
                outcomes[spec.name] = ArtifactOutcome(name=spec.name, state=ArtifactState.PENDING, blocked_by=blocker)
                self.logger.warning("DEPLOY: %s blocked by %s", spec.name, blocker)
                continue
            if spec.name in deployed and spec.name not in forced:
                self._transition(states, spec.name, ArtifactState.RECORDED)
                outcomes[spec.name] = ArtifactOutcome(
                    name=spec.name,
                    state=ArtifactState.RECORDED,
                    address=deployed[spec.name],
                    reused=True,
                )
                self.logger.info(
                    "DEPLOY: reusing recorded artifact (network=%s name=%s address=%s)",
                    network,
                    spec.name,
                    deployed[spec.name],
                )
                continue

            self._transition(states, spec.name, ArtifactState.RESOLVING)
            try:
                args = self.executor.resolve(spec, deployed)
            except UnresolvedReference:
                self._transition(states, spec.name, ArtifactState.FAILED)
                raise
            self._transition(states, spec.name, ArtifactState.DEPLOYING)
            try:
                artifact = self.executor.submit(spec, network, args)
            except DeploymentFailed as exc:
                self._transition(states, spec.name, ArtifactState.FAILED)
                outcomes[spec.name] = ArtifactOutcome(
                    name=spec.name,
                    state=ArtifactState.FAILED,
                    reason_code=exc.reason_code,
                    error=str(exc.cause),
                )
                unavailable.add(spec.name)
                failed_artifact = failed_artifact or spec.name
                self.logger.error("DEPLOY: artifact failed (network=%s name=%s error=%s)", network, spec.name, exc)
                if not self.continue_on_error:
                    break
                continue

            replacing = spec.name in deployed
            self.store.record_success(network, artifact, replace=replacing)
            if replacing:
                self._warn_stale_dependents(spec.name, ordered)
            deployed[spec.name] = artifact.address
            self._transition(states, spec.name, ArtifactState.RECORDED)
            outcomes[spec.name] = ArtifactOutcome(name=spec.name, state=ArtifactState.RECORDED, address=artifact.address)

        result = DeploymentResult(
            network=network,
            artifacts={spec.name: deployed[spec.name] for spec in ordered if states[spec.name] == ArtifactState.RECORDED},
            outcomes=[outcomes[spec.name] for spec in ordered],
            failed_artifact=failed_artifact,
            pending=[spec.name for spec in ordered if states[spec.name] == ArtifactState.PENDING],
            cancelled=cancelled,
        )
        if result.pending or failed_artifact or cancelled:
            self.logger.warning(
                "DEPLOY: run incomplete (network=%s failed=%s pending=%s)",
                network,
                failed_artifact,
                ",".join(result.pending) or "-",
            )
            return result
        if hooks and self.cancel_event.is_set():
            result.cancelled = True
            self.logger.warning("DEPLOY: cancellation requested, hooks not applied")
            return result

        result.hook_results = self.hook_runner.run(
            hooks,
            ordered,
            network,
            deployed,
            force=force_hooks,
        )
        self.logger.info(
            "DEPLOY: run finished (network=%s deployed=%d reused=%d hooks_failed=%d)",
            network,
            len(result.deployed),
            sum(1 for item in result.outcomes if item.reused),
            sum(1 for hook in result.hook_results if not hook.ok),
        )
        return result

    def _transition(self, states: dict[str, ArtifactState], name: str, next_state: ArtifactState) -> None:
        current = states[name]
        if next_state not in ALLOWED_TRANSITIONS[current]:
            raise RuntimeError(f"INVALID_TRANSITION:{name}:{current.value}->{next_state.value}")
        states[name] = next_state

    def _warn_stale_dependents(self, name: str, ordered: list[ArtifactSpec]) -> None:
        dependents = [spec.name for spec in ordered if name in spec.dependencies()]
        if dependents:
            self.logger.warning(
                "DEPLOY: %s was re-deployed; dependents keep their previous wiring unless forced too: %s",
                name,
                ",".join(dependents),
            )
