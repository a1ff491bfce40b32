"""Deployment error taxonomy.

Every error carries a stable upper-case ``reason_code`` so summaries, journal
records and CLI exit codes can be derived without parsing messages.
"""

from __future__ import annotations


class DeployError(RuntimeError):
    """Base class for orchestrator failures."""

    reason_code = "DEPLOY_ERROR"


class RegistryError(ValueError):
    """Raised when an artifact registry payload is malformed."""

    reason_code = "REGISTRY_INVALID"


class CyclicDependency(DeployError):
    reason_code = "CYCLIC_DEPENDENCY"

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(f"{self.reason_code}:{' -> '.join(self.cycle + self.cycle[:1])}")


class UnknownArtifact(DeployError):
    reason_code = "UNKNOWN_ARTIFACT"

    def __init__(self, name: str, referenced_by: str | None = None) -> None:
        self.name = name
        self.referenced_by = referenced_by
        detail = name if referenced_by is None else f"{name} (referenced by {referenced_by})"
        super().__init__(f"{self.reason_code}:{detail}")


class UnknownAccount(DeployError):
    """A named account argument the chain client cannot supply."""

    reason_code = "UNKNOWN_ACCOUNT"

    def __init__(self, name: str, referenced_by: str) -> None:
        self.name = name
        self.referenced_by = referenced_by
        super().__init__(f"{self.reason_code}:{name} (referenced by {referenced_by})")


class UnresolvedReference(DeployError):
    """A reference had no recorded address when its dependent was deployed.

    Ordering guarantees this never happens, so it is treated as fatal.
    """

    reason_code = "UNRESOLVED_REFERENCE"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"{self.reason_code}:{name}")


class ChainError(DeployError):
    """Raised by chain clients."""


class TransportError(ChainError):
    """Transient chain failure (timeout, connection, nonce conflict); retried."""

    reason_code = "TRANSPORT_ERROR"


class RevertError(ChainError):
    """Transaction rejected or reverted; never retried."""

    reason_code = "REVERTED"


class DeploymentFailed(DeployError):
    reason_code = "DEPLOYMENT_FAILED"

    def __init__(self, name: str, cause: BaseException, reason_code: str | None = None) -> None:
        self.name = name
        self.cause = cause
        if reason_code:
            self.reason_code = reason_code
        super().__init__(f"{self.reason_code}:{name}: {cause}")


class HookFailed(DeployError):
    reason_code = "HOOK_FAILED"

    def __init__(self, hook: str, cause: BaseException) -> None:
        self.hook = hook
        self.cause = cause
        super().__init__(f"{self.reason_code}:{hook}: {cause}")


class StateConflict(DeployError):
    reason_code = "STATE_CONFLICT"


class DeploymentLocked(DeployError):
    reason_code = "STATE_LOCKED"

    def __init__(self, lock_path: str, holder: str | None = None) -> None:
        self.lock_path = lock_path
        self.holder = holder
        detail = lock_path if not holder else f"{lock_path} held by {holder}"
        super().__init__(f"{self.reason_code}:{detail}")
