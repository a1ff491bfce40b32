"""Deployment records and run result models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ArtifactState(str, Enum):
    PENDING = "PENDING"
    RESOLVING = "RESOLVING"
    DEPLOYING = "DEPLOYING"
    RECORDED = "RECORDED"
    FAILED = "FAILED"


ALLOWED_TRANSITIONS: dict[ArtifactState, set[ArtifactState]] = {
    ArtifactState.PENDING: {ArtifactState.RESOLVING, ArtifactState.RECORDED},
    ArtifactState.RESOLVING: {ArtifactState.DEPLOYING, ArtifactState.FAILED},
    ArtifactState.DEPLOYING: {ArtifactState.RECORDED, ArtifactState.FAILED},
    ArtifactState.RECORDED: set(),
    ArtifactState.FAILED: set(),
}


@dataclass(frozen=True)
class DeployedArtifact:
    name: str
    address: str
    network: str
    deployed_at_utc: str
    contract: str | None = None
    tx_hash: str | None = None
    attempts: int = 1

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "address": self.address,
            "network": self.network,
            "deployed_at_utc": self.deployed_at_utc,
            "attempts": self.attempts,
        }
        if self.contract:
            payload["contract"] = self.contract
        if self.tx_hash:
            payload["tx_hash"] = self.tx_hash
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "DeployedArtifact":
        return cls(
            name=str(payload["name"]),
            address=str(payload["address"]),
            network=str(payload["network"]),
            deployed_at_utc=str(payload["deployed_at_utc"]),
            contract=payload.get("contract"),
            tx_hash=payload.get("tx_hash"),
            attempts=int(payload.get("attempts", 1)),
        )


class ArtifactOutcome(BaseModel):
    name: str
    state: ArtifactState
    address: Optional[str] = None
    reused: bool = False
    reason_code: Optional[str] = None
    error: Optional[str] = None
    blocked_by: Optional[str] = None


class HookResult(BaseModel):
    name: str
    ok: bool
    skipped: bool = False
    tx_hash: Optional[str] = None
    error: Optional[str] = None


class DeploymentResult(BaseModel):
    network: str
    artifacts: dict[str, str] = Field(default_factory=dict)
    hook_results: list[HookResult] = Field(default_factory=list)
    outcomes: list[ArtifactOutcome] = Field(default_factory=list)
    failed_artifact: Optional[str] = None
    pending: list[str] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def deployed(self) -> list[str]:
        return [item.name for item in self.outcomes if item.state == ArtifactState.RECORDED and not item.reused]

    @property
    def succeeded(self) -> bool:
        if self.cancelled or self.pending or self.failed_artifact:
            return False
        if any(item.state != ArtifactState.RECORDED for item in self.outcomes):
            return False
        return all(hook.ok for hook in self.hook_results)

    def summary_lines(self) -> list[str]:
        lines = [f"network: {self.network}"]
        for item in self.outcomes:
            if item.state == ArtifactState.RECORDED:
                origin = "reused" if item.reused else "deployed"
                lines.append(f"  {item.name}: {item.state.value} {item.address} ({origin})")
            elif item.blocked_by:
                lines.append(f"  {item.name}: {item.state.value} (blocked by {item.blocked_by})")
            elif item.error:
                lines.append(f"  {item.name}: {item.state.value} {item.reason_code}: {item.error}")
            else:
                lines.append(f"  {item.name}: {item.state.value}")
        for hook in self.hook_results:
            if hook.skipped:
                status = "already applied"
            elif hook.ok:
                status = f"ok {hook.tx_hash or ''}".rstrip()
            else:
                status = f"failed: {hook.error}"
            lines.append(f"  hook {hook.name}: {status}")
        if self.failed_artifact:
            lines.append(f"failed at: {self.failed_artifact}")
        if self.cancelled:
            lines.append("run cancelled between artifacts")
        if self.pending:
            lines.append(f"pending (re-run to resume): {', '.join(self.pending)}")
        return lines
