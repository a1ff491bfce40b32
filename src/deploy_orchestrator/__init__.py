"""Dependency-ordered contract deployment orchestrator."""

from .chain import ChainClient, DeploymentReceipt, DryRunChainClient, Web3ChainClient
from .executor import DeploymentExecutor
from .models import ArtifactState, DeployedArtifact, DeploymentResult, HookResult
from .orchestrator import DeploymentOrchestrator
from .registry import ArtifactRegistry, ArtifactSpec, HookSpec, NamedAccount, Reference, load_registry
from .resolver import resolve_order
from .state_store import JsonStateStore

__all__ = [
    "ArtifactRegistry",
    "ArtifactSpec",
    "ArtifactState",
    "ChainClient",
    "DeployedArtifact",
    "DeploymentExecutor",
    "DeploymentOrchestrator",
    "DeploymentReceipt",
    "DeploymentResult",
    "DryRunChainClient",
    "HookResult",
    "HookSpec",
    "JsonStateStore",
    "NamedAccount",
    "Reference",
    "Web3ChainClient",
    "load_registry",
    "resolve_order",
]
