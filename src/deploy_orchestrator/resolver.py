"""Dependency ordering for artifact specs."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Sequence

from .errors import CyclicDependency, RegistryError, UnknownAccount, UnknownArtifact
from .registry import ArtifactSpec, HookSpec, NamedAccount


def resolve_order(specs: Sequence[ArtifactSpec]) -> list[ArtifactSpec]:
    """Order specs so every dependency precedes its dependents.

    Depth-first over declaration order; ties between unconstrained specs keep
    declaration order. A spec re-entered while still on the active stack is a
    cycle, reported starting at the re-entered spec.
    """
    by_name: dict[str, ArtifactSpec] = {}
    for spec in specs:
        if spec.name in by_name:
            raise RegistryError(f"DUPLICATE_ARTIFACT:{spec.name}")
        by_name[spec.name] = spec
    for spec in specs:
        for dependency in spec.dependencies():
            if dependency not in by_name:
                raise UnknownArtifact(dependency, referenced_by=spec.name)

    ordered: list[ArtifactSpec] = []
    done: set[str] = set()
    stack: list[str] = []

    def visit(name: str) -> None:
        if name in done:
            return
        if name in stack:
            raise CyclicDependency(stack[stack.index(name):])
        stack.append(name)
        for dependency in by_name[name].dependencies():
            visit(dependency)
        stack.pop()
        done.add(name)
        ordered.append(by_name[name])

    for spec in specs:
        visit(spec.name)
    return ordered


def validate_hooks(hooks: Sequence[HookSpec], specs: Sequence[ArtifactSpec]) -> None:
    names = {spec.name for spec in specs}
    for hook in hooks:
        for name in hook.artifacts():
            if name not in names:
                raise UnknownArtifact(name, referenced_by=f"hook {hook.name}")


def validate_accounts(
    specs: Sequence[ArtifactSpec],
    hooks: Sequence[HookSpec],
    accounts: Mapping[str, str],
) -> None:
    """Reject named accounts the signer cannot supply, before anything is sent."""
    owners = [(spec.name, spec.constructor_args) for spec in specs]
    owners.extend((f"hook {hook.name}", hook.args) for hook in hooks)
    for owner, args in owners:
        for arg in args:
            if isinstance(arg, NamedAccount) and arg.name not in accounts:
                raise UnknownAccount(arg.name, referenced_by=owner)
