"""Artifact registry: declarative description of what gets deployed."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Union

import yaml
from jsonschema import Draft202012Validator

from .config import expand_payload
from .errors import RegistryError, UnknownArtifact


_SCHEMA_PATH = Path(__file__).with_name("artifact_registry.schema.yaml")


@dataclass(frozen=True)
class Reference:
    """Constructor argument resolved to another artifact's deployed address."""

    name: str


@dataclass(frozen=True)
class NamedAccount:
    """Constructor argument resolved to a named signer account (e.g. ``deployer``)."""

    name: str


ArgValue = Union[str, int, bool, bytes, Reference, NamedAccount]


@dataclass(frozen=True)
class ArtifactSpec:
    name: str
    constructor_args: tuple[ArgValue, ...] = ()
    depends_on: tuple[str, ...] = ()
    contract: str | None = None
    tags: tuple[str, ...] = ()

    @property
    def contract_name(self) -> str:
        return self.contract or self.name

    def references(self) -> list[str]:
        return [arg.name for arg in self.constructor_args if isinstance(arg, Reference)]

    def dependencies(self) -> list[str]:
        """Explicit dependencies followed by argument references, declaration order, no repeats."""
        seen: list[str] = []
        for name in [*self.depends_on, *self.references()]:
            if name not in seen:
                seen.append(name)
        return seen


@dataclass(frozen=True)
class HookSpec:
    name: str
    target: str
    method: str
    args: tuple[ArgValue, ...] = ()

    def artifacts(self) -> list[str]:
        names = [self.target]
        for arg in self.args:
            if isinstance(arg, Reference) and arg.name not in names:
                names.append(arg.name)
        return names


@dataclass(frozen=True)
class ArtifactRegistry:
    artifacts: tuple[ArtifactSpec, ...]
    hooks: tuple[HookSpec, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        names = [spec.name for spec in self.artifacts]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise RegistryError(f"DUPLICATE_ARTIFACT:{','.join(duplicates)}")
        hook_names = [hook.name for hook in self.hooks]
        duplicate_hooks = sorted({name for name in hook_names if hook_names.count(name) > 1})
        if duplicate_hooks:
            raise RegistryError(f"DUPLICATE_HOOK:{','.join(duplicate_hooks)}")

    def names(self) -> list[str]:
        return [spec.name for spec in self.artifacts]

    def get(self, name: str) -> ArtifactSpec:
        for spec in self.artifacts:
            if spec.name == name:
                return spec
        raise UnknownArtifact(name)

    def select(self, names: Iterable[str] = (), tags: Iterable[str] = ()) -> "ArtifactRegistry":
        """Narrow the registry to the requested artifacts plus their transitive dependencies.

        Hooks survive only when every artifact they touch is still selected.
        With no names and no tags the registry is returned unchanged.
        """
        wanted = list(names)
        tag_set = set(tags)
        if not wanted and not tag_set:
            return self
        for spec in self.artifacts:
            if tag_set.intersection(spec.tags) and spec.name not in wanted:
                wanted.append(spec.name)
        keep: set[str] = set()
        pending = list(wanted)
        while pending:
            name = pending.pop()
            if name in keep:
                continue
            spec = self.get(name)
            keep.add(name)
            pending.extend(spec.dependencies())
        artifacts = tuple(spec for spec in self.artifacts if spec.name in keep)
        hooks = tuple(hook for hook in self.hooks if all(name in keep for name in hook.artifacts()))
        return ArtifactRegistry(artifacts=artifacts, hooks=hooks)


def parse_arg(value: Any) -> ArgValue:
    if isinstance(value, dict):
        if set(value) == {"ref"}:
            return Reference(str(value["ref"]))
        if set(value) == {"account"}:
            return NamedAccount(str(value["account"]))
        if set(value) == {"hex"}:
            text = str(value["hex"])
            try:
                return bytes.fromhex(text[2:] if text.startswith("0x") else text)
            except ValueError as exc:
                raise RegistryError(f"INVALID_HEX_ARG:{text}") from exc
        raise RegistryError(f"UNSUPPORTED_ARG:{sorted(value)}")
    if isinstance(value, (str, int, bool)):
        return value
    raise RegistryError(f"UNSUPPORTED_ARG:{type(value).__name__}")


def registry_from_payload(payload: dict[str, Any]) -> ArtifactRegistry:
    validator = Draft202012Validator(_load_schema())
    errors = sorted(validator.iter_errors(payload), key=lambda e: [str(part) for part in e.path])
    if errors:
        messages = "; ".join(
            f"{'/'.join(str(part) for part in error.path) or '<root>'}: {error.message}" for error in errors
        )
        raise RegistryError(f"Registry validation failed: {messages}")
    artifacts = tuple(
        ArtifactSpec(
            name=entry["name"],
            constructor_args=tuple(parse_arg(arg) for arg in entry.get("args", [])),
            depends_on=tuple(dict.fromkeys(entry.get("depends_on", []))),
            contract=entry.get("contract"),
            tags=tuple(entry.get("tags", [])),
        )
        for entry in payload.get("artifacts", [])
    )
    hooks = tuple(
        HookSpec(
            name=entry["name"],
            target=entry["target"],
            method=entry["method"],
            args=tuple(parse_arg(arg) for arg in entry.get("args", [])),
        )
        for entry in payload.get("hooks", [])
    )
    return ArtifactRegistry(artifacts=artifacts, hooks=hooks)


def load_registry(path: Path) -> ArtifactRegistry:
    payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise RegistryError("artifact registry must be a mapping")
    return registry_from_payload(expand_payload(payload))


def _load_schema() -> dict[str, Any]:
    return yaml.safe_load(_SCHEMA_PATH.read_text(encoding="utf-8"))
