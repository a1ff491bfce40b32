"""Deterministic identifier helpers."""

from __future__ import annotations

import hashlib
import json
from typing import Any


def _hex_from_text(text: str, length: int) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:length]


def canonical_args(args: list[Any] | tuple[Any, ...]) -> str:
    return json.dumps([_wire(value) for value in args], sort_keys=True, ensure_ascii=True, separators=(",", ":"))


def dry_run_address(network: str, contract: str, args: list[Any] | tuple[Any, ...], salt: int = 0) -> str:
    return "0x" + _hex_from_text(f"dry_run|{network}|{contract}|{canonical_args(args)}|{salt}", 40)


def dry_run_account(name: str) -> str:
    return "0x" + _hex_from_text(f"dry_run_account|{name}", 40)


def dry_run_tx_hash(*parts: Any) -> str:
    return "0x" + _hex_from_text("dry_run_tx|" + "|".join(str(part) for part in parts), 64)


def hook_fingerprint(target_address: str, method: str, args: list[Any] | tuple[Any, ...]) -> str:
    return _hex_from_text(f"hook|{target_address.lower()}|{method}|{canonical_args(args)}", 32)


def _wire(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return [_wire(item) for item in value]
    return value
