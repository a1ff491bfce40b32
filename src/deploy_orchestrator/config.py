"""Configuration loader for network deployment profiles."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from .retry import RetryPolicy

_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


class RetrySettings(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    base_backoff_ms: int = Field(default=500, gt=0)
    max_backoff_ms: int = Field(default=8000, gt=0)

    def as_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_backoff_ms=self.base_backoff_ms,
            max_backoff_ms=self.max_backoff_ms,
        )


class DeployProfile(BaseModel):
    network: str = Field(..., min_length=1)
    rpc_url: str | None = None
    chain_id: int | None = None
    private_key_env: str = "DEPLOYER_PRIVATE_KEY"
    artifacts_root: str = "artifacts"
    registry_path: str = "config/deploy/registry.yaml"
    state_path: str = "deployments/state.json"
    export_root: str | None = None
    named_accounts: dict[str, str] = {}
    request_timeout_seconds: int = Field(default=30, gt=0)
    confirm_timeout_seconds: int = Field(default=180, gt=0)
    retry: RetrySettings = RetrySettings()
    continue_on_error: bool = False

    @field_validator("named_accounts")
    @classmethod
    def _hex_accounts(cls, value: dict[str, str]) -> dict[str, str]:
        for name, address in value.items():
            if not is_hex_address(address):
                raise ValueError(f"named account {name} must be a 0x-prefixed hex address")
        return value


def is_hex_address(value: str) -> bool:
    if not isinstance(value, str) or not value.startswith("0x") or len(value) < 3:
        return False
    return all(ch in "0123456789abcdefABCDEF" for ch in value[2:])


def _expand_str(value: str) -> str:
    def replacer(match: re.Match[str]) -> str:
        token = match.group(1)
        if ":-" in token:
            key, default = token.split(":-", 1)
            actual = os.getenv(key, "")
            return actual if actual.strip() else default
        actual = os.getenv(token, "")
        if not actual.strip():
            raise ValueError(f"missing environment variable: {token}")
        return actual

    return _VAR_PATTERN.sub(replacer, value)


def expand_payload(value: Any) -> Any:
    if isinstance(value, str):
        return _expand_str(value)
    if isinstance(value, list):
        return [expand_payload(item) for item in value]
    if isinstance(value, dict):
        return {str(key): expand_payload(item) for key, item in value.items()}
    return value


def load_profile(path: Path) -> DeployProfile:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"deploy profile must be a mapping: {path}")
    return DeployProfile(**expand_payload(data))
