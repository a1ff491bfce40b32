"""Durable deployment state: addresses per network plus an append-only journal.

The JSON state file is the documented artefact (``network -> name -> address``).
Every commit first appends to ``<state>.records.jsonl`` and only then rewrites the
state file through a temp file and ``os.replace``; a crash between the two is
repaired on the next ``load``.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from .errors import DeploymentLocked, StateConflict
from .models import DeployedArtifact

logger = logging.getLogger(__name__)

EVENT_ARTIFACT_RECORDED = "ARTIFACT_RECORDED"
EVENT_HOOK_APPLIED = "HOOK_APPLIED"


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _write_atomic(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        handle.write(content)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)


class JsonStateStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.journal_path = self.path.with_name(self.path.name + ".records.jsonl")
        self.lock_path = self.path.with_name(self.path.name + ".lock")

    def load(self, network: str) -> dict[str, str]:
        state = self._read_state()
        addresses, recovered = self._merge_journal(network, state)
        if recovered:
            logger.warning(
                "DEPLOY: recovered journaled artifacts missing from state file (network=%s artifacts=%s)",
                network,
                ",".join(recovered),
            )
            state[network] = addresses
            self._write_state(state)
        return addresses

    def has(self, network: str, name: str) -> bool:
        return self.get(network, name) is not None

    def get(self, network: str, name: str) -> str | None:
        addresses, _ = self._merge_journal(network, self._read_state())
        return addresses.get(name)

    def record_success(self, network: str, artifact: DeployedArtifact, *, replace: bool = False) -> None:
        if artifact.network != network:
            raise StateConflict(f"{StateConflict.reason_code}:network mismatch {artifact.network} != {network}")
        state = self._read_state()
        existing = state.get(network, {}).get(artifact.name)
        if existing is not None and not replace:
            if existing.lower() == artifact.address.lower():
                return
            raise StateConflict(
                f"{StateConflict.reason_code}:{network}/{artifact.name} already recorded at {existing}"
            )
        self._append_journal({"event_kind": EVENT_ARTIFACT_RECORDED, **artifact.as_dict()})
        state.setdefault(network, {})[artifact.name] = artifact.address
        self._write_state(state)

    def records(self, network: str) -> list[DeployedArtifact]:
        """Latest journal record per artifact, in first-recorded order."""
        latest: dict[str, DeployedArtifact] = {}
        for event in self._read_journal():
            if event.get("event_kind") != EVENT_ARTIFACT_RECORDED or event.get("network") != network:
                continue
            record = DeployedArtifact.from_dict(event)
            latest[record.name] = record
        return list(latest.values())

    def record_hook(self, network: str, name: str, fingerprint: str, tx_hash: str | None) -> None:
        event: dict[str, Any] = {
            "event_kind": EVENT_HOOK_APPLIED,
            "network": network,
            "hook": name,
            "fingerprint": fingerprint,
            "applied_at_utc": _utc_now(),
        }
        if tx_hash:
            event["tx_hash"] = tx_hash
        self._append_journal(event)

    def hook_applied(self, network: str, name: str, fingerprint: str) -> bool:
        for event in self._read_journal():
            if (
                event.get("event_kind") == EVENT_HOOK_APPLIED
                and event.get("network") == network
                and event.get("hook") == name
                and event.get("fingerprint") == fingerprint
            ):
                return True
        return False

    def export(self, network: str, root: Path) -> Path:
        """Write ``<root>/<network>/deployments.json`` with the flat name -> address mapping."""
        target = Path(root) / network / "deployments.json"
        addresses = self._read_state().get(network, {})
        _write_atomic(target, json.dumps(addresses, indent=2, sort_keys=True) + "\n")
        return target

    @contextmanager
    def lock(self, owner: str = "deploy-orchestrator") -> Iterator[None]:
        """Hold an exclusive ``flock`` on ``<state>.lock`` for the duration of a run.

        The kernel releases the lock when the holder exits, killed or not; the file
        itself only carries the holder line for diagnostics.
        """
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        holder = f"{owner} pid={os.getpid()} since={_utc_now()}"
        with self.lock_path.open("a+", encoding="utf-8") as handle:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError as exc:
                handle.seek(0)
                current = handle.read().strip() or None
                raise DeploymentLocked(str(self.lock_path), current) from exc
            handle.seek(0)
            handle.truncate()
            handle.write(holder + "\n")
            handle.flush()
            try:
                yield
            finally:
                handle.seek(0)
                handle.truncate()
                handle.flush()
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def _merge_journal(self, network: str, state: dict[str, dict[str, str]]) -> tuple[dict[str, str], list[str]]:
        """State-file addresses overlaid with the journal; also returns the names the file lagged on."""
        addresses = dict(state.get(network, {}))
        recovered = []
        for record in self.records(network):
            if addresses.get(record.name) != record.address:
                addresses[record.name] = record.address
                recovered.append(record.name)
        return addresses, recovered

    def _read_state(self) -> dict[str, dict[str, str]]:
        if not self.path.exists():
            return {}
        payload = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        if not isinstance(payload, dict):
            raise StateConflict(f"{StateConflict.reason_code}:state file is not a JSON object: {self.path}")
        return {str(network): dict(entries) for network, entries in payload.items()}

    def _write_state(self, state: dict[str, dict[str, str]]) -> None:
        _write_atomic(self.path, json.dumps(state, indent=2, sort_keys=True) + "\n")

    def _append_journal(self, event: dict[str, Any]) -> None:
        self.journal_path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(event, sort_keys=True, ensure_ascii=True, separators=(",", ":"))
        with self.journal_path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
            handle.flush()
            os.fsync(handle.fileno())

    def _read_journal(self) -> list[dict[str, Any]]:
        if not self.journal_path.exists():
            return []
        events = []
        for raw in self.journal_path.read_text(encoding="utf-8").splitlines():
            line = raw.strip()
            if not line:
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError:
                # A torn final line from an interrupted append.
                logger.warning("DEPLOY: skipping unreadable journal line in %s", self.journal_path)
        return events
