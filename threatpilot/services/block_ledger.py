"""
Temporary block ledger.

Tracks which addresses this process has blocked and when each block should
be lifted, and keeps that bookkeeping consistent with the enforcement
backend (Cloudflare access rules).

Invariants
----------
* At most one entry, and at most one armed expiry task, per target.
* Mutations for one target are serialized by that target's lock; different
  targets never wait on each other.
* An expiry task only acts if the entry on record still carries the rule id
  it captured when it was armed. A re-block or a manual unblock therefore
  always wins over a stale timer.

The backend, not the ledger, is the source of truth for whether an address
is blocked: ``unblock`` and ``list_blocked`` always ask the backend. The
ledger exists so temporary blocks get lifted on time.

Limitations
-----------
Entries live in memory (``InMemoryBlockStore``). A restart forgets armed
timers and the remote rules they would have removed stay in place until
someone unblocks them. ``close`` logs the affected targets.
"""

from __future__ import annotations

import asyncio
import ipaddress
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Protocol, Sequence

from threatpilot.models.cloudflare import AccessRule
from threatpilot.models.remediation import Severity
from threatpilot.transformers.severity_policy import DEFAULT_UNIT, block_duration
from threatpilot.utils.logger import get_logger

logger = get_logger(__name__)


class EnforcementBackend(Protocol):
    async def create_block_rule(self, target: str, note: str = "") -> str: ...

    async def delete_block_rule(self, rule_id: str) -> None: ...

    async def list_block_rules(self) -> Sequence[AccessRule]: ...


class BlockPolicy(str, Enum):
    ALWAYS = "always"  # every block request installs a rule
    GATED = "gated"  # permanent blocks need an explicit ``block: true``


@dataclass
class BlockEntry:
    target_id: str
    remote_rule_id: str
    severity: Severity
    created_at: datetime
    expires_at: Optional[datetime] = None  # None = permanent
    expiry_task: Optional["asyncio.Task[None]"] = field(default=None, repr=False, compare=False)

    @property
    def permanent(self) -> bool:
        return self.expires_at is None

    @property
    def timer_armed(self) -> bool:
        return self.expiry_task is not None and not self.expiry_task.done()


class InMemoryBlockStore:
    """Process-local entry store keyed by target id."""

    def __init__(self) -> None:
        self._entries: Dict[str, BlockEntry] = {}

    def get(self, target_id: str) -> Optional[BlockEntry]:
        return self._entries.get(target_id)

    def put(self, entry: BlockEntry) -> None:
        self._entries[entry.target_id] = entry

    def pop(self, target_id: str) -> Optional[BlockEntry]:
        return self._entries.pop(target_id, None)

    def entries(self) -> List[BlockEntry]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, target_id: object) -> bool:
        return target_id in self._entries


def _same_address(rule_value: str, target_id: str) -> bool:
    try:
        return ipaddress.ip_address(rule_value) == ipaddress.ip_address(target_id)
    except ValueError:
        return rule_value == target_id


class BlockLedger:
    """Owns block entries and their expiry timers.

    Args:
        backend: Enforcement backend that installs and removes rules.
        store: Entry store; a fresh ``InMemoryBlockStore`` when omitted.
        duration_unit: Length of one severity duration unit.
        policy: Which block requests actually install a rule.
    """

    def __init__(
        self,
        backend: EnforcementBackend,
        store: Optional[InMemoryBlockStore] = None,
        duration_unit: timedelta = DEFAULT_UNIT,
        policy: BlockPolicy = BlockPolicy.ALWAYS,
    ) -> None:
        self._backend = backend
        self._store = store if store is not None else InMemoryBlockStore()
        self._duration_unit = duration_unit
        self._policy = BlockPolicy(policy)
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @property
    def backend(self) -> EnforcementBackend:
        return self._backend

    @asynccontextmanager
    async def _target_lock(self, target_id: str) -> AsyncIterator[None]:
        # Locks are reference counted so idle targets do not accumulate
        lock = self._locks.setdefault(target_id, asyncio.Lock())
        self._lock_users[target_id] = self._lock_users.get(target_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[target_id] -= 1
            if not self._lock_users[target_id]:
                del self._lock_users[target_id]
                del self._locks[target_id]

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def block(
        self,
        target_id: str,
        severity: Severity,
        explicit_block: Optional[bool] = None,
    ) -> Optional[BlockEntry]:
        """Install a block for *target_id*.

        Returns the new entry, or ``None`` when the gated policy skips the
        request. Backend failures propagate and leave any existing entry
        and its timer untouched.
        """
        severity = Severity(severity)
        duration = block_duration(severity, self._duration_unit)

        if self._policy is BlockPolicy.GATED and not explicit_block and duration is None:
            logger.info(
                "block_skipped",
                target=target_id,
                severity=severity.value,
                policy=self._policy.value,
            )
            return None

        async with self._target_lock(target_id):
            rule_id = await self._backend.create_block_rule(
                target_id, note=f"ThreatPilot block ({severity.value})"
            )
            now = datetime.now(timezone.utc)

            previous = self._store.pop(target_id)
            if previous is not None:
                self._disarm(previous)
                # The superseded remote rule is left in place; unblock sweeps it
                logger.info(
                    "block_superseded",
                    target=target_id,
                    previous_rule_id=previous.remote_rule_id,
                    rule_id=rule_id,
                )

            entry = BlockEntry(
                target_id=target_id,
                remote_rule_id=rule_id,
                severity=severity,
                created_at=now,
                expires_at=now + duration if duration is not None else None,
            )
            if duration is not None:
                entry.expiry_task = asyncio.create_task(
                    self._expire_after(entry, duration.total_seconds()),
                    name=f"block-expiry:{target_id}",
                )
            self._store.put(entry)

        logger.info(
            "block_installed",
            target=target_id,
            rule_id=rule_id,
            severity=severity.value,
            expires_at=entry.expires_at.isoformat() if entry.expires_at else None,
        )
        return entry

    async def unblock(self, target_id: str) -> bool:
        """Remove every backend block rule for *target_id*.

        Returns ``False`` when the backend has no block rule for it. The
        local entry, if any, is dropped together with its timer.
        """
        async with self._target_lock(target_id):
            rules = [
                rule
                for rule in await self._backend.list_block_rules()
                if rule.mode == "block" and _same_address(rule.target, target_id)
            ]
            if not rules:
                logger.info("unblock_not_found", target=target_id)
                return False

            for rule in rules:
                await self._backend.delete_block_rule(rule.id)

            entry = self._store.pop(target_id)
            if entry is not None:
                self._disarm(entry)

        logger.info(
            "unblock_completed",
            target=target_id,
            rule_ids=[rule.id for rule in rules],
            tracked=entry is not None,
        )
        return True

    async def list_blocked(self) -> List[str]:
        rules = await self._backend.list_block_rules()
        return [rule.target for rule in rules if rule.mode == "block"]

    def get(self, target_id: str) -> Optional[BlockEntry]:
        return self._store.get(target_id)

    def active_entries(self) -> List[BlockEntry]:
        return self._store.entries()

    async def close(self) -> None:
        """Cancel every armed timer. Their remote rules are left orphaned."""
        tasks = []
        orphaned = []
        for entry in self._store.entries():
            if entry.timer_armed:
                orphaned.append(entry.target_id)
                entry.expiry_task.cancel()
                tasks.append(entry.expiry_task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.warning("block_ledger_closed_with_pending_expiry", targets=orphaned)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    @staticmethod
    def _disarm(entry: BlockEntry) -> None:
        if entry.timer_armed:
            entry.expiry_task.cancel()

    async def _expire_after(self, entry: BlockEntry, delay: float) -> None:
        await asyncio.sleep(delay)
        async with self._target_lock(entry.target_id):
            current = self._store.get(entry.target_id)
            if current is None or current.remote_rule_id != entry.remote_rule_id:
                logger.info(
                    "block_expiry_stale",
                    target=entry.target_id,
                    rule_id=entry.remote_rule_id,
                )
                return

            try:
                await self._backend.delete_block_rule(entry.remote_rule_id)
            except Exception as exc:
                # Nobody is waiting on this; drop the entry and move on
                logger.error(
                    "block_expiry_cleanup_failed",
                    target=entry.target_id,
                    rule_id=entry.remote_rule_id,
                    error=str(exc),
                )
            else:
                logger.info("block_expired", target=entry.target_id, rule_id=entry.remote_rule_id)
            self._store.pop(entry.target_id)
