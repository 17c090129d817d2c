"""Tests for the temporary block ledger: TTL expiry, supersede, unblock, policy.

Durations use a 50 ms unit so expiry can be observed with short sleeps.
"""

from __future__ import annotations

import asyncio

import pytest

from threatpilot.exceptions import CollaboratorError
from threatpilot.models.remediation import Severity
from threatpilot.services.block_ledger import BlockLedger, BlockPolicy, InMemoryBlockStore

IP = "203.0.113.1"


def _run(coro):
    return asyncio.run(coro)


class TestTemporaryBlock:
    def test_low_severity_expires_after_one_unit(self, ledger, backend, unit):
        async def _scenario():
            entry = await ledger.block(IP, Severity.LOW)
            assert entry.timer_armed
            assert not entry.permanent
            assert entry.expires_at - entry.created_at == unit
            assert backend.rules_for(IP) == [entry.remote_rule_id]

            await asyncio.sleep(unit.total_seconds() * 4)

            assert backend.rules_for(IP) == []
            assert backend.deleted == [entry.remote_rule_id]
            assert ledger.get(IP) is None
            assert not entry.timer_armed

        _run(_scenario())

    def test_medium_severity_lasts_two_units(self, ledger, unit):
        async def _scenario():
            entry = await ledger.block(IP, Severity.MEDIUM)
            assert entry.expires_at - entry.created_at == unit * 2
            await ledger.close()

        _run(_scenario())

    def test_rule_note_carries_severity(self, ledger, backend):
        async def _scenario():
            entry = await ledger.block(IP, Severity.LOW)
            assert backend.rules[entry.remote_rule_id].notes == "ThreatPilot block (low)"
            await ledger.close()

        _run(_scenario())


class TestPermanentBlock:
    @pytest.mark.parametrize("severity", [Severity.HIGH, Severity.CRITICAL])
    def test_no_timer_is_armed(self, ledger, backend, unit, severity):
        async def _scenario():
            entry = await ledger.block(IP, severity)
            assert entry.permanent
            assert entry.expiry_task is None
            await asyncio.sleep(unit.total_seconds() * 3)
            assert backend.rules_for(IP) == [entry.remote_rule_id]
            assert ledger.get(IP) is entry

        _run(_scenario())


class TestSupersede:
    def test_repeated_blocks_leave_one_timer_with_latest_duration(self, ledger, backend, unit):
        async def _scenario():
            first = await ledger.block(IP, Severity.LOW)
            second = await ledger.block(IP, Severity.LOW)
            third = await ledger.block(IP, Severity.MEDIUM)
            await asyncio.sleep(0.01)

            assert first.expiry_task.cancelled()
            assert second.expiry_task.cancelled()
            assert [e for e in (first, second, third) if e.timer_armed] == [third]
            assert ledger.active_entries() == [third]
            assert third.expires_at - third.created_at == unit * 2

            await asyncio.sleep(unit.total_seconds() * 4)
            # Only the rule on record is lifted; superseded rules stay remote
            assert backend.deleted == [third.remote_rule_id]
            assert sorted(backend.rules_for(IP)) == sorted(
                [first.remote_rule_id, second.remote_rule_id]
            )
            assert ledger.get(IP) is None

        _run(_scenario())

    def test_permanent_block_cancels_pending_expiry(self, ledger, backend, unit):
        async def _scenario():
            temp = await ledger.block(IP, Severity.LOW)
            perm = await ledger.block(IP, Severity.CRITICAL)
            await asyncio.sleep(unit.total_seconds() * 3)

            assert temp.expiry_task.cancelled()
            assert ledger.get(IP) is perm
            assert perm.remote_rule_id in backend.rules_for(IP)
            assert backend.deleted == []

        _run(_scenario())

    def test_concurrent_blocks_for_one_target_arm_one_timer(self, ledger):
        async def _scenario():
            entries = await asyncio.gather(*(ledger.block(IP, Severity.LOW) for _ in range(5)))
            await asyncio.sleep(0.01)

            armed = [e for e in entries if e.timer_armed]
            assert len(armed) == 1
            assert ledger.get(IP) is armed[0]
            assert len(ledger.active_entries()) == 1
            await ledger.close()

        _run(_scenario())

    def test_different_targets_are_independent(self, ledger, backend):
        async def _scenario():
            a, b = await asyncio.gather(
                ledger.block("198.51.100.1", Severity.LOW),
                ledger.block("198.51.100.2", Severity.LOW),
            )
            assert a.timer_armed and b.timer_armed
            assert {e.target_id for e in ledger.active_entries()} == {"198.51.100.1", "198.51.100.2"}
            await ledger.close()

        _run(_scenario())

    def test_backend_failure_leaves_existing_entry_untouched(self, ledger, backend):
        async def _scenario():
            entry = await ledger.block(IP, Severity.LOW)
            backend.fail_create = True
            with pytest.raises(CollaboratorError):
                await ledger.block(IP, Severity.MEDIUM)
            assert ledger.get(IP) is entry
            assert entry.timer_armed
            await ledger.close()

        _run(_scenario())


class TestUnblock:
    def test_block_then_unblock_round_trip(self, ledger, backend, unit):
        async def _scenario():
            entry = await ledger.block(IP, Severity.LOW)
            assert await ledger.unblock(IP) is True
            await asyncio.sleep(0.01)

            assert entry.expiry_task.cancelled()
            assert ledger.get(IP) is None
            assert backend.rules_for(IP) == []
            assert await ledger.unblock(IP) is False

            await asyncio.sleep(unit.total_seconds() * 3)
            assert backend.deleted == [entry.remote_rule_id]

        _run(_scenario())

    def test_unblock_removes_rule_this_process_never_installed(self, ledger, backend):
        async def _scenario():
            rule_id = backend.seed(IP)
            assert await ledger.unblock(IP) is True
            assert backend.deleted == [rule_id]

        _run(_scenario())

    def test_unblock_sweeps_superseded_rules(self, ledger, backend):
        async def _scenario():
            await ledger.block(IP, Severity.CRITICAL)
            await ledger.block(IP, Severity.CRITICAL)
            assert len(backend.rules_for(IP)) == 2
            assert await ledger.unblock(IP) is True
            assert backend.rules_for(IP) == []

        _run(_scenario())

    def test_unblock_unknown_target_is_not_found(self, ledger, backend):
        async def _scenario():
            backend.seed("192.0.2.50")
            assert await ledger.unblock("198.51.100.9") is False
            assert backend.deleted == []

        _run(_scenario())

    def test_unblock_ignores_non_block_rules(self, ledger, backend):
        async def _scenario():
            backend.seed(IP, mode="whitelist")
            assert await ledger.unblock(IP) is False
            assert backend.deleted == []

        _run(_scenario())

    def test_unblock_matches_equivalent_ipv6_spelling(self, ledger, backend):
        async def _scenario():
            rule_id = backend.seed("2001:db8:0:0::1")
            assert await ledger.unblock("2001:db8::1") is True
            assert backend.deleted == [rule_id]

        _run(_scenario())

    def test_expiry_after_unblock_and_reblock_does_not_touch_new_rule(self, ledger, backend, unit):
        async def _scenario():
            await ledger.block(IP, Severity.LOW)
            await ledger.unblock(IP)
            fresh = await ledger.block(IP, Severity.CRITICAL)

            await asyncio.sleep(unit.total_seconds() * 3)
            assert backend.rules_for(IP) == [fresh.remote_rule_id]
            assert ledger.get(IP) is fresh

        _run(_scenario())


class TestExpiryFailure:
    def test_cleanup_failure_is_logged_and_entry_dropped(self, ledger, backend, unit):
        async def _scenario():
            entry = await ledger.block(IP, Severity.LOW)
            backend.fail_delete = True
            await asyncio.sleep(unit.total_seconds() * 4)

            assert entry.expiry_task.done()
            assert not entry.expiry_task.cancelled()
            assert entry.expiry_task.exception() is None
            assert ledger.get(IP) is None
            # Remote rule survives; reconciling it is left to a manual unblock
            assert backend.rules_for(IP) == [entry.remote_rule_id]

        _run(_scenario())


class TestListBlocked:
    def test_lists_backend_block_rules_only(self, ledger, backend):
        async def _scenario():
            backend.seed("192.0.2.10")
            backend.seed("192.0.2.20", mode="whitelist")
            await ledger.block(IP, Severity.CRITICAL)
            assert sorted(await ledger.list_blocked()) == sorted(["192.0.2.10", IP])

        _run(_scenario())


class TestGatedPolicy:
    def _ledger(self, backend, unit):
        return BlockLedger(backend, duration_unit=unit, policy=BlockPolicy.GATED)

    @pytest.mark.parametrize("severity", [Severity.HIGH, Severity.CRITICAL])
    def test_permanent_without_flag_is_skipped(self, backend, unit, severity):
        ledger = self._ledger(backend, unit)
        assert _run(ledger.block(IP, severity)) is None
        assert backend.created == []

    def test_permanent_with_flag_is_installed(self, backend, unit):
        ledger = self._ledger(backend, unit)
        entry = _run(ledger.block(IP, Severity.CRITICAL, explicit_block=True))
        assert entry.permanent
        assert backend.created == [entry.remote_rule_id]

    def test_temporary_needs_no_flag(self, backend, unit):
        ledger = self._ledger(backend, unit)

        async def _scenario():
            entry = await ledger.block(IP, Severity.LOW)
            assert entry.timer_armed
            await ledger.close()

        _run(_scenario())


class TestLifecycle:
    def test_close_cancels_pending_timers(self, ledger, backend):
        async def _scenario():
            entry = await ledger.block(IP, Severity.MEDIUM)
            await ledger.close()
            assert entry.expiry_task.cancelled()
            assert backend.rules_for(IP) == [entry.remote_rule_id]

        _run(_scenario())

    def test_injected_store_holds_entries(self, backend):
        store = InMemoryBlockStore()
        ledger = BlockLedger(backend, store=store)
        entry = _run(ledger.block(IP, Severity.CRITICAL))
        assert store.get(IP) is entry
        assert IP in store
        assert len(store) == 1
