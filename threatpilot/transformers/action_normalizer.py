"""
Action name normalization.

Upstream detectors and older playbooks spell the same remediation several
ways (``block_ip``, ``restart_service``, ``trigger_alert`` ...).  Everything
downstream of this module only ever sees a :class:`CanonicalAction`.
Unknown names are reported as ``None`` and never guessed.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Optional

from threatpilot.models.remediation import CanonicalAction

_ALIASES: Dict[str, CanonicalAction] = {
    "block_ip": CanonicalAction.BLOCK,
    "temp_block_ip": CanonicalAction.BLOCK,
    "ban_ip": CanonicalAction.BLOCK,
    "unblock_ip": CanonicalAction.UNBLOCK,
    "unban_ip": CanonicalAction.UNBLOCK,
    "list_blocked_ips": CanonicalAction.LIST_BLOCKED,
    "list_blocks": CanonicalAction.LIST_BLOCKED,
    "restart_service": CanonicalAction.RESTART,
    "scale_service": CanonicalAction.SCALE,
    "rollback_service": CanonicalAction.ROLLBACK,
    "drain_service": CanonicalAction.DRAIN,
    "notify_team": CanonicalAction.NOTIFY,
    "trigger_alert": CanonicalAction.NOTIFY,
}

# Canonical names resolve to themselves
_LOOKUP: Dict[str, CanonicalAction] = {
    **{action.value: action for action in CanonicalAction},
    **_ALIASES,
}

# Service-impacting actions: only ever turned into an approval ticket
APPROVAL_REQUIRED: FrozenSet[CanonicalAction] = frozenset(
    {
        CanonicalAction.RESTART,
        CanonicalAction.SCALE,
        CanonicalAction.ROLLBACK,
        CanonicalAction.DRAIN,
    }
)


def normalize_action(raw_action: Optional[str]) -> Optional[CanonicalAction]:
    """Map *raw_action* to its canonical action, or ``None`` if unknown.

    Lookup is exact: ``"Block_IP"`` or ``" block "`` are not accepted.
    """
    if not isinstance(raw_action, str):
        return None
    return _LOOKUP.get(raw_action)
