"""Severity → block duration and ticket priority."""

from __future__ import annotations

from datetime import timedelta
from typing import Dict, Optional

from threatpilot.models.remediation import Severity, TicketPriority

# Multiples of the configured duration unit; None means a permanent block
_BLOCK_UNITS: Dict[Severity, Optional[int]] = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: None,
    Severity.CRITICAL: None,
}

_TICKET_PRIORITY: Dict[Severity, TicketPriority] = {
    Severity.CRITICAL: TicketPriority.HIGHEST,
    Severity.HIGH: TicketPriority.HIGH,
    Severity.MEDIUM: TicketPriority.MEDIUM,
}

DEFAULT_UNIT = timedelta(minutes=1)


def block_duration(severity: Severity, unit: timedelta = DEFAULT_UNIT) -> Optional[timedelta]:
    """How long a block for *severity* lasts, ``None`` for permanent."""
    units = _BLOCK_UNITS[Severity(severity)]
    if units is None:
        return None
    return unit * units


def ticket_priority(severity: Severity) -> TicketPriority:
    return _TICKET_PRIORITY.get(Severity(severity), TicketPriority.LOW)
