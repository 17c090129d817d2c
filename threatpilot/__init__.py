"""ThreatPilot remediation orchestrator: IP blocks with TTL, approval tickets, SRE alerts."""

__version__ = "1.0.0"
