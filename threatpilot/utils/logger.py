"""Structured JSON logging configuration for the Remediation API.

Every event line carries ``service`` and ``version`` so remediation events
from several deployments can be told apart in one log index.
"""

import logging
import sys
from typing import Any, Callable, Dict

import structlog

from threatpilot import __version__

SERVICE_NAME = "threatpilot-remediation"


def _service_stamp(service: str) -> Callable[[Any, str, Dict[str, Any]], Dict[str, Any]]:
    def processor(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service)
        event_dict.setdefault("version", __version__)
        return event_dict

    return processor


def configure_logging(log_level: str = "INFO", service: str = SERVICE_NAME) -> None:
    """Send structlog events as JSON lines to stdout via stdlib logging.

    Going through stdlib lets uvicorn's own loggers share the stream, and
    ``merge_contextvars`` picks up the per-request ``action`` / ``issue``
    bound by the orchestrator.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(level=level, stream=sys.stdout, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _service_stamp(service),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", key="ts"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    return structlog.get_logger(name)
