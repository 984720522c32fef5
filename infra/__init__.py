# Infrastructure module - logging, configuration and update notices
# Configuration lives in infra.config and is imported directly by callers

from .logging import (
    get_logger, configure_logging, RequestContext,
    get_request_id, generate_request_id
)
from .update_notice import UpdateNotifier, installed_version

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    "RequestContext",
    "get_request_id",
    "generate_request_id",
    # Update notice
    "UpdateNotifier",
    "installed_version",
]
