from .logger import setup_logging, get_logger, ContextLogger
from .utcnow import utcnow, epoch_ms
from .validation import (
    validate_eth_address,
    normalize_address,
    validate_limit,
)

__all__ = [
    # Logger
    "setup_logging",
    "get_logger",
    "ContextLogger",

    # Time
    "utcnow",
    "epoch_ms",

    # Validation
    "validate_eth_address",
    "normalize_address",
    "validate_limit",
]
