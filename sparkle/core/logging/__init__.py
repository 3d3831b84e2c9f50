"""
Structured logging for the Sparkle engine.

Usage
-----
```python
from sparkle.core.logging import get_logger, LogContext

logger = get_logger(__name__)
```
"""

from sparkle.core.logging.logger import (
    JSONFormatter,
    LogContext,
    clear_log_context,
    get_log_context,
    get_logger,
    set_log_context,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "JSONFormatter",
    "LogContext",
    "clear_log_context",
    "get_log_context",
    "get_logger",
    "set_log_context",
    "setup_logging",
    "shutdown_logging",
]
