"""
Structured logging for retrieval operations: vector writes, searches, cache
events and backfill batches.
"""

import logging
from typing import Any, Dict


def _truncate(text: str, limit: int = 50) -> str:
    return text[:limit] + "..." if len(text) > limit else text


class StructuredLogger:
    """Structured logger for embedding, search and backfill operations."""

    def __init__(self, name: str = "recall"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        if status in ("failed", "error"):
            self.logger.error(message)
        elif status in ("degraded", "skipped", "cancelled"):
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_message_operation(self, operation: str, message_id: Any, content: str = None, status: str = "success"):
        """Log a message store operation. Content is truncated, never logged in full."""
        details = {"message_id": str(message_id)}
        if content is not None:
            details["content"] = _truncate(content)

        self.log_operation(f"message.{operation}", status, details)

    def log_vector_operation(self, operation: str, message_id: Any, details: Dict[str, Any] = None, status: str = "success"):
        """Log a vector operation."""
        log_details = {"message_id": str(message_id)}
        if details:
            log_details.update(details)

        self.log_operation(f"vector.{operation}", status, log_details)

    def log_search(self, k: int, candidates: int, returned: int, shards: int, duration_ms: float, status: str = "success"):
        """Log a completed (or abandoned) similarity search."""
        self.log_operation("search", status, {
            "k": k,
            "candidates": candidates,
            "returned": returned,
            "shards": shards,
            "duration_ms": duration_ms,
        })

    def log_backfill_batch(self, batch_number: int, scanned: int, written: int, failed: int, status: str = "success"):
        """Log one backfill batch."""
        self.log_operation("backfill.batch", status, {
            "batch": batch_number,
            "scanned": scanned,
            "written": written,
            "failed": failed,
        })

    def log_cache_event(self, event: str, details: Dict[str, Any] = None):
        """Cache events are chatty; they go to debug."""
        message = f"Operation: cache.{event}"
        if details:
            message += f", Details: {details}"
        self.logger.debug(message)

    def set_debug(self, enabled: bool) -> None:
        """Switch between DEBUG and INFO verbosity."""
        self.logger.setLevel(logging.DEBUG if enabled else logging.INFO)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()
