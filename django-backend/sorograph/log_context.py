"""
Log context for structured logging: request_id (HTTP) plus tx_hash and
network while a transaction is being decoded.
"""
import logging
from contextlib import contextmanager
from contextvars import ContextVar

# Correlation fields for the current request (no PII).
log_context_var: ContextVar[dict] = ContextVar("log_context", default={})


def set_request_id(request_id: str) -> None:
    """Set request_id in context (e.g. from middleware)."""
    ctx = dict(log_context_var.get())
    ctx["request_id"] = request_id
    log_context_var.set(ctx)


@contextmanager
def transaction_context(tx_hash: str, network: str):
    """Tag every record logged inside the block with tx_hash and network."""
    ctx = dict(log_context_var.get())
    ctx.update(tx_hash=tx_hash, network=network)
    token = log_context_var.set(ctx)
    try:
        yield
    finally:
        log_context_var.reset(token)


def get_log_extra() -> dict:
    """Return current context for logger extra= (no PII)."""
    ctx = log_context_var.get()
    return dict(ctx) if ctx else {}


class LogContextFilter(logging.Filter):
    """Add request_id, tx_hash and network from context to each LogRecord."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = log_context_var.get()
        if ctx:
            for key, value in ctx.items():
                if value is not None and not hasattr(record, key):
                    setattr(record, key, value)
        return True
