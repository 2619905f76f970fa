"""
Typed failures raised by SoroGraph transport and pipeline code.

Decode problems are never raised: they surface as inline sentinel values.
"""


class ExplorerError(Exception):
    """Base class for explorer failures."""


class TransportError(ExplorerError):
    """A Horizon or Soroban RPC request failed."""

    def __init__(self, message: str, source: str = "horizon"):
        super().__init__(message)
        self.message = message
        self.source = source

    def __str__(self) -> str:
        return f"{self.source}: {self.message}"


class TransactionNotFound(TransportError):
    """The requested transaction does not exist on the selected network."""
