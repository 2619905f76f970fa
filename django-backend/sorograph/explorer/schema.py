"""GraphQL schema for the SoroGraph explorer using Strawberry."""

from __future__ import annotations

import logging
from typing import Optional

import strawberry
from strawberry.scalars import JSON

from .exceptions import TransactionNotFound
from .networks import available_networks
from .records import to_primitive
from .scval import decode_scval, is_sentinel
from .service import TransactionExplorer

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# GraphQL types
# ---------------------------------------------------------------------------

@strawberry.type
class TransactionType:
    hash: str
    network: str
    status: str
    source_account: str
    fee: str
    ledger_timestamp: Optional[str]
    error_message: Optional[str]
    operation_count: int
    soroban_operation_count: int
    details: JSON
    graph: JSON


@strawberry.type
class DecodedScValType:
    value: Optional[JSON]
    sentinel: bool


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------

@strawberry.type
class Query:
    @strawberry.field
    def networks(self) -> list[str]:
        return available_networks()

    @strawberry.field
    def transaction(
        self,
        hash: str,
        network: Optional[str] = None,
        simulate: bool = False,
    ) -> Optional[TransactionType]:
        """Decoded transaction; null when the hash is unknown on the network."""
        explorer = TransactionExplorer(network)
        try:
            details = explorer.fetch(hash.lower(), simulate=simulate)
        except TransactionNotFound:
            logger.info("GraphQL transaction lookup missed", extra={"tx_hash": hash})
            return None
        return TransactionType(
            hash=details.hash,
            network=details.network,
            status=details.status,
            source_account=details.source_account,
            fee=details.fee,
            ledger_timestamp=details.ledger_timestamp,
            error_message=details.error_message,
            operation_count=len(details.operations),
            soroban_operation_count=len(details.soroban_operations),
            details=to_primitive(details),
            graph=to_primitive(explorer.graph(details)),
        )

    @strawberry.field
    def decode_scval(
        self,
        xdr: str,
        bytes_format: str = "hex",
        max_map_entries: int = 10,
    ) -> DecodedScValType:
        value = decode_scval(xdr, bytes_format=bytes_format, max_map_entries=max_map_entries)
        return DecodedScValType(value=to_primitive(value), sentinel=is_sentinel(value))


schema = strawberry.Schema(query=Query)
