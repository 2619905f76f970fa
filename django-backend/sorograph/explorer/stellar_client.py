"""
Horizon and Soroban RPC clients used by the explorer.

Both clients are bound to one :class:`NetworkConfig`; a request picks its
network and builds fresh clients, so nothing here is shared across networks.
"""
import logging
from typing import Any, Optional

import jsonschema
from django.conf import settings
from stellar_sdk import FeeBumpTransactionEnvelope, Server, TransactionBuilder
from stellar_sdk import xdr as stellar_xdr
from stellar_sdk.exceptions import BaseRequestError, NotFoundError, SorobanRpcErrorResponse
from stellar_sdk.soroban_rpc import GetTransactionStatus
from stellar_sdk.soroban_server import SorobanServer

from .envelopes import envelope_operations, parse_envelope
from .exceptions import TransactionNotFound, TransportError
from .meta import parse_meta
from .networks import NetworkConfig
from .records import ExecutionReport, SimulationReport
from .scval import sc_address_to_str

logger = logging.getLogger(__name__)

HORIZON = "horizon"
SOROBAN_RPC = "soroban_rpc"
DEFAULT_OPERATIONS_LIMIT = 200

# The fields the pipeline relies on; Horizon adds many more.
HORIZON_TRANSACTION_SCHEMA = {
    "type": "object",
    "required": ["hash", "source_account", "successful"],
    "properties": {
        "hash": {"type": "string", "pattern": "^[0-9a-fA-F]{64}$"},
        "source_account": {"type": ["string", "array"]},
        "successful": {"type": "boolean"},
        "fee_charged": {"type": ["string", "integer"]},
        "max_fee": {"type": ["string", "integer"]},
        "created_at": {"type": "string"},
        "envelope_xdr": {"type": "string"},
        "result_xdr": {"type": "string"},
        "result_meta_xdr": {"type": "string"},
        "operation_count": {"type": "integer"},
    },
}


def _records(page: dict) -> list:
    return (page.get("_embedded") or {}).get("records") or []


class HorizonClient:
    """
    Thin wrapper over :class:`stellar_sdk.Server` that turns SDK request
    errors into :class:`TransportError` / :class:`TransactionNotFound`.
    """

    def __init__(self, network: NetworkConfig, server: Optional[Server] = None):
        self.network = network
        self.server = server or Server(horizon_url=network.horizon_url)
        self.operations_limit = getattr(settings, "EXPLORER_OPERATIONS_LIMIT", DEFAULT_OPERATIONS_LIMIT)

    def _call(self, builder, what: str) -> dict:
        try:
            return builder.call()
        except NotFoundError:
            raise
        except BaseRequestError as exc:
            logger.warning(
                "Horizon request for %s failed: %s",
                what,
                exc,
                extra={"network": self.network.name},
            )
            raise TransportError(f"Horizon request for {what} failed: {exc}", source=HORIZON) from exc

    def get_transaction(self, tx_hash: str) -> dict:
        """
        Fetch one transaction record.

        Raises:
            TransactionNotFound: Horizon answered 404.
            TransportError: any other request failure or a malformed record.
        """
        try:
            record = self._call(self.server.transactions().transaction(tx_hash), "transaction")
        except NotFoundError as exc:
            raise TransactionNotFound(
                f"Transaction {tx_hash} not found on {self.network.name}", source=HORIZON
            ) from exc
        try:
            jsonschema.validate(instance=record, schema=HORIZON_TRANSACTION_SCHEMA)
        except jsonschema.ValidationError as exc:
            raise TransportError(f"Malformed transaction record: {exc.message}", source=HORIZON) from exc
        return record

    def get_operations(self, tx_hash: str) -> list:
        builder = self.server.operations().for_transaction(tx_hash).limit(self.operations_limit)
        try:
            return _records(self._call(builder, "operations"))
        except NotFoundError as exc:
            raise TransportError(f"Operations for {tx_hash} not found", source=HORIZON) from exc

    def get_effects(self, tx_hash: str) -> list:
        builder = self.server.effects().for_transaction(tx_hash).limit(self.operations_limit)
        try:
            return _records(self._call(builder, "effects"))
        except NotFoundError as exc:
            raise TransportError(f"Effects for {tx_hash} not found", source=HORIZON) from exc

    def recent_transactions(self, limit: int = 50) -> list:
        builder = self.server.transactions().order(desc=True).limit(limit)
        try:
            return _records(self._call(builder, "recent transactions"))
        except NotFoundError as exc:
            raise TransportError("Recent transactions not available", source=HORIZON) from exc


class SorobanRpcClient:
    """Execution reports and simulations from Soroban RPC."""

    def __init__(self, network: NetworkConfig, server: Optional[SorobanServer] = None):
        if not network.rpc_url:
            raise TransportError(f"No Soroban RPC configured for {network.name}", source=SOROBAN_RPC)
        self.network = network
        self.server = server or SorobanServer(network.rpc_url)

    def get_execution_report(self, tx_hash: str) -> ExecutionReport:
        """
        Return the RPC view of *tx_hash*.

        RPC only keeps recent ledgers; an expired hash gives a report with
        status ``NOT_FOUND`` rather than an error.
        """
        try:
            response = self.server.get_transaction(tx_hash)
        except (BaseRequestError, SorobanRpcErrorResponse) as exc:
            raise TransportError(f"getTransaction failed: {exc}", source=SOROBAN_RPC) from exc

        if response.status == GetTransactionStatus.NOT_FOUND:
            logger.info("Transaction %s not retained by Soroban RPC", tx_hash)
            return ExecutionReport(status=ExecutionReport.NOT_FOUND)

        report = ExecutionReport(
            status=response.status.value,
            envelope_xdr=response.envelope_xdr,
            result_xdr=response.result_xdr,
            result_meta_xdr=response.result_meta_xdr,
            ledger=response.ledger,
        )
        self._annotate(report)
        return report

    def _annotate(self, report: ExecutionReport) -> None:
        """Fill per-operation auth and a created contract id from the raw XDRs."""
        if report.envelope_xdr:
            try:
                envelope = parse_envelope(report.envelope_xdr)
                report.per_operation_auth = [
                    list(op.body.invoke_host_function_op.auth or [])
                    if op.body.type == stellar_xdr.OperationType.INVOKE_HOST_FUNCTION
                    else []
                    for op in envelope_operations(envelope)
                ]
            except Exception as exc:
                logger.warning("Could not read auth entries from RPC envelope: %s", exc)
        if report.result_meta_xdr:
            try:
                report.create_contract_result = self._created_contract(report.result_meta_xdr)
            except Exception as exc:
                logger.warning("Could not read return value from RPC meta: %s", exc)

    def _created_contract(self, meta_xdr: str) -> Optional[dict]:
        meta = parse_meta(meta_xdr)
        body = meta.v4 if meta.v == 4 else meta.v3 if meta.v == 3 else None
        if body is None or body.soroban_meta is None or body.soroban_meta.return_value is None:
            return None
        value = body.soroban_meta.return_value
        if value.type != stellar_xdr.SCValType.SCV_ADDRESS:
            return None
        if value.address.type != stellar_xdr.SCAddressType.SC_ADDRESS_TYPE_CONTRACT:
            return None
        return {"contract_id": sc_address_to_str(value.address)}

    def simulate(self, envelope_xdr: str) -> SimulationReport:
        """Re-run a transaction envelope through ``simulateTransaction``."""
        envelope = TransactionBuilder.from_xdr(envelope_xdr, self.network.passphrase)
        if isinstance(envelope, FeeBumpTransactionEnvelope):
            envelope = envelope.transaction.inner_transaction_envelope
        try:
            response = self.server.simulate_transaction(envelope)
        except (BaseRequestError, SorobanRpcErrorResponse) as exc:
            raise TransportError(f"simulateTransaction failed: {exc}", source=SOROBAN_RPC) from exc

        cost = getattr(response, "cost", None)
        report = SimulationReport(
            success=not response.error,
            error=response.error,
            min_resource_fee=response.min_resource_fee,
            cpu_instructions=_int(getattr(cost, "cpu_insns", 0)),
            memory_bytes=_int(getattr(cost, "mem_bytes", 0)),
            transaction_data=response.transaction_data,
            results=[_result_xdr(r) for r in response.results or []],
            latest_ledger=response.latest_ledger,
            events=list(response.events or []),
        )
        return report


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _result_xdr(result: Any) -> Optional[str]:
    return getattr(result, "xdr", None)
