"""
Transaction decode pipeline.

:class:`TransactionExplorer` fetches one transaction from Horizon (and, when
available, Soroban RPC), runs the resolver and metadata walker on every
Soroban operation and assembles a :class:`TransactionDetails`.

Only "the transaction cannot be found" is fatal. Every other fetch or
decode step degrades to empty data with a warning.
"""
import logging
from typing import Optional, Union

from django.conf import settings

from sorograph.log_context import transaction_context

from .envelopes import envelope_operations, envelope_type_name, fee_bump_info, parse_envelope
from .exceptions import TransportError
from .failures import analyze_result
from .graph import build_graph, visible_operations
from .meta import MetaWalker
from .networks import NetworkConfig, get_network
from .records import (
    INVOKE_HOST_FUNCTION,
    SOROBAN_OPERATION_KINDS,
    ErrorReport,
    ExecutionReport,
    Graph,
    OperationMeta,
    SimulationReport,
    SimulationResult,
    SorobanOperation,
    TransactionDetails,
    to_primitive,
)
from .resolver import ContractResolver, ResolutionContext, UnresolvedContract, is_unresolved
from .resources import analyze_resources, soroban_data_from_envelope
from .scval import ScValDecoder, iter_sentinels
from .stellar_client import HorizonClient, SorobanRpcClient
from .strkey import is_contract_id

logger = logging.getLogger(__name__)

UNRESOLVED_CONTRACT_ERROR = "Could not extract contract information"


def _get_metrics():
    """Return the metrics module, importing it on first call."""
    from sorograph.explorer import metrics  # noqa: PLC0415
    return metrics


def normalize_source_account(value) -> str:
    """Some Horizon deployments return the source account as a list."""
    if isinstance(value, (list, tuple)):
        if len(value) == 1:
            return str(value[0])
        return ", ".join(str(v) for v in value)
    return value or ""


def _operations_from_envelope(envelope_xdr: Optional[str]) -> list:
    """Minimal operation records rebuilt from the envelope."""
    if not envelope_xdr:
        return []
    try:
        operations = envelope_operations(parse_envelope(envelope_xdr))
    except Exception as exc:
        logger.warning("Could not rebuild operations from envelope: %s", exc)
        return []
    return [{"type": op.body.type.name.lower()} for op in operations]


class TransactionExplorer:
    """
    Decode transactions on one network.

    ``horizon`` and ``rpc`` default to clients built from the network config;
    tests pass doubles. ``rpc`` stays ``None`` when the network has no RPC
    endpoint configured.
    """

    def __init__(
        self,
        network: Union[NetworkConfig, str, None] = None,
        horizon: Optional[HorizonClient] = None,
        rpc: Optional[SorobanRpcClient] = None,
        decoder: Optional[ScValDecoder] = None,
    ):
        self.network = network if isinstance(network, NetworkConfig) else get_network(network)
        self.horizon = horizon or HorizonClient(self.network)
        if rpc is None and self.network.rpc_url:
            rpc = SorobanRpcClient(self.network)
        self.rpc = rpc
        self.decoder = decoder or ScValDecoder(
            bytes_format=getattr(settings, "EXPLORER_BYTES_FORMAT", "hex"),
            max_map_entries=getattr(settings, "EXPLORER_MAP_DISPLAY_LIMIT", 10),
        )
        self.walker = MetaWalker(self.decoder)
        self.resolver = ContractResolver(self.decoder)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def fetch(self, tx_hash: str, *, simulate: bool = False) -> TransactionDetails:
        """
        Fetch and decode *tx_hash*.

        Raises:
            TransactionNotFound: Horizon does not know the hash.
            TransportError: Horizon could not be reached for the transaction.
        """
        with transaction_context(tx_hash, self.network.name):
            with _get_metrics().decode_duration_seconds.labels(network=self.network.name).time():
                details = self._fetch(tx_hash, simulate)
            _get_metrics().transactions_decoded_total.labels(
                network=self.network.name, status=details.status
            ).inc()
            logger.info(
                "Decoded transaction with %s operations",
                len(details.operations),
                extra={"soroban_operations": len(details.soroban_operations)},
            )
            return details

    def graph(self, details: TransactionDetails) -> Graph:
        return build_graph(details)

    def simulate(self, tx_hash: str) -> SimulationResult:
        """Re-simulate a recorded transaction against the current ledger."""
        with transaction_context(tx_hash, self.network.name):
            record = self.horizon.get_transaction(tx_hash)
            operations = self._operations(tx_hash, record)
            result, _ = self._simulate(record, operations)
            return result

    def find_contract_transactions(self, contract_id: str, *, scan: int = 50, limit: int = 10) -> list:
        """
        Decode up to *limit* of the *scan* most recent transactions that
        invoke *contract_id*.
        """
        if not is_contract_id(contract_id):
            raise ValueError(f"Invalid contract id: {contract_id}")
        found = []
        for record in self.horizon.recent_transactions(limit=scan):
            tx_hash = record.get("hash")
            try:
                operations = self.horizon.get_operations(tx_hash)
            except TransportError as exc:
                logger.warning("Skipping %s while scanning for %s: %s", tx_hash, contract_id, exc)
                continue
            if not self._invokes(contract_id, operations, record):
                continue
            try:
                found.append(self.fetch(tx_hash))
            except TransportError as exc:
                logger.warning("Could not decode matching transaction %s: %s", tx_hash, exc)
                continue
            if len(found) >= limit:
                break
        logger.info("Found %s transactions for contract %s", len(found), contract_id)
        return found

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _fetch(self, tx_hash: str, simulate: bool) -> TransactionDetails:
        record = self.horizon.get_transaction(tx_hash)
        operations = self._operations(tx_hash, record)
        effects = self._effects(tx_hash)

        report = None
        if any(op.get("type") in SOROBAN_OPERATION_KINDS for op in operations):
            report = self._execution_report(tx_hash)

        envelope_xdr = (report and report.envelope_xdr) or record.get("envelope_xdr")
        result_xdr = (report and report.result_xdr) or record.get("result_xdr")
        meta_xdr = (report and report.result_meta_xdr) or record.get("result_meta_xdr")

        successful = bool(record.get("successful"))
        details = TransactionDetails(
            hash=record["hash"],
            source_account=normalize_source_account(record.get("source_account")),
            fee=str(record.get("fee_charged") or record.get("max_fee") or "0"),
            status="success" if successful else "failed",
            network=self.network.name,
            operations=operations,
            effects=effects,
            ledger_timestamp=record.get("created_at"),
            fee_charged=_optional_str(record.get("fee_charged")),
            max_fee=_optional_str(record.get("max_fee")),
        )
        details.error_report = analyze_result(result_xdr) if result_xdr else ErrorReport()

        simulation_report = None
        if simulate:
            details.simulation, simulation_report = self._simulate(record, operations)

        declared = soroban_data_from_envelope(envelope_xdr)
        for index, operation in enumerate(operations):
            if operation.get("type") not in SOROBAN_OPERATION_KINDS:
                continue
            soroban_op = self._soroban_operation(
                operation,
                index,
                report,
                envelope_xdr,
                meta_xdr,
                details.error_report,
                declared=declared,
                simulation_report=simulation_report,
            )
            details.soroban_operations.append(soroban_op)
            details.events.extend(soroban_op.events)

        if details.soroban_operations:
            details.resource_usage = details.soroban_operations[0].resource_usage

        if not successful:
            details.error_message = self._error_message(details.error_report, record)
            details.debug_info = self._debug_info(
                envelope_xdr, result_xdr, meta_xdr, details.error_report, record
            )
        return details

    def _soroban_operation(
        self,
        operation: dict,
        index: int,
        report: Optional[ExecutionReport],
        envelope_xdr: Optional[str],
        meta_xdr: Optional[str],
        error_report: ErrorReport,
        declared=None,
        simulation_report: Optional[SimulationReport] = None,
    ) -> SorobanOperation:
        ctx = ResolutionContext(operation, index, self.network, report=report, envelope=envelope_xdr)
        invocation = self.resolver.resolve(ctx)
        meta = self.walker.extract_for_operation(meta_xdr, index) if meta_xdr else OperationMeta()

        contract_id, strategy = invocation.contract_id, invocation.strategy
        if (
            is_unresolved(contract_id)
            and contract_id.cause == UnresolvedContract.EXHAUSTED
            and invocation.function_name == "create_contract"
            and is_contract_id(meta.return_value)
        ):
            contract_id, strategy = meta.return_value, "return_value"

        error = None
        for failure in error_report.operation_errors:
            if failure.operation == index:
                error = f"{failure.error}: {failure.description}"
        if error is None and is_unresolved(contract_id) and contract_id.cause == UnresolvedContract.EXHAUSTED:
            error = UNRESOLVED_CONTRACT_ERROR

        metrics = _get_metrics()
        metrics.resolver_strategy_hits_total.labels(
            network=self.network.name, strategy=strategy or "unresolved"
        ).inc()
        for sentinel in iter_sentinels([invocation.args, meta.return_value]):
            metrics.sentinel_values_total.labels(reason=sentinel.reason).inc()

        return SorobanOperation(
            operation_index=index,
            contract_id=contract_id,
            function_name=invocation.function_name,
            args=invocation.args,
            auth=invocation.auth,
            result=meta.return_value,
            error=error,
            events=meta.events,
            state_changes=meta.state_changes,
            ttl_extensions=meta.ttl_extensions,
            resource_usage=analyze_resources(declared, meta.resources, simulation_report),
            cross_contract_calls=meta.cross_contract_calls,
            resolved_by=strategy,
        )

    # ------------------------------------------------------------------
    # Degradable fetches
    # ------------------------------------------------------------------

    def _transport_failed(self, call: str, exc: TransportError) -> None:
        logger.warning("%s unavailable: %s", call, exc)
        _get_metrics().transport_errors_total.labels(
            network=self.network.name, source=exc.source, call=call
        ).inc()

    def _operations(self, tx_hash: str, record: dict) -> list:
        try:
            operations = self.horizon.get_operations(tx_hash)
        except TransportError as exc:
            self._transport_failed("operations", exc)
            operations = _operations_from_envelope(record.get("envelope_xdr"))
        return visible_operations(operations)

    def _effects(self, tx_hash: str) -> list:
        try:
            return self.horizon.get_effects(tx_hash)
        except TransportError as exc:
            self._transport_failed("effects", exc)
            return []

    def _execution_report(self, tx_hash: str) -> Optional[ExecutionReport]:
        if self.rpc is None:
            return None
        try:
            report = self.rpc.get_execution_report(tx_hash)
        except TransportError as exc:
            self._transport_failed("execution_report", exc)
            return None
        return report if report.found else None

    def _simulate(self, record: dict, operations: list) -> tuple[SimulationResult, Optional[SimulationReport]]:
        recorded = analyze_result(record["result_xdr"]) if record.get("result_xdr") else ErrorReport()
        recorded_errors = [layer.meaning for layer in recorded.layers]

        if self.rpc is None:
            return SimulationResult(
                success=False,
                estimated_fee="0",
                potential_errors=[f"Soroban RPC is not configured for {self.network.name}"] + recorded_errors,
            ), None
        envelope_xdr = record.get("envelope_xdr")
        if not envelope_xdr:
            return SimulationResult(
                success=False, estimated_fee="0", potential_errors=["Transaction has no envelope"]
            ), None
        try:
            report = self.rpc.simulate(envelope_xdr)
        except (TransportError, ValueError) as exc:
            logger.warning("Simulation failed: %s", exc)
            return SimulationResult(
                success=False, estimated_fee="0", potential_errors=[str(exc)] + recorded_errors
            ), None

        potential_errors = ([report.error] if report.error else []) + recorded_errors
        logs = []
        for event_xdr in report.events:
            try:
                event = self.walker.decode_diagnostic_event(event_xdr)
            except Exception as exc:
                logger.debug("Could not decode simulation event: %s", exc)
                continue
            logs.append(f"[{event.contract_id}] {event.name or event.event_type}: {to_primitive(event.data)}")

        breakdown = []
        for index, operation in enumerate(operations):
            entry = {"operation_index": index, "type": operation.get("type")}
            if operation.get("type") == INVOKE_HOST_FUNCTION:
                ctx = ResolutionContext(operation, index, self.network, envelope=envelope_xdr)
                invocation = self.resolver.resolve(ctx)
                entry["contract_id"] = str(invocation.contract_id)
                entry["function_name"] = invocation.function_name
                if index < len(report.results) and report.results[index]:
                    entry["result"] = self.decoder.decode(report.results[index])
            breakdown.append(entry)

        return SimulationResult(
            success=report.success,
            estimated_fee=str(report.min_resource_fee or 0),
            potential_errors=potential_errors,
            resource_usage=analyze_resources(None, simulation=report),
            logs=logs,
            operation_breakdown=breakdown,
        ), report

    # ------------------------------------------------------------------
    # Failure reporting
    # ------------------------------------------------------------------

    def _error_message(self, error_report: ErrorReport, record: dict) -> str:
        if error_report.transaction_error:
            description = error_report.inner_description or error_report.outer_description
            return f"{error_report.transaction_error}: {description}"
        codes = record.get("result_codes") or {}
        return codes.get("transaction") or "Transaction failed"

    def _debug_info(
        self,
        envelope_xdr: Optional[str],
        result_xdr: Optional[str],
        meta_xdr: Optional[str],
        error_report: ErrorReport,
        record: dict,
    ) -> dict:
        debug = {
            "envelope_xdr": envelope_xdr,
            "result_xdr": result_xdr,
            "result_meta_xdr": meta_xdr,
            "result_codes": record.get("result_codes"),
            "error_analysis": to_primitive(error_report),
        }
        if envelope_xdr:
            try:
                envelope = parse_envelope(envelope_xdr)
                debug["envelope_type"] = envelope_type_name(envelope)
                bump = fee_bump_info(envelope)
                debug["fee_bump"] = to_primitive(bump) if bump else None
            except Exception as exc:
                logger.warning("Could not decode envelope for debug info: %s", exc)
        return debug

    def _invokes(self, contract_id: str, operations: list, record: dict) -> bool:
        for index, operation in enumerate(visible_operations(operations)):
            if operation.get("type") != INVOKE_HOST_FUNCTION:
                continue
            ctx = ResolutionContext(
                operation, index, self.network, envelope=record.get("envelope_xdr")
            )
            found, _ = self.resolver.resolve_contract(ctx)
            if found == contract_id:
                return True
        return False


def _optional_str(value) -> Optional[str]:
    return None if value is None else str(value)
