"""
Contract / function resolution for Soroban operations.

Historical Horizon records rarely carry every field, so the invoked contract
is found through a ranked list of strategies. Each strategy is a predicate
(is the source present?) plus an extractor; the first extractor that yields a
valid contract id wins. The order is part of the contract of this module.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from stellar_sdk import xdr as stellar_xdr

from .envelopes import EnvelopeBlob, decode_auth_entry, invoke_host_function_op, parse_envelope
from .networks import NetworkConfig
from .records import INVOKE_HOST_FUNCTION, ExecutionReport
from .scval import ScValDecoder, parse_scval, sc_address_to_str, symbol_of
from .strkey import is_contract_id

logger = logging.getLogger(__name__)

DIRECT_FIELDS = ("contract_id", "contract_address", "address", "contract")
REPORT_FIELDS = ("contract_id", "contractId", "contract_address", "contractAddress")
RESOLVED_PARAMETER_FIELDS = ("contractAddress", "contractId")

DEFAULT_FUNCTION_NAME = "invoke"
_HORIZON_FUNCTION_NAMES = {
    "HostFunctionTypeHostFunctionTypeCreateContract": "create_contract",
    "HostFunctionTypeHostFunctionTypeCreateContractV2": "create_contract",
    "HostFunctionTypeHostFunctionTypeUploadContractWasm": "upload_wasm",
}
_HOST_FUNCTION_NAMES = {
    stellar_xdr.HostFunctionType.HOST_FUNCTION_TYPE_CREATE_CONTRACT: "create_contract",
    stellar_xdr.HostFunctionType.HOST_FUNCTION_TYPE_UPLOAD_CONTRACT_WASM: "upload_wasm",
}


class UnresolvedContract(str):
    """Placeholder contract id that records why resolution failed.

    ``cause`` is ``"exhausted"`` when every strategy missed on an invocation
    (the text names the network), or ``"not_invocation"`` for Soroban
    operations that do not invoke a contract.
    """

    EXHAUSTED = "exhausted"
    NOT_INVOCATION = "not_invocation"

    cause: str
    network: Optional[str]

    def __new__(cls, cause: str, index: int, network: Optional[str] = None):
        if cause == cls.EXHAUSTED:
            text = f"Unknown_Contract_{network}_Op{index + 1}"
        else:
            text = f"Not_An_Invocation_Op{index + 1}"
        obj = super().__new__(cls, text)
        obj.cause = cause
        obj.network = network
        return obj


def is_unresolved(contract_id: Any) -> bool:
    return isinstance(contract_id, UnresolvedContract)


@dataclass
class Invocation:
    contract_id: str
    function_name: str = DEFAULT_FUNCTION_NAME
    args: list = field(default_factory=list)
    auth: list = field(default_factory=list)
    strategy: Optional[str] = None


@dataclass
class ResolutionContext:
    operation: dict
    index: int
    network: NetworkConfig
    report: Optional[ExecutionReport] = None
    envelope: Optional[EnvelopeBlob] = None
    _parsed_envelope: Any = field(default=None, repr=False)

    def parsed_envelope(self) -> Optional[stellar_xdr.TransactionEnvelope]:
        if self._parsed_envelope is None and self.envelope is not None:
            self._parsed_envelope = parse_envelope(self.envelope)
        return self._parsed_envelope

    def host_function_xdr(self) -> Optional[str]:
        nested = self.operation.get("invoke_host_function_op") or {}
        return self.operation.get("host_function") or nested.get("host_function")


@dataclass(frozen=True)
class Strategy:
    name: str
    applies: Callable[[ResolutionContext], bool]
    extract: Callable[[ResolutionContext], Optional[str]]


def _contract_or_none(value: Any) -> Optional[str]:
    return value if is_contract_id(value) else None


def _invoke_contract_args(host_function: stellar_xdr.HostFunction) -> Optional[stellar_xdr.InvokeContractArgs]:
    if host_function.type != stellar_xdr.HostFunctionType.HOST_FUNCTION_TYPE_INVOKE_CONTRACT:
        return None
    return host_function.invoke_contract


def _address_of(args: Optional[stellar_xdr.InvokeContractArgs]) -> Optional[str]:
    if args is None:
        return None
    if args.contract_address.type != stellar_xdr.SCAddressType.SC_ADDRESS_TYPE_CONTRACT:
        return None
    return sc_address_to_str(args.contract_address)


def _from_direct_field(ctx: ResolutionContext) -> Optional[str]:
    for name in DIRECT_FIELDS:
        found = _contract_or_none(ctx.operation.get(name))
        if found:
            return found
    return None


def _from_address_parameter(ctx: ResolutionContext) -> Optional[str]:
    for parameter in ctx.operation["parameters"]:
        if not isinstance(parameter, dict) or parameter.get("type") != "Address":
            continue
        value = parse_scval(parameter.get("value"))
        if value is None or value.type != stellar_xdr.SCValType.SCV_ADDRESS:
            continue
        # only the first address parameter names the invoked contract
        address = value.address
        if address.type == stellar_xdr.SCAddressType.SC_ADDRESS_TYPE_CONTRACT:
            return sc_address_to_str(address)
        return None
    return None


def _from_host_function(ctx: ResolutionContext) -> Optional[str]:
    host_function = stellar_xdr.HostFunction.from_xdr(ctx.host_function_xdr())
    return _address_of(_invoke_contract_args(host_function))


def _from_resolved_parameters(ctx: ResolutionContext) -> Optional[str]:
    parameters = ctx.operation["parameters"]
    for name in RESOLVED_PARAMETER_FIELDS:
        found = _contract_or_none(parameters.get(name))
        if found:
            return found
    return None


def _from_execution_report(ctx: ResolutionContext) -> Optional[str]:
    report = ctx.report
    results = report.per_operation_results or []
    if ctx.index < len(results) and isinstance(results[ctx.index], dict):
        for name in REPORT_FIELDS:
            found = _contract_or_none(results[ctx.index].get(name))
            if found:
                return found
    created = report.create_contract_result or {}
    return _contract_or_none(created.get("contract_id") or created.get("contractId"))


def _from_envelope(ctx: ResolutionContext) -> Optional[str]:
    op = invoke_host_function_op(ctx.parsed_envelope(), ctx.index)
    if op is None:
        return None
    return _address_of(_invoke_contract_args(op.host_function))


STRATEGIES: tuple[Strategy, ...] = (
    Strategy(
        "direct_field",
        lambda ctx: any(ctx.operation.get(name) for name in DIRECT_FIELDS),
        _from_direct_field,
    ),
    Strategy(
        "address_parameter",
        lambda ctx: isinstance(ctx.operation.get("parameters"), list),
        _from_address_parameter,
    ),
    Strategy(
        "host_function",
        lambda ctx: bool(ctx.host_function_xdr()),
        _from_host_function,
    ),
    Strategy(
        "resolved_parameters",
        lambda ctx: isinstance(ctx.operation.get("parameters"), dict),
        _from_resolved_parameters,
    ),
    Strategy(
        "execution_report",
        lambda ctx: ctx.report is not None,
        _from_execution_report,
    ),
    Strategy(
        "envelope",
        lambda ctx: ctx.envelope is not None,
        _from_envelope,
    ),
)


class ContractResolver:
    def __init__(self, decoder: Optional[ScValDecoder] = None, strategies=STRATEGIES):
        self.decoder = decoder or ScValDecoder()
        self.strategies = strategies

    def resolve_contract(self, ctx: ResolutionContext) -> tuple[str, Optional[str]]:
        """Return ``(contract_id, strategy_name)``; the name is ``None`` when unresolved."""
        if ctx.operation.get("type") != INVOKE_HOST_FUNCTION:
            return UnresolvedContract(UnresolvedContract.NOT_INVOCATION, ctx.index), None
        for strategy in self.strategies:
            if not strategy.applies(ctx):
                continue
            try:
                found = strategy.extract(ctx)
            except Exception as exc:
                logger.debug("Strategy %s failed for op %s: %s", strategy.name, ctx.index, exc)
                continue
            if found:
                logger.debug("Op %s resolved by %s: %s", ctx.index, strategy.name, found)
                return found, strategy.name
        logger.info(
            "Could not resolve contract for op %s",
            ctx.index,
            extra={"network": ctx.network.name},
        )
        return UnresolvedContract(UnresolvedContract.EXHAUSTED, ctx.index, ctx.network.name), None

    def resolve(self, ctx: ResolutionContext) -> Invocation:
        contract_id, strategy = self.resolve_contract(ctx)
        invocation = Invocation(contract_id=contract_id, strategy=strategy)
        if ctx.operation.get("type") != INVOKE_HOST_FUNCTION:
            invocation.function_name = ctx.operation.get("type", DEFAULT_FUNCTION_NAME)
            return invocation
        self._function_details(ctx, invocation)
        invocation.auth = self._auth(ctx)
        return invocation

    # -- function name / args ------------------------------------------------

    def _function_details(self, ctx: ResolutionContext, invocation: Invocation) -> None:
        for source in (self._details_from_parameters, self._details_from_host_function, self._details_from_envelope):
            try:
                details = source(ctx)
            except Exception as exc:
                logger.debug("Function detail source %s failed: %s", source.__name__, exc)
                continue
            if details is not None:
                invocation.function_name, invocation.args = details
                return

    def _details_from_parameters(self, ctx: ResolutionContext) -> Optional[tuple[str, list]]:
        function = ctx.operation.get("function")
        if function in _HORIZON_FUNCTION_NAMES:
            return _HORIZON_FUNCTION_NAMES[function], []
        parameters = ctx.operation.get("parameters")
        if not isinstance(parameters, list) or len(parameters) < 2:
            return None
        name = symbol_of(parameters[1].get("value"))
        if name is None:
            return None
        args = [self.decoder.decode(p.get("value")) for p in parameters[2:]]
        return name, args

    def _details_from_host_function(self, ctx: ResolutionContext) -> Optional[tuple[str, list]]:
        raw = ctx.host_function_xdr()
        if not raw:
            return None
        return self._details_from_xdr(stellar_xdr.HostFunction.from_xdr(raw))

    def _details_from_envelope(self, ctx: ResolutionContext) -> Optional[tuple[str, list]]:
        if ctx.envelope is None:
            return None
        op = invoke_host_function_op(ctx.parsed_envelope(), ctx.index)
        if op is None:
            return None
        return self._details_from_xdr(op.host_function)

    def _details_from_xdr(self, host_function: stellar_xdr.HostFunction) -> Optional[tuple[str, list]]:
        if host_function.type in _HOST_FUNCTION_NAMES:
            return _HOST_FUNCTION_NAMES[host_function.type], []
        args = _invoke_contract_args(host_function)
        if args is None:
            return "create_contract", []
        name = args.function_name.sc_symbol.decode("utf-8", errors="replace")
        return name, [self.decoder.decode(arg) for arg in args.args]

    # -- authorization ---------------------------------------------------------

    def _auth(self, ctx: ResolutionContext) -> list:
        entries: list = []
        try:
            if ctx.envelope is not None:
                op = invoke_host_function_op(ctx.parsed_envelope(), ctx.index)
                if op is not None:
                    entries = list(op.auth or [])
        except Exception as exc:
            logger.debug("Envelope auth decode failed: %s", exc)
        if not entries and ctx.report is not None:
            per_op = ctx.report.per_operation_auth or []
            if ctx.index < len(per_op):
                entries = list(per_op[ctx.index] or [])
        decoded = []
        for entry in entries:
            try:
                decoded.append(decode_auth_entry(entry, self.decoder))
            except Exception as exc:
                logger.debug("Auth entry decode failed: %s", exc)
        return decoded


def resolve(
    operation: dict,
    index: int,
    network: NetworkConfig,
    *,
    report: Optional[ExecutionReport] = None,
    envelope: Optional[EnvelopeBlob] = None,
) -> Invocation:
    ctx = ResolutionContext(operation, index, network, report=report, envelope=envelope)
    return ContractResolver().resolve(ctx)
