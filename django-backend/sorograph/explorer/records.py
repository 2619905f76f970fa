"""
Decoded, correlated records produced per transaction request.

Everything here is transient: built fresh for one request and serialised with
:func:`to_primitive` for the API layer.
"""
import dataclasses
from dataclasses import dataclass, field
from typing import Any, Optional

SYSTEM_CONTRACT = "system"

# Operation kinds that carry Soroban semantics.
INVOKE_HOST_FUNCTION = "invoke_host_function"
EXTEND_FOOTPRINT_TTL = "extend_footprint_ttl"
RESTORE_FOOTPRINT = "restore_footprint"
SOROBAN_OPERATION_KINDS = (INVOKE_HOST_FUNCTION, EXTEND_FOOTPRINT_TTL, RESTORE_FOOTPRINT)

# Bookkeeping entries that never become graph nodes or correlation slots.
INTERNAL_OPERATION_KINDS = frozenset({"core_metrics"})


@dataclass
class StateChange:
    """One contract ledger-entry mutation."""

    change_type: str  # created | updated | removed | restored
    entry_kind: str  # contract_data | contract_code
    contract_id: Optional[str] = None
    storage_type: Optional[str] = None  # instance | persistent | temporary
    key: Any = None
    value: Any = None
    before: Any = None
    code_hash: Optional[str] = None

    @property
    def description(self) -> str:
        if self.entry_kind == "contract_code":
            return f"Contract code {self.change_type} ({self.code_hash})"
        return f"{(self.storage_type or 'contract').capitalize()} storage {self.change_type}"


@dataclass
class TtlExtension:
    entry_hash: str
    live_until_ledger: int
    previous_live_until_ledger: Optional[int] = None

    @property
    def description(self) -> str:
        if self.previous_live_until_ledger is None:
            return f"TTL set to ledger {self.live_until_ledger}"
        return (
            f"TTL extended from ledger {self.previous_live_until_ledger} "
            f"to {self.live_until_ledger}"
        )


@dataclass
class ContractEvent:
    contract_id: str
    event_type: str  # contract | system | diagnostic
    topics: list = field(default_factory=list)
    data: Any = None
    in_successful_contract_call: bool = True
    # first topic when it is a symbol, e.g. ``fn_call`` or ``transfer``
    name: Optional[str] = None


@dataclass
class CrossContractCall:
    from_contract: str
    to_contract: str
    function_name: Optional[str] = None
    success: bool = True


@dataclass
class ActualResources:
    """Counters observed after execution; zero means "not reported"."""

    cpu_instructions: int = 0
    memory_bytes: int = 0
    read_bytes: int = 0
    write_bytes: int = 0
    read_ledger_entries: int = 0
    write_ledger_entries: int = 0
    non_refundable_fee: int = 0
    refundable_fee: int = 0
    rent_fee: int = 0


@dataclass
class ResourceUsage:
    cpu_instructions: int = 0
    memory_bytes: int = 0
    read_bytes: int = 0
    write_bytes: int = 0
    read_ledger_entries: int = 0
    write_ledger_entries: int = 0
    budgeted_cpu_instructions: Optional[int] = None
    budgeted_memory_bytes: Optional[int] = None
    # budgeted minus consumed CPU when both are known
    cpu_instructions_delta: Optional[int] = None
    sources: dict = field(default_factory=dict)
    resource_fee: Optional[int] = None
    non_refundable_fee: Optional[int] = None
    refundable_fee: Optional[int] = None
    rent_fee: Optional[int] = None
    estimated_fee: Optional[int] = None

    @property
    def is_actual(self) -> bool:
        return self.sources.get("cpu_instructions") == "actual"


@dataclass
class OperationMeta:
    """What the metadata walker found for one operation."""

    state_changes: list = field(default_factory=list)
    ttl_extensions: list = field(default_factory=list)
    events: list = field(default_factory=list)
    cross_contract_calls: list = field(default_factory=list)
    resources: ActualResources = field(default_factory=ActualResources)
    return_value: Any = None


@dataclass
class SorobanOperation:
    operation_index: int
    contract_id: str
    function_name: str
    args: list = field(default_factory=list)
    auth: list = field(default_factory=list)
    result: Any = None
    error: Optional[str] = None
    events: list = field(default_factory=list)
    state_changes: list = field(default_factory=list)
    ttl_extensions: list = field(default_factory=list)
    resource_usage: Optional[ResourceUsage] = None
    cross_contract_calls: list = field(default_factory=list)
    resolved_by: Optional[str] = None
    type: str = "soroban"


@dataclass
class OperationError:
    operation: int
    error: str
    description: str
    category: str = "operation"
    operation_type: Optional[str] = None


@dataclass
class ErrorLayer:
    level: str
    code: str
    meaning: str
    operation_type: Optional[str] = None


@dataclass
class ErrorReport:
    outer_error: Optional[str] = None
    outer_description: Optional[str] = None
    inner_error: Optional[str] = None
    inner_description: Optional[str] = None
    is_fee_bump: bool = False
    operation_errors: list = field(default_factory=list)
    layers: list = field(default_factory=list)
    decode_error: Optional[str] = None

    @property
    def transaction_error(self) -> Optional[str]:
        """The code that explains the failure of the transaction itself."""
        return self.inner_error or self.outer_error

    @property
    def has_errors(self) -> bool:
        return bool(self.outer_error or self.inner_error or self.operation_errors)


@dataclass
class ExecutionReport:
    """Out-of-band execution data from Soroban RPC ``getTransaction``."""

    status: str
    envelope_xdr: Optional[str] = None
    result_xdr: Optional[str] = None
    result_meta_xdr: Optional[str] = None
    ledger: Optional[int] = None
    per_operation_results: list = field(default_factory=list)
    per_operation_auth: list = field(default_factory=list)
    create_contract_result: Optional[dict] = None

    NOT_FOUND = "NOT_FOUND"

    @property
    def found(self) -> bool:
        return self.status != self.NOT_FOUND


@dataclass
class SimulationReport:
    success: bool
    error: Optional[str] = None
    min_resource_fee: Optional[int] = None
    cpu_instructions: int = 0
    memory_bytes: int = 0
    transaction_data: Any = None  # xdr.SorobanTransactionData
    results: list = field(default_factory=list)
    latest_ledger: Optional[int] = None
    events: list = field(default_factory=list)  # base64 DiagnosticEvent


@dataclass
class SimulationResult:
    success: bool
    estimated_fee: str
    potential_errors: list = field(default_factory=list)
    resource_usage: Optional[ResourceUsage] = None
    logs: list = field(default_factory=list)
    operation_breakdown: list = field(default_factory=list)


@dataclass
class TransactionDetails:
    hash: str
    source_account: str
    fee: str
    status: str  # success | failed
    network: str
    operations: list = field(default_factory=list)
    soroban_operations: list = field(default_factory=list)
    events: list = field(default_factory=list)
    effects: list = field(default_factory=list)
    ledger_timestamp: Optional[str] = None
    fee_charged: Optional[str] = None
    max_fee: Optional[str] = None
    error_message: Optional[str] = None
    error_report: Optional[ErrorReport] = None
    debug_info: Optional[dict] = None
    resource_usage: Optional[ResourceUsage] = None
    simulation: Optional[SimulationResult] = None

    def soroban_operation_at(self, index: int) -> Optional[SorobanOperation]:
        for op in self.soroban_operations:
            if op.operation_index == index:
                return op
        return None


@dataclass
class GraphNode:
    id: str
    type: str
    data: dict = field(default_factory=dict)


@dataclass
class GraphEdge:
    id: str
    source: str
    target: str
    kind: str  # sequence | ownership


@dataclass
class Graph:
    nodes: list = field(default_factory=list)
    edges: list = field(default_factory=list)


def to_primitive(obj: Any) -> Any:
    """Convert records (and nested containers) into JSON-ready values."""
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        data = {f.name: to_primitive(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
        for prop in ("description", "is_actual", "has_errors", "transaction_error"):
            if isinstance(getattr(type(obj), prop, None), property):
                data[prop] = to_primitive(getattr(obj, prop))
        return data
    if isinstance(obj, dict):
        return {str(k): to_primitive(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_primitive(v) for v in obj]
    if isinstance(obj, str):
        return str(obj)
    if isinstance(obj, bytes):
        return obj.hex()
    return obj
