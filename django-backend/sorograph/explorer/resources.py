"""
Resource usage analysis.

Combines actual counters (from execution metadata) with the budget declared
in the transaction's ``SorobanTransactionData`` or returned by a simulation.
A single rule applies to every field: the actual figure if it is non-zero,
otherwise the budgeted figure, otherwise zero.
"""
import logging
from typing import Optional, Union

from stellar_sdk import xdr as stellar_xdr

from .envelopes import EnvelopeBlob, parse_envelope, soroban_data
from .records import ActualResources, ResourceUsage, SimulationReport

logger = logging.getLogger(__name__)

ACTUAL = "actual"
BUDGETED = "budgeted"
DERIVED = "derived"
UNAVAILABLE = "unavailable"

SorobanDataBlob = Union[str, bytes, stellar_xdr.SorobanTransactionData]


def parse_soroban_data(blob: Optional[SorobanDataBlob]) -> Optional[stellar_xdr.SorobanTransactionData]:
    if blob is None or isinstance(blob, stellar_xdr.SorobanTransactionData):
        return blob
    return stellar_xdr.SorobanTransactionData.from_xdr(blob)


def soroban_data_from_envelope(envelope: Optional[EnvelopeBlob]) -> Optional[stellar_xdr.SorobanTransactionData]:
    if envelope is None:
        return None
    try:
        return soroban_data(parse_envelope(envelope))
    except Exception as exc:
        logger.warning("Could not read Soroban resources from envelope: %s", exc)
        return None


class _Budget:
    def __init__(self, data: Optional[stellar_xdr.SorobanTransactionData], simulation: Optional[SimulationReport]):
        self.cpu_instructions = 0
        self.read_bytes = 0
        self.write_bytes = 0
        self.read_entries = 0
        self.write_entries = 0
        self.resource_fee: Optional[int] = None
        self.memory_bytes = 0
        if data is not None:
            resources = data.resources
            self.cpu_instructions = resources.instructions.uint32
            # renamed to disk_read_bytes in protocol 23
            read_bytes = getattr(resources, "disk_read_bytes", None)
            if read_bytes is None:
                read_bytes = resources.read_bytes
            self.read_bytes = read_bytes.uint32
            self.write_bytes = resources.write_bytes.uint32
            footprint = resources.footprint
            self.read_entries = len(footprint.read_only) + len(footprint.read_write)
            self.write_entries = len(footprint.read_write)
            self.resource_fee = data.resource_fee.int64
        if simulation is not None:
            if not self.cpu_instructions:
                self.cpu_instructions = simulation.cpu_instructions
            self.memory_bytes = simulation.memory_bytes

    @property
    def available(self) -> bool:
        return bool(self.cpu_instructions or self.read_bytes or self.write_bytes or self.read_entries)


def _pick(actual: int, budgeted: int) -> tuple[int, str]:
    if actual:
        return actual, ACTUAL
    if budgeted:
        return budgeted, BUDGETED
    return 0, UNAVAILABLE


def analyze_resources(
    declared: Optional[SorobanDataBlob],
    actual: Optional[ActualResources] = None,
    simulation: Optional[SimulationReport] = None,
) -> ResourceUsage:
    """Merge actual and budgeted figures into one :class:`ResourceUsage`.

    *declared* is the transaction's ``SorobanTransactionData``; when it is
    missing, a simulation's transaction data stands in for the budget.
    """
    actual = actual or ActualResources()
    data = parse_soroban_data(declared)
    if data is None and simulation is not None and simulation.transaction_data is not None:
        data = parse_soroban_data(simulation.transaction_data)
    budget = _Budget(data, simulation)

    usage = ResourceUsage()
    usage.cpu_instructions, usage.sources["cpu_instructions"] = _pick(
        actual.cpu_instructions, budget.cpu_instructions
    )
    usage.read_bytes, usage.sources["read_bytes"] = _pick(actual.read_bytes, budget.read_bytes)
    usage.write_bytes, usage.sources["write_bytes"] = _pick(actual.write_bytes, budget.write_bytes)
    usage.read_ledger_entries, usage.sources["read_ledger_entries"] = _pick(
        actual.read_ledger_entries, budget.read_entries
    )
    usage.write_ledger_entries, usage.sources["write_ledger_entries"] = _pick(
        actual.write_ledger_entries, budget.write_entries
    )

    if actual.memory_bytes:
        usage.memory_bytes, usage.sources["memory_bytes"] = actual.memory_bytes, ACTUAL
    elif budget.memory_bytes:
        usage.memory_bytes, usage.sources["memory_bytes"] = budget.memory_bytes, BUDGETED
    elif usage.read_bytes or usage.write_bytes:
        usage.memory_bytes = usage.read_bytes + usage.write_bytes
        usage.sources["memory_bytes"] = DERIVED
    else:
        usage.sources["memory_bytes"] = UNAVAILABLE

    if budget.available:
        usage.budgeted_cpu_instructions = budget.cpu_instructions
        usage.budgeted_memory_bytes = budget.memory_bytes or (budget.read_bytes + budget.write_bytes)
        usage.cpu_instructions_delta = cpu_delta(usage)
    usage.resource_fee = budget.resource_fee

    if actual.non_refundable_fee or actual.refundable_fee or actual.rent_fee:
        usage.non_refundable_fee = actual.non_refundable_fee
        usage.refundable_fee = actual.refundable_fee
        usage.rent_fee = actual.rent_fee
    if simulation is not None:
        usage.estimated_fee = simulation.min_resource_fee
    return usage


def cpu_delta(usage: ResourceUsage) -> Optional[int]:
    """Budgeted minus consumed CPU, for display; ``None`` without both figures."""
    if usage.budgeted_cpu_instructions is None or not usage.is_actual:
        return None
    return usage.budgeted_cpu_instructions - usage.cpu_instructions
