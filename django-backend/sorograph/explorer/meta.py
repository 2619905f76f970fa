"""
Transaction metadata walker.

Pulls per-operation ledger-entry changes, contract/diagnostic events,
cross-contract calls and resource counters out of a ``TransactionMeta``
envelope. Protocol 20–22 (``v3``) and protocol 23+ (``v4``) layouts are
supported; older layouts only yield ledger-entry changes.

Each extraction step fails independently: a broken event list never hides
state changes that were decoded fine.
"""
import logging
from typing import Any, Optional, Union

from stellar_sdk import xdr as stellar_xdr

from .records import (
    SYSTEM_CONTRACT,
    ActualResources,
    ContractEvent,
    CrossContractCall,
    OperationMeta,
    StateChange,
    TtlExtension,
)
from .scval import (
    INSTANCE_KEY_LITERAL,
    ScValDecoder,
    raw_contract_id,
    sc_address_to_str,
    symbol_of,
)
from .strkey import encode_contract

logger = logging.getLogger(__name__)

FN_CALL = "fn_call"
FN_RETURN = "fn_return"
CORE_METRICS = "core_metrics"
NOISE_EVENT_NAMES = frozenset({CORE_METRICS})

_EVENT_TYPES = {
    stellar_xdr.ContractEventType.SYSTEM: "system",
    stellar_xdr.ContractEventType.CONTRACT: "contract",
    stellar_xdr.ContractEventType.DIAGNOSTIC: "diagnostic",
}

_DURABILITY = {
    stellar_xdr.ContractDataDurability.PERSISTENT: "persistent",
    stellar_xdr.ContractDataDurability.TEMPORARY: "temporary",
}

# core_metrics counter name -> ActualResources field
_METRIC_FIELDS = {
    "cpu_insn": "cpu_instructions",
    "mem_byte": "memory_bytes",
    "read_entry": "read_ledger_entries",
    "write_entry": "write_ledger_entries",
    "ledger_read_byte": "read_bytes",
    "ledger_write_byte": "write_bytes",
}
_READ_BYTE_PARTS = ("read_data_byte", "read_code_byte", "read_key_byte")
_WRITE_BYTE_PARTS = ("write_data_byte", "write_code_byte", "write_key_byte")

MetaBlob = Union[str, bytes, stellar_xdr.TransactionMeta]


def parse_meta(blob: MetaBlob) -> stellar_xdr.TransactionMeta:
    if isinstance(blob, stellar_xdr.TransactionMeta):
        return blob
    return stellar_xdr.TransactionMeta.from_xdr(blob)


class _MetaView:
    """Version-specific accessors over one ``TransactionMeta``."""

    def __init__(self, meta: stellar_xdr.TransactionMeta):
        self.version = meta.v
        if meta.v == 4:
            self.body = meta.v4
        elif meta.v == 3:
            self.body = meta.v3
        elif meta.v == 2:
            self.body = meta.v2
        elif meta.v == 1:
            self.body = meta.v1
        else:
            self.body = None
        self._meta = meta

    @property
    def operations(self) -> list:
        if self.body is None:
            return self._meta.operations or []
        return self.body.operations or []

    @property
    def soroban_meta(self):
        if self.version in (3, 4):
            return self.body.soroban_meta
        return None

    def contract_events(self, index: int) -> list:
        if self.version == 4:
            operations = self.operations
            if index < len(operations):
                return operations[index].events or []
            return []
        if self.version == 3 and self.body.soroban_meta is not None:
            return self.body.soroban_meta.events or []
        return []

    def diagnostic_events(self) -> list:
        if self.version == 4:
            return self.body.diagnostic_events or []
        if self.version == 3 and self.body.soroban_meta is not None:
            return self.body.soroban_meta.diagnostic_events or []
        return []


class MetaWalker:
    def __init__(self, decoder: Optional[ScValDecoder] = None):
        self.decoder = decoder or ScValDecoder()

    def extract_for_operation(self, blob: MetaBlob, operation_index: int) -> OperationMeta:
        result = OperationMeta()
        try:
            view = _MetaView(parse_meta(blob))
        except Exception as exc:
            logger.warning("Could not parse transaction meta: %s", exc)
            return result

        try:
            result.state_changes, result.ttl_extensions = self._changes(view, operation_index)
        except Exception:
            logger.warning("State change extraction failed for op %s", operation_index, exc_info=True)

        diagnostics = []
        try:
            result.events, diagnostics = self._events(view, operation_index)
        except Exception:
            logger.warning("Event extraction failed for op %s", operation_index, exc_info=True)

        try:
            result.cross_contract_calls = self._cross_contract_calls(diagnostics)
        except Exception:
            logger.warning("Cross-contract call extraction failed", exc_info=True)

        try:
            result.resources = self._resources(view, diagnostics)
        except Exception:
            logger.warning("Resource extraction failed for op %s", operation_index, exc_info=True)
            result.resources = ActualResources()

        try:
            result.return_value = self._return_value(view)
        except Exception:
            logger.warning("Return value extraction failed", exc_info=True)

        return result

    # -- ledger entry changes ------------------------------------------------

    def _changes(self, view: _MetaView, index: int) -> tuple[list, list]:
        operations = view.operations
        if index >= len(operations):
            return [], []
        changes = operations[index].changes.ledger_entry_changes
        T = stellar_xdr.LedgerEntryChangeType

        prior: dict[tuple, stellar_xdr.LedgerEntry] = {}
        state_changes: list[StateChange] = []
        ttl_extensions: list[TtlExtension] = []

        for change in changes:
            if change.type == T.LEDGER_ENTRY_STATE:
                prior[self._entry_identity(change.state.data)] = change.state
                continue
            if change.type == T.LEDGER_ENTRY_REMOVED:
                identity = self._key_identity(change.removed)
                before = prior.pop(identity, None)
                state = self._removed_change(change.removed, before)
                if state is not None:
                    state_changes.append(state)
                continue

            entry, kind = {
                T.LEDGER_ENTRY_CREATED: (change.created, "created"),
                T.LEDGER_ENTRY_UPDATED: (change.updated, "updated"),
            }.get(change.type, (getattr(change, "restored", None), "restored"))
            if entry is None:
                continue
            before = prior.pop(self._entry_identity(entry.data), None)
            data = entry.data
            if data.type == stellar_xdr.LedgerEntryType.TTL:
                ttl_extensions.append(self._ttl_extension(data.ttl, before))
                continue
            state = self._entry_change(kind, data, before)
            if state is not None:
                state_changes.append(state)
        return state_changes, ttl_extensions

    def _entry_identity(self, data: stellar_xdr.LedgerEntryData) -> tuple:
        LT = stellar_xdr.LedgerEntryType
        if data.type == LT.CONTRACT_DATA:
            entry = data.contract_data
            return ("data", entry.contract.to_xdr(), entry.key.to_xdr(), entry.durability.value)
        if data.type == LT.CONTRACT_CODE:
            return ("code", data.contract_code.hash.hash)
        if data.type == LT.TTL:
            return ("ttl", data.ttl.key_hash.hash)
        return ("other", data.to_xdr())

    def _key_identity(self, key: stellar_xdr.LedgerKey) -> tuple:
        LT = stellar_xdr.LedgerEntryType
        if key.type == LT.CONTRACT_DATA:
            entry = key.contract_data
            return ("data", entry.contract.to_xdr(), entry.key.to_xdr(), entry.durability.value)
        if key.type == LT.CONTRACT_CODE:
            return ("code", key.contract_code.hash.hash)
        if key.type == LT.TTL:
            return ("ttl", key.ttl.key_hash.hash)
        return ("other", key.to_xdr())

    def _decode_key(self, key: stellar_xdr.SCVal) -> tuple[Any, bool]:
        # The instance marker is special-cased before any generic decoding.
        if key.type == stellar_xdr.SCValType.SCV_LEDGER_KEY_CONTRACT_INSTANCE:
            return INSTANCE_KEY_LITERAL, True
        return self.decoder.decode(key), False

    def _storage_type(self, durability, is_instance: bool) -> str:
        if is_instance:
            return "instance"
        return _DURABILITY.get(durability, "persistent")

    def _entry_change(
        self,
        kind: str,
        data: stellar_xdr.LedgerEntryData,
        before: Optional[stellar_xdr.LedgerEntry],
    ) -> Optional[StateChange]:
        LT = stellar_xdr.LedgerEntryType
        if data.type == LT.CONTRACT_DATA:
            entry = data.contract_data
            key, is_instance = self._decode_key(entry.key)
            prior_value = None
            if before is not None and before.data.type == LT.CONTRACT_DATA:
                prior_value = self.decoder.decode(before.data.contract_data.val)
            return StateChange(
                change_type=kind,
                entry_kind="contract_data",
                contract_id=sc_address_to_str(entry.contract),
                storage_type=self._storage_type(entry.durability, is_instance),
                key=key,
                value=self.decoder.decode(entry.val),
                before=prior_value,
            )
        if data.type == LT.CONTRACT_CODE:
            return StateChange(
                change_type=kind,
                entry_kind="contract_code",
                code_hash=data.contract_code.hash.hash.hex(),
            )
        logger.debug("Skipping %s ledger entry change", data.type.name)
        return None

    def _removed_change(
        self,
        key: stellar_xdr.LedgerKey,
        before: Optional[stellar_xdr.LedgerEntry],
    ) -> Optional[StateChange]:
        LT = stellar_xdr.LedgerEntryType
        if key.type == LT.CONTRACT_DATA:
            entry = key.contract_data
            decoded_key, is_instance = self._decode_key(entry.key)
            prior_value = None
            if before is not None and before.data.type == LT.CONTRACT_DATA:
                prior_value = self.decoder.decode(before.data.contract_data.val)
            return StateChange(
                change_type="removed",
                entry_kind="contract_data",
                contract_id=sc_address_to_str(entry.contract),
                storage_type=self._storage_type(entry.durability, is_instance),
                key=decoded_key,
                before=prior_value,
            )
        if key.type == LT.CONTRACT_CODE:
            return StateChange(
                change_type="removed",
                entry_kind="contract_code",
                code_hash=key.contract_code.hash.hash.hex(),
            )
        return None

    def _ttl_extension(
        self,
        ttl: stellar_xdr.TTLEntry,
        before: Optional[stellar_xdr.LedgerEntry],
    ) -> TtlExtension:
        previous = None
        if before is not None and before.data.type == stellar_xdr.LedgerEntryType.TTL:
            previous = before.data.ttl.live_until_ledger_seq.uint32
        return TtlExtension(
            entry_hash=ttl.key_hash.hash.hex(),
            live_until_ledger=ttl.live_until_ledger_seq.uint32,
            previous_live_until_ledger=previous,
        )

    # -- events ----------------------------------------------------------------

    def _events(self, view: _MetaView, index: int) -> tuple[list, list]:
        """Return (surfaced events, raw diagnostic events)."""
        diagnostics = view.diagnostic_events()
        if diagnostics:
            surfaced = [
                self._event(d.event, d.in_successful_contract_call) for d in diagnostics
            ]
        else:
            surfaced = [self._event(e, True) for e in view.contract_events(index)]
        return [e for e in surfaced if e.name not in NOISE_EVENT_NAMES], diagnostics

    def _event(self, event: stellar_xdr.ContractEvent, successful: bool) -> ContractEvent:
        body = event.body.v0
        owner = SYSTEM_CONTRACT
        if event.contract_id is not None:
            owner = encode_contract(raw_contract_id(event.contract_id))
        return ContractEvent(
            contract_id=owner,
            event_type=_EVENT_TYPES.get(event.type, "contract"),
            topics=[self.decoder.decode(t) for t in body.topics],
            data=self.decoder.decode(body.data),
            in_successful_contract_call=bool(successful),
            name=symbol_of(body.topics[0]) if body.topics else None,
        )

    def decode_diagnostic_event(self, blob: Union[str, stellar_xdr.DiagnosticEvent]) -> ContractEvent:
        """Decode one standalone diagnostic event, e.g. from a simulation."""
        if not isinstance(blob, stellar_xdr.DiagnosticEvent):
            blob = stellar_xdr.DiagnosticEvent.from_xdr(blob)
        return self._event(blob.event, blob.in_successful_contract_call)

    def _cross_contract_calls(self, diagnostics: list) -> list:
        calls = []
        for diagnostic in diagnostics:
            event = diagnostic.event
            topics = event.body.v0.topics
            if len(topics) < 2 or symbol_of(topics[0]) != FN_CALL:
                continue
            # The owner of a fn_call event is the caller; top-level calls have none.
            if event.contract_id is None:
                continue
            callee = self._callee(topics[1])
            if callee is None:
                continue
            calls.append(
                CrossContractCall(
                    from_contract=encode_contract(raw_contract_id(event.contract_id)),
                    to_contract=callee,
                    function_name=symbol_of(topics[2]) if len(topics) > 2 else None,
                    success=bool(diagnostic.in_successful_contract_call),
                )
            )
        return calls

    def _callee(self, topic: stellar_xdr.SCVal) -> Optional[str]:
        T = stellar_xdr.SCValType
        if topic.type == T.SCV_BYTES and len(topic.bytes.sc_bytes) == 32:
            return encode_contract(topic.bytes.sc_bytes)
        if topic.type == T.SCV_ADDRESS:
            return sc_address_to_str(topic.address)
        return None

    # -- resources ---------------------------------------------------------------

    def _resources(self, view: _MetaView, diagnostics: list) -> ActualResources:
        resources = ActualResources()
        metrics: dict[str, int] = {}
        for diagnostic in diagnostics:
            topics = diagnostic.event.body.v0.topics
            if len(topics) < 2 or symbol_of(topics[0]) != CORE_METRICS:
                continue
            name = symbol_of(topics[1])
            value = self._counter(diagnostic.event.body.v0.data)
            if name and value is not None:
                metrics[name] = value

        for metric, attr in _METRIC_FIELDS.items():
            if metric in metrics:
                setattr(resources, attr, metrics[metric])
        if not resources.read_bytes:
            resources.read_bytes = sum(metrics.get(m, 0) for m in _READ_BYTE_PARTS)
        if not resources.write_bytes:
            resources.write_bytes = sum(metrics.get(m, 0) for m in _WRITE_BYTE_PARTS)

        soroban_meta = view.soroban_meta
        if soroban_meta is not None and soroban_meta.ext.v == 1:
            fees = soroban_meta.ext.v1
            resources.non_refundable_fee = fees.total_non_refundable_resource_fee_charged.int64
            resources.refundable_fee = fees.total_refundable_resource_fee_charged.int64
            resources.rent_fee = fees.rent_fee_charged.int64
        return resources

    def _counter(self, value: stellar_xdr.SCVal) -> Optional[int]:
        T = stellar_xdr.SCValType
        if value.type == T.SCV_U64:
            return value.u64.uint64
        if value.type == T.SCV_U32:
            return value.u32.uint32
        if value.type == T.SCV_I64:
            return value.i64.int64
        return None

    def _return_value(self, view: _MetaView) -> Any:
        soroban_meta = view.soroban_meta
        if soroban_meta is None or soroban_meta.return_value is None:
            return None
        return self.decoder.decode(soroban_meta.return_value)


def extract_for_operation(blob: MetaBlob, operation_index: int) -> OperationMeta:
    return MetaWalker().extract_for_operation(blob, operation_index)
