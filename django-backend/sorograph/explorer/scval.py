"""
ScVal → Python value decoder.

Turns a Soroban ``SCVal`` (or its base64 XDR) into JSON-friendly Python
values. Decoding is total: anything that cannot be decoded comes back as a
:class:`Sentinel` instead of raising.
"""
import base64
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from stellar_sdk import Address, scval
from stellar_sdk import xdr as stellar_xdr

from .strkey import encode_account, encode_contract

logger = logging.getLogger(__name__)

DEFAULT_MAP_DISPLAY_LIMIT = 10
BYTES_FORMATS = ("hex", "base64")

INSTANCE_KEY_LITERAL = "LedgerKeyContractInstance"
NONCE_KEY_LITERAL = "LedgerKeyNonce"
MORE_ENTRIES_KEY = "…"

WireValue = Union[str, stellar_xdr.SCVal]


class Sentinel(str):
    """Inline placeholder for a value that could not be decoded.

    Behaves like the string ``"<reason>"`` so decoded trees stay
    serialisable, while ``isinstance(v, Sentinel)`` still tells it apart.
    """

    reason: str

    def __new__(cls, reason: str):
        obj = super().__new__(cls, f"<{reason}>")
        obj.reason = reason
        return obj

    def __repr__(self) -> str:
        return f"Sentinel({self.reason!r})"


DECODE_ERROR = "decode error"


def raw_contract_id(contract_id) -> bytes:
    """Return the 32 raw bytes of a contract id XDR value.

    Protocol 23 wraps the ``Hash`` in a ``ContractID`` typedef.
    """
    inner = getattr(contract_id, "contract_id", contract_id)
    return inner.hash


def sc_address_to_str(sc_address: stellar_xdr.SCAddress) -> str:
    address_type = sc_address.type
    if address_type == stellar_xdr.SCAddressType.SC_ADDRESS_TYPE_ACCOUNT:
        return encode_account(sc_address.account_id.account_id.ed25519.uint256)
    if address_type == stellar_xdr.SCAddressType.SC_ADDRESS_TYPE_CONTRACT:
        return encode_contract(raw_contract_id(sc_address.contract_id))
    # muxed accounts, claimable balances, liquidity pools
    return Address.from_xdr_sc_address(sc_address).address


def _text(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace")


def _timepoint(seconds: int) -> str:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat().replace("+00:00", "Z")
    except (OverflowError, OSError, ValueError):
        return f"Timepoint({seconds})"


class ScValDecoder:
    """Decoder with display options.

    ``bytes_format`` picks hex or base64 rendering for ``SCV_BYTES``;
    ``max_map_entries`` bounds how many map entries are shown before a
    ``"+N more"`` marker entry.
    """

    def __init__(
        self,
        bytes_format: str = "hex",
        max_map_entries: int = DEFAULT_MAP_DISPLAY_LIMIT,
    ):
        if bytes_format not in BYTES_FORMATS:
            raise ValueError(f"bytes_format must be one of {BYTES_FORMATS}")
        self.bytes_format = bytes_format
        self.max_map_entries = max_map_entries
        T = stellar_xdr.SCValType
        self._handlers: dict[Any, Callable[[stellar_xdr.SCVal], Any]] = {
            T.SCV_BOOL: lambda v: bool(v.b),
            T.SCV_VOID: lambda v: None,
            T.SCV_ERROR: self._error,
            T.SCV_U32: lambda v: v.u32.uint32,
            T.SCV_I32: lambda v: v.i32.int32,
            T.SCV_U64: lambda v: str(v.u64.uint64),
            T.SCV_I64: lambda v: str(v.i64.int64),
            T.SCV_TIMEPOINT: lambda v: _timepoint(v.timepoint.time_point.uint64),
            T.SCV_DURATION: lambda v: str(v.duration.duration.uint64),
            T.SCV_U128: lambda v: str(scval.from_uint128(v)),
            T.SCV_I128: lambda v: str(scval.from_int128(v)),
            T.SCV_U256: lambda v: str(scval.from_uint256(v)),
            T.SCV_I256: lambda v: str(scval.from_int256(v)),
            T.SCV_BYTES: lambda v: self._bytes(v.bytes.sc_bytes),
            T.SCV_STRING: lambda v: _text(v.str.sc_string),
            T.SCV_SYMBOL: lambda v: _text(v.sym.sc_symbol),
            T.SCV_VEC: self._vec,
            T.SCV_MAP: self._map,
            T.SCV_ADDRESS: lambda v: sc_address_to_str(v.address),
            T.SCV_CONTRACT_INSTANCE: self._instance,
            T.SCV_LEDGER_KEY_CONTRACT_INSTANCE: lambda v: INSTANCE_KEY_LITERAL,
            T.SCV_LEDGER_KEY_NONCE: lambda v: NONCE_KEY_LITERAL,
        }

    def decode(self, wire: WireValue) -> Any:
        try:
            value = self._parse(wire)
            return self._decode(value)
        except Exception as exc:
            logger.debug("ScVal decode failed: %s", exc)
            return Sentinel(DECODE_ERROR)

    def _parse(self, wire: WireValue) -> stellar_xdr.SCVal:
        if isinstance(wire, stellar_xdr.SCVal):
            return wire
        if isinstance(wire, (str, bytes)):
            return stellar_xdr.SCVal.from_xdr(wire)
        raise TypeError(f"Not an ScVal: {type(wire).__name__}")

    def _decode(self, value: stellar_xdr.SCVal) -> Any:
        handler = self._handlers.get(value.type)
        if handler is None:
            name = getattr(value.type, "name", str(value.type))
            return Sentinel(f"unsupported {name}")
        try:
            return handler(value)
        except Exception as exc:
            logger.debug("ScVal %s decode failed: %s", value.type, exc)
            return Sentinel(DECODE_ERROR)

    def _bytes(self, raw: bytes) -> str:
        if self.bytes_format == "base64":
            return base64.b64encode(raw).decode("ascii")
        return raw.hex()

    def _vec(self, value: stellar_xdr.SCVal) -> list:
        if value.vec is None:
            return []
        return [self._decode(item) for item in value.vec.sc_vec]

    def _map(self, value: stellar_xdr.SCVal) -> dict:
        if value.map is None:
            return {}
        entries = value.map.sc_map
        result: dict[str, Any] = {}
        for entry in entries[: self.max_map_entries]:
            key = self._map_key(entry.key)
            if key in result:
                # distinct keys rendering to the same text fall back to their XDR form
                key = entry.key.to_xdr()
            base, copy = key, 1
            while key in result:
                copy += 1
                key = f"{base}#{copy}"
            result[key] = self._decode(entry.val)
        hidden = len(entries) - self.max_map_entries
        if hidden > 0:
            result[MORE_ENTRIES_KEY] = f"+{hidden} more"
        return result

    def _map_key(self, key: stellar_xdr.SCVal) -> str:
        decoded = self._decode(key)
        if isinstance(decoded, str):
            return decoded
        if decoded is None:
            return "void"
        if isinstance(decoded, bool):
            return "true" if decoded else "false"
        if isinstance(decoded, int):
            return str(decoded)
        # composite keys keep their XDR form so distinct keys stay distinct
        return key.to_xdr()

    def _error(self, value: stellar_xdr.SCVal) -> str:
        error = value.error
        kind = error.type.name
        if error.contract_code is not None:
            return f"Error({kind}, {error.contract_code.uint32})"
        return f"Error({kind}, {error.code.name})"

    def _instance(self, value: stellar_xdr.SCVal) -> dict:
        instance = value.instance
        executable = instance.executable
        if executable.wasm_hash is not None:
            executable_repr = {"wasm": executable.wasm_hash.hash.hex()}
        else:
            executable_repr = {"type": executable.type.name}
        storage = {}
        if instance.storage is not None:
            storage = self._map(
                stellar_xdr.SCVal(type=stellar_xdr.SCValType.SCV_MAP, map=instance.storage)
            )
        return {"executable": executable_repr, "storage": storage}


_default_decoder = ScValDecoder()


def decode_scval(
    wire: WireValue,
    *,
    bytes_format: str = "hex",
    max_map_entries: int = DEFAULT_MAP_DISPLAY_LIMIT,
) -> Any:
    """Decode one wire value. Never raises."""
    if bytes_format == "hex" and max_map_entries == DEFAULT_MAP_DISPLAY_LIMIT:
        return _default_decoder.decode(wire)
    return ScValDecoder(bytes_format, max_map_entries).decode(wire)


def parse_scval(wire: WireValue) -> Optional[stellar_xdr.SCVal]:
    """Parse without decoding; ``None`` when the input is not an ScVal."""
    if isinstance(wire, stellar_xdr.SCVal):
        return wire
    try:
        return stellar_xdr.SCVal.from_xdr(wire)
    except Exception:
        return None


def symbol_of(wire: WireValue) -> Optional[str]:
    """Return the text of a symbol value, ``None`` for any other kind."""
    value = parse_scval(wire)
    if value is None or value.type != stellar_xdr.SCValType.SCV_SYMBOL:
        return None
    return _text(value.sym.sc_symbol)


def is_sentinel(value: Any) -> bool:
    return isinstance(value, Sentinel)


def iter_sentinels(value: Any):
    """Yield every :class:`Sentinel` inside a decoded tree."""
    if isinstance(value, Sentinel):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_sentinels(item)
    elif isinstance(value, list):
        for item in value:
            yield from iter_sentinels(item)
