"""
Checksummed base32 address codec for Stellar account keys (``G…``) and
Soroban contract identifiers (``C…``).

The version byte / CRC16 work is done by :class:`stellar_sdk.StrKey`; this
module adds the strict 32-byte length contract and a display helper.
"""
from stellar_sdk import StrKey

RAW_KEY_LENGTH = 32
ACCOUNT_PREFIX = "G"
CONTRACT_PREFIX = "C"


class AddressCodecError(ValueError):
    """Raised when bytes or a strkey cannot be converted."""


def _require_raw_key(raw: bytes) -> bytes:
    if not isinstance(raw, (bytes, bytearray)):
        raise AddressCodecError(f"Expected bytes, got {type(raw).__name__}")
    if len(raw) != RAW_KEY_LENGTH:
        raise AddressCodecError(
            f"Address payload must be {RAW_KEY_LENGTH} bytes, got {len(raw)}"
        )
    return bytes(raw)


def encode_account(raw: bytes) -> str:
    """Encode a raw ed25519 public key as a ``G…`` account id."""
    return StrKey.encode_ed25519_public_key(_require_raw_key(raw))


def encode_contract(raw: bytes) -> str:
    """Encode a raw contract hash as a ``C…`` contract id."""
    return StrKey.encode_contract(_require_raw_key(raw))


def decode_account(address: str) -> bytes:
    try:
        return StrKey.decode_ed25519_public_key(address)
    except (TypeError, ValueError) as exc:
        raise AddressCodecError(f"Invalid account id {address!r}: {exc}") from exc


def decode_contract(address: str) -> bytes:
    try:
        return StrKey.decode_contract(address)
    except (TypeError, ValueError) as exc:
        raise AddressCodecError(f"Invalid contract id {address!r}: {exc}") from exc


def decode_address(address: str) -> bytes:
    """Decode either address variant, dispatching on the version character."""
    if not isinstance(address, str) or not address:
        raise AddressCodecError(f"Invalid address {address!r}")
    if address.startswith(ACCOUNT_PREFIX):
        return decode_account(address)
    if address.startswith(CONTRACT_PREFIX):
        return decode_contract(address)
    raise AddressCodecError(f"Unsupported address version {address[0]!r}")


def is_contract_id(value) -> bool:
    return isinstance(value, str) and StrKey.is_valid_contract(value)


def is_account_id(value) -> bool:
    return isinstance(value, str) and StrKey.is_valid_ed25519_public_key(value)


def abbreviate(address: str, size: int = 4) -> str:
    """Return ``GABC…WXYZ`` for display. Short values are returned unchanged."""
    if not address or len(address) <= size * 2 + 1:
        return address
    return f"{address[:size]}…{address[-size:]}"
