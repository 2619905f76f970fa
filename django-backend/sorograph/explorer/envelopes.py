"""
Helpers over ``TransactionEnvelope`` XDR: unwrap fee bumps, list
operations, read the Soroban resource declaration and decode auth entries.
"""
from dataclasses import dataclass
from typing import Any, Optional, Union

from stellar_sdk import MuxedAccount
from stellar_sdk import xdr as stellar_xdr

from .scval import ScValDecoder, sc_address_to_str

EnvelopeBlob = Union[str, bytes, stellar_xdr.TransactionEnvelope]

_ENVELOPE_TYPE_NAMES = {
    stellar_xdr.EnvelopeType.ENVELOPE_TYPE_TX_V0: "transaction_v0",
    stellar_xdr.EnvelopeType.ENVELOPE_TYPE_TX: "transaction",
    stellar_xdr.EnvelopeType.ENVELOPE_TYPE_TX_FEE_BUMP: "fee_bump",
}


@dataclass
class FeeBumpInfo:
    fee_source: str
    fee: str


def parse_envelope(blob: EnvelopeBlob) -> stellar_xdr.TransactionEnvelope:
    if isinstance(blob, stellar_xdr.TransactionEnvelope):
        return blob
    return stellar_xdr.TransactionEnvelope.from_xdr(blob)


def envelope_type_name(envelope: stellar_xdr.TransactionEnvelope) -> str:
    return _ENVELOPE_TYPE_NAMES.get(envelope.type, envelope.type.name)


def inner_transaction(envelope: stellar_xdr.TransactionEnvelope):
    """Return the ``Transaction`` (or ``TransactionV0``) that holds the operations."""
    E = stellar_xdr.EnvelopeType
    if envelope.type == E.ENVELOPE_TYPE_TX:
        return envelope.v1.tx
    if envelope.type == E.ENVELOPE_TYPE_TX_V0:
        return envelope.v0.tx
    if envelope.type == E.ENVELOPE_TYPE_TX_FEE_BUMP:
        return envelope.fee_bump.tx.inner_tx.v1.tx
    raise ValueError(f"Unsupported envelope type {envelope.type}")


def fee_bump_info(envelope: stellar_xdr.TransactionEnvelope) -> Optional[FeeBumpInfo]:
    if envelope.type != stellar_xdr.EnvelopeType.ENVELOPE_TYPE_TX_FEE_BUMP:
        return None
    fee_bump = envelope.fee_bump.tx
    source = MuxedAccount.from_xdr_object(fee_bump.fee_source)
    return FeeBumpInfo(fee_source=source.universal_account_id, fee=str(fee_bump.fee.int64))


def envelope_operations(envelope: stellar_xdr.TransactionEnvelope) -> list:
    return list(inner_transaction(envelope).operations or [])


def soroban_data(envelope: stellar_xdr.TransactionEnvelope) -> Optional[stellar_xdr.SorobanTransactionData]:
    """The declared Soroban resources, present only on v1 transactions with ``ext.v == 1``."""
    tx = inner_transaction(envelope)
    ext = getattr(tx, "ext", None)
    if ext is None or ext.v != 1:
        return None
    return ext.soroban_data


def invoke_host_function_op(
    envelope: stellar_xdr.TransactionEnvelope, index: int
) -> Optional[stellar_xdr.InvokeHostFunctionOp]:
    operations = envelope_operations(envelope)
    if index >= len(operations):
        return None
    body = operations[index].body
    if body.type != stellar_xdr.OperationType.INVOKE_HOST_FUNCTION:
        return None
    return body.invoke_host_function_op


def decode_auth_entry(entry: Union[str, stellar_xdr.SorobanAuthorizationEntry], decoder: ScValDecoder) -> dict:
    if not isinstance(entry, stellar_xdr.SorobanAuthorizationEntry):
        entry = stellar_xdr.SorobanAuthorizationEntry.from_xdr(entry)
    credentials = entry.credentials
    decoded: dict[str, Any] = {}
    if credentials.type == stellar_xdr.SorobanCredentialsType.SOROBAN_CREDENTIALS_ADDRESS:
        address_credentials = credentials.address
        decoded["credentials"] = "address"
        decoded["address"] = sc_address_to_str(address_credentials.address)
        decoded["nonce"] = str(address_credentials.nonce.int64)
        decoded["signature_expiration_ledger"] = address_credentials.signature_expiration_ledger.uint32
    else:
        decoded["credentials"] = "source_account"
    decoded.update(_decode_invocation(entry.root_invocation, decoder))
    return decoded


def _decode_invocation(invocation: stellar_xdr.SorobanAuthorizedInvocation, decoder: ScValDecoder) -> dict:
    function = invocation.function
    if function.type == stellar_xdr.SorobanAuthorizedFunctionType.SOROBAN_AUTHORIZED_FUNCTION_TYPE_CONTRACT_FN:
        contract_fn = function.contract_fn
        decoded = {
            "contract": sc_address_to_str(contract_fn.contract_address),
            "function": contract_fn.function_name.sc_symbol.decode("utf-8", errors="replace"),
            "args": [decoder.decode(arg) for arg in contract_fn.args],
        }
    else:
        decoded = {"function": "create_contract"}
    decoded["sub_invocations"] = [
        _decode_invocation(sub, decoder) for sub in invocation.sub_invocations or []
    ]
    return decoded
