"""
Transaction result decoding.

Reads a ``TransactionResult`` XDR into an :class:`ErrorReport` with up to
three layers: the fee-bump wrapper, the (inner) transaction and each failed
operation. Codes are reported in Horizon's snake_case spelling
(``tx_failed``, ``op_underfunded``) so they match what Horizon shows in
``result_codes``.
"""
import logging
import os
import re
from typing import Optional, Union

from stellar_sdk import xdr as stellar_xdr

from .records import ErrorLayer, ErrorReport, OperationError

logger = logging.getLogger(__name__)

ResultBlob = Union[str, bytes, stellar_xdr.TransactionResult]

TX_DESCRIPTIONS = {
    "tx_success": "Transaction succeeded",
    "tx_failed": "Transaction failed - one or more operations failed",
    "tx_too_early": "Transaction submitted too early",
    "tx_too_late": "Transaction submitted too late",
    "tx_missing_operation": "Transaction has no operations",
    "tx_bad_seq": "Invalid sequence number - account sequence may have changed",
    "tx_bad_auth": "Invalid signatures or missing required signers",
    "tx_insufficient_balance": "Account does not have enough funds to pay the transaction fee",
    "tx_no_account": "Source account does not exist",
    "tx_insufficient_fee": "Transaction fee is too low",
    "tx_bad_auth_extra": "Transaction has unused signatures",
    "tx_internal_error": "Internal server error occurred",
    "tx_not_supported": "Transaction type is not supported",
    "tx_fee_bump_inner_success": "Fee bump succeeded and the inner transaction succeeded",
    "tx_fee_bump_inner_failed": "Fee bump succeeded but the inner transaction failed",
    "tx_bad_sponsorship": "Sponsorship is not closed or is invalid",
    "tx_bad_min_seq_age_or_gap": "Minimum sequence age or gap precondition not met",
    "tx_malformed": "Transaction is malformed",
    "tx_soroban_invalid": "Soroban resources or footprint are invalid",
}

OPERATION_DESCRIPTIONS = {
    # envelope-level rejections
    "op_bad_auth": "Operation has invalid authorization",
    "op_no_account": "Operation source account does not exist",
    "op_not_supported": "Operation is not supported",
    "op_too_many_subentries": "Too many sub-entries",
    "op_exceeded_work_limit": "Operation exceeds work limit",
    "op_too_many_sponsoring": "Too many sponsoring operations",
    # operation-kind failures
    "op_no_destination": "Destination account does not exist",
    "op_underfunded": "Source account does not have enough funds",
    "op_low_reserve": "Account does not meet minimum balance requirements",
    "op_src_no_trust": "Source account does not trust this asset",
    "op_no_trust": "Destination account does not trust this asset",
    "op_src_not_authorized": "Source account is not authorized for this asset",
    "op_not_authorized": "Account is not authorized for this asset",
    "op_line_full": "Destination account trustline limit reached",
    "op_no_issuer": "Asset issuer account does not exist",
    "op_already_exists": "Account already exists",
    "op_malformed": "Operation parameters are invalid",
    "op_cross_self": "Cannot create offer that crosses your own offer",
    "op_sell_no_trust": "Account does not trust the selling asset",
    "op_buy_no_trust": "Account does not trust the buying asset",
    "op_offer_not_found": "Offer to modify does not exist",
    "op_too_many_signers": "Account has too many signers (max 20)",
    "op_bad_flags": "Invalid account flags",
    "op_invalid_home_domain": "Invalid home domain (max 32 characters)",
    "op_auth_revocable_required": "AUTH_REVOCABLE flag is required",
    "op_auth_immutable_set": "Cannot change flags when AUTH_IMMUTABLE is set",
    "op_no_trust_line": "Trustline does not exist",
    "op_trust_not_required": "Asset does not require trust authorization",
    "op_cant_revoke": "Cannot revoke authorization for this asset",
    "op_self_not_allowed": "Cannot perform this operation on self",
    "op_trapped": "Contract execution trapped",
    "op_resource_limit_exceeded": "Contract execution exceeded its declared resources",
    "op_entry_archived": "A ledger entry in the footprint is archived",
    "op_insufficient_refundable_fee": "Refundable resource fee is insufficient",
}

# Ordered (operation type, result accessor) pairs. The first pair whose
# predicate holds names the result kind; the order is stable for tests.
RESULT_PROBES: tuple[tuple[str, str], ...] = (
    ("CREATE_ACCOUNT", "create_account_result"),
    ("PAYMENT", "payment_result"),
    ("PATH_PAYMENT_STRICT_RECEIVE", "path_payment_strict_receive_result"),
    ("MANAGE_SELL_OFFER", "manage_sell_offer_result"),
    ("CREATE_PASSIVE_SELL_OFFER", "create_passive_sell_offer_result"),
    ("SET_OPTIONS", "set_options_result"),
    ("CHANGE_TRUST", "change_trust_result"),
    ("ALLOW_TRUST", "allow_trust_result"),
    ("ACCOUNT_MERGE", "account_merge_result"),
    ("INFLATION", "inflation_result"),
    ("MANAGE_DATA", "manage_data_result"),
    ("BUMP_SEQUENCE", "bump_seq_result"),
    ("MANAGE_BUY_OFFER", "manage_buy_offer_result"),
    ("PATH_PAYMENT_STRICT_SEND", "path_payment_strict_send_result"),
    ("CREATE_CLAIMABLE_BALANCE", "create_claimable_balance_result"),
    ("CLAIM_CLAIMABLE_BALANCE", "claim_claimable_balance_result"),
    ("BEGIN_SPONSORING_FUTURE_RESERVES", "begin_sponsoring_future_reserves_result"),
    ("END_SPONSORING_FUTURE_RESERVES", "end_sponsoring_future_reserves_result"),
    ("REVOKE_SPONSORSHIP", "revoke_sponsorship_result"),
    ("CLAWBACK", "clawback_result"),
    ("CLAWBACK_CLAIMABLE_BALANCE", "clawback_claimable_balance_result"),
    ("SET_TRUST_LINE_FLAGS", "set_trust_line_flags_result"),
    ("LIQUIDITY_POOL_DEPOSIT", "liquidity_pool_deposit_result"),
    ("LIQUIDITY_POOL_WITHDRAW", "liquidity_pool_withdraw_result"),
    ("INVOKE_HOST_FUNCTION", "invoke_host_function_result"),
    ("EXTEND_FOOTPRINT_TTL", "extend_footprint_ttl_result"),
    ("RESTORE_FOOTPRINT", "restore_footprint_result"),
)

_FEE_BUMP_CODES = ("tx_fee_bump_inner_success", "tx_fee_bump_inner_failed")


def horizon_code(name: str) -> str:
    """``txFEE_BUMP_INNER_FAILED`` -> ``tx_fee_bump_inner_failed``."""
    return re.sub(r"^(tx|op)(?=[A-Z])", r"\1_", name).lower()


# result codes whose Horizon name differs from the XDR enum
_HORIZON_SPELLINGS = {"op_already_exist": "op_already_exists"}


def _kind_code(code) -> str:
    """Strip the enum's shared prefix: ``PAYMENT_UNDERFUNDED`` -> ``op_underfunded``."""
    names = [member.name for member in type(code)]
    prefix = os.path.commonprefix(names)
    prefix = prefix[: prefix.rfind("_") + 1]
    kind = "op_" + code.name[len(prefix):].lower()
    return _HORIZON_SPELLINGS.get(kind, kind)


def describe(code: str, category: str) -> str:
    table = TX_DESCRIPTIONS if category == "transaction" else OPERATION_DESCRIPTIONS
    return table.get(code) or f"{category}: {code}"


def probe_result_kind(tr: stellar_xdr.OperationResultTr) -> Optional[tuple[str, object]]:
    """Return ``(operation type name, kind result)`` from :data:`RESULT_PROBES`."""
    for type_name, accessor in RESULT_PROBES:
        if tr.type.name == type_name and getattr(tr, accessor, None) is not None:
            return type_name.lower(), getattr(tr, accessor)
    return None


def operation_failure(index: int, result: stellar_xdr.OperationResult) -> Optional[OperationError]:
    """Classify one operation result; ``None`` when it succeeded."""
    if result.code != stellar_xdr.OperationResultCode.opINNER:
        code = horizon_code(result.code.name)
        return OperationError(
            operation=index,
            error=code,
            description=describe(code, "operation"),
            category="envelope",
        )
    probed = probe_result_kind(result.tr)
    if probed is None:
        code = horizon_code(result.tr.type.name)
        return OperationError(
            operation=index,
            error=code,
            description=describe(code, "operation"),
            category="unknown",
        )
    operation_type, kind_result = probed
    if kind_result.code.name.endswith("_SUCCESS"):
        return None
    code = _kind_code(kind_result.code)
    return OperationError(
        operation=index,
        error=code,
        description=describe(code, "operation"),
        operation_type=operation_type,
    )


def parse_result(blob: ResultBlob) -> stellar_xdr.TransactionResult:
    if isinstance(blob, stellar_xdr.TransactionResult):
        return blob
    return stellar_xdr.TransactionResult.from_xdr(blob)


def analyze_result(blob: Optional[ResultBlob]) -> ErrorReport:
    """Decode a transaction result into an :class:`ErrorReport`. Never raises."""
    report = ErrorReport()
    if blob is None:
        return report
    try:
        result = parse_result(blob)
    except Exception as exc:
        logger.warning("Could not decode transaction result: %s", exc)
        report.decode_error = str(exc) or exc.__class__.__name__
        return report

    outer = result.result
    outer_code = horizon_code(outer.code.name)
    operation_results = outer.results or []

    if outer_code in _FEE_BUMP_CODES:
        report.is_fee_bump = True
        inner = outer.inner_result_pair.result.result
        inner_code = horizon_code(inner.code.name)
        operation_results = inner.results or []
        if outer_code == "tx_fee_bump_inner_failed":
            report.outer_error = outer_code
            report.outer_description = describe(outer_code, "transaction")
            report.layers.append(ErrorLayer("fee_bump", outer_code, report.outer_description))
        if inner_code != "tx_success":
            report.inner_error = inner_code
            report.inner_description = describe(inner_code, "transaction")
            report.layers.append(ErrorLayer("transaction", inner_code, report.inner_description))
    elif outer_code != "tx_success":
        report.outer_error = outer_code
        report.outer_description = describe(outer_code, "transaction")
        report.layers.append(ErrorLayer("transaction", outer_code, report.outer_description))

    for index, op_result in enumerate(operation_results):
        try:
            failure = operation_failure(index, op_result)
        except Exception as exc:
            logger.warning("Could not classify result of op %s: %s", index, exc)
            continue
        if failure is None:
            continue
        report.operation_errors.append(failure)
        report.layers.append(
            ErrorLayer("operation", failure.error, failure.description, failure.operation_type)
        )
    return report
