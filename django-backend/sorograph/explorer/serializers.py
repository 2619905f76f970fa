"""
DRF serializers for explorer requests and responses.
"""
from django.core.validators import RegexValidator
from rest_framework import serializers

from .networks import available_networks
from .scval import BYTES_FORMATS, DEFAULT_MAP_DISPLAY_LIMIT
from .strkey import is_contract_id

tx_hash_validator = RegexValidator(
    regex=r"^[0-9a-fA-F]{64}$",
    message="Transaction hash must be 64 hex characters.",
)


class NetworkQuerySerializer(serializers.Serializer):
    network = serializers.CharField(
        required=False,
        help_text="Network name, e.g. testnet or mainnet. Defaults to STELLAR_DEFAULT_NETWORK.",
    )

    def validate_network(self, value):
        value = value.lower()
        if value not in available_networks():
            raise serializers.ValidationError(f"Unknown network '{value}'.")
        return value


class TransactionQuerySerializer(NetworkQuerySerializer):
    """Path hash plus query options for the transaction endpoints."""

    tx_hash = serializers.CharField(validators=[tx_hash_validator])
    simulate = serializers.BooleanField(
        required=False,
        default=False,
        help_text="Also re-simulate the transaction through Soroban RPC.",
    )

    def validate_tx_hash(self, value):
        return value.lower()


class ContractTransactionsQuerySerializer(NetworkQuerySerializer):
    contract_id = serializers.CharField(max_length=56)
    scan = serializers.IntegerField(required=False, default=50, min_value=1, max_value=200)
    limit = serializers.IntegerField(required=False, default=10, min_value=1, max_value=50)

    def validate_contract_id(self, value):
        if not is_contract_id(value):
            raise serializers.ValidationError("Not a valid contract id (C...).")
        return value


class DecodeScValRequestSerializer(serializers.Serializer):
    xdr = serializers.CharField(help_text="Base64 XDR of one SCVal")
    bytes_format = serializers.ChoiceField(choices=BYTES_FORMATS, required=False, default="hex")
    max_map_entries = serializers.IntegerField(
        required=False,
        default=DEFAULT_MAP_DISPLAY_LIMIT,
        min_value=1,
        max_value=1000,
    )


class DecodeScValResponseSerializer(serializers.Serializer):
    value = serializers.JSONField()
    sentinel = serializers.BooleanField()


class TransactionDetailsSerializer(serializers.Serializer):
    """Response shape of a decoded transaction (nested parts as JSON)."""

    hash = serializers.CharField()
    source_account = serializers.CharField()
    fee = serializers.CharField()
    status = serializers.ChoiceField(choices=["success", "failed"])
    network = serializers.CharField()
    operations = serializers.JSONField()
    soroban_operations = serializers.JSONField()
    events = serializers.JSONField()
    effects = serializers.JSONField()
    ledger_timestamp = serializers.CharField(allow_null=True)
    fee_charged = serializers.CharField(allow_null=True)
    max_fee = serializers.CharField(allow_null=True)
    error_message = serializers.CharField(allow_null=True)
    error_report = serializers.JSONField(allow_null=True)
    debug_info = serializers.JSONField(allow_null=True)
    resource_usage = serializers.JSONField(allow_null=True)
    simulation = serializers.JSONField(allow_null=True)


class GraphSerializer(serializers.Serializer):
    nodes = serializers.JSONField()
    edges = serializers.JSONField()


class SimulationResultSerializer(serializers.Serializer):
    success = serializers.BooleanField()
    estimated_fee = serializers.CharField()
    potential_errors = serializers.ListField(child=serializers.CharField())
    resource_usage = serializers.JSONField(allow_null=True)
    logs = serializers.ListField(child=serializers.CharField())
    operation_breakdown = serializers.JSONField()


class ErrorResponseSerializer(serializers.Serializer):
    detail = serializers.CharField()
    source = serializers.CharField(required=False)
