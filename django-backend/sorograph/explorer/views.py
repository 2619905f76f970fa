"""
API views for the transaction explorer.
"""
import logging

from django.http import HttpResponse
from drf_spectacular.utils import OpenApiParameter, extend_schema
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle

from .exceptions import TransactionNotFound, TransportError
from .records import to_primitive
from .scval import decode_scval, is_sentinel, parse_scval
from .serializers import (
    ContractTransactionsQuerySerializer,
    DecodeScValRequestSerializer,
    DecodeScValResponseSerializer,
    ErrorResponseSerializer,
    GraphSerializer,
    SimulationResultSerializer,
    TransactionDetailsSerializer,
    TransactionQuerySerializer,
)
from .service import TransactionExplorer

logger = logging.getLogger(__name__)

NETWORK_PARAMETER = OpenApiParameter("network", str, description="testnet, mainnet, ...")
TRANSPORT_ERRORS = {
    404: ErrorResponseSerializer,
    400: ErrorResponseSerializer,
    502: ErrorResponseSerializer,
}


def _transport_error_response(exc: TransportError) -> Response:
    if isinstance(exc, TransactionNotFound):
        return Response({"detail": exc.message, "source": exc.source}, status=status.HTTP_404_NOT_FOUND)
    logger.warning("Upstream failure: %s", exc, extra={"source": exc.source})
    return Response({"detail": exc.message, "source": exc.source}, status=status.HTTP_502_BAD_GATEWAY)


def _transaction_query(request, tx_hash: str):
    serializer = TransactionQuerySerializer(data={"tx_hash": tx_hash, **request.query_params.dict()})
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


@extend_schema(
    parameters=[NETWORK_PARAMETER, OpenApiParameter("simulate", bool)],
    responses={200: TransactionDetailsSerializer, **TRANSPORT_ERRORS},
)
@api_view(["GET"])
@permission_classes([AllowAny])
@throttle_classes([AnonRateThrottle])
def transaction_detail(request, tx_hash: str):
    """Decode one transaction: operations, Soroban invocations, events, state changes and errors."""
    query = _transaction_query(request, tx_hash)
    try:
        explorer = TransactionExplorer(query.get("network"))
        details = explorer.fetch(query["tx_hash"], simulate=query["simulate"])
    except TransportError as exc:
        return _transport_error_response(exc)
    return Response(to_primitive(details))


@extend_schema(
    parameters=[NETWORK_PARAMETER],
    responses={200: GraphSerializer, **TRANSPORT_ERRORS},
)
@api_view(["GET"])
@permission_classes([AllowAny])
@throttle_classes([AnonRateThrottle])
def transaction_graph(request, tx_hash: str):
    """Operation graph (nodes and edges) for one transaction."""
    query = _transaction_query(request, tx_hash)
    try:
        explorer = TransactionExplorer(query.get("network"))
        details = explorer.fetch(query["tx_hash"])
    except TransportError as exc:
        return _transport_error_response(exc)
    return Response(to_primitive(explorer.graph(details)))


@extend_schema(
    parameters=[NETWORK_PARAMETER],
    responses={200: SimulationResultSerializer, **TRANSPORT_ERRORS},
)
@api_view(["GET"])
@permission_classes([AllowAny])
@throttle_classes([AnonRateThrottle])
def transaction_simulation(request, tx_hash: str):
    """Re-simulate a recorded transaction through Soroban RPC."""
    query = _transaction_query(request, tx_hash)
    try:
        result = TransactionExplorer(query.get("network")).simulate(query["tx_hash"])
    except TransportError as exc:
        return _transport_error_response(exc)
    return Response(to_primitive(result))


@extend_schema(
    parameters=[
        NETWORK_PARAMETER,
        OpenApiParameter("scan", int, description="How many recent transactions to inspect"),
        OpenApiParameter("limit", int, description="Maximum matches to return"),
    ],
    responses={200: TransactionDetailsSerializer(many=True), **TRANSPORT_ERRORS},
)
@api_view(["GET"])
@permission_classes([AllowAny])
@throttle_classes([AnonRateThrottle])
def contract_transactions(request, contract_id: str):
    """Recent transactions that invoke a contract."""
    serializer = ContractTransactionsQuerySerializer(
        data={"contract_id": contract_id, **request.query_params.dict()}
    )
    serializer.is_valid(raise_exception=True)
    query = serializer.validated_data
    try:
        found = TransactionExplorer(query.get("network")).find_contract_transactions(
            query["contract_id"], scan=query["scan"], limit=query["limit"]
        )
    except TransportError as exc:
        return _transport_error_response(exc)
    return Response(to_primitive(found))


@extend_schema(
    request=DecodeScValRequestSerializer,
    responses={200: DecodeScValResponseSerializer, 400: ErrorResponseSerializer},
)
@api_view(["POST"])
@permission_classes([AllowAny])
@throttle_classes([AnonRateThrottle])
def decode_scval_view(request):
    """
    Decode one base64 SCVal.

    Request body:
    {
        "xdr": "AAAAAwAAAAE=",
        "bytes_format": "hex",      // or "base64"
        "max_map_entries": 10
    }
    """
    serializer = DecodeScValRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    data = serializer.validated_data
    if parse_scval(data["xdr"]) is None:
        return Response({"detail": "Not a valid SCVal XDR."}, status=status.HTTP_400_BAD_REQUEST)
    value = decode_scval(
        data["xdr"],
        bytes_format=data["bytes_format"],
        max_map_entries=data["max_map_entries"],
    )
    return Response({"value": to_primitive(value), "sentinel": is_sentinel(value)})


def metrics_view(request):
    """Prometheus exposition of the explorer counters."""
    # importing registers the collectors with the default registry
    from sorograph.explorer import metrics  # noqa: F401,PLC0415

    return HttpResponse(generate_latest(), content_type=CONTENT_TYPE_LATEST)
