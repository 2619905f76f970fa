"""
URL routes for the explorer API.
"""
from django.urls import path

from .views import (
    contract_transactions,
    decode_scval_view,
    transaction_detail,
    transaction_graph,
    transaction_simulation,
)

urlpatterns = [
    path("transactions/<str:tx_hash>/", transaction_detail, name="transaction-detail"),
    path("transactions/<str:tx_hash>/graph/", transaction_graph, name="transaction-graph"),
    path(
        "transactions/<str:tx_hash>/simulation/",
        transaction_simulation,
        name="transaction-simulation",
    ),
    path(
        "contracts/<str:contract_id>/transactions/",
        contract_transactions,
        name="contract-transactions",
    ),
    path("decode/scval/", decode_scval_view, name="decode-scval"),
]
