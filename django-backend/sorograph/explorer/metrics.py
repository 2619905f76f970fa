"""
Prometheus metrics for the explorer pipeline.
"""
from prometheus_client import Counter, Histogram

transactions_decoded_total = Counter(
    "sorograph_transactions_decoded_total",
    "Transactions decoded by the explorer pipeline",
    ["network", "status"],
)

transport_errors_total = Counter(
    "sorograph_transport_errors_total",
    "Failed requests to Horizon or Soroban RPC",
    ["network", "source", "call"],
)

resolver_strategy_hits_total = Counter(
    "sorograph_resolver_strategy_hits_total",
    "Contract ids found, by resolution strategy",
    ["network", "strategy"],
)

sentinel_values_total = Counter(
    "sorograph_sentinel_values_total",
    "Values that decoded to a sentinel instead of a native value",
    ["reason"],
)

decode_duration_seconds = Histogram(
    "sorograph_decode_duration_seconds",
    "Wall time of a full transaction decode",
    ["network"],
)
