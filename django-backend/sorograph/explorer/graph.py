"""
Operation graph construction.

Turns a :class:`TransactionDetails` into a ``{nodes, edges}`` structure the
front end can lay out. Node and edge ids are derived from operation positions
only, so the same details always produce the same graph.
"""
from typing import Any

from .records import (
    INTERNAL_OPERATION_KINDS,
    Graph,
    GraphEdge,
    GraphNode,
    TransactionDetails,
    to_primitive,
)

OPERATION_NODE = "operation"
STATE_CHANGE_NODE = "state_change"
SEQUENCE_EDGE = "sequence"
OWNERSHIP_EDGE = "ownership"

_GENERIC_SKIP_FIELDS = frozenset({"type", "id", "_links", "paging_token"})


def node_id(index: int) -> str:
    return f"op-{index}"


def change_node_id(index: int, change_index: int) -> str:
    return f"op-{index}-change-{change_index}"


def _asset_label(operation: dict) -> Any:
    if operation.get("asset_type") == "native":
        return "XLM"
    return operation.get("asset_code")


def operation_fields(operation: dict) -> dict:
    """Kind-specific fields shown on an operation node."""
    kind = operation.get("type")
    if kind == "create_account":
        return {
            "destination": operation.get("account") or operation.get("destination"),
            "starting_balance": operation.get("starting_balance"),
            "funder": operation.get("funder") or operation.get("source_account"),
        }
    if kind == "payment":
        return {
            "from": operation.get("from"),
            "to": operation.get("to"),
            "amount": operation.get("amount"),
            "asset": _asset_label(operation),
            "asset_issuer": operation.get("asset_issuer"),
        }
    if kind == "begin_sponsoring_future_reserves":
        return {
            "sponsor": operation.get("source_account"),
            "sponsored_id": operation.get("sponsored_id"),
        }
    if kind == "end_sponsoring_future_reserves":
        return {"action": "end_sponsorship"}
    if kind == "set_trust_line_flags":
        return {
            "trustor": operation.get("trustor"),
            "asset_code": operation.get("asset_code"),
            "asset_issuer": operation.get("asset_issuer"),
            "set_flag_names": operation.get("set_flags_s") or [],
            "clear_flag_names": operation.get("clear_flags_s") or [],
        }
    return {k: v for k, v in operation.items() if k not in _GENERIC_SKIP_FIELDS}


def visible_operations(operations: list) -> list:
    return [op for op in operations if op.get("type") not in INTERNAL_OPERATION_KINDS]


def build_graph(details: TransactionDetails) -> Graph:
    graph = Graph()
    operations = visible_operations(details.operations)

    for index, operation in enumerate(operations):
        data = {
            "type": operation.get("type"),
            "source_account": operation.get("source_account") or details.source_account,
        }
        data.update(operation_fields(operation))

        soroban = details.soroban_operation_at(index)
        if soroban is not None:
            data.update(
                {
                    "contract_id": str(soroban.contract_id),
                    "function_name": soroban.function_name,
                    "args": to_primitive(soroban.args),
                    "auth": to_primitive(soroban.auth),
                    "result": to_primitive(soroban.result),
                    "error": soroban.error,
                    "events": to_primitive(
                        [e for e in details.events if e.contract_id == soroban.contract_id]
                    ),
                }
            )
        graph.nodes.append(GraphNode(node_id(index), OPERATION_NODE, data))

        if soroban is not None:
            for change_index, change in enumerate(soroban.state_changes):
                child = change_node_id(index, change_index)
                graph.nodes.append(GraphNode(child, STATE_CHANGE_NODE, to_primitive(change)))
                graph.edges.append(
                    GraphEdge(f"own-{child}", node_id(index), child, OWNERSHIP_EDGE)
                )
        if index:
            graph.edges.append(
                GraphEdge(
                    f"seq-{node_id(index - 1)}-{node_id(index)}",
                    node_id(index - 1),
                    node_id(index),
                    SEQUENCE_EDGE,
                )
            )
    return graph
