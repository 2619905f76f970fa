"""
Tests for operation graph construction.
"""
from sorograph.explorer.graph import (
    OPERATION_NODE,
    OWNERSHIP_EDGE,
    SEQUENCE_EDGE,
    STATE_CHANGE_NODE,
    build_graph,
    operation_fields,
    visible_operations,
)
from sorograph.explorer.records import (
    ContractEvent,
    SorobanOperation,
    StateChange,
    TransactionDetails,
    to_primitive,
)

from . import factories as f


def _details(operations, soroban_operations=(), events=()):
    return TransactionDetails(
        hash="ab" * 32,
        source_account=f.SOURCE,
        fee="100",
        status="success",
        network="testnet",
        operations=list(operations),
        soroban_operations=list(soroban_operations),
        events=list(events),
    )


def _soroban(index, contract_id=f.CONTRACT_A, changes=()):
    return SorobanOperation(
        operation_index=index,
        contract_id=contract_id,
        function_name="transfer",
        args=[f.SOURCE, "10"],
        result=None,
        state_changes=list(changes),
    )


class TestNodes:
    def test_single_payment(self):
        graph = build_graph(_details([f.PaymentOperationFactory()]))

        (node,) = graph.nodes
        assert node.id == "op-0"
        assert node.type == OPERATION_NODE
        assert node.data["type"] == "payment"
        assert node.data["from"] == f.SOURCE
        assert node.data["to"] == f.DESTINATION
        assert node.data["asset"] == "XLM"
        assert graph.edges == []

    def test_sequence_edges(self):
        operations = [f.PaymentOperationFactory() for _ in range(3)]
        graph = build_graph(_details(operations))

        assert [n.id for n in graph.nodes] == ["op-0", "op-1", "op-2"]
        assert [(e.id, e.source, e.target, e.kind) for e in graph.edges] == [
            ("seq-op-0-op-1", "op-0", "op-1", SEQUENCE_EDGE),
            ("seq-op-1-op-2", "op-1", "op-2", SEQUENCE_EDGE),
        ]

    def test_core_metrics_never_become_nodes(self):
        operations = [f.PaymentOperationFactory(), {"type": "core_metrics"}, f.InvokeOperationFactory()]
        graph = build_graph(_details(operations, soroban_operations=[_soroban(1)]))

        assert [n.id for n in graph.nodes] == ["op-0", "op-1"]
        assert len(visible_operations(operations)) == 2
        assert "contract_id" not in graph.nodes[0].data
        assert graph.nodes[1].data["type"] == "invoke_host_function"
        assert graph.nodes[1].data["contract_id"] == f.CONTRACT_A

    def test_source_account_defaults_to_transaction(self):
        operation = f.PaymentOperationFactory()
        del operation["source_account"]
        graph = build_graph(_details([operation]))
        assert graph.nodes[0].data["source_account"] == f.SOURCE


class TestSorobanNodes:
    def test_invocation_data_and_events(self):
        events = [
            ContractEvent(
                contract_id=f.CONTRACT_A, event_type="contract", topics=["transfer"], data="10", name="transfer"
            ),
            ContractEvent(contract_id=f.CONTRACT_B, event_type="contract", topics=["mint"], data="1", name="mint"),
        ]
        details = _details(
            [f.PaymentOperationFactory(), f.InvokeOperationFactory()],
            soroban_operations=[_soroban(1)],
            events=events,
        )

        node = build_graph(details).nodes[1]

        assert node.data["contract_id"] == f.CONTRACT_A
        assert node.data["function_name"] == "transfer"
        assert node.data["args"] == [f.SOURCE, "10"]
        assert [e["name"] for e in node.data["events"]] == ["transfer"]

    def test_state_change_children(self):
        changes = [
            StateChange(change_type="updated", entry_kind="contract_data", contract_id=f.CONTRACT_A, key="balance"),
            StateChange(change_type="created", entry_kind="contract_data", contract_id=f.CONTRACT_A, key="nonce"),
        ]
        details = _details([f.InvokeOperationFactory()], soroban_operations=[_soroban(0, changes=changes)])

        graph = build_graph(details)

        assert [(n.id, n.type) for n in graph.nodes] == [
            ("op-0", OPERATION_NODE),
            ("op-0-change-0", STATE_CHANGE_NODE),
            ("op-0-change-1", STATE_CHANGE_NODE),
        ]
        assert [(e.id, e.kind) for e in graph.edges] == [
            ("own-op-0-change-0", OWNERSHIP_EDGE),
            ("own-op-0-change-1", OWNERSHIP_EDGE),
        ]
        assert graph.nodes[1].data["key"] == "balance"

    def test_graph_is_deterministic(self):
        changes = [StateChange(change_type="created", entry_kind="contract_data", key="k")]
        details = _details(
            [f.PaymentOperationFactory(id="1"), f.InvokeOperationFactory(id="2")],
            soroban_operations=[_soroban(1, changes=changes)],
        )
        assert to_primitive(build_graph(details)) == to_primitive(build_graph(details))


class TestOperationFields:
    def test_create_account(self):
        fields = operation_fields(
            {"type": "create_account", "account": f.DESTINATION, "starting_balance": "5", "funder": f.SOURCE}
        )
        assert fields == {"destination": f.DESTINATION, "starting_balance": "5", "funder": f.SOURCE}

    def test_sponsorship(self):
        begin = operation_fields(
            {"type": "begin_sponsoring_future_reserves", "source_account": f.SOURCE, "sponsored_id": f.DESTINATION}
        )
        assert begin == {"sponsor": f.SOURCE, "sponsored_id": f.DESTINATION}
        assert operation_fields({"type": "end_sponsoring_future_reserves"}) == {"action": "end_sponsorship"}

    def test_set_trust_line_flags(self):
        fields = operation_fields(
            {
                "type": "set_trust_line_flags",
                "trustor": f.DESTINATION,
                "asset_code": "USDC",
                "asset_issuer": f.SOURCE,
                "set_flags_s": ["authorized"],
            }
        )
        assert fields["set_flag_names"] == ["authorized"]
        assert fields["clear_flag_names"] == []

    def test_generic_copy_skips_bookkeeping(self):
        fields = operation_fields(
            {"type": "manage_data", "id": "1", "paging_token": "1", "_links": {}, "name": "k", "value": "dg=="}
        )
        assert fields == {"name": "k", "value": "dg=="}
