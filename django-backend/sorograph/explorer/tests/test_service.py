"""
Tests for the transaction decode pipeline.

Horizon and Soroban RPC are replaced by mocks; every XDR blob is built with
the SDK so the decoders run for real.
"""
import pytest
from stellar_sdk import Network, scval
from stellar_sdk import xdr as stellar_xdr

from sorograph.explorer.exceptions import TransactionNotFound, TransportError
from sorograph.explorer.networks import NetworkConfig
from sorograph.explorer.records import ExecutionReport, SimulationReport
from sorograph.explorer.service import (
    UNRESOLVED_CONTRACT_ERROR,
    TransactionExplorer,
    normalize_source_account,
)
from sorograph.explorer.stellar_client import HorizonClient, SorobanRpcClient

from . import factories as f

TESTNET = NetworkConfig(
    name="testnet",
    horizon_url="https://horizon-testnet.stellar.org",
    rpc_url="https://soroban-testnet.stellar.org",
    passphrase=Network.TESTNET_NETWORK_PASSPHRASE,
)
MAINNET = NetworkConfig(
    name="mainnet",
    horizon_url="https://horizon.stellar.org",
    rpc_url=None,
    passphrase=Network.PUBLIC_NETWORK_PASSPHRASE,
)
TX = stellar_xdr.TransactionResultCode


@pytest.fixture
def horizon(mocker):
    client = mocker.Mock(spec=HorizonClient)
    client.get_effects.return_value = []
    return client


@pytest.fixture
def rpc(mocker):
    client = mocker.Mock(spec=SorobanRpcClient)
    client.get_execution_report.return_value = ExecutionReport(status=ExecutionReport.NOT_FOUND)
    return client


def _invoke_record(**overrides):
    meta = f.meta_v3(
        changes=[
            f.change(
                "created",
                f.contract_data_entry(f.CONTRACT_A, scval.to_symbol("balance"), scval.to_int128(10)),
            )
        ],
        events=[f.transfer_event(f.CONTRACT_A, 10)],
        diagnostics=[
            f.diagnostic(f.transfer_event(f.CONTRACT_A, 10)),
            f.core_metric("cpu_insn", 700),
        ],
        return_value=scval.to_bool(True),
    )
    fields = {
        "envelope_xdr": f.invoke_envelope(f.CONTRACT_A, "transfer", [scval.to_int128(10)]).to_xdr(),
        "result_xdr": f.transaction_result(
            TX.txSUCCESS,
            [f.invoke_result(stellar_xdr.InvokeHostFunctionResultCode.INVOKE_HOST_FUNCTION_SUCCESS)],
        ).to_xdr(),
        "result_meta_xdr": meta.to_xdr(),
    }
    fields.update(overrides)
    return f.HorizonTransactionFactory(**fields)


# ---------------------------------------------------------------------------
# Classic transactions
# ---------------------------------------------------------------------------

class TestClassicTransaction:
    def test_single_payment(self, horizon):
        record = f.HorizonTransactionFactory()
        horizon.get_transaction.return_value = record
        horizon.get_operations.return_value = [f.PaymentOperationFactory()]
        explorer = TransactionExplorer(MAINNET, horizon=horizon)

        details = explorer.fetch(record["hash"])

        assert details.hash == record["hash"]
        assert details.status == "success"
        assert details.network == "mainnet"
        assert details.fee == "100"
        assert details.ledger_timestamp == "2024-05-01T12:00:00Z"
        assert len(details.operations) == 1
        assert details.soroban_operations == []
        assert details.error_message is None
        assert details.debug_info is None

        graph = explorer.graph(details)
        assert [n.id for n in graph.nodes] == ["op-0"]
        assert graph.edges == []

    def test_not_found_propagates(self, horizon):
        horizon.get_transaction.side_effect = TransactionNotFound("missing", source="horizon")
        with pytest.raises(TransactionNotFound):
            TransactionExplorer(MAINNET, horizon=horizon).fetch("a" * 64)

    def test_operations_failure_rebuilds_from_envelope(self, horizon):
        record = f.HorizonTransactionFactory(envelope_xdr=f.payment_envelope().to_xdr())
        horizon.get_transaction.return_value = record
        horizon.get_operations.side_effect = TransportError("down", source="horizon")
        horizon.get_effects.side_effect = TransportError("down", source="horizon")

        details = TransactionExplorer(MAINNET, horizon=horizon).fetch(record["hash"])

        assert details.operations == [{"type": "payment"}]
        assert details.effects == []

    def test_core_metrics_operations_are_dropped(self, horizon):
        record = f.HorizonTransactionFactory()
        horizon.get_transaction.return_value = record
        horizon.get_operations.return_value = [{"type": "core_metrics"}, f.PaymentOperationFactory()]

        details = TransactionExplorer(MAINNET, horizon=horizon).fetch(record["hash"])

        assert [op["type"] for op in details.operations] == ["payment"]

    def test_list_source_account(self, horizon):
        record = f.HorizonTransactionFactory(source_account=[f.SOURCE])
        horizon.get_transaction.return_value = record
        horizon.get_operations.return_value = []

        details = TransactionExplorer(MAINNET, horizon=horizon).fetch(record["hash"])

        assert details.source_account == f.SOURCE


def test_normalize_source_account():
    assert normalize_source_account(f.SOURCE) == f.SOURCE
    assert normalize_source_account([f.SOURCE, f.DESTINATION]) == f"{f.SOURCE}, {f.DESTINATION}"
    assert normalize_source_account(None) == ""


# ---------------------------------------------------------------------------
# Soroban transactions
# ---------------------------------------------------------------------------

class TestSorobanTransaction:
    def test_invocation_is_decoded(self, horizon, rpc):
        record = _invoke_record()
        horizon.get_transaction.return_value = record
        horizon.get_operations.return_value = [f.InvokeOperationFactory()]
        explorer = TransactionExplorer(TESTNET, horizon=horizon, rpc=rpc)

        details = explorer.fetch(record["hash"])

        rpc.get_execution_report.assert_called_once_with(record["hash"])
        (op,) = details.soroban_operations
        assert op.contract_id == f.CONTRACT_A
        assert op.resolved_by == "envelope"
        assert op.function_name == "transfer"
        assert op.args == ["10"]
        assert op.result is True
        assert op.error is None
        assert [c.key for c in op.state_changes] == ["balance"]
        assert [e.name for e in details.events] == ["transfer"]
        assert details.resource_usage.cpu_instructions == 700
        assert details.resource_usage.sources["cpu_instructions"] == "actual"
        assert details.resource_usage.budgeted_cpu_instructions == 1000

    def test_graph_carries_invocation(self, horizon, rpc):
        record = _invoke_record()
        horizon.get_transaction.return_value = record
        horizon.get_operations.return_value = [f.InvokeOperationFactory()]
        explorer = TransactionExplorer(TESTNET, horizon=horizon, rpc=rpc)

        graph = explorer.graph(explorer.fetch(record["hash"]))

        assert [n.id for n in graph.nodes] == ["op-0", "op-0-change-0"]
        assert graph.nodes[0].data["contract_id"] == f.CONTRACT_A
        assert graph.nodes[0].data["function_name"] == "transfer"

    def test_execution_report_overrides_record_blobs(self, horizon, rpc):
        record = f.HorizonTransactionFactory()
        horizon.get_transaction.return_value = record
        horizon.get_operations.return_value = [f.InvokeOperationFactory()]
        rpc.get_execution_report.return_value = ExecutionReport(
            status="SUCCESS",
            envelope_xdr=f.invoke_envelope(f.CONTRACT_B, "mint").to_xdr(),
            result_meta_xdr=f.meta_v3().to_xdr(),
        )

        details = TransactionExplorer(TESTNET, horizon=horizon, rpc=rpc).fetch(record["hash"])

        assert details.soroban_operations[0].contract_id == f.CONTRACT_B
        assert details.soroban_operations[0].function_name == "mint"

    def test_rpc_failure_degrades(self, horizon, rpc):
        record = _invoke_record()
        horizon.get_transaction.return_value = record
        horizon.get_operations.return_value = [f.InvokeOperationFactory()]
        rpc.get_execution_report.side_effect = TransportError("rpc down", source="soroban_rpc")

        details = TransactionExplorer(TESTNET, horizon=horizon, rpc=rpc).fetch(record["hash"])

        assert details.soroban_operations[0].contract_id == f.CONTRACT_A

    def test_unresolved_contract_placeholder(self, horizon):
        record = f.HorizonTransactionFactory()
        horizon.get_transaction.return_value = record
        horizon.get_operations.return_value = [f.InvokeOperationFactory()]

        details = TransactionExplorer(MAINNET, horizon=horizon).fetch(record["hash"])

        (op,) = details.soroban_operations
        assert op.contract_id == "Unknown_Contract_mainnet_Op1"
        assert op.error == UNRESOLVED_CONTRACT_ERROR
        assert op.resolved_by is None

    def test_created_contract_from_return_value(self, horizon):
        record = f.HorizonTransactionFactory(
            result_meta_xdr=f.meta_v3(return_value=scval.to_address(f.CONTRACT_C)).to_xdr()
        )
        horizon.get_transaction.return_value = record
        horizon.get_operations.return_value = [
            f.InvokeOperationFactory(function="HostFunctionTypeHostFunctionTypeCreateContract")
        ]

        details = TransactionExplorer(MAINNET, horizon=horizon).fetch(record["hash"])

        (op,) = details.soroban_operations
        assert op.function_name == "create_contract"
        assert op.contract_id == f.CONTRACT_C
        assert op.resolved_by == "return_value"
        assert op.error is None

    def test_extend_ttl_is_not_an_invocation(self, horizon):
        record = f.HorizonTransactionFactory()
        horizon.get_transaction.return_value = record
        horizon.get_operations.return_value = [{"type": "extend_footprint_ttl", "extend_to": 1000}]

        details = TransactionExplorer(MAINNET, horizon=horizon).fetch(record["hash"])

        (op,) = details.soroban_operations
        assert op.contract_id == "Not_An_Invocation_Op1"
        assert op.function_name == "extend_footprint_ttl"
        assert op.error is None


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class TestFailedTransaction:
    def test_failed_payment(self, horizon):
        result = f.transaction_result(
            TX.txFAILED, [f.payment_result(stellar_xdr.PaymentResultCode.PAYMENT_UNDERFUNDED)]
        )
        record = f.HorizonTransactionFactory(
            successful=False,
            envelope_xdr=f.payment_envelope().to_xdr(),
            result_xdr=result.to_xdr(),
            result_codes={"transaction": "tx_failed", "operations": ["op_underfunded"]},
        )
        horizon.get_transaction.return_value = record
        horizon.get_operations.return_value = [f.PaymentOperationFactory()]

        details = TransactionExplorer(MAINNET, horizon=horizon).fetch(record["hash"])

        assert details.status == "failed"
        assert details.error_message.startswith("tx_failed: ")
        assert details.error_report.operation_errors[0].error == "op_underfunded"
        assert details.debug_info["envelope_type"] == "transaction"
        assert details.debug_info["fee_bump"] is None
        assert details.debug_info["result_codes"]["operations"] == ["op_underfunded"]

    def test_fee_bump_inner_failure(self, horizon):
        result = f.fee_bump_result(
            TX.txFEE_BUMP_INNER_FAILED,
            TX.txFAILED,
            [f.invoke_result(stellar_xdr.InvokeHostFunctionResultCode.INVOKE_HOST_FUNCTION_TRAPPED)],
        )
        envelope = f.fee_bump_envelope(f.invoke_envelope(f.CONTRACT_A, "swap"))
        record = f.HorizonTransactionFactory(
            successful=False,
            envelope_xdr=envelope.to_xdr(),
            result_xdr=result.to_xdr(),
        )
        horizon.get_transaction.return_value = record
        horizon.get_operations.return_value = [f.InvokeOperationFactory()]

        details = TransactionExplorer(MAINNET, horizon=horizon).fetch(record["hash"])

        report = details.error_report
        assert report.is_fee_bump
        assert report.outer_error == "tx_fee_bump_inner_failed"
        assert report.inner_error == "tx_failed"
        assert details.error_message.startswith("tx_failed: ")
        assert details.debug_info["envelope_type"] == "fee_bump"
        assert details.debug_info["fee_bump"]["fee_source"] == f.FEE_SOURCE.public_key
        (op,) = details.soroban_operations
        assert op.contract_id == f.CONTRACT_A
        assert op.error == "op_trapped: Contract execution trapped"


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------

class TestSimulation:
    def test_without_rpc(self, horizon):
        record = f.HorizonTransactionFactory()
        horizon.get_transaction.return_value = record
        horizon.get_operations.return_value = []

        result = TransactionExplorer(MAINNET, horizon=horizon).simulate(record["hash"])

        assert not result.success
        assert result.estimated_fee == "0"
        assert result.potential_errors == ["Soroban RPC is not configured for mainnet"]

    def test_simulation_report(self, horizon, rpc):
        record = _invoke_record()
        horizon.get_transaction.return_value = record
        horizon.get_operations.return_value = [f.InvokeOperationFactory()]
        rpc.simulate.return_value = SimulationReport(
            success=True,
            min_resource_fee=4321,
            cpu_instructions=800,
            memory_bytes=1024,
            results=[scval.to_uint32(7).to_xdr()],
            events=[f.diagnostic(f.transfer_event(f.CONTRACT_A, 10)).to_xdr()],
        )

        result = TransactionExplorer(TESTNET, horizon=horizon, rpc=rpc).simulate(record["hash"])

        assert result.success
        assert result.estimated_fee == "4321"
        assert result.potential_errors == []
        assert result.logs == [f"[{f.CONTRACT_A}] transfer: 10"]
        (entry,) = result.operation_breakdown
        assert entry["contract_id"] == f.CONTRACT_A
        assert entry["function_name"] == "transfer"
        assert entry["result"] == 7
        assert result.resource_usage.cpu_instructions == 800

    def test_fetch_with_simulation(self, horizon, rpc):
        record = _invoke_record()
        horizon.get_transaction.return_value = record
        horizon.get_operations.return_value = [f.InvokeOperationFactory()]
        rpc.simulate.return_value = SimulationReport(success=False, error="HostError: trapped")

        details = TransactionExplorer(TESTNET, horizon=horizon, rpc=rpc).fetch(record["hash"], simulate=True)

        assert details.simulation is not None
        assert not details.simulation.success
        assert details.simulation.potential_errors == ["HostError: trapped"]


# ---------------------------------------------------------------------------
# Contract search
# ---------------------------------------------------------------------------

class TestFindContractTransactions:
    def test_matches_by_resolved_contract(self, horizon, mocker):
        matching = f.HorizonTransactionFactory()
        other = f.HorizonTransactionFactory()
        horizon.recent_transactions.return_value = [other, matching]
        operations = {
            other["hash"]: [f.InvokeOperationFactory(contract_id=f.CONTRACT_B)],
            matching["hash"]: [f.InvokeOperationFactory(contract_id=f.CONTRACT_A)],
        }
        horizon.get_operations.side_effect = lambda tx_hash: operations[tx_hash]
        explorer = TransactionExplorer(MAINNET, horizon=horizon)
        fetch = mocker.patch.object(explorer, "fetch", side_effect=lambda tx_hash: tx_hash)

        found = explorer.find_contract_transactions(f.CONTRACT_A, scan=10)

        assert found == [matching["hash"]]
        fetch.assert_called_once_with(matching["hash"])
        horizon.recent_transactions.assert_called_once_with(limit=10)

    def test_skips_transactions_that_fail_to_load(self, horizon, mocker):
        broken = f.HorizonTransactionFactory()
        matching = f.HorizonTransactionFactory()
        horizon.recent_transactions.return_value = [broken, matching]

        def operations(tx_hash):
            if tx_hash == broken["hash"]:
                raise TransportError("down", source="horizon")
            return [f.InvokeOperationFactory(contract_id=f.CONTRACT_A)]

        horizon.get_operations.side_effect = operations
        explorer = TransactionExplorer(MAINNET, horizon=horizon)
        mocker.patch.object(explorer, "fetch", side_effect=lambda tx_hash: tx_hash)

        assert explorer.find_contract_transactions(f.CONTRACT_A) == [matching["hash"]]

    def test_limit(self, horizon, mocker):
        records = [f.HorizonTransactionFactory() for _ in range(3)]
        horizon.recent_transactions.return_value = records
        horizon.get_operations.return_value = [f.InvokeOperationFactory(contract_id=f.CONTRACT_A)]
        explorer = TransactionExplorer(MAINNET, horizon=horizon)
        mocker.patch.object(explorer, "fetch", side_effect=lambda tx_hash: tx_hash)

        assert len(explorer.find_contract_transactions(f.CONTRACT_A, limit=2)) == 2

    def test_invalid_contract_id(self, horizon):
        with pytest.raises(ValueError):
            TransactionExplorer(MAINNET, horizon=horizon).find_contract_transactions("GABC")
