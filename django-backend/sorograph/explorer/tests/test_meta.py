"""
Tests for the transaction metadata walker.
"""
from stellar_sdk import scval
from stellar_sdk import xdr as stellar_xdr

from sorograph.explorer.meta import MetaWalker, extract_for_operation
from sorograph.explorer.scval import INSTANCE_KEY_LITERAL

from . import factories as f


def _instance_key():
    return stellar_xdr.SCVal(type=stellar_xdr.SCValType.SCV_LEDGER_KEY_CONTRACT_INSTANCE)


class TestStateChanges:
    def test_created_entry(self):
        entry = f.contract_data_entry(f.CONTRACT_A, scval.to_symbol("balance"), scval.to_int128(500))
        meta = f.meta_v3(changes=[f.change("created", entry)])

        result = extract_for_operation(meta, 0)

        assert len(result.state_changes) == 1
        change = result.state_changes[0]
        assert change.change_type == "created"
        assert change.entry_kind == "contract_data"
        assert change.contract_id == f.CONTRACT_A
        assert change.storage_type == "persistent"
        assert change.key == "balance"
        assert change.value == "500"
        assert change.before is None

    def test_update_pairs_with_prior_state(self):
        key = scval.to_symbol("counter")
        before = f.contract_data_entry(f.CONTRACT_A, key, scval.to_uint32(1))
        after = f.contract_data_entry(f.CONTRACT_A, key, scval.to_uint32(2))
        meta = f.meta_v3(changes=[f.change("state", before), f.change("updated", after)])

        (change,) = extract_for_operation(meta, 0).state_changes

        assert change.change_type == "updated"
        assert change.before == 1
        assert change.value == 2
        assert change.description == "Persistent storage updated"

    def test_unpaired_state_is_not_surfaced(self):
        entry = f.contract_data_entry(f.CONTRACT_A, scval.to_symbol("x"), scval.to_uint32(1))
        meta = f.meta_v3(changes=[f.change("state", entry)])
        assert extract_for_operation(meta, 0).state_changes == []

    def test_instance_storage(self):
        entry = f.contract_data_entry(f.CONTRACT_B, _instance_key(), scval.to_void())
        meta = f.meta_v3(changes=[f.change("updated", entry)])

        (change,) = extract_for_operation(meta, 0).state_changes

        assert change.key == INSTANCE_KEY_LITERAL
        assert change.storage_type == "instance"

    def test_temporary_storage(self):
        entry = f.contract_data_entry(
            f.CONTRACT_A,
            scval.to_symbol("nonce"),
            scval.to_uint32(9),
            durability=stellar_xdr.ContractDataDurability.TEMPORARY,
        )
        meta = f.meta_v3(changes=[f.change("created", entry)])
        assert extract_for_operation(meta, 0).state_changes[0].storage_type == "temporary"

    def test_ttl_extension(self):
        key_hash = b"\x33" * 32
        meta = f.meta_v3(
            changes=[
                f.change("state", f.ttl_entry(key_hash, 1000)),
                f.change("updated", f.ttl_entry(key_hash, 5000)),
            ]
        )

        result = extract_for_operation(meta, 0)

        assert result.state_changes == []
        (ttl,) = result.ttl_extensions
        assert ttl.entry_hash == key_hash.hex()
        assert ttl.previous_live_until_ledger == 1000
        assert ttl.live_until_ledger == 5000
        assert ttl.description == "TTL extended from ledger 1000 to 5000"

    def test_out_of_range_operation(self):
        entry = f.contract_data_entry(f.CONTRACT_A, scval.to_symbol("x"), scval.to_uint32(1))
        meta = f.meta_v3(changes=[f.change("created", entry)])
        assert extract_for_operation(meta, 3).state_changes == []


class TestEvents:
    def test_contract_events_without_diagnostics(self):
        meta = f.meta_v3(events=[f.transfer_event(f.CONTRACT_A, 250)])

        (event,) = extract_for_operation(meta, 0).events

        assert event.contract_id == f.CONTRACT_A
        assert event.event_type == "contract"
        assert event.topics == ["transfer", f.SOURCE, f.DESTINATION]
        assert event.data == "250"
        assert event.name == "transfer"

    def test_diagnostics_preferred_and_core_metrics_filtered(self):
        meta = f.meta_v3(
            events=[f.transfer_event(f.CONTRACT_A, 250)],
            diagnostics=[
                f.fn_call(f.CONTRACT_A, f.CONTRACT_B, "swap"),
                f.diagnostic(f.transfer_event(f.CONTRACT_B, 250)),
                f.core_metric("cpu_insn", 123456),
            ],
        )

        events = extract_for_operation(meta, 0).events

        assert [e.name for e in events] == ["fn_call", "transfer"]
        assert events[0].event_type == "diagnostic"
        assert events[1].contract_id == f.CONTRACT_B

    def test_cross_contract_calls(self):
        meta = f.meta_v3(
            diagnostics=[
                f.fn_call(f.CONTRACT_A, f.CONTRACT_B, "swap"),
                f.fn_call(f.CONTRACT_B, f.CONTRACT_C, "transfer"),
            ]
        )

        calls = extract_for_operation(meta, 0).cross_contract_calls

        assert [(c.from_contract, c.to_contract, c.function_name) for c in calls] == [
            (f.CONTRACT_A, f.CONTRACT_B, "swap"),
            (f.CONTRACT_B, f.CONTRACT_C, "transfer"),
        ]
        assert all(c.success for c in calls)

    def test_decode_standalone_diagnostic_event(self):
        blob = f.diagnostic(f.transfer_event(f.CONTRACT_A, 5)).to_xdr()
        event = MetaWalker().decode_diagnostic_event(blob)
        assert event.name == "transfer"
        assert event.data == "5"


class TestResources:
    def test_core_metrics_and_fees(self):
        meta = f.meta_v3(
            diagnostics=[
                f.core_metric("cpu_insn", 700),
                f.core_metric("mem_byte", 2048),
                f.core_metric("read_entry", 3),
                f.core_metric("write_entry", 1),
                f.core_metric("read_data_byte", 100),
                f.core_metric("read_code_byte", 50),
                f.core_metric("ledger_write_byte", 40),
            ],
            fees=(1000, 200, 30),
        )

        resources = extract_for_operation(meta, 0).resources

        assert resources.cpu_instructions == 700
        assert resources.memory_bytes == 2048
        assert resources.read_ledger_entries == 3
        assert resources.write_ledger_entries == 1
        assert resources.read_bytes == 150
        assert resources.write_bytes == 40
        assert resources.non_refundable_fee == 1000
        assert resources.refundable_fee == 200
        assert resources.rent_fee == 30

    def test_no_metrics_means_zero(self):
        resources = extract_for_operation(f.meta_v3(), 0).resources
        assert resources.cpu_instructions == 0
        assert resources.rent_fee == 0


class TestReturnValue:
    def test_return_value_is_decoded(self):
        meta = f.meta_v3(return_value=scval.to_address(f.CONTRACT_C))
        assert extract_for_operation(meta, 0).return_value == f.CONTRACT_C

    def test_void_return(self):
        assert extract_for_operation(f.meta_v3(), 0).return_value is None

    def test_accepts_base64(self):
        meta = f.meta_v3(return_value=scval.to_uint32(3)).to_xdr()
        assert extract_for_operation(meta, 0).return_value == 3


def test_unparseable_meta_yields_empty_result():
    result = extract_for_operation("AAAA", 0)
    assert result.state_changes == []
    assert result.events == []
    assert result.return_value is None


class TestMetaV4:
    def test_changes_are_per_operation(self):
        entry = f.contract_data_entry(
            f.CONTRACT_A,
            scval.to_symbol("nonce"),
            scval.to_uint32(4),
            durability=stellar_xdr.ContractDataDurability.TEMPORARY,
        )
        meta = f.meta_v4(operations=[((), ()), ([f.change("created", entry)], ())])

        assert extract_for_operation(meta, 0).state_changes == []
        (change,) = extract_for_operation(meta, 1).state_changes
        assert change.storage_type == "temporary"
        assert change.value == 4

    def test_contract_events_come_from_the_operation(self):
        meta = f.meta_v4(
            operations=[
                ((), [f.transfer_event(f.CONTRACT_A, 1)]),
                ((), [f.transfer_event(f.CONTRACT_B, 2)]),
            ]
        )

        (event,) = extract_for_operation(meta, 1).events

        assert event.contract_id == f.CONTRACT_B
        assert event.data == "2"

    def test_diagnostics_and_metrics(self):
        meta = f.meta_v4(
            operations=[((), [f.transfer_event(f.CONTRACT_A, 1)])],
            diagnostics=[
                f.fn_call(f.CONTRACT_A, f.CONTRACT_B, "swap"),
                f.core_metric("cpu_insn", 900),
            ],
            fees=(10, 20, 3),
        )

        result = extract_for_operation(meta, 0)

        assert [e.name for e in result.events] == ["fn_call"]
        assert [c.to_contract for c in result.cross_contract_calls] == [f.CONTRACT_B]
        assert result.resources.cpu_instructions == 900
        assert result.resources.rent_fee == 3

    def test_return_value(self):
        meta = f.meta_v4(return_value=scval.to_uint32(3))
        assert extract_for_operation(meta, 0).return_value == 3

    def test_missing_return_value(self):
        assert extract_for_operation(f.meta_v4(), 0).return_value is None


def test_event_failure_keeps_state_changes(mocker):
    mocker.patch.object(MetaWalker, "_events", side_effect=ValueError("broken events"))
    entry = f.contract_data_entry(f.CONTRACT_A, scval.to_symbol("balance"), scval.to_int128(7))
    meta = f.meta_v3(
        changes=[f.change("created", entry)],
        diagnostics=[f.fn_call(f.CONTRACT_A, f.CONTRACT_B, "swap")],
    )

    result = extract_for_operation(meta, 0)

    assert [c.key for c in result.state_changes] == ["balance"]
    assert result.events == []
    assert result.cross_contract_calls == []


def test_event_name_needs_a_symbol_topic():
    event = f.contract_event(f.CONTRACT_A, [scval.to_address(f.SOURCE), scval.to_symbol("x")], scval.to_void())
    meta = f.meta_v3(events=[event])

    (decoded,) = extract_for_operation(meta, 0).events

    assert decoded.topics[0] == f.SOURCE
    assert decoded.name is None
