"""TestData / TestDataSource のユニットテスト"""

import pytest

from k1s0_flagstore import (
    ChangeType,
    DataSourceErrorKind,
    DataSourceState,
    FlagStoreError,
    FlagStoreErrorCodes,
    IntentCode,
    ObjectKind,
    Selector,
    TestData,
)


def test_fetch_returns_full_transfer() -> None:
    """fetch は現在の全データを TRANSFER_FULL で返すこと。"""
    td = TestData()
    td.update({"key": "f1", "on": True, "variations": [True, False]})
    td.update_segment({"key": "s1", "included": ["u1"]})
    source = td.data_source()

    result = source.fetch(None)  # type: ignore[arg-type]
    assert result.is_success
    basis = result.value
    assert basis is not None
    assert basis.persist is False
    assert basis.change_set.intent_code is IntentCode.TRANSFER_FULL
    assert basis.change_set.selector == Selector("2", 2)
    assert {(c.kind, c.key, c.version) for c in basis.change_set.changes} == {
        (ObjectKind.FLAG, "f1", 1),
        (ObjectKind.SEGMENT, "s1", 1),
    }


def test_update_bumps_item_version() -> None:
    td = TestData()
    td.update({"key": "f1", "version": 40})
    td.update({"key": "f1"})
    assert td.make_init_data()["flags"]["f1"]["version"] == 2
    assert td.get_version() == 2


def test_update_requires_key() -> None:
    td = TestData()
    with pytest.raises(FlagStoreError) as exc_info:
        td.update({"on": True})
    assert exc_info.value.code == FlagStoreErrorCodes.INVALID_DATA


def test_update_does_not_share_caller_dict() -> None:
    td = TestData()
    flag = {"key": "f1", "variations": [1, 2]}
    td.update(flag)
    flag["variations"].append(3)
    assert td.make_init_data()["flags"]["f1"]["variations"] == [1, 2]


def test_sync_streams_updates_until_stopped() -> None:
    """sync は最初に全件、その後は投入ごとに差分を返し、stop() で終わること。"""
    td = TestData()
    td.update({"key": "f1"})
    source = td.data_source()
    updates = source.sync(None)  # type: ignore[arg-type]

    first = next(updates)
    assert first.state is DataSourceState.VALID
    assert first.change_set is not None
    assert first.change_set.intent_code is IntentCode.TRANSFER_FULL

    td.update({"key": "f1", "on": True})
    second = next(updates)
    assert second.change_set is not None
    assert second.change_set.intent_code is IntentCode.TRANSFER_CHANGES
    change = second.change_set.changes[0]
    assert (change.action, change.key, change.version) == (ChangeType.PUT, "f1", 2)
    assert second.change_set.selector == Selector("2", 2)

    source.stop()
    with pytest.raises(StopIteration):
        next(updates)


def test_closed_source_fails() -> None:
    """stop 後の fetch は失敗し、sync は OFF を返すこと。"""
    td = TestData()
    source = td.data_source()
    source.stop()
    source.stop()

    result = source.fetch(None)  # type: ignore[arg-type]
    assert result.is_success is False
    assert result.error == "test data source has been closed"

    updates = list(source.sync(None))  # type: ignore[arg-type]
    assert len(updates) == 1
    assert updates[0].state is DataSourceState.OFF
    assert updates[0].error is not None
    assert updates[0].error.kind is DataSourceErrorKind.STORE_ERROR
