import datetime as dt

import pytest

from upload_service.errors import NotFound, StoreUnavailable
from upload_service.models import FileRecord


def _insert(records, name, size=1):
    return records.insert(stored_name=f"1-{name}", original_name=name, size=size, path=f"/uploads/1-{name}")


def test_insert_assigns_id_and_timestamp(records):
    record = _insert(records, "a.txt", size=3)
    assert len(record.id) == 32
    assert record.uploaded_at is not None
    assert records.find_by_id(record.id).stored_name == "1-a.txt"


def test_ids_are_unique(records):
    ids = {_insert(records, f"{i}.txt").id for i in range(20)}
    assert len(ids) == 20


def test_list_all_is_newest_first_with_insertion_order_for_ties(records, session):
    stamp = dt.datetime(2024, 1, 1, 12, 0, 0)
    for name, when in [("old", stamp), ("tie1", stamp + dt.timedelta(hours=1)),
                       ("tie2", stamp + dt.timedelta(hours=1)), ("new", stamp + dt.timedelta(hours=2))]:
        session.add(FileRecord(stored_name=name, original_name=name, size=1, path=f"/uploads/{name}", uploaded_at=when))
    session.commit()

    assert [r.original_name for r in records.list_all()] == ["new", "tie1", "tie2", "old"]


def test_find_and_delete_unknown_id(records):
    with pytest.raises(NotFound):
        records.find_by_id("nope")
    with pytest.raises(NotFound):
        records.delete_by_id("nope")


def test_delete_by_id(records):
    record = _insert(records, "a.txt")
    records.delete_by_id(record.id)
    assert records.list_all() == []


def test_duplicate_stored_name_is_store_error(records):
    _insert(records, "a.txt")
    with pytest.raises(StoreUnavailable):
        _insert(records, "a.txt")
    # сессия пригодна после отката
    assert len(records.list_all()) == 1
