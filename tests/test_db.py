import pytest

from upload_service.db import Database
from upload_service.errors import StoreUnavailable


def test_connect_and_ping(tmp_path):
    db = Database(f"sqlite:///{tmp_path}/ok.db")
    db.connect(retries=0)
    db.ping()
    db.dispose()


def test_connect_fails_fast_after_retries(tmp_path):
    db = Database(f"sqlite:///{tmp_path}/no/such/dir/x.db")
    with pytest.raises(StoreUnavailable):
        db.connect(retries=1, backoff=0)


def test_unconnected_database_reports_unavailable(tmp_path):
    db = Database(f"sqlite:///{tmp_path}/never.db")
    with pytest.raises(StoreUnavailable):
        db.session()
    with pytest.raises(StoreUnavailable):
        db.ping()


def test_dispose_closes_store(database):
    database.dispose()
    with pytest.raises(StoreUnavailable):
        database.session()
