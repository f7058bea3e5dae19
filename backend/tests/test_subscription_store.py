from unittest.mock import MagicMock
import pytest
from sqlalchemy.exc import OperationalError
from app.errors import StorageError
from app.models import PushSubscription
from app.services.subscriptions import Subscription, SubscriptionStore

ENDPOINT = "https://push.example.com/endpoint/abc"

def test_upsert_creates_subscription(db_session):
    store = SubscriptionStore(db_session)
    store.upsert(ENDPOINT, auth_secret="auth-1", p256dh_key="key-1", owner_id="user-1")

    sub = store.get(ENDPOINT)
    assert sub == Subscription(ENDPOINT, "key-1", "auth-1", "user-1")

def test_upsert_same_endpoint_rotates_keys(db_session):
    store = SubscriptionStore(db_session)
    store.upsert(ENDPOINT, auth_secret="auth-1", p256dh_key="key-1")
    store.upsert(ENDPOINT, auth_secret="auth-2", p256dh_key="key-2")

    subs = store.list_all()
    assert len(subs) == 1
    assert subs[0].auth_secret == "auth-2"
    assert subs[0].p256dh_key == "key-2"
    assert db_session.query(PushSubscription).count() == 1

def test_remove_deletes_subscription(db_session):
    store = SubscriptionStore(db_session)
    store.upsert(ENDPOINT, auth_secret="a", p256dh_key="k")
    store.remove(ENDPOINT)
    assert store.get(ENDPOINT) is None
    assert store.list_all() == []

def test_remove_missing_endpoint_is_noop(db_session):
    SubscriptionStore(db_session).remove("https://push.example.com/never-stored")

def test_list_all_returns_detached_snapshot(db_session):
    store = SubscriptionStore(db_session)
    store.upsert(ENDPOINT, auth_secret="a", p256dh_key="k")
    store.upsert(ENDPOINT + "2", auth_secret="b", p256dh_key="l")

    subs = store.list_all()
    store.remove(ENDPOINT)
    # snapshot is unaffected by later deletes
    assert {s.endpoint for s in subs} == {ENDPOINT, ENDPOINT + "2"}
    assert subs[0].subscription_info()["keys"].keys() == {"p256dh", "auth"}

def test_storage_failure_raises_storage_error():
    db = MagicMock()
    db.execute.side_effect = OperationalError("INSERT", {}, Exception("connection lost"))
    store = SubscriptionStore(db)

    with pytest.raises(StorageError):
        store.upsert(ENDPOINT, auth_secret="a", p256dh_key="k")
    db.rollback.assert_called_once()
    assert db.execute.call_count == 1

def test_list_failure_raises_storage_error():
    db = MagicMock()
    db.scalars.side_effect = OperationalError("SELECT", {}, Exception("connection lost"))
    with pytest.raises(StorageError):
        SubscriptionStore(db).list_all()
