import pytest

from k8s_ipam.exceptions import ConflictError, StoreError
from k8s_ipam.iprange import IPRange
from k8s_ipam.pool import IPPool
from k8s_ipam.store import InMemoryPodLiveness, InMemoryPoolStore


def build_store() -> InMemoryPoolStore:
    store = InMemoryPoolStore()
    store.add_pool(IPPool(name="pool", range=IPRange("10.0.0.0/24"), netmask_bits=24))
    return store


def test_fetch_returns_independent_copies():
    store = build_store()

    snapshot = store.fetch("pool")
    snapshot.pool.reserve_dynamic("ns", "pod", "10.0.0.5")

    assert store.fetch("pool").pool.dynamic_reservations is None
    assert store.resource("pool")["status"] == {}


def test_write_status_bumps_version():
    store = build_store()
    snapshot = store.fetch("pool")
    snapshot.pool.reserve_dynamic("ns", "pod", "10.0.0.5")

    store.write_status(snapshot.pool, snapshot.version)

    assert store.version("pool") == snapshot.version + 1
    assert store.resource("pool")["status"] == {
        "dynamicReservations": {"ns": {"pod": "10.0.0.5"}},
        "DynamicReservations": {"ns": {"pod": "10.0.0.5"}},
    }


def test_write_status_rejects_stale_version():
    store = build_store()
    snapshot = store.fetch("pool")
    store.write_status(snapshot.pool, snapshot.version)

    with pytest.raises(ConflictError) as excinfo:
        store.write_status(snapshot.pool, snapshot.version)

    assert excinfo.value.pool_name == "pool"
    assert store.writes == 1


def test_unknown_pool_raises_store_error():
    store = InMemoryPoolStore()

    with pytest.raises(StoreError):
        store.fetch("missing")
    with pytest.raises(StoreError):
        store.put({"metadata": {}})


def test_pod_liveness_records_queries():
    liveness = InMemoryPodLiveness([("ns", "web")])

    assert liveness.exists("ns", "web") is True
    liveness.remove("ns", "web")
    assert liveness.exists("ns", "web") is False
    assert liveness.queries == [("ns", "web"), ("ns", "web")]
