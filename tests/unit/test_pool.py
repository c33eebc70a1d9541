import ipaddress
import random

import pytest

from k8s_ipam.exceptions import ValidationError
from k8s_ipam.iprange import IPRange
from k8s_ipam.pool import IPPool
from k8s_ipam.reservations import ReservationTable


def ip(value: str):
    return ipaddress.ip_address(value)


def build_pool(
    cidr: str = "2001:db8::/65",
    netmask_bits: int = 64,
    gateway=None,
    static=None,
) -> IPPool:
    return IPPool(
        name="test-pool",
        range=IPRange(cidr),
        netmask_bits=netmask_bits,
        gateway=ip(gateway) if gateway else None,
        static_reservations=ReservationTable.from_dict(static),
    )


def test_validate_accepts_consistent_pool():
    build_pool(gateway="2001:db8::1").validate()
    build_pool(cidr="10.0.1.0/24", netmask_bits=16, gateway="10.0.0.1").validate()


def test_validate_rejects_bad_range():
    with pytest.raises(ValidationError):
        build_pool(cidr="2001:db8::").validate()


@pytest.mark.parametrize("netmask_bits", [-1, 129])
def test_validate_rejects_netmask_out_of_family(netmask_bits):
    with pytest.raises(ValidationError):
        build_pool(netmask_bits=netmask_bits).validate()


def test_validate_rejects_netmask_narrower_than_range():
    with pytest.raises(ValidationError):
        build_pool(cidr="10.0.0.0/24", netmask_bits=25).validate()


def test_validate_rejects_gateway_outside_network():
    with pytest.raises(ValidationError):
        build_pool(gateway="2001:db8:0:1::1").validate()


def test_effective_network_masks_range_base():
    pool = build_pool(cidr="10.0.1.0/24", netmask_bits=16)

    assert pool.effective_network() == ipaddress.ip_network("10.0.0.0/16")
    assert pool.contains(ip("10.0.200.1"))
    assert not pool.contains(ip("10.1.0.1"))


def test_random_address_stays_in_range():
    rng = random.Random(1234)
    for cidr, netmask in (("10.0.1.0/24", 16), ("2001:db8::/65", 64), ("2001:db8::/8", 8)):
        pool = build_pool(cidr=cidr, netmask_bits=netmask)
        for _ in range(200):
            assert pool.range.contains_address(pool.random_address(rng))


def test_random_address_covers_upper_ipv6_host_bits():
    pool = build_pool(cidr="2001:db8::/32", netmask_bits=32)
    rng = random.Random(99)
    base = int(pool.range.network.network_address)

    draws = [int(pool.random_address(rng)) - base for _ in range(64)]

    assert any(value >= 2 ** 64 for value in draws)


def test_random_address_legacy_bit_cap():
    pool = build_pool(cidr="2001:db8::/32", netmask_bits=32)
    rng = random.Random(99)
    base = int(pool.range.network.network_address)

    draws = [int(pool.random_address(rng, random_bits=64)) - base for _ in range(64)]

    assert all(value < 2 ** 64 for value in draws)


def test_random_address_single_host_range():
    pool = build_pool(cidr="192.0.2.7/32", netmask_bits=24)

    assert pool.random_address(random.Random(0)) == ip("192.0.2.7")


def test_reserve_dynamic_marks_address():
    pool = build_pool()
    address = ip("2001:db8::42")

    pool.reserve_dynamic("ns1", "pod1", address)

    assert pool.is_reserved(address)
    assert pool.holder_of(address) == ("ns1", "pod1")
    assert pool.existing_reservation("ns1", "pod1") == address


def test_release_dynamic_clears_reservation_and_bucket():
    pool = build_pool()
    address = ip("2001:db8::42")
    pool.reserve_dynamic("ns1", "pod1", address)

    assert pool.release_dynamic("ns1", "pod1") is True

    assert not pool.is_reserved(address)
    assert pool.existing_reservation("ns1", "pod1") is None
    assert "ns1" not in pool.dynamic_reservations.namespaces()


def test_release_dynamic_without_table_is_noop():
    pool = build_pool()

    assert pool.release_dynamic("ns1", "pod1") is False
    assert pool.dynamic_reservations is None


def test_gateway_is_reserved_without_holder():
    pool = build_pool(gateway="2001:db8::1")

    assert pool.is_reserved(ip("2001:db8::1"))
    assert pool.holder_of(ip("2001:db8::1")) is None


def test_static_reservation_bypasses_range_check():
    pool = build_pool(static={"ns-bar": {"pod-foo": "2001:db8:0:1::23"}})

    assert pool.existing_reservation("ns-bar", "pod-foo") == ip("2001:db8:0:1::23")
    assert not pool.is_reserved(ip("2001:db8:0:1::23"))
    assert pool.holder_of(ip("2001:db8:0:1::23")) is None


def test_static_reservation_takes_priority():
    pool = build_pool(static={"ns": {"pod": "2001:db8::5"}})
    pool.reserve_dynamic("ns", "pod", ip("2001:db8::6"))
    pool.reserve_dynamic("other", "pod", ip("2001:db8::5"))

    assert pool.existing_reservation("ns", "pod") == ip("2001:db8::5")
    assert pool.holder_of(ip("2001:db8::5")) == ("ns", "pod")
    assert pool.is_static(ip("2001:db8::5"))


def test_address_outside_pool_is_not_reserved():
    pool = build_pool(cidr="10.0.0.0/24", netmask_bits=24)
    pool.reserve_dynamic("ns", "pod", ip("10.9.9.9"))

    assert not pool.is_reserved(ip("10.9.9.9"))
    assert pool.holder_of(ip("10.9.9.9")) is None


def test_resource_round_trip():
    resource = {
        "apiVersion": "k8s.pgc.umn.edu/v1alpha1",
        "kind": "IPPool",
        "metadata": {"name": "pool-a", "resourceVersion": "17"},
        "spec": {
            "range": "10.0.1.0/24",
            "netmaskBits": 16,
            "gateway": "10.0.0.1",
            "staticReservations": {"kube-system": {"dns": "10.0.1.2"}},
        },
        "status": {
            "dynamicReservations": {"default": {"web": "10.0.1.20"}},
            "DynamicReservations": {"default": {"web": "10.0.1.20"}},
        },
    }

    pool = IPPool.from_resource(resource)

    assert pool.name == "pool-a"
    assert pool.gateway == ip("10.0.0.1")
    assert pool.existing_reservation("default", "web") == ip("10.0.1.20")
    assert pool.to_resource(version="17") == resource


def test_resource_without_status_or_gateway():
    pool = IPPool.from_resource(
        {
            "metadata": {"name": "pool-b"},
            "spec": {"range": "2001:db8::/65", "netmaskBits": 64, "gateway": ""},
        }
    )

    assert pool.gateway is None
    assert pool.dynamic_reservations is None
    assert pool.status() == {}


def test_resource_accepts_legacy_status_key():
    pool = IPPool.from_resource(
        {
            "metadata": {"name": "pool-c"},
            "spec": {"range": "10.0.0.0/24", "netmaskBits": 24},
            "status": {"DynamicReservations": {"ns": {"pod": "10.0.0.9"}}},
        }
    )

    assert pool.existing_reservation("ns", "pod") == ip("10.0.0.9")
    assert pool.status()["dynamicReservations"] == {"ns": {"pod": "10.0.0.9"}}


def test_status_is_written_under_legacy_key_too():
    pool = IPPool(name="pool-d", range=IPRange("10.0.0.0/24"), netmask_bits=24)
    pool.reserve_dynamic("ns", "pod", ip("10.0.0.7"))

    status = pool.status()

    # Earlier releases look up exactly "DynamicReservations".
    assert status["DynamicReservations"] == {"ns": {"pod": "10.0.0.7"}}
    assert status["dynamicReservations"] == status["DynamicReservations"]
    assert status["dynamicReservations"] is not status["DynamicReservations"]

    # A later write by an earlier release replaces status with the legacy key only.
    pool.release_dynamic("ns", "pod")
    legacy = pool.to_resource()
    legacy["status"] = {"DynamicReservations": {"ns": {"other": "10.0.0.8"}}}
    reread = IPPool.from_resource(legacy)
    assert reread.existing_reservation("ns", "other") == ip("10.0.0.8")
    assert reread.existing_reservation("ns", "pod") is None


def test_resource_rejects_bad_addresses():
    with pytest.raises(ValidationError):
        IPPool.from_resource(
            {
                "metadata": {"name": "broken"},
                "spec": {"range": "10.0.0.0/24", "netmaskBits": 24, "gateway": "10.0.0.256"},
            }
        )
