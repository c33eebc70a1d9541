import ipaddress

import pytest

from ipam_plugin.result import (
    UnsupportedVersion,
    build_error,
    build_result,
    build_version_info,
    error_code,
)
from k8s_ipam.allocator import Allocation
from k8s_ipam.exceptions import ConfigError, ConflictError, LivenessQueryError, PoolExhausted, StoreError


def test_result_with_gateway_adds_default_route():
    allocation = Allocation(
        address=ipaddress.ip_address("10.0.1.20"),
        prefix_length=16,
        gateway=ipaddress.ip_address("10.0.0.1"),
    )

    result = build_result("0.3.1", allocation)

    assert result == {
        "cniVersion": "0.3.1",
        "ips": [{"version": "4", "address": "10.0.1.20/16", "gateway": "10.0.0.1"}],
        "routes": [{"dst": "0.0.0.0/0", "gw": "10.0.0.1"}],
        "dns": {},
    }


def test_result_ipv6_without_gateway():
    allocation = Allocation(address=ipaddress.ip_address("2001:db8::42"), prefix_length=64)

    result = build_result("", allocation)

    assert result["cniVersion"] == "0.4.0"
    assert result["ips"] == [{"version": "6", "address": "2001:db8::42/64"}]
    assert result["routes"] == []


def test_result_rejects_unsupported_version():
    with pytest.raises(UnsupportedVersion):
        build_result("9.9.9")


def test_legacy_result_uses_ip_blocks():
    allocation = Allocation(
        address=ipaddress.ip_address("10.0.1.20"),
        prefix_length=16,
        gateway=ipaddress.ip_address("10.0.0.1"),
    )

    result = build_result("0.2.0", allocation)

    assert result == {
        "cniVersion": "0.2.0",
        "ip4": {
            "ip": "10.0.1.20/16",
            "gateway": "10.0.0.1",
            "routes": [{"dst": "0.0.0.0/0", "gw": "10.0.0.1"}],
        },
        "dns": {},
    }
    assert build_result("0.1.0") == {"cniVersion": "0.1.0", "dns": {}}


def test_every_advertised_version_renders():
    for version in build_version_info()["supportedVersions"]:
        assert build_result(version)["cniVersion"] == version


def test_error_codes():
    assert error_code(UnsupportedVersion("9.9.9")) == 1
    assert error_code(ConfigError("bad")) == 7
    assert error_code(ConflictError("pool")) == 11
    assert error_code(PoolExhausted("pool", 3)) == 100
    assert error_code(StoreError("down")) == 101
    assert error_code(LivenessQueryError("down")) == 102

    assert build_error("0.3.1", StoreError("down")) == {"cniVersion": "0.3.1", "code": 101, "msg": "down"}


def test_version_info():
    info = build_version_info()

    assert info["cniVersion"] == "0.4.0"
    assert "0.3.1" in info["supportedVersions"]
