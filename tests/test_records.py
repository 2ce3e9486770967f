import ipaddress
import json

import pytest

from kubedns.records import (
    RecordNotFound,
    RecordTree,
    SkyRecord,
    extract_ip,
    fqdn,
    sky_record,
)


def test_sky_record_carries_host_and_port():
    record, _ = sky_record("10.0.0.1", 8081)
    assert record.host == "10.0.0.1"
    assert record.port == 8081


def test_sky_record_label_is_deterministic_hex():
    _, first = sky_record("10.0.0.1", 0)
    _, second = sky_record("10.0.0.1", 0)
    assert first == second
    assert first == format(int(first, 16), "x")
    assert len(first) <= 8


def test_sky_record_labels_differ_for_different_records():
    labels = {sky_record(ip, 0)[1] for ip in ["10.0.0.1", "10.0.0.2", "10.0.0.3"]}
    assert len(labels) == 3
    assert sky_record("10.0.0.1", 80)[1] != sky_record("10.0.0.1", 0)[1]


def test_fqdn_adds_single_trailing_dot():
    assert fqdn("cluster.local") == "cluster.local."
    assert fqdn("cluster.local.") == "cluster.local."


def test_extract_ip_v4():
    assert extract_ip("4.3.2.1.in-addr.arpa.") == "1.2.3.4"


@pytest.mark.parametrize("address", ["10.0.0.1", "192.0.2.123", "2001:db8::1", "2001:db8:1:1:1::1"])
def test_extract_ip_round_trips_reverse_pointer(address):
    assert extract_ip(ipaddress.ip_address(address).reverse_pointer) == address


@pytest.mark.parametrize(
    "name",
    [
        "3.2.1.in-addr.arpa.",
        "300.3.2.1.in-addr.arpa.",
        "testservice.default.svc.cluster.local.",
        "x.3.2.1.in-addr.arpa.",
        "1.0.ip6.arpa.",
    ],
)
def test_extract_ip_rejects_invalid(name):
    assert extract_ip(name) is None


def test_record_not_found_is_lookup_error():
    error = RecordNotFound("a.b.")
    assert isinstance(error, LookupError)
    assert error.name == "a.b."


def test_set_and_get_entry():
    tree = RecordTree()
    record, label = sky_record("1.2.3.4", 0)
    tree.set_entry(label, record, "x.default.svc.cluster.local.", "local", "cluster", "svc")
    found = tree.get_entry(label, "local", "cluster", "svc")
    assert found.host == "1.2.3.4"
    assert found.fqdn == "x.default.svc.cluster.local."
    assert tree.get_entry(label, "local", "cluster") is None
    assert tree.get_entry("missing", "local", "cluster", "svc") is None


def test_set_entry_does_not_mutate_given_record():
    tree = RecordTree()
    record = SkyRecord(host="a")
    tree.set_entry("k", record, "name.")
    assert record.fqdn == ""
    assert tree.get_entry("k").fqdn == "name."


def _service_tree():
    tree = RecordTree()
    sub = RecordTree()
    record, label = sky_record("1.2.3.4", 0)
    sub.set_entry(label, record, "ip.")
    srv, _ = sky_record("testservice.default.svc.cluster.local", 80)
    sub.set_entry(label, srv, "srv.", "_tcp", "_http")
    tree.set_subtree("testservice", sub, "local", "cluster", "svc", "default")
    return tree, label


def test_values_for_exact_path_returns_direct_entries_only():
    tree, _ = _service_tree()
    values = tree.values_for_path("local", "cluster", "svc", "default", "testservice")
    assert [v.host for v in values] == ["1.2.3.4"]


@pytest.mark.parametrize(
    "path",
    [
        ("local", "cluster", "*", "default", "testservice"),
        ("local", "cluster", "svc", "*", "testservice"),
        ("local", "cluster", "*", "*", "testservice"),
        ("local", "cluster", "svc", "default", "testservice", "*"),
    ],
)
def test_values_for_wildcard_paths(path):
    tree, _ = _service_tree()
    assert [v.host for v in tree.values_for_path(*path)] == ["1.2.3.4"]


def test_values_for_path_reaching_srv_entries():
    tree, _ = _service_tree()
    values = tree.values_for_path("local", "cluster", "svc", "default", "testservice", "_tcp", "_http")
    assert [(v.host, v.port) for v in values] == [("testservice.default.svc.cluster.local", 80)]


def test_values_for_path_ending_on_entry():
    tree, label = _service_tree()
    values = tree.values_for_path("local", "cluster", "svc", "default", "testservice", label)
    assert [v.host for v in values] == ["1.2.3.4"]


def test_wildcard_skips_underscore_children():
    tree, _ = _service_tree()
    values = tree.values_for_path("local", "cluster", "svc", "default", "testservice", "*", "_http")
    assert values == []


def test_values_for_missing_path_is_empty():
    tree, _ = _service_tree()
    assert tree.values_for_path("local", "cluster", "svc", "other", "testservice") == []


def test_delete_path_removes_child():
    tree, _ = _service_tree()
    assert tree.delete_path("local", "cluster", "svc", "default", "testservice") is True
    assert tree.values_for_path("local", "cluster", "svc", "default", "testservice") == []
    assert tree.delete_path("local", "cluster", "svc", "default", "testservice") is False


def test_delete_path_removes_entry():
    tree = RecordTree()
    record, _ = sky_record("foo.bar.example.com", 0)
    tree.set_entry("testservice", record, "testservice.default.svc.cluster.local.", "local", "default")
    assert [v.host for v in tree.values_for_path("local", "default", "testservice")] == [
        "foo.bar.example.com"
    ]
    assert tree.delete_path("local", "default", "testservice") is True
    assert tree.values_for_path("local", "default", "testservice") == []


def test_delete_empty_path_is_false():
    tree, _ = _service_tree()
    assert tree.delete_path() is False


def test_set_subtree_replaces_previous():
    tree, _ = _service_tree()
    replacement = RecordTree()
    record, label = sky_record("5.6.7.8", 0)
    replacement.set_entry(label, record, "ip.")
    tree.set_subtree("testservice", replacement, "local", "cluster", "svc", "default")
    values = tree.values_for_path("local", "cluster", "svc", "default", "testservice")
    assert [v.host for v in values] == ["5.6.7.8"]


def test_to_json_holds_tree():
    tree, label = _service_tree()
    parsed = json.loads(tree.to_json())
    node = parsed["children"]["local"]["children"]["cluster"]["children"]["svc"]
    service = node["children"]["default"]["children"]["testservice"]
    assert service["entries"][label]["host"] == "1.2.3.4"
    assert "_tcp" in service["children"]


def test_to_json_of_empty_tree():
    assert json.loads(RecordTree().to_json()) == {"children": {}, "entries": {}}