import pytest

from kubedns.objects import (
    CLUSTER_IP_NONE,
    SERVICE_TYPE_EXTERNAL_NAME,
    EndpointAddress,
    Endpoints,
    EndpointSubset,
    Node,
    Service,
    ServicePort,
    Store,
    object_key,
)


def test_service_with_cluster_ip_has_ip_set():
    service = Service("web", "default", cluster_ip="10.0.0.5")
    assert service.is_ip_set() is True


@pytest.mark.parametrize("cluster_ip", ["", CLUSTER_IP_NONE])
def test_headless_service_has_no_ip(cluster_ip):
    service = Service("web", "default", cluster_ip=cluster_ip)
    assert service.is_ip_set() is False


def test_external_name_type():
    external = Service("web", type=SERVICE_TYPE_EXTERNAL_NAME, external_name="foo.bar.example.com")
    plain = Service("web")
    assert external.is_external_name() is True
    assert plain.is_external_name() is False


def test_object_key_with_namespace():
    assert object_key(Service("testservice", "default")) == "default/testservice"


def test_object_key_without_namespace():
    assert object_key(Node("testnode-1")) == "testnode-1"


def test_object_key_rejects_object_without_name():
    with pytest.raises(TypeError):
        object_key(object())


def test_service_and_endpoints_share_key():
    service = Service("testservice", "default")
    endpoints = Endpoints("testservice", "default")
    assert object_key(service) == object_key(endpoints)


def test_store_add_and_get():
    store = Store()
    service = Service("testservice", "default", ports=[ServicePort(80, "http", "TCP")])
    store.add(service)
    assert store.get("default/testservice") is service
    assert store.get("default/other") is None


def test_store_add_replaces_same_key():
    store = Store()
    first = Endpoints("svc", "ns")
    second = Endpoints("svc", "ns", subsets=[EndpointSubset([EndpointAddress("10.0.0.1")])])
    store.add(first)
    store.add(second)
    assert store.list() == [second]
    assert len(store) == 1


def test_store_delete():
    store = Store()
    service = Service("a", "ns")
    store.add(service)
    store.add(Service("b", "ns"))
    store.delete(Service("a", "ns"))
    assert "ns/a" not in store
    assert [s.name for s in store.list()] == ["b"]


def test_store_delete_missing_leaves_store_unchanged():
    store = Store()
    store.add(Service("a", "ns"))
    store.delete(Service("missing", "ns"))
    assert [s.name for s in store.list()] == ["a"]


def test_store_list_keeps_insertion_order():
    store = Store()
    names = ["c", "a", "b"]
    for name in names:
        store.add(Node(name))
    assert [node.name for node in store.list()] == names
    assert [node.name for node in store] == names


def test_store_custom_key():
    store = Store(key=lambda obj: obj.ip)
    address = EndpointAddress("10.0.0.1", hostname="foo")
    store.add(address)
    assert store.get("10.0.0.1") is address