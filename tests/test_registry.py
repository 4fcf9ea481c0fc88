import pytest

from micrort.registry import (
    Endpoint,
    MemoryRegistry,
    Node,
    NotFoundError,
    Service,
    Value,
    camel_to_snake,
    format_endpoint,
    sort_services,
)


def sample_dict():
    return {
        "name": "greeter",
        "version": "latest",
        "metadata": {},
        "endpoints": [
            {
                "name": "Say.Hello",
                "request": {
                    "name": "Request",
                    "type": "Request",
                    "values": [{"name": "name", "type": "string", "values": []}],
                },
                "response": None,
                "metadata": {"stream": "false"},
            }
        ],
        "nodes": [
            {"id": "greeter-1", "address": "10.0.0.1:9000", "metadata": {"protocol": "mucp"}}
        ],
    }


def make_service(node_id, version="latest", name="greeter"):
    return Service(name=name, version=version, nodes=[Node(id=node_id, address=node_id + ":1")])


def test_service_round_trip():
    data = sample_dict()
    service = Service.from_dict(data)
    assert service.to_dict() == data
    assert service.endpoints[0].request.values[0].name == "name"
    assert service.endpoints[0].response is None


def test_service_from_dict_rejects_non_mapping():
    with pytest.raises(ValueError):
        Service.from_dict(["greeter"])
    with pytest.raises(ValueError):
        Service.from_dict(None)


def test_register_and_get():
    registry = MemoryRegistry()
    registry.register(Service.from_dict(sample_dict()))
    found = registry.get_service("greeter")
    assert len(found) == 1
    assert found[0].to_dict() == sample_dict()


def test_register_merges_nodes():
    registry = MemoryRegistry()
    registry.register(make_service("a"))
    registry.register(make_service("b"))
    nodes = registry.get_service("greeter")[0].nodes
    assert sorted(n.id for n in nodes) == ["a", "b"]


def test_versions_are_separate():
    registry = MemoryRegistry()
    registry.register(make_service("a", version="1"))
    registry.register(make_service("b", version="2"))
    versions = sorted(s.version for s in registry.get_service("greeter"))
    assert versions == ["1", "2"]


def test_deregister_removes_nodes_then_service():
    registry = MemoryRegistry()
    registry.register(make_service("a"))
    registry.register(make_service("b"))
    registry.deregister(make_service("a"))
    assert [n.id for n in registry.get_service("greeter")[0].nodes] == ["b"]
    registry.deregister(make_service("b"))
    with pytest.raises(NotFoundError):
        registry.get_service("greeter")


def test_get_unknown_service_raises():
    with pytest.raises(NotFoundError):
        MemoryRegistry().get_service("missing")


def test_list_services_and_copies():
    registry = MemoryRegistry()
    registry.register(make_service("a", name="beta"))
    registry.register(make_service("b", name="alpha"))
    names = sorted(s.name for s in registry.list_services())
    assert names == ["alpha", "beta"]

    got = registry.get_service("beta")[0]
    got.nodes.clear()
    assert len(registry.get_service("beta")[0].nodes) == 1


def test_sort_services_by_name():
    services = [Service(name=n) for n in ["zeta", "alpha", "mid"]]
    ordered = sort_services(services)
    assert [s.name for s in ordered] == sorted(["zeta", "alpha", "mid"])
    assert len(ordered) == len(services)


def test_camel_to_snake():
    assert camel_to_snake("userName") == "user_name"
    assert camel_to_snake("HTTPServer") == "http_server"
    assert camel_to_snake("name") == "name"


def test_format_endpoint_primitive():
    assert format_endpoint(Value(name="name", type="string"), 0) == "\tname string\n"


def test_format_endpoint_nested():
    child = Value(name="firstName", type="string")
    parent = Value(name="User", type="User", values=[child])
    text = format_endpoint(parent, 0)
    lines = text.splitlines()
    assert text.endswith("\n")
    assert lines[0].startswith("\tuser User")
    assert lines[0].endswith("{")
    assert lines[1] == format_endpoint(child, 1).rstrip("\n")
    assert lines[1].startswith("\t\t")
    assert lines[-1].strip() == "}"
    assert lines[-1].startswith("\t") and not lines[-1].startswith("\t\t")


def test_endpoint_and_node_round_trip():
    endpoint = Endpoint(name="X.Y", request=Value(name="A", type="A"), metadata={"k": "v"})
    assert Endpoint.from_dict(endpoint.to_dict()) == endpoint
    node = Node(id="n1", address="host:1", metadata={"m": "1"})
    assert Node.from_dict(node.to_dict()) == node