import docker.errors
import pytest

from cluster_runtime.config import TopologyBuilder
from cluster_runtime.docker_runtime import READY_MARKER, DockerNodeRuntime
from cluster_runtime.errors import ConfigurationError, StartupError
from cluster_runtime.in_memory import InMemoryNodeRuntime
from cluster_runtime.runtime_factory import NodeRuntimeFactory


class FakeContainer:
    def __init__(self, name, **kwargs):
        self.id = f"id-{name}"
        self.name = name
        self.kwargs = kwargs
        self.status = "running"
        self.output = b""

    def logs(self):
        return self.output

    def stop(self, timeout=None):
        self.status = "exited"

    def remove(self, v=False, force=False):
        self.status = "removed"


class FakeContainers:
    def __init__(self, fail=False, fail_after_create=False):
        self.by_id = {}
        self.fail = fail
        self.fail_after_create = fail_after_create

    def run(self, image, name, **kwargs):
        if self.fail:
            raise docker.errors.APIError("pull access denied")
        container = FakeContainer(name, image=image, **kwargs)
        self.by_id[container.id] = container
        if self.fail_after_create:
            container.status = "created"
            raise docker.errors.APIError("port is already allocated")
        return container

    def get(self, container_id):
        container = self.by_id.get(container_id) or self.by_id.get(f"id-{container_id}")
        if container is None or container.status == "removed":
            raise docker.errors.NotFound(container_id)
        return container


class FakeNetwork:
    def __init__(self, registry, name):
        self._registry = registry
        self.name = name

    def remove(self):
        del self._registry[self.name]


class FakeNetworks:
    def __init__(self):
        self.existing = {}

    def get(self, name):
        if name not in self.existing:
            raise docker.errors.NotFound(name)
        return FakeNetwork(self.existing, name)

    def create(self, name, **kwargs):
        self.existing[name] = kwargs


class FakeDockerClient:
    def __init__(self, fail=False, fail_after_create=False):
        self.containers = FakeContainers(fail, fail_after_create)
        self.networks = FakeNetworks()


def docker_runtime(client):
    runtime = DockerNodeRuntime()
    runtime._client = client
    return runtime


def dedicated_topology():
    return (
        TopologyBuilder()
        .with_number_of_brokers(1)
        .with_dedicated_roles()
        .with_number_of_controllers(1)
        .with_cluster_id("MkU3OEVBNTcwNTJENDM2Qg")
        .build()
    )


def test_broker_container_environment():
    client = FakeDockerClient()
    runtime = docker_runtime(client)
    spec = dedicated_topology().node(1)

    ref = runtime.start(spec, network="kafka-net")

    container = client.containers.get(ref.container_id)
    env = container.kwargs["environment"]
    assert container.name == spec.host
    assert container.kwargs["network"] == "kafka-net"
    assert container.kwargs["image"] == "apache/kafka:3.7.0"
    assert container.kwargs["ports"] == {"9092/tcp": ref.host_port}
    assert env["CLUSTER_ID"] == "MkU3OEVBNTcwNTJENDM2Qg"
    assert env["KAFKA_NODE_ID"] == "1"
    assert env["KAFKA_PROCESS_ROLES"] == "broker"
    assert env["KAFKA_CONTROLLER_QUORUM_VOTERS"] == spec.quorum_voters
    assert env["KAFKA_LISTENERS"] == "BROKER://0.0.0.0:9091,PLAINTEXT://0.0.0.0:9092"
    assert env["KAFKA_ADVERTISED_LISTENERS"] == (
        f"BROKER://{spec.host}:9091,PLAINTEXT://localhost:{ref.host_port}"
    )
    assert runtime.network_address(ref) == ("localhost", ref.host_port)


def test_controller_container_has_no_external_port():
    client = FakeDockerClient()
    runtime = docker_runtime(client)
    spec = dedicated_topology().node(0)

    ref = runtime.start(spec, network="kafka-net")

    env = client.containers.get(ref.container_id).kwargs["environment"]
    assert ref.host_port is None
    assert env["KAFKA_LISTENERS"] == "CONTROLLER://0.0.0.0:9094"
    assert "KAFKA_ADVERTISED_LISTENERS" not in env
    assert runtime.network_address(ref) == (spec.host, 9094)


@pytest.mark.parametrize(
    "key,expected",
    [
        ("log.dirs", "KAFKA_LOG_DIRS"),
        ("offsets.topic.replication.factor", "KAFKA_OFFSETS_TOPIC_REPLICATION_FACTOR"),
        ("some_odd.key", "KAFKA_SOME__ODD_KEY"),
        ("dash-key", "KAFKA_DASH___KEY"),
    ],
)
def test_property_names_map_to_environment(key, expected):
    assert DockerNodeRuntime._env_name(key) == expected


def test_readiness_waits_for_server_started_marker():
    client = FakeDockerClient()
    runtime = docker_runtime(client)
    ref = runtime.start(dedicated_topology().node(0))
    container = client.containers.get(ref.container_id)

    assert runtime.is_running(ref)
    assert not runtime.is_ready(ref)
    container.output = f"[KafkaRaftServer nodeId=0] {READY_MARKER}\n".encode("utf-8")
    assert runtime.is_ready(ref)
    assert READY_MARKER in runtime.logs(ref)


def test_stop_keeps_logs_until_remove():
    client = FakeDockerClient()
    runtime = docker_runtime(client)
    ref = runtime.start(dedicated_topology().node(0))
    client.containers.get(ref.container_id).output = b"shutting down\n"

    runtime.stop(ref)
    runtime.stop(ref)

    assert not runtime.is_running(ref)
    assert runtime.logs(ref) == "shutting down\n"

    runtime.remove(ref)
    runtime.remove(ref)

    assert ref.removed
    assert runtime.logs(ref) == ""


def test_launch_failure_becomes_startup_error():
    runtime = docker_runtime(FakeDockerClient(fail=True))

    with pytest.raises(StartupError) as info:
        runtime.start(dedicated_topology().node(0))

    assert info.value.node_id == 0


def test_failed_start_removes_the_created_container():
    client = FakeDockerClient(fail_after_create=True)
    runtime = docker_runtime(client)
    spec = dedicated_topology().node(1)

    with pytest.raises(StartupError, match="port is already allocated"):
        runtime.start(spec)

    assert [container.name for container in client.containers.by_id.values()] == [spec.host]
    assert all(container.status == "removed" for container in client.containers.by_id.values())


def test_networks_are_created_once_and_removed():
    client = FakeDockerClient()
    runtime = docker_runtime(client)

    runtime.create_network("kafka-net")
    runtime.create_network("kafka-net")
    assert list(client.networks.existing) == ["kafka-net"]

    runtime.remove_network("kafka-net")
    runtime.remove_network("kafka-net")
    assert client.networks.existing == {}


def test_factory_creates_runtimes():
    factory = NodeRuntimeFactory()

    assert isinstance(factory.create("docker"), DockerNodeRuntime)
    runtime = factory.create("in_memory", {"start_delay": 0.5})
    assert isinstance(runtime, InMemoryNodeRuntime)


def test_factory_rejects_unknown_runtime_and_bad_options():
    factory = NodeRuntimeFactory()

    with pytest.raises(ConfigurationError, match="Unsupported"):
        factory.create("podman")
    with pytest.raises(ConfigurationError, match="Invalid options"):
        factory.create("in_memory", {"warp_speed": True})
