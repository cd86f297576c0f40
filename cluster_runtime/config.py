"""Cluster topology models, builder and repository."""

from __future__ import annotations

import base64
import hashlib
import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

import jsonschema

from cluster_runtime.errors import ConfigurationError

DEFAULT_IMAGE = "apache/kafka:3.7.0"
BROKER_PORT = 9091
CONTROLLER_PORT = 9094
DATA_ROOT = "/var/lib/kafka/data"

# Keys derived from the topology itself; user overrides would break the quorum wiring.
RESERVED_PROPERTIES = ("node.id", "process.roles", "controller.quorum.voters")


class NodeRole(str, Enum):
    """Responsibilities of a single cluster node."""

    BROKER = "broker"
    CONTROLLER = "controller"
    BOTH = "both"

    @property
    def is_broker(self) -> bool:
        return self in (NodeRole.BROKER, NodeRole.BOTH)

    @property
    def is_controller(self) -> bool:
        return self in (NodeRole.CONTROLLER, NodeRole.BOTH)

    @property
    def process_roles(self) -> str:
        if self is NodeRole.BOTH:
            return "broker,controller"
        return self.value


@dataclass(frozen=True)
class VoterEndpoint:
    """One member of the controller quorum as seen by its peers."""

    node_id: int
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.node_id}@{self.host}:{self.port}"


@dataclass(frozen=True)
class NodeSpec:
    """Immutable description of one cluster member."""

    node_id: int
    role: NodeRole
    host: str
    port: int
    controller_port: int
    peer_voters: Tuple[VoterEndpoint, ...]
    data_dir: str
    cluster_id: str = ""
    image: str = DEFAULT_IMAGE
    log_path: Optional[str] = None
    properties: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}), compare=False)

    @property
    def internal_address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def quorum_voters(self) -> str:
        return ",".join(str(voter) for voter in self.peer_voters)


@dataclass(frozen=True)
class Topology:
    """Validated, immutable cluster layout."""

    node_specs: Tuple[NodeSpec, ...]
    broker_replication_factor: int
    internal_topic_replication_factor: int
    shared_network: bool = False
    log_collection_path: Optional[str] = None
    dedicated_roles: bool = False
    cluster_id: str = ""
    image: str = DEFAULT_IMAGE

    def brokers(self) -> List[NodeSpec]:
        return [spec for spec in self.node_specs if spec.role.is_broker]

    def controllers(self) -> List[NodeSpec]:
        return [spec for spec in self.node_specs if spec.role.is_controller]

    def voters(self) -> Tuple[VoterEndpoint, ...]:
        return tuple(VoterEndpoint(spec.node_id, spec.host, spec.controller_port) for spec in self.controllers())

    def node(self, node_id: int) -> NodeSpec:
        for spec in self.node_specs:
            if spec.node_id == node_id:
                return spec
        raise KeyError(node_id)

    def startup_tiers(self) -> List[List[NodeSpec]]:
        """Return node groups in start order; each group starts concurrently."""
        if self.dedicated_roles:
            return [self.controllers(), [spec for spec in self.node_specs if spec.role is NodeRole.BROKER]]
        return [list(self.node_specs)]


def generate_cluster_id() -> str:
    """Return a random Kafka-style cluster id (url-safe base64 UUID, no padding)."""
    return base64.urlsafe_b64encode(uuid.uuid4().bytes).decode("ascii").rstrip("=")


class TopologyBuilder:
    """
    Accumulates cluster options and derives a consistent topology.

    One builder serves both combined clusters (every node is broker and
    controller) and dedicated-role clusters (disjoint controller and broker
    nodes). Nothing is validated until build().
    """

    def __init__(self) -> None:
        self._brokers: Optional[int] = None
        self._controllers: Optional[int] = None
        self._internal_rf: Optional[int] = None
        self._broker_rf: Optional[int] = None
        self._dedicated_roles = False
        self._shared_network = False
        self._log_collection_path: Optional[str] = None
        self._node_id_base = 0
        self._cluster_id: Optional[str] = None
        self._image = DEFAULT_IMAGE
        self._extra_properties: Dict[str, str] = {}

    def with_number_of_brokers(self, count: int) -> "TopologyBuilder":
        """Set how many broker-role nodes the cluster runs."""
        self._brokers = count
        return self

    def with_number_of_controllers(self, count: int) -> "TopologyBuilder":
        """Set the size of the dedicated controller quorum."""
        self._controllers = count
        return self

    def with_internal_topic_replication_factor(self, factor: int) -> "TopologyBuilder":
        """Set the replication factor of offsets and transaction state topics."""
        self._internal_rf = factor
        return self

    def with_broker_replication_factor(self, factor: int) -> "TopologyBuilder":
        """Set the default replication factor of user topics."""
        self._broker_rf = factor
        return self

    def with_dedicated_roles(self) -> "TopologyBuilder":
        """Run controllers and brokers as separate nodes."""
        self._dedicated_roles = True
        return self

    def with_shared_network(self) -> "TopologyBuilder":
        """Attach the nodes to the network shared by all clusters in this process."""
        self._shared_network = True
        return self

    def with_log_collection(self, path: str) -> "TopologyBuilder":
        """Write each node's output to <path>/<node_id>.log on teardown."""
        self._log_collection_path = str(path)
        return self

    def with_node_id_base(self, base: int) -> "TopologyBuilder":
        """Set the first node id handed out."""
        self._node_id_base = base
        return self

    def with_cluster_id(self, cluster_id: str) -> "TopologyBuilder":
        """Use a fixed cluster id instead of a generated one."""
        self._cluster_id = cluster_id
        return self

    def with_image(self, image: str) -> "TopologyBuilder":
        """Set the container image the nodes run."""
        self._image = image
        return self

    def with_additional_kafka_configuration(self, properties: Mapping[str, object]) -> "TopologyBuilder":
        """Add server properties on top of the derived ones."""
        for key, value in properties.items():
            self._extra_properties[key] = str(value).lower() if isinstance(value, bool) else str(value)
        return self

    def build(self) -> Topology:
        """Validate options and return an immutable topology."""
        brokers = self._brokers if self._brokers is not None else 1
        if brokers < 1:
            raise ConfigurationError(f"Number of brokers must be at least 1, got {brokers}")

        if self._dedicated_roles:
            if self._controllers is None:
                raise ConfigurationError("Dedicated roles require with_number_of_controllers()")
            if self._controllers < 1:
                raise ConfigurationError(f"Number of controllers must be at least 1, got {self._controllers}")
        elif self._controllers is not None:
            raise ConfigurationError("with_number_of_controllers() is only valid together with with_dedicated_roles()")

        internal_rf = self._internal_rf if self._internal_rf is not None else min(3, brokers)
        broker_rf = self._broker_rf if self._broker_rf is not None else internal_rf
        for name, value in (("Internal topic replication factor", internal_rf), ("Broker replication factor", broker_rf)):
            if value < 1:
                raise ConfigurationError(f"{name} must be at least 1, got {value}")
            if value > brokers:
                raise ConfigurationError(f"{name} {value} exceeds the number of brokers ({brokers})")

        if self._node_id_base < 0:
            raise ConfigurationError(f"Node id base must not be negative, got {self._node_id_base}")

        reserved = sorted(key for key in self._extra_properties if key in RESERVED_PROPERTIES)
        if reserved:
            raise ConfigurationError(f"Kafka configuration may not override {', '.join(reserved)}")

        cluster_id = self._cluster_id or generate_cluster_id()
        tag = hashlib.sha1(cluster_id.encode("utf-8")).hexdigest()[:6]
        roles = self._allocate_roles(brokers)
        voters = tuple(
            VoterEndpoint(node_id, self._host_for(node_id, role, tag), CONTROLLER_PORT)
            for node_id, role in roles
            if role.is_controller
        )
        specs = tuple(
            self._node_spec(node_id, role, voters, internal_rf, broker_rf, cluster_id, tag) for node_id, role in roles
        )

        return Topology(
            node_specs=specs,
            broker_replication_factor=broker_rf,
            internal_topic_replication_factor=internal_rf,
            shared_network=self._shared_network,
            log_collection_path=self._log_collection_path,
            dedicated_roles=self._dedicated_roles,
            cluster_id=cluster_id,
            image=self._image,
        )

    def _allocate_roles(self, brokers: int) -> List[Tuple[int, NodeRole]]:
        """Assign ids in creation order: controllers first, then brokers."""
        base = self._node_id_base
        if not self._dedicated_roles:
            return [(base + index, NodeRole.BOTH) for index in range(brokers)]

        controllers = self._controllers or 0
        allocated = [(base + index, NodeRole.CONTROLLER) for index in range(controllers)]
        allocated.extend((base + controllers + index, NodeRole.BROKER) for index in range(brokers))
        return allocated

    def _node_spec(
        self,
        node_id: int,
        role: NodeRole,
        voters: Tuple[VoterEndpoint, ...],
        internal_rf: int,
        broker_rf: int,
        cluster_id: str,
        tag: str,
    ) -> NodeSpec:
        data_dir = f"{DATA_ROOT}/{node_id}"
        log_path = None
        if self._log_collection_path is not None:
            log_path = str(Path(self._log_collection_path) / f"{node_id}.log")

        properties = {
            "node.id": str(node_id),
            "process.roles": role.process_roles,
            "controller.quorum.voters": ",".join(str(voter) for voter in voters),
            "controller.listener.names": "CONTROLLER",
            "log.dirs": data_dir,
            "offsets.topic.replication.factor": str(internal_rf),
            "transaction.state.log.replication.factor": str(internal_rf),
            "transaction.state.log.min.isr": str(min(internal_rf, 2)),
            "default.replication.factor": str(broker_rf),
            "group.initial.rebalance.delay.ms": "0",
        }
        if role.is_broker:
            properties["inter.broker.listener.name"] = "BROKER"
        properties.update(self._extra_properties)

        return NodeSpec(
            node_id=node_id,
            role=role,
            host=self._host_for(node_id, role, tag),
            port=BROKER_PORT,
            controller_port=CONTROLLER_PORT,
            peer_voters=voters,
            data_dir=data_dir,
            cluster_id=cluster_id,
            image=self._image,
            log_path=log_path,
            properties=MappingProxyType(properties),
        )

    @staticmethod
    def _host_for(node_id: int, role: NodeRole, tag: str) -> str:
        # The tag keeps hostnames unique when clusters share a network.
        prefix = "kafka" if role is NodeRole.BOTH else role.value
        return f"{prefix}-{node_id}-{tag}"


class ConfigRepository:
    """
    Repository for loading cluster topologies from JSON files.

    Documents are validated against the packaged JSON Schema before they
    reach the builder, so builder errors only report semantic problems.
    """

    def __init__(self, path: str, schema_path: str | None = None) -> None:
        """Initialize with topology file path and optional schema path."""
        self._path = Path(path)
        if schema_path is None:
            self._schema_path = Path(__file__).resolve().parent / "schemas" / "cluster_topology.schema.json"
        else:
            self._schema_path = Path(schema_path)

    def load(self) -> Topology:
        """Load, validate and build the topology."""
        if not self._path.exists():
            raise ConfigurationError(f"Topology file not found: {self._path}")

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid JSON in topology file: {exc}") from exc

        self._validate(raw)
        return self.builder_for(raw).build()

    @staticmethod
    def builder_for(raw: dict) -> TopologyBuilder:
        """Translate a validated document into builder calls."""
        builder = TopologyBuilder().with_number_of_brokers(raw["brokers"])
        if raw.get("dedicated_roles"):
            builder.with_dedicated_roles()
        if "controllers" in raw:
            builder.with_number_of_controllers(raw["controllers"])
        if "internal_topic_replication_factor" in raw:
            builder.with_internal_topic_replication_factor(raw["internal_topic_replication_factor"])
        if "broker_replication_factor" in raw:
            builder.with_broker_replication_factor(raw["broker_replication_factor"])
        if raw.get("shared_network"):
            builder.with_shared_network()
        if raw.get("log_collection_path"):
            builder.with_log_collection(raw["log_collection_path"])
        if "node_id_base" in raw:
            builder.with_node_id_base(raw["node_id_base"])
        if raw.get("cluster_id"):
            builder.with_cluster_id(raw["cluster_id"])
        if raw.get("image"):
            builder.with_image(raw["image"])
        if raw.get("kafka_configuration"):
            builder.with_additional_kafka_configuration(raw["kafka_configuration"])
        return builder

    def _validate(self, raw: dict) -> None:
        """Validate the document against the JSON Schema."""
        try:
            schema = json.loads(self._schema_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Unable to read topology schema {self._schema_path}: {exc}") from exc

        try:
            jsonschema.validate(instance=raw, schema=schema)
        except jsonschema.ValidationError as exc:
            raise ConfigurationError(f"Topology schema validation failed: {exc.message}") from exc
