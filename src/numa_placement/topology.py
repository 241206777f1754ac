"""Host NUMA topology: nodes, inter-node distances and CPU ownership."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Sequence, Union

import numpy as np

from .config import get_settings
from .cpuset import CPUSet
from .errors import InvalidTopologyError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class Node:
    """Identifier of a NUMA node.

    Wraps the node index so node ids cannot be confused with CPU ids or
    plain array indices.
    """
    index: int

    def __post_init__(self):
        if isinstance(self.index, bool) or not isinstance(self.index, (int, np.integer)):
            raise InvalidTopologyError(f"Node index must be an integer, got {self.index!r}")
        if self.index < 0:
            raise InvalidTopologyError(f"Node index must be non-negative, got {self.index}")
        object.__setattr__(self, "index", int(self.index))

    def __int__(self) -> int:
        return self.index

    def __str__(self) -> str:
        return f"node{self.index}"


NodeLike = Union[Node, int]


class NumaTopology:
    """Immutable description of a multi-socket host.

    Args:
        distances: n x n matrix of relative access latencies, row = accessing
            node, column = memory node. Need not be symmetric.
        cpu_to_node: node index (or Node) owning each CPU; CPU ids are the
            positions ``0 .. len(cpu_to_node)-1``.

    Raises:
        InvalidTopologyError: empty topology, non-square matrix, negative
            distances or an out-of-range node in the CPU mapping.
    """

    def __init__(self, distances: Union[Sequence[Sequence[int]], np.ndarray],
                 cpu_to_node: Sequence[NodeLike]):
        try:
            matrix = np.array(distances, dtype=np.int64)
        except (TypeError, ValueError) as e:
            raise InvalidTopologyError(f"Distance matrix is not a rectangular integer matrix: {e}") from e

        if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
            raise InvalidTopologyError(f"Distance matrix must be square, got shape {matrix.shape}")
        if matrix.shape[0] == 0:
            raise InvalidTopologyError("Topology must have at least one node")
        if (matrix < 0).any():
            raise InvalidTopologyError("Distances must be non-negative")

        num_nodes = matrix.shape[0]
        if len(cpu_to_node) == 0:
            raise InvalidTopologyError("Topology must have at least one CPU")

        owners = []
        for cpu, owner in enumerate(cpu_to_node):
            try:
                index = owner.index if isinstance(owner, Node) else int(owner)
            except (TypeError, ValueError) as e:
                raise InvalidTopologyError(f"CPU {cpu} has an invalid node reference {owner!r}") from e
            if not 0 <= index < num_nodes:
                raise InvalidTopologyError(
                    f"CPU {cpu} maps to node {index}, but the topology has {num_nodes} nodes"
                )
            owners.append(index)

        matrix.setflags(write=False)
        self._distances = matrix
        self._nodes = [Node(i) for i in range(num_nodes)]
        self._cpu_to_node = tuple(self._nodes[i] for i in owners)
        self._node_cpus = tuple(
            CPUSet(cpu for cpu, owner in enumerate(owners) if owner == i)
            for i in range(num_nodes)
        )
        self._all_cpus = CPUSet(range(len(owners)))

        self._check_distances()

    def _check_distances(self):
        """Warn about matrices that deviate from SLIT conventions."""
        local = get_settings().local_distance
        diagonal = np.diag(self._distances)
        if (diagonal != local).any():
            logger.warning(
                f"Self-distances {diagonal.tolist()} differ from the local baseline {local}"
            )
        for i in range(self.num_nodes):
            remote = np.delete(self._distances[i], i)
            if remote.size and (remote < self._distances[i, i]).any():
                logger.warning(f"Node {i} has a remote distance below its self-distance")
        for i, cpus in enumerate(self._node_cpus):
            if cpus.is_empty():
                logger.warning(f"Node {i} owns no CPUs")

    # Queries

    @property
    def num_nodes(self) -> int:
        return len(self._nodes)

    @property
    def num_cpus(self) -> int:
        return len(self._cpu_to_node)

    @property
    def distances(self) -> np.ndarray:
        """Read-only distance matrix."""
        return self._distances

    def nodes(self) -> List[Node]:
        """Nodes in index order."""
        return list(self._nodes)

    def node(self, index: NodeLike) -> Node:
        """Resolve an index (or Node) to a Node of this topology."""
        i = index.index if isinstance(index, Node) else int(index)
        if not 0 <= i < self.num_nodes:
            raise InvalidTopologyError(f"Unknown node {i}; topology has {self.num_nodes} nodes")
        return self._nodes[i]

    def node_of_cpu(self, cpu: int) -> Node:
        if not 0 <= cpu < self.num_cpus:
            raise InvalidTopologyError(f"Unknown CPU {cpu}; topology has {self.num_cpus} CPUs")
        return self._cpu_to_node[cpu]

    def distance(self, a: NodeLike, b: NodeLike) -> int:
        """Distance from node ``a`` to memory on node ``b``."""
        return int(self._distances[self.node(a).index, self.node(b).index])

    def cpuset_of_node(self, node: NodeLike) -> CPUSet:
        return self._node_cpus[self.node(node).index]

    def all_cpus(self) -> CPUSet:
        return self._all_cpus

    def nodes_of_cpuset(self, cpuset: Iterable[int]) -> List[Node]:
        """Distinct nodes owning any CPU of ``cpuset``, in index order."""
        return sorted({self.node_of_cpu(c) for c in cpuset})

    def resource(self, node: NodeLike, memory: int):
        """Snapshot of ``memory`` bytes available on ``node``."""
        from .resources import NodeResource
        return NodeResource(node=self.node(node), memory_available=memory)

    # Serialization

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return {
            'distances': self._distances.tolist(),
            'cpu_to_node': [n.index for n in self._cpu_to_node],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NumaTopology":
        try:
            return cls(distances=data['distances'], cpu_to_node=data['cpu_to_node'])
        except KeyError as e:
            raise InvalidTopologyError(f"Topology description is missing {e.args[0]!r}") from e

    def summary(self) -> str:
        """Human-readable summary."""
        width = max(len(str(int(self._distances.max()))), 4)
        header = " " * 8 + "".join(f"{str(n):>{width + 1}}" for n in self._nodes)
        lines = [
            f"NUMA topology: {self.num_nodes} nodes, {self.num_cpus} CPUs",
            "",
            header,
        ]
        for node in self._nodes:
            row = "".join(f"{d:>{width + 1}}" for d in self._distances[node.index])
            lines.append(f"{str(node):<8}{row}")
        lines.append("")
        for node, cpus in zip(self._nodes, self._node_cpus):
            lines.append(f"{str(node):<8}cpus {cpus.format() or '-'}")
        return "\n".join(lines)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NumaTopology):
            return NotImplemented
        return (np.array_equal(self._distances, other._distances)
                and self._cpu_to_node == other._cpu_to_node)

    def __hash__(self) -> int:
        return hash((self._distances.tobytes(), self._distances.shape, self._cpu_to_node))

    def __repr__(self) -> str:
        return f"NumaTopology(nodes={self.num_nodes}, cpus={self.num_cpus})"
