"""
Resource descriptions exchanged with the planner.

- VMResourceRequest: what a starting VM asks for
- NodeResource: memory still available on one NUMA node, snapshotted per call
- NodeMemoryLedger: caller-owned table of remaining memory per node, used to
  produce snapshots and to record what each placed VM consumed
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Sequence, Union

from .cpuset import CPUSet
from .errors import InvalidRequestError, LedgerError
from .topology import Node, NodeLike, NumaTopology

logger = logging.getLogger(__name__)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class VMResourceRequest:
    """Resources requested by a VM being started."""
    vcpus: int
    memory: int  # bytes
    affinity: CPUSet  # physical CPUs the VM may run on

    def __post_init__(self):
        if not _is_int(self.vcpus) or self.vcpus < 1:
            raise InvalidRequestError(f"vcpus must be an integer >= 1, got {self.vcpus!r}")
        if not _is_int(self.memory) or self.memory < 0:
            raise InvalidRequestError(f"memory must be a non-negative byte count, got {self.memory!r}")
        if not isinstance(self.affinity, CPUSet):
            object.__setattr__(self, "affinity", CPUSet(self.affinity))
        if self.affinity.is_empty():
            raise InvalidRequestError("affinity must contain at least one CPU")


@dataclass(frozen=True)
class NodeResource:
    """Memory available on a NUMA node at planning time."""
    node: Node
    memory_available: int  # bytes

    def __post_init__(self):
        if not isinstance(self.node, Node):
            object.__setattr__(self, "node", Node(self.node))
        if not _is_int(self.memory_available) or self.memory_available < 0:
            raise InvalidRequestError(
                f"memory_available must be a non-negative byte count, got {self.memory_available!r}"
            )


class NodeMemoryLedger:
    """
    Remaining memory per NUMA node across successive placements.

    The ledger belongs to the caller: take a ``snapshot()`` before each
    planning call, then ``debit()`` the nodes the resulting plan uses. It is
    not thread-safe; planning and debits must be serialised by the caller.
    """

    def __init__(self, topology: NumaTopology,
                 node_memory: Union[int, Sequence[int], Mapping[NodeLike, int]]):
        self.topology = topology
        if _is_int(node_memory):
            initial = {node: node_memory for node in topology.nodes()}
        elif isinstance(node_memory, Mapping):
            initial = {topology.node(n): m for n, m in node_memory.items()}
        else:
            if len(node_memory) != topology.num_nodes:
                raise LedgerError(
                    f"Expected memory for {topology.num_nodes} nodes, got {len(node_memory)} values"
                )
            initial = dict(zip(topology.nodes(), node_memory))

        for node, memory in initial.items():
            if not _is_int(memory) or memory < 0:
                raise LedgerError(f"Memory of {node} must be a non-negative byte count, got {memory!r}")
        self._remaining: Dict[Node, int] = initial

    def remaining(self, node: NodeLike) -> int:
        return self._remaining.get(self.topology.node(node), 0)

    def total(self) -> int:
        return sum(self._remaining.values())

    def snapshot(self) -> List[NodeResource]:
        """Fresh per-node resources for a planning call, in node order."""
        return [
            NodeResource(node=node, memory_available=memory)
            for node, memory in sorted(self._remaining.items())
        ]

    def debit(self, nodes: Iterable[NodeLike], memory: int) -> Dict[Node, int]:
        """Take ``memory`` bytes from ``nodes``, striped as evenly as possible.

        A node never gives more than it holds; the shortfall is spread over
        the others. Leftover bytes of an uneven split go to the lowest nodes.

        Returns:
            Bytes taken from each node; the values sum to ``memory``.

        Raises:
            LedgerError: negative amount, or the nodes hold less than
                ``memory`` in total. The ledger is left unchanged.
        """
        if not _is_int(memory) or memory < 0:
            raise LedgerError(f"Cannot debit {memory!r} bytes")
        targets = sorted({self.topology.node(n) for n in nodes})
        available = sum(self._remaining.get(n, 0) for n in targets)
        if available < memory:
            raise LedgerError(
                f"Cannot debit {memory} bytes from {[str(n) for n in targets]}: "
                f"only {available} bytes remain"
            )

        taken = {n: 0 for n in targets}
        left = memory
        while left > 0:
            open_nodes = [n for n in targets if self._remaining.get(n, 0) - taken[n] > 0]
            share, extra = divmod(left, len(open_nodes))
            for i, node in enumerate(open_nodes):
                want = share + (1 if i < extra else 0)
                got = min(want, self._remaining[node] - taken[node])
                taken[node] += got
                left -= got

        for node, amount in taken.items():
            if amount:
                self._remaining[node] -= amount
        logger.debug(f"Debited {memory} bytes: {({str(n): a for n, a in taken.items()})}")
        return taken

    def credit(self, allocation: Mapping[NodeLike, int]):
        """Return memory previously debited, e.g. when a VM stops."""
        returned = {}
        for node, amount in allocation.items():
            if not _is_int(amount) or amount < 0:
                raise LedgerError(f"Cannot credit {amount!r} bytes to {node}")
            returned[self.topology.node(node)] = amount
        for node, amount in returned.items():
            self._remaining[node] = self._remaining.get(node, 0) + amount

    def __repr__(self) -> str:
        return f"NodeMemoryLedger({ {str(n): m for n, m in sorted(self._remaining.items())} })"
