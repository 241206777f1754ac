"""
Planner Tests.

Validates that the planner returns valid, local and deterministic CPU sets,
and that it never reports "no plan" while some node set can host the VM.
"""

import logging
from itertools import combinations

import numpy as np
import pytest

from numa_placement import (
    CPUSet,
    InvalidRequestError,
    Node,
    NodeResource,
    Placement,
    VMResourceRequest,
    baseline_placement,
    candidate_node_sets,
    evaluate,
    make_asymmetric_topology,
    make_symmetric_topology,
    plan,
    plan_with_nodes,
)

GiB = 1 << 30


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def two_node_host():
    """2 nodes x 2 CPUs, distances [[10, 21], [21, 10]]."""
    return make_symmetric_topology(numa=2, cores=4)


@pytest.fixture
def chain_host():
    """3 nodes x 2 CPUs in a chain: node 0 and node 2 are two hops apart."""
    return make_symmetric_topology(numa=3, cores=6)


@pytest.fixture
def opteron_host():
    """8 asymmetric nodes x 4 CPUs."""
    return make_asymmetric_topology(cores_per_numa=4)


def resources(host, memory):
    """Same free memory on every node."""
    return [host.resource(n, memory=memory) for n in host.nodes()]


def is_feasible(host, memory_by_node, request, nodes):
    free = sum(memory_by_node.get(n.index, 0) for n in nodes)
    cpus = CPUSet()
    for n in nodes:
        cpus = cpus | host.cpuset_of_node(n)
    return free >= request.memory and len(request.affinity & cpus) >= request.vcpus


# =============================================================================
# Candidate ordering
# =============================================================================

class TestCandidateNodeSets:
    """Order in which node sets are considered."""

    def test_sizes_increase(self, chain_host):
        sizes = [len(c.nodes) for c in candidate_node_sets(chain_host)]
        assert sizes == sorted(sizes)
        assert sizes.count(1) == 3
        assert sizes.count(2) == 3
        assert sizes.count(3) == 1

    def test_closest_pairs_first(self, chain_host):
        pairs = [c.indices for c in candidate_node_sets(chain_host) if len(c.nodes) == 2]
        assert pairs == [(0, 1), (1, 2), (0, 2)]

    def test_distance_bounds(self, chain_host):
        far = [c for c in candidate_node_sets(chain_host) if c.indices == (0, 2)][0]
        assert far.max_distance == 32
        assert far.sum_distance == 10 + 32 + 32 + 10

    def test_asymmetric_distances_count_both_directions(self, opteron_host):
        pair = [c for c in candidate_node_sets(opteron_host) if c.indices == (1, 7)][0]
        assert pair.max_distance == 17
        assert pair.sum_distance == 10 + 17 + 16 + 10

    def test_max_nodes_limits_search(self, chain_host):
        sizes = {len(c.nodes) for c in candidate_node_sets(chain_host, max_nodes=2)}
        assert sizes == {1, 2}


# =============================================================================
# Planning
# =============================================================================

class TestPlanBasics:
    """Single-call planning behaviour."""

    def test_single_node_when_capacity_allows(self, two_node_host):
        request = VMResourceRequest(vcpus=2, memory=16 * GiB, affinity=two_node_host.all_cpus())
        cpuset = plan(two_node_host, resources(two_node_host, 16 * GiB), request)
        assert cpuset == CPUSet([0, 1])
        assert two_node_host.nodes_of_cpuset(cpuset) == [Node(0)]

    def test_memory_forces_two_nodes(self, two_node_host):
        request = VMResourceRequest(vcpus=2, memory=20 * GiB, affinity=two_node_host.all_cpus())
        cpuset = plan(two_node_host, resources(two_node_host, 16 * GiB), request)
        assert cpuset == CPUSet([0, 2])
        assert two_node_host.nodes_of_cpuset(cpuset) == [Node(0), Node(1)]

    def test_cpus_force_two_nodes(self, two_node_host):
        request = VMResourceRequest(vcpus=3, memory=GiB, affinity=two_node_host.all_cpus())
        cpuset = plan(two_node_host, resources(two_node_host, 16 * GiB), request)
        assert len(cpuset) == 3
        assert two_node_host.nodes_of_cpuset(cpuset) == [Node(0), Node(1)]

    def test_affinity_selects_node(self):
        host = make_symmetric_topology(numa=2, cores=8)
        request = VMResourceRequest(vcpus=2, memory=GiB, affinity=CPUSet.parse("4-7"))
        assert plan(host, resources(host, 16 * GiB), request) == CPUSet([4, 5])

    def test_affinity_spanning_nodes(self):
        host = make_symmetric_topology(numa=2, cores=8)
        request = VMResourceRequest(vcpus=2, memory=GiB, affinity=CPUSet([3, 4]))
        assert plan(host, resources(host, 16 * GiB), request) == CPUSet([3, 4])

    def test_prefers_nodes_that_all_host_vcpus(self, chain_host):
        # (0, 1) is closer, but node 0 has no CPU in the affinity mask
        request = VMResourceRequest(vcpus=2, memory=20 * GiB, affinity=CPUSet([2, 3, 4, 5]))
        cpuset = plan(chain_host, resources(chain_host, 16 * GiB), request)
        assert cpuset == CPUSet([2, 4])

    def test_prefers_closest_pair(self, chain_host):
        # Node 1 is short of memory; (0, 2) would be two hops apart
        nodes = [
            NodeResource(node=Node(0), memory_available=16 * GiB),
            NodeResource(node=Node(1), memory_available=8 * GiB),
            NodeResource(node=Node(2), memory_available=16 * GiB),
        ]
        request = VMResourceRequest(vcpus=2, memory=20 * GiB, affinity=chain_host.all_cpus())
        cpuset = plan(chain_host, nodes, request)
        assert chain_host.nodes_of_cpuset(cpuset) == [Node(0), Node(1)]

    def test_ties_go_to_the_node_with_most_free_memory(self, two_node_host):
        nodes = [
            NodeResource(node=Node(0), memory_available=8 * GiB),
            NodeResource(node=Node(1), memory_available=12 * GiB),
        ]
        request = VMResourceRequest(vcpus=2, memory=GiB, affinity=two_node_host.all_cpus())
        assert plan(two_node_host, nodes, request) == CPUSet([2, 3])

    def test_missing_nodes_have_no_memory(self, two_node_host):
        nodes = [NodeResource(node=Node(1), memory_available=4 * GiB)]
        request = VMResourceRequest(vcpus=2, memory=2 * GiB, affinity=two_node_host.all_cpus())
        assert plan(two_node_host, nodes, request) == CPUSet([2, 3])

    def test_plan_with_nodes_reports_memory_only_nodes(self, chain_host):
        request = VMResourceRequest(vcpus=1, memory=20 * GiB, affinity=chain_host.all_cpus())
        cpuset, nodes = plan_with_nodes(chain_host, resources(chain_host, 16 * GiB), request)
        assert cpuset == CPUSet([0])
        assert nodes == (Node(0), Node(1))
        assert plan(chain_host, resources(chain_host, 16 * GiB), request) == cpuset

    def test_plan_with_nodes_no_plan(self, two_node_host):
        request = VMResourceRequest(vcpus=1, memory=40 * GiB, affinity=two_node_host.all_cpus())
        assert plan_with_nodes(two_node_host, resources(two_node_host, 16 * GiB), request) is None

    def test_zero_memory_request(self, two_node_host):
        request = VMResourceRequest(vcpus=1, memory=0, affinity=two_node_host.all_cpus())
        assert plan(two_node_host, [], request) == CPUSet([0])


class TestNoPlan:
    """Requests that cannot be placed return None."""

    def test_not_enough_memory(self, two_node_host):
        request = VMResourceRequest(vcpus=1, memory=40 * GiB, affinity=two_node_host.all_cpus())
        assert plan(two_node_host, resources(two_node_host, 16 * GiB), request) is None

    def test_not_enough_cpus_in_affinity(self, two_node_host):
        request = VMResourceRequest(vcpus=2, memory=GiB, affinity=CPUSet([0]))
        assert plan(two_node_host, resources(two_node_host, 16 * GiB), request) is None

    def test_affinity_outside_host(self, two_node_host):
        request = VMResourceRequest(vcpus=1, memory=GiB, affinity=CPUSet([10, 11]))
        assert plan(two_node_host, resources(two_node_host, 16 * GiB), request) is None

    def test_max_nodes(self, two_node_host):
        request = VMResourceRequest(vcpus=2, memory=20 * GiB, affinity=two_node_host.all_cpus())
        assert plan(two_node_host, resources(two_node_host, 16 * GiB), request, max_nodes=1) is None


class TestPlanInputs:
    """Input validation, immutability and determinism."""

    def test_duplicate_node(self, two_node_host):
        nodes = [two_node_host.resource(0, GiB), two_node_host.resource(0, GiB)]
        request = VMResourceRequest(vcpus=1, memory=0, affinity=two_node_host.all_cpus())
        with pytest.raises(InvalidRequestError):
            plan(two_node_host, nodes, request)

    def test_unknown_node(self, two_node_host):
        nodes = [NodeResource(node=Node(5), memory_available=GiB)]
        request = VMResourceRequest(vcpus=1, memory=0, affinity=two_node_host.all_cpus())
        with pytest.raises(InvalidRequestError):
            plan(two_node_host, nodes, request)

    def test_wrong_request_type(self, two_node_host):
        with pytest.raises(InvalidRequestError):
            plan(two_node_host, [], {'vcpus': 1})

    def test_inputs_unchanged_and_deterministic(self, opteron_host):
        nodes = resources(opteron_host, 16 * GiB)
        before = list(nodes)
        request = VMResourceRequest(vcpus=6, memory=20 * GiB, affinity=opteron_host.all_cpus())
        first = plan(opteron_host, nodes, request)
        second = plan(opteron_host, nodes, request)
        assert first == second
        assert nodes == before


# =============================================================================
# Properties
# =============================================================================

class TestPlanProperties:
    """Validity and feasibility completeness over a grid of requests."""

    AFFINITIES = ["0-7", "0,1", "6-7", "1,3,5,7", "2-5", "0,7"]

    @pytest.mark.parametrize("affinity", AFFINITIES)
    @pytest.mark.parametrize("vcpus", [1, 2, 3, 5, 8])
    @pytest.mark.parametrize("memory_gib", [0, 1, 3, 6, 10, 11])
    def test_valid_and_complete(self, affinity, vcpus, memory_gib):
        host = make_symmetric_topology(numa=4, cores=8)
        memory_by_node = {0: GiB, 1: 2 * GiB, 2: 3 * GiB, 3: 4 * GiB}
        nodes = [NodeResource(node=Node(i), memory_available=m) for i, m in memory_by_node.items()]
        request = VMResourceRequest(vcpus=vcpus, memory=memory_gib * GiB,
                                    affinity=CPUSet.parse(affinity))

        cpuset = plan(host, nodes, request)

        any_feasible = any(
            is_feasible(host, memory_by_node, request, subset)
            for size in range(1, host.num_nodes + 1)
            for subset in combinations(host.nodes(), size)
        )
        if not any_feasible:
            assert cpuset is None
            return

        assert cpuset is not None
        assert len(cpuset) == request.vcpus
        assert cpuset <= (request.affinity & host.all_cpus())

    def test_smallest_node_count(self, opteron_host):
        """The plan never spans more nodes than the smallest feasible set."""
        nodes = resources(opteron_host, 16 * GiB)
        memory_by_node = {r.node.index: r.memory_available for r in nodes}
        for vcpus in range(1, 17):
            for memory_gib in (1, 17, 33, 49):
                request = VMResourceRequest(vcpus=vcpus, memory=memory_gib * GiB,
                                            affinity=opteron_host.all_cpus())
                cpuset = plan(opteron_host, nodes, request)
                smallest = min(
                    size for size in range(1, 9)
                    for subset in combinations(opteron_host.nodes(), size)
                    if is_feasible(opteron_host, memory_by_node, request, subset)
                )
                assert len(opteron_host.nodes_of_cpuset(cpuset)) <= smallest


# =============================================================================
# Locality against the NUMA-unaware placement
# =============================================================================

class TestPlanLocality:
    """Planned CPUs keep memory no farther away than spreading over the host."""

    def test_single_vcpu_goes_to_central_node(self):
        # Memory forces all three nodes of the chain; the middle one is closest to all
        host = make_symmetric_topology(numa=3, cores=3)
        nodes = [NodeResource(node=Node(i), memory_available=m * GiB)
                 for i, m in enumerate([4, 6, 6])]
        request = VMResourceRequest(vcpus=1, memory=16 * GiB, affinity=host.all_cpus())

        cpuset, chosen = plan_with_nodes(host, nodes, request)

        assert cpuset == CPUSet([1])
        assert chosen == (Node(0), Node(1), Node(2))
        aware = evaluate(host, [], Placement(vcpus=1, nodes=chosen, cpuset=cpuset))
        baseline = evaluate(host, [], baseline_placement(host, 1))
        assert aware.average == pytest.approx(52 / 3)
        assert aware.not_worse_than(baseline)

    def test_extra_vcpus_go_to_central_nodes_first(self):
        host = make_symmetric_topology(numa=3, cores=6)
        nodes = resources(host, 8 * GiB)
        request = VMResourceRequest(vcpus=4, memory=20 * GiB, affinity=host.all_cpus())
        cpuset, chosen = plan_with_nodes(host, nodes, request)
        assert chosen == (Node(0), Node(1), Node(2))
        assert cpuset == CPUSet([0, 2, 3, 4])

    @pytest.mark.parametrize("seed", range(40))
    def test_random_chains_not_worse_than_baseline(self, seed):
        rng = np.random.default_rng(seed)
        numa = int(rng.integers(1, 6))
        cores_per_numa = int(rng.integers(1, 5))
        host = make_symmetric_topology(numa=numa, cores=numa * cores_per_numa)
        memory = [int(m) * GiB for m in rng.integers(1, 9, size=numa)]
        nodes = [NodeResource(node=Node(i), memory_available=m) for i, m in enumerate(memory)]
        request = VMResourceRequest(
            vcpus=int(rng.integers(1, host.num_cpus + 1)),
            memory=int(rng.integers(0, sum(memory) // GiB + 1)) * GiB,
            affinity=host.all_cpus(),
        )

        result = plan_with_nodes(host, nodes, request)

        assert result is not None
        cpuset, chosen = result
        assert len(cpuset) == request.vcpus
        aware = evaluate(host, [], Placement(vcpus=request.vcpus, nodes=chosen, cpuset=cpuset))
        baseline = evaluate(host, [], baseline_placement(host, request.vcpus))
        assert aware.not_worse_than(baseline), f"{aware} vs baseline {baseline}"

    def test_falls_back_when_no_set_keeps_locality(self, caplog):
        # Only node 0 may run the VM, but its memory lives on all four nodes
        host = make_symmetric_topology(numa=4, cores=8)
        request = VMResourceRequest(vcpus=1, memory=40 * GiB, affinity=CPUSet([0, 1]))
        with caplog.at_level(logging.WARNING, logger="numa_placement"):
            result = plan_with_nodes(host, resources(host, 10 * GiB), request)
        assert result == (CPUSet([0]), tuple(host.nodes()))
        assert "No node set keeps the mean distance" in caplog.text
