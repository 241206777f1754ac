"""
Command-line interface for exploring NUMA placements on preset hosts.
"""

import argparse
import json
import sys
from typing import List, Optional

from tabulate import tabulate

from .config import configure_logging, get_settings
from .cpuset import CPUSet
from .errors import NumaPlacementError
from .evaluator import Placement, baseline_placement, evaluate
from .fleet import GiB, simulate_fleet
from .planner import plan_with_nodes
from .presets import TOPOLOGY_PRESETS, create_topology, list_presets
from .resources import VMResourceRequest


def format_size(num_bytes: Optional[int]) -> str:
    """Render a byte count in binary units, matching the GiB used by --memory."""
    if num_bytes is None:
        return "N/A"
    if abs(num_bytes) < 1024:
        return f"{num_bytes} B"

    size = num_bytes / 1024.0
    for unit in ['KiB', 'MiB', 'GiB']:
        if abs(size) < 1024.0:
            return f"{size:.1f} {unit}"
        size /= 1024.0
    return f"{size:.1f} TiB"


class PlacementCLI:
    """CLI for topology presets, planning and fleet simulation."""

    def list_presets(self, args):
        """List the available host presets."""
        rows = []
        for name in list_presets():
            topology = create_topology(name)
            rows.append([name, topology.num_nodes, topology.num_cpus,
                         TOPOLOGY_PRESETS[name]['description']])
        print(tabulate(rows, headers=['Preset', 'Nodes', 'CPUs', 'Description'], tablefmt='simple'))

    def show(self, args):
        """Show a preset's distance matrix and CPU layout."""
        topology = create_topology(args.preset)
        if args.json:
            print(json.dumps(topology.to_dict()))
        else:
            print(topology.summary())

    def plan(self, args):
        """Plan a single VM and compare it with the baseline placement."""
        topology = create_topology(args.preset)
        affinity = CPUSet.parse(args.affinity) if args.affinity else topology.all_cpus()
        request = VMResourceRequest(vcpus=args.vcpus, memory=int(args.memory * GiB), affinity=affinity)
        nodes = [topology.resource(n, memory=int(args.node_memory * GiB)) for n in topology.nodes()]

        result = plan_with_nodes(topology, nodes, request)
        if result is None:
            print("No NUMA plan: the VM does not fit with locality guarantees")
            return 1

        cpuset, chosen = result
        placement = Placement(vcpus=args.vcpus, nodes=chosen, cpuset=cpuset)
        aware = evaluate(topology, [], placement)
        baseline = evaluate(topology, [], baseline_placement(topology, args.vcpus))
        print(f"CPUs:  {cpuset}")
        print(f"Nodes: {', '.join(str(n) for n in placement.nodes)}")
        print()
        rows = [
            ['NUMA-aware', aware.worst, f"{aware.average:.3f}", f"{aware.bandwidth:.4f}", aware.best],
            ['Baseline', baseline.worst, f"{baseline.average:.3f}", f"{baseline.bandwidth:.4f}", baseline.best],
        ]
        print(tabulate(rows, headers=['Placement', 'Worst', 'Average', 'Bandwidth', 'Best'], tablefmt='grid'))
        return 0

    def simulate(self, args):
        """Start a fleet of identical VMs and report aggregate costs."""
        topology = create_topology(args.preset)
        report = simulate_fleet(
            topology,
            vm_count=args.vms,
            memory_per_vm=int(args.memory * GiB),
            node_memory=int(args.node_memory * GiB),
            vcpus=args.vcpus,
        )
        if args.json:
            print(json.dumps(report.to_dict()))
            return 0

        rows = []
        for r in report.records:
            rows.append([
                r.index,
                r.cpuset.format(),
                ','.join(str(n.index) for n in r.nodes),
                format_size(sum(r.memory_debited.values())),
                f"{r.aware_cost.average:.2f}",
                f"{r.baseline_cost.average:.2f}",
                f"{r.aware_cost.bandwidth:.4f}",
                f"{r.baseline_cost.bandwidth:.4f}",
            ])
        print(tabulate(rows, headers=['VM', 'CPUs', 'Nodes', 'Memory', 'Avg', 'Avg (base)',
                                      'Bandwidth', 'Bandwidth (base)'], tablefmt='simple'))
        print()
        print(f"NUMA-aware total: {report.aware_total}")
        print(f"Baseline total:   {report.baseline_total}")
        return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='numa-placement',
        description='NUMA-aware VM placement planner'
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    subparsers.add_parser('presets', help='List host presets')

    show_parser = subparsers.add_parser('show', help='Show a host preset')
    show_parser.add_argument('preset', help='Preset name')
    show_parser.add_argument('--json', action='store_true', help='Print the topology as JSON')

    plan_parser = subparsers.add_parser('plan', help='Plan one VM')
    plan_parser.add_argument('preset', help='Preset name')
    plan_parser.add_argument('--vcpus', type=int, required=True, help='Number of vCPUs')
    plan_parser.add_argument('--memory', type=float, default=1.0, help='VM memory in GiB')
    plan_parser.add_argument('--affinity', help='Allowed CPUs, e.g. "0-7,^3" (default: all)')
    plan_parser.add_argument('--node-memory', type=float, default=16.0,
                             help='Free memory per node in GiB')

    sim_parser = subparsers.add_parser('simulate', help='Simulate a fleet of VMs')
    sim_parser.add_argument('preset', help='Preset name')
    sim_parser.add_argument('--vms', type=int, default=10, help='Number of VMs')
    sim_parser.add_argument('--vcpus', type=int, help='vCPUs per VM (default: max(2, cpus / vms))')
    sim_parser.add_argument('--memory', type=float, default=1.0, help='Memory per VM in GiB')
    sim_parser.add_argument('--node-memory', type=float, default=16.0,
                            help='Free memory per node in GiB')
    sim_parser.add_argument('--json', action='store_true', help='Print the report as JSON')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    settings = get_settings()
    if args.verbose:
        settings = settings.model_copy(update={'log_level': 'DEBUG'})
    configure_logging(settings)

    cli = PlacementCLI()
    command_map = {
        'presets': cli.list_presets,
        'show': cli.show,
        'plan': cli.plan,
        'simulate': cli.simulate,
    }

    try:
        return command_map[args.command](args) or 0
    except (NumaPlacementError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
