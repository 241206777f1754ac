"""Immutable set of physical CPU ids."""

from typing import FrozenSet, Iterable, Iterator, List

from .errors import ConfigurationError


class CPUSet:
    """Immutable set of non-negative CPU ids.

    Supports the usual set algebra (``|``, ``&``, ``-``), ``len``, ``in`` and
    iteration in ascending id order. Two CPU sets are equal when they contain
    the same ids.
    """

    __slots__ = ("_cpus",)

    def __init__(self, cpus: Iterable[int] = ()):
        frozen = frozenset(int(c) for c in cpus)
        negative = [c for c in frozen if c < 0]
        if negative:
            raise ConfigurationError(f"CPU ids must be non-negative, got {sorted(negative)}")
        object.__setattr__(self, "_cpus", frozen)

    def __setattr__(self, name, value):
        raise AttributeError("CPUSet is immutable")

    # Constructors

    @classmethod
    def empty(cls) -> "CPUSet":
        return cls()

    @classmethod
    def singleton(cls, cpu: int) -> "CPUSet":
        return cls((cpu,))

    @classmethod
    def all(cls, count: int) -> "CPUSet":
        """CPUs ``0 .. count-1``."""
        if count < 0:
            raise ConfigurationError(f"CPU count must be non-negative, got {count}")
        return cls(range(count))

    @classmethod
    def parse(cls, spec: str) -> "CPUSet":
        """Parse a Linux cpu-list string such as ``"0-3,8,^2"``.

        Each comma separated element is a CPU id, an inclusive range, or a
        caret followed by an id or range to exclude.
        """
        include = set()
        exclude = set()
        for rule in spec.split(','):
            rule = rule.strip()
            if not rule:
                continue
            target = include
            if rule[0] == '^':
                target = exclude
                rule = rule[1:].strip()
            parts = rule.split('-', 1)
            try:
                bounds = [int(p.strip()) for p in parts]
            except ValueError:
                raise ConfigurationError(f"Invalid cpu-list expression {rule!r}") from None
            if len(bounds) == 2:
                start, end = bounds
                if start > end:
                    raise ConfigurationError(f"Invalid range expression {rule!r}")
                target.update(range(start, end + 1))
            else:
                target.add(bounds[0])
        return cls(include - exclude)

    # Set algebra

    def union(self, other: "CPUSet") -> "CPUSet":
        return CPUSet(self._cpus | other._cpus)

    def intersection(self, other: "CPUSet") -> "CPUSet":
        return CPUSet(self._cpus & other._cpus)

    def difference(self, other: "CPUSet") -> "CPUSet":
        return CPUSet(self._cpus - other._cpus)

    def issubset(self, other: "CPUSet") -> bool:
        return self._cpus <= other._cpus

    __or__ = union
    __and__ = intersection
    __sub__ = difference
    __le__ = issubset

    # Queries

    @property
    def cardinality(self) -> int:
        return len(self._cpus)

    def is_empty(self) -> bool:
        return not self._cpus

    def elements(self) -> List[int]:
        """CPU ids in ascending order."""
        return sorted(self._cpus)

    def as_frozenset(self) -> FrozenSet[int]:
        return self._cpus

    def __contains__(self, cpu: object) -> bool:
        return cpu in self._cpus

    def __iter__(self) -> Iterator[int]:
        return iter(self.elements())

    def __len__(self) -> int:
        return len(self._cpus)

    def __bool__(self) -> bool:
        return bool(self._cpus)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CPUSet):
            return NotImplemented
        return self._cpus == other._cpus

    def __hash__(self) -> int:
        return hash(self._cpus)

    # Rendering

    def format(self, allow_ranges: bool = True) -> str:
        """Render as a cpu-list string, collapsing consecutive ids into ranges."""
        if not allow_ranges:
            return ",".join(str(c) for c in self.elements())

        ranges: List[List[int]] = []
        previous = None
        for cpu in self.elements():
            if previous is None or previous != cpu - 1:
                ranges.append([])
            ranges[-1].append(cpu)
            previous = cpu

        parts = []
        for entry in ranges:
            if len(entry) == 1:
                parts.append(str(entry[0]))
            else:
                parts.append(f"{entry[0]}-{entry[-1]}")
        return ",".join(parts)

    def __str__(self) -> str:
        return self.format()

    def __repr__(self) -> str:
        return f"CPUSet({self.format()!r})"
