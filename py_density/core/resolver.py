"""
Reference resolution for density trees.

``resolve`` turns a parsed tree into a ``ResolvedGraph``: every node gets a
structural id (its pre-order index in the graph's node arena), ``Pipeline``
steps are threaded into a single chain, every ``Exported`` name is
registered, every ``Imported`` name is checked, and import cycles are
rejected. The resulting graph is immutable and may be shared by any number
of evaluation sessions.
"""

from dataclasses import dataclass, field, fields, replace
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

import structlog

from ..config import settings
from ..utils.recursion import ensure_recursion_limit
from .errors import CyclicImportError, DuplicateExportError, UnresolvedImportError
from .positions import PositionSet
from .schema import (
    DensityNode,
    Exported,
    Imported,
    Literal,
    Operand,
    Pipeline,
    PositionsRef,
    iter_children,
    map_children,
    parse,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class ExportEntry:
    """A named export: the ``Exported`` node and whether it is single-instance."""
    name: str
    node: Exported
    single_instance: bool = False
    path: Optional[str] = None


class ExportRegistry:
    """
    Name → export mapping.

    A registry is built per resolved graph; a pre-populated registry can also
    be handed to ``resolve`` to widen the import scope to a whole pack of
    documents.
    """

    def __init__(self, entries: Iterable[ExportEntry] = ()):
        self._entries: Dict[str, ExportEntry] = {}
        for entry in entries:
            self.add(entry)

    def add(self, entry: ExportEntry) -> ExportEntry:
        if entry.name in self._entries:
            raise DuplicateExportError(entry.name, entry.path)
        self._entries[entry.name] = entry
        return entry

    def register(self, node: Exported, path: Optional[str] = None) -> ExportEntry:
        """Register an ``Exported`` node under its name."""
        return self.add(ExportEntry(node.name, node, bool(node.single_instance), path))

    def lookup(self, name: str, path: Optional[str] = None) -> ExportEntry:
        try:
            return self._entries[name]
        except KeyError:
            raise UnresolvedImportError(name, path) from None

    def names(self) -> List[str]:
        return sorted(self._entries)

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[ExportEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    @classmethod
    def from_documents(cls, documents: Iterable[Union[dict, DensityNode]]) -> "ExportRegistry":
        """Collect the named exports of several documents into one pack-wide registry."""
        registry = cls()
        for index, document in enumerate(documents):
            root = document if isinstance(document, DensityNode) else parse(document)
            for path, node in walk(root, f"/{index}"):
                if isinstance(node, Exported) and node.name:
                    registry.register(node, path)
        logger.info("Built pack export registry", exports=len(registry))
        return registry


@dataclass
class ResolvedGraph:
    """A validated density graph ready for evaluation."""

    root: DensityNode
    nodes: List[DensityNode]
    registry: ExportRegistry
    positions: Dict[int, PositionSet] = field(default_factory=dict)
    paths: List[str] = field(default_factory=list)

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    def path_of(self, node: DensityNode) -> Optional[str]:
        if 0 <= node.uid < len(self.paths):
            return self.paths[node.uid]
        return None


def walk(node: DensityNode, path: str = "") -> Iterator[Tuple[str, DensityNode]]:
    """Pre-order traversal yielding ``(path, node)``."""
    yield path or "/", node
    for rel, child in iter_children(node):
        yield from walk(child, f"{path}/{rel}")


def _slot(node: DensityNode, key: str, kind: str) -> Optional[str]:
    for f in fields(node):
        if f.metadata.get("key") == key and f.metadata.get("kind") == kind:
            return f.name
    return None


def feed(step: Operand, value: Operand) -> Operand:
    """
    Make ``value`` the input of a pipeline step.

    The value fills the step's ``Input`` slot, or is prepended to its
    ``Inputs``; steps with neither slot ignore it.
    """
    if isinstance(step, Literal):
        return step
    single = _slot(step, "Input", "operand")
    if single is not None:
        return replace(step, **{single: value})
    many = _slot(step, "Inputs", "operands")
    if many is not None:
        return replace(step, **{many: (value,) + tuple(getattr(step, many))})
    return step


def thread_pipeline(node: Pipeline) -> Optional[Operand]:
    """Fold a pipeline's steps over its input into one nested chain."""
    value = node.input
    for step in node.steps:
        value = feed(step, value if value is not None else Literal(0.0))
    return value


class _Stamper:
    """Builds the node arena, assigning pre-order uids."""

    def __init__(self, registry: ExportRegistry):
        self.nodes: List[DensityNode] = []
        self.paths: List[str] = []
        self.registry = registry
        self.imports: List[Tuple[str, str]] = []
        self.positions: Dict[int, PositionSet] = {}
        # Set while copying pack exports in; the same definition may be reached twice.
        self.pulling = False

    def stamp(self, node: DensityNode, path: str) -> DensityNode:
        uid = len(self.nodes)
        self.nodes.append(node)
        self.paths.append(path or "/")

        if isinstance(node, Pipeline) and node.steps:
            node = replace(node, steps=(), input=thread_pipeline(node))

        node = map_children(node, lambda child, rel: self.stamp(child, f"{path}/{rel}"))
        node = replace(node, uid=uid)
        self.nodes[uid] = node

        for f in fields(node):
            value = getattr(node, f.name)
            if isinstance(value, PositionsRef) and value.points is not None:
                self.positions[uid] = PositionSet(value.points)
        if isinstance(node, Exported) and node.name:
            self._register(node, path or "/")
        if isinstance(node, Imported):
            self.imports.append((node.name or "", path or "/"))
        return node

    def _register(self, node: Exported, path: str) -> None:
        if self.pulling and node.name in self.registry and self.registry.lookup(node.name).node == node:
            return
        self.registry.register(node, path)


def _imports_of(node: DensityNode) -> Set[str]:
    return {n.name or "" for _, n in walk(node) if isinstance(n, Imported)}


def _find_cycle(registry: ExportRegistry) -> Optional[List[str]]:
    """Depth-first search over export → imported-name edges."""
    edges = {entry.name: sorted(_imports_of(entry.node)) for entry in registry}
    done: Set[str] = set()
    stack: List[str] = []
    on_stack: Set[str] = set()

    def visit(name: str) -> Optional[List[str]]:
        stack.append(name)
        on_stack.add(name)
        for target in edges.get(name, ()):
            if target in on_stack:
                return stack[stack.index(target):] + [target]
            if target not in done:
                cycle = visit(target)
                if cycle:
                    return cycle
        stack.pop()
        on_stack.discard(name)
        done.add(name)
        return None

    for name in sorted(edges):
        if name not in done:
            cycle = visit(name)
            if cycle:
                return cycle
    return None


def resolve(root: DensityNode, registry: Optional[ExportRegistry] = None) -> ResolvedGraph:
    """
    Resolve a parsed tree into an evaluable graph.

    Args:
        root: Parsed document root
        registry: Optional pack-wide exports visible to this document's imports

    Returns:
        ResolvedGraph with uids, threaded pipelines and a per-graph registry

    Raises:
        DuplicateExportError: if an export name is defined twice, or the
            document redefines a pack export differently
        UnresolvedImportError: if an ``Imported`` name has no export
        CyclicImportError: if exports import each other in a cycle
    """
    ensure_recursion_limit(settings.max_parse_depth * 2)

    if registry is not None:
        for path, node in walk(root):
            if isinstance(node, Exported) and node.name in registry:
                if registry.lookup(node.name).node != node:
                    raise DuplicateExportError(node.name, path)

    local = ExportRegistry()
    stamper = _Stamper(local)
    stamped_root = stamper.stamp(root, "")

    # Copy in the pack exports this document needs, transitively.
    stamper.pulling = True
    pending = [name for name, _ in stamper.imports]
    while pending:
        name = pending.pop()
        if name in local or registry is None or name not in registry:
            continue
        entry = registry.lookup(name)
        before = len(stamper.imports)
        stamper.stamp(entry.node, entry.path or f"/exports/{name}")
        pending.extend(n for n, _ in stamper.imports[before:])

    for name, path in stamper.imports:
        local.lookup(name, path)

    cycle = _find_cycle(local)
    if cycle:
        raise CyclicImportError(cycle)

    graph = ResolvedGraph(
        root=stamped_root,
        nodes=stamper.nodes,
        registry=local,
        positions=stamper.positions,
        paths=stamper.paths,
    )
    logger.info(
        "Resolved density graph",
        nodes=graph.node_count,
        exports=local.names(),
        imports=len(stamper.imports),
    )
    return graph
