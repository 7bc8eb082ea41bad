"""Workflow Graph Model

This module provides the immutable node/edge model of one workflow version,
edge selection for branch routing, and static validation of a graph.

Key Components:
- NodeConfig / EdgeDefinition: single node and edge definitions
- WorkflowGraph: node map + edge list, built once per workflow version
- WorkflowGraph.find_next_edge: handle-aware edge selection with lenient fallback
- validate_graph: advisory validation (start node, dangling edges, node types, cycles)

Design Principles:
- Nothing in the graph changes after construction
- Routing never fails: an unmatched handle degrades to a default edge
- Validation reports problems, the executor does not depend on it
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

import pydantic

from ..errors import GraphError

if TYPE_CHECKING:
    from ..nodes.registry import HandlerRegistry

logger = logging.getLogger(__name__)

START_NODE_TYPE = "start"

# Node types that legitimately have no outgoing edge
TERMINAL_NODE_TYPES = frozenset({"end", "human_handoff"})


@dataclass(frozen=True)
class NodeConfig:
    """Configuration for a single workflow node.

    Attributes:
        id: Unique node identifier
        type: Node type tag (selects the handler and its config schema)
        config: Node-specific configuration dictionary
        label: Optional display label
    """

    id: str
    type: str
    config: Mapping[str, Any] = field(default_factory=dict)
    label: Optional[str] = None

    def __post_init__(self):
        """Validate node configuration."""
        if not self.id:
            raise ValueError("node id cannot be empty")
        if not self.type:
            raise ValueError("node type cannot be empty")
        object.__setattr__(self, "config", MappingProxyType(dict(self.config or {})))


@dataclass(frozen=True)
class EdgeDefinition:
    """Definition of an edge connecting two nodes.

    Attributes:
        source: Source node ID
        target: Target node ID
        source_handle: Optional outgoing handle used for branch selection
        label: Optional display label
        id: Optional edge identifier
    """

    source: str
    target: str
    source_handle: Optional[str] = None
    label: Optional[str] = None
    id: Optional[str] = None

    def __post_init__(self):
        """Validate edge definition."""
        if not self.source:
            raise ValueError("source node cannot be empty")
        if not self.target:
            raise ValueError("target node cannot be empty")


class WorkflowGraph:
    """Immutable node/edge definition of one workflow version.

    Presentation data (node positions) is not part of the model.
    """

    def __init__(self, nodes: Iterable[NodeConfig], edges: Iterable[EdgeDefinition]):
        node_map: Dict[str, NodeConfig] = {}
        for node in nodes:
            if node.id in node_map:
                raise ValueError(f"duplicate node ID found: {node.id}")
            node_map[node.id] = node

        self._nodes: Mapping[str, NodeConfig] = MappingProxyType(node_map)
        self._edges: Tuple[EdgeDefinition, ...] = tuple(edges)

        outgoing: Dict[str, List[EdgeDefinition]] = defaultdict(list)
        for edge in self._edges:
            outgoing[edge.source].append(edge)
        self._outgoing: Dict[str, Tuple[EdgeDefinition, ...]] = {
            source: tuple(source_edges) for source, source_edges in outgoing.items()
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WorkflowGraph:
        """Build a graph from the editor's export format.

        Accepts ``{"nodes": [...], "edges": [...]}`` where nodes carry
        ``id`` or ``nodeId`` plus ``type`` and ``config``, and edges carry
        ``source``, ``target`` and optional ``sourceHandle``/``label``.
        """
        nodes = [
            NodeConfig(
                id=raw.get("nodeId") or raw.get("id", ""),
                type=raw.get("type", ""),
                config=raw.get("config") or {},
                label=raw.get("label"),
            )
            for raw in data.get("nodes", [])
        ]
        edges = [
            EdgeDefinition(
                source=raw.get("source", ""),
                target=raw.get("target", ""),
                source_handle=raw.get("sourceHandle", raw.get("source_handle")),
                label=raw.get("label"),
                id=raw.get("edgeId") or raw.get("id"),
            )
            for raw in data.get("edges", [])
        ]
        return cls(nodes, edges)

    @property
    def nodes(self) -> Mapping[str, NodeConfig]:
        return self._nodes

    @property
    def edges(self) -> Tuple[EdgeDefinition, ...]:
        return self._edges

    def get_node(self, node_id: str) -> Optional[NodeConfig]:
        return self._nodes.get(node_id)

    def outgoing_edges(self, node_id: str) -> Tuple[EdgeDefinition, ...]:
        return self._outgoing.get(node_id, ())

    def find_start_node(self) -> NodeConfig:
        """Return the start node.

        Raises:
            GraphError: If the graph has no node of type "start"
        """
        for node in self._nodes.values():
            if node.type == START_NODE_TYPE:
                return node
        raise GraphError("Workflow has no start node")

    def find_next_edge(
        self,
        node_id: str,
        source_handle: Optional[str] = None,
    ) -> Optional[EdgeDefinition]:
        """Find the edge to follow out of ``node_id``.

        Selection order: the edge whose source handle matches, else the first
        edge without a handle, else the first edge, else None.
        """
        edges = self.outgoing_edges(node_id)
        if not edges:
            return None

        if source_handle:
            for edge in edges:
                if edge.source_handle == source_handle:
                    return edge
            logger.debug(
                "No edge with handle '%s' from node '%s', falling back to default edge",
                source_handle, node_id,
            )

        for edge in edges:
            if not edge.source_handle:
                return edge
        return edges[0]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class GraphIssue:
    """Workflow validation issue.

    Attributes:
        code: Issue code (e.g. NO_START_NODE)
        message: Human-readable message
        severity: "error" or "warning"
        node_ids: List of affected node IDs
        context: Additional issue context
    """

    def __init__(
        self,
        code: str,
        message: str,
        severity: str,
        node_ids: List[str],
        context: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        self.severity = severity
        self.node_ids = node_ids
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "node_ids": self.node_ids,
            "context": self.context,
        }


class GraphValidationResult:
    """Workflow validation result.

    Attributes:
        valid: Whether the graph has no errors
        errors: List of error issues
        warnings: List of warning issues
    """

    def __init__(self, errors: List[GraphIssue], warnings: List[GraphIssue]):
        self.valid = len(errors) == 0
        self.errors = errors
        self.warnings = warnings

    def codes(self) -> Set[str]:
        return {issue.code for issue in [*self.errors, *self.warnings]}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


def validate_graph(
    graph: WorkflowGraph,
    registry: Optional[HandlerRegistry] = None,
) -> GraphValidationResult:
    """Validate a workflow graph.

    Checks:
    - Exactly one start node
    - Edge endpoints reference existing nodes
    - Node types have a handler (when a registry is given)
    - Node configs parse with their handler's schema (when a registry is given)
    - Edge handles the source node can select (when a registry is given)
    - Nodes unreachable from the start node
    - Non-terminal nodes without outgoing edges
    - Cycles (warning only: input nodes suspend and the executor bounds iterations)

    Args:
        graph: Workflow graph to validate
        registry: Handler registry used for type and config checks

    Returns:
        GraphValidationResult containing errors and warnings
    """
    errors: List[GraphIssue] = []
    warnings: List[GraphIssue] = []

    # 1. Start node
    start_ids = [node.id for node in graph.nodes.values() if node.type == START_NODE_TYPE]
    if not start_ids:
        errors.append(GraphIssue(
            code="NO_START_NODE",
            message="Workflow has no start node",
            severity="error",
            node_ids=[],
        ))
    elif len(start_ids) > 1:
        errors.append(GraphIssue(
            code="MULTIPLE_START_NODES",
            message=f"Workflow has {len(start_ids)} start nodes, expected exactly one",
            severity="error",
            node_ids=start_ids,
        ))

    # 2. Dangling edges
    for edge in graph.edges:
        missing = [nid for nid in (edge.source, edge.target) if nid not in graph.nodes]
        if missing:
            errors.append(GraphIssue(
                code="DANGLING_EDGE",
                message=f"Edge {edge.source} -> {edge.target} references missing node(s): {missing}",
                severity="error",
                node_ids=missing,
                context={"edge_id": edge.id, "source": edge.source, "target": edge.target},
            ))

    # 3. Node types and configs
    if registry is not None:
        for node in graph.nodes.values():
            if not registry.has_handler(node.type):
                errors.append(GraphIssue(
                    code="UNSUPPORTED_NODE_TYPE",
                    message=f"Node {node.id} has unsupported type '{node.type}'",
                    severity="error",
                    node_ids=[node.id],
                    context={"node_type": node.type},
                ))
                continue
            config_errors = registry.get(node.type).validate_config(node)
            if config_errors:
                errors.append(GraphIssue(
                    code="INVALID_NODE_CONFIG",
                    message=f"Node {node.id} has invalid configuration",
                    severity="error",
                    node_ids=[node.id],
                    context={"node_type": node.type, "validation_errors": config_errors},
                ))

    # 4. Edge handles the source node never selects
    if registry is not None:
        for edge in graph.edges:
            source = graph.get_node(edge.source)
            if edge.source_handle is None or source is None or not registry.has_handler(source.type):
                continue
            try:
                handles = registry.get(source.type).output_handles(source)
            except pydantic.ValidationError:
                continue
            if handles and edge.source_handle not in handles:
                warnings.append(GraphIssue(
                    code="UNKNOWN_SOURCE_HANDLE",
                    message=(
                        f"Edge {edge.source} -> {edge.target} uses handle '{edge.source_handle}', "
                        f"which {source.type} node '{source.id}' never selects"
                    ),
                    severity="warning",
                    node_ids=[source.id],
                    context={"edge_id": edge.id, "source_handle": edge.source_handle, "handles": list(handles)},
                ))

    # 5. Reachability from the start node
    if start_ids:
        reachable = _reachable_from(graph, start_ids[0])
        for node_id in graph.nodes:
            if node_id not in reachable:
                warnings.append(GraphIssue(
                    code="UNREACHABLE_NODE",
                    message=f"Node '{node_id}' cannot be reached from the start node",
                    severity="warning",
                    node_ids=[node_id],
                ))

    # 6. Dead ends
    for node in graph.nodes.values():
        if node.type not in TERMINAL_NODE_TYPES and not graph.outgoing_edges(node.id):
            warnings.append(GraphIssue(
                code="NO_OUTGOING_EDGE",
                message=f"Node '{node.id}' has no outgoing edge (the conversation ends there)",
                severity="warning",
                node_ids=[node.id],
            ))

    # 7. Cycles
    for cycle in detect_cycles(graph):
        message = f"Cycle detected: {' -> '.join(cycle)}"
        suspends = None
        if registry is not None:
            suspends = any(
                registry.has_handler(graph.nodes[nid].type)
                and registry.get(graph.nodes[nid].type).definition.suspends
                for nid in cycle[:-1]
            )
            if not suspends:
                message += " (no input node in the loop, it runs until the iteration limit)"
        warnings.append(GraphIssue(
            code="CYCLE",
            message=message,
            severity="warning",
            node_ids=cycle[:-1],
            context={"cycle_path": cycle, "suspends": suspends},
        ))

    return GraphValidationResult(errors=errors, warnings=warnings)


def _reachable_from(graph: WorkflowGraph, start_id: str) -> Set[str]:
    seen = {start_id}
    queue = deque([start_id])
    while queue:
        node_id = queue.popleft()
        for edge in graph.outgoing_edges(node_id):
            if edge.target not in seen and edge.target in graph.nodes:
                seen.add(edge.target)
                queue.append(edge.target)
    return seen


def detect_cycles(graph: WorkflowGraph) -> List[List[str]]:
    """Detect cycles using DFS.

    Returns:
        List of cycle paths (node IDs, last == first), deduplicated by node set
    """
    cycles: List[List[str]] = []
    visited: Set[str] = set()
    path: List[str] = []
    path_set: Set[str] = set()
    found: Set[Tuple[str, ...]] = set()

    def dfs(node_id: str):
        if node_id in path_set:
            cycle_path = path[path.index(node_id):] + [node_id]
            key = tuple(sorted(cycle_path[:-1]))
            if key not in found:
                found.add(key)
                cycles.append(cycle_path)
            return
        if node_id in visited:
            return

        visited.add(node_id)
        path.append(node_id)
        path_set.add(node_id)

        for edge in graph.outgoing_edges(node_id):
            if edge.target in graph.nodes:
                dfs(edge.target)

        path.pop()
        path_set.remove(node_id)

    for node_id in graph.nodes:
        if node_id not in visited:
            dfs(node_id)

    return cycles
