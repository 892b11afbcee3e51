"""
Pipeline Graph
==============

Typed, streaming directed-acyclic graph of processing nodes.

Nodes live in an arena keyed by id; edges are kept in a separate adjacency
structure keyed by node ids, each optionally guarded by a predicate over the
upstream value. A graph is assembled with GraphBuilder, validated once, and
then executed any number of times. Each run is an Execution: a lazy, finite,
non-restartable sequence of reported outputs.

Stream outputs (TEXT_STREAM, TTS_STREAM) are async iterators handed to their
single consumer; the producer advances only when the consumer pulls.
"""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Deque,
    Dict,
    Iterable,
    List,
    Optional,
    Set,
    Tuple,
    Union,
)
from uuid import uuid4

import structlog

from ..core.errors import ConfigurationError, StageError, TransportError

logger = structlog.get_logger(__name__)


# =============================================================================
# ENUMS
# =============================================================================


class DataKind(str, Enum):
    """Kinds of values carried along edges."""

    TEXT = "text"
    JSON = "json"
    TEXT_STREAM = "text_stream"
    TTS_STREAM = "tts_stream"
    AUDIO = "audio"
    CHAT_MESSAGES = "chat_messages"
    ANY = "any"

    @property
    def is_stream(self) -> bool:
        return self in (DataKind.TEXT_STREAM, DataKind.TTS_STREAM)


class ExecutionState(str, Enum):
    """Execution lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CLOSED = "closed"


def kinds_compatible(produced: DataKind, accepted: DataKind) -> bool:
    return produced == accepted or DataKind.ANY in (produced, accepted)


# =============================================================================
# NODES AND EDGES
# =============================================================================


@dataclass
class ExecutionContext:
    """Per-run context handed to every node."""

    correlation_id: str
    graph_id: str
    execution_id: str = field(default_factory=lambda: str(uuid4()))
    metadata: Dict[str, Any] = field(default_factory=dict)


class Node(ABC):
    """
    Base class for pipeline nodes.

    ``input_kinds`` holds one kind (applied to every predecessor) or one kind
    per predecessor, matched by edge-declaration order. ``process`` may be a
    coroutine or an async generator; stream-kind outputs must be async
    iterables.
    """

    input_kinds: Tuple[DataKind, ...] = (DataKind.JSON,)
    output_kind: DataKind = DataKind.JSON

    def __init__(self, id: str, report_to_client: bool = False):
        if not id:
            raise ConfigurationError("Node id must not be empty")
        self.id = id
        self.report_to_client = report_to_client

    @property
    def positional_inputs(self) -> bool:
        return len(self.input_kinds) > 1

    def accepts(self, kind: DataKind, position: int) -> bool:
        """Whether a predecessor producing ``kind`` may feed input ``position``."""
        if self.positional_inputs:
            if position >= len(self.input_kinds):
                return False
            return kinds_compatible(kind, self.input_kinds[position])
        return kinds_compatible(kind, self.input_kinds[0])

    @abstractmethod
    def process(self, inputs: List[Any], context: ExecutionContext) -> Any:
        """Process predecessor outputs (or ``[input]`` for the start node)."""
        pass

    async def destroy(self) -> None:
        """Release resources created at build time."""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id!r})"


Condition = Callable[[Any], Union[bool, Awaitable[bool]]]


@dataclass
class Edge:
    """Directed edge between two node ids, optionally guarded."""

    source: str
    target: str
    condition: Optional[Condition] = None
    index: int = 0

    async def passes(self, value: Any) -> bool:
        if self.condition is None:
            return True
        result = self.condition(value)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)


# =============================================================================
# STREAMS
# =============================================================================


class NodeStream:
    """
    Async iterator over a node's stream output.

    Failures while pulling are raised as StageError for the producing node.
    The underlying iterator is closed on exhaustion, failure or ``aclose``.
    """

    def __init__(
        self,
        node_id: str,
        kind: DataKind,
        source: AsyncIterator[Any],
        on_release: Optional[Callable[["NodeStream"], None]] = None,
    ):
        self.node_id = node_id
        self.kind = kind
        self._source = source
        self._on_release = on_release
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "NodeStream":
        return self

    async def __anext__(self) -> Any:
        if self._closed:
            raise StopAsyncIteration
        try:
            return await self._source.__anext__()
        except StopAsyncIteration:
            await self.aclose()
            raise
        except (StageError, TransportError):
            await self.aclose()
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self.aclose()
            raise StageError(f"{self.node_id}: {e}", node_id=self.node_id) from e

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self._source, "aclose", None)
        try:
            if aclose is not None:
                await aclose()
        finally:
            if self._on_release is not None:
                self._on_release(self)


async def _iterate(values: Iterable[Any]) -> AsyncIterator[Any]:
    for value in values:
        yield value


def _as_async_iterator(value: Any) -> AsyncIterator[Any]:
    if hasattr(value, "__anext__"):
        return value
    if hasattr(value, "__aiter__"):
        return value.__aiter__()
    if isinstance(value, (str, bytes)):
        return _iterate([value])
    if isinstance(value, Iterable):
        return _iterate(value)
    raise TypeError(f"expected an async iterable stream, got {type(value).__name__}")


# =============================================================================
# EXECUTION
# =============================================================================


class Execution:
    """
    One run of a graph against one input.

    ``next()`` returns ``(value, done)``. Outputs of nodes flagged
    ``report_to_client`` come first, as they are produced; end-node outputs
    follow in end-node declaration order. Only end nodes that fired produce
    an output. The execution closes itself when exhausted or on failure, so
    a stream output must be consumed before the next output is pulled.
    """

    def __init__(self, graph: "PipelineGraph", input: Any, correlation_id: str):
        self.graph = graph
        self.input = input
        self.context = ExecutionContext(correlation_id=correlation_id, graph_id=graph.id)
        self.state = ExecutionState.PENDING

        self._order = deque(graph.topological_order)
        self._outputs: Dict[str, Any] = {}
        self._resolved: Set[str] = set()
        self._active_edges: Set[int] = set()
        self._reported: Deque[Any] = deque()
        self._terminal_index = 0

        self._streams: List[NodeStream] = []
        self._acquired = 0
        self._released = 0

        self._log = logger.bind(
            graph_id=graph.id,
            correlation_id=correlation_id,
            execution_id=self.context.execution_id,
        )

    @property
    def correlation_id(self) -> str:
        return self.context.correlation_id

    @property
    def acquired_count(self) -> int:
        return self._acquired

    @property
    def released_count(self) -> int:
        return self._released

    @property
    def closed(self) -> bool:
        return self.state == ExecutionState.CLOSED

    # -------------------------------------------------------------------------
    # Iteration
    # -------------------------------------------------------------------------

    async def next(self) -> Tuple[Any, bool]:
        if self.closed:
            return None, True

        if self.state == ExecutionState.PENDING:
            self.state = ExecutionState.RUNNING
            self._log.debug("execution_started")

        try:
            while True:
                if self._reported:
                    return self._reported.popleft(), False

                terminals = self.graph.end_nodes
                if self._terminal_index < len(terminals):
                    terminal = terminals[self._terminal_index]
                    if terminal in self._resolved:
                        self._terminal_index += 1
                        if terminal in self._outputs:
                            return self._outputs[terminal], False
                        continue

                if not await self._step():
                    break
        except BaseException:
            self.state = ExecutionState.FAILED
            await self.close()
            raise

        self.state = ExecutionState.COMPLETED
        self._log.debug("execution_completed")
        await self.close()
        return None, True

    def __aiter__(self) -> "Execution":
        return self

    async def __anext__(self) -> Any:
        value, done = await self.next()
        if done:
            raise StopAsyncIteration
        return value

    async def __aenter__(self) -> "Execution":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _step(self) -> bool:
        """Resolve the next node in topological order. False when none remain."""
        if not self._order:
            return False

        node_id = self._order.popleft()
        node = self.graph.get_node(node_id)
        incoming = self.graph.incoming_edges(node_id)

        if node_id == self.graph.start_node:
            inputs = [self.input]
        else:
            active = [edge for edge in incoming if edge.index in self._active_edges]
            if not active or (node.positional_inputs and len(active) != len(incoming)):
                self._resolved.add(node_id)
                self._log.debug("node_skipped", node_id=node_id)
                return True
            inputs = [self._outputs[edge.source] for edge in active]

        output = await self._run_node(node, inputs)
        self._outputs[node_id] = output
        self._resolved.add(node_id)

        for edge in self.graph.outgoing_edges(node_id):
            try:
                passed = await edge.passes(output)
            except Exception as e:
                raise StageError(
                    f"Condition on edge {edge.source} -> {edge.target} failed: {e}",
                    node_id=node_id,
                ) from e
            if passed:
                self._active_edges.add(edge.index)

        if node.report_to_client and node_id not in self.graph.end_node_set:
            self._reported.append(output)

        return True

    async def _run_node(self, node: Node, inputs: List[Any]) -> Any:
        self._log.debug("node_processing", node_id=node.id)
        try:
            result = node.process(inputs, self.context)
            if inspect.isawaitable(result):
                result = await result
            if node.output_kind.is_stream:
                result = self._track(
                    NodeStream(node.id, node.output_kind, _as_async_iterator(result), self._release)
                )
        except (StageError, TransportError):
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._log.warning("node_failed", node_id=node.id, error=str(e))
            raise StageError(f"{node.id}: {e}", node_id=node.id) from e
        return result

    # -------------------------------------------------------------------------
    # Resources
    # -------------------------------------------------------------------------

    def _track(self, stream: NodeStream) -> NodeStream:
        self._streams.append(stream)
        self._acquired += 1
        return stream

    def _release(self, stream: NodeStream) -> None:
        self._released += 1

    async def close(self) -> None:
        """Release every open stream of this run. Idempotent."""
        if self.closed:
            return

        for stream in reversed(self._streams):
            try:
                await stream.aclose()
            except Exception as e:
                self._log.warning("stream_close_failed", node_id=stream.node_id, error=str(e))

        self._streams = []
        self._order.clear()
        self._reported.clear()
        self.state = ExecutionState.CLOSED
        self._log.debug("execution_closed", acquired=self._acquired, released=self._released)


# =============================================================================
# GRAPH
# =============================================================================


class PipelineGraph:
    """A validated, immutable node graph. Build with GraphBuilder."""

    def __init__(
        self,
        id: str,
        nodes: Dict[str, Node],
        edges: List[Edge],
        start_node: str,
        end_nodes: List[str],
        topological_order: List[str],
    ):
        self.id = id
        self._nodes = nodes
        self._edges = edges
        self.start_node = start_node
        self.end_nodes = list(end_nodes)
        self.end_node_set = frozenset(end_nodes)
        self.topological_order = list(topological_order)
        self._destroyed = False

        self._outgoing: Dict[str, List[Edge]] = {node_id: [] for node_id in nodes}
        self._incoming: Dict[str, List[Edge]] = {node_id: [] for node_id in nodes}
        for edge in edges:
            self._outgoing[edge.source].append(edge)
            self._incoming[edge.target].append(edge)

    @property
    def node_ids(self) -> List[str]:
        return list(self._nodes)

    @property
    def edges(self) -> List[Edge]:
        return list(self._edges)

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def get_node(self, node_id: str) -> Node:
        return self._nodes[node_id]

    def outgoing_edges(self, node_id: str) -> List[Edge]:
        return self._outgoing[node_id]

    def incoming_edges(self, node_id: str) -> List[Edge]:
        return self._incoming[node_id]

    def execute(self, input: Any, correlation_id: Optional[str] = None) -> Execution:
        """Start a run. Nothing is processed until the execution is pulled."""
        if self._destroyed:
            raise ConfigurationError(f"Graph {self.id} has been destroyed")
        return Execution(self, input, correlation_id or str(uuid4()))

    async def destroy(self) -> None:
        """Release node resources. The graph cannot be executed afterwards."""
        if self._destroyed:
            return
        self._destroyed = True
        for node in self._nodes.values():
            try:
                await node.destroy()
            except Exception as e:
                logger.warning("node_destroy_failed", graph_id=self.id, node_id=node.id, error=str(e))
        logger.info("graph_destroyed", graph_id=self.id)

    def to_dot(self) -> str:
        """Render the topology as Graphviz DOT."""
        lines = [f'digraph "{self.id}" {{', "  rankdir=LR;"]
        for node_id, node in self._nodes.items():
            shape = "doublecircle" if node_id in self.end_node_set else "box"
            if node_id == self.start_node:
                shape = "circle"
            label = f"{node_id}\\n{node.output_kind.value}"
            lines.append(f'  "{node_id}" [shape={shape}, label="{label}"];')
        for edge in self._edges:
            style = ' [style=dashed, label="if"]' if edge.condition is not None else ""
            lines.append(f'  "{edge.source}" -> "{edge.target}"{style};')
        lines.append("}")
        return "\n".join(lines)


class GraphBuilder:
    """
    Assembles and validates a PipelineGraph.

    Example:
        builder = GraphBuilder("echo")
        builder.add_node(first).add_node(second)
        builder.add_edge(first, second, condition=lambda v: v > 50)
        builder.set_start_node(first).set_end_node(second)
        graph = builder.build()
    """

    def __init__(self, id: str):
        self.id = id
        self._nodes: Dict[str, Node] = {}
        self._edges: List[Edge] = []
        self._start: Optional[str] = None
        self._ends: List[str] = []

    @staticmethod
    def _node_id(node: Union[Node, str]) -> str:
        return node.id if isinstance(node, Node) else node

    def add_node(self, node: Node) -> "GraphBuilder":
        if node.id in self._nodes:
            raise ConfigurationError(f"Duplicate node id: {node.id}")
        self._nodes[node.id] = node
        return self

    def add_edge(
        self,
        source: Union[Node, str],
        target: Union[Node, str],
        condition: Optional[Condition] = None,
    ) -> "GraphBuilder":
        self._edges.append(
            Edge(
                source=self._node_id(source),
                target=self._node_id(target),
                condition=condition,
                index=len(self._edges),
            )
        )
        return self

    def set_start_node(self, node: Union[Node, str]) -> "GraphBuilder":
        self._start = self._node_id(node)
        return self

    def set_end_node(self, node: Union[Node, str]) -> "GraphBuilder":
        node_id = self._node_id(node)
        if node_id not in self._ends:
            self._ends.append(node_id)
        return self

    def build(self) -> PipelineGraph:
        """Validate the topology and return the graph."""
        self._validate_endpoints()
        outgoing, incoming = self._validate_edges()
        order = self._topological_order(outgoing, incoming)
        self._validate_reachability(outgoing)

        for node_id in self._nodes:
            if node_id not in self._ends and not outgoing[node_id]:
                raise ConfigurationError(f"Node {node_id} is not an end node and has no outgoing edge")

        self._validate_kinds(outgoing, incoming)

        graph = PipelineGraph(
            id=self.id,
            nodes=dict(self._nodes),
            edges=list(self._edges),
            start_node=self._start,
            end_nodes=self._ends,
            topological_order=order,
        )
        logger.info(
            "graph_built",
            graph_id=self.id,
            nodes=len(self._nodes),
            edges=len(self._edges),
            start_node=self._start,
            end_nodes=self._ends,
        )
        return graph

    def _validate_endpoints(self) -> None:
        if self._start is None:
            raise ConfigurationError(f"Graph {self.id} has no start node")
        if self._start not in self._nodes:
            raise ConfigurationError(f"Start node {self._start} is not part of graph {self.id}")
        if not self._ends:
            raise ConfigurationError(f"Graph {self.id} has no end node")
        for node_id in self._ends:
            if node_id not in self._nodes:
                raise ConfigurationError(f"End node {node_id} is not part of graph {self.id}")

    def _validate_edges(self) -> Tuple[Dict[str, List[Edge]], Dict[str, List[Edge]]]:
        outgoing: Dict[str, List[Edge]] = {node_id: [] for node_id in self._nodes}
        incoming: Dict[str, List[Edge]] = {node_id: [] for node_id in self._nodes}
        seen: Set[Tuple[str, str]] = set()

        for edge in self._edges:
            for node_id in (edge.source, edge.target):
                if node_id not in self._nodes:
                    raise ConfigurationError(f"Edge {edge.source} -> {edge.target} references unknown node {node_id}")
            if (edge.source, edge.target) in seen:
                raise ConfigurationError(f"Duplicate edge {edge.source} -> {edge.target}")
            seen.add((edge.source, edge.target))
            outgoing[edge.source].append(edge)
            incoming[edge.target].append(edge)

        if incoming[self._start]:
            raise ConfigurationError(f"Start node {self._start} must not have incoming edges")

        return outgoing, incoming

    def _topological_order(
        self,
        outgoing: Dict[str, List[Edge]],
        incoming: Dict[str, List[Edge]],
    ) -> List[str]:
        # Kahn's algorithm; ties follow node and edge declaration order.
        in_degree = {node_id: len(edges) for node_id, edges in incoming.items()}
        ready = deque(node_id for node_id in self._nodes if in_degree[node_id] == 0)
        order: List[str] = []

        while ready:
            node_id = ready.popleft()
            order.append(node_id)
            for edge in outgoing[node_id]:
                in_degree[edge.target] -= 1
                if in_degree[edge.target] == 0:
                    ready.append(edge.target)

        if len(order) != len(self._nodes):
            cyclic = sorted(node_id for node_id, degree in in_degree.items() if degree > 0)
            raise ConfigurationError(f"Graph {self.id} contains a cycle through {', '.join(cyclic)}")

        return order

    def _validate_reachability(self, outgoing: Dict[str, List[Edge]]) -> None:
        reachable = {self._start}
        pending = deque([self._start])
        while pending:
            for edge in outgoing[pending.popleft()]:
                if edge.target not in reachable:
                    reachable.add(edge.target)
                    pending.append(edge.target)

        unreachable = [node_id for node_id in self._nodes if node_id not in reachable]
        if unreachable:
            raise ConfigurationError(f"Unreachable nodes in graph {self.id}: {', '.join(unreachable)}")

    def _validate_kinds(
        self,
        outgoing: Dict[str, List[Edge]],
        incoming: Dict[str, List[Edge]],
    ) -> None:
        for node_id, node in self._nodes.items():
            edges = incoming[node_id]
            if node.positional_inputs and len(edges) != len(node.input_kinds):
                raise ConfigurationError(
                    f"Node {node_id} expects {len(node.input_kinds)} inputs, has {len(edges)} incoming edges"
                )
            for position, edge in enumerate(edges):
                produced = self._nodes[edge.source].output_kind
                if not node.accepts(produced, position):
                    raise ConfigurationError(
                        f"Edge {edge.source} -> {node_id} connects incompatible kinds: "
                        f"{produced.value} into {node.__class__.__name__}"
                    )

            if node.output_kind.is_stream:
                consumers = len(outgoing[node_id]) + (1 if node_id in self._ends or node.report_to_client else 0)
                if consumers > 1:
                    raise ConfigurationError(f"Stream output of {node_id} must have a single consumer")
