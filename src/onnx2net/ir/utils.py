from __future__ import annotations

import heapq
from collections.abc import Sequence

from onnx2net.errors import ErrorCode, ParserError
from onnx2net.ir.graph import Node


def build_producer_map(nodes: Sequence[Node]) -> dict[str, int]:
    """
    Map tensor name -> producing node index. Graph inputs and initializers have
    no producer. Raises ParserError on duplicate producers.
    """
    producer: dict[str, int] = {}
    for idx, node in enumerate(nodes):
        for out in node.outputs:
            if not out:
                continue
            if out in producer:
                raise ParserError(
                    f"Multiple producers for tensor '{out}' at node {idx} and {producer[out]}",
                    code=ErrorCode.INVALID_GRAPH,
                )
            producer[out] = idx
    return producer


def toposort(nodes: Sequence[Node]) -> list[int]:
    """
    Return a dependency-respecting order of node indices.

    Among nodes that are ready at the same time the lowest original index goes
    first, so independent nodes keep their relative order. Raises ParserError
    on cycles; no partial order is returned.
    """
    producer_map = build_producer_map(nodes)

    indegree: list[int] = [0] * len(nodes)
    adj: dict[int, set[int]] = {i: set() for i in range(len(nodes))}

    # Build edges: u -> v if v consumes a tensor produced by u
    for v_idx, node in enumerate(nodes):
        for inp in node.inputs:
            u_idx = producer_map.get(inp) if inp else None
            if u_idx is None:
                continue
            if u_idx == v_idx:
                raise ParserError(
                    f"Node {v_idx} consumes its own output '{inp}'",
                    code=ErrorCode.INVALID_GRAPH,
                )
            if v_idx not in adj[u_idx]:
                adj[u_idx].add(v_idx)
                indegree[v_idx] += 1

    # Kahn's algorithm with a min-heap for stable ordering
    ready: list[int] = [i for i, d in enumerate(indegree) if d == 0]
    heapq.heapify(ready)
    order: list[int] = []
    while ready:
        u = heapq.heappop(ready)
        order.append(u)
        for v in sorted(adj[u]):
            indegree[v] -= 1
            if indegree[v] == 0:
                heapq.heappush(ready, v)

    if len(order) != len(nodes):
        raise ParserError("Cycle detected in graph", code=ErrorCode.INVALID_GRAPH)
    return order
