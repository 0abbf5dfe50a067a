"""Shared test utilities and fixtures for pytest."""

import pytest

from shapegraph import Graph, GraphTensor, Shape, ShapeTracker


@pytest.fixture
def graph() -> Graph:
    """Fresh empty Graph with default configuration."""
    return Graph()


@pytest.fixture
def activations(graph: Graph) -> GraphTensor:
    """Leaf tensor shaped like a transformer activation: (batch, seq, 8)."""
    return graph.new_tensor("x", Shape.of("batch", "seq", 8))


def static_sizes(view: GraphTensor | ShapeTracker) -> tuple[int | None, ...]:
    """Per-axis sizes as ints, None where a size is still symbolic.

    Args:
        view: Tensor or tracker to inspect.

    Returns:
        One entry per logical axis.
    """
    tracker = view.tracker if isinstance(view, GraphTensor) else view
    return tuple(size.to_int() for size in tracker.shape())


def kinds(graph: Graph) -> list[str]:
    """Op kinds of every node, in insertion order."""
    return [node.kind for node in graph.finalized()]
