"""Llama-style attention block with rotary position embeddings.

Builds the graph once with run-time batch and sequence sizes, then resolves
it for a concrete batch to show every intermediate shape.
"""

import argparse
import logging
import math

from shapegraph import Graph, GraphTensor, Shape, arange, causal_mask, concat, resolve
from shapegraph.utils.logging import setup_logging
from shapegraph.visualize import save_graph

logger = logging.getLogger(__name__)

HIDDEN = 32
NUM_HEADS = 4
HEAD_DIM = HIDDEN // NUM_HEADS
HALF_HEAD_DIM = HEAD_DIM // 2


def rotate_half(x: GraphTensor) -> GraphTensor:
    """Swap the two halves of the last axis, negating the second."""
    x1 = x[..., :HALF_HEAD_DIM]
    x2 = x[..., HALF_HEAD_DIM:]
    return concat([-x2, x1], axis=3).realize(x.shape)


def sincos(graph: Graph, inv_freq: GraphTensor, peer: GraphTensor, offset: int) -> tuple[GraphTensor, GraphTensor]:
    """Rotary tables of shape (seq, HEAD_DIM) sized by ``peer``'s sequence axis."""
    positions = arange(graph, peer, 2) + offset
    freqs = positions.expand_axis(1, 1).matmul(inv_freq.expand_axis(0, 1))
    emb = concat([freqs, freqs], axis=1)
    return emb.sin(), emb.cos()


def split_heads(x: GraphTensor, weight: GraphTensor) -> GraphTensor:
    """Project and reshape (batch, seq, HIDDEN) to (batch, heads, seq, HEAD_DIM)."""
    projected = x.matmul(weight.transpose(0, 1))
    return projected.reshape(Shape.of("batch", "seq", NUM_HEADS, HEAD_DIM)).permute(0, 2, 1, 3)


def attention(graph: Graph, x: GraphTensor, offset: int = 0) -> GraphTensor:
    """Causal self-attention with rotary embeddings over ``x``."""
    q_proj, k_proj, v_proj, o_proj = (graph.new_tensor(name, [HIDDEN, HIDDEN]) for name in ("q", "k", "v", "o"))
    inv_freq = graph.new_tensor("inv_freq", [HALF_HEAD_DIM])

    q = split_heads(x, q_proj)
    k = split_heads(x, k_proj)
    v = split_heads(x, v_proj)

    sin, cos = sincos(graph, inv_freq, q, offset)
    sin, cos = sin.expand(q), cos.expand(q)
    q = rotate_half(q) * sin + q * cos
    k = rotate_half(k) * sin + k * cos

    scores = q.matmul(k.transpose(2, 3)) * (1.0 / math.sqrt(HEAD_DIM))
    weights = (scores + causal_mask(graph, x, 1).expand(scores)).softmax(3)
    out = weights.matmul(v).permute(0, 2, 1, 3).reshape(Shape.of("batch", "seq", HIDDEN))
    return out.matmul(o_proj.transpose(0, 1))


def main() -> None:
    parser = argparse.ArgumentParser(description="Build and resolve a rotary attention shape graph")
    parser.add_argument("--batch", type=int, default=2)
    parser.add_argument("--seq", type=int, default=5)
    parser.add_argument("--dot", default=None, help="Write a Graphviz rendering to this path")
    args = parser.parse_args()

    setup_logging(level=logging.INFO)
    graph = Graph()
    x = graph.new_tensor("input", Shape.of("batch", "seq", HIDDEN))
    out = attention(graph, x)

    resolution = resolve(graph, {"batch": args.batch, "seq": args.seq})
    logger.info(f"{len(graph)} nodes, {len(graph.obligations)} obligations\n{graph.summary()}")
    logger.info(f"output {out.shape} resolves to {resolution.shape(out)}")
    if args.dot:
        save_graph(graph, args.dot, title="rotary attention")


if __name__ == "__main__":
    main()
