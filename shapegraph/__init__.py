"""Symbolic shape tracking and an append-only lazy tensor graph."""

from shapegraph.config import GraphConfig
from shapegraph.dimension import ConstDim, Constant, Dimension, Dynamic, PrevDim, Shape, infer_reshape_dims
from shapegraph.errors import (
    FunctionPayloadError,
    InvalidRange,
    ShapeGraphError,
    ShapeMismatch,
    UnboundSymbol,
    UnresolvedDynamicMismatch,
)
from shapegraph.expression import Expression
from shapegraph.functions import arange, causal_mask
from shapegraph.graph import Graph, Node, Obligation
from shapegraph.resolve import Resolution, resolve
from shapegraph.slicing import RangeSpec
from shapegraph.tensor import GraphTensor, concat
from shapegraph.tracker import ShapeTracker, TensorView

__all__ = [
    "ConstDim",
    "Constant",
    "Dimension",
    "Dynamic",
    "Expression",
    "FunctionPayloadError",
    "Graph",
    "GraphConfig",
    "GraphTensor",
    "InvalidRange",
    "Node",
    "Obligation",
    "PrevDim",
    "RangeSpec",
    "Resolution",
    "ShapeGraphError",
    "ShapeMismatch",
    "Shape",
    "ShapeTracker",
    "TensorView",
    "UnboundSymbol",
    "UnresolvedDynamicMismatch",
    "arange",
    "causal_mask",
    "concat",
    "infer_reshape_dims",
    "resolve",
]
