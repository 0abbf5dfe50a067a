"""Graphviz rendering of a shape graph.

Each node box shows the op, the declared Shape and the view. Boxes are
colored by op category and edges are labeled with the operand slots they feed.
"""

import logging
import os
import subprocess

from shapegraph.graph import Graph, Node

logger = logging.getLogger(__name__)

__all__ = ["graph_to_dot", "save_graph"]

CATEGORY_COLORS: dict[str, str] = {
    "leaf": "#FFB6C1",
    "view": "#FFEAA7",
    "compute": "#A8D8EA",
    "function": "#A8E6CF",
}

FALLBACK_COLOR = "#E8E8E8"

GRAPH_ATTRS = {"rankdir": "TB", "bgcolor": "white", "pad": "0.5", "labelloc": "t", "fontsize": "14"}
NODE_ATTRS = {
    "fontname": "Arial",
    "fontsize": "11",
    "style": "filled,rounded",
    "shape": "box",
    "color": "#333333",
    "penwidth": "1.5",
}
EDGE_ATTRS = {"fontname": "Arial", "fontsize": "9"}


def _quote(text: str) -> str:
    """Double-quoted DOT string literal for ``text``."""
    escaped = text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


def _attr_list(attrs: dict[str, str]) -> str:
    return ", ".join(f"{key}={_quote(value)}" for key, value in attrs.items())


def _node_line(node: Node) -> str:
    """DOT statement for one node, labeled ``[id] op / shape / view``."""
    label = "\n".join((f"[{node.id}] {node.op.describe()}", repr(node.shape), repr(node.tracker)))
    color = CATEGORY_COLORS.get(node.op.category, FALLBACK_COLOR)
    return f"    node_{node.id} [{_attr_list({'label': label, 'fillcolor': color})}];"


def graph_to_dot(graph: Graph, title: str = "shapegraph") -> str:
    """Render a Graph as a DOT script.

    Args:
        graph: Graph to render.
        title: Caption placed above the drawing.

    Returns:
        The DOT source.
    """
    lines = ["digraph ShapeGraph {"]
    lines.extend(f"    {key}={_quote(value)};" for key, value in {**GRAPH_ATTRS, "label": title}.items())
    lines.append(f"    node [{_attr_list(NODE_ATTRS)}];")
    lines.append(f"    edge [{_attr_list(EDGE_ATTRS)}];")
    lines.extend(_node_line(node) for node in graph.finalized())
    for source, target, data in sorted(graph.edges(data=True)):
        slots = ",".join(str(s) for s in data.get("slots", ()))
        lines.append(f"    node_{source} -> node_{target} [label={_quote(slots)}];")
    lines.append("}")
    return "\n".join(lines)


def save_graph(graph: Graph, output_file: str, title: str = "shapegraph", keep_dot: bool = False) -> str:
    """Write the DOT script next to ``output_file`` and render it to PNG.

    Rendering needs the Graphviz ``dot`` binary. When it is missing or fails,
    the DOT script is left in place for manual rendering.

    Args:
        graph: Graph to render.
        output_file: Target path; a ``.png`` or ``.dot`` suffix is stripped.
        title: Caption placed above the drawing.
        keep_dot: Keep the DOT script after a successful render.

    Returns:
        Path of the PNG, or of the DOT script if rendering did not happen.

    Raises:
        IOError: If the DOT script cannot be written.
    """
    stem, ext = os.path.splitext(output_file)
    if ext not in (".png", ".dot"):
        stem = output_file
    png_file, dot_file = f"{stem}.png", f"{stem}.dot"

    try:
        with open(dot_file, "w") as f:
            f.write(graph_to_dot(graph, title))
    except OSError as e:
        raise IOError(f"Cannot write {dot_file}: {e}") from e

    command = ["dot", "-Tpng", "-o", png_file, dot_file]
    try:
        subprocess.run(command, capture_output=True, text=True, check=True)
    except subprocess.CalledProcessError as e:
        logger.warning(f"Graphviz failed on {dot_file}: {e.stderr}\nRun manually: {' '.join(command)}")
        return dot_file
    except FileNotFoundError:
        logger.warning(f"Graphviz is not installed; DOT script left at {dot_file}")
        return dot_file

    logger.info(f"Graph rendered to {png_file}")
    if not keep_dot:
        os.remove(dot_file)
    return png_file
