"""
Visualization export utilities for conversation flows.

This module provides functions to export a flow in formats external viewers
understand:
- GraphViz (DOT format) for tools like Graphviz, Gephi, yEd
- JSON (node-link format) for tools like D3.js, Cytoscape.js
- networkx.MultiDiGraph for ad-hoc analysis

Exports are read-only views of a snapshot; they are not a storage format.
"""

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import networkx as nx

from .models import Block, BlockType, Connection, FlowSnapshot

if TYPE_CHECKING:
    from .graph import GraphStore

logger = logging.getLogger(__name__)


class VisualizationError(Exception):
    """Raised when visualization export fails."""

    pass


_BLOCK_COLORS = {
    BlockType.WELCOME: "palegreen",
    BlockType.MESSAGE: "lightblue",
    BlockType.QUESTION: "lightyellow",
    BlockType.BUTTONS: "plum",
    BlockType.FIELD: "lightgray",
    BlockType.GOODBYE: "lightcoral",
}


def _as_snapshot(flow: "FlowSnapshot | GraphStore") -> FlowSnapshot:
    if isinstance(flow, FlowSnapshot):
        return flow
    return flow.snapshot


def to_networkx(flow: "FlowSnapshot | GraphStore") -> nx.MultiDiGraph:
    """
    Build a networkx view of a flow.

    Nodes are block ids with `type`, `position` and `data` attributes. Each
    connection becomes one edge keyed by its connection id, with the source
    and target handle names as attributes.

    Args:
        flow: Snapshot or GraphStore to convert

    Returns:
        MultiDiGraph mirroring the flow
    """
    snapshot = _as_snapshot(flow)
    graph = nx.MultiDiGraph()
    for block in snapshot.blocks:
        graph.add_node(
            block.id,
            type=block.type.value,
            position=(block.position.x, block.position.y),
            data=block.data.to_dict(),
        )
    for connection in snapshot.connections:
        graph.add_edge(
            connection.source.block_id,
            connection.target.block_id,
            key=connection.id,
            source_handle=connection.source.handle_id,
            target_handle=connection.target.handle_id,
        )
    return graph


def export_graphviz(
    flow: "FlowSnapshot | GraphStore",
    output_path: Path | str | None = None,
) -> str:
    """
    Export a flow as GraphViz DOT format.

    Args:
        flow: Snapshot or GraphStore to export
        output_path: Optional path to write DOT file. If None, returns string.

    Returns:
        DOT format string

    Raises:
        VisualizationError: If export fails
    """
    try:
        snapshot = _as_snapshot(flow)
        graph = to_networkx(snapshot)
        blocks = {block.id: block for block in snapshot.blocks}

        lines: list[str] = []
        lines.append("digraph {")
        lines.append("    rankdir=LR;")
        lines.append("    node [shape=box, style=filled];")

        for block_id in graph.nodes:
            block = blocks[block_id]
            label = _format_block_label(block)
            color = _BLOCK_COLORS[block.type]
            lines.append(f'    "{_escape(block_id)}" [label="{label}", fillcolor="{color}"];')

        for source_id, target_id, attrs in graph.edges(data=True):
            edge = f'"{_escape(source_id)}" -> "{_escape(target_id)}"'
            edge_label = _format_edge_label(blocks[source_id], attrs["source_handle"])
            if edge_label:
                lines.append(f'    {edge} [label="{edge_label}"];')
            else:
                lines.append(f"    {edge};")

        lines.append("}")
        dot_content = "\n".join(lines)

        if output_path:
            path = Path(output_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(dot_content)
            logger.info(f"Exported GraphViz format to {output_path}")

        return dot_content

    except Exception as e:
        logger.error(f"Failed to export GraphViz: {e}", exc_info=True)
        raise VisualizationError(f"GraphViz export failed: {e}") from e


def export_json(
    flow: "FlowSnapshot | GraphStore",
    output_path: Path | str | None = None,
) -> dict[str, Any] | str:
    """
    Export a flow as node-link JSON (D3.js/Cytoscape compatible).

    Args:
        flow: Snapshot or GraphStore to export
        output_path: Optional path to write JSON file. If None, returns dict.

    Returns:
        Dictionary with JSON structure (or JSON string if output_path provided)

    Raises:
        VisualizationError: If export fails
    """
    try:
        snapshot = _as_snapshot(flow)
        data = {
            "nodes": [_node_entry(block) for block in snapshot.blocks],
            "links": [_link_entry(connection) for connection in snapshot.connections],
            "graph_info": {
                "block_count": len(snapshot.blocks),
                "connection_count": len(snapshot.connections),
            },
        }

        if output_path:
            path = Path(output_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            json_content = json.dumps(data, indent=2)
            path.write_text(json_content)
            logger.info(f"Exported JSON format to {output_path}")
            return json_content

        return data

    except Exception as e:
        logger.error(f"Failed to export JSON: {e}", exc_info=True)
        raise VisualizationError(f"JSON export failed: {e}") from e


def _node_entry(block: Block) -> dict[str, Any]:
    return {
        "id": block.id,
        "type": block.type.value,
        "position": {"x": block.position.x, "y": block.position.y},
        "data": block.data.to_dict(),
    }


def _link_entry(connection: Connection) -> dict[str, Any]:
    return {
        "id": connection.id,
        "source": connection.source.block_id,
        "target": connection.target.block_id,
        "source_handle": connection.source.handle_id,
        "target_handle": connection.target.handle_id,
    }


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _format_block_label(block: Block) -> str:
    """Format block label for DOT output."""
    label = f"{block.type.value}\\n{_escape(block.id)}"
    if block.type is BlockType.FIELD:
        label += f"\\n{{{_escape(block.data.variable_name)}}}"
    else:
        message = block.data.message
        if len(message) > 30:
            message = message[:27] + "..."
        label += f"\\n{_escape(message)}"
    return label


def _format_edge_label(source: Block, handle_id: str) -> str:
    """Buttons edges are labelled with the option text."""
    if source.type is not BlockType.BUTTONS:
        return ""
    option = source.data.get_option(handle_id)
    return _escape(option.text) if option else ""
