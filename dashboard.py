import os
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv
from langgraph.graph import StateGraph, START, END
from loguru import logger

from rules.segments import SegmentLike
from segmentation.state import AdHocFilterState, DashboardState, default_filters
from segmentation.nodes.queue import queue_node
from segmentation.nodes.filter import filter_node
from segmentation.nodes.board import board_node

# Load environment variables
load_dotenv()

LOG_FILE = os.getenv("LOG_FILE", "logs/segmentation.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

_file_sink_id: Optional[int] = None


def configure_logging(path: Optional[str] = None, level: Optional[str] = None) -> int:
    """Add the rotating file sink once and return its loguru handler id.

    refresh_dashboard calls this on every pass; repeated calls reuse the same sink.
    """
    global _file_sink_id
    if _file_sink_id is None:
        _file_sink_id = logger.add(
            path or LOG_FILE,
            rotation="1 day",
            retention="7 days",
            level=level or LOG_LEVEL,
        )
    return _file_sink_id


def build_workflow():
    """Build the dashboard refresh workflow."""
    workflow = StateGraph(DashboardState)

    # Add nodes
    workflow.add_node("classify_queue", queue_node)
    workflow.add_node("apply_filters", filter_node)
    workflow.add_node("build_board", board_node)

    # Add edges
    workflow.add_edge(START, "classify_queue")
    workflow.add_edge("classify_queue", "apply_filters")

    # Only the leads tab has a pipeline board
    def branch_decision(state: DashboardState) -> str:
        if state.get("kind") == "lead":
            return "build_board"
        return "done"

    workflow.add_conditional_edges(
        "apply_filters",
        branch_decision,
        {
            "build_board": "build_board",
            "done": END,
        }
    )
    workflow.add_edge("build_board", END)

    return workflow.compile()


app_graph = build_workflow()


def refresh_dashboard(
    kind: str,
    records: List[Mapping[str, Any]],
    segment: SegmentLike = None,
    filters: Optional[AdHocFilterState] = None,
    search: Optional[str] = None,
    queue: str = "all",
    clients: Optional[List[Mapping[str, Any]]] = None,
    quotes: Optional[List[Mapping[str, Any]]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Run one refresh pass for a dashboard tab.

    Args:
        kind: "client", "lead" or "quote"
        records: Records shown on the tab
        segment: Active saved segment, if any
        filters: Sidebar filter state
        search: Search box text
        queue: Lead queue (leads tab only)
        clients: Client list for clientType lookups
        quotes: Full quote list for board conversions
        now: Reference time for stalled follow-ups

    Returns:
        Final workflow state with filtered, queue_counts, board and errors
    """
    initial_state = {
        "kind": kind,
        "records": list(records or []),
        "clients": list(clients or []),
        "quotes": list(quotes or []),
        "segment": segment,
        "filters": filters or default_filters(),
        "search": search,
        "queue": queue,
        "now": now,
        "errors": [],
    }

    configure_logging()
    logger.info(f"Starting dashboard refresh for {kind}: {len(initial_state['records'])} record(s)")
    result = app_graph.invoke(initial_state)
    logger.info(f"Dashboard refresh completed for {kind}: {len(result.get('filtered', []))} shown")
    return result
