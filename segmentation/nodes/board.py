import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping

from loguru import logger

from rules.timeutil import to_number
from segmentation.state import DashboardState

BOARD_STATUSES = ("New", "Contacted", "Qualified", "Lost")
CONVERTED_QUOTE_STATUSES = {"Accepted", "Converted"}


@dataclass
class BoardColumn:
    """One status lane of the lead pipeline board."""
    status: str
    leads: List[Mapping[str, Any]] = field(default_factory=list)
    converted_count: int = 0
    conversion_rate: int = 0      # percent, 0..100
    total_value: float = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "leads": list(self.leads),
            "convertedCount": self.converted_count,
            "conversionRate": self.conversion_rate,
            "totalValue": self.total_value,
        }


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _estimated_value(lead: Mapping[str, Any]) -> float:
    value = to_number(lead.get("estimatedValue") or 0)
    return value if math.isfinite(value) else 0


def converted_lead_ids(quotes: Iterable[Mapping[str, Any]]) -> set:
    """Lead ids with at least one accepted or converted quote."""
    return {
        str(quote["leadId"])
        for quote in quotes or []
        if isinstance(quote, Mapping)
        and quote.get("leadId") is not None
        and quote.get("status") in CONVERTED_QUOTE_STATUSES
    }


def build_board(leads: Iterable[Mapping[str, Any]], quotes: Iterable[Mapping[str, Any]]) -> List[BoardColumn]:
    """
    Group filtered leads into the fixed status lanes and compute conversion metrics.

    Leads with a status outside BOARD_STATUSES do not appear on the board.
    """
    converted = converted_lead_ids(quotes)
    columns = {status: BoardColumn(status=status) for status in BOARD_STATUSES}

    for lead in leads or []:
        if not isinstance(lead, Mapping):
            continue
        status = lead.get("status")
        column = columns.get(status) if isinstance(status, str) else None
        if column is None:
            continue
        column.leads.append(lead)
        column.total_value += _estimated_value(lead)
        if lead.get("id") is not None and str(lead["id"]) in converted:
            column.converted_count += 1

    for column in columns.values():
        if column.leads:
            column.conversion_rate = _round_half_up(column.converted_count / len(column.leads) * 100)

    return [columns[status] for status in BOARD_STATUSES]


def board_node(state: DashboardState) -> DashboardState:
    """Aggregate the filtered leads into pipeline board columns."""
    leads = state.get("filtered", [])
    logger.info(f"Starting board aggregation for {len(leads)} lead(s)")

    try:
        state["board"] = build_board(leads, state.get("quotes", []))
        summary = ", ".join(f"{c.status}={len(c.leads)} ({c.conversion_rate}%)" for c in state["board"])
        logger.info(f"Board built: {summary}")
    except Exception as e:
        error_msg = f"Board aggregation failed: {str(e)}"
        logger.error(error_msg)
        state.setdefault("errors", []).append(error_msg)
        state["board"] = [BoardColumn(status=status) for status in BOARD_STATUSES]

    return state
