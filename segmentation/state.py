from datetime import datetime
from typing import TypedDict, Optional, List, Dict, Any


class EvaluationContext(TypedDict, total=False):
    """Uniform attribute bag projected from a client, lead or quote."""
    zip: Optional[str]
    city: Optional[str]
    state: Optional[str]
    tags: List[str]
    services: List[str]                # free-text service/work history
    species: List[str]
    status: Optional[str]
    client_type: Optional[str]
    lifetime_value: float              # LTV, estimated deal value or quote total
    last_interaction: Optional[str]    # ISO-8601 updatedAt


class AdHocFilterState(TypedDict, total=False):
    """Transient filters typed into the dashboard sidebar."""
    location_text: str
    service_filter: str                # "any" | "removal" | "pruning" | "plant_health" ...
    species_text: str
    tag_filters: List[str]


class DashboardState(TypedDict, total=False):
    """State shape for one dashboard refresh pass."""
    kind: str                          # "client" | "lead" | "quote"
    records: List[Dict[str, Any]]      # raw records supplied by the host
    clients: List[Dict[str, Any]]      # client index for clientType lookups
    quotes: List[Dict[str, Any]]       # full quote list for board conversions
    segment: Optional[Any]             # CustomerSegment, raw dict or None
    filters: AdHocFilterState
    search: Optional[str]
    queue: str                         # "all" | "stalled" | "awaiting_response" | "high_value"
    now: Optional[datetime]
    queued: List[Dict[str, Any]]       # leads left after the queue filter
    queue_counts: Dict[str, int]
    filtered: List[Dict[str, Any]]
    board: List[Any]                   # BoardColumn entries
    errors: List[str]


def default_filters() -> AdHocFilterState:
    """An inactive filter state that matches every record."""
    return {
        "location_text": "",
        "service_filter": "any",
        "species_text": "",
        "tag_filters": [],
    }
