from typing import Any, Iterable, List, Mapping, Optional

from loguru import logger

from rules.segments import SegmentLike, parse_segment, segment_matches
from segmentation.nodes.project import PROJECTORS, index_clients, project
from segmentation.state import AdHocFilterState, DashboardState, EvaluationContext

ANY_SERVICE = "any"


def _lower(value: Any) -> str:
    return str(value).lower() if value else ""


def _strings(values: Any) -> List[str]:
    if not isinstance(values, (list, tuple)):
        return []
    return [str(v) for v in values if v is not None]


def location_matches(text: Any, ctx: EvaluationContext) -> bool:
    """Quick location box: zip prefix, or city/state substring."""
    text = str(text)
    needle = text.lower()
    zip_code = ctx.get("zip")
    return bool(
        (zip_code and str(zip_code).startswith(text))
        or (ctx.get("city") and needle in _lower(ctx.get("city")))
        or (ctx.get("state") and needle in _lower(ctx.get("state")))
    )


def adhoc_matches(filters: Optional[AdHocFilterState], context: EvaluationContext) -> bool:
    """AND of every active sidebar filter. Inactive filters never exclude."""
    filters = filters or {}
    context = context or {}

    location = filters.get("location_text") or ""
    if location and not location_matches(location, context):
        return False

    species_text = str(filters.get("species_text") or "").lower()
    if species_text and not any(species_text in s.lower() for s in _strings(context.get("species"))):
        return False

    service = str(filters.get("service_filter") or ANY_SERVICE)
    if service != ANY_SERVICE:
        wanted = service.replace("_", " ").lower()
        if not any(wanted in s.lower() for s in _strings(context.get("services"))):
            return False

    tag_filters = set(_strings(filters.get("tag_filters")))
    if tag_filters and not tag_filters.intersection(_strings(context.get("tags"))):
        return False

    return True


def _search_fields(record: Mapping[str, Any], kind: str) -> List[Any]:
    if kind == "client":
        return [record.get("companyName"), record.get("firstName"), record.get("lastName"),
                record.get("primaryEmail"), record.get("primaryPhone")]
    if kind == "lead":
        customer = record.get("customer")
        name = customer.get("name") if isinstance(customer, Mapping) else None
        return [name, record.get("source"), record.get("status")]
    if kind == "quote":
        return [record.get("quoteNumber"), record.get("customerName"), record.get("status")]
    return []


def search_matches(record: Mapping[str, Any], kind: str, term: Optional[str]) -> bool:
    """Free-text search over the display fields of one record."""
    if not term:
        return True
    if not isinstance(record, Mapping):
        return False
    needle = str(term).lower()
    return any(needle in value.lower() for value in _search_fields(record, kind) if isinstance(value, str))


def filter_records(
    records: Iterable[Mapping[str, Any]],
    kind: str,
    segment: SegmentLike = None,
    filters: Optional[AdHocFilterState] = None,
    search: Optional[str] = None,
    clients: Optional[Iterable[Mapping[str, Any]]] = None,
) -> List[Mapping[str, Any]]:
    """
    Apply the active segment, the sidebar filters and the search box to a record list.

    Args:
        records: Raw clients, leads or quotes as supplied by the host
        kind: "client", "lead" or "quote"
        segment: Active saved segment (None when no segment is selected)
        filters: Sidebar filter state
        search: Free-text search term
        clients: Client list used to resolve clientType for leads and quotes

    Returns:
        The records that pass every stage, in their original order
    """
    records = list(records or [])
    if kind not in PROJECTORS:
        logger.warning(f"Unknown entity kind '{kind}', returning {len(records)} record(s) unfiltered")
        return records

    clients_by_id = index_clients(clients)
    parsed = parse_segment(segment) if segment is not None else None

    base = []
    for record in records:
        ctx = project(record, kind, clients_by_id)
        if segment_matches(parsed, ctx) and adhoc_matches(filters, ctx):
            base.append(record)

    result = [record for record in base if search_matches(record, kind, search)]

    logger.info(
        f"Filtered {kind} records: {len(records)} -> {len(base)} (segment/filters) -> {len(result)} (search)"
        + (f" [segment={parsed.id}]" if parsed else "")
    )
    return result


def filter_node(state: DashboardState) -> DashboardState:
    """Run the filter pipeline for the current dashboard tab."""
    kind = state.get("kind", "client")
    source = state.get("queued", state.get("records", []))
    logger.info(f"Starting filter pass for {kind}: {len(source)} record(s)")

    try:
        state["filtered"] = filter_records(
            source,
            kind,
            segment=state.get("segment"),
            filters=state.get("filters"),
            search=state.get("search"),
            clients=state.get("clients"),
        )
    except Exception as e:
        error_msg = f"Filter pass failed: {str(e)}"
        logger.error(error_msg)
        state.setdefault("errors", []).append(error_msg)
        state["filtered"] = []

    return state
