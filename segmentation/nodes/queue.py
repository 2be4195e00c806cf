from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Mapping, Optional

from loguru import logger

from rules.timeutil import parse_timestamp, to_number, utcnow
from segmentation.state import DashboardState

QUEUE_RULES = {
    "stalled_after_days": 7,
    "high_value_threshold": 10000,
    "awaiting_status": "Contacted",
}

QUEUE_KINDS = ("all", "stalled", "awaiting_response", "high_value")


def is_lead_stalled(lead: Mapping[str, Any], now: Optional[datetime] = None) -> bool:
    """
    Overdue follow-up, stale contact with nothing scheduled, or no activity at all.

    A follow-up date in the future always keeps a lead out of the stalled queue.
    """
    now = parse_timestamp(now) or utcnow()
    next_raw = lead.get("nextFollowupDate")
    last_raw = lead.get("lastContactDate")
    next_followup = parse_timestamp(next_raw)
    last_contact = parse_timestamp(last_raw)
    cutoff = now - timedelta(days=QUEUE_RULES["stalled_after_days"])

    if next_followup is not None and next_followup < now:
        return True
    if not next_raw and last_contact is not None and last_contact < cutoff:
        return True
    if not next_raw and not last_raw:
        return True
    return False


def is_awaiting_response(lead: Mapping[str, Any]) -> bool:
    return lead.get("status") == QUEUE_RULES["awaiting_status"] and not lead.get("nextFollowupDate")


def is_high_value(lead: Mapping[str, Any]) -> bool:
    return to_number(lead.get("estimatedValue") or 0) >= QUEUE_RULES["high_value_threshold"]


def classify(lead: Mapping[str, Any], now: Optional[datetime] = None) -> Dict[str, bool]:
    """Flag a lead for each fixed queue."""
    lead = lead if isinstance(lead, Mapping) else {}
    return {
        "stalled": is_lead_stalled(lead, now),
        "awaiting_response": is_awaiting_response(lead),
        "high_value": is_high_value(lead),
    }


def in_queue(lead: Mapping[str, Any], queue: str, now: Optional[datetime] = None) -> bool:
    lead = lead if isinstance(lead, Mapping) else {}
    if queue == "stalled":
        return is_lead_stalled(lead, now)
    if queue == "awaiting_response":
        return is_awaiting_response(lead)
    if queue == "high_value":
        return is_high_value(lead)
    return True


def queue_counts(leads: Iterable[Mapping[str, Any]], now: Optional[datetime] = None) -> Dict[str, int]:
    """Per-queue totals over the raw lead list (independent of segment and filters)."""
    now = parse_timestamp(now) or utcnow()
    counts = {kind: 0 for kind in QUEUE_KINDS}
    for lead in leads or []:
        counts["all"] += 1
        for kind, flagged in classify(lead, now).items():
            if flagged:
                counts[kind] += 1
    return counts


def queue_node(state: DashboardState) -> DashboardState:
    """Apply the selected lead queue ahead of the filter pipeline."""
    records = state.get("records", [])

    if state.get("kind") != "lead":
        state["queued"] = records
        return state

    queue = state.get("queue") or "all"
    now = parse_timestamp(state.get("now")) or utcnow()
    logger.info(f"Starting queue pass '{queue}' for {len(records)} lead(s)")

    try:
        state["queue_counts"] = queue_counts(records, now)
        state["queued"] = [lead for lead in records if in_queue(lead, queue, now)]
        logger.info(f"Queue '{queue}' kept {len(state['queued'])} lead(s): {state['queue_counts']}")
    except Exception as e:
        error_msg = f"Queue pass failed: {str(e)}"
        logger.error(error_msg)
        state.setdefault("errors", []).append(error_msg)
        state["queued"] = records

    return state
