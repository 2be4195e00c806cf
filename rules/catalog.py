import os
import json
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger

from rules.segments import CustomerSegment, parse_segment
from rules.timeutil import utcnow

# Load saved segment configuration
SEGMENTS_CONFIG_PATH = os.getenv("SEGMENTS_JSON", "./infra/segments.json")


def default_segment_definitions() -> List[Dict[str, Any]]:
    """Built-in segments, with relative dates resolved against the current time."""
    now = utcnow()
    return [
        {
            "id": "seg-high-value",
            "name": "High Value Customers",
            "description": "Customers with lifetime value over $5,000",
            "criteria": [
                {"id": "c1", "field": "lifetimeValue", "operator": "gte", "value": 5000,
                 "label": "Lifetime value >= $5,000"},
            ],
            "audienceCount": 0,
            "sampleTags": ["premium", "repeat"],
        },
        {
            "id": "seg-residential",
            "name": "Residential Clients",
            "description": "All residential property owners",
            "criteria": [
                {"id": "c2", "field": "clientType", "operator": "equals", "value": "residential",
                 "label": "Client type is Residential"},
            ],
            "audienceCount": 0,
            "sampleTags": ["homeowner"],
        },
        {
            "id": "seg-commercial",
            "name": "Commercial Clients",
            "description": "All commercial and property manager clients",
            "criteria": [
                {"id": "c3", "field": "clientType", "operator": "in",
                 "value": ["commercial", "property_manager"],
                 "label": "Client type is Commercial or Property Manager"},
            ],
            "audienceCount": 0,
            "sampleTags": ["business", "contract"],
        },
        {
            "id": "seg-active",
            "name": "Active Customers",
            "description": "Customers who have had a job in the last 6 months",
            "criteria": [
                {"id": "c4", "field": "lastServiceDate", "operator": "after",
                 "value": (now - timedelta(days=180)).isoformat(),
                 "label": "Last service within 6 months"},
            ],
            "audienceCount": 0,
            "sampleTags": ["active", "engaged"],
        },
        {
            "id": "seg-dormant",
            "name": "Dormant Customers",
            "description": "Customers with no activity in over a year",
            "criteria": [
                {"id": "c5", "field": "lastServiceDate", "operator": "before",
                 "value": (now - timedelta(days=365)).isoformat(),
                 "label": "No service in 1+ year"},
            ],
            "audienceCount": 0,
            "sampleTags": ["win-back", "reactivation"],
        },
    ]


def load_segment_catalog(path: Optional[str] = None) -> List[CustomerSegment]:
    """Load saved segments from a JSON file, falling back to the built-in catalog."""
    path = path or SEGMENTS_CONFIG_PATH
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.warning(f"Segment catalog not found at {path}, using defaults")
        data = default_segment_definitions()
    except json.JSONDecodeError:
        logger.error(f"Invalid JSON in segment catalog {path}")
        data = default_segment_definitions()

    # accept both a bare list and the API envelope {"success": true, "data": [...]}
    if isinstance(data, dict):
        data = data.get("data", [])
    if not isinstance(data, list):
        logger.error(f"Segment catalog {path} is not a list, using defaults")
        data = default_segment_definitions()

    segments = [parse_segment(raw) for raw in data if isinstance(raw, dict)]
    logger.info(f"Loaded {len(segments)} saved segment(s)")
    return segments


def find_segment(catalog: Iterable[CustomerSegment], segment_id: Optional[str]) -> Optional[CustomerSegment]:
    if not segment_id:
        return None
    return next((segment for segment in catalog if segment.id == segment_id), None)
