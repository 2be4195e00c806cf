from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Union

from loguru import logger

from rules.criteria import SegmentCriterion, parse_criterion, matches
from segmentation.nodes.project import project, index_clients


@dataclass(frozen=True)
class CustomerSegment:
    """A saved audience: every criterion must match (logical AND)."""
    id: str
    name: str
    criteria: List[SegmentCriterion] = field(default_factory=list)
    description: Optional[str] = None
    audience_count: int = 0
    sample_tags: List[str] = field(default_factory=list)


@dataclass
class SegmentPreview:
    """Audience size and representative tags for a segment over a record list."""
    audience_count: int
    sample_tags: List[str] = field(default_factory=list)


SegmentLike = Union[CustomerSegment, Mapping[str, Any], None]


def parse_segment(raw: Union[CustomerSegment, Mapping[str, Any]]) -> CustomerSegment:
    """Build a CustomerSegment from the catalog's JSON shape."""
    if isinstance(raw, CustomerSegment):
        return raw
    if not isinstance(raw, Mapping):
        return CustomerSegment(id="", name="")

    criteria = raw.get("criteria") or []
    if not isinstance(criteria, (list, tuple)):
        criteria = []

    try:
        audience_count = int(raw.get("audienceCount") or 0)
    except (TypeError, ValueError):
        audience_count = 0

    return CustomerSegment(
        id=str(raw.get("id") or ""),
        name=str(raw.get("name") or ""),
        description=raw.get("description"),
        criteria=[parse_criterion(c) for c in criteria],
        audience_count=audience_count,
        sample_tags=list(raw.get("sampleTags") or []),
    )


def segment_matches(segment: SegmentLike, context: Mapping[str, Any]) -> bool:
    """True when no segment is selected or every criterion matches the context."""
    if segment is None:
        return True
    parsed = parse_segment(segment)
    return all(matches(criterion, context) for criterion in parsed.criteria)


def preview_segment(
    segment: SegmentLike,
    records: Iterable[Mapping[str, Any]],
    kind: str = "client",
    clients: Optional[Iterable[Mapping[str, Any]]] = None,
    sample_size: int = 3,
) -> SegmentPreview:
    """Count the records a segment selects and pick its most common tags."""
    clients_by_id = index_clients(clients)
    parsed = parse_segment(segment) if segment is not None else None

    count = 0
    tag_counts: Counter = Counter()
    for record in records or []:
        ctx = project(record, kind, clients_by_id)
        if segment_matches(parsed, ctx):
            count += 1
            tag_counts.update(ctx.get("tags", []))

    sample_tags = [tag for tag, _ in tag_counts.most_common(sample_size)]
    if not sample_tags and parsed is not None:
        sample_tags = list(parsed.sample_tags)

    logger.info(f"Segment preview for {parsed.id if parsed else 'all'}: {count} {kind} record(s)")
    return SegmentPreview(audience_count=count, sample_tags=sample_tags)
