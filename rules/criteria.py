import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from loguru import logger

from rules.timeutil import parse_timestamp, to_number

FIELD_KINDS = (
    "zip", "city", "state", "tag", "service", "species",
    "status", "clientType", "lifetimeValue", "lastInteraction",
)

# criterion field -> context key holding the list it is tested against
MEMBERSHIP_FIELDS = {
    "tag": "tags",
    "service": "services",
    "species": "species",
}


@dataclass(frozen=True)
class ZipRule:
    prefix: Optional[str]


@dataclass(frozen=True)
class CityRule:
    fragment: Optional[str]


@dataclass(frozen=True)
class StateRule:
    name: Optional[str]


@dataclass(frozen=True)
class MembershipRule:
    field: str
    one_of: Tuple[str, ...]


@dataclass(frozen=True)
class StatusRule:
    one_of: Tuple[str, ...]


@dataclass(frozen=True)
class ClientTypeRule:
    one_of: Tuple[str, ...]


@dataclass(frozen=True)
class LifetimeValueRange:
    minimum: float
    maximum: float


@dataclass(frozen=True)
class LifetimeValueMinimum:
    minimum: float


@dataclass(frozen=True)
class LastInteractionRule:
    since: Optional[datetime]


@dataclass(frozen=True)
class UnknownRule:
    field: str


Rule = Union[
    ZipRule, CityRule, StateRule, MembershipRule, StatusRule, ClientTypeRule,
    LifetimeValueRange, LifetimeValueMinimum, LastInteractionRule, UnknownRule,
]


@dataclass(frozen=True)
class SegmentCriterion:
    """One persisted, read-only rule of a saved segment."""
    id: str
    field: str
    rule: Rule
    label: Optional[str] = None
    operator: Optional[str] = None


def _text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (list, tuple, dict)):
        return None
    return str(value)


def _choices(value: Any) -> Tuple[str, ...]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(str(v) for v in value if v is not None)
    if value is None or isinstance(value, dict):
        return ()
    return (str(value),)


def _bound(value: Any, default: float) -> float:
    return default if value is None else to_number(value)


def _lifetime_rule(value: Any) -> Rule:
    if isinstance(value, Mapping):
        return LifetimeValueRange(
            minimum=_bound(value.get("min"), -math.inf),
            maximum=_bound(value.get("max"), math.inf),
        )
    return LifetimeValueMinimum(minimum=to_number(value))


def _build_rule(field: str, value: Any) -> Rule:
    if field == "zip":
        return ZipRule(prefix=_text(value))
    if field == "city":
        return CityRule(fragment=_text(value))
    if field == "state":
        return StateRule(name=_text(value))
    if field in MEMBERSHIP_FIELDS:
        return MembershipRule(field=field, one_of=_choices(value))
    if field == "status":
        return StatusRule(one_of=_choices(value))
    if field == "clientType":
        return ClientTypeRule(one_of=_choices(value))
    if field == "lifetimeValue":
        return _lifetime_rule(value)
    if field == "lastInteraction":
        return LastInteractionRule(since=parse_timestamp(value))
    return UnknownRule(field=field)


def parse_criterion(raw: Union[SegmentCriterion, Mapping[str, Any]]) -> SegmentCriterion:
    """Turn a persisted criterion dict into its typed rule. Never raises."""
    if isinstance(raw, SegmentCriterion):
        return raw
    if not isinstance(raw, Mapping):
        return SegmentCriterion(id="", field="", rule=UnknownRule(field=""))

    field = str(raw.get("field") or "")
    return SegmentCriterion(
        id=str(raw.get("id") or ""),
        field=field,
        rule=_build_rule(field, raw.get("value")),
        label=raw.get("label"),
        operator=raw.get("operator"),
    )


def _lower_all(values: Any) -> set:
    if not isinstance(values, (list, tuple, set, frozenset)):
        return set()
    return {str(v).lower() for v in values if v is not None}


def _match_zip(rule: ZipRule, ctx: Mapping[str, Any]) -> bool:
    zip_code = ctx.get("zip")
    if rule.prefix is None or not zip_code:
        return False
    return str(zip_code).lower().startswith(rule.prefix.lower())


def _match_city(rule: CityRule, ctx: Mapping[str, Any]) -> bool:
    city = ctx.get("city")
    if rule.fragment is None or not city:
        return False
    return rule.fragment.lower() in str(city).lower()


def _match_state(rule: StateRule, ctx: Mapping[str, Any]) -> bool:
    state = ctx.get("state")
    if rule.name is None or not state:
        return False
    return str(state).lower() == rule.name.lower()


def _match_membership(rule: MembershipRule, ctx: Mapping[str, Any]) -> bool:
    wanted = {v.lower() for v in rule.one_of}
    present = _lower_all(ctx.get(MEMBERSHIP_FIELDS[rule.field]))
    return bool(wanted & present)


def _match_status(rule: StatusRule, ctx: Mapping[str, Any]) -> bool:
    status = ctx.get("status")
    if not status:
        return False
    return str(status).lower() in {v.lower() for v in rule.one_of}


def _match_client_type(rule: ClientTypeRule, ctx: Mapping[str, Any]) -> bool:
    # case-sensitive, unlike status
    client_type = ctx.get("client_type")
    if not client_type:
        return False
    return str(client_type) in rule.one_of


def _lifetime_value(ctx: Mapping[str, Any]) -> float:
    value = ctx.get("lifetime_value")
    return 0.0 if value is None else to_number(value)


def _match_lifetime_range(rule: LifetimeValueRange, ctx: Mapping[str, Any]) -> bool:
    value = _lifetime_value(ctx)
    return rule.minimum <= value <= rule.maximum


def _match_lifetime_minimum(rule: LifetimeValueMinimum, ctx: Mapping[str, Any]) -> bool:
    return _lifetime_value(ctx) >= rule.minimum


def _match_last_interaction(rule: LastInteractionRule, ctx: Mapping[str, Any]) -> bool:
    last = parse_timestamp(ctx.get("last_interaction"))
    if last is None or rule.since is None:
        return False
    return last >= rule.since


def _match_unknown(rule: UnknownRule, ctx: Mapping[str, Any]) -> bool:
    logger.debug(f"Unsupported criterion field '{rule.field}', treating as satisfied")
    return True


_EVALUATORS: Dict[type, Callable[[Any, Mapping[str, Any]], bool]] = {
    ZipRule: _match_zip,
    CityRule: _match_city,
    StateRule: _match_state,
    MembershipRule: _match_membership,
    StatusRule: _match_status,
    ClientTypeRule: _match_client_type,
    LifetimeValueRange: _match_lifetime_range,
    LifetimeValueMinimum: _match_lifetime_minimum,
    LastInteractionRule: _match_last_interaction,
    UnknownRule: _match_unknown,
}


def matches(criterion: Union[SegmentCriterion, Mapping[str, Any]], context: Mapping[str, Any]) -> bool:
    """Evaluate one segment criterion against a projected context."""
    parsed = parse_criterion(criterion)
    return _EVALUATORS[type(parsed.rule)](parsed.rule, context or {})
