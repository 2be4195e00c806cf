from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from loguru import logger

from segmentation.state import EvaluationContext

ClientIndex = Mapping[str, Mapping[str, Any]]


def _obj(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _tag_names(tags: Any) -> List[str]:
    """Tags arrive either as {"name": ...} objects or bare strings."""
    if not isinstance(tags, (list, tuple)):
        return []
    names = []
    for tag in tags:
        name = tag.get("name") if isinstance(tag, Mapping) else tag
        if name:
            names.append(str(name))
    return names


def _text_list(value: Any) -> List[str]:
    return [value] if isinstance(value, str) and value else []


def index_clients(clients: Optional[Iterable[Mapping[str, Any]]]) -> Dict[str, Mapping[str, Any]]:
    """Index host-supplied clients by id for clientType lookups."""
    index = {}
    for client in clients or []:
        if isinstance(client, Mapping) and client.get("id") is not None:
            index[str(client["id"])] = client
    return index


def _client_type(record: Mapping[str, Any], clients_by_id: Optional[ClientIndex]) -> Optional[str]:
    client = _obj(record.get("client"))
    if not client and clients_by_id and record.get("clientId") is not None:
        client = _obj(clients_by_id.get(str(record["clientId"])))
    return client.get("clientType")


def project_client(client: Mapping[str, Any], clients_by_id: Optional[ClientIndex] = None) -> EvaluationContext:
    client = _obj(client)
    return {
        "zip": client.get("billingZip"),
        "city": client.get("billingCity"),
        "state": client.get("billingState"),
        "tags": _tag_names(client.get("tags")),
        "services": _text_list(client.get("notes")),
        "species": [],
        "status": client.get("status"),
        "client_type": client.get("clientType"),
        "lifetime_value": client.get("lifetimeValue") or 0,
        "last_interaction": client.get("updatedAt"),
    }


def project_lead(lead: Mapping[str, Any], clients_by_id: Optional[ClientIndex] = None) -> EvaluationContext:
    """Leads carry a customer address snapshot; clientType comes from the owning client."""
    lead = _obj(lead)
    details = _obj(lead.get("customerDetails"))
    description = _text_list(lead.get("description"))
    return {
        "zip": details.get("zipCode"),
        "city": details.get("city"),
        "state": details.get("state"),
        "tags": _tag_names(lead.get("tags")),
        # a description may mention either the work or the tree
        "services": list(description),
        "species": list(description),
        "status": lead.get("status"),
        "client_type": _client_type(lead, clients_by_id),
        "lifetime_value": lead.get("estimatedValue") or 0,
        "last_interaction": lead.get("updatedAt"),
    }


def project_quote(quote: Mapping[str, Any], clients_by_id: Optional[ClientIndex] = None) -> EvaluationContext:
    quote = _obj(quote)
    details = _obj(quote.get("customerDetails"))
    line_items = quote.get("lineItems")
    if not isinstance(line_items, (list, tuple)):
        line_items = []
    return {
        "zip": details.get("zipCode"),
        "city": details.get("city"),
        "state": details.get("state"),
        "tags": _tag_names(quote.get("tags")),
        "services": [item["description"] for item in line_items
                     if isinstance(item, Mapping) and isinstance(item.get("description"), str)],
        # TODO: quotes have no species data yet; the street line is a placeholder until line items carry it
        "species": _text_list(details.get("addressLine1")),
        "status": quote.get("status"),
        "client_type": _client_type(quote, clients_by_id),
        "lifetime_value": quote.get("totalAmount") or 0,
        "last_interaction": quote.get("updatedAt"),
    }


PROJECTORS: Dict[str, Callable[..., EvaluationContext]] = {
    "client": project_client,
    "lead": project_lead,
    "quote": project_quote,
}


def project(record: Mapping[str, Any], kind: str, clients_by_id: Optional[ClientIndex] = None) -> EvaluationContext:
    """Project any supported record into an EvaluationContext."""
    projector = PROJECTORS.get(kind)
    if projector is None:
        logger.debug(f"No projector for kind '{kind}', using an empty context")
        return {"tags": [], "services": [], "species": [], "lifetime_value": 0}
    return projector(record, clients_by_id)
