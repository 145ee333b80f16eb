"""HTTP shape of every batch operation type against the Trello REST API.

Each Endpoint maps resolved operation params onto a method, a path (with
`{name}` placeholders filled from params), and a JSON body. Param names are
renamed to Trello's field names where they differ (board -> idBoard, ...).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import quote

from trlo.domain.errors import APIError

_COMMON_RENAMES = {
    "board": "idBoard",
    "list": "idList",
    "description": "desc",
    "position": "pos",
    "due_date": "due",
    "labels": "idLabels",
    "members": "idMembers",
}


@dataclass(frozen=True)
class Endpoint:
    method: str
    path: str
    renames: Mapping[str, str] = field(default_factory=dict)
    fixed: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class HttpRequest:
    """A fully built request, relative to the API base URL."""
    method: str
    path: str
    json: Optional[Dict[str, Any]] = None
    query: Dict[str, str] = field(default_factory=dict)


def _ep(method: str, path: str, renames: Optional[Mapping[str, str]] = None,
        fixed: Optional[Mapping[str, Any]] = None) -> Endpoint:
    return Endpoint(method, path, dict(renames or {}), dict(fixed or {}))


ENDPOINTS: Dict[str, Endpoint] = {
    "create-board": _ep("POST", "/boards"),
    "create-list": _ep("POST", "/lists"),
    "create-card": _ep("POST", "/cards"),
    "create-label": _ep("POST", "/labels"),
    "add-label": _ep("POST", "/cards/{target}/idLabels", {"label": "value"}),
    "add-checklist": _ep("POST", "/checklists", {"target": "idCard"}),
    "add-checkitem": _ep("POST", "/checklists/{target}/checkItems"),
    "add-member": _ep("POST", "/cards/{target}/idMembers", {"member": "value"}),
    "add-attachment": _ep("POST", "/cards/{target}/attachments"),
    "add-comment": _ep("POST", "/cards/{target}/actions/comments"),
    "update-board": _ep("PUT", "/boards/{target}"),
    "update-list": _ep("PUT", "/lists/{target}"),
    "update-card": _ep("PUT", "/cards/{target}"),
    "move-card": _ep("PUT", "/cards/{target}"),
    "copy-card": _ep("POST", "/cards", {"target": "idCardSource"}),
    "archive-list": _ep("PUT", "/lists/{target}/closed", fixed={"value": True}),
    "archive-card": _ep("PUT", "/cards/{target}", fixed={"closed": True}),
    "delete-board": _ep("DELETE", "/boards/{target}"),
    "delete-card": _ep("DELETE", "/cards/{target}"),
    "delete-label": _ep("DELETE", "/labels/{target}"),
    "delete-checklist": _ep("DELETE", "/checklists/{target}"),
    "delete-attachment": _ep("DELETE", "/cards/{target}/attachments/{attachment}"),
    "get-board": _ep("GET", "/boards/{target}"),
    "get-list": _ep("GET", "/lists/{target}"),
    "get-card": _ep("GET", "/cards/{target}"),
}


def _path_names(path: str) -> Tuple[str, ...]:
    names = []
    for chunk in path.split("{")[1:]:
        names.append(chunk.split("}", 1)[0])
    return tuple(names)


def build_request(operation_type: str, params: Mapping[str, Any]) -> HttpRequest:
    """Builds the HTTP request for one operation.

    Raises:
        APIError: If the type has no endpoint or a path parameter is missing.
    """
    endpoint = ENDPOINTS.get(operation_type)
    if endpoint is None:
        raise APIError(f"no endpoint for operation type '{operation_type}'")

    body = dict(params)
    path = endpoint.path
    for name in _path_names(endpoint.path):
        value = body.pop(name, None)
        if value is None or str(value) == "":
            raise APIError(f"missing path parameter '{name}' for {operation_type}")
        path = path.replace("{" + name + "}", quote(str(value), safe=""))

    renames = {**_COMMON_RENAMES, **endpoint.renames}
    payload = {renames.get(key, key): value for key, value in body.items()}
    payload.update(endpoint.fixed)
    if endpoint.method in ("GET", "DELETE"):
        return HttpRequest(endpoint.method, path, query={k: _query_value(v) for k, v in payload.items()})
    return HttpRequest(endpoint.method, path, json=payload)


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)
