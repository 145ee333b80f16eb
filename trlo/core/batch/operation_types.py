"""Registry of batch operation types.

Each type names the parameters an operation must carry. `target` is the id
of the existing resource the operation acts on. The HTTP shape of each type
lives in the Trello adapter (infrastructure/trello/endpoints.py).
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class OperationTypeSpec:
    name: str
    required: Tuple[str, ...]
    description: str
    requires_changes: bool = False  # update-*: at least one field besides target


def _spec(name: str, required: Tuple[str, ...], description: str, requires_changes: bool = False) -> OperationTypeSpec:
    return OperationTypeSpec(name=name, required=required, description=description,
                             requires_changes=requires_changes)


OPERATION_TYPES: Dict[str, OperationTypeSpec] = {
    spec.name: spec for spec in (
        _spec("create-board", ("name",), "Create a board"),
        _spec("create-list", ("name", "board"), "Create a list on a board"),
        _spec("create-card", ("name", "list"), "Create a card in a list"),
        _spec("create-label", ("board", "color"), "Create a label on a board"),
        _spec("add-label", ("target", "label"), "Add an existing label to a card"),
        _spec("add-checklist", ("target", "name"), "Add a checklist to a card"),
        _spec("add-checkitem", ("target", "name"), "Add an item to a checklist"),
        _spec("add-member", ("target", "member"), "Add a member to a card"),
        _spec("add-attachment", ("target", "url"), "Attach a URL to a card"),
        _spec("add-comment", ("target", "text"), "Comment on a card"),
        _spec("update-board", ("target",), "Update board fields", requires_changes=True),
        _spec("update-list", ("target",), "Update list fields", requires_changes=True),
        _spec("update-card", ("target",), "Update card fields", requires_changes=True),
        _spec("move-card", ("target", "list"), "Move a card to another list"),
        _spec("copy-card", ("target", "list"), "Copy a card into a list"),
        _spec("archive-list", ("target",), "Archive a list"),
        _spec("archive-card", ("target",), "Archive a card"),
        _spec("delete-board", ("target",), "Delete a board"),
        _spec("delete-card", ("target",), "Delete a card"),
        _spec("delete-label", ("target",), "Delete a label"),
        _spec("delete-checklist", ("target",), "Delete a checklist"),
        _spec("delete-attachment", ("target", "attachment"), "Remove an attachment from a card"),
        _spec("get-board", ("target",), "Fetch a board"),
        _spec("get-list", ("target",), "Fetch a list"),
        _spec("get-card", ("target",), "Fetch a card"),
    )
}


def normalize_type_name(raw: str) -> str:
    """Normalizes user spelling: case-insensitive, '_' accepted for '-'."""
    return raw.strip().lower().replace("_", "-")


def get_operation_type(raw: str) -> Optional[OperationTypeSpec]:
    """Looks up a type by its (normalized) name. Returns None when unknown."""
    return OPERATION_TYPES.get(normalize_type_name(raw))
