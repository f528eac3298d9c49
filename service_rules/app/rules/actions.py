"""
Static mapping from action names to the (rule type, resource) they are checked against.
"""

from typing import Dict, NamedTuple, Mapping, Any, Union

from .models import RuleType


class ActionMapping(NamedTuple):
    """Rule type and resource an action is governed by."""
    type: RuleType
    resource: str


def _mapping(rule_type: str, resource: str) -> ActionMapping:
    return ActionMapping(RuleType(rule_type), resource)


GENERAL_ACTION_MAPPINGS: Dict[str, ActionMapping] = {
    # API
    "make_api_call": _mapping("rate_limit", "api_calls"),
    "search_pokemon": _mapping("rate_limit", "pokemon_searches"),
    # Features
    "create_collection": _mapping("feature_limit", "collections"),
    "add_pokemon_to_collection": _mapping("feature_limit", "pokemon_per_collection"),
    # Access
    "access_admin_panel": _mapping("access_control", "admin_panel"),
    "access_api_explorer": _mapping("access_control", "api_explorer"),
    # Content
    "upload_file": _mapping("content_limit", "file_upload"),
    "create_text_content": _mapping("content_limit", "text_input"),
    # Contact system
    "send_direct_message": _mapping("rate_limit", "direct_messages"),
    "submit_feature_request": _mapping("rate_limit", "feature_requests"),
    "submit_bug_report": _mapping("rate_limit", "bug_reports"),
}

BINDER_ACTION_MAPPINGS: Dict[str, ActionMapping] = {
    # Binder CRUD
    "create_binder": _mapping("feature_limit", "binders"),
    "add_card_to_binder": _mapping("feature_limit", "cards_per_binder"),
    "add_page_to_binder": _mapping("feature_limit", "pages_per_binder"),
    "add_collaborator": _mapping("feature_limit", "collaborators_per_binder"),
    # Rate limited
    "create_binder_rate": _mapping("rate_limit", "binder_creation"),
    "add_cards_rate": _mapping("rate_limit", "card_addition"),
    "export_binder": _mapping("rate_limit", "binder_export"),
    "pdf_export": _mapping("rate_limit", "pdf_export"),
    # Access controlled
    "share_binder": _mapping("access_control", "binder_sharing"),
    "use_large_grid": _mapping("access_control", "premium_grid_sizes"),
    # Storage
    "upload_card_image": _mapping("content_limit", "user_storage"),
}

DEFAULT_ACTION_MAPPINGS: Dict[str, ActionMapping] = {
    **GENERAL_ACTION_MAPPINGS,
    **BINDER_ACTION_MAPPINGS,
}


def build_action_mappings(table: Mapping[str, Union[ActionMapping, Mapping[str, Any]]]) -> Dict[str, ActionMapping]:
    """
    Normalize a caller-maintained action table.

    Entries may be ``ActionMapping`` tuples or ``{"type": ..., "resource": ...}``
    dicts. Unknown rule types raise ``ValueError``.
    """
    mappings: Dict[str, ActionMapping] = {}
    for action, entry in table.items():
        if isinstance(entry, ActionMapping):
            mappings[action] = entry
        else:
            mappings[action] = _mapping(entry["type"], entry["resource"])
    return mappings
