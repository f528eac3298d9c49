"""
Built-in rule templates and user tier rule sets.
"""

from copy import deepcopy
from typing import Dict, Any, List


RULE_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "api_rate_limit": {
        "name": "API Rate Limit",
        "description": "Limit API calls per user per hour",
        "type": "rate_limit",
        "config": {"limit": 100, "window": "hour", "resource": "api_calls"},
    },
    "max_collections": {
        "name": "Max Collections per User",
        "description": "Maximum number of collections a user can create",
        "type": "feature_limit",
        "config": {"feature": "collections", "limit": 10, "scope": "user"},
    },
    "pokemon_per_collection": {
        "name": "Pokemon per Collection Limit",
        "description": "Maximum Pokemon that can be added to a single collection",
        "type": "feature_limit",
        "config": {"feature": "pokemon_per_collection", "limit": 50, "scope": "user"},
    },
    "file_upload_size": {
        "name": "File Upload Size Limit",
        "description": "Maximum file size for uploads",
        "type": "content_limit",
        "config": {
            "content_type": "file_upload",
            "max_size": 5 * 1024 * 1024,
            "allowed_types": ["image/jpeg", "image/png", "image/gif"],
        },
    },
    "admin_access": {
        "name": "Admin Panel Access",
        "description": "Control who can access the admin panel",
        "type": "access_control",
        "config": {
            "feature": "admin_panel",
            "allowed_roles": ["owner", "admin"],
            "required_permissions": ["admin_access"],
        },
    },
    # Contact system
    "contact_message_rate_limit": {
        "name": "Direct Message Rate Limit",
        "description": "Limit how often users can send direct messages",
        "type": "rate_limit",
        "config": {"limit": 5, "window": "hour", "resource": "direct_messages"},
    },
    "feature_request_rate_limit": {
        "name": "Feature Request Rate Limit",
        "description": "Limit how often users can submit feature requests",
        "type": "rate_limit",
        "config": {"limit": 3, "window": "day", "resource": "feature_requests"},
    },
    "bug_report_rate_limit": {
        "name": "Bug Report Rate Limit",
        "description": "Limit how often users can submit bug reports",
        "type": "rate_limit",
        "config": {"limit": 10, "window": "day", "resource": "bug_reports"},
    },
}

BINDER_RULE_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "max_binders_per_user": {
        "name": "Max Binders per User",
        "description": "Limit the number of binders a user can create",
        "type": "feature_limit",
        "config": {"feature": "binders", "limit": 5, "scope": "user"},
    },
    "max_cards_per_binder": {
        "name": "Max Cards per Binder",
        "description": "Limit the number of cards in a single binder",
        "type": "feature_limit",
        "config": {"feature": "cards_per_binder", "limit": 500, "scope": "user"},
    },
    "max_pages_per_binder": {
        "name": "Max Pages per Binder",
        "description": "Limit the number of pages in a single binder",
        "type": "feature_limit",
        "config": {"feature": "pages_per_binder", "limit": 50, "scope": "user"},
    },
    "binder_creation_rate_limit": {
        "name": "Binder Creation Rate Limit",
        "description": "Limit how often users can create new binders",
        "type": "rate_limit",
        "config": {"limit": 10, "window": "day", "resource": "binder_creation"},
    },
    "card_addition_rate_limit": {
        "name": "Card Addition Rate Limit",
        "description": "Limit how many cards can be added per hour",
        "type": "rate_limit",
        "config": {"limit": 100, "window": "hour", "resource": "card_addition"},
    },
    "binder_sharing_access": {
        "name": "Binder Sharing Access",
        "description": "Control who can share binders publicly",
        "type": "access_control",
        "config": {
            "feature": "binder_sharing",
            "allowed_roles": ["premium", "owner"],
            "required_permissions": ["share_binders"],
        },
    },
    "premium_grid_sizes": {
        "name": "Premium Grid Sizes",
        "description": "Restrict large grid sizes to premium users",
        "type": "access_control",
        "config": {
            "feature": "premium_grid_sizes",
            "allowed_roles": ["premium", "owner"],
            "required_permissions": ["large_grid_access"],
        },
    },
    "binder_export_rate_limit": {
        "name": "Binder Export Rate Limit",
        "description": "Limit how often users can export binders",
        "type": "rate_limit",
        "config": {"limit": 5, "window": "day", "resource": "binder_export"},
    },
    "pdf_export_rate_limit": {
        "name": "PDF Export Rate Limit",
        "description": "Limit how often users can export binders as PDF",
        "type": "rate_limit",
        "config": {"limit": 10, "window": "day", "resource": "pdf_export"},
    },
    "max_collaborators_per_binder": {
        "name": "Max Collaborators per Binder",
        "description": "Limit how many people can collaborate on a binder",
        "type": "feature_limit",
        "config": {"feature": "collaborators_per_binder", "limit": 3, "scope": "user"},
    },
    "user_storage_limit": {
        "name": "User Storage Limit",
        "description": "Limit total storage space per user",
        "type": "content_limit",
        "config": {"content_type": "user_storage", "max_size": 100 * 1024 * 1024},
    },
}

ALL_TEMPLATES: Dict[str, Dict[str, Any]] = {**RULE_TEMPLATES, **BINDER_RULE_TEMPLATES}

# Templates the contact/messaging system installs on first setup
CONTACT_TEMPLATE_KEYS = [
    "contact_message_rate_limit",
    "feature_request_rate_limit",
    "bug_report_rate_limit",
]


def get_template(template_key: str) -> Dict[str, Any]:
    """Return a private copy of a template, or raise KeyError."""
    return deepcopy(ALL_TEMPLATES[template_key])


def _tier_rule(template_key: str, **config_overrides) -> Dict[str, Any]:
    template = get_template(template_key)
    template["config"].update(config_overrides)
    return template


USER_TIER_RULES: Dict[str, Dict[str, Any]] = {
    "free": {
        "name": "Free Tier",
        "rules": [
            _tier_rule("max_binders_per_user", limit=3),
            _tier_rule("max_cards_per_binder", limit=200),
            _tier_rule("max_pages_per_binder", limit=20),
            _tier_rule("binder_creation_rate_limit"),
            _tier_rule("card_addition_rate_limit"),
            _tier_rule("user_storage_limit", max_size=50 * 1024 * 1024),
        ],
    },
    "premium": {
        "name": "Premium Tier",
        "rules": [
            _tier_rule("max_binders_per_user", limit=10),
            _tier_rule("max_cards_per_binder", limit=1000),
            _tier_rule("max_pages_per_binder", limit=100),
            _tier_rule("binder_sharing_access"),
            _tier_rule("premium_grid_sizes"),
            _tier_rule("user_storage_limit", max_size=500 * 1024 * 1024),
        ],
    },
    "unlimited": {
        "name": "Unlimited Tier",
        "rules": [],
    },
}


def tier_rules(tier: str) -> List[Dict[str, Any]]:
    """Rule payloads for a user tier, named and tagged for that tier."""
    tier_def = USER_TIER_RULES[tier]
    payloads = []
    for template in tier_def["rules"]:
        payload = deepcopy(template)
        payload["name"] = f"{tier_def['name']} - {template['name']}"
        payload["description"] = f"{template['description']} ({tier_def['name']})"
        payload["metadata"] = {"user_tier": tier, "auto_generated": True}
        payloads.append(payload)
    return payloads
