"""
Binder-level checks built on the action mappings.

Each helper turns a binder operation into one or more mapped actions with
the counts their rules need. Binders are plain mappings in the shape the
binder app stores them; camelCase and snake_case settings keys are both read.
"""

from dataclasses import replace
from typing import Any, Mapping, Optional

from shared.logging import get_logger
from .coordinator import EnforcementCoordinator
from .models import CallerContext, EnforcementResult

logger = get_logger("rules.binders")

LARGE_GRID_SIZES = frozenset({"5x5", "6x6"})


def card_count(binder: Mapping[str, Any]) -> int:
    return len(binder.get("cards") or {})


def page_count(binder: Mapping[str, Any]) -> int:
    """Pages in a binder; a binder without settings has one page."""
    settings = binder.get("settings") or {}
    return settings.get("pageCount") or settings.get("page_count") or 1


def collaborator_count(binder: Mapping[str, Any]) -> int:
    permissions = binder.get("permissions") or {}
    return len(permissions.get("collaborators") or [])


class BinderLimits:
    """Binder operation checks for one coordinator."""

    def __init__(self, coordinator: EnforcementCoordinator):
        self.coordinator = coordinator

    def _check(self, action: str, caller: Optional[CallerContext], **data) -> EnforcementResult:
        caller = caller or CallerContext()
        if data:
            caller = replace(caller, data={**caller.data, **data})
        return self.coordinator.check_action(action, caller)

    def can_create_binder(self, caller: Optional[CallerContext], binder_count: int) -> EnforcementResult:
        return self._check("create_binder", caller, current_count=binder_count)

    def can_add_cards(
        self,
        caller: Optional[CallerContext],
        binder: Mapping[str, Any],
        cards_to_add: int = 1
    ) -> EnforcementResult:
        """
        Check the per-binder card limit for the binder after the addition,
        then the card addition rate.

        The rate limit is only consulted when the binder has room.
        """
        result = self._check("add_card_to_binder", caller, current_count=card_count(binder) + cards_to_add)
        if not result.allowed:
            logger.debug("Card addition refused by binder size", cards_to_add=cards_to_add, reason=result.reason)
            return result
        return self._check("add_cards_rate", caller)

    def can_add_pages(
        self,
        caller: Optional[CallerContext],
        binder: Mapping[str, Any],
        pages_to_add: int = 1
    ) -> EnforcementResult:
        return self._check("add_page_to_binder", caller, current_count=page_count(binder) + pages_to_add)

    def can_use_grid_size(self, caller: Optional[CallerContext], grid_size: str) -> EnforcementResult:
        """Only the large grids are access controlled."""
        if grid_size not in LARGE_GRID_SIZES:
            return EnforcementResult.allow()
        return self._check("use_large_grid", caller)

    def can_share_binder(self, caller: Optional[CallerContext]) -> EnforcementResult:
        return self._check("share_binder", caller)

    def can_export_binder(self, caller: Optional[CallerContext]) -> EnforcementResult:
        return self._check("export_binder", caller)

    def can_export_pdf(self, caller: Optional[CallerContext]) -> EnforcementResult:
        return self._check("pdf_export", caller)

    def can_add_collaborator(self, caller: Optional[CallerContext], binder: Mapping[str, Any]) -> EnforcementResult:
        return self._check("add_collaborator", caller, current_count=collaborator_count(binder) + 1)
