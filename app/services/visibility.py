"""
Main-site visibility state machine.

    visible --(nicotine classification)--> hidden_nicotine
    visible --(hide rule / violation)----> hidden_violation
    hidden_* --(reset_patch, manual)-----> visible

Hiding is sticky: classification never moves a product back to visible.
Functions return a patch for CatalogStore.update_product() and do not write.
"""

from typing import Optional, Dict, Any

from app.web.db.models import VisibilityState

DEFAULT_NICOTINE_HIDDEN_REASON = "Nicotine products restricted to tobacco site"


def is_hidden(product) -> bool:
    return product.visibility_state != VisibilityState.VISIBLE.value


def hide_patch(state: VisibilityState, reason: str) -> Dict[str, Any]:
    if state == VisibilityState.VISIBLE:
        raise ValueError("hide_patch needs a hidden state")
    return {
        "visible_on_main_site": False,
        "visibility_state": state.value,
        "hidden_reason": reason,
    }


def classification_patch(
    product,
    nicotine_product: bool,
    hidden_reason: Optional[str] = None,
    hide_rule_name: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Visibility patch for a classification result.

    Nicotine always hides (with a default reason when none is given). A
    triggered hide rule hides as a violation. Anything else leaves the
    current state alone.
    """
    if nicotine_product:
        return hide_patch(
            VisibilityState.HIDDEN_NICOTINE,
            hidden_reason or DEFAULT_NICOTINE_HIDDEN_REASON,
        )

    if hide_rule_name and not is_hidden(product):
        return hide_patch(
            VisibilityState.HIDDEN_VIOLATION,
            hidden_reason or f"Matched hide rule: {hide_rule_name}",
        )

    return {}


def reset_patch() -> Dict[str, Any]:
    return {
        "visible_on_main_site": True,
        "visibility_state": VisibilityState.VISIBLE.value,
        "hidden_reason": None,
    }
