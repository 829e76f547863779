"""Action catalog and continuation resolution.

The registry is the authoritative whitelist of operations; the resolver
turns tokens and chosen next actions into handler calls.
"""

from __future__ import annotations

from litestar_continuations.actions.registry import ActionRegistry, validate_parameters
from litestar_continuations.actions.resolver import CONFIRM_PARAMETER, ContinuationResolver

__all__ = [
    "CONFIRM_PARAMETER",
    "ActionRegistry",
    "ContinuationResolver",
    "validate_parameters",
]
