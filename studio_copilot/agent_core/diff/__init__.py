"""Range-edit application and three-way merge for text proposals."""

from .merge import diff3_merge
from .range_edits import (
    apply_range_edits,
    check_stale,
    position_to_index,
    sha1_hex,
    unified_diff,
    validate_edits,
)

__all__ = [
    "apply_range_edits",
    "check_stale",
    "diff3_merge",
    "position_to_index",
    "sha1_hex",
    "unified_diff",
    "validate_edits",
]
