"""Three-way line merge.

``diff3_merge(base, current, proposed)`` aligns ``current`` and ``proposed``
against their common ancestor ``base`` with :mod:`difflib` and walks the
change hunks of both sides in base order.

Resolution rules per region
---------------------------

- Only one side changed the region: take that side.
- Both sides changed it to the same lines: take it once.
- Both sides changed it differently: record a ``MergeConflict`` and keep the
  ``current`` lines, so an unresolved conflict never overwrites edits that were
  made in the workspace after the proposal was drafted.

Hunks touching adjacent but distinct base lines are independent regions.
Two insertions at the same point, or an insertion at the edge of a change on
the other side, are treated as overlapping.
"""

from __future__ import annotations

import difflib
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..schemas.domain import MergeConflict, MergeOutcome

_CURRENT = 0
_PROPOSED = 1


@dataclass(frozen=True)
class _Hunk:
    side: int
    o_start: int
    o_end: int
    s_start: int
    s_end: int


@dataclass
class _Region:
    o_start: int
    o_end: int
    hunks: List[_Hunk] = field(default_factory=list)

    def touches(self, hunk: _Hunk) -> bool:
        if hunk.o_start < self.o_end:
            return True
        if hunk.o_start == self.o_end:
            # zero-width insertions sitting on the boundary are ambiguous
            return hunk.o_start == hunk.o_end or self.o_start == self.o_end
        return False

    def side_lines(self, side: int, lines: Sequence[str]) -> Optional[List[str]]:
        own = [h for h in self.hunks if h.side == side]
        if not own:
            return None
        first, last = own[0], own[-1]
        start = first.s_start - (first.o_start - self.o_start)
        end = last.s_end + (self.o_end - last.o_end)
        return list(lines[start:end])


def _normalize_lines(text: str) -> List[str]:
    return text.replace("\r\n", "\n").split("\n")


def _hunks(side: int, base: Sequence[str], other: Sequence[str]) -> List[_Hunk]:
    matcher = difflib.SequenceMatcher(None, base, other, autojunk=False)
    return [
        _Hunk(side, i1, i2, j1, j2)
        for tag, i1, i2, j1, j2 in matcher.get_opcodes()
        if tag != "equal"
    ]


def _regions(hunks: List[_Hunk]) -> List[_Region]:
    regions: List[_Region] = []
    for hunk in sorted(hunks, key=lambda h: (h.o_start, h.o_end, h.side)):
        if regions and regions[-1].touches(hunk):
            region = regions[-1]
            region.o_end = max(region.o_end, hunk.o_end)
            region.hunks.append(hunk)
        else:
            regions.append(_Region(hunk.o_start, hunk.o_end, [hunk]))
    return regions


def diff3_merge(base: str, current: str, proposed: str) -> MergeOutcome:
    base_lines = _normalize_lines(base)
    current_lines = _normalize_lines(current)
    proposed_lines = _normalize_lines(proposed)

    hunks = _hunks(_CURRENT, base_lines, current_lines) + _hunks(_PROPOSED, base_lines, proposed_lines)

    output: List[str] = []
    conflicts: List[MergeConflict] = []
    cursor = 0
    for region in _regions(hunks):
        output.extend(base_lines[cursor : region.o_start])
        original = base_lines[region.o_start : region.o_end]
        ours = region.side_lines(_CURRENT, current_lines)
        theirs = region.side_lines(_PROPOSED, proposed_lines)

        if ours is None:
            output.extend(theirs or [])
        elif theirs is None or ours == theirs:
            output.extend(ours)
        else:
            start = len(output)
            conflicts.append(
                MergeConflict(
                    start_line=start,
                    end_line=start + max(len(original), len(ours), len(theirs)),
                    base="\n".join(original),
                    current="\n".join(ours),
                    proposed="\n".join(theirs),
                )
            )
            output.extend(ours)
        cursor = region.o_end
    output.extend(base_lines[cursor:])

    return MergeOutcome(merged_text="\n".join(output), conflicts=conflicts)

