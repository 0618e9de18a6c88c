"""
Map a robot's reported node code onto a mission's step sequence.

Matching order is exact position, then zone membership, then a prefix/suffix
similarity score. The similarity heuristic is deliberately simple: codes that
are permutations or rotations of each other can be mis-ranked.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from missions.steps import MissionStep

FUZZY_THRESHOLD = 0.7


class MatchType(str, Enum):
    EXACT = "exact"
    AREA = "area"
    FUZZY = "fuzzy"
    NONE = "none"


@dataclass(frozen=True)
class ZoneInfo:
    code: str
    node_codes: tuple[str, ...] = ()

    def contains(self, node_code: str) -> bool:
        node = node_code.lower()
        if node.startswith(self.code.lower()):
            return True
        return any(node == candidate.lower() for candidate in self.node_codes)


@dataclass(frozen=True)
class StepMatch:
    node_code: str
    total_steps: int
    match_type: MatchType = MatchType.NONE
    current_step_index: int | None = None
    confidence: float | None = None
    is_in_area: bool = False
    completed_steps: list[int] = field(default_factory=list)
    progress_percentage: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "node_code": self.node_code,
            "total_steps": self.total_steps,
            "match_type": self.match_type.value,
            "current_step_index": self.current_step_index,
            "confidence": self.confidence,
            "is_in_area": self.is_in_area,
            "completed_steps": list(self.completed_steps),
            "progress_percentage": self.progress_percentage,
        }


def similarity(a: str, b: str) -> float:
    """(2 * common prefix + common suffix) / (3 * longer length), case-insensitive."""
    if a.lower() == b.lower():
        return 1.0
    if not a or not b:
        return 0.0

    a_low, b_low = a.lower(), b.lower()
    min_len = min(len(a_low), len(b_low))
    max_len = max(len(a_low), len(b_low))

    prefix = 0
    for i in range(min_len):
        if a_low[i] != b_low[i]:
            break
        prefix += 1

    suffix = 0
    for i in range(1, min_len + 1):
        if a_low[-i] != b_low[-i]:
            break
        suffix += 1

    return (prefix * 2 + suffix) / (3.0 * max_len)


def _positions(steps: Sequence[MissionStep | dict]) -> list[str]:
    out = []
    for step in steps:
        if isinstance(step, MissionStep):
            out.append(step.position)
        else:
            out.append(str(step.get("position") or ""))
    return out


def _matched(node_code: str, total: int, index: int, **kwargs) -> StepMatch:
    return StepMatch(
        node_code=node_code,
        total_steps=total,
        current_step_index=index,
        completed_steps=list(range(index)),
        progress_percentage=round(index / total * 100, 1),
        **kwargs,
    )


def correlate(
    node_code: str | None,
    steps: Sequence[MissionStep | dict],
    zones: Iterable[ZoneInfo] = (),
) -> StepMatch:
    node_code = (node_code or "").strip()
    positions = _positions(steps)
    total = len(positions)
    if not node_code or total == 0:
        return StepMatch(node_code=node_code, total_steps=total)

    node_low = node_code.lower()
    for index, position in enumerate(positions):
        if position.lower() == node_low:
            return _matched(node_code, total, index, match_type=MatchType.EXACT, confidence=1.0)

    zones_by_code = {zone.code.lower(): zone for zone in zones}
    if zones_by_code:
        for index, position in enumerate(positions):
            zone = zones_by_code.get(position.lower())
            if zone is not None and zone.contains(node_code):
                return _matched(node_code, total, index, match_type=MatchType.AREA, is_in_area=True)

    best_index = -1
    best_score = 0.0
    for index, position in enumerate(positions):
        score = similarity(node_code, position)
        if score > FUZZY_THRESHOLD and score > best_score:
            best_index, best_score = index, score
    if best_index >= 0:
        return _matched(
            node_code,
            total,
            best_index,
            match_type=MatchType.FUZZY,
            confidence=round(best_score, 4),
        )

    return StepMatch(node_code=node_code, total_steps=total)
