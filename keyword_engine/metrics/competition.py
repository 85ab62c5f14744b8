"""Normalization of provider competition values.

The provider reports competition either as a level ("LOW", "MEDIUM",
"HIGH") or as a number in [0, 1], sometimes with a separate level hint.
Both shapes are read into a CompetitionValue before normalization.
"""

import math
from dataclasses import dataclass
from typing import Optional, Union

from keyword_engine.models import CompetitionLevel

LEVEL_MIDPOINTS = {
    CompetitionLevel.LOW: 0.2,
    CompetitionLevel.MEDIUM: 0.5,
    CompetitionLevel.HIGH: 0.85,
}


@dataclass(frozen=True)
class LevelCompetition:
    level: CompetitionLevel


@dataclass(frozen=True)
class NumericCompetition:
    value: float


CompetitionValue = Union[LevelCompetition, NumericCompetition]


def read_competition(raw: object) -> Optional[CompetitionValue]:
    """Interpret a raw provider field as a level or a numeric value.

    Returns None when the value is neither a known level nor a number
    inside [0, 1].
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        upper = raw.strip().upper()
        for level in LEVEL_MIDPOINTS:
            if upper == level.value:
                return LevelCompetition(level)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or not 0 <= value <= 1:
        return None
    return NumericCompetition(value)


def level_for(value: float) -> CompetitionLevel:
    """Bucket a numeric competition into a level."""
    if value < 0.33:
        return CompetitionLevel.LOW
    if value < 0.66:
        return CompetitionLevel.MEDIUM
    return CompetitionLevel.HIGH


def normalize_competition(
    competition: object, competition_level: object = None
) -> tuple[float, CompetitionLevel]:
    """Resolve provider fields into (numeric competition, level).

    A level in the competition field wins. Otherwise a level hint keeps
    a valid numeric value (or its midpoint when there is none), and a
    bare number gets a level from the thresholds. Anything else is
    (0.0, LOW).
    """
    value = read_competition(competition)
    if isinstance(value, LevelCompetition):
        return LEVEL_MIDPOINTS[value.level], value.level

    hint = read_competition(competition_level)
    if isinstance(hint, LevelCompetition):
        if isinstance(value, NumericCompetition):
            return value.value, hint.level
        return LEVEL_MIDPOINTS[hint.level], hint.level

    if isinstance(value, NumericCompetition):
        return value.value, level_for(value.value)

    return 0.0, CompetitionLevel.LOW
