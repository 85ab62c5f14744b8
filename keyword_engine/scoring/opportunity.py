"""Composite opportunity score for a keyword.

Blends search volume, competition, CPC and (when known) SERP difficulty
into one integer so keywords from every source can be ranked together.
The same function is used for the live score and for re-scoring once
SERP data arrives, so it must stay pure.
"""

import math
from typing import Optional


def opportunity_score(
    volume: int,
    competition: float,
    cpc: float,
    serp_difficulty: Optional[int] = None,
) -> int:
    """Score a keyword.

    Args:
        volume: Monthly search volume.
        competition: Normalized competition in [0, 1].
        cpc: Cost per click.
        serp_difficulty: 0-100 SERP difficulty, or None if unknown.

    Returns:
        Rounded opportunity score (0 when volume is 0).
    """
    if volume == 0:
        return 0

    volume_score = min(volume / 1000, 10)
    comp_score = 1 - competition
    cpc_bonus = min(cpc / 5, 1)

    base = volume_score * comp_score * 80 + cpc_bonus * 20

    if serp_difficulty is not None:
        serp_bonus = (100 - serp_difficulty) / 100
        base = base * 0.6 + base * serp_bonus * 0.4

    # Half-up rounding; round() would send 0.5 to the even neighbour
    return int(math.floor(base + 0.5))
