"""Rank and XP progression for Wayfarer.

Ranks are derived purely from total XP through a fixed five-band table:

- Rank 1 (New Wayfarer): 0-199 XP
- Rank 2 (Junior Journeyman): 200-499 XP
- Rank 3 (Adept Adventurer): 500-999 XP
- Rank 4 (Expert Explorer): 1000-1999 XP
- Rank 5 (Renowned Trailblazer): 2000+ XP

Everything in this module is a pure function of its arguments.
"""

import math
from dataclasses import dataclass

# XP source constants
XP_STEP_DEFAULT_REWARD = 25
XP_QUIZ_BASE_PER_QUESTION = 25
QUIZ_PERFECT_BONUS_MULTIPLIER = 1.5
QUIZ_MIN_PASS_PERCENT = 60


@dataclass(frozen=True)
class RankThreshold:
    """One band of the rank table. ``max_xp`` is None for the open top band."""

    rank: int
    name: str
    min_xp: int
    max_xp: int | None

    def contains(self, xp: int) -> bool:
        """Check if ``xp`` falls in this band (both ends inclusive)."""
        return xp >= self.min_xp and (self.max_xp is None or xp <= self.max_xp)


RANK_THRESHOLDS: tuple[RankThreshold, ...] = (
    RankThreshold(rank=1, name="New Wayfarer", min_xp=0, max_xp=199),
    RankThreshold(rank=2, name="Junior Journeyman", min_xp=200, max_xp=499),
    RankThreshold(rank=3, name="Adept Adventurer", min_xp=500, max_xp=999),
    RankThreshold(rank=4, name="Expert Explorer", min_xp=1000, max_xp=1999),
    RankThreshold(rank=5, name="Renowned Trailblazer", min_xp=2000, max_xp=None),
)

MIN_RANK = RANK_THRESHOLDS[0].rank
MAX_RANK = RANK_THRESHOLDS[-1].rank


def calculate_rank(total_xp: int) -> int:
    """
    Calculate rank from total XP.

    Returns the highest band whose lower bound is at or below ``total_xp``.
    Negative XP is not a legal input; it maps to rank 1.

    Examples:
        calculate_rank(0) == 1
        calculate_rank(199) == 1
        calculate_rank(200) == 2
        calculate_rank(2000) == 5
    """
    for threshold in reversed(RANK_THRESHOLDS):
        if total_xp >= threshold.min_xp:
            return threshold.rank
    return MIN_RANK


def get_rank_threshold(rank: int) -> RankThreshold:
    """Get the table row for ``rank``; unknown ranks fall back to rank 1."""
    for threshold in RANK_THRESHOLDS:
        if threshold.rank == rank:
            return threshold
    return RANK_THRESHOLDS[0]


def get_rank_name(rank: int) -> str:
    """Get the display name for a rank. Anything outside 1-5 gets the rank 1 name."""
    return get_rank_threshold(rank).name


def calculate_new_xp(current_xp: int, reward: int = XP_STEP_DEFAULT_REWARD) -> int:
    """Add a reward to the current total. Negative rewards act as penalties."""
    return current_xp + reward


def check_level_up(current_rank: int, new_xp: int) -> bool:
    """
    Check if an XP award crossed into a higher rank.

    Args:
        current_rank: Rank *before* the award
        new_xp: Total XP *after* the award
    """
    return calculate_rank(new_xp) > current_rank


def calculate_quiz_xp(
    correct_answers: int,
    total_questions: int,
    base_xp_per_question: int = XP_QUIZ_BASE_PER_QUESTION,
) -> int:
    """
    Calculate XP earned for a quiz.

    A perfect score earns a 50% bonus, floored: 5/5 at 25 XP each is 187, not 188.
    """
    xp_earned = correct_answers * base_xp_per_question

    if correct_answers == total_questions and total_questions > 0:
        xp_earned = math.floor(xp_earned * QUIZ_PERFECT_BONUS_MULTIPLIER)

    return xp_earned


def calculate_quiz_score(correct_answers: int, total_questions: int) -> int:
    """Quiz score as a whole percentage (halves round up). 0 questions scores 0."""
    if total_questions == 0:
        return 0
    return math.floor(correct_answers / total_questions * 100 + 0.5)


def is_quiz_passed(score_percent: float, min_score_percent: float = QUIZ_MIN_PASS_PERCENT) -> bool:
    """Check if a quiz score meets the pass mark."""
    return score_percent >= min_score_percent


@dataclass(frozen=True)
class RankProfile:
    """
    A user's XP total and the rank derived from it.

    Only ``total_xp`` is stored; rank is recomputed on every access so the two
    can never drift apart.
    """

    total_xp: int

    @property
    def rank(self) -> int:
        return calculate_rank(self.total_xp)

    @property
    def rank_name(self) -> str:
        return get_rank_name(self.rank)

    @property
    def xp_into_rank(self) -> int:
        """XP earned since entering the current rank."""
        return self.total_xp - get_rank_threshold(self.rank).min_xp

    @property
    def xp_to_next_rank(self) -> int | None:
        """XP still needed for the next rank, or None at the top rank."""
        if self.rank >= MAX_RANK:
            return None
        return get_rank_threshold(self.rank + 1).min_xp - self.total_xp

    def award(self, reward: int) -> "RankProfile":
        """Return a new profile with ``reward`` added."""
        return RankProfile(total_xp=calculate_new_xp(self.total_xp, reward))
