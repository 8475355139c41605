"""
histmatch.py - Fuzzy ranking of history candidates against a query

A candidate matches when every query character appears in it in order,
ignoring case. Matches are then scored on the alignment the engine picks:

- a contiguous occurrence of the query is always preferred, at a word
  boundary if there is one;
- otherwise a compact scattered alignment is found by matching forward to the
  earliest possible end and then walking backward to the latest start.

Scoring weights favour runs of consecutive characters over scattered hits,
runs that begin at a word boundary, and shorter commands. With
CONSECUTIVE_BONUS + GAP_PENALTY >= 2 * BOUNDARY_BONUS a contiguous alignment
never scores below a scattered one in the same candidate.
"""

from __future__ import annotations

import re
from operator import attrgetter
from typing import NamedTuple

from histparse import CandidateStore, fold_case

CONSECUTIVE_BONUS = 12
BOUNDARY_BONUS = 8
GAP_PENALTY = 4
GAP_CHAR_PENALTY = 1
LENGTH_PENALTY_STEP = 10


class Match(NamedTuple):
    index: int  # position in the CandidateStore
    score: int
    positions: tuple[int, ...]


MatchResult = list[Match]


def is_boundary(text: str, pos: int) -> bool:
    return pos == 0 or not text[pos - 1].isalnum()


def score_positions(text: str, positions: tuple[int, ...]) -> int:
    """→ Scores one alignment of the query inside `text`"""
    score = 0
    prev = -2
    for pos in positions:
        if pos == prev + 1:
            score += CONSECUTIVE_BONUS
        else:
            if prev >= 0:
                score -= GAP_PENALTY + (pos - prev - 1) * GAP_CHAR_PENALTY
            if is_boundary(text, pos):
                score += BOUNDARY_BONUS
        prev = pos
    return score - len(text) // LENGTH_PENALTY_STEP


def _contiguous_score(text: str, start: int, length: int) -> int:
    """→ score_positions for the run text[start:start + length], in closed form"""
    bonus = BOUNDARY_BONUS if is_boundary(text, start) else 0
    return bonus + (length - 1) * CONSECUTIVE_BONUS - len(text) // LENGTH_PENALTY_STEP


def _substring_start(text: str, lowered: str, query: str, first: int) -> int:
    start = first
    while start != -1 and not is_boundary(text, start):
        start = lowered.find(query, start + 1)
    return first if start == -1 else start


def _scattered_positions(lowered: str, query: str) -> tuple[int, ...]:
    end = -1
    for ch in query:
        end = lowered.find(ch, end + 1)

    positions = []
    for ch in reversed(query):
        end = lowered.rfind(ch, 0, end + 1)
        positions.append(end)
        end -= 1
    positions.reverse()
    return tuple(positions)


def subsequence_pattern(query: str) -> re.Pattern:
    """Anchored regex accepting texts that contain `query` as a subsequence.

    Each `[^c]*c` step can only stop at the next `c`, so a failed match costs
    one pass over the text instead of backtracking through every split.
    """
    return re.compile("".join(f"[^{re.escape(ch)}]*{re.escape(ch)}" for ch in query))


def match(query: str, candidates: CandidateStore) -> MatchResult:
    """Rank the candidates matching `query`, best first.

    Ties keep CandidateStore order, so the more recent command wins. An empty
    query returns every candidate unscored, in recency order.
    """
    if not query:
        return [Match(i, 0, ()) for i in range(len(candidates))]

    folded = fold_case(query)
    size = len(folded)
    is_subsequence = subsequence_pattern(folded).match
    texts = candidates.commands

    results: MatchResult = []
    for i, lowered in enumerate(candidates.lowered):
        start = lowered.find(folded)
        if start != -1:
            text = texts[i]
            start = _substring_start(text, lowered, folded, start)
            results.append(Match(i, _contiguous_score(text, start, size), tuple(range(start, start + size))))
        elif size > 1 and is_subsequence(lowered):
            positions = _scattered_positions(lowered, folded)
            results.append(Match(i, score_positions(texts[i], positions), positions))

    # Stable: equal scores keep ascending index order
    results.sort(key=attrgetter("score"), reverse=True)
    return results
