from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple


PRICE_WEIGHT = 0.7
LEAD_TIME_WEIGHT = 0.2
PAYMENT_WEIGHT = 0.1

NEUTRAL_SCORE = 50.0
LEAD_TIME_SENTINEL_DAYS = 999
MIN_QUOTATIONS_FOR_SCORING = 2

# First match wins, checked against lower-cased free text.
PAYMENT_TERM_SCORES: Tuple[Tuple[Tuple[str, ...], float], ...] = (
    (("cod", "cash on delivery"), 50.0),
    (("net 30", "30 days"), 80.0),
    (("net 60", "60 days"), 60.0),
    (("net 90", "90 days"), 40.0),
    (("advance", "prepaid"), 30.0),
)


@dataclass(frozen=True)
class ScoringCandidate:
    quotation_id: int
    total_amount: float
    lead_time_days: int | None = None
    payment_terms: str | None = None


@dataclass(frozen=True)
class ScoreBreakdown:
    quotation_id: int
    price_score: float
    lead_time_score: float
    payment_score: float
    total: float


def payment_terms_score(terms: str | None) -> float:
    normalized = str(terms or "").strip().lower()
    if not normalized:
        return NEUTRAL_SCORE
    for markers, score in PAYMENT_TERM_SCORES:
        if any(marker in normalized for marker in markers):
            return score
    return NEUTRAL_SCORE


def relative_score(value: float, best: float) -> float:
    if best <= 0 or value <= 0:
        return NEUTRAL_SCORE
    return max(0.0, 100.0 - ((value - best) / best) * 100.0)


def _effective_lead_time(lead_time_days: int | None) -> int:
    if lead_time_days is None or int(lead_time_days) <= 0:
        return LEAD_TIME_SENTINEL_DAYS
    return int(lead_time_days)


def score_candidates(candidates: Sequence[ScoringCandidate]) -> List[ScoreBreakdown]:
    """Score a quotation set; fewer than two candidates yields no scores."""
    if len(candidates) < MIN_QUOTATIONS_FOR_SCORING:
        return []

    lowest_price = min(float(candidate.total_amount) for candidate in candidates)
    shortest_lead_time = min(_effective_lead_time(candidate.lead_time_days) for candidate in candidates)

    results: List[ScoreBreakdown] = []
    for candidate in candidates:
        price_score = relative_score(float(candidate.total_amount), lowest_price)
        lead_time_score = relative_score(_effective_lead_time(candidate.lead_time_days), shortest_lead_time)
        payment_score = payment_terms_score(candidate.payment_terms)
        total = PRICE_WEIGHT * price_score + LEAD_TIME_WEIGHT * lead_time_score + PAYMENT_WEIGHT * payment_score
        results.append(
            ScoreBreakdown(
                quotation_id=candidate.quotation_id,
                price_score=round(price_score, 2),
                lead_time_score=round(lead_time_score, 2),
                payment_score=round(payment_score, 2),
                total=round(total, 2),
            )
        )
    return results


def recommended_quotation_id(scores: Sequence[ScoreBreakdown]) -> int | None:
    """Strict maximum in the given order; on ties the earliest entry wins."""
    best: ScoreBreakdown | None = None
    for breakdown in scores:
        if best is None or breakdown.total > best.total:
            best = breakdown
    return best.quotation_id if best else None
