"""
Bucketed spaced-repetition scheduling for flashcards.

Each card sits in one of four retention buckets. A correct review promotes it
one bucket (capped at the last), an incorrect review sends it back to the
first. A card becomes due again once the bucket's interval has passed since
its last review:

    bucket 1 -> 1 day, bucket 2 -> 3 days, bucket 3 -> 7 days, bucket 4 -> 14 days

Cards with a missing or invalid bucket or review time are always due, so a
malformed record is never silently skipped.
"""
import math
from typing import List, Optional, Sequence

from bson import ObjectId

from studyhub.core.clock import now_ms
from studyhub.models.flashcard import Flashcard

ONE_DAY_MS = 86_400_000
MIN_BUCKET = 1
MAX_BUCKET = 4
REVIEW_INTERVAL_DAYS = {1: 1, 2: 3, 3: 7, 4: 14}


def _valid_bucket(bucket) -> Optional[int]:
    if isinstance(bucket, bool) or not isinstance(bucket, int):
        return None
    if bucket < MIN_BUCKET or bucket > MAX_BUCKET:
        return None
    return bucket


def _valid_timestamp(value) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def normalize_bucket(bucket) -> int:
    """Bucket to use for a review; anything outside 1..4 counts as 1"""
    valid = _valid_bucket(bucket)
    return valid if valid is not None else MIN_BUCKET


def days_since_review(card: Flashcard, now: int) -> Optional[float]:
    last_review = _valid_timestamp(card.lastReview)
    if last_review is None:
        return None
    return (now - last_review) / ONE_DAY_MS


def is_due(card: Flashcard, now: int) -> bool:
    bucket = _valid_bucket(card.bucket)
    elapsed_days = days_since_review(card, now)
    if bucket is None or elapsed_days is None:
        return True
    return elapsed_days >= REVIEW_INTERVAL_DAYS[bucket]


def due_cards(deck: Sequence[Flashcard], now: int) -> List[Flashcard]:
    """Cards of ``deck`` due for review at ``now``, in deck order"""
    return [card for card in deck if is_due(card, now)]


def apply_review(card: Flashcard, correct: bool, now: Optional[int] = None) -> Flashcard:
    """Return ``card`` moved to its next bucket for the review outcome"""
    bucket = normalize_bucket(card.bucket)
    new_bucket = min(bucket + 1, MAX_BUCKET) if correct else MIN_BUCKET
    reviewed_at = now if now is not None else now_ms()
    return card.model_copy(update={"bucket": new_bucket, "lastReview": reviewed_at})


def new_card(front: str, back: str, now: Optional[int] = None) -> Flashcard:
    return Flashcard(
        id=str(ObjectId()),
        front=front,
        back=back,
        bucket=MIN_BUCKET,
        lastReview=now if now is not None else now_ms(),
    )
