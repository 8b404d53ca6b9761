from pydantic import BaseModel
from typing import List, Optional

class Flashcard(BaseModel):
    id: str
    front: str
    back: str
    # Retention bucket 1..4; anything else is treated as a fresh card
    bucket: Optional[int] = 1
    # Epoch milliseconds of the last review outcome
    lastReview: Optional[float] = None

class FlashcardDraft(BaseModel):
    front: str
    back: str

class GenerateFlashcardsRequest(BaseModel):
    text: str

class ReviewRequest(BaseModel):
    correct: bool

class FlashcardDeckResponse(BaseModel):
    success: bool
    data: List[Flashcard]
    count: int

class FlashcardReviewResponse(BaseModel):
    success: bool
    data: Flashcard
