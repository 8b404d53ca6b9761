import logging
from typing import Dict, List, Sequence

from studyhub.models.room import LeaderboardEntry, Quiz, QuizAnswer, RoomUser

logger = logging.getLogger(__name__)


def answers_by_user(quiz: Quiz) -> Dict[str, QuizAnswer]:
    """First answer per user; later duplicates are ignored"""
    answers: Dict[str, QuizAnswer] = {}
    for answer in quiz.answers:
        answers.setdefault(answer.userId, answer)
    return answers


def is_quiz_complete(quiz: Quiz, roster: Sequence[RoomUser]) -> bool:
    """True once every participant currently in the room has answered.

    Answers from people who have already left do not count towards the
    threshold, and nobody left in the room means nothing to wait for.
    """
    if not roster:
        return False
    answered = answers_by_user(quiz)
    return all(user.email in answered for user in roster)


def score_quiz(quiz: Quiz, roster: Sequence[RoomUser]) -> List[LeaderboardEntry]:
    """
    Score every current participant against the quiz.
    Returns entries with correct answers first, earliest answer first within a group
    """
    answered = answers_by_user(quiz)

    leaderboard = []
    for user in roster:
        answer = answered.get(user.email)
        leaderboard.append(LeaderboardEntry(
            email=user.email,
            displayName=user.displayName,
            answered=answer is not None,
            answerIndex=answer.answerIndex if answer else None,
            isCorrect=bool(answer) and answer.answerIndex == quiz.correctOptionIndex,
        ))

    def sort_key(entry: LeaderboardEntry):
        answer = answered.get(entry.email)
        return (not entry.isCorrect, answer.timestamp if answer else float("inf"), entry.displayName)

    leaderboard.sort(key=sort_key)

    # Add position/rank
    for idx, entry in enumerate(leaderboard):
        entry.position = idx + 1

    logger.debug(f"Quiz {quiz.id} leaderboard: {len(leaderboard)} participants")
    return leaderboard
