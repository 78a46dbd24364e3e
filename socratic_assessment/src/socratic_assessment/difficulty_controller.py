"""
Difficulty Controller

Moves question difficulty one step up after a correct answer and one step
down after an incorrect one, clamped to the 1-5 range.
"""

from socratic_assessment.config import MAX_DIFFICULTY, MIN_DIFFICULTY


def clamp_difficulty(level: int) -> int:
    """Clamp a difficulty level to [1, 5]."""
    return max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, int(level)))


def next_difficulty(current: int, correct: bool) -> int:
    """
    Compute the difficulty for the next question.

    Args:
        current: Difficulty of the question just answered (1-5)
        correct: Whether the answer was graded correct

    Returns:
        New difficulty, never below 1 or above 5
    """
    step = 1 if correct else -1
    return clamp_difficulty(clamp_difficulty(current) + step)
