import math

MAX_POINTS = 1000
MIN_CORRECT_POINTS = 500


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_points(is_correct: bool, time_taken: float, time_limit: float) -> int:
    """Points for one answer.

    Wrong answers score nothing. Correct answers lose up to half of
    ``MAX_POINTS`` linearly over the time limit and never drop below
    ``MIN_CORRECT_POINTS``, even when the answer arrives after the limit.
    """
    if time_limit <= 0:
        raise ValueError("time_limit must be positive")
    if not is_correct:
        return 0

    ratio = max(0.0, time_taken) / time_limit
    raw = MAX_POINTS - ratio * (MAX_POINTS - MIN_CORRECT_POINTS)
    return max(MIN_CORRECT_POINTS, _round_half_up(raw))
