"""Position → points curve.

Position 1 is worth ``MAX_POINTS``, position ``M`` (the category's ranked
size) is worth ``MIN_POINTS`` and everything in between is linearly
interpolated. Positions outside ``1..M`` are worth nothing.

Halves round up. The value is computed on integers so that positions landing
exactly on ``.5`` are not at the mercy of float error.
"""

from errors import ValidationError

MAX_POINTS = 300
MIN_POINTS = 1


def points_for_position(position: int, max_size: int) -> int:
    if position < 1 or position > max_size:
        return 0
    if position == 1:
        return MAX_POINTS
    if position == max_size:
        return MIN_POINTS
    span = max_size - 1
    # 300 - (position - 1) * 299 / span, as numerator / span
    numerator = MAX_POINTS * span - (position - 1) * (MAX_POINTS - MIN_POINTS)
    return (2 * numerator + span) // (2 * span)


def category_max_size(categories: dict, category: str) -> int:
    if not isinstance(category, str) or category not in categories:
        raise ValidationError(f"Unknown list category: {category!r}", category=category)
    return categories[category]
