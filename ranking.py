"""Ranking engine: keeps each list category's positions unique and in sync with points.

Positions are unique per category at the store level
(``uq_level_category_position``), so every write is ordered so that no two
rows ever share a ``(category, position)`` pair, even inside a transaction:

* inserts shift the tail of the category one row at a time, highest first;
* reorders first park every moving row on a distinct negative position, then
  write the final positions.

Mutations of one category are serialised: a process-local lock per category,
plus ``pg_advisory_xact_lock`` when the store is PostgreSQL. The lock is held
until the transaction commits or rolls back.
"""

import logging
import threading
import zlib
from contextlib import contextmanager

from sqlalchemy import select, text

from errors import NotFoundError, ValidationError
from models import DIFFICULTIES, Level, User
from points import category_max_size, points_for_position

log = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "creator", "verifier", "verifier_id", "difficulty", "video_url")
REQUIRED_FIELDS = ("name", "creator", "difficulty")

_locks = {}
_locks_guard = threading.Lock()


def _category_lock(category: str) -> threading.RLock:
    with _locks_guard:
        return _locks.setdefault(category, threading.RLock())


def _advisory_key(category: str) -> int:
    return zlib.crc32(f"levels:{category}".encode("utf-8"))


def as_position(value, label: str = "position") -> int:
    """Coerce a client-supplied position to a positive int or raise ValidationError."""
    if isinstance(value, bool):
        value = None
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        try:
            value = int(value)
        except ValueError:
            raise ValidationError(f"{label} must be an integer", value=value) from None
    if not isinstance(value, int):
        raise ValidationError(f"{label} must be an integer", value=value)
    if value < 1:
        raise ValidationError(f"{label} must be a positive integer", value=value)
    return value


def as_id(value, label: str = "id") -> int:
    if isinstance(value, bool):
        value = None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be an integer", value=value) from None


class RankingEngine:
    def __init__(self, session, categories: dict, compact_on_delete: bool = False):
        self.session = session
        self.categories = categories
        self.compact_on_delete = compact_on_delete

    # ---------------------------------------------------------------- reads

    def list_levels(self, category=None) -> list:
        stmt = select(Level)
        if category is not None:
            category_max_size(self.categories, category)
            stmt = stmt.where(Level.category == category)
        stmt = stmt.order_by(Level.category, Level.position)
        return list(self.session.scalars(stmt))

    def get_level(self, level_id) -> Level:
        level = self.session.get(Level, as_id(level_id, "level id"))
        if level is None:
            raise NotFoundError(f"Level {level_id} not found", level_id=level_id)
        return level

    # ------------------------------------------------------------ mutations

    def insert_level(self, fields: dict, position, category: str) -> Level:
        """Store a new level at ``position``, pushing everything at or below it down one."""
        max_size = category_max_size(self.categories, category)
        position = as_position(position)
        cleaned = self._clean_fields(fields, partial=False)

        with self._locked(category):
            levels = self._category_levels(category)
            if position > len(levels) + 1:
                raise ValidationError(
                    f"position must be between 1 and {len(levels) + 1} for {category!r}",
                    position=position,
                )
            shifted = [lv for lv in reversed(levels) if lv.position >= position]
            for lv in shifted:
                lv.position += 1
                lv.points = points_for_position(lv.position, max_size)
                self.session.flush()

            level = Level(
                category=category,
                position=position,
                points=points_for_position(position, max_size),
                **cleaned,
            )
            self.session.add(level)
            self.session.flush()

        log.info("Inserted level %s at %s#%d, %d shifted", level.id, category, position, len(shifted))
        return level

    def reorder(self, category: str, assignments) -> list:
        """Apply ``(level_id, position)`` pairs to ``category`` in one transaction.

        Levels not named keep their position. The caller supplies targets
        that leave the category dense; targets colliding with an untouched
        level are refused before anything is written.

        Repeating the current positions writes nothing, as long as the
        category is dense. Targets are bounded by the level count, so in a
        category left with a gap by a delete, a target past N is refused
        even if it is the level's current position; run ``compact`` first.
        """
        max_size = category_max_size(self.categories, category)
        pairs = self._clean_assignments(assignments)

        with self._locked(category):
            by_id = {lv.id: lv for lv in self._category_levels(category)}
            self._check_assignments(category, by_id, pairs)
            moves = [(by_id[level_id], target) for level_id, target in pairs]
            self._apply(moves, max_size)

        log.info("Reordered %d level(s) in %s", len(pairs), category)
        return [lv for lv, _ in moves]

    def move_level(self, level_id, new_position) -> Level:
        level = self.get_level(level_id)
        new_position = as_position(new_position)
        with self._locked(level.category):
            self._move(level, new_position)
        return level

    def update_level(self, level_id, fields: dict) -> Level:
        """Edit descriptive fields; a ``position`` key moves the level."""
        level = self.get_level(level_id)
        fields = dict(fields)
        category = fields.pop("category", level.category)
        if category != level.category:
            raise ValidationError("A level cannot change category; delete and re-insert it instead")
        position = fields.pop("position", None)
        if position is not None:
            position = as_position(position)
        cleaned = self._clean_fields(fields, partial=True)

        with self._locked(level.category):
            for key, value in cleaned.items():
                setattr(level, key, value)
            self.session.flush()
            if position is not None:
                self._move(level, position)

        log.info("Updated level %s (%s)", level.id, ", ".join(sorted(cleaned)) or "position")
        return level

    def delete_level(self, level_id) -> None:
        """Remove a level and its records. The category keeps the gap unless compact_on_delete."""
        level = self.get_level(level_id)
        category = level.category
        with self._locked(category):
            position = level.position
            self.session.delete(level)
            self.session.flush()
            if self.compact_on_delete:
                self._compact(category)
        log.info("Deleted level %s from %s#%d", level_id, category, position)

    def compact(self, category: str) -> list:
        """Renumber ``category`` to 1..N in its current order and refresh points."""
        category_max_size(self.categories, category)
        with self._locked(category):
            levels = self._compact(category)
        log.info("Compacted %s (%d levels)", category, len(levels))
        return levels

    # ------------------------------------------------------------- internals

    @contextmanager
    def _locked(self, category: str):
        with _category_lock(category):
            try:
                if self.session.get_bind().dialect.name == "postgresql":
                    self.session.execute(
                        text("SELECT pg_advisory_xact_lock(:key)"),
                        {"key": _advisory_key(category)},
                    )
                yield
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

    def _category_levels(self, category: str) -> list:
        stmt = (
            select(Level)
            .where(Level.category == category)
            .order_by(Level.position)
            .execution_options(populate_existing=True)
        )
        return list(self.session.scalars(stmt))

    def _move(self, level: Level, new_position: int) -> None:
        levels = self._category_levels(level.category)
        last = max(len(levels), levels[-1].position)
        if new_position > last:
            raise ValidationError(
                f"position must be between 1 and {last} for {level.category!r}",
                position=new_position,
            )
        old = level.position
        if new_position < old:
            moves = [(lv, lv.position + 1) for lv in levels if new_position <= lv.position < old]
        else:
            moves = [(lv, lv.position - 1) for lv in levels if old < lv.position <= new_position]
        moves.append((level, new_position))
        self._apply(moves, category_max_size(self.categories, level.category))

    def _compact(self, category: str) -> list:
        levels = self._category_levels(category)
        self._apply(
            [(lv, index) for index, lv in enumerate(levels, start=1)],
            category_max_size(self.categories, category),
        )
        return levels

    def _apply(self, moves: list, max_size: int) -> None:
        # Park the rows that actually move on -1, -2, ... so the final writes
        # never land on a position still held by another row.
        parked = [lv for lv, target in moves if lv.position != target]
        for slot, lv in enumerate(parked, start=1):
            lv.position = -slot
        if parked:
            self.session.flush()

        for lv, target in moves:
            points = points_for_position(target, max_size)
            if lv.position != target:
                lv.position = target
            if lv.points != points:
                lv.points = points
        self.session.flush()

    def _clean_assignments(self, assignments) -> list:
        pairs = []
        for item in assignments:
            if isinstance(item, dict):
                level_id, target = item.get("id"), item.get("position")
            else:
                try:
                    level_id, target = item
                except (TypeError, ValueError):
                    raise ValidationError("Each assignment must be an (id, position) pair") from None
            pairs.append((as_id(level_id, "level id"), as_position(target)))
        if not pairs:
            raise ValidationError("No assignments given")

        ids = [level_id for level_id, _ in pairs]
        if len(set(ids)) != len(ids):
            raise ValidationError("A level appears more than once in the assignments")
        targets = [target for _, target in pairs]
        if len(set(targets)) != len(targets):
            raise ValidationError("Two levels were assigned the same position")
        return pairs

    def _check_assignments(self, category: str, by_id: dict, pairs: list) -> None:
        for level_id, _ in pairs:
            if level_id in by_id:
                continue
            if self.session.get(Level, level_id) is None:
                raise NotFoundError(f"Level {level_id} not found", level_id=level_id)
            raise ValidationError(f"Level {level_id} is not in {category!r}", level_id=level_id)

        size = len(by_id)
        too_far = [target for _, target in pairs if target > size]
        if too_far:
            raise ValidationError(f"positions must be between 1 and {size} for {category!r}", positions=too_far)

        named = {level_id for level_id, _ in pairs}
        held = {lv.position for level_id, lv in by_id.items() if level_id not in named}
        taken = sorted(target for _, target in pairs if target in held)
        if taken:
            raise ValidationError("positions already held by levels not being reordered", positions=taken)

    def _clean_fields(self, fields: dict, partial: bool) -> dict:
        if "points" in fields:
            raise ValidationError("points follow from the position and cannot be set directly")
        unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown level field(s): {', '.join(unknown)}", fields=unknown)

        cleaned = {}
        for key in EDITABLE_FIELDS:
            if key not in fields:
                continue
            value = fields[key]
            if key == "verifier_id":
                if value in (None, ""):
                    value = None
                else:
                    value = as_id(value, "verifier_id")
                    if self.session.get(User, value) is None:
                        raise NotFoundError(f"User {value} not found", user_id=value)
            elif value is not None:
                if not isinstance(value, str):
                    raise ValidationError(f"{key} must be a string", field=key)
                value = value.strip() or None
            cleaned[key] = value

        for key in REQUIRED_FIELDS:
            if (not partial or key in cleaned) and not cleaned.get(key):
                raise ValidationError(f"{key} is required", field=key)
        if "difficulty" in cleaned and cleaned["difficulty"] not in DIFFICULTIES:
            raise ValidationError(
                f"difficulty must be one of {', '.join(DIFFICULTIES)}",
                field="difficulty",
            )
        return cleaned
