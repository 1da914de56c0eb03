"""Player leaderboard built from approved records and verifications."""

from sqlalchemy import func, select

from errors import NotFoundError
from models import Level, Record, User
from ranking import as_id


def _completion_totals(session) -> dict:
    # One row per (user, level): a second approved record on the same level scores nothing.
    cleared = (
        select(Record.user_id, Level.id.label("level_id"), Level.points)
        .join(Level, Record.level_id == Level.id)
        .where(Record.status == "approved")
        .distinct()
        .subquery()
    )
    rows = session.execute(
        select(cleared.c.user_id, func.sum(cleared.c.points), func.count(cleared.c.level_id))
        .group_by(cleared.c.user_id)
    )
    return {user_id: (int(points or 0), int(count)) for user_id, points, count in rows}


def _verifier_totals(session) -> dict:
    rows = session.execute(
        select(Level.verifier_id, func.sum(Level.points))
        .where(Level.verifier_id.is_not(None))
        .group_by(Level.verifier_id)
    )
    return {user_id: int(points or 0) for user_id, points in rows}


def build_leaderboard(session) -> list:
    """Ranked entries, best total first; users with 0 points are left out."""
    completions = _completion_totals(session)
    verifications = _verifier_totals(session)
    user_ids = set(completions) | set(verifications)
    if not user_ids:
        return []
    users = {u.id: u for u in session.scalars(select(User).where(User.id.in_(user_ids)))}

    entries = []
    for user_id in user_ids:
        completion_points, cleared = completions.get(user_id, (0, 0))
        verifier_points = verifications.get(user_id, 0)
        total = completion_points + verifier_points
        if total <= 0 or user_id not in users:
            continue
        entries.append({
            "user": users[user_id].to_dict(),
            "points": total,
            "completion_points": completion_points,
            "verifier_points": verifier_points,
            "completions": cleared,
        })

    entries.sort(key=lambda e: (-e["points"], e["user"]["id"]))
    for rank, entry in enumerate(entries, start=1):
        entry["rank"] = rank
    return entries


def player_profile(session, user_id) -> dict:
    user = session.get(User, as_id(user_id, "user id"))
    if user is None:
        raise NotFoundError(f"User {user_id} not found", user_id=user_id)

    entry = next((e for e in build_leaderboard(session) if e["user"]["id"] == user.id), None)
    approved = session.scalars(
        select(Record)
        .where(Record.user_id == user.id, Record.status == "approved")
        .order_by(Record.reviewed_at.desc())
    )
    verified = session.scalars(
        select(Level).where(Level.verifier_id == user.id).order_by(Level.category, Level.position)
    )
    return {
        "user": user.to_dict(),
        "rank": entry["rank"] if entry else None,
        "points": entry["points"] if entry else 0,
        "completion_points": entry["completion_points"] if entry else 0,
        "verifier_points": entry["verifier_points"] if entry else 0,
        "records": [dict(r.to_dict(), level=r.level.to_dict()) for r in approved],
        "verified": [lv.to_dict() for lv in verified],
    }
