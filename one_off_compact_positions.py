# one_off_compact_positions.py
"""
Renumbers every list category (or the ones named on the command line) to 1..N
and refreshes the points, e.g. after deletes or after changing LIST_CATEGORIES.
Safe to run repeatedly (no-op when already dense).
"""

import sys

from app import app, ranking_engine

with app.app_context():
    engine = ranking_engine()
    categories = sys.argv[1:] or list(app.config["LIST_CATEGORIES"])
    for category in categories:
        before = [(lv.id, lv.position, lv.points) for lv in engine.list_levels(category)]
        levels = engine.compact(category)
        after = [(lv.id, lv.position, lv.points) for lv in levels]
        if before == after:
            print(f"[OK] {category}: already dense ({len(levels)} levels).")
        else:
            print(f"[OK] {category}: renumbered 1..{len(levels)}.")
