from app import app, db, User, ranking_engine
from werkzeug.security import generate_password_hash

players = [
    ("Alice",   "alice@test.com"),
    ("Bob",     "bob@test.com"),
    ("Charlie", "charlie@test.com"),
    ("Diana",   "diana@test.com"),
    ("Ethan",   "ethan@test.com"),
]

# (name, creator, verifier name, difficulty), top of the main list first
levels = [
    ("Tidal Wave",     "OniLinkGD",   "Zoink",    "Extreme"),
    ("Acheron",        "Ryamu",       "Zoink",    "Extreme"),
    ("Slaughterhouse", "icedcave",    "Alice",    "Extreme"),
    ("Abyss of Darkness", "Exen",     "Bob",      "Insane"),
    ("Bloodbath",      "Riot",        "Charlie",  "Hard"),
    ("Sonic Wave",     "Cyclic",      "Diana",    "Medium"),
]

with app.app_context():
    for name, email in players:
        if not User.query.filter_by(email=email).first():
            db.session.add(User(
                name=name,
                email=email,
                password_hash=generate_password_hash("test1234"),
            ))
    db.session.commit()

    engine = ranking_engine()
    if engine.list_levels("main"):
        print("[OK] main list already has levels, nothing to seed.")
    else:
        for position, (name, creator, verifier, difficulty) in enumerate(levels, start=1):
            verifier_user = User.query.filter_by(name=verifier).first()
            engine.insert_level(
                {
                    "name": name,
                    "creator": creator,
                    "verifier": verifier,
                    "verifier_id": verifier_user.id if verifier_user else None,
                    "difficulty": difficulty,
                },
                position,
                "main",
            )
        print(f"✅ {len(players)} players and {len(levels)} main list levels added (password = test1234)")
