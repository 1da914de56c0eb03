import os


def parse_categories(raw: str) -> dict:
    """Parse ``"main:200,challenge:100"`` into ``{"main": 200, "challenge": 100}``."""
    categories = {}
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        name, _, size = chunk.partition(":")
        categories[name.strip()] = int(size) if size.strip() else 200
    return categories


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")

    # ---- DB: accept Render's "postgres://" and rewrite it to "postgresql://" for SQLAlchemy
    _db_url = os.getenv("DATABASE_URL", "sqlite:///demonlist.db")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # List categories and their maximum ranked size (positions past it earn 0 points)
    LIST_CATEGORIES = parse_categories(
        os.getenv("LIST_CATEGORIES", "main:200,challenge:100,unrated:200,upcoming:200")
    )
    COMPACT_ON_DELETE = os.getenv("COMPACT_ON_DELETE", "0") == "1"

    # Discord
    DISCORD_WEBHOOK_URL = os.getenv("DISCORD_WEBHOOK_URL")
    DISCORD_WEBHOOK_USERNAME = os.getenv("DISCORD_WEBHOOK_USERNAME", "Demonlist Bot")

    ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")
    ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "")
