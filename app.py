from functools import wraps

import requests
from flask import Flask, request, jsonify, abort
from flask_login import LoginManager, login_user, login_required, logout_user, current_user
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash, check_password_hash
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from config import Config
from errors import DemonlistError, ConflictError, ValidationError
from leaderboard import build_leaderboard, player_profile
from models import db, User, Level
from ranking import RankingEngine, as_id
from records import RecordService, is_video_url

# --------------------------------------------------------------------------------------
# App & Login
# --------------------------------------------------------------------------------------
app = Flask(__name__)
app.config.from_object(Config)

db.init_app(app)

login_manager = LoginManager(app)

# --------------------------------------------------------------------------------------
# Bootstrap DB + default admin
# --------------------------------------------------------------------------------------
with app.app_context():
    db.create_all()

    admin_email = app.config.get("ADMIN_EMAIL")
    admin_password = app.config.get("ADMIN_PASSWORD")
    if admin_email and admin_password and not User.query.filter_by(email=admin_email).first():
        db.session.add(User(
            name="Admin",
            email=admin_email,
            password_hash=generate_password_hash(admin_password),
            is_admin=True,
        ))
        db.session.commit()
        app.logger.info("Default admin %s created", admin_email)


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"message": "Unauthorized"}), 401

# --------------------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------------------
def ranking_engine() -> RankingEngine:
    return RankingEngine(
        db.session,
        app.config["LIST_CATEGORIES"],
        compact_on_delete=app.config.get("COMPACT_ON_DELETE", False),
    )


def record_service() -> RecordService:
    return RecordService(db.session)


def payload() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict()
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def admin_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated or not current_user.is_admin:
            abort(403)
        return fn(*args, **kwargs)
    return wrapper


def reviewer_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated or not current_user.can_review:
            abort(403)
        return fn(*args, **kwargs)
    return wrapper


def send_discord(message: str):
    """Optional Discord webhook notification."""
    url = app.config.get("DISCORD_WEBHOOK_URL")
    if not url:
        return
    try:
        body = {"content": message[:2000], "username": app.config.get("DISCORD_WEBHOOK_USERNAME") or "Demonlist Bot"}
        requests.post(url, json=body, timeout=5)
    except requests.RequestException as e:
        app.logger.warning("Discord webhook failed: %s", e)

# --------------------------------------------------------------------------------------
# Errors
# --------------------------------------------------------------------------------------
@app.errorhandler(DemonlistError)
def handle_demonlist_error(err):
    return jsonify(err.to_dict()), err.status_code


@app.errorhandler(SQLAlchemyError)
def handle_store_error(err):
    db.session.rollback()
    app.logger.error("Store failure: %s", err)
    return jsonify({"message": "Storage failure, reload the list and retry"}), 500


@app.errorhandler(HTTPException)
def handle_http_error(err):
    return jsonify({"message": err.description}), err.code

# --------------------------------------------------------------------------------------
# Public
# --------------------------------------------------------------------------------------
@app.get("/api/categories")
def categories():
    counts = dict(db.session.execute(
        select(Level.category, func.count(Level.id)).group_by(Level.category)
    ).all())
    return jsonify([
        {"name": name, "max_size": size, "count": counts.get(name, 0)}
        for name, size in app.config["LIST_CATEGORIES"].items()
    ])


@app.get("/api/levels")
def levels_list():
    category = request.args.get("category")
    if category in ("", "all"):
        category = None
    levels = ranking_engine().list_levels(category)
    return jsonify([lv.to_dict() for lv in levels])


@app.get("/api/levels/<int:level_id>")
def level_detail(level_id: int):
    return jsonify(ranking_engine().get_level(level_id).to_dict())


@app.get("/api/leaderboard")
def leaderboard():
    return jsonify(build_leaderboard(db.session))


@app.get("/api/players/<int:user_id>")
def player_detail(user_id: int):
    return jsonify(player_profile(db.session, user_id))

# --------------------------------------------------------------------------------------
# Auth
# --------------------------------------------------------------------------------------
@app.post("/register")
def register():
    data = payload()
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not (name and email and password):
        raise ValidationError("name, email and password are required")
    if len(password) < 8:
        raise ValidationError("password must be at least 8 characters", field="password")
    if User.query.filter_by(email=email).first():
        raise ConflictError("Email already in use", field="email")
    u = User(name=name, email=email, password_hash=generate_password_hash(password))
    db.session.add(u)
    db.session.commit()
    login_user(u)
    return jsonify(u.to_dict(private=True)), 201


@app.post("/login")
def login():
    data = payload()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    u = User.query.filter_by(email=email).first()
    if u and check_password_hash(u.password_hash, password):
        login_user(u)
        return jsonify(u.to_dict(private=True))
    return jsonify({"message": "Invalid email or password"}), 401


@app.post("/logout")
@login_required
def logout():
    logout_user()
    return jsonify({"message": "Logged out"})


@app.get("/api/auth/user")
@login_required
def auth_user():
    return jsonify(current_user.to_dict(private=True))


@app.patch("/api/auth/profile")
@login_required
def auth_profile_update():
    data = payload()
    if not ({"username", "name", "profile_image_url"} & set(data)):
        raise ValidationError("Nothing to update: send username or profile_image_url")

    changes = {}
    name = data.get("username", data.get("name"))
    if name is not None:
        if not isinstance(name, str) or not 3 <= len(name.strip()) <= 30:
            raise ValidationError("username must be 3 to 30 characters", field="username")
        changes["name"] = name.strip()

    if "profile_image_url" in data:
        image = data["profile_image_url"]
        if image in (None, ""):
            changes["profile_image_url"] = None
        elif is_video_url(image):
            changes["profile_image_url"] = image.strip()
        else:
            raise ValidationError("profile_image_url must be an http(s) URL", field="profile_image_url")

    for key, value in changes.items():
        setattr(current_user, key, value)
    db.session.commit()
    app.logger.info("User %s updated their profile", current_user.id)
    return jsonify(current_user.to_dict(private=True))

# --------------------------------------------------------------------------------------
# Records (players)
# --------------------------------------------------------------------------------------
@app.post("/api/records")
@login_required
def record_submit():
    data = payload()
    record = record_service().submit(current_user, data.get("level_id"), data.get("video_url"))
    level = record.level
    send_discord(f"[Demonlist] {current_user.name} submitted a record on {level.name} "
                 f"({level.category} #{level.position}). Review it in the admin queue.")
    return jsonify(record.to_dict()), 201


@app.get("/api/records/mine")
@login_required
def records_mine():
    records = record_service().list_records(user_id=current_user.id)
    return jsonify([dict(r.to_dict(), level=r.level.to_dict()) for r in records])

# --------------------------------------------------------------------------------------
# Admin - Records review (admins and moderators)
# --------------------------------------------------------------------------------------
@app.get("/api/admin/records")
@login_required
@reviewer_required
def admin_records():
    status = request.args.get("status") or None
    records = record_service().list_records(status=status)
    return jsonify([
        dict(r.to_dict(), user=r.user.to_dict(), level=r.level.to_dict())
        for r in records
    ])


@app.post("/api/admin/records/<int:record_id>/approve")
@login_required
@reviewer_required
def admin_record_approve(record_id: int):
    record = record_service().approve(record_id, current_user)
    return jsonify(record.to_dict())


@app.post("/api/admin/records/<int:record_id>/reject")
@login_required
@reviewer_required
def admin_record_reject(record_id: int):
    record = record_service().reject(record_id, current_user)
    return jsonify(record.to_dict())

# --------------------------------------------------------------------------------------
# Admin - Users & Levels
# --------------------------------------------------------------------------------------
@app.get("/api/admin/users")
@login_required
@admin_required
def admin_users():
    users = User.query.order_by(User.name.asc()).all()
    return jsonify([u.to_dict(private=True) for u in users])


@app.post("/api/admin/levels")
@login_required
@admin_required
def admin_level_create():
    data = payload()
    category = data.pop("category", None) or "main"
    position = data.pop("position", None)
    level = ranking_engine().insert_level(data, position, category)
    send_discord(f"[Demonlist] {level.name} placed at {category} #{level.position}.")
    return jsonify(level.to_dict()), 201


@app.patch("/api/admin/levels/<int:level_id>")
@login_required
@admin_required
def admin_level_update(level_id: int):
    level = ranking_engine().update_level(level_id, payload())
    return jsonify(level.to_dict())


@app.delete("/api/admin/levels/<int:level_id>")
@login_required
@admin_required
def admin_level_delete(level_id: int):
    ranking_engine().delete_level(level_id)
    return jsonify({"message": "Level deleted"})


@app.post("/api/admin/categories/<category>/reorder")
@login_required
@admin_required
def admin_category_reorder(category: str):
    data = payload()
    if "order" in data:
        # Shorthand: a full list of ids, top to bottom.
        order = data["order"]
        if not isinstance(order, list):
            raise ValidationError("order must be a list of level ids")
        assignments = [(as_id(level_id, "level id"), index) for index, level_id in enumerate(order, start=1)]
    else:
        assignments = data.get("assignments")
        if not isinstance(assignments, list):
            raise ValidationError("assignments must be a list of {id, position} objects")
    engine = ranking_engine()
    engine.reorder(category, assignments)
    return jsonify([lv.to_dict() for lv in engine.list_levels(category)])


@app.post("/api/admin/categories/<category>/compact")
@login_required
@admin_required
def admin_category_compact(category: str):
    levels = ranking_engine().compact(category)
    return jsonify([lv.to_dict() for lv in levels])


if __name__ == "__main__":
    app.run(debug=True)
