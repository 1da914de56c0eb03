from datetime import datetime
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin

db = SQLAlchemy()

DIFFICULTIES = ("Easy", "Medium", "Hard", "Insane", "Extreme")
RECORD_STATUSES = ("pending", "approved", "rejected")


def _iso(value):
    return value.isoformat() if value else None


class User(db.Model, UserMixin):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    is_moderator = db.Column(db.Boolean, nullable=False, default=False)
    profile_image_url = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    records = db.relationship(
        "Record",
        foreign_keys="Record.user_id",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    @property
    def can_review(self) -> bool:
        return bool(self.is_admin or self.is_moderator)

    def to_dict(self, private: bool = False) -> dict:
        out = {
            "id": self.id,
            "name": self.name,
            "profile_image_url": self.profile_image_url,
            "is_admin": self.is_admin,
            "is_moderator": self.is_moderator,
        }
        if private:
            out["email"] = self.email
            out["created_at"] = _iso(self.created_at)
        return out


class Level(db.Model):
    __tablename__ = "levels"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    creator = db.Column(db.String(255), nullable=False)
    verifier = db.Column(db.String(255))
    verifier_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="SET NULL"), index=True)
    category = db.Column(db.String(50), nullable=False, default="main", index=True)
    difficulty = db.Column(db.String(20), nullable=False)  # Easy, Medium, Hard, Insane, Extreme
    position = db.Column(db.Integer, nullable=False)  # 1..N inside the category, negative only mid-reorder
    points = db.Column(db.Integer, nullable=False, default=0)  # cached curve value, see points.py
    video_url = db.Column(db.String(500))
    completion_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint("category", "position", name="uq_level_category_position"),)

    records = db.relationship("Record", back_populates="level", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "creator": self.creator,
            "verifier": self.verifier,
            "verifier_id": self.verifier_id,
            "category": self.category,
            "difficulty": self.difficulty,
            "position": self.position,
            "points": self.points,
            "video_url": self.video_url,
            "completion_count": self.completion_count,
        }

    def __repr__(self):
        return f"<Level {self.category}#{self.position} {self.name}>"


class Record(db.Model):
    __tablename__ = "records"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    level_id = db.Column(db.Integer, db.ForeignKey("levels.id", ondelete="CASCADE"), nullable=False, index=True)
    video_url = db.Column(db.String(500), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending")  # pending, approved, rejected
    submitted_at = db.Column(db.DateTime, default=datetime.utcnow)
    reviewed_at = db.Column(db.DateTime, nullable=True)
    reviewed_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)

    # At most one pending or approved record per player and level
    __table_args__ = (
        db.Index(
            "uq_record_open",
            "user_id",
            "level_id",
            unique=True,
            sqlite_where=db.text("status IN ('pending', 'approved')"),
            postgresql_where=db.text("status IN ('pending', 'approved')"),
        ),
    )

    user = db.relationship("User", foreign_keys=[user_id], back_populates="records")
    level = db.relationship("Level", back_populates="records")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "level_id": self.level_id,
            "video_url": self.video_url,
            "status": self.status,
            "submitted_at": _iso(self.submitted_at),
            "reviewed_at": _iso(self.reviewed_at),
            "reviewed_by": self.reviewed_by,
        }
