"""
Library models: watched roots plus the minimal media rows the companion
monitor counts. Full CRUD for these lives outside the pipeline.
"""

from db import db
from utils import now_utc, isoformat


class Library(db.Model):
    __tablename__ = "libraries"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    path = db.Column(db.String, unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=now_utc)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "created_at": isoformat(self.created_at),
        }


class Video(db.Model):
    __tablename__ = "videos"

    id = db.Column(db.Integer, primary_key=True)
    library_id = db.Column(db.Integer, db.ForeignKey("libraries.id", ondelete="CASCADE"), nullable=True)
    title = db.Column(db.String(500))
    file_path = db.Column(db.String, unique=True, nullable=False)
    thumbnail_path = db.Column(db.String)
    preview_path = db.Column(db.String)
    metadata_json = db.Column("metadata", db.Text)
    created_at = db.Column(db.DateTime, default=now_utc)


class Performer(db.Model):
    __tablename__ = "performers"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    category = db.Column(db.String(50), default="regular")
    thumbnail_path = db.Column(db.String)
    preview_path = db.Column(db.String)
    metadata_json = db.Column("metadata", db.Text)


class Tag(db.Model):
    __tablename__ = "tags"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)


class Studio(db.Model):
    __tablename__ = "studios"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), unique=True, nullable=False)
