"""
Repository for library health counters
"""

from sqlalchemy import or_
from db import db
from models.library import Library, Video, Performer, Tag, Studio


def _blank(column):
    return or_(column.is_(None), column == "")


class LibraryRepository:
    """Read-only queries used by the watcher and the companion monitor"""

    @staticmethod
    def get_all():
        return Library.query.order_by(Library.id).all()

    @staticmethod
    def create(name, path):
        item = Library(name=name, path=path)
        db.session.add(item)
        db.session.commit()
        return item

    @staticmethod
    def count_videos():
        return Video.query.count()

    @staticmethod
    def count_performers():
        return Performer.query.count()

    @staticmethod
    def count_tags():
        return Tag.query.count()

    @staticmethod
    def count_studios():
        return Studio.query.count()

    @staticmethod
    def count_videos_with_thumbnails():
        return Video.query.filter(~_blank(Video.thumbnail_path)).count()

    @staticmethod
    def count_videos_without_thumbnails():
        return Video.query.filter(_blank(Video.thumbnail_path)).count()

    @staticmethod
    def count_videos_without_previews():
        return Video.query.filter(_blank(Video.preview_path)).count()

    @staticmethod
    def count_videos_without_metadata():
        return Video.query.filter(or_(_blank(Video.metadata_json), Video.metadata_json == "{}")).count()

    @staticmethod
    def count_performers_with_thumbnails():
        return Performer.query.filter(~_blank(Performer.thumbnail_path)).count()

    @staticmethod
    def count_performers_with_previews():
        return Performer.query.filter(~_blank(Performer.preview_path)).count()

    @staticmethod
    def count_performers_preview_without_thumbnail():
        return Performer.query.filter(~_blank(Performer.preview_path), _blank(Performer.thumbnail_path)).count()

    @staticmethod
    def count_performers_without_metadata():
        return Performer.query.filter(
            or_(_blank(Performer.metadata_json), Performer.metadata_json == "{}"),
            Performer.category == "regular",
        ).count()
