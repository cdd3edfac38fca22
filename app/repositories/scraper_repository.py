"""
Repository for scraped threads, posts and download links

Writes are upserts keyed by the natural keys of each table, so running the
same scrape twice converges on the same rows.
"""

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from db import db
from models.scraper import ScrapedThread, ScrapedPost, DownloadLink, LinkStatus
from utils import now_utc


THREAD_SORTS = {
    "date_desc": ScrapedThread.last_scraped_at.desc(),
    "date_asc": ScrapedThread.last_scraped_at.asc(),
    "title_asc": func.lower(ScrapedThread.title).asc(),
    "title_desc": func.lower(ScrapedThread.title).desc(),
    "views_desc": func.coalesce(ScrapedThread.view_count, 0).desc(),
    "views_asc": func.coalesce(ScrapedThread.view_count, 0).asc(),
    "replies_desc": func.coalesce(ScrapedThread.reply_count, 0).desc(),
    "downloads_desc": func.coalesce(ScrapedThread.download_count, 0).desc(),
}


class ScraperRepository:
    """Thread, post and link persistence"""

    # --- threads ---

    @staticmethod
    def get_thread(id):
        return db.session.get(ScrapedThread, id)

    @staticmethod
    def get_thread_by_external_id(external_id, source):
        return ScrapedThread.query.filter_by(external_id=external_id, source=source).first()

    @staticmethod
    def upsert_thread(external_id, source, **fields):
        """Insert or update a thread. Returns (thread, created)."""
        try:
            thread = ScrapedThread.query.filter_by(external_id=external_id, source=source).first()
            created = thread is None
            now = now_utc()
            if created:
                thread = ScrapedThread(
                    external_id=external_id, source=source, first_scraped_at=now, last_scraped_at=now
                )
                db.session.add(thread)

            for key, value in fields.items():
                if hasattr(thread, key):
                    setattr(thread, key, value)
            thread.last_updated_at = now

            db.session.commit()
            return thread, created
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def refresh_thread_counts(thread_id):
        """Recompute post_count and download_count from stored rows"""
        try:
            thread = db.session.get(ScrapedThread, thread_id)
            if not thread:
                return None
            thread.post_count = ScrapedPost.query.filter_by(thread_id=thread_id).count()
            thread.download_count = DownloadLink.query.filter_by(thread_id=thread_id).count()
            db.session.commit()
            return thread
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def mark_thread_complete(thread_id, reply_count):
        """Record the reply count a full page walk has caught up with"""
        try:
            thread = db.session.get(ScrapedThread, thread_id)
            if not thread:
                return None
            thread.reply_count = reply_count
            thread.last_scraped_at = now_utc()
            db.session.commit()
            return thread
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def list_threads(limit=50, offset=0, sort_by="date_desc", provider=None, filter=None, search=None):
        """Returns (threads, total)"""
        query = ScrapedThread.query
        if provider:
            link_threads = db.session.query(DownloadLink.thread_id).filter(DownloadLink.provider == provider)
            query = query.filter(ScrapedThread.id.in_(link_threads))
        if filter == "has_downloads":
            query = query.filter(ScrapedThread.download_count > 0)
        elif filter == "no_downloads":
            query = query.filter(func.coalesce(ScrapedThread.download_count, 0) == 0)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(ScrapedThread.title.ilike(pattern), ScrapedThread.author.ilike(pattern)))

        total = query.count()
        order = THREAD_SORTS.get(sort_by, THREAD_SORTS["date_desc"])
        threads = query.order_by(order, ScrapedThread.id.desc()).offset(offset).limit(limit).all()
        return threads, total

    @staticmethod
    def search_threads(text, limit=50, offset=0):
        """Title, author or post text match. Returns (threads, total)"""
        pattern = f"%{text}%"
        post_threads = db.session.query(ScrapedPost.thread_id).filter(ScrapedPost.plain_text.ilike(pattern))
        query = ScrapedThread.query.filter(
            or_(
                ScrapedThread.title.ilike(pattern),
                ScrapedThread.author.ilike(pattern),
                ScrapedThread.id.in_(post_threads),
            )
        )
        total = query.count()
        threads = query.order_by(ScrapedThread.last_scraped_at.desc()).offset(offset).limit(limit).all()
        return threads, total

    @staticmethod
    def delete_threads(ids):
        """Delete threads with their posts and links in one transaction. Returns count."""
        try:
            DownloadLink.query.filter(DownloadLink.thread_id.in_(ids)).delete(synchronize_session=False)
            ScrapedPost.query.filter(ScrapedPost.thread_id.in_(ids)).delete(synchronize_session=False)
            count = ScrapedThread.query.filter(ScrapedThread.id.in_(ids)).delete(synchronize_session=False)
            db.session.commit()
            return count
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    # --- posts ---

    @staticmethod
    def upsert_post(external_id, source, thread_id, **fields):
        """Insert or refresh a post. Returns (post, created)."""
        try:
            post = ScrapedPost.query.filter_by(external_id=external_id, source=source).first()
            created = post is None
            if created:
                post = ScrapedPost(external_id=external_id, source=source, thread_id=thread_id)
                db.session.add(post)

            for key, value in fields.items():
                if hasattr(post, key):
                    setattr(post, key, value)
            post.scraped_at = now_utc()

            db.session.commit()
            return post, created
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def get_posts(thread_id):
        return ScrapedPost.query.filter_by(thread_id=thread_id).order_by(ScrapedPost.post_number.asc()).all()

    # --- links ---

    @staticmethod
    def add_link(url, source, thread_id, post_id, provider):
        """Insert a link unless (url, source) exists. Returns (link, created)."""
        try:
            link = DownloadLink.query.filter_by(url=url, source=source).first()
            if link is not None:
                return link, False

            link = DownloadLink(
                url=url,
                source=source,
                thread_id=thread_id,
                post_id=post_id,
                provider=provider,
                status=LinkStatus.ACTIVE,
                discovered_at=now_utc(),
            )
            db.session.add(link)
            db.session.commit()
            return link, True
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def get_link(id):
        return db.session.get(DownloadLink, id)

    @staticmethod
    def get_links(thread_id):
        return DownloadLink.query.filter_by(thread_id=thread_id).order_by(DownloadLink.id.asc()).all()

    @staticmethod
    def set_link_status(link_id, status):
        try:
            link = db.session.get(DownloadLink, link_id)
            if not link:
                return None
            link.status = status
            link.last_checked_at = now_utc()
            db.session.commit()
            return link
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def get_links_due_for_check(cutoff, limit=100):
        """Never checked first, then oldest check first"""
        return (
            DownloadLink.query.filter(
                or_(DownloadLink.last_checked_at.is_(None), DownloadLink.last_checked_at < cutoff.replace(tzinfo=None))
            )
            .order_by(DownloadLink.last_checked_at.is_(None).desc(), DownloadLink.last_checked_at.asc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def link_status_counts(thread_id=None, provider=None):
        """Map of status -> count, optionally filtered"""
        query = db.session.query(DownloadLink.status, func.count(DownloadLink.id))
        if thread_id is not None:
            query = query.filter(DownloadLink.thread_id == thread_id)
        if provider is not None:
            query = query.filter(DownloadLink.provider == provider)
        return {status: count for status, count in query.group_by(DownloadLink.status).all()}

    @staticmethod
    def provider_status_rows():
        """List of (provider, status, count, last_checked_at) rows"""
        return (
            db.session.query(
                DownloadLink.provider,
                DownloadLink.status,
                func.count(DownloadLink.id),
                func.max(DownloadLink.last_checked_at),
            )
            .group_by(DownloadLink.provider, DownloadLink.status)
            .all()
        )

    # --- stats ---

    @staticmethod
    def stats():
        source_rows = db.session.query(ScrapedThread.source, func.count(ScrapedThread.id)).group_by(ScrapedThread.source)
        provider_rows = db.session.query(DownloadLink.provider, func.count(DownloadLink.id)).group_by(DownloadLink.provider)
        return {
            "total_threads": ScrapedThread.query.count(),
            "total_posts": ScrapedPost.query.count(),
            "total_download_links": DownloadLink.query.count(),
            "active_links": DownloadLink.query.filter_by(status=LinkStatus.ACTIVE).count(),
            "dead_links": DownloadLink.query.filter_by(status=LinkStatus.DEAD).count(),
            "last_scraped_at": db.session.query(func.max(ScrapedThread.last_scraped_at)).scalar(),
            "source_breakdown": {source: count for source, count in source_rows.all()},
            "provider_breakdown": {provider: count for provider, count in provider_rows.all()},
        }
