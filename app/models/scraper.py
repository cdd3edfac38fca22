"""
Models: ScrapedThread, ScrapedPost, DownloadLink

Natural keys are enforced with unique constraints so re-scrapes converge
instead of duplicating rows.
"""

from db import db
from utils import now_utc, isoformat


class LinkStatus:
    ACTIVE = "active"
    DEAD = "dead"
    EXPIRED = "expired"
    UNCHECKED = "unchecked"

    ALL = (ACTIVE, DEAD, EXPIRED, UNCHECKED)


class ScrapedThread(db.Model):
    __tablename__ = "scraped_threads"

    id = db.Column(db.Integer, primary_key=True)
    external_id = db.Column(db.String(50), nullable=False)
    source = db.Column(db.String(50), nullable=False)
    title = db.Column(db.String(500), nullable=False)
    url = db.Column(db.String, nullable=False)
    author = db.Column(db.String(255))
    category = db.Column(db.String(255))
    view_count = db.Column(db.Integer, default=0)
    reply_count = db.Column(db.Integer, default=0)
    post_count = db.Column(db.Integer, default=0)
    download_count = db.Column(db.Integer, default=0)
    metadata_json = db.Column("metadata", db.JSON, default=dict)

    first_scraped_at = db.Column(db.DateTime, default=now_utc)
    last_scraped_at = db.Column(db.DateTime, default=now_utc)
    last_updated_at = db.Column(db.DateTime, default=now_utc)

    posts = db.relationship("ScrapedPost", backref="thread", cascade="all, delete-orphan", passive_deletes=True)
    links = db.relationship("DownloadLink", backref="thread", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (db.UniqueConstraint("external_id", "source", name="uq_thread_external_source"),)

    def to_dict(self):
        return {
            "id": self.id,
            "external_id": self.external_id,
            "source": self.source,
            "title": self.title,
            "url": self.url,
            "author": self.author,
            "category": self.category,
            "view_count": self.view_count or 0,
            "reply_count": self.reply_count or 0,
            "post_count": self.post_count or 0,
            "download_count": self.download_count or 0,
            "metadata": self.metadata_json or {},
            "first_scraped_at": isoformat(self.first_scraped_at),
            "last_scraped_at": isoformat(self.last_scraped_at),
            "last_updated_at": isoformat(self.last_updated_at),
        }


class ScrapedPost(db.Model):
    __tablename__ = "scraped_posts"

    id = db.Column(db.Integer, primary_key=True)
    thread_id = db.Column(db.Integer, db.ForeignKey("scraped_threads.id", ondelete="CASCADE"), nullable=False, index=True)
    external_id = db.Column(db.String(50), nullable=False)
    source = db.Column(db.String(50), nullable=False)
    author = db.Column(db.String(255))
    content_html = db.Column(db.Text)
    plain_text = db.Column(db.Text)
    post_number = db.Column(db.Integer)
    likes = db.Column(db.Integer, default=0)
    posted_at = db.Column(db.DateTime)
    attachments = db.Column(db.JSON, default=list)
    scraped_at = db.Column(db.DateTime, default=now_utc)

    __table_args__ = (db.UniqueConstraint("external_id", "source", name="uq_post_external_source"),)

    def to_dict(self):
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "external_id": self.external_id,
            "source": self.source,
            "author": self.author,
            "content_html": self.content_html,
            "plain_text": self.plain_text,
            "post_number": self.post_number,
            "likes": self.likes or 0,
            "posted_at": isoformat(self.posted_at),
            "attachments": self.attachments or [],
            "scraped_at": isoformat(self.scraped_at),
        }


class DownloadLink(db.Model):
    __tablename__ = "scraped_download_links"

    id = db.Column(db.Integer, primary_key=True)
    thread_id = db.Column(db.Integer, db.ForeignKey("scraped_threads.id", ondelete="CASCADE"), nullable=False, index=True)
    post_id = db.Column(db.Integer, db.ForeignKey("scraped_posts.id", ondelete="CASCADE"), nullable=True, index=True)
    source = db.Column(db.String(50), nullable=False)
    provider = db.Column(db.String(50), nullable=False, index=True)
    url = db.Column(db.String, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=LinkStatus.ACTIVE, index=True)
    download_status = db.Column(db.String(20), default="pending")
    downloaded_at = db.Column(db.DateTime)
    discovered_at = db.Column(db.DateTime, default=now_utc)
    last_checked_at = db.Column(db.DateTime, index=True)

    __table_args__ = (db.UniqueConstraint("url", "source", name="uq_link_url_source"),)

    def to_dict(self):
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "post_id": self.post_id,
            "source": self.source,
            "provider": self.provider,
            "url": self.url,
            "status": self.status,
            "download_status": self.download_status,
            "downloaded_at": isoformat(self.downloaded_at),
            "discovered_at": isoformat(self.discovered_at),
            "last_checked_at": isoformat(self.last_checked_at),
        }
