"""
Forum scraper: fetches XenForo threads and forum listings, persists threads,
posts and download links, and reports progress through activities.
"""

import logging
import threading
import time

import requests
from sqlalchemy.exc import SQLAlchemyError

from constants import DEFAULT_SETTINGS, SCRAPER_USER_AGENT, SESSION_COOKIE_KEY
from db import ensure_app_context
from exceptions import (
    ActivityStateException,
    AuthenticationException,
    NotFoundException,
    ScraperException,
    VidStashException,
)
from forum_parser import (
    extract_thread_id,
    has_next_page,
    index_has_next_page,
    normalize_thread_url,
    page_url,
    parse_posts,
    parse_thread_index,
    parse_thread_page,
)
from link_extractor import extract_links
from metrics import scraper_links_discovered_total, scraper_pages_fetched_total
from models.activity import TaskType
from repositories.appsetting_repository import AppSettingRepository
from repositories.scraper_repository import ScraperRepository
from services.activity_service import STOP_CANCELLED, STOP_PAUSED
from utils import isoformat, mask_secret

logger = logging.getLogger("main")


class ScraperService:
    def __init__(self, app, activity_service, notification_service=None, session=None, settings=None):
        settings = dict(DEFAULT_SETTINGS["scraper"], **(settings or {}))
        self.app = app
        self.activity_service = activity_service
        self.notification_service = notification_service
        self.source = settings["source"]
        self.page_delay = settings["page_delay"]
        self.thread_delay = settings["thread_delay"]
        self.index_delay = settings["index_delay"]
        self.timeout = settings["timeout"]
        self.max_retries = settings["max_retries"]
        self.retry_backoff = settings["retry_backoff"]
        self.checkpoint_every = settings["checkpoint_every"]

        self.session = session or requests.Session()
        self.session.max_redirects = settings["max_redirects"]

        self._cookie_lock = threading.Lock()
        self._session_cookie = ""

        activity_service.register_resumer(TaskType.SCRAPER_THREAD, self.resume_thread_scrape)
        activity_service.register_resumer(TaskType.FORUM_SCRAPE, self.resume_forum_scrape)

    # --- session cookie ---

    def load_session_cookie(self):
        with ensure_app_context(self.app):
            cookie = AppSettingRepository.get_value(SESSION_COOKIE_KEY, "")
        with self._cookie_lock:
            self._session_cookie = cookie or ""
        if cookie:
            logger.info(f"Loaded session cookie from database (length: {len(cookie)})")
        return self._session_cookie

    def set_session_cookie(self, cookie):
        cleaned = (cookie or "").replace("\n", "").replace("\r", "").strip()
        with self._cookie_lock:
            self._session_cookie = cleaned
            with ensure_app_context(self.app):
                AppSettingRepository.set_value(SESSION_COOKIE_KEY, cleaned)
        logger.info(f"Session cookie set ({mask_secret(cleaned)}, length: {len(cleaned)})")
        return cleaned

    def get_session_cookie(self):
        with self._cookie_lock:
            return self._session_cookie

    # --- HTTP ---

    def _headers(self):
        headers = {"User-Agent": SCRAPER_USER_AGENT}
        cookie = self.get_session_cookie()
        if cookie:
            headers["Cookie"] = cookie
        return headers

    def _sleep(self, seconds, cancel_event=None):
        if not seconds or seconds <= 0:
            return
        if cancel_event is not None:
            cancel_event.wait(seconds)
        else:
            time.sleep(seconds)

    def _fetch(self, url, cancel_event=None, allow_missing=False):
        """GET `url` and return its body. 5xx and 429 are retried with linear backoff.

        Returns None for a 404 when `allow_missing` is set.
        """
        for attempt in range(self.max_retries + 1):
            try:
                response = self.session.get(url, headers=self._headers(), timeout=self.timeout)
            except requests.RequestException as e:
                scraper_pages_fetched_total.labels(status="error").inc()
                raise ScraperException(f"failed to fetch {url}: {e}")

            status = response.status_code
            scraper_pages_fetched_total.labels(status=str(status)).inc()

            if status in (401, 403):
                raise AuthenticationException()
            if status == 404 and allow_missing:
                return None
            if status >= 500 or status == 429:
                if attempt < self.max_retries:
                    wait = self.retry_backoff * (attempt + 1)
                    reason = "Rate limited (429)" if status == 429 else f"Server error ({status})"
                    logger.warning(f"{reason} on {url}. Waiting {wait}s before retry {attempt + 1}/{self.max_retries}")
                    self._sleep(wait, cancel_event)
                    continue
                raise ScraperException(f"server error after {self.max_retries} retries: {status}", status_code=status)
            if status != 200:
                raise ScraperException(f"unexpected status code: {status}", status_code=status)
            return response.text

        raise ScraperException(f"giving up on {url}")

    def _page_exists(self, url):
        try:
            response = self.session.head(url, headers=self._headers(), timeout=self.timeout, allow_redirects=True)
        except requests.RequestException as e:
            logger.debug(f"HEAD probe failed for {url}: {e}")
            return False
        return response.status_code == 200

    # --- control ---

    def _should_stop(self, activity_id, cancel_event=None):
        if cancel_event is not None and cancel_event.is_set():
            return STOP_CANCELLED
        return self.activity_service.should_stop(activity_id)

    def _mark_cancelled(self, activity_id):
        try:
            self.activity_service.cancel(activity_id)
        except ActivityStateException:
            logger.debug(f"Activity {activity_id} already finished when cancel arrived")

    # --- thread flow ---

    def resume_thread_scrape(self, activity):
        checkpoint = activity.get("checkpoint") or {}
        url = checkpoint.get("url") or (activity.get("details") or {}).get("url")
        return self.scrape_thread_complete(url, activity_id=activity["id"], checkpoint=checkpoint)

    def scrape_thread_complete(self, url, activity_id=None, checkpoint=None, cancel_event=None, force=False):
        """Scrape every page of a thread and persist it. Returns a summary dict."""
        started = time.monotonic()
        clean_url = normalize_thread_url(url)
        if activity_id is None:
            activity = self.activity_service.start_task(
                TaskType.SCRAPER_THREAD, f"Scraping thread: {clean_url}", {"url": clean_url}
            )
            activity_id = activity["id"]

        try:
            with ensure_app_context(self.app):
                return self._scrape_thread(clean_url, activity_id, checkpoint or {}, cancel_event, force, started)
        except VidStashException as e:
            self.activity_service.fail_task(activity_id, f"Failed to scrape thread: {e.message}")
            raise
        except (SQLAlchemyError, requests.RequestException) as e:
            logger.error(f"Thread scrape failed for {clean_url}: {e}", exc_info=True)
            self.activity_service.fail_task(activity_id, f"Failed to scrape thread: {e}")
            raise

    def _scrape_thread(self, clean_url, activity_id, checkpoint, cancel_event, force, started):
        extract_thread_id(clean_url)
        self.activity_service.update_progress(activity_id, 10, "Fetching thread information...")

        first_page = self._fetch(clean_url, cancel_event)
        thread_data = parse_thread_page(first_page, clean_url)
        if thread_data is None:
            raise ScraperException(f"no thread content found at {clean_url}")

        existing = ScraperRepository.get_thread_by_external_id(thread_data["external_id"], self.source)
        is_incremental = existing is not None

        if existing is not None and not force and not checkpoint:
            if thread_data["reply_count"] <= (existing.reply_count or 0):
                return self._finish_up_to_date(existing, activity_id, started)
            logger.info(
                f"Incremental update for thread {existing.id}: replies {existing.reply_count} -> {thread_data['reply_count']}"
            )

        thread, _ = ScraperRepository.upsert_thread(
            thread_data["external_id"],
            self.source,
            title=thread_data["title"],
            url=clean_url,
            author=thread_data["author"],
            category=thread_data["category"],
            view_count=thread_data["view_count"],
            metadata_json=thread_data["metadata"],
        )
        thread_id, title = thread.id, thread.title
        self.activity_service.update_progress(activity_id, 30, "Thread saved. Scraping posts...")

        start_page = int(checkpoint.get("page") or 1)
        post_number = int(checkpoint.get("post_number") or 0)
        collected = []
        page = start_page

        while True:
            stop = self._should_stop(activity_id, cancel_event)
            if stop == STOP_PAUSED:
                self._persist_posts(thread_id, collected)
                ScraperRepository.refresh_thread_counts(thread_id)
                self.activity_service.save_checkpoint(
                    activity_id, {"url": clean_url, "page": page, "post_number": post_number}
                )
                self.activity_service.update_progress(
                    activity_id, None, f"⏸️ Task paused during post scraping (page {page})"
                )
                logger.info(f"Thread scrape {activity_id} paused at page {page}")
                return {"activity_id": activity_id, "thread_id": thread_id, "status": "paused", "page": page}
            if stop == STOP_CANCELLED:
                self._persist_posts(thread_id, collected)
                ScraperRepository.refresh_thread_counts(thread_id)
                self._mark_cancelled(activity_id)
                return {"activity_id": activity_id, "thread_id": thread_id, "status": "cancelled", "page": page}

            if page == 1:
                html = first_page
            else:
                html = self._fetch(page_url(clean_url, page), cancel_event, allow_missing=True)
                if html is None:
                    logger.info(f"Page {page} returned 404, stopping pagination")
                    break

            page_posts = parse_posts(html)
            if not page_posts:
                logger.info(f"No posts found on page {page}, stopping pagination")
                break

            for post in page_posts:
                post_number += 1
                post["post_number"] = post_number
                collected.append(post)
            self.activity_service.update_progress(
                activity_id, None, f"Found {len(page_posts)} posts on page {page}"
            )

            if not has_next_page(html, page) and not self._page_exists(page_url(clean_url, page + 1)):
                logger.info(f"No more pages to scrape (last page: {page})")
                break

            page += 1
            self._sleep(self.page_delay, cancel_event)

        self.activity_service.update_progress(activity_id, 50, f"Found {len(collected)} posts. Saving...")
        new_posts, new_links = self._persist_posts(thread_id, collected, activity_id)
        stored = ScraperRepository.refresh_thread_counts(thread_id)
        ScraperRepository.mark_thread_complete(thread_id, thread_data["reply_count"])

        self.activity_service.update_progress(activity_id, 90, "Sending notifications...")
        duration = time.monotonic() - started
        self._notify(thread_id, title, new_posts, new_links, duration, is_incremental)

        self.activity_service.complete_task(
            activity_id,
            f"Successfully scraped thread: {stored.post_count} posts, {stored.download_count} download links found",
        )
        logger.info(f"Scraped thread {thread_id} ({title}): {new_posts} new posts, {new_links} new links")
        return {
            "activity_id": activity_id,
            "thread_id": thread_id,
            "status": "completed",
            "posts_found": new_posts,
            "links_found": new_links,
            "total_posts": stored.post_count,
            "total_links": stored.download_count,
            "is_incremental": is_incremental,
        }

    def _finish_up_to_date(self, existing, activity_id, started):
        message = (
            f"Thread already up-to-date. {existing.post_count} posts, "
            f"{existing.download_count} download links (no changes since last scrape)"
        )
        thread_id, title = existing.id, existing.title
        self._notify(thread_id, title, 0, 0, time.monotonic() - started, True)
        self.activity_service.complete_task(activity_id, message)
        return {
            "activity_id": activity_id,
            "thread_id": thread_id,
            "status": "up_to_date",
            "posts_found": 0,
            "links_found": 0,
            "is_incremental": True,
        }

    def _persist_posts(self, thread_id, posts, activity_id=None):
        """Upsert posts, then their links. Returns (new_posts, new_links)."""
        new_posts = new_links = 0
        total = len(posts)
        report_every = max(1, total // 20)

        for i, post in enumerate(posts):
            try:
                record, created = ScraperRepository.upsert_post(
                    post["external_id"],
                    self.source,
                    thread_id,
                    author=post["author"],
                    content_html=post["content_html"],
                    plain_text=post["plain_text"],
                    post_number=post["post_number"],
                    likes=post["likes"],
                    posted_at=post["posted_at"],
                    attachments=post["attachments"],
                )
            except SQLAlchemyError as e:
                logger.warning(f"Failed to save post {post.get('external_id')}: {e}")
                continue
            if created:
                new_posts += 1

            for link in extract_links(post["content_html"], post["plain_text"]):
                try:
                    _, link_created = ScraperRepository.add_link(link.url, self.source, thread_id, record.id, link.provider)
                except SQLAlchemyError as e:
                    logger.warning(f"Failed to save download link {link.url}: {e}")
                    continue
                if link_created:
                    new_links += 1
                    scraper_links_discovered_total.labels(provider=link.provider).inc()

            if activity_id is not None and ((i + 1) % report_every == 0 or i + 1 == total):
                self.activity_service.update_progress(
                    activity_id, 50 + 40 * (i + 1) // total, f"Saved {i + 1}/{total} posts"
                )

        return new_posts, new_links

    def _notify(self, thread_id, title, posts_found, links_found, duration, is_incremental):
        if not self.notification_service:
            return
        try:
            self.notification_service.notify_scrape_completed(
                thread_id, title, posts_found, links_found, duration, is_incremental
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to send scrape notification: {e}")

    # --- forum flow ---

    def enumerate_forum_threads(self, forum_url, activity_id=None, cancel_event=None):
        """Walk the forum index. Returns (threads, stop) where stop is None when the walk finished."""
        base_url = forum_url.strip().rstrip("/")
        threads, seen = [], set()
        page = 1

        while True:
            stop = self._should_stop(activity_id, cancel_event)
            if stop:
                return threads, stop

            html = self._fetch(page_url(base_url, page), cancel_event)
            rows = parse_thread_index(html, base_url)
            for row in rows:
                if row["url"] not in seen:
                    seen.add(row["url"])
                    threads.append(row)
            logger.info(f"Found {len(rows)} threads on forum page {page} (total so far: {len(threads)})")

            if not rows or not index_has_next_page(html):
                return threads, None

            page += 1
            self._sleep(self.index_delay, cancel_event)

    def resume_forum_scrape(self, activity):
        details = activity.get("details") or {}
        checkpoint = activity.get("checkpoint") or {}
        forum_url = checkpoint.get("forum_url") or details.get("forum_url")
        return self.scrape_forum_and_save_all(forum_url, activity_id=activity["id"], checkpoint=checkpoint)

    def scrape_forum_and_save_all(self, forum_url, activity_id=None, checkpoint=None, cancel_event=None):
        base_url = forum_url.strip().rstrip("/")
        if activity_id is None:
            activity = self.activity_service.start_task(
                TaskType.FORUM_SCRAPE, f"Scraping forum: {base_url}", {"forum_url": base_url}
            )
            activity_id = activity["id"]

        try:
            return self._scrape_forum(base_url, activity_id, checkpoint or {}, cancel_event)
        except VidStashException as e:
            self.activity_service.fail_task(activity_id, f"Failed to scrape forum category: {e.message}")
            raise

    def _scrape_forum(self, base_url, activity_id, checkpoint, cancel_event):
        threads = checkpoint.get("threads")
        if not threads:
            self.activity_service.update_progress(activity_id, 0, "Scanning forum pages for threads...")
            threads, stop = self.enumerate_forum_threads(base_url, activity_id, cancel_event)
            if stop == STOP_PAUSED:
                self.activity_service.save_checkpoint(activity_id, {"forum_url": base_url, "thread_index": 0})
                self.activity_service.update_progress(activity_id, None, "⏸️ Task paused during forum listing scan")
                return {"activity_id": activity_id, "status": "paused", "thread_index": 0}
            if stop == STOP_CANCELLED:
                self._mark_cancelled(activity_id)
                return {"activity_id": activity_id, "status": "cancelled", "thread_index": 0}

        total = len(threads)
        self.activity_service.update_progress(activity_id, 5, f"Found {total} threads. Preparing...")

        start_index = int(checkpoint.get("thread_index") or 0)
        success_count = int(checkpoint.get("success_count") or 0)
        error_count = int(checkpoint.get("error_count") or 0)
        if start_index:
            self.activity_service.update_progress(
                activity_id, None, f"📍 Resumed from checkpoint: thread {start_index + 1}/{total}"
            )
        self.activity_service.update_progress(activity_id, 10, f"Starting sequential scrape of {total} threads...")

        def make_checkpoint(index):
            return {
                "forum_url": base_url,
                "threads": threads,
                "thread_index": index,
                "total_threads": total,
                "success_count": success_count,
                "error_count": error_count,
            }

        consecutive_errors = 0
        for i in range(start_index, total):
            stop = self._should_stop(activity_id, cancel_event)
            if stop == STOP_PAUSED:
                self.activity_service.save_checkpoint(activity_id, make_checkpoint(i))
                self.activity_service.update_progress(
                    activity_id, None, f"⏸️ Task paused at thread {i + 1}/{total}. Progress saved."
                )
                return {"activity_id": activity_id, "status": "paused", "thread_index": i}
            if stop == STOP_CANCELLED:
                self._mark_cancelled(activity_id)
                return {"activity_id": activity_id, "status": "cancelled", "thread_index": i}

            thread = threads[i]
            logger.info(f"Scraping thread {i + 1}/{total}: {thread['title']}")
            try:
                self.scrape_thread_complete(thread["url"], cancel_event=cancel_event)
                success_count += 1
                consecutive_errors = 0
            except (VidStashException, SQLAlchemyError, requests.RequestException) as e:
                error_count += 1
                consecutive_errors += 1
                logger.warning(f"Error scraping thread {thread['url']}: {e}")
                if consecutive_errors >= 3:
                    extra_delay = (consecutive_errors - 2) * self.retry_backoff
                    self.activity_service.update_progress(
                        activity_id,
                        None,
                        f"⚠️ Server struggling ({consecutive_errors} errors). Slowing down scrape by {extra_delay}s",
                    )
                    self._sleep(extra_delay, cancel_event)

            self.activity_service.update_progress(
                activity_id,
                10 + 85 * (i + 1) // total,
                f"Scraped {i + 1}/{total} threads (Success: {success_count}, Errors: {error_count})",
            )
            if (i + 1) % self.checkpoint_every == 0:
                self.activity_service.save_checkpoint(activity_id, make_checkpoint(i + 1))

            if i < total - 1:
                self._sleep(self.thread_delay, cancel_event)

        self.activity_service.update_progress(activity_id, 95, "Finalizing forum scrape...")
        self.activity_service.complete_task(
            activity_id, f"Forum scrape complete. Success: {success_count}, Errors: {error_count}"
        )
        return {
            "activity_id": activity_id,
            "status": "completed",
            "total_threads": total,
            "success_count": success_count,
            "error_count": error_count,
        }

    # --- queries ---

    def get_thread(self, thread_id):
        with ensure_app_context(self.app):
            thread = ScraperRepository.get_thread(thread_id)
            if thread is None:
                raise NotFoundException(f"Thread {thread_id} not found")
            return thread.to_dict()

    def get_all_threads(self, limit=50, offset=0, sort_by="date_desc", provider=None, filter=None, search=None):
        with ensure_app_context(self.app):
            threads, total = ScraperRepository.list_threads(limit, offset, sort_by, provider, filter, search)
            return [t.to_dict() for t in threads], total

    def search_threads(self, query, limit=50, offset=0):
        with ensure_app_context(self.app):
            threads, total = ScraperRepository.search_threads(query, limit, offset)
            return [t.to_dict() for t in threads], total

    def get_posts_by_thread(self, thread_id):
        with ensure_app_context(self.app):
            return [p.to_dict() for p in ScraperRepository.get_posts(thread_id)]

    def get_links_by_thread(self, thread_id):
        with ensure_app_context(self.app):
            return [link.to_dict() for link in ScraperRepository.get_links(thread_id)]

    def delete_thread(self, thread_id):
        with ensure_app_context(self.app):
            if ScraperRepository.delete_threads([thread_id]) == 0:
                raise NotFoundException(f"Thread {thread_id} not found")
        logger.info(f"Deleted thread {thread_id}")
        return True

    def delete_threads(self, thread_ids):
        with ensure_app_context(self.app):
            count = ScraperRepository.delete_threads(list(thread_ids))
        logger.info(f"Deleted {count} threads")
        return count

    def get_stats(self):
        with ensure_app_context(self.app):
            stats = ScraperRepository.stats()
        stats["last_scraped_at"] = isoformat(stats["last_scraped_at"])
        return stats
