"""
Link verifier: HEAD-checks stored download links and keeps their status
current, per thread or as a background sweep over stale links.
"""

import logging
import time
from datetime import timedelta

import requests
from sqlalchemy.exc import SQLAlchemyError

from constants import DEFAULT_SETTINGS, SCRAPER_USER_AGENT
from db import ensure_app_context
from exceptions import NotFoundException, VidStashException
from metrics import links_verified_total
from models.activity import TaskType
from models.scraper import LinkStatus
from repositories.scraper_repository import ScraperRepository
from services.activity_service import STOP_CANCELLED, STOP_PAUSED
from utils import isoformat, now_utc

logger = logging.getLogger("main")


def classify_status(status_code):
    """Map an HTTP status to a link status. 401/403 mean auth is required, not that the file is gone."""
    if status_code is None:
        return LinkStatus.DEAD
    if 200 <= status_code < 300 or status_code in (401, 403):
        return LinkStatus.ACTIVE
    if status_code == 410:
        return LinkStatus.EXPIRED
    return LinkStatus.DEAD


def health_score(active, total):
    return round(active / total * 100, 2) if total else 0.0


class LinkVerificationService:
    def __init__(self, app, activity_service, notification_service=None, session=None, settings=None):
        settings = dict(DEFAULT_SETTINGS["verifier"], **(settings or {}))
        self.app = app
        self.activity_service = activity_service
        self.notification_service = notification_service
        self.link_delay = settings["link_delay"]
        self.sweep_delay = settings["sweep_delay"]
        self.timeout = settings["timeout"]
        self.sweep_limit = settings["sweep_limit"]
        self.max_age_days = settings["max_age_days"]

        self.session = session or requests.Session()
        self.session.max_redirects = settings["max_redirects"]

        activity_service.register_resumer(TaskType.LINK_VERIFICATION, self.resume_verification)

    def _sleep(self, seconds, cancel_event=None):
        if not seconds or seconds <= 0:
            return
        if cancel_event is not None:
            cancel_event.wait(seconds)
        else:
            time.sleep(seconds)

    def check_link(self, url):
        """HEAD `url` (redirects followed) and classify the outcome"""
        try:
            response = self.session.head(
                url,
                headers={"User-Agent": SCRAPER_USER_AGENT},
                timeout=self.timeout,
                allow_redirects=True,
            )
        except requests.RequestException as e:
            logger.debug(f"Link check failed for {url}: {e}")
            status = LinkStatus.DEAD
        else:
            status = classify_status(response.status_code)
        links_verified_total.labels(status=status).inc()
        return status

    def verify_link(self, link_id):
        with ensure_app_context(self.app):
            link = ScraperRepository.get_link(link_id)
            if link is None:
                raise NotFoundException(f"Download link {link_id} not found")
            url = link.url
        status = self.check_link(url)
        with ensure_app_context(self.app):
            return ScraperRepository.set_link_status(link_id, status).to_dict()

    # --- thread verification ---

    def resume_verification(self, activity):
        details = activity.get("details") or {}
        return self.verify_thread_links(
            details["thread_id"], activity_id=activity["id"], checkpoint=activity.get("checkpoint") or {}
        )

    def verify_thread_links(self, thread_id, activity_id=None, checkpoint=None, cancel_event=None):
        """Check every link of a thread in order, honouring pause and cancel between links"""
        with ensure_app_context(self.app):
            thread = ScraperRepository.get_thread(thread_id)
            if thread is None:
                raise NotFoundException(f"Thread {thread_id} not found")
            title = thread.title
            links = [(link.id, link.url) for link in ScraperRepository.get_links(thread_id)]

        if activity_id is None:
            activity = self.activity_service.start_task(
                TaskType.LINK_VERIFICATION,
                f"Verifying links for thread: {title}",
                {"thread_id": thread_id, "thread_title": title},
            )
            activity_id = activity["id"]

        total = len(links)
        if total == 0:
            self.activity_service.complete_task(activity_id, "No links found to verify")
            return {"activity_id": activity_id, "status": "completed", "total": 0, "active": 0, "dead": 0, "expired": 0}

        checkpoint = checkpoint or {}
        start = int(checkpoint.get("next_index") or 0)
        counts = {
            LinkStatus.ACTIVE: int(checkpoint.get("active") or 0),
            LinkStatus.DEAD: int(checkpoint.get("dead") or 0),
            LinkStatus.EXPIRED: int(checkpoint.get("expired") or 0),
        }

        def summary(done):
            return (
                f"Verified {done}/{total} links - Active: {counts[LinkStatus.ACTIVE]}, "
                f"Dead: {counts[LinkStatus.DEAD]}, Expired: {counts[LinkStatus.EXPIRED]}"
            )

        try:
            for i in range(start, total):
                stop = self.activity_service.should_stop(activity_id)
                if cancel_event is not None and cancel_event.is_set():
                    stop = STOP_CANCELLED
                if stop == STOP_PAUSED:
                    self.activity_service.save_checkpoint(
                        activity_id,
                        {
                            "next_index": i,
                            "active": counts[LinkStatus.ACTIVE],
                            "dead": counts[LinkStatus.DEAD],
                            "expired": counts[LinkStatus.EXPIRED],
                        },
                    )
                    self.activity_service.update_progress(activity_id, None, f"⏸️ Paused at link {i}/{total}")
                    logger.info(f"Link verification {activity_id} paused at link {i}/{total}")
                    return {"activity_id": activity_id, "status": "paused", "next_index": i, "total": total}
                if stop == STOP_CANCELLED:
                    if cancel_event is not None and cancel_event.is_set():
                        self._mark_cancelled(activity_id)
                    return {"activity_id": activity_id, "status": "cancelled", "next_index": i, "total": total}

                link_id, url = links[i]
                status = self.check_link(url)
                try:
                    with ensure_app_context(self.app):
                        ScraperRepository.set_link_status(link_id, status)
                except SQLAlchemyError as e:
                    logger.warning(f"Failed to store status for link {link_id}: {e}")
                    continue
                counts[status] = counts.get(status, 0) + 1

                self.activity_service.update_progress(activity_id, (i + 1) * 100 // total, summary(i + 1))
                if i < total - 1:
                    self._sleep(self.link_delay, cancel_event)
        except VidStashException as e:
            self.activity_service.fail_task(activity_id, f"Link verification failed: {e.message}")
            raise

        self.activity_service.complete_task(activity_id, summary(total))
        if self.notification_service:
            self.notification_service.notify_links_verified(
                thread_id,
                title,
                total,
                counts[LinkStatus.DEAD],
                counts[LinkStatus.ACTIVE],
                counts[LinkStatus.EXPIRED],
            )
        logger.info(f"Verified {total} links for thread {thread_id}: {counts}")
        return {
            "activity_id": activity_id,
            "status": "completed",
            "total": total,
            "active": counts[LinkStatus.ACTIVE],
            "dead": counts[LinkStatus.DEAD],
            "expired": counts[LinkStatus.EXPIRED],
        }

    def _mark_cancelled(self, activity_id):
        try:
            self.activity_service.cancel(activity_id)
        except VidStashException as e:
            logger.debug(f"Activity {activity_id} not cancelled: {e.message}")

    # --- background sweep ---

    def verify_old_links(self, limit=None, max_age_days=None, cancel_event=None):
        """Re-check links never checked or not checked for `max_age_days`, never-checked first"""
        limit = self.sweep_limit if limit is None else limit
        max_age_days = self.max_age_days if max_age_days is None else max_age_days
        cutoff = now_utc() - timedelta(days=max_age_days)

        with ensure_app_context(self.app):
            links = [(link.id, link.url) for link in ScraperRepository.get_links_due_for_check(cutoff, limit)]

        if not links:
            logger.info("Link sweep: nothing to verify")
            return {"checked": 0, "active": 0, "dead": 0, "expired": 0}

        logger.info(f"Link sweep: verifying {len(links)} links")
        result = {"checked": 0, LinkStatus.ACTIVE: 0, LinkStatus.DEAD: 0, LinkStatus.EXPIRED: 0}
        for i, (link_id, url) in enumerate(links):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Link sweep cancelled after {result['checked']} links")
                break
            status = self.check_link(url)
            try:
                with ensure_app_context(self.app):
                    ScraperRepository.set_link_status(link_id, status)
            except SQLAlchemyError as e:
                logger.warning(f"Failed to store status for link {link_id}: {e}")
                continue
            result["checked"] += 1
            result[status] += 1
            if i < len(links) - 1:
                self._sleep(self.sweep_delay, cancel_event)

        logger.info(f"Link sweep finished: {result}")
        return result

    # --- health ---

    def _health_record(self, provider, counts, last_checked=None):
        total = sum(counts.values())
        active = counts.get(LinkStatus.ACTIVE, 0)
        return {
            "provider": provider,
            "total": total,
            "active": active,
            "dead": counts.get(LinkStatus.DEAD, 0),
            "expired": counts.get(LinkStatus.EXPIRED, 0),
            "unchecked": counts.get(LinkStatus.UNCHECKED, 0),
            "health_score": health_score(active, total),
            "last_checked_at": isoformat(last_checked),
        }

    def get_provider_health(self, provider):
        with ensure_app_context(self.app):
            counts = ScraperRepository.link_status_counts(provider=provider)
        return self._health_record(provider, counts)

    def get_all_provider_health(self):
        providers = {}
        with ensure_app_context(self.app):
            for provider, status, count, last_checked in ScraperRepository.provider_status_rows():
                entry = providers.setdefault(provider, {"counts": {}, "last_checked": None})
                entry["counts"][status] = count
                if last_checked and (entry["last_checked"] is None or last_checked > entry["last_checked"]):
                    entry["last_checked"] = last_checked

        records = [self._health_record(p, e["counts"], e["last_checked"]) for p, e in providers.items()]
        return sorted(records, key=lambda r: r["total"], reverse=True)

    def get_thread_link_stats(self, thread_id):
        with ensure_app_context(self.app):
            if ScraperRepository.get_thread(thread_id) is None:
                raise NotFoundException(f"Thread {thread_id} not found")
            counts = ScraperRepository.link_status_counts(thread_id=thread_id)
        record = self._health_record(None, counts)
        record.pop("provider")
        record.pop("last_checked_at")
        record["thread_id"] = thread_id
        return record

    def get_stats(self):
        with ensure_app_context(self.app):
            counts = ScraperRepository.link_status_counts()
        record = self._health_record(None, counts)
        record.pop("provider")
        record.pop("last_checked_at")
        record["providers"] = self.get_all_provider_health()
        return record
