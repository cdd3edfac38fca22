"""
Scraper Routes - forum thread and category scrapes, scraped content queries
"""

from flask import Blueprint, request

from api_responses import handle_api_errors, paginated_response, success_response
from exceptions import ScraperException, ValidationException
from forum_parser import extract_thread_id, normalize_thread_url
from models.activity import TaskType
from pipeline import current_pipeline

scraper_bp = Blueprint("scraper", __name__, url_prefix="/api/scraper")


def _pagination():
    page = max(request.args.get("page", 1, type=int), 1)
    per_page = min(max(request.args.get("per_page", 50, type=int), 1), 500)
    return page, per_page


@scraper_bp.route("/thread", methods=["POST"])
@handle_api_errors
def scrape_thread():
    """Start a background scrape of one thread; returns the activity to follow"""
    data = request.get_json(silent=True) or {}
    url = (data.get("url") or "").strip()
    if not url:
        raise ValidationException("url is required", field="url")
    clean_url = normalize_thread_url(url)
    try:
        extract_thread_id(clean_url)
    except ScraperException as e:
        raise ValidationException(e.message, field="url")

    pipeline = current_pipeline()
    activity = pipeline.activities.start_task(
        TaskType.SCRAPER_THREAD, f"Scraping thread: {clean_url}", {"url": clean_url}
    )
    pipeline.spawn(
        f"scrape-thread-{activity['id']}",
        pipeline.scraper.scrape_thread_complete,
        clean_url,
        activity_id=activity["id"],
        force=bool(data.get("force", False)),
    )
    return success_response(activity, message="Thread scrape started", status_code=202)


@scraper_bp.route("/forum", methods=["POST"])
@handle_api_errors
def scrape_forum():
    data = request.get_json(silent=True) or {}
    forum_url = (data.get("url") or "").strip().rstrip("/")
    if not forum_url:
        raise ValidationException("url is required", field="url")

    pipeline = current_pipeline()
    activity = pipeline.activities.start_task(
        TaskType.FORUM_SCRAPE, f"Scraping forum: {forum_url}", {"forum_url": forum_url}
    )
    pipeline.spawn(
        f"scrape-forum-{activity['id']}",
        pipeline.scraper.scrape_forum_and_save_all,
        forum_url,
        activity_id=activity["id"],
    )
    return success_response(activity, message="Forum scrape started", status_code=202)


@scraper_bp.route("/threads", methods=["GET"])
@handle_api_errors
def list_threads():
    page, per_page = _pagination()
    items, total = current_pipeline().scraper.get_all_threads(
        limit=per_page,
        offset=(page - 1) * per_page,
        sort_by=request.args.get("sort_by", "date_desc"),
        provider=request.args.get("provider"),
        filter=request.args.get("filter"),
        search=request.args.get("search"),
    )
    return paginated_response(items, total, page, per_page)


@scraper_bp.route("/threads/search", methods=["GET"])
@handle_api_errors
def search_threads():
    query = request.args.get("q", "").strip()
    if not query:
        raise ValidationException("q is required", field="q")
    page, per_page = _pagination()
    items, total = current_pipeline().scraper.search_threads(query, limit=per_page, offset=(page - 1) * per_page)
    return paginated_response(items, total, page, per_page)


@scraper_bp.route("/threads/<int:thread_id>", methods=["GET"])
@handle_api_errors
def get_thread(thread_id):
    return success_response(current_pipeline().scraper.get_thread(thread_id))


@scraper_bp.route("/threads/<int:thread_id>/posts", methods=["GET"])
@handle_api_errors
def get_thread_posts(thread_id):
    scraper = current_pipeline().scraper
    scraper.get_thread(thread_id)
    return success_response(scraper.get_posts_by_thread(thread_id))


@scraper_bp.route("/threads/<int:thread_id>/links", methods=["GET"])
@handle_api_errors
def get_thread_links(thread_id):
    scraper = current_pipeline().scraper
    scraper.get_thread(thread_id)
    return success_response(scraper.get_links_by_thread(thread_id))


@scraper_bp.route("/threads/<int:thread_id>", methods=["DELETE"])
@handle_api_errors
def delete_thread(thread_id):
    current_pipeline().scraper.delete_thread(thread_id)
    return success_response(message=f"Thread {thread_id} deleted")


@scraper_bp.route("/threads/delete", methods=["POST"])
@handle_api_errors
def delete_threads():
    data = request.get_json(silent=True) or {}
    ids = data.get("ids") or []
    if not isinstance(ids, list) or not all(isinstance(i, int) for i in ids):
        raise ValidationException("ids must be a list of integers", field="ids")
    return success_response({"deleted": current_pipeline().scraper.delete_threads(ids)})


@scraper_bp.route("/cookie", methods=["GET"])
@handle_api_errors
def get_cookie():
    cookie = current_pipeline().scraper.get_session_cookie()
    return success_response({"configured": bool(cookie), "length": len(cookie)})


@scraper_bp.route("/cookie", methods=["POST", "PUT"])
@handle_api_errors
def set_cookie():
    data = request.get_json(silent=True) or {}
    if "cookie" not in data:
        raise ValidationException("cookie is required", field="cookie")
    cookie = current_pipeline().scraper.set_session_cookie(data["cookie"])
    return success_response({"configured": bool(cookie), "length": len(cookie)}, message="Session cookie saved")


@scraper_bp.route("/stats", methods=["GET"])
@handle_api_errors
def scraper_stats():
    return success_response(current_pipeline().scraper.get_stats())
