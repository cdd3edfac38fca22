"""
Link Routes - download link verification and provider health
"""

from flask import Blueprint, request

from api_responses import handle_api_errors, success_response
from exceptions import ValidationException
from link_extractor import PROVIDERS
from models.activity import TaskType
from pipeline import current_pipeline

links_bp = Blueprint("links", __name__, url_prefix="/api/links")


@links_bp.route("/verify/thread/<int:thread_id>", methods=["POST"])
@handle_api_errors
def verify_thread(thread_id):
    """Start verifying every link of a thread in the background"""
    pipeline = current_pipeline()
    thread = pipeline.scraper.get_thread(thread_id)
    activity = pipeline.activities.start_task(
        TaskType.LINK_VERIFICATION,
        f"Verifying links for thread: {thread['title']}",
        {"thread_id": thread_id, "thread_title": thread["title"]},
    )
    pipeline.spawn(
        f"verify-thread-{thread_id}",
        pipeline.verifier.verify_thread_links,
        thread_id,
        activity_id=activity["id"],
    )
    return success_response(activity, message="Link verification started", status_code=202)


@links_bp.route("/verify/<int:link_id>", methods=["POST"])
@handle_api_errors
def verify_link(link_id):
    return success_response(current_pipeline().verifier.verify_link(link_id))


@links_bp.route("/verify/sweep", methods=["POST"])
@handle_api_errors
def verify_old_links():
    data = request.get_json(silent=True) or {}
    limit = data.get("limit")
    max_age_days = data.get("max_age_days")
    if limit is not None and int(limit) <= 0:
        raise ValidationException("limit must be positive", field="limit")

    pipeline = current_pipeline()
    pipeline.spawn(
        "verify-old-links",
        pipeline.verifier.verify_old_links,
        limit=int(limit) if limit is not None else None,
        max_age_days=int(max_age_days) if max_age_days is not None else None,
    )
    return success_response(message="Link sweep started", status_code=202)


@links_bp.route("/health", methods=["GET"])
@handle_api_errors
def provider_health():
    return success_response(current_pipeline().verifier.get_all_provider_health())


@links_bp.route("/health/<provider>", methods=["GET"])
@handle_api_errors
def single_provider_health(provider):
    if provider not in PROVIDERS:
        raise ValidationException(f"Unknown provider: {provider}")
    return success_response(current_pipeline().verifier.get_provider_health(provider))


@links_bp.route("/thread/<int:thread_id>/stats", methods=["GET"])
@handle_api_errors
def thread_link_stats(thread_id):
    return success_response(current_pipeline().verifier.get_thread_link_stats(thread_id))


@links_bp.route("/stats", methods=["GET"])
@handle_api_errors
def link_stats():
    return success_response(current_pipeline().verifier.get_stats())


@links_bp.route("/send", methods=["POST"])
@handle_api_errors
def send_to_downloader():
    """Hand a thread's active links to JDownloader"""
    data = request.get_json(silent=True) or {}
    thread_id = data.get("thread_id")
    if not isinstance(thread_id, int):
        raise ValidationException("thread_id is required", field="thread_id")

    pipeline = current_pipeline()
    thread = pipeline.scraper.get_thread(thread_id)
    links = [link["url"] for link in pipeline.scraper.get_links_by_thread(thread_id) if link["status"] == "active"]
    if data.get("start"):
        count = pipeline.jdownloader.add_links_and_start(links, package_name=thread["title"])
    else:
        count = pipeline.jdownloader.add_links(links, package_name=thread["title"])
    return success_response({"sent": count, "thread_id": thread_id})
