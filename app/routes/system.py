"""
System Routes - health, monitor status, backups, notifications and libraries
"""

import socket

from flask import Blueprint, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from api_responses import handle_api_errors, paginated_response, success_response
from constants import BUILD_VERSION
from db import db, logger
from exceptions import ValidationException
from pipeline import current_pipeline
from utils import now_utc

system_bp = Blueprint("system", __name__, url_prefix="/api")


@system_bp.route("/health", methods=["GET"])
@handle_api_errors
def health_check_api():
    """Health check endpoint for monitoring"""
    pipeline = current_pipeline()
    overall_status = "healthy"
    checks = {
        "timestamp": now_utc().isoformat(),
        "version": BUILD_VERSION,
        "hostname": socket.gethostname(),
        "database": "unknown",
        "hub": "running" if pipeline.hub.is_running else "stopped",
        "workers": "running" if pipeline.workers_started else "disabled",
    }

    try:
        db.session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as e:
        logger.error(f"Health check database failure: {e}")
        checks["database"] = "error"
        overall_status = "unhealthy"

    if not pipeline.hub.is_running:
        overall_status = "degraded" if overall_status == "healthy" else overall_status

    checks["status"] = overall_status
    return success_response(checks, status_code=200 if overall_status != "unhealthy" else 503)


@system_bp.route("/health/live", methods=["GET"])
def health_live_api():
    return {"status": "alive"}, 200


@system_bp.route("/system/status", methods=["GET"])
@handle_api_errors
def system_status():
    return success_response(current_pipeline().get_status())


@system_bp.route("/watcher/status", methods=["GET"])
@handle_api_errors
def watcher_status():
    return success_response(current_pipeline().watcher.get_status())


@system_bp.route("/companion/status", methods=["GET"])
@handle_api_errors
def companion_status():
    return success_response(current_pipeline().companion.get_status())


@system_bp.route("/companion/events", methods=["GET"])
@handle_api_errors
def companion_events():
    limit = min(max(request.args.get("limit", 20, type=int), 1), 100)
    return success_response(current_pipeline().companion.get_recent_events(limit))


@system_bp.route("/companion/recommendations", methods=["GET"])
@handle_api_errors
def companion_recommendations():
    return success_response(current_pipeline().companion.get_recommendations())


@system_bp.route("/companion/check", methods=["POST"])
@handle_api_errors
def companion_check():
    """Run the library health check now instead of waiting for the hourly loop"""
    events = current_pipeline().companion.check_library_health()
    return success_response({"events": events})


# --- libraries ---


@system_bp.route("/libraries", methods=["POST"])
@handle_api_errors
def add_library():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    path = (data.get("path") or "").strip()
    if not name or not path:
        raise ValidationException("name and path are required")
    return success_response(current_pipeline().add_library(name, path), status_code=201)


# --- backups ---


@system_bp.route("/backups", methods=["GET"])
@handle_api_errors
def list_backups():
    backups = current_pipeline().backups
    return success_response({"backups": backups.list_backups(), "stats": backups.get_backup_stats()})


@system_bp.route("/backups", methods=["POST"])
@handle_api_errors
def create_backup():
    pipeline = current_pipeline()
    backup = pipeline.backups.create_backup("manual")
    pipeline.notifications.notify_backup_completed(backup)
    return success_response(backup, status_code=201)


@system_bp.route("/backups/<name>", methods=["DELETE"])
@handle_api_errors
def delete_backup(name):
    current_pipeline().backups.delete_backup(name)
    return success_response(message=f"Backup {name} deleted")


@system_bp.route("/backups/<name>/restore", methods=["POST"])
@handle_api_errors
def restore_backup(name):
    db.session.remove()
    db.engine.dispose()
    result = current_pipeline().backups.restore_backup(name)
    return success_response(result, message=f"Restored {name}")


# --- notifications ---


@system_bp.route("/notifications", methods=["GET"])
@handle_api_errors
def list_notifications():
    page = max(request.args.get("page", 1, type=int), 1)
    per_page = min(max(request.args.get("per_page", 50, type=int), 1), 200)
    unread_only = request.args.get("unread") == "true"
    items, total = current_pipeline().notifications.get_all(unread_only, per_page, (page - 1) * per_page)
    return paginated_response(items, total, page, per_page)


@system_bp.route("/notifications/stats", methods=["GET"])
@handle_api_errors
def notification_stats():
    return success_response(current_pipeline().notifications.get_stats())


@system_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
@handle_api_errors
def mark_notification_read(notification_id):
    return success_response(current_pipeline().notifications.mark_as_read(notification_id))


@system_bp.route("/notifications/read-all", methods=["POST"])
@handle_api_errors
def mark_all_notifications_read():
    return success_response({"updated": current_pipeline().notifications.mark_all_as_read()})


@system_bp.route("/notifications/<int:notification_id>", methods=["DELETE"])
@handle_api_errors
def delete_notification(notification_id):
    current_pipeline().notifications.delete(notification_id)
    return success_response(message=f"Notification {notification_id} deleted")


# --- JDownloader ---


@system_bp.route("/jdownloader/status", methods=["GET"])
@handle_api_errors
def jdownloader_status():
    jdownloader = current_pipeline().jdownloader
    if not jdownloader.is_available():
        return success_response({"available": False, "url": jdownloader.base_url})
    return success_response(
        {
            "available": True,
            "url": jdownloader.base_url,
            "version": jdownloader.get_version(),
            "state": jdownloader.get_download_status(),
        }
    )


@system_bp.route("/jdownloader/downloads", methods=["GET"])
@handle_api_errors
def jdownloader_downloads():
    return success_response(current_pipeline().jdownloader.get_download_list())


@system_bp.route("/jdownloader/<action>", methods=["POST"])
@handle_api_errors
def jdownloader_control(action):
    jdownloader = current_pipeline().jdownloader
    if action == "start":
        jdownloader.start_downloads()
    elif action == "stop":
        jdownloader.stop_downloads()
    else:
        raise ValidationException(f"Unknown JDownloader action: {action}")
    return success_response(message=f"Downloads {action} requested")
