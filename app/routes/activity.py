"""
Activity Routes - task records, pause/resume/cancel and the live event stream
"""

import json

from flask import Blueprint, Response, request

from api_responses import handle_api_errors, paginated_response, success_response
from exceptions import ValidationException
from pipeline import current_pipeline

activity_bp = Blueprint("activity", __name__, url_prefix="/api/activity")

# Seconds between keep-alive comments on an idle stream
STREAM_KEEPALIVE = 15


@activity_bp.route("", methods=["GET"])
@handle_api_errors
def list_activities():
    activities = current_pipeline().activities
    status = request.args.get("status")
    limit = request.args.get("limit", 50, type=int)

    if status:
        page = request.args.get("page", 1, type=int)
        items, total = activities.get_by_status(status, limit=limit, offset=(page - 1) * limit)
        return paginated_response(items, total, page, limit)
    return success_response(activities.get_recent(limit))


@activity_bp.route("/status", methods=["GET"])
@handle_api_errors
def activity_status():
    limit = request.args.get("limit", 10, type=int)
    return success_response(current_pipeline().activities.get_status(limit))


@activity_bp.route("/stats", methods=["GET"])
@handle_api_errors
def activity_stats():
    return success_response(current_pipeline().activities.get_stats_by_type())


@activity_bp.route("/<int:activity_id>", methods=["GET"])
@handle_api_errors
def get_activity(activity_id):
    return success_response(current_pipeline().activities.get(activity_id))


@activity_bp.route("", methods=["POST"])
@handle_api_errors
def create_activity():
    data = request.get_json(silent=True) or {}
    if not data.get("task_type"):
        raise ValidationException("task_type is required", field="task_type")
    activity = current_pipeline().activities.create(
        data["task_type"],
        message=data.get("message", ""),
        details=data.get("details"),
        status=data.get("status", "running"),
    )
    return success_response(activity, status_code=201)


@activity_bp.route("/<int:activity_id>", methods=["PUT", "PATCH"])
@handle_api_errors
def update_activity(activity_id):
    data = request.get_json(silent=True) or {}
    activity = current_pipeline().activities.update(
        activity_id,
        status=data.get("status"),
        message=data.get("message"),
        progress=data.get("progress"),
        details=data.get("details"),
        completed=bool(data.get("completed", False)),
    )
    return success_response(activity)


@activity_bp.route("/<int:activity_id>", methods=["DELETE"])
@handle_api_errors
def delete_activity(activity_id):
    current_pipeline().activities.delete(activity_id)
    return success_response(message=f"Activity {activity_id} deleted")


@activity_bp.route("/<int:activity_id>/pause", methods=["POST"])
@handle_api_errors
def pause_activity(activity_id):
    return success_response(current_pipeline().activities.pause(activity_id), message="Activity paused")


@activity_bp.route("/<int:activity_id>/resume", methods=["POST"])
@handle_api_errors
def resume_activity(activity_id):
    return success_response(current_pipeline().activities.resume(activity_id), message="Activity resumed")


@activity_bp.route("/<int:activity_id>/cancel", methods=["POST"])
@handle_api_errors
def cancel_activity(activity_id):
    return success_response(current_pipeline().activities.cancel(activity_id), message="Activity cancelled")


@activity_bp.route("/clean", methods=["POST"])
@handle_api_errors
def clean_activities():
    data = request.get_json(silent=True) or {}
    activities = current_pipeline().activities
    if data.get("all"):
        return success_response({"deleted": activities.clear_all()})
    days = int(data.get("days", 30))
    if days < 0:
        raise ValidationException("days must not be negative", field="days")
    return success_response({"deleted": activities.clean_old(days)})


@activity_bp.route("/stream", methods=["GET"])
def activity_stream():
    """Server-Sent Events feed of hub events, starting with the current status"""
    pipeline = current_pipeline()
    subscription = pipeline.hub.subscribe()
    initial = pipeline.activities.get_status()

    def generate():
        try:
            yield f"data: {json.dumps({'type': 'status_update', 'data': initial})}\n\n"
            while not subscription.closed:
                event = subscription.get(timeout=STREAM_KEEPALIVE)
                if event is None:
                    yield ": keep-alive\n\n"
                    continue
                yield f"data: {json.dumps(event, default=str)}\n\n"
        finally:
            subscription.close()

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
