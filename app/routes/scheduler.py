"""
Scheduler Routes - scheduled job definitions, manual runs and execution history
"""

from flask import Blueprint, request

from api_responses import handle_api_errors, success_response
from exceptions import ValidationException
from pipeline import current_pipeline
from services.scheduler_service import EDITABLE_FIELDS

scheduler_bp = Blueprint("scheduler", __name__, url_prefix="/api/scheduler")


@scheduler_bp.route("/jobs", methods=["GET"])
@handle_api_errors
def list_jobs():
    return success_response(current_pipeline().scheduler.get_all_jobs())


@scheduler_bp.route("/jobs", methods=["POST"])
@handle_api_errors
def create_job():
    data = request.get_json(silent=True) or {}
    job = current_pipeline().scheduler.create_job(
        name=data.get("name"),
        job_type=data.get("job_type"),
        schedule_type=data.get("schedule_type", "interval"),
        schedule_config=data.get("schedule_config"),
        target_type=data.get("target_type"),
        target_id=data.get("target_id"),
        enabled=data.get("enabled", True),
    )
    return success_response(job, status_code=201)


@scheduler_bp.route("/jobs/<int:job_id>", methods=["GET"])
@handle_api_errors
def get_job(job_id):
    return success_response(current_pipeline().scheduler.get_job(job_id))


@scheduler_bp.route("/jobs/<int:job_id>", methods=["PUT", "PATCH"])
@handle_api_errors
def update_job(job_id):
    data = request.get_json(silent=True) or {}
    fields = {key: value for key, value in data.items() if key in EDITABLE_FIELDS}
    if not fields:
        raise ValidationException(f"Nothing to update; editable fields are {', '.join(EDITABLE_FIELDS)}")
    return success_response(current_pipeline().scheduler.update_job(job_id, **fields))


@scheduler_bp.route("/jobs/<int:job_id>", methods=["DELETE"])
@handle_api_errors
def delete_job(job_id):
    current_pipeline().scheduler.delete_job(job_id)
    return success_response(message=f"Job {job_id} deleted")


@scheduler_bp.route("/jobs/<int:job_id>/run", methods=["POST"])
@handle_api_errors
def run_job(job_id):
    job = current_pipeline().scheduler.run_job_now(job_id)
    return success_response(job, message="Job started", status_code=202)


@scheduler_bp.route("/jobs/due", methods=["GET"])
@handle_api_errors
def due_jobs():
    return success_response(current_pipeline().scheduler.get_due_jobs())


@scheduler_bp.route("/history", methods=["GET"])
@handle_api_errors
def execution_history():
    job_id = request.args.get("job_id", type=int)
    limit = min(max(request.args.get("limit", 50, type=int), 1), 500)
    return success_response(current_pipeline().scheduler.get_execution_history(job_id, limit))


@scheduler_bp.route("/status", methods=["GET"])
@handle_api_errors
def scheduler_status():
    pipeline = current_pipeline()
    status = pipeline.scheduler.get_status()
    status["builtin_jobs"] = pipeline.job_scheduler.get_jobs() if pipeline.workers_started else []
    return success_response(status)
