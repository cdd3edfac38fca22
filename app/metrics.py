from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from flask import Response, request
import time
import logging

logger = logging.getLogger("main")

# Activity bus
hub_events_published_total = Counter("vidstash_hub_events_published_total", "Events published on the activity hub", ["type"])

hub_events_dropped_total = Counter(
    "vidstash_hub_events_dropped_total", "Events dropped for a subscriber whose buffer was full"
)

hub_subscribers = Gauge("vidstash_hub_subscribers", "Number of live hub subscribers")

activities_total = Counter("vidstash_activities_total", "Activity transitions", ["task_type", "status"])

# Scraper
scraper_pages_fetched_total = Counter("vidstash_scraper_pages_fetched_total", "Forum pages fetched", ["status"])

scraper_links_discovered_total = Counter(
    "vidstash_scraper_links_discovered_total", "New download links stored", ["provider"]
)

# Link verifier
links_verified_total = Counter("vidstash_links_verified_total", "Download links verified", ["status"])

# Scheduler
scheduled_job_executions_total = Counter(
    "vidstash_scheduled_job_executions_total", "Scheduled job executions", ["job_type", "outcome"]
)

scheduled_job_duration_seconds = Histogram(
    "vidstash_scheduled_job_duration_seconds", "Scheduled job run time", ["job_type"]
)

scheduled_jobs_running = Gauge("vidstash_scheduled_jobs_running", "Scheduled jobs currently executing")

# Companion / watcher
companion_events_total = Counter("vidstash_companion_events_total", "Companion events emitted", ["type", "severity"])

watched_libraries = Gauge("vidstash_watched_libraries", "Libraries with a live filesystem observer")

# API Metrics
api_request_duration_seconds = Histogram(
    "vidstash_api_request_duration_seconds", "API request duration", ["endpoint", "method"]
)

api_requests_total = Counter("vidstash_api_requests_total", "Total API requests", ["endpoint", "method", "status_code"])


def init_metrics(app):
    @app.route("/api/metrics")
    def metrics():
        return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)

    @app.before_request
    def before_request():
        request.start_time = time.time()

    @app.after_request
    def after_request(response):
        duration = time.time() - getattr(request, "start_time", time.time())
        api_request_duration_seconds.labels(endpoint=request.endpoint or "unknown", method=request.method).observe(
            duration
        )
        api_requests_total.labels(
            endpoint=request.endpoint or "unknown", method=request.method, status_code=response.status_code
        ).inc()
        return response

    logger.info("Prometheus metrics initialized at /api/metrics")
