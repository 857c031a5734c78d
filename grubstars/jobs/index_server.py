"""HTTP entrypoint that queues indexing runs and reports their status."""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, Optional

from flask import Flask, jsonify, request

from grubstars.core.bootstrap import build_orchestrator, prepare_database
from grubstars.core.config import Settings, get_settings
from grubstars.core.db import close_pool
from grubstars.core.rate_tracker import RateTracker
from grubstars.jobs.indexer import IndexingOrchestrator
from grubstars.jobs.job_runner import JobRunner

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT_SECONDS = 5.0


def _index_job(orchestrator: IndexingOrchestrator, location: str, category: Optional[str], limit: int) -> Dict[str, Any]:
    return orchestrator.index(location, categories=category, limit=limit).as_dict()


def create_app(
    job_runner: JobRunner,
    orchestrator_factory: Callable[[], IndexingOrchestrator] = build_orchestrator,
    settings: Optional[Settings] = None,
    rate_tracker: Optional[RateTracker] = None,
) -> Flask:
    settings = settings or get_settings()
    app = Flask(__name__)

    def _admission_denied() -> Optional[Any]:
        active = job_runner.active_count()
        if active >= settings.max_active_jobs:
            logger.warning("Rejecting job: %d active jobs (ceiling %d)", active, settings.max_active_jobs)
            return jsonify({"error": f"too many active jobs ({active}); try again later"}), 429
        return None

    @app.get("/healthz")
    def healthcheck() -> Any:
        return (
            jsonify(
                {
                    "status": "ok",
                    "active_jobs": job_runner.active_count(),
                    "revision": os.getenv("K_REVISION", "unknown"),
                }
            ),
            200,
        )

    @app.post("/index")
    def enqueue_index() -> Any:
        """
        Queue an indexing run.
        Required JSON fields: location
        Optional: category (str), limit (int)
        """
        payload: Dict[str, Any] = request.get_json(silent=True) or {}

        location = str(payload.get("location") or "").strip()
        if not location:
            return jsonify({"error": "missing fields: location"}), 400

        category = str(payload.get("category") or "").strip() or None

        limit = settings.default_limit
        limit_raw = payload.get("limit")
        if limit_raw is not None:
            try:
                limit = int(limit_raw)
            except (TypeError, ValueError):
                return jsonify({"error": "limit must be numeric"}), 400
            if limit <= 0:
                return jsonify({"error": "limit must be positive"}), 400

        denied = _admission_denied()
        if denied is not None:
            return denied

        orchestrator = orchestrator_factory()
        if not orchestrator.configured_adapters():
            return jsonify({"error": "No adapters configured. Set directory API keys in the environment."}), 503

        logger.info("Queueing index job: location=%s category=%s limit=%d", location, category, limit)
        job_id = job_runner.enqueue(_index_job, orchestrator, location, category, limit)
        return jsonify({"data": {"job_id": job_id, "status": "pending"}}), 202

    @app.post("/restaurants/<int:restaurant_id>/reindex")
    def enqueue_reindex(restaurant_id: int) -> Any:
        denied = _admission_denied()
        if denied is not None:
            return denied

        orchestrator = orchestrator_factory()
        if orchestrator.restaurant_repo.find_by_id(restaurant_id) is None:
            return jsonify({"error": f"restaurant {restaurant_id} not found"}), 404

        job_id = job_runner.enqueue(orchestrator.reindex_restaurant, restaurant_id)
        return jsonify({"data": {"job_id": job_id, "status": "pending"}}), 202

    @app.get("/jobs")
    def list_jobs() -> Any:
        jobs = [job.to_dict() for job in job_runner.all()]
        return jsonify({"data": jobs, "meta": {"count": len(jobs), "active": job_runner.active_count()}}), 200

    @app.get("/jobs/<job_id>")
    def read_job(job_id: str) -> Any:
        job = job_runner.get(job_id)
        if job is None:
            return jsonify({"error": "job not found"}), 404
        return jsonify({"data": job.to_dict()}), 200

    @app.get("/usage")
    def usage() -> Any:
        tracker = rate_tracker or RateTracker()
        return jsonify({"data": tracker.all_counts()}), 200

    return app


def main() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s - %(message)s")

    prepare_database(settings)
    job_runner = JobRunner(max_workers=settings.job_workers)
    app = create_app(job_runner, settings=settings)

    port = int(os.getenv("PORT") or settings.worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    try:
        app.run(host="0.0.0.0", port=port)
    finally:
        job_runner.shutdown(timeout=SHUTDOWN_TIMEOUT_SECONDS)
        close_pool()


if __name__ == "__main__":
    main()
