"""HTTP entrypoint for indexing jobs and catalog lookups."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from grubstars.core.catalog_store import CatalogStore, LocationNotIndexed
from grubstars.core.config import get_settings
from grubstars.domain.models import Listing
from grubstars.jobs.indexer import (
    IncompleteListing,
    Indexer,
    NoAdaptersConfigured,
    RestaurantNotFound,
    UnknownSource,
    build_indexer,
)
from grubstars.jobs.supervisor import JobSupervisor, TooManyJobs
from grubstars.vendors.base import AdapterAPIError, AdapterConfigurationError, AdapterRateLimitError

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & supervisor ----------
app = Flask(__name__)
_settings = get_settings()
_supervisor = JobSupervisor(
    max_workers=_settings.max_concurrent_jobs,
    retention_seconds=_settings.job_retention_seconds,
)


@lru_cache
def _get_indexer() -> Indexer:
    return build_indexer()


@lru_cache
def _get_store() -> CatalogStore:
    return CatalogStore()


# ---------- Envelope ----------


def _meta(**extra: Any) -> Dict[str, Any]:
    return {"timestamp": datetime.now(timezone.utc).isoformat(), **extra}


def _ok(data: Any, status: int = 200, **meta: Any):
    return jsonify({"data": data, "meta": _meta(**meta)}), status


def _error(code: str, message: str, status: int):
    return jsonify({"error": {"code": code, "message": message}, "meta": _meta()}), status


# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Report configuration without touching the database."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": settings.worker_port,
                "max_concurrent_jobs": settings.max_concurrent_jobs,
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.post("/index")
def enqueue_index() -> Any:
    """Start an area indexing job. Required JSON: location. Optional: category."""
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    location = str(payload.get("location") or "").strip()
    if not location:
        return _error("INVALID_REQUEST", "location is required", 400)
    category = str(payload.get("category") or "").strip() or None

    try:
        job = _supervisor.submit_area_index(_get_indexer(), location, category=category)
    except NoAdaptersConfigured as exc:
        return _error("NO_ADAPTERS", str(exc), 503)
    except TooManyJobs as exc:
        return _error("TOO_MANY_JOBS", str(exc), 429)
    return _ok(job, 202)


@app.get("/jobs")
def list_jobs() -> Any:
    jobs = _supervisor.list_jobs()
    return _ok(jobs, count=len(jobs))


@app.get("/jobs/<job_id>")
def get_job(job_id: str) -> Any:
    job = _supervisor.get(job_id)
    if job is None:
        return _error("NOT_FOUND", f"Job {job_id} not found", 404)
    return _ok(job)


@app.post("/restaurants")
def index_restaurant() -> Any:
    """Index one provider listing. Required JSON: source, external_id."""
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    missing = [f for f in ("source", "external_id") if not payload.get(f)]
    if missing:
        return _error("INVALID_REQUEST", f"missing fields: {', '.join(missing)}", 400)

    source = str(payload["source"]).strip().lower()
    listing = Listing(
        name=payload.get("name"),
        source=source,
        external_id=str(payload["external_id"]).strip(),
    )
    location: Optional[str] = payload.get("location")

    try:
        result = _get_indexer().index_single_listing(listing, source, location=location)
    except UnknownSource as exc:
        return _error("UNKNOWN_SOURCE", str(exc), 400)
    except AdapterConfigurationError as exc:
        return _error("ADAPTER_NOT_CONFIGURED", str(exc), 400)
    except IncompleteListing as exc:
        return _error("INCOMPLETE_LISTING", str(exc), 502)
    except AdapterRateLimitError as exc:
        return _error("RATE_LIMITED", str(exc), 429)
    except AdapterAPIError as exc:
        if exc.status == 429:
            return _error("RATE_LIMITED", str(exc), 429)
        return _error("API_ERROR", str(exc), 502)
    return _ok(result, 201)


@app.post("/restaurants/<int:restaurant_id>/reindex")
def reindex_restaurant(restaurant_id: int) -> Any:
    try:
        result = _get_indexer().reindex(restaurant_id)
    except RestaurantNotFound as exc:
        return _error("NOT_FOUND", str(exc), 404)
    return _ok(result)


@app.get("/restaurants/search")
def search_restaurants() -> Any:
    name = (request.args.get("name") or "").strip()
    if not name:
        return _error("INVALID_REQUEST", "name is required", 400)
    location = (request.args.get("location") or "").strip() or None

    try:
        restaurants = _get_store().search_by_name(name, location=location)
    except LocationNotIndexed as exc:
        return _error("LOCATION_NOT_INDEXED", str(exc), 400)
    return _ok([r.to_dict() for r in restaurants], count=len(restaurants))


@app.get("/restaurants/<int:restaurant_id>")
def get_restaurant(restaurant_id: int) -> Any:
    restaurant = _get_store().get_restaurant(restaurant_id)
    if restaurant is None:
        return _error("NOT_FOUND", f"Restaurant with ID {restaurant_id} not found", 404)
    return _ok(restaurant.to_dict())


@app.get("/categories")
def list_categories() -> Any:
    categories = _get_store().list_categories()
    return _ok(categories, count=len(categories))


@app.get("/locations")
def list_locations() -> Any:
    locations = _get_store().list_locations()
    return _ok(locations, count=len(locations))


@app.get("/stats")
def stats() -> Any:
    """Catalog coverage plus per-provider API usage for the current month."""
    data = _get_store().stats()
    data["api_usage"] = _get_indexer().api_usage()
    return _ok(data)


def main() -> None:
    env_port = os.getenv("PORT")
    port = int(env_port or _settings.worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
