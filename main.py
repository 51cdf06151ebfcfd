"""
Main API module for linkindex.

Responsibilities:
    - Expose REST endpoints for creating short links and redirecting
    - Record every redirect in the link's visit histogram
    - Serve per-link stats as JSON and as a from,to,count CSV export

Architecture:
    - App Factory pattern (create_app) for test isolation and DI.
    - In-memory key-value backend by default; Postgres or Redis via env.
    - LinkResolver owns validation, dedupe, alias rules and visit recording;
      routes only translate between HTTP and domain errors.

LLM Prompt Example:
    "Explain how to structure a FastAPI service with an application factory,
    injected dependencies, and a clean separation between API and business logic."
"""

import csv
import io
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from linkindex.analytics.analytics import Analytics
from linkindex.config import settings
from linkindex.errors import AliasInUse, BackendUnavailable, EncodingError, InvalidInput, NotFound
from linkindex.index.records import LinkRecord, LinkRecordStore
from linkindex.manager.link_resolver import LinkResolver, LinkStats
from linkindex.storage.base import BaseStorage
from linkindex.storage.storage_factory import get_storage


class URLRequest(BaseModel):
    """Request payload for creating a new short link."""
    url: str
    alias: Optional[str] = None


def _record_payload(record: LinkRecord) -> Dict[str, Any]:
    return {
        "suffix": record.suffix,
        "alias": record.alias,
        "original_url": record.original_url,
        "created_at": record.created_at.isoformat(),
        "visit_count": record.visit_count,
    }


def _stats_payload(stats: LinkStats) -> Dict[str, Any]:
    return {
        "suffix": stats.suffix,
        "alias": stats.alias,
        "original_url": stats.original_url,
        "created_at": stats.created_at.isoformat(),
        "visit_count": stats.visit_count,
        "distribution": [
            {"from": b.start.isoformat(), "to": b.end.isoformat(), "count": b.count}
            for b in stats.distribution()
        ],
    }


def create_app(storage: Optional[BaseStorage] = None, resolver: Optional[LinkResolver] = None) -> FastAPI:
    """
    Factory function to build and configure a new FastAPI app instance.

    Args:
        storage: key-value backend; defaults to `get_storage()` (env driven).
        resolver: fully wired resolver; overrides `storage` when given.

    Why an app factory?
        - Enables per-test isolation in pytest.
        - Encourages dependency injection and easy swapping of implementations.
        - Avoids accidental global state across workers/processes.
    """
    app = FastAPI(
        title="linkindex",
        description="URL shortener with content-addressed indexes and per-link visit histograms",
        docs_url="/docs",
    )
    log = logging.getLogger("linkindex")

    # basic console logging (optional)
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO)

    # ----------------------------------------------------------------
    # Per-app instances (isolated for tests, swappable for production)
    # ----------------------------------------------------------------
    if resolver is None:
        store = LinkRecordStore(storage if storage is not None else get_storage())
        resolver = LinkResolver.from_settings(store, analytics=Analytics())
    app.state.resolver = resolver
    log.info("linkindex backend: %s", type(resolver.store.backend).__name__)

    def _http_error(exc: Exception) -> HTTPException:
        if isinstance(exc, (InvalidInput, AliasInUse)):
            return HTTPException(status_code=400, detail=str(exc))
        if isinstance(exc, NotFound):
            return HTTPException(status_code=404, detail="Link not found")
        if isinstance(exc, BackendUnavailable):
            log.error("backend unavailable: %s", exc)
            return HTTPException(status_code=503, detail="Storage temporarily unavailable")
        log.exception("internal error: %s", exc)
        return HTTPException(status_code=500, detail="Internal error")

    def _short_url(request: Request, suffix: str) -> str:
        if settings.SHORT_BASE_URL:
            return settings.SHORT_BASE_URL.rstrip("/") + "/" + suffix
        return str(request.url_for("redirect_link", token=suffix))

    # Health check
    @app.get("/health")
    def health():
        return {"status": "ok"}

    # ----------------------------------------------------------------
    # Routes
    # ----------------------------------------------------------------
    @app.post("/slink")
    def create_link(req: URLRequest, request: Request) -> Dict[str, Any]:
        """
        Create (or fetch) the short link for a URL.

        Raises:
            HTTPException: 400 on invalid input or alias conflict, 503 when the
                backend is down.
        """
        try:
            record = resolver.create_or_fetch(req.url, req.alias)
        except (InvalidInput, AliasInUse, BackendUnavailable, EncodingError) as exc:
            raise _http_error(exc)

        payload = _record_payload(record)
        payload["short_url"] = _short_url(request, record.suffix)
        return payload

    @app.get("/slink/{token}")
    def redirect_link(token: str, request: Request) -> Response:
        """
        Redirect a suffix or alias to its original URL, counting the visit.

        Browsers (Accept: text/html) get a 302; API clients get JSON with the
        original URL and the visit count so far.
        """
        try:
            record = resolver.visit(token)
        except (NotFound, BackendUnavailable, EncodingError) as exc:
            raise _http_error(exc)

        accept = request.headers.get("accept", "").lower()
        if "text/html" in accept:
            return RedirectResponse(url=record.original_url, status_code=302)

        return JSONResponse({"original_url": record.original_url, "visits": record.visit_count})

    @app.get("/slink/{token}/stats")
    def link_stats(token: str) -> Dict[str, Any]:
        try:
            return _stats_payload(resolver.stats(token))
        except (NotFound, BackendUnavailable, EncodingError) as exc:
            raise _http_error(exc)

    @app.get("/slink/{token}/stats.csv")
    def link_stats_csv(token: str) -> Response:
        """Export the non-empty histogram buckets as from,to,count rows."""
        try:
            stats = resolver.stats(token)
        except (NotFound, BackendUnavailable, EncodingError) as exc:
            raise _http_error(exc)

        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(["from", "to", "count"])
        for bucket in stats.distribution():
            writer.writerow([bucket.start.isoformat(), bucket.end.isoformat(), bucket.count])
        return Response(
            content=buf.getvalue(),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{stats.suffix}.csv"'},
        )

    @app.get("/analytics/summary")
    def analytics_summary() -> Dict[str, Any]:
        """Counts of non-fatal events (out-of-window visits, misses) per token."""
        return resolver.analytics.summary()

    return app


# `uvicorn main:app --reload` and `from main import app` continue to work.
app = create_app()
