"""HTTP endpoints polled by a Star CloudPRNT printer.

The printer is configured with one server URL and walks through three verbs:

* ``POST /cloudprnt``   - poll; answer whether a job is ready and in which
  media types it can be fetched.
* ``GET /cloudprnt``    - download the staged job (204 when there is none).
* ``DELETE /cloudprnt`` - report that printing finished; drops the job.

``GET /health`` is a small liveness check for the hosting platform.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Response

from .config import STARPRNT_MEDIA_TYPE
from .printing import PrintJobChannel
from .store import QueueStore

logger = logging.getLogger(__name__)


def create_app(
    channel: PrintJobChannel,
    *,
    store: QueueStore | None = None,
    media_type: str = STARPRNT_MEDIA_TYPE,
) -> FastAPI:
    app = FastAPI(title="waitline printer bridge")

    @app.post("/cloudprnt")
    def poll() -> dict[str, Any]:
        return {"jobReady": channel.has_job(), "mediaTypes": [media_type]}

    @app.get("/cloudprnt")
    def fetch() -> Response:
        payload = channel.fetch()
        if payload is None:
            return Response(status_code=204)
        # Starlette sets Content-Length from the body.
        return Response(content=payload, media_type=media_type)

    @app.delete("/cloudprnt")
    def complete() -> Response:
        channel.acknowledge()
        return Response(status_code=200)

    @app.get("/health")
    def health() -> dict[str, Any]:
        body: dict[str, Any] = {"status": "ok", "jobReady": channel.has_job()}
        if store is not None:
            body["queueLength"] = len(store)
            body["nextNumber"] = store.next_number
        return body

    return app
