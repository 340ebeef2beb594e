"""
Shipyard HTTP API

Architectural Intent:
- Lightweight web server built entirely on Python stdlib (http.server + asyncio).
- Receives push notifications and build artifacts, records approver decisions,
  and exposes run status and the stage-event log.
- Serves a minimal HTML page at the root listing recent runs.
- Thin presentation adapter: every write goes through the coordinator, the
  approval gate or the rollback use case.

API Surface:
    GET  /                              -> HTML run overview
    GET  /api/runs                      -> JSON list of runs
    GET  /api/runs/{id}                 -> JSON run status
    GET  /api/runs/{id}/events          -> JSON stage-event log
    GET  /api/approvals                 -> JSON pending approval requests
    POST /api/triggers                  -> push notification {repository, branch, commit_sha}
    POST /api/builds                    -> build artifact {image_repository, image_tag, digest}
    POST /api/approvals/{request_id}    -> decision {approver, decision: approve|reject}
    POST /api/runs/{id}/cancel          -> cancel a run
    POST /api/rollback                  -> replay a prior tag {image_repository, tag}

Threading Model:
    The stdlib HTTPServer is synchronous.  We run it in a background thread so
    the main asyncio event loop keeps driving pipeline runs.  Handlers schedule
    coroutines on that loop with run_coroutine_threadsafe and wait for the result,
    so coordinator and approval state are only ever touched from the loop thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import threading
from http import HTTPStatus
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import Any, Awaitable, Optional

from shipyard.application.dtos.pipeline_dtos import (
    ApprovalDecision,
    BuildArtifactInput,
    RollbackRequest,
    TriggerEvent,
)
from shipyard.application.orchestration.pipeline_coordinator import PipelineCoordinator
from shipyard.application.services.approval_gate import ApprovalGate
from shipyard.application.use_cases.rollback_deployment import RollbackDeployment
from shipyard.domain.entities.pipeline_run import PipelineRun
from shipyard.domain.errors import (
    ApprovalRequestNotFound,
    InvalidTransition,
    PipelineError,
    RunNotFound,
)
from shipyard.infrastructure.repositories.sqlite_run_store import SQLiteRunStore

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30

_OVERVIEW_HTML = """\
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>Shipyard Runs</title>
  <style>
    body { font-family: system-ui, sans-serif; background: #0f1117; color: #e0e0e0; margin: 2rem; }
    table { width: 100%; border-collapse: collapse; }
    th, td { padding: 0.5rem 1rem; text-align: left; border-bottom: 1px solid #2a2d3a; }
    .SUCCEEDED { color: #4caf50; } .FAILED { color: #f44336; }
    .CANCELLED { color: #888; } .AWAITING_APPROVAL { color: #ff9800; }
  </style>
</head>
<body>
  <h1>Shipyard Runs</h1>
  <table>
    <thead><tr><th>Run</th><th>Kind</th><th>Status</th><th>Stage</th><th>Image</th></tr></thead>
    <tbody id="runs"></tbody>
  </table>
  <script>
    async function refresh() {
      const data = await (await fetch('/api/runs')).json();
      document.getElementById('runs').innerHTML = data.runs.map(r =>
        `<tr><td>${r.run_id}</td><td>${r.kind}</td>
         <td class="${r.status}">${r.status}</td>
         <td>${r.current_stage || ''}</td><td>${r.image_ref || ''}</td></tr>`
      ).join('');
    }
    refresh();
    setInterval(refresh, 5000);
  </script>
</body>
</html>
"""

_RUN_PATH_RE = re.compile(r"^/api/runs/([^/]+)$")
_RUN_EVENTS_PATH_RE = re.compile(r"^/api/runs/([^/]+)/events$")
_RUN_CANCEL_PATH_RE = re.compile(r"^/api/runs/([^/]+)/cancel$")
_APPROVAL_PATH_RE = re.compile(r"^/api/approvals/([^/]+)$")


class ShipyardRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the Shipyard API.

    The owning ShipyardWebApp is attached to the server as `app`.
    """

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.debug("web: %s", format % args)

    @property
    def app(self) -> ShipyardWebApp:
        return self.server.app  # type: ignore[attr-defined]

    # ---- routing -----------------------------------------------------------

    def do_GET(self) -> None:  # noqa: N802
        """Route GET requests."""
        path = self.path.split("?", 1)[0]
        if path == "/":
            self._send_html(_OVERVIEW_HTML)
        elif path == "/api/runs":
            self._dispatch(self._list_runs)
        elif path == "/api/approvals":
            self._dispatch(self._list_approvals)
        elif match := _RUN_EVENTS_PATH_RE.match(path):
            self._dispatch(self._run_events, match.group(1))
        elif match := _RUN_PATH_RE.match(path):
            self._dispatch(self._run_status, match.group(1))
        else:
            self._send_json({"error": "not found"}, HTTPStatus.NOT_FOUND)

    def do_POST(self) -> None:  # noqa: N802
        """Route POST requests."""
        path = self.path.split("?", 1)[0]
        if path == "/api/triggers":
            self._dispatch(self._handle_trigger)
        elif path == "/api/builds":
            self._dispatch(self._handle_build)
        elif path == "/api/rollback":
            self._dispatch(self._handle_rollback)
        elif match := _APPROVAL_PATH_RE.match(path):
            self._dispatch(self._handle_decision, match.group(1))
        elif match := _RUN_CANCEL_PATH_RE.match(path):
            self._dispatch(self._handle_cancel, match.group(1))
        else:
            self._send_json({"error": "not found"}, HTTPStatus.NOT_FOUND)

    def _dispatch(self, endpoint, *args: str) -> None:
        """Runs an endpoint and maps pipeline errors to HTTP statuses."""
        try:
            payload, status = endpoint(*args)
        except json.JSONDecodeError:
            self._send_json({"error": "invalid JSON body"}, HTTPStatus.BAD_REQUEST)
        except (RunNotFound, ApprovalRequestNotFound) as e:
            self._send_json(e.to_dict(), HTTPStatus.NOT_FOUND)
        except InvalidTransition as e:
            self._send_json(e.to_dict(), HTTPStatus.CONFLICT)
        except PipelineError as e:
            self._send_json(e.to_dict(), HTTPStatus.UNPROCESSABLE_ENTITY)
        except (ValueError, TypeError) as e:
            self._send_json({"error": str(e)}, HTTPStatus.BAD_REQUEST)
        except Exception as e:
            logger.exception("Unhandled error on %s %s", self.command, self.path)
            self._send_json({"error": str(e)}, HTTPStatus.INTERNAL_SERVER_ERROR)
        else:
            self._send_json(payload, status)

    # ---- read endpoints ----------------------------------------------------

    def _list_runs(self) -> tuple[Any, HTTPStatus]:
        runs = [run.to_dict() for run in self.app.call(self.app.active_runs())]
        if self.app.run_store is not None:
            known = {r["run_id"] for r in runs}
            runs += [r for r in self.app.run_store.list_runs() if r["run_id"] not in known]
        return {"runs": runs}, HTTPStatus.OK

    def _run_status(self, run_id: str) -> tuple[Any, HTTPStatus]:
        return self.app.call(self.app.find_run(run_id)), HTTPStatus.OK

    def _run_events(self, run_id: str) -> tuple[Any, HTTPStatus]:
        run = self.app.call(self.app.find_run(run_id))
        return {"run_id": run_id, "events": run["stage_events"]}, HTTPStatus.OK

    def _list_approvals(self) -> tuple[Any, HTTPStatus]:
        pending = self.app.call(self.app.pending_approvals())
        return {"approvals": [r.to_dict() for r in pending]}, HTTPStatus.OK

    # ---- write endpoints ---------------------------------------------------

    def _handle_trigger(self) -> tuple[Any, HTTPStatus]:
        body = self._read_json()
        trigger = TriggerEvent.from_dict(body)
        artifact = None
        if body.get("image_repository") or body.get("imageRepository"):
            artifact = BuildArtifactInput.from_dict(body).to_artifact(trigger)
        run = self.app.call(self.app.coordinator.handle_trigger(trigger, artifact))
        if run is None:
            return {"run": None, "ignored": True}, HTTPStatus.OK
        return {"run": run.to_dict()}, HTTPStatus.ACCEPTED

    def _handle_build(self) -> tuple[Any, HTTPStatus]:
        body = self._read_json()
        build = BuildArtifactInput.from_dict(body)
        trigger = None
        if body.get("repository"):
            trigger = TriggerEvent.from_dict(body)
        run = self.app.call(
            self.app.coordinator.start_ci(build.to_artifact(trigger), trigger)
        )
        return {"run": run.to_dict()}, HTTPStatus.ACCEPTED

    def _handle_decision(self, request_id: str) -> tuple[Any, HTTPStatus]:
        decision = ApprovalDecision.from_dict(self._read_json(), request_id=request_id)
        request = self.app.call(self.app.decide(decision))
        return request.to_dict(), HTTPStatus.OK

    def _handle_cancel(self, run_id: str) -> tuple[Any, HTTPStatus]:
        run = self.app.call(self.app.coordinator.cancel(run_id))
        return {"run": run.to_dict(), "cancel_requested": not run.is_terminal}, HTTPStatus.ACCEPTED

    def _handle_rollback(self) -> tuple[Any, HTTPStatus]:
        request = RollbackRequest.from_dict(self._read_json())
        run = self.app.call(
            self.app.rollback.execute(request.image_repository, request.tag)
        )
        return {"run": run.to_dict()}, HTTPStatus.ACCEPTED

    # ---- helpers -----------------------------------------------------------

    def _read_json(self) -> dict[str, Any]:
        content_length = int(self.headers.get("Content-Length", 0))
        raw = self.rfile.read(content_length)
        body = json.loads(raw) if raw else {}
        if not isinstance(body, dict):
            raise ValueError("JSON body must be an object")
        return body

    def _send_html(self, html: str) -> None:
        body = html.encode("utf-8")
        self.send_response(HTTPStatus.OK)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_json(self, data: Any, status: HTTPStatus = HTTPStatus.OK) -> None:
        """Serialize *data* as JSON and send it as the HTTP response."""
        body = json.dumps(data, default=str).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


class ShipyardWebApp:
    """Async-friendly web server for the Shipyard API.

    Usage::

        app = ShipyardWebApp(coordinator, approval_gate, rollback)
        await app.start("0.0.0.0", 8080)
        # ... later ...
        app.stop()
    """

    def __init__(
        self,
        coordinator: PipelineCoordinator,
        approval_gate: ApprovalGate,
        rollback: RollbackDeployment,
        run_store: Optional[SQLiteRunStore] = None,
    ) -> None:
        self.coordinator = coordinator
        self.approval_gate = approval_gate
        self.rollback = rollback
        self.run_store = run_store
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._server: Optional[HTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        assert self._server is not None
        return self._server.server_address[1]

    async def start(self, host: str = "127.0.0.1", port: int = 8080) -> None:
        """Start the web server in a background thread.

        The current event loop is captured so handlers can schedule work on it.
        """
        self._loop = asyncio.get_running_loop()
        self._server = HTTPServer((host, port), ShipyardRequestHandler)
        self._server.app = self  # type: ignore[attr-defined]

        self._thread = threading.Thread(
            target=self._server.serve_forever,
            daemon=True,
            name="shipyard-web",
        )
        self._thread.start()
        logger.info("Shipyard API started on http://%s:%d", host, self.port)

    def stop(self) -> None:
        """Shut down the web server gracefully."""
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            logger.info("Shipyard API stopped")
        if self._thread is not None:
            self._thread.join(timeout=5)

    def call(self, coro: Awaitable[Any]) -> Any:
        """Runs a coroutine on the application loop from a handler thread."""
        assert self._loop is not None
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout=REQUEST_TIMEOUT_SECONDS)

    async def active_runs(self) -> list[PipelineRun]:
        return self.coordinator.list_runs()

    async def find_run(self, run_id: str) -> dict[str, Any]:
        try:
            return self.coordinator.get_status(run_id).to_dict()
        except RunNotFound:
            stored = self.run_store.get_run(run_id) if self.run_store else None
            if stored is None:
                raise
            return stored

    async def pending_approvals(self):
        return self.approval_gate.pending()

    async def decide(self, decision: ApprovalDecision):
        if decision.approved:
            return self.approval_gate.record_approval(decision.request_id, decision.approver)
        return self.approval_gate.record_rejection(decision.request_id, decision.approver)
