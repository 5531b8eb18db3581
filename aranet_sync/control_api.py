"""Status page, passkey form and runtime controls using FastAPI."""
from datetime import datetime, timedelta, timezone
from html import escape
from typing import Optional
from fastapi import FastAPI, Form, HTTPException
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel
import logging
import time

from aranet_sync.errors import NoPasskeyRequestPending, PasskeyDeliveryTimeout
from aranet_sync.passkey import PasskeyMediator, parse_passkey

logger = logging.getLogger(__name__)


class LogLevelRequest(BaseModel):
    """Request to change log level."""
    level: str


def format_duration(d: timedelta) -> str:
    """Format a duration as a human-readable "... ago" string."""
    seconds = d.total_seconds()
    if seconds < 60:
        return f"{seconds:.0f} seconds ago"
    if seconds < 3600:
        minutes = int(seconds // 60)
        return "1 minute ago" if minutes == 1 else f"{minutes} minutes ago"
    if seconds < 86400:
        hours = int(seconds // 3600)
        return "1 hour ago" if hours == 1 else f"{hours} hours ago"
    days = int(seconds // 86400)
    return "1 day ago" if days == 1 else f"{days} days ago"


_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Aranet4 collector</title></head>
<body>
<h1>Aranet4 collector</h1>
<table>
<tr><th>Last successful refresh</th><td>{last_success}</td></tr>
<tr><th>Last reported measurement</th><td>{last_reported}</td></tr>
<tr><th>Current time</th><td>{now}</td></tr>
</table>
{passkey_form}
</body>
</html>
"""

_PASSKEY_FORM = """<h2>Pairing</h2>
<p>The device is waiting to pair. Enter the passkey shown on its display.</p>
<form method="post" action="/">
<input type="text" name="passkey" inputmode="numeric" autofocus>
<button type="submit">Pair</button>
</form>
"""


def _describe(ts: Optional[datetime], now: datetime) -> str:
    if ts is None:
        return "never"
    return escape(f"{ts.isoformat(timespec='seconds')} ({format_duration(now - ts)})")


class ControlAPI:
    """FastAPI app serving the status page and pairing form."""

    def __init__(self, scheduler, passkey: PasskeyMediator):
        """
        Initialize control API.

        Args:
            scheduler: The refresh scheduler to report on and trigger
            passkey: Mediator receiving passkeys from the web form
        """
        self.scheduler = scheduler
        self.passkey = passkey
        self.start_time = time.time()
        self.app = FastAPI(title="Aranet4 Prometheus Collector")

        # Setup routes
        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/", response_class=HTMLResponse)
        def index():
            """Human-readable status page."""
            now = datetime.now(timezone.utc)
            return _PAGE.format(
                last_success=_describe(self.scheduler.last_success, now),
                last_reported=_describe(self.scheduler.last_reported, now),
                now=escape(now.isoformat(timespec="seconds")),
                passkey_form=_PASSKEY_FORM if self.passkey.wants_passkey else "",
            )

        # Sync handler: delivery blocks for up to the delivery timeout
        @self.app.post("/")
        def submit_passkey(passkey: Optional[str] = Form(None)):
            """Hand a passkey from the web form to a waiting pairing attempt."""
            if not passkey:
                raise HTTPException(status_code=400, detail="passkey is required")
            try:
                value = parse_passkey(passkey)
            except ValueError:
                raise HTTPException(status_code=400, detail="passkey must be a number")

            try:
                self.passkey.submit(value)
            except NoPasskeyRequestPending:
                raise HTTPException(status_code=400, detail="no passkey request pending")
            except PasskeyDeliveryTimeout:
                logger.error("Timeout sending passkey to pairing procedure")
                raise HTTPException(status_code=500, detail="timeout sending passkey")

            logger.info("Passkey received via web interface")
            return RedirectResponse("/", status_code=303)

        @self.app.get("/healthz")
        def healthz():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": time.time()}

        @self.app.get("/status")
        def status():
            """Get current collector status."""
            last_success = self.scheduler.last_success
            last_reported = self.scheduler.last_reported
            outcome = self.scheduler.last_outcome
            return {
                "uptime_seconds": time.time() - self.start_time,
                "cycle_count": self.scheduler.cycle_count,
                "last_success": last_success.isoformat() if last_success else None,
                "last_reported": last_reported.isoformat() if last_reported else None,
                "last_outcome": {
                    "status": outcome.status,
                    "latency_seconds": round(outcome.latency, 3),
                    "error": outcome.error,
                } if outcome else None,
                "wants_passkey": self.passkey.wants_passkey,
            }

        @self.app.get("/metrics")
        def metrics():
            """Prometheus scrape endpoint."""
            return Response(
                generate_latest(self.scheduler.metrics.registry),
                media_type=CONTENT_TYPE_LATEST,
            )

        @self.app.post("/control/refresh")
        def trigger_refresh():
            """Start the next refresh cycle now."""
            self.scheduler.trigger()
            return {"status": "refresh_triggered", "timestamp": time.time()}

        @self.app.post("/control/loglevel")
        def set_log_level(request: LogLevelRequest):
            """Change log level at runtime."""
            level = request.level.upper()

            if level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid log level: {level}"
                )

            logging.getLogger().setLevel(getattr(logging, level))
            logger.info(f"Log level changed to: {level}")

            return {
                "status": "log_level_changed",
                "level": level,
                "timestamp": time.time()
            }

    def run(self, host: str = "0.0.0.0", port: int = 9090):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port, log_level="info")
