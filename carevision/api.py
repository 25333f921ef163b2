import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import FileResponse, HTMLResponse, Response
from fastapi.staticfiles import StaticFiles

from carevision.errors import CameraAccessDenied, FrameCaptureError, SessionStateError
from carevision.models import AppStatus
from carevision.presentation import build_view
from carevision.session import MonitoringSession
from carevision.settings import STATIC_DIR, WEB_DIR
from carevision.vlm.client import CareVisionClient

logger = logging.getLogger(__name__)


def _build_session():
    # Raises ConfigurationError when no API key is configured, aborting startup.
    return MonitoringSession(client=CareVisionClient())


def create_app(session=None):
    @asynccontextmanager
    async def lifespan(app):
        if getattr(app.state, "session", None) is None:
            app.state.session = _build_session()
        logger.info("CareVision API ready (model=%s)", app.state.session.client.model)
        yield
        app.state.session.close()

    app = FastAPI(title="CareVision API", lifespan=lifespan)
    app.state.session = session

    STATIC_DIR.mkdir(parents=True, exist_ok=True)
    app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    def _session(request):
        current = request.app.state.session
        if current is None:
            raise HTTPException(status_code=503, detail="Session is not initialised.")
        return current

    def _start(current):
        try:
            current.start()
        except SessionStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except CameraAccessDenied as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return build_view(current.state)

    def _stop(current):
        try:
            current.stop()
        except SessionStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return build_view(current.state)

    @app.get("/", response_class=HTMLResponse)
    def dashboard():
        return FileResponse(WEB_DIR / "dashboard.html")

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/api/health")
    def api_health():
        return {"status": "ok"}

    @app.get("/api/state")
    def state(request: Request):
        return _session(request).state.to_dict()

    @app.get("/api/view")
    def view(request: Request):
        return build_view(_session(request).state)

    @app.post("/api/monitoring/start")
    def start(request: Request):
        return _start(_session(request))

    @app.post("/api/monitoring/stop")
    def stop(request: Request):
        return _stop(_session(request))

    @app.post("/api/monitoring/toggle")
    def toggle(request: Request):
        current = _session(request)
        if current.status == AppStatus.MONITORING:
            return _stop(current)
        return _start(current)

    @app.get("/api/feed.jpg")
    def feed(request: Request):
        try:
            image = _session(request).latest_frame_jpeg()
        except FrameCaptureError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        if image is None:
            raise HTTPException(status_code=404, detail="Camera feed is offline.")
        return Response(content=image, media_type="image/jpeg", headers={"Cache-Control": "no-store"})

    return app


app = create_app()
