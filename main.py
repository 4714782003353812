# ============================================================
#  AuthentiScan — main.py
#
#  FastAPI application entry point.
#
#  Analysis pipeline:
#    select (upload → preview handle)
#      → analyze
#        → describe()          (probe.py, image decode probe)
#          → score()           (detection.py)
#            → confidence, verdict, details
#              → render / respond
# ============================================================

from fastapi import FastAPI, UploadFile, File, Form, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
import os, uuid, time, html, logging
from contextlib import asynccontextmanager
from typing import Optional

from config import MAX_UPLOAD_MB, SESSION_COOKIE, SESSION_TTL_HOURS, TMP_DIR
from detection import MEDIA_TYPES, AnalysisError, InvalidInputError, check_table, score
from probe import describe
from session import (AnalysisBlocked, AnalysisSession, PreviewHandle,
                     RESULTED, ERRORED, accept_for)

log = logging.getLogger("authentiscan.main")

# ─────────────────────────────────────────────
#  Session store
#  In-memory dict: session_token → AnalysisSession
#  Lives for the lifetime of the server process.
# ─────────────────────────────────────────────
_session_store: dict = {}


def _clean_sessions() -> None:
    """Drop sessions idle longer than SESSION_TTL_HOURS, releasing their files."""
    cutoff = time.time() - SESSION_TTL_HOURS * 3600
    expired = [k for k, s in _session_store.items() if s.last_seen < cutoff]
    for k in expired:
        _session_store.pop(k).close()
    if expired:
        log.info("Pruned %d idle sessions", len(expired))


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("AuthentiScan startup complete")
    yield
    # Shutdown: every preview file goes away with the process
    for s in _session_store.values():
        s.close()
    _session_store.clear()
    log.info("AuthentiScan shutdown, sessions released")

app = FastAPI(title="AuthentiScan", lifespan=lifespan)

# ─────────────────────────────────────────────
#  CORS
# ─────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ─────────────────────────────────────────────
#  Health
# ─────────────────────────────────────────────
@app.get("/health")
def health():
    return {"status": "ok"}

# ─────────────────────────────────────────────
#  Helpers
# ─────────────────────────────────────────────

class UploadTooLarge(Exception):
    pass


async def _save_upload(file: UploadFile, path: str) -> int:
    """Stream an upload to path in 1MB chunks. Returns bytes written."""
    limit = MAX_UPLOAD_MB * 1024 * 1024
    written = 0
    try:
        with open(path, "wb") as f:
            while chunk := await file.read(1024 * 1024):
                written += len(chunk)
                if written > limit:
                    raise UploadTooLarge(f"File exceeds {MAX_UPLOAD_MB} MB limit")
                f.write(chunk)
    except BaseException:
        if os.path.exists(path):
            os.remove(path)
        raise
    return written


def _get_session(request: Request) -> tuple:
    """Return (token, session), creating a session when the cookie is unknown."""
    _clean_sessions()
    token = request.cookies.get(SESSION_COOKIE, "")
    session = _session_store.get(token)
    if session is None:
        token = uuid.uuid4().hex
        session = AnalysisSession()
        _session_store[token] = session
        log.info("New session %s", token[:8])
    session.touch()
    return token, session


def _respond(request: Request, token: str, payload: dict, status_code: int = 200):
    """JSON for API clients; browsers posting the page forms go back to the page."""
    if "text/html" in request.headers.get("accept", ""):
        response = RedirectResponse("/", status_code=303)
    else:
        response = JSONResponse(payload, status_code=status_code)
    response.set_cookie(key=SESSION_COOKIE, value=token, httponly=True, samesite="lax")
    return response


def _reject(request: Request, token: str, session: AnalysisSession,
            message: str, status_code: int, **extra):
    """Refuse an action; the page shows the message until the next accepted action."""
    session.reject(message)
    return _respond(request, token, {"error": message, **extra}, status_code=status_code)


# ─────────────────────────────────────────────
#  Page
# ─────────────────────────────────────────────

def _media_buttons(current: str) -> str:
    parts = []
    for mt in MEDIA_TYPES:
        bg = "#2563eb" if mt == current else "#374151"
        parts.append(f"""
        <form method="post" action="/session/media-type/" style="display:inline">
          <input type="hidden" name="media_type" value="{mt}">
          <button style="background:{bg};color:white;border:none;border-radius:8px;
                         padding:10px 22px;margin:0 6px;cursor:pointer">{mt.title()}</button>
        </form>""")
    return "".join(parts)


def _result_html(result) -> str:
    color = "#ef4444" if result.is_deepfake else "#22c55e"
    rows = []
    for line in result.details:
        if "✓" in line:
            bg = "rgba(20,83,45,0.25)"
        elif "✗" in line:
            bg = "rgba(127,29,29,0.25)"
        else:
            bg = "rgba(75,85,99,0.25)"
        rows.append(f'<p style="background:{bg};padding:10px;border-radius:8px">{html.escape(line)}</p>')
    return f"""
      <div style="margin-top:30px;padding:20px;background:#374151;border-radius:12px;text-align:left">
        <h2 style="color:{color}">{result.verdict}</h2>
        <p style="color:#9ca3af">Analysis Confidence: {result.confidence}%</p>
        <h4>Detailed Analysis Results:</h4>
        {''.join(rows)}
      </div>"""


def _page_html(session: AnalysisSession) -> str:
    accept, formats = accept_for(session.media_type)
    weights = ", ".join(f"{name} ({w}%)" for name, w in check_table(session.media_type))

    error_block = ""
    if session.error:
        error_block = f"""
      <div style="margin:20px 0;padding:14px;border:1px solid #ef4444;border-radius:8px;color:#f87171">
        &#9888; {html.escape(session.error)}
      </div>"""

    notice_block = ""
    if session.notice:
        notice_block = f"""
      <div style="margin:20px 0;padding:14px;border:1px solid #f59e0b;border-radius:8px;color:#fbbf24">
        &#9888; {html.escape(session.notice)}
      </div>"""

    file_block = ""
    if session.handle is not None and not session.error:
        file_block = f"""
      <p style="color:#d1d5db">Selected: <strong>{html.escape(session.handle.filename)}</strong>
         ({session.handle.size_bytes / (1024 * 1024):.2f} MB, {html.escape(session.handle.mime_type or "unknown type")})</p>"""

    disabled = "" if session.can_analyze else "disabled"
    result_block = _result_html(session.result) if session.result and not session.error else ""

    return f"""
    <html>
    <body style="background:#111827;color:white;text-align:center;
                 padding:40px 20px;font-family:Arial,sans-serif">
      <h1 style="font-size:34px">Deepfake Detection System</h1>
      <p style="color:#9ca3af">Heuristic authenticity check of file properties</p>
      <div style="max-width:760px;margin:30px auto;background:#1f2937;border-radius:12px;padding:30px">
        <div style="margin-bottom:24px">{_media_buttons(session.media_type)}</div>
        <form method="post" action="/session/select/" enctype="multipart/form-data"
              style="border:2px dashed #4b5563;border-radius:8px;padding:24px">
          <p>Choose your {session.media_type} to upload</p>
          <p style="color:#9ca3af;font-size:14px">Supported formats: {formats}</p>
          <input type="file" name="file" accept="{accept}">
          <button>Upload</button>
        </form>
        {notice_block}
        {error_block}
        {file_block}
        <form method="post" action="/session/analyze/" style="margin-top:20px">
          <button {disabled} style="width:100%;padding:14px;border:none;border-radius:8px;
                  background:#2563eb;color:white;font-weight:bold">Analyze Content</button>
        </form>
        {result_block}
        <p style="color:#6b7280;font-size:12px;margin-top:30px">Checks: {weights}</p>
      </div>
    </body>
    </html>
    """


@app.get("/", response_class=HTMLResponse)
def home(request: Request):
    token, session = _get_session(request)
    response = HTMLResponse(_page_html(session))
    response.set_cookie(key=SESSION_COOKIE, value=token, httponly=True, samesite="lax")
    return response


# ─────────────────────────────────────────────
#  Session routes
# ─────────────────────────────────────────────

@app.get("/session/")
def session_state(request: Request):
    token, session = _get_session(request)
    return _respond(request, token, session.snapshot())


@app.post("/session/media-type/")
async def session_media_type(request: Request, media_type: str = Form(...)):
    token, session = _get_session(request)
    try:
        session.set_media_type(media_type)
    except InvalidInputError as e:
        return _reject(request, token, session, str(e), 400)
    return _respond(request, token, session.snapshot())


@app.post("/session/select/")
async def session_select(request: Request, file: Optional[UploadFile] = File(None)):
    token, session = _get_session(request)
    if file is None or not file.filename:
        return _reject(request, token, session, "No file selected.", 400)

    handle = PreviewHandle.allocate(file.filename, file.content_type or "")
    try:
        handle.size_bytes = await _save_upload(file, handle.path)
    except UploadTooLarge as e:
        return _reject(request, token, session, str(e), 413)

    session.select_file(handle)
    return _respond(request, token, session.snapshot())


@app.post("/session/analyze/")
async def session_analyze(request: Request):
    token, session = _get_session(request)
    try:
        result = await session.analyze()
    except AnalysisBlocked as e:
        return _reject(request, token, session, str(e), 409, state=session.state)

    if result is not None and session.state == RESULTED:
        return _respond(request, token, session.snapshot())
    if session.state == ERRORED:
        # already on the page as the session error
        return _respond(request, token, session.snapshot(), status_code=422)
    return _reject(request, token, session, "Selection changed during analysis", 409,
                   state=session.state)


@app.post("/session/reset/")
async def session_reset(request: Request):
    token, session = _get_session(request)
    session.reset()
    return _respond(request, token, session.snapshot())


# ─────────────────────────────────────────────
#  One-shot analysis
# ─────────────────────────────────────────────

@app.post("/analyze-file/")
async def analyze_file(file: UploadFile = File(...), media_type: str = Form(...)):
    if media_type not in MEDIA_TYPES:
        return JSONResponse({"error": f"Unsupported media type: {media_type}"}, status_code=400)

    tmp_path = os.path.join(TMP_DIR, f"{uuid.uuid4().hex}_{os.path.basename(file.filename or 'upload')}")
    try:
        size_bytes = await _save_upload(file, tmp_path)
        descriptor = await describe(media_type, tmp_path, file.filename or "",
                                    file.content_type or "", size_bytes)
        result = score(media_type, descriptor)
        return result.to_dict()

    except UploadTooLarge as e:
        return JSONResponse({"error": str(e)}, status_code=413)

    except AnalysisError as e:
        return JSONResponse({"error": str(e)}, status_code=422)

    except Exception as e:
        log.exception("analyze-file failed for %s", file.filename)
        return JSONResponse({"error": "An unexpected error occurred"}, status_code=500)

    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
