import asyncio
import logging
import math
import os
import time

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from .services.counter_recommend import list_defense_teams, recommend_counters, what_can_beat
from .services.image_normalize import DecodeError, decode_image
from .services.ocr_text import (
    OcrDependencyError,
    OcrEngineUnavailableError,
    inspect_ocr_runtime,
    recognize_name,
    recognize_power,
)
from .services.reference_db import ReferenceDatabase, ReferenceDataError, ReferenceStore
from .services.session import (
    MAX_SLOTS,
    SessionInputError,
    analyze_names,
    analyze_portraits_async,
)

app = FastAPI(title="Warscout API")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("warscout.main")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


APP_VERSION = os.getenv("APP_VERSION", "dev")
APP_COMMIT = os.getenv("COMMIT_SHA", "unknown")
MAX_UPLOAD_MB = _env_float("MAX_UPLOAD_MB", 4.0)
MAX_UPLOAD_BYTES = max(1, int(MAX_UPLOAD_MB * 1024 * 1024))
DECODE_TIMEOUT_SECONDS = max(1.0, _env_float("DECODE_TIMEOUT_SECONDS", 10.0))
LOAD_TIMEOUT_SECONDS = max(1.0, _env_float("LOAD_TIMEOUT_SECONDS", 10.0))
OCR_TIMEOUT_SECONDS = max(1.0, _env_float("OCR_TIMEOUT_SECONDS", 15.0))
SLOT_WORKERS = max(1, _env_int("SLOT_WORKERS", MAX_SLOTS))

reference_store = ReferenceStore()


def _error(
    *,
    status_code: int,
    code: str,
    message: str,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "ok": False,
            "error": {
                "code": code,
                "message": message,
            },
        },
    )


def _parse_power(raw: object) -> float | None:
    if raw is None or raw == "":
        return None
    try:
        value = float(str(raw).replace(",", "").strip())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="'power' must be a number") from exc
    if not math.isfinite(value):
        raise HTTPException(status_code=400, detail="'power' must be a finite number")
    if value <= 0:
        raise HTTPException(status_code=400, detail="'power' must be positive")
    return value


async def _database() -> ReferenceDatabase:
    try:
        return await reference_store.get_async(timeout_seconds=LOAD_TIMEOUT_SECONDS)
    except ReferenceDataError as exc:
        logger.exception("reference data unavailable")
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@app.middleware("http")
async def request_log_middleware(request: Request, call_next):
    started = time.perf_counter()
    method = request.method
    path = request.url.path
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        logger.exception(
            "request failed method=%s path=%s duration_ms=%.2f",
            method,
            path,
            elapsed_ms,
        )
        raise

    elapsed_ms = (time.perf_counter() - started) * 1000.0
    logger.info(
        "request method=%s path=%s status=%s duration_ms=%.2f",
        method,
        path,
        response.status_code,
        elapsed_ms,
    )
    return response


@app.on_event("startup")
def _startup_reference() -> None:
    logger.info(
        "startup config version=%s commit=%s data_dir=%s",
        APP_VERSION,
        APP_COMMIT,
        reference_store.data_dir,
    )
    logger.info(
        "startup config max_upload_mb=%.2f decode_timeout_seconds=%.2f slot_workers=%d",
        MAX_UPLOAD_MB,
        DECODE_TIMEOUT_SECONDS,
        SLOT_WORKERS,
    )
    logger.info("startup ocr runtime %s", inspect_ocr_runtime())
    try:
        reference_store.get()
        logger.info("startup reference database ready")
    except ReferenceDataError:
        logger.exception("startup reference load failed; will retry on first request")


@app.get("/health")
def health() -> dict[str, bool]:
    return {"ok": True}


@app.get("/api/reference/summary")
async def reference_summary() -> dict[str, int]:
    db = await _database()
    return db.summary()


@app.get("/api/teams")
async def teams(q: str = "") -> list[dict[str, object]]:
    db = await _database()
    needle = q.strip().lower()
    out: list[dict[str, object]] = []
    for team in db.teams:
        localized = team.localized_name or ""
        if needle and needle not in team.name.lower() and needle not in localized.lower():
            continue
        out.append(
            {
                "id": team.id,
                "name": team.name,
                "localizedName": team.localized_name,
                "memberIds": list(team.member_ids),
                "counterCount": len(db.counters.get(team.id, ())),
            }
        )
    return out


@app.get("/api/defenses")
async def defenses() -> list[dict[str, object]]:
    db = await _database()
    return list_defense_teams(db.counters, db.teams_by_id)


@app.get("/api/teams/{team_id}/counters")
async def team_counters(
    team_id: str,
    power: float | None = Query(default=None, gt=0, allow_inf_nan=False),
) -> dict[str, object]:
    db = await _database()
    counters = recommend_counters(team_id, db.counters, db.teams_by_id, power)
    return {"teamId": team_id, "counters": [row.to_dict() for row in counters]}


@app.get("/api/teams/{team_id}/beats")
async def team_beats(team_id: str) -> dict[str, object]:
    db = await _database()
    return {"teamId": team_id, "targets": what_can_beat(team_id, db.inverse_index, db.teams_by_id)}


@app.post("/api/names/resolve")
async def resolve_names(payload: dict[str, object]) -> dict[str, object]:
    raw_names = payload.get("names")
    if not isinstance(raw_names, list):
        raise HTTPException(status_code=400, detail="'names' must be a list")

    db = await _database()
    resolved: list[dict[str, object]] = []
    for raw in raw_names:
        text = str(raw or "")
        match = db.name_matcher.match_raw(text)
        resolved.append(
            {
                "text": text,
                "match": match.to_dict() if match else None,
            }
        )
    return {"resolved": resolved}


@app.post("/api/analyze/names")
async def analyze_names_api(payload: dict[str, object]) -> dict[str, object]:
    raw_names = payload.get("names")
    if not isinstance(raw_names, list):
        raise HTTPException(status_code=400, detail="'names' must be a list")
    power = _parse_power(payload.get("power"))

    db = await _database()
    try:
        result = await asyncio.to_thread(
            analyze_names,
            [str(item or "") for item in raw_names],
            db,
            power,
        )
    except SessionInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"ok": True, **result.to_dict()}


async def _read_upload(item: object) -> bytes:
    if hasattr(item, "read"):
        return await item.read()  # type: ignore[union-attr]
    if isinstance(item, str):
        return item.encode("utf-8")
    return bytes(item)  # type: ignore[arg-type]


@app.post("/api/analyze/portraits", response_model=None)
async def analyze_portraits_api(request: Request) -> object:
    content_type = (request.headers.get("content-type") or "").lower()
    if "multipart/form-data" not in content_type:
        return _error(
            status_code=400,
            code="INVALID_CONTENT_TYPE",
            message="multipart/form-data with 'images' fields is required",
        )

    try:
        form = await request.form()
    except Exception:  # noqa: BLE001
        logger.exception("portrait form parse failed")
        return _error(
            status_code=503,
            code="MULTIPART_UNAVAILABLE",
            message="multipart parser unavailable. Install dependency: pip install python-multipart",
        )

    uploads = form.getlist("images")
    if not uploads:
        return _error(status_code=400, code="MISSING_IMAGES", message="images field is required")
    if len(uploads) > MAX_SLOTS:
        return _error(
            status_code=400,
            code="TOO_MANY_IMAGES",
            message=f"at most {MAX_SLOTS} portraits per analysis",
        )

    captures: list[bytes] = []
    for upload in uploads:
        payload = await _read_upload(upload)
        if len(payload) > MAX_UPLOAD_BYTES:
            return _error(
                status_code=413,
                code="FILE_TOO_LARGE",
                message=f"image payload exceeds {MAX_UPLOAD_MB:.2f} MB limit",
            )
        captures.append(payload)

    try:
        power = _parse_power(form.get("power"))
    except HTTPException as exc:
        return _error(status_code=400, code="INVALID_POWER", message=str(exc.detail))

    db = await _database()
    try:
        result = await analyze_portraits_async(
            captures,
            db,
            enemy_power=power,
            max_workers=SLOT_WORKERS,
            decode_timeout_seconds=DECODE_TIMEOUT_SECONDS,
        )
    except SessionInputError as exc:
        return _error(status_code=400, code="INVALID_CAPTURES", message=str(exc))
    except Exception:
        logger.exception("unexpected portrait analysis failure")
        return _error(
            status_code=500,
            code="ANALYSIS_UNKNOWN_ERROR",
            message="unexpected portrait analysis failure",
        )
    return {"ok": True, **result.to_dict()}


@app.post("/api/ocr/power", response_model=None)
async def ocr_power(request: Request) -> object:
    try:
        form = await request.form()
    except Exception:  # noqa: BLE001
        logger.exception("power form parse failed")
        return _error(
            status_code=503,
            code="MULTIPART_UNAVAILABLE",
            message="multipart parser unavailable. Install dependency: pip install python-multipart",
        )

    image = form.get("image")
    if image is None:
        return _error(status_code=400, code="MISSING_IMAGE", message="image field is required")
    payload = await _read_upload(image)

    try:
        decoded = decode_image(payload)
        power, raw_text = await asyncio.wait_for(
            asyncio.to_thread(recognize_power, decoded),
            timeout=OCR_TIMEOUT_SECONDS,
        )
    except DecodeError as exc:
        return _error(status_code=400, code="DECODE_ERROR", message=str(exc))
    except asyncio.TimeoutError:
        logger.exception("ocr timed out")
        return _error(
            status_code=504,
            code="OCR_TIMEOUT",
            message=f"ocr exceeded timeout {OCR_TIMEOUT_SECONDS:.2f}s",
        )
    except (OcrDependencyError, OcrEngineUnavailableError) as exc:
        logger.exception("ocr dependency unavailable")
        return _error(status_code=503, code="OCR_ENGINE_UNAVAILABLE", message=str(exc))

    return {"ok": True, "power": power, "rawText": raw_text}


def _recognize_names(crops: list[bytes]) -> list[str | None]:
    texts: list[str | None] = []
    for index, payload in enumerate(crops):
        try:
            image = decode_image(payload)
        except DecodeError as exc:
            logger.warning("name crop %d: decode failed: %s", index, exc)
            texts.append(None)
            continue
        texts.append(recognize_name(image))
    return texts


@app.post("/api/ocr/names", response_model=None)
async def ocr_names(request: Request) -> object:
    try:
        form = await request.form()
    except Exception:  # noqa: BLE001
        logger.exception("name form parse failed")
        return _error(
            status_code=503,
            code="MULTIPART_UNAVAILABLE",
            message="multipart parser unavailable. Install dependency: pip install python-multipart",
        )

    uploads = form.getlist("images")
    if not uploads:
        return _error(status_code=400, code="MISSING_IMAGES", message="images field is required")
    if len(uploads) > MAX_SLOTS:
        return _error(
            status_code=400,
            code="TOO_MANY_IMAGES",
            message=f"at most {MAX_SLOTS} name crops per analysis",
        )

    crops: list[bytes] = []
    for upload in uploads:
        payload = await _read_upload(upload)
        if len(payload) > MAX_UPLOAD_BYTES:
            return _error(
                status_code=413,
                code="FILE_TOO_LARGE",
                message=f"image payload exceeds {MAX_UPLOAD_MB:.2f} MB limit",
            )
        crops.append(payload)

    try:
        power = _parse_power(form.get("power"))
    except HTTPException as exc:
        return _error(status_code=400, code="INVALID_POWER", message=str(exc.detail))

    try:
        texts = await asyncio.wait_for(
            asyncio.to_thread(_recognize_names, crops),
            timeout=OCR_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.exception("name ocr timed out")
        return _error(
            status_code=504,
            code="OCR_TIMEOUT",
            message=f"ocr exceeded timeout {OCR_TIMEOUT_SECONDS:.2f}s",
        )
    except (OcrDependencyError, OcrEngineUnavailableError) as exc:
        logger.exception("ocr dependency unavailable")
        return _error(status_code=503, code="OCR_ENGINE_UNAVAILABLE", message=str(exc))

    db = await _database()
    result = await asyncio.to_thread(analyze_names, texts, db, power)
    return {"ok": True, "texts": texts, **result.to_dict()}
