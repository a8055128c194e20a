"""
WAF Checker - FastAPI Backend
REST + Server-Sent Events surface over the detector, scan engine and
batch scheduler.
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from wafcheck.batch import BatchScheduler
from wafcheck.config import WafCheckConfig, get_config
from wafcheck.detector import WAFDetector
from wafcheck.dns_recon import RECORD_TYPES, dns_recon
from wafcheck.engine import ScanEngine
from wafcheck.errors import InternalError, TransportError, ValidationError
from wafcheck.executor import execute_manipulated_batch
from wafcheck.headers_audit import audit_security_headers
from wafcheck.logger import log_error, log_info
from wafcheck.matrix import ScanConfig
from wafcheck.payloads import PayloadStore
from wafcheck.requester import build_client
from wafcheck.variations import DefaultVariationGateway, HTTPManipulationOptions


# ── Globals ─────────────────────────────────────────────────────

config: WafCheckConfig = get_config()
payload_store = PayloadStore()
gateway = DefaultVariationGateway()

# Set by tests to route target traffic through httpx.MockTransport
transport: Optional[httpx.AsyncBaseTransport] = None

http_client: Optional[httpx.AsyncClient] = None
engine: Optional[ScanEngine] = None
scheduler: Optional[BatchScheduler] = None

MANIPULATION_TEST_LIMIT = 10
MANIPULATION_CONCURRENCY = 3


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def require_target(url: str) -> str:
    url = (url or "").strip()
    if not url:
        raise HTTPException(status_code=400, detail="Missing url parameter")
    try:
        parts = urlsplit(url)
        host = parts.hostname
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid URL format")
    if parts.scheme not in ("http", "https") or not host:
        raise HTTPException(status_code=400, detail="Invalid URL format")
    return url


# ── Lifespan ────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown."""
    global http_client, engine, scheduler
    http_client = build_client(config.probe, transport=transport)
    engine = ScanEngine(http_client, store=payload_store, gateway=gateway, probe_cfg=config.probe)
    scheduler = BatchScheduler(engine, config.batch)
    if config.payloads.autoload:
        await payload_store.load_remote(http_client, config.payloads.remote_url, config.payloads.timeout)
    log_info("API", f"Backend running on {config.api.host}:{config.api.port}")
    yield
    await scheduler.shutdown()
    await http_client.aclose()


# ── FastAPI App ─────────────────────────────────────────────────

app = FastAPI(
    title="WAF Checker API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.api.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Pydantic Models ────────────────────────────────────────────

class ScanBody(BaseModel):
    payload_template: Optional[str] = None
    custom_headers: Optional[str] = None
    custom_payloads: Optional[Dict[str, Any]] = None


class BatchScanOptions(BaseModel):
    methods: List[str] = ["GET"]
    categories: Optional[List[str]] = None
    payload_template: Optional[str] = None
    custom_headers: Optional[str] = None
    custom_payloads: Optional[Dict[str, Any]] = None
    follow_redirect: bool = False
    false_positive_test: bool = False
    case_sensitive_test: bool = False
    enhanced_payloads: bool = False
    advanced_payloads: bool = False
    auto_detect_waf: bool = False
    encoding_variations: bool = False
    http_manipulation: bool = False
    max_concurrent: Optional[int] = None


class BatchStartRequest(BaseModel):
    urls: Optional[List[Any]] = None
    config: BatchScanOptions = BatchScanOptions()


def _split(raw: Optional[str]) -> Optional[List[str]]:
    if not raw:
        return None
    items = [part.strip() for part in raw.split(",") if part.strip()]
    return items or None


def scan_query(
    url: str = Query(""),
    methods: str = Query("GET"),
    categories: Optional[str] = Query(None),
    follow_redirect: bool = Query(False),
    false_positive_test: bool = Query(False),
    case_sensitive_test: bool = Query(False),
    enhanced_payloads: bool = Query(False),
    advanced_payloads: bool = Query(False),
    auto_detect_waf: bool = Query(False),
    encoding_variations: bool = Query(False),
    http_manipulation: bool = Query(False),
    detected_waf: Optional[str] = Query(None),
) -> Dict[str, Any]:
    return {
        "url": url,
        "config": ScanConfig(
            methods=_split(methods) or ["GET"],
            categories=_split(categories),
            follow_redirect=follow_redirect,
            false_positive_test=false_positive_test,
            case_sensitive_test=case_sensitive_test,
            use_enhanced_payloads=enhanced_payloads,
            use_advanced_payloads=advanced_payloads,
            auto_detect_waf=auto_detect_waf,
            use_encoding_variations=encoding_variations,
            detected_waf=detected_waf or None,
            http_manipulation=HTTPManipulationOptions(enable_parameter_pollution=http_manipulation),
        ),
    }


async def _apply_body(request: Request, cfg: ScanConfig):
    if request.method != "POST":
        return
    raw = await request.body()
    if not raw.strip():
        return
    try:
        data = json.loads(raw)
        body = ScanBody(**data) if isinstance(data, dict) else ScanBody()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid request body")
    cfg.payload_template = body.payload_template
    cfg.custom_headers = body.custom_headers
    cfg.custom_payloads = body.custom_payloads


def batch_scan_config(opts: BatchScanOptions) -> ScanConfig:
    return ScanConfig(
        methods=opts.methods,
        categories=opts.categories,
        payload_template=opts.payload_template,
        follow_redirect=opts.follow_redirect,
        custom_headers=opts.custom_headers,
        false_positive_test=opts.false_positive_test,
        case_sensitive_test=opts.case_sensitive_test,
        use_enhanced_payloads=opts.enhanced_payloads,
        use_advanced_payloads=opts.advanced_payloads,
        auto_detect_waf=opts.auto_detect_waf,
        use_encoding_variations=opts.encoding_variations,
        http_manipulation=HTTPManipulationOptions(enable_parameter_pollution=opts.http_manipulation),
        custom_payloads=opts.custom_payloads,
    )


# ── Detection ───────────────────────────────────────────────────

@app.get("/api/waf-detect")
async def waf_detect(url: str = Query("")):
    url = require_target(url)
    detector = WAFDetector(http_client, config.probe)
    detection = await detector.detect(url)
    opportunities = await detector.detect_bypass_opportunities(url)
    return {
        "detection": detection.to_dict(),
        "bypass_opportunities": opportunities.to_dict(),
        "timestamp": _now_iso(),
    }


# ── Scans ───────────────────────────────────────────────────────

@app.api_route("/api/check", methods=["GET", "POST"])
async def check(request: Request, page: int = Query(0, ge=0), query: dict = Depends(scan_query)):
    url = require_target(query["url"])
    cfg: ScanConfig = query["config"]
    await _apply_body(request, cfg)
    try:
        outcomes = await engine.scan_page(url, page, cfg)
    except InternalError as e:
        log_error("API", str(e))
        raise HTTPException(status_code=500, detail=str(e))
    return [o.to_dict() for o in outcomes]


@app.api_route("/api/check-stream", methods=["GET", "POST"])
async def check_stream(request: Request, query: dict = Depends(scan_query)):
    url = require_target(query["url"])
    cfg: ScanConfig = query["config"]
    await _apply_body(request, cfg)

    async def events():
        async for event in engine.iter_events(url, cfg):
            yield f"data: {json.dumps(event)}\n\n"

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


# ── Batch ───────────────────────────────────────────────────────

@app.post("/api/batch/start")
async def batch_start(req: BatchStartRequest):
    try:
        job = scheduler.start(req.urls, batch_scan_config(req.config), max_concurrent=req.config.max_concurrent)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail={"error": str(e), "invalid_urls": e.invalid})
    return {"job_id": job.id, "status": "started", "total_urls": job.total_urls}


@app.get("/api/batch/status")
async def batch_status(job_id: str = Query("")):
    if not job_id:
        raise HTTPException(status_code=400, detail="Missing job_id parameter")
    snapshot = scheduler.status(job_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return snapshot


@app.post("/api/batch/stop")
async def batch_stop(job_id: str = Query("")):
    if not job_id:
        raise HTTPException(status_code=400, detail="Missing job_id parameter")
    if not scheduler.stop(job_id):
        raise HTTPException(status_code=404, detail="Job not found")
    return {"status": "stopped"}


# ── Payloads ────────────────────────────────────────────────────

@app.get("/api/payloads")
async def list_payloads(
    category: Optional[str] = Query(None),
    include_advanced: bool = Query(False),
    include_enhanced: bool = Query(False),
):
    catalogue = payload_store.catalogue(include_enhanced=include_enhanced, include_advanced=include_advanced)
    if category:
        cat = catalogue.get(category)
        if cat is None:
            raise HTTPException(status_code=404, detail="Category not found")
        return {"category": category, **cat.to_dict()}
    return {name: cat.to_dict() for name, cat in catalogue.items()}


@app.get("/api/payloads/status")
async def payloads_status():
    return payload_store.status()


@app.post("/api/payloads/reload")
async def payloads_reload():
    ok = await payload_store.load_remote(http_client, config.payloads.remote_url, config.payloads.timeout)
    if not ok:
        raise HTTPException(status_code=502, detail=payload_store.last_error or "Remote payload load failed")
    return payload_store.status()


# ── Extra audits ────────────────────────────────────────────────

@app.get("/api/http-manipulation")
async def http_manipulation(url: str = Query("")):
    url = require_target(url)
    requests = gateway.build_manipulated_requests(url, "GET", "test_payload", HTTPManipulationOptions.all_enabled())
    limited = requests[:MANIPULATION_TEST_LIMIT]
    results = await execute_manipulated_batch(
        http_client, limited, concurrency=MANIPULATION_CONCURRENCY, timeout=config.probe.timeout,
    )
    return {
        "total_techniques": len(requests),
        "tested_techniques": len(limited),
        "results": results,
        "timestamp": _now_iso(),
    }


@app.get("/api/security-headers")
async def security_headers(url: str = Query("")):
    url = require_target(url)
    try:
        audit = await audit_security_headers(http_client, url, timeout=config.probe.timeout)
    except TransportError as e:
        log_error("API", f"Security headers audit failed for {url}: {e}")
        raise HTTPException(status_code=502, detail=f"Security headers audit failed: {e}")
    return audit.to_dict()


@app.get("/api/dns-recon")
async def dns_recon_endpoint(url: str = Query("")):
    url = require_target(url)
    hostname = urlsplit(url).hostname
    recon = await dns_recon(http_client, hostname, config.recon)
    if not recon.records and recon.failed_lookups >= len(RECORD_TYPES):
        log_error("API", f"DNS recon failed for {hostname}: resolver unreachable")
        raise HTTPException(status_code=502, detail="DNS recon failed: resolver unreachable")
    return recon.to_dict()


@app.get("/api/config")
async def get_current_config():
    return config.to_dict()


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": app.version, "payloads_loaded": payload_store.loaded_remote}
