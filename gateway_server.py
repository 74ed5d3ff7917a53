#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
ACS Gateway Server - REST API over the in-memory device/fault registry
======================================================================
Features:
- Device registry with filtering, sorting and pagination
- Fault lifecycle (acknowledge / resolve / expire)
- Cached device statistics and fault breakdowns
- ACS connectivity status pushed by an external poller
- CSV export
- Prometheus-style metrics
"""

from __future__ import annotations

import argparse, asyncio, csv, io, json, logging, os, signal, sys, threading
from contextlib import asynccontextmanager
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Callable, Dict, Final, List, Optional, Sequence

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, Field

from device_filter import DeviceFilter, FaultFilter, IPRange
from device_registry import STATS_TTL_SECONDS, TAG_ADD, TAG_OPERATIONS, TAG_REPLACE, DeviceRegistry
from gateway_models import (
    FAULT_ACTIVE, AlreadyInTerminalStateError, ConnectivityStatus, Device, DeviceIdentity,
    DeviceStatus, Fault, InvalidArgumentError, NotFoundError, Parameter, RegistryError,
    as_utc, device_to_dict, fault_to_dict, severity_for_fault_code, stats_to_dict, status_to_dict, utcnow,
)
from gateway_stats import device_breakdown, fault_summary, overall_state, severity_counts, top_entries

# =========================
# Settings / Args
# =========================
@dataclass(slots=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8080
    verbose: bool = False
    graceful_timeout: int = 8
    keep_alive: int = 30
    api_prefix: str = "/api/v1"
    stats_ttl_seconds: float = STATS_TTL_SECONDS
    default_page_size: int = 20
    max_page_size: int = 100
    enable_metrics: bool = True
    # ACS endpoints, reported by /system/config; the gateway never calls them
    acs_cwmp_url: str = "http://localhost:7547"
    acs_nbi_url: str = "http://localhost:7557"
    acs_fs_url: str = "http://localhost:7567"
    acs_username: str = ""
    acs_password: str = ""

_SENSITIVE_SETTINGS: Final[set[str]] = {"acs_username", "acs_password"}


def load_settings_file(path: str) -> Dict[str, Any]:
    """Read a JSON object of Settings field overrides"""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise InvalidArgumentError(f"settings file must hold a JSON object: {path}")
    known = {f.name for f in fields(Settings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise InvalidArgumentError(f"unknown settings in {path}: {', '.join(unknown)}")
    return data


def parse_args(argv: Optional[Sequence[str]] = None) -> Settings:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config")
    known, _ = pre.parse_known_args(argv)

    p = argparse.ArgumentParser("ACS Gateway Server", parents=[pre])
    aa = p.add_argument
    aa("--host", default="0.0.0.0")
    aa("--port", type=int, default=8080)
    aa("-v", "--verbose", action="store_true")
    aa("--graceful-timeout", type=int, default=8)
    aa("--keep-alive", type=int, default=30)
    aa("--api-prefix", default="/api/v1")
    aa("--stats-ttl", dest="stats_ttl_seconds", type=float, default=STATS_TTL_SECONDS,
       help="Seconds a statistics snapshot stays fresh")
    aa("--default-page-size", type=int, default=20)
    aa("--max-page-size", type=int, default=100)
    aa("--disable-metrics", dest="enable_metrics", action="store_false")
    aa("--acs-cwmp-url", default="http://localhost:7547")
    aa("--acs-nbi-url", default="http://localhost:7557")
    aa("--acs-fs-url", default="http://localhost:7567")
    aa("--acs-username", default="")
    aa("--acs-password", default=os.environ.get("ACS_PASSWORD", ""))

    # File values replace the built-in defaults; explicit flags still win
    if known.config:
        try:
            p.set_defaults(**load_settings_file(known.config))
        except (OSError, json.JSONDecodeError, InvalidArgumentError) as e:
            p.error(f"--config: {e}")

    ns = p.parse_args(argv)

    if ns.default_page_size <= 0 or ns.max_page_size <= 0:
        p.error("page sizes must be positive")
    if ns.default_page_size > ns.max_page_size:
        p.error("--default-page-size must not exceed --max-page-size")
    if ns.stats_ttl_seconds < 0:
        p.error("--stats-ttl must not be negative")

    return Settings(
        host=ns.host, port=ns.port, verbose=ns.verbose,
        graceful_timeout=ns.graceful_timeout, keep_alive=ns.keep_alive,
        api_prefix=ns.api_prefix.rstrip("/"),
        stats_ttl_seconds=ns.stats_ttl_seconds,
        default_page_size=ns.default_page_size, max_page_size=ns.max_page_size,
        enable_metrics=ns.enable_metrics,
        acs_cwmp_url=ns.acs_cwmp_url, acs_nbi_url=ns.acs_nbi_url, acs_fs_url=ns.acs_fs_url,
        acs_username=ns.acs_username, acs_password=ns.acs_password,
    )


def sanitized_settings(settings: Settings) -> Dict[str, Any]:
    return {f.name: getattr(settings, f.name) for f in fields(Settings)
            if f.name not in _SENSITIVE_SETTINGS}

# =========================
# Logging
# =========================
def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(asctime)s] %(levelname)s: %(message)s",
        datefmt="%y-%m-%d %H:%M:%S",
    )

# =========================
# Metrics
# =========================
class Metrics:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters = {
            "http_requests_total": 0,
            "responses_2xx_total": 0,
            "responses_4xx_total": 0,
            "responses_5xx_total": 0,
            "device_upserts_total": 0,
            "fault_upserts_total": 0,
            "fault_acknowledged_total": 0,
            "fault_resolved_total": 0,
            "fault_expired_total": 0,
        }

    def inc(self, key: str, n: int = 1) -> None:
        with self._lock:
            if key in self._counters:
                self._counters[key] += n

    def get_all(self) -> Dict[str, int]:
        with self._lock:
            return self._counters.copy()

    def render_prom(self) -> str:
        return "\n".join([*(f"# TYPE {k} counter\n{k} {v}" for k, v in self.get_all().items()), ""])

# =========================
# Pydantic Models for API
# =========================
class ParameterIn(BaseModel):
    value: Any = None
    type: str = "xsd:string"
    writable: bool = False
    last_update: Optional[datetime] = None


class DeviceIn(BaseModel):
    manufacturer: str = ""
    oui: str = ""
    product_class: str = ""
    serial_number: str = ""
    model_name: str = ""
    software_version: str = ""
    hardware_version: str = ""
    ip_address: str = ""
    external_ip_address: str = ""
    online: bool = False
    last_seen: Optional[datetime] = None
    connection_status: str = "unknown"
    error_count: int = 0
    last_inform: Optional[datetime] = None
    tags: List[str] = []
    parameters: Dict[str, ParameterIn] = {}

    def to_device(self, device_id: str) -> Device:
        return Device(
            id=device_id,
            identity=DeviceIdentity(
                manufacturer=self.manufacturer, oui=self.oui, product_class=self.product_class,
                serial_number=self.serial_number, model_name=self.model_name,
                software_version=self.software_version, hardware_version=self.hardware_version,
                ip_address=self.ip_address, external_ip_address=self.external_ip_address,
            ),
            status=DeviceStatus(
                online=self.online, last_seen=as_utc(self.last_seen),
                connection_status=self.connection_status, error_count=self.error_count,
            ),
            tags=frozenset(self.tags),
            parameters={
                path: Parameter(path=path, value=p.value, xtype=p.type,
                                writable=p.writable, last_update=as_utc(p.last_update))
                for path, p in self.parameters.items()
            },
            last_inform=as_utc(self.last_inform),
        )


class FaultIn(BaseModel):
    id: str
    device_id: str = ""
    device_serial: str = ""
    device_model: str = ""
    channel: str = ""
    code: str = ""
    message: str = ""
    detail: str = ""
    severity: str = ""  # derived from the CWMP fault code when empty
    status: str = FAULT_ACTIVE
    timestamp: Optional[datetime] = None
    retries: int = 0
    tags: List[str] = []

    def to_fault(self) -> Fault:
        return Fault(
            id=self.id, device_id=self.device_id, device_serial=self.device_serial,
            device_model=self.device_model, channel=self.channel, code=self.code,
            message=self.message, detail=self.detail,
            severity=self.severity or severity_for_fault_code(self.code),
            status=self.status, timestamp=as_utc(self.timestamp) or utcnow(),
            retries=self.retries, tags=tuple(self.tags),
        )


class AcknowledgeRequest(BaseModel):
    acknowledged_by: str = Field(min_length=1)
    notes: str = ""


class ResolveRequest(BaseModel):
    resolved_by: str = Field(min_length=1)
    resolution: str = ""
    notes: str = ""


class OnlineRequest(BaseModel):
    online: bool


class TagUpdateRequest(BaseModel):
    tags: List[str]
    operation: str = TAG_REPLACE


class BulkTagRequest(BaseModel):
    device_ids: List[str]
    tags: List[str]
    operation: str = TAG_ADD


class ConnectivityStatusIn(BaseModel):
    cwmp_connected: bool = False
    nbi_connected: bool = False
    fs_connected: bool = False
    last_error: Optional[str] = None

# =========================
# Listing helpers
# =========================
def _ts_key(ts: Optional[datetime]) -> float:
    return ts.timestamp() if ts else float("-inf")

DEVICE_SORT_KEYS: Final[Dict[str, Callable[[Device], Any]]] = {
    "id": lambda d: d.id,
    "serial_number": lambda d: d.identity.serial_number,
    "manufacturer": lambda d: d.identity.manufacturer,
    "model_name": lambda d: d.identity.model_name,
    "last_seen": lambda d: _ts_key(d.status.last_seen),
    "last_inform": lambda d: _ts_key(d.last_inform),
}


def resolve_page(page: Optional[int], page_size: Optional[int], settings: Settings) -> tuple[int, int]:
    """Out-of-range values fall back to the defaults rather than failing"""
    p = page if page and page > 0 else 1
    ps = page_size if page_size and 0 < page_size <= settings.max_page_size else settings.default_page_size
    return p, ps


def paginate(items: Sequence[Any], page: int, page_size: int) -> List[Any]:
    start = min((page - 1) * page_size, len(items))
    return list(items[start:start + page_size])


def _split_tags(raw: Optional[str]) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(t.strip() for t in raw.split(",") if t.strip())


def _csv_response(header: List[str], rows: List[List[Any]], filename: str) -> Response:
    buf = io.StringIO()
    w = csv.writer(buf)
    w.writerow(header)
    w.writerows(rows)
    return Response(
        content=buf.getvalue(), media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )

# =========================
# App factory
# =========================
def create_app(settings: Settings, registry: Optional[DeviceRegistry] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.info("="*60)
        logging.info("ACS Gateway Server Started")
        logging.info(f"  API prefix: {settings.api_prefix}")
        logging.info(f"  Stats TTL: {settings.stats_ttl_seconds}s")
        logging.info(f"  ACS NBI: {settings.acs_nbi_url}")
        logging.info(f"  Metrics: {settings.enable_metrics}")
        logging.info("="*60)
        try: yield
        finally: logging.info("App shutdown complete.")

    app = FastAPI(lifespan=lifespan, title="ACS Gateway Server")
    app.state.settings = settings
    app.state.registry = registry if registry is not None else DeviceRegistry(stats_ttl=settings.stats_ttl_seconds)
    app.state.metrics = Metrics()
    reg: DeviceRegistry = app.state.registry
    metrics: Metrics = app.state.metrics
    prefix = settings.api_prefix

    # ===== Middleware =====
    @app.middleware("http")
    async def count_requests(req: Request, call_next):
        metrics.inc("http_requests_total")
        res = await call_next(req)
        if 200 <= res.status_code < 300:
            metrics.inc("responses_2xx_total")
        elif 400 <= res.status_code < 500:
            metrics.inc("responses_4xx_total")
        elif res.status_code >= 500:
            metrics.inc("responses_5xx_total")
        return res

    # ===== Error mapping =====
    @app.exception_handler(RegistryError)
    async def registry_error(req: Request, exc: RegistryError):
        if isinstance(exc, NotFoundError):
            code = 404
        elif isinstance(exc, AlreadyInTerminalStateError):
            code = 409
        elif isinstance(exc, InvalidArgumentError):
            code = 400
        else:
            code = 500
        logging.debug("%s %s -> %d: %s", req.method, req.url.path, code, exc)
        return JSONResponse({"error": str(exc)}, status_code=code)

    # ===== Health & Metrics =====
    @app.get("/healthz")
    async def healthz():
        return JSONResponse({"ok": True, "server": "ACS-Gateway"})

    @app.get("/metrics")
    async def metrics_endpoint():
        if not settings.enable_metrics:
            return PlainTextResponse("metrics disabled\n", status_code=404)
        return PlainTextResponse(metrics.render_prom(), media_type="text/plain; version=0.0.4")

    @app.get(f"{prefix}/health")
    async def api_health():
        return {
            "ok": True,
            "devices": reg.device_count(),
            "faults": reg.fault_count(),
            "acs": overall_state(reg.get_status()),
        }

    # ===== Devices =====
    @app.get(f"{prefix}/devices")
    async def api_list_devices(
        manufacturer: str = "", model_name: str = "", product_class: str = "",
        online: Optional[bool] = None, tags: Optional[str] = None, search: str = "",
        start_ip: Optional[str] = None, end_ip: Optional[str] = None, network: Optional[str] = None,
        sort_by: str = "last_inform", sort_dir: str = "desc",
        page: Optional[int] = None, page_size: Optional[int] = None,
    ):
        ip_range = None
        if network and (start_ip or end_ip):
            raise InvalidArgumentError("network cannot be combined with start_ip/end_ip")
        if network:
            ip_range = IPRange.from_cidr(network)
        elif start_ip or end_ip:
            if not (start_ip and end_ip):
                raise InvalidArgumentError("start_ip and end_ip must be given together")
            ip_range = IPRange(start_ip, end_ip)

        flt = DeviceFilter(
            manufacturer=manufacturer, model_name=model_name, product_class=product_class,
            online=online, tags=_split_tags(tags), ip_range=ip_range, search=search,
        )
        key = DEVICE_SORT_KEYS.get(sort_by)
        if key is None:
            raise HTTPException(status_code=400, detail=f"Unsupported sort_by: {sort_by}")
        devices = sorted(reg.list_devices_filtered(flt), key=key, reverse=(sort_dir.lower() == "desc"))

        p, ps = resolve_page(page, page_size, settings)
        return {
            "devices": [device_to_dict(d, with_parameters=False) for d in paginate(devices, p, ps)],
            "total": len(devices),
            "page": p,
            "page_size": ps,
        }

    @app.put(f"{prefix}/devices/{{device_id}}")
    async def api_upsert_device(device_id: str, body: DeviceIn):
        device = body.to_device(device_id)
        reg.upsert_device(device)
        metrics.inc("device_upserts_total")
        return {"status": "ok", "device": device_to_dict(device)}

    @app.get(f"{prefix}/devices/{{device_id}}")
    async def api_get_device(device_id: str):
        device = reg.get_device(device_id)
        if not device:
            raise HTTPException(status_code=404, detail="Device not found")
        return {
            "device": device_to_dict(device),
            "faults": [fault_to_dict(f) for f in reg.list_faults_for_device(device_id)],
        }

    @app.delete(f"{prefix}/devices/{{device_id}}")
    async def api_delete_device(device_id: str):
        reg.remove_device(device_id)
        return {"success": True}

    @app.put(f"{prefix}/devices/{{device_id}}/online")
    async def api_set_online(device_id: str, body: OnlineRequest):
        if reg.get_device(device_id) is None:
            raise HTTPException(status_code=404, detail="Device not found")
        reg.set_device_online(device_id, body.online)
        return {"device_id": device_id, "online": body.online}

    @app.put(f"{prefix}/devices/{{device_id}}/tags")
    async def api_update_tags(device_id: str, body: TagUpdateRequest):
        device = reg.update_device_tags(device_id, body.tags, body.operation)
        return {
            "message": "Device tags updated successfully",
            "device_id": device_id,
            "tags": sorted(device.tags),
        }

    @app.get(f"{prefix}/devices/{{device_id}}/faults")
    async def api_device_faults(device_id: str):
        faults = reg.list_faults_for_device(device_id)
        return {"device_id": device_id, "faults": [fault_to_dict(f) for f in faults], "total": len(faults)}

    @app.put(f"{prefix}/bulk/devices/tags")
    async def api_bulk_tags(body: BulkTagRequest):
        if body.operation not in TAG_OPERATIONS:
            raise HTTPException(status_code=400, detail=f"Invalid operation: {body.operation}")
        successful, errors = 0, []
        for device_id in body.device_ids:
            try:
                reg.update_device_tags(device_id, body.tags, body.operation)
                successful += 1
            except NotFoundError:
                errors.append(f"{device_id}: device not found")

        failed = len(errors)
        result: Dict[str, Any] = {
            "message": "Bulk tag update completed",
            "successful": successful,
            "failed": failed,
            "operation": body.operation,
        }
        if errors:
            result["errors"] = errors
        code = 200
        if failed and not successful:
            code = 404
        elif failed:
            code = 206
        return JSONResponse(result, status_code=code)

    # ===== Faults =====
    @app.get(f"{prefix}/faults")
    async def api_list_faults(
        device_id: str = "", severity: str = "", status: str = "", channel: str = "",
        page: Optional[int] = None, page_size: Optional[int] = None,
    ):
        flt = FaultFilter(device_id=device_id, severity=severity, status=status, channel=channel)
        faults = sorted(reg.list_faults(flt), key=lambda f: _ts_key(f.timestamp), reverse=True)
        p, ps = resolve_page(page, page_size, settings)
        return {
            "faults": [fault_to_dict(f) for f in paginate(faults, p, ps)],
            "total": len(faults),
            "page": p,
            "page_size": ps,
        }

    @app.post(f"{prefix}/faults")
    async def api_upsert_fault(body: FaultIn):
        fault = body.to_fault()
        reg.upsert_fault(fault)
        metrics.inc("fault_upserts_total")
        return {"status": "ok", "fault": fault_to_dict(fault)}

    @app.get(f"{prefix}/faults/{{fault_id}}")
    async def api_get_fault(fault_id: str):
        fault = reg.get_fault(fault_id)
        if not fault:
            raise HTTPException(status_code=404, detail="Fault not found")
        out: Dict[str, Any] = {"fault": fault_to_dict(fault)}
        device = reg.get_device(fault.device_id) if fault.device_id else None
        if device:
            out["device"] = {
                "id": device.id,
                "serial_number": device.identity.serial_number,
                "model_name": device.identity.model_name,
                "manufacturer": device.identity.manufacturer,
            }
        return out

    @app.put(f"{prefix}/faults/{{fault_id}}/acknowledge")
    async def api_acknowledge_fault(fault_id: str, body: AcknowledgeRequest):
        fault = reg.acknowledge_fault(fault_id, body.acknowledged_by)
        metrics.inc("fault_acknowledged_total")
        return {"message": "Fault acknowledged successfully", "fault": fault_to_dict(fault)}

    @app.put(f"{prefix}/faults/{{fault_id}}/resolve")
    async def api_resolve_fault(fault_id: str, body: ResolveRequest):
        fault = reg.resolve_fault(fault_id, body.resolved_by)
        metrics.inc("fault_resolved_total")
        return {"message": "Fault resolved successfully", "fault": fault_to_dict(fault)}

    @app.delete(f"{prefix}/faults/{{fault_id}}")
    async def api_expire_fault(fault_id: str, force: bool = False):
        fault = reg.get_fault(fault_id)
        if not fault:
            raise HTTPException(status_code=404, detail="Fault not found")
        if fault.status == FAULT_ACTIVE and not force:
            raise HTTPException(status_code=400, detail="Cannot delete active fault. Use force=true to delete anyway")
        reg.expire_fault(fault_id)
        metrics.inc("fault_expired_total")
        return {"message": "Fault deleted successfully", "fault_id": fault_id}

    # ===== Statistics =====
    @app.get(f"{prefix}/stats/overview")
    async def api_stats_overview():
        stats = reg.get_stats()
        active = reg.list_active_faults()
        return {
            "timestamp": utcnow().isoformat(),
            "devices": {
                "total": stats.total_devices,
                "online": stats.online_devices,
                "offline": stats.offline_devices,
                "by_vendor": dict(stats.devices_by_vendor),
                "by_model": dict(stats.devices_by_model),
            },
            "faults": {
                "total": len(active),
                "active": sum(1 for f in active if f.status == FAULT_ACTIVE),
                **severity_counts(active),
            },
            "system": status_to_dict(reg.get_status()),
        }

    @app.get(f"{prefix}/stats/devices")
    async def api_stats_devices():
        stats = reg.get_stats()
        breakdown = device_breakdown(reg.list_devices(), utcnow())
        return {
            "summary": {
                "total": stats.total_devices,
                "online": stats.online_devices,
                "offline": stats.offline_devices,
            },
            "by_vendor": dict(stats.devices_by_vendor),
            "by_model": dict(stats.devices_by_model),
            **breakdown,
            "top_vendors": top_entries(stats.devices_by_vendor, 5),
            "top_models": top_entries(stats.devices_by_model, 5),
            "computed_at": stats_to_dict(stats)["computed_at"],
            "timestamp": utcnow().isoformat(),
        }

    @app.get(f"{prefix}/stats/faults")
    async def api_stats_faults():
        summary = fault_summary(reg.list_active_faults())
        summary["recent"] = [fault_to_dict(f) for f in summary["recent"]]
        return summary

    # ===== System =====
    @app.get(f"{prefix}/system/status")
    async def api_system_status():
        status = reg.get_status()
        stats = reg.get_stats()
        out = {
            "status": overall_state(status),
            "services": {
                "cwmp": {"connected": status.cwmp_connected},
                "nbi": {"connected": status.nbi_connected},
                "fs": {"connected": status.fs_connected},
            },
            "metrics": {
                "total_devices": stats.total_devices,
                "online_devices": stats.online_devices,
                "active_faults": stats.active_faults,
            },
            "last_check": status_to_dict(status)["last_check"],
            "timestamp": utcnow().isoformat(),
        }
        if status.last_error:
            out["last_error"] = status.last_error
        return out

    @app.put(f"{prefix}/system/status")
    async def api_push_status(body: ConnectivityStatusIn):
        stored = reg.set_status(ConnectivityStatus(
            cwmp_connected=body.cwmp_connected, nbi_connected=body.nbi_connected,
            fs_connected=body.fs_connected, last_error=body.last_error,
        ))
        return status_to_dict(stored)

    @app.get(f"{prefix}/system/config")
    async def api_system_config():
        return sanitized_settings(settings)

    # ===== Export =====
    @app.get(f"{prefix}/export/devices")
    async def api_export_devices():
        rows = []
        for d in sorted(reg.list_devices(), key=lambda d: d.id):
            ident = d.identity
            rows.append([
                d.id, ident.serial_number, ident.manufacturer, ident.model_name, ident.product_class,
                ident.ip_address, ident.external_ip_address,
                "online" if d.status.online else "offline",
                d.status.last_seen.isoformat() if d.status.last_seen else "",
                ident.software_version, ident.hardware_version, ";".join(sorted(d.tags)),
            ])
        header = ["ID", "Serial Number", "Manufacturer", "Model", "Product Class", "IP Address",
                  "External IP", "Status", "Last Seen", "Software Version", "Hardware Version", "Tags"]
        return _csv_response(header, rows, "devices.csv")

    @app.get(f"{prefix}/export/faults")
    async def api_export_faults():
        rows = []
        for f in sorted(reg.list_active_faults(), key=lambda f: f.id):
            rows.append([
                f.id, f.device_id, f.channel, f.code, f.message, f.severity, f.status,
                f.timestamp.isoformat() if f.timestamp else "",
                f.acknowledged.actor if f.acknowledged else "",
                f.resolved.actor if f.resolved else "",
            ])
        header = ["ID", "Device ID", "Channel", "Code", "Message", "Severity", "Status",
                  "Timestamp", "Acknowledged By", "Resolved By"]
        return _csv_response(header, rows, "faults.csv")

    return app

# =========================
# Runner
# =========================
def run_server(app: FastAPI, settings: Settings) -> None:
    config = uvicorn.Config(
        app, host=settings.host, port=settings.port, log_config=None,
        timeout_keep_alive=settings.keep_alive,
        timeout_graceful_shutdown=settings.graceful_timeout,
    )
    server = uvicorn.Server(config)
    app.state.server = server

    state = {"requested": False}
    def request_shutdown(tag: str) -> None:
        if not state["requested"]:
            state["requested"] = True
            server.should_exit = True
            try: asyncio.get_event_loop().call_soon_threadsafe(lambda: None)
            except RuntimeError: pass
            logging.info("[%s] graceful shutdown requested", tag)
        else:
            logging.warning("[%s] forcing exit now.", tag)
            os._exit(1)

    try:
        signal.signal(signal.SIGINT, lambda *_: request_shutdown("SIGINT"))
        signal.signal(signal.SIGTERM, lambda *_: request_shutdown("SIGTERM"))
    except (ValueError, OSError) as e:
        logging.debug("signal install failed: %s", e)

    try: server.run()
    except KeyboardInterrupt: request_shutdown("KeyboardInterrupt")


def main(argv: Optional[Sequence[str]] = None) -> int:
    settings = parse_args(argv)
    setup_logging(settings.verbose)
    app = create_app(settings)
    run_server(app, settings)
    return 0

# =========================
# Main
# =========================
if __name__ == "__main__":
    sys.exit(main())
