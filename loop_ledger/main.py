from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from loop_ledger.core.settings import S, Settings
from loop_ledger.metrics import metrics_endpoint, metrics_middleware, set_app_info
from loop_ledger.routers.admin import router as admin_router
from loop_ledger.routers.billing import router as billing_router
from loop_ledger.routers.misc import router as misc_router
from loop_ledger.routers.setups import router as setups_router
from loop_ledger.routers.usage import router as usage_router
from loop_ledger.services.registry import Services, build_services


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    msg = first.get("msg", "Invalid request")
    return JSONResponse(status_code=400, content={"detail": f"{loc}: {msg}" if loc else msg})


def create_app(services: Optional[Services] = None, settings: Settings = S) -> FastAPI:
    app = FastAPI(title="Loop usage ledger", version="0.1.0")
    app.state.services = services or build_services(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    if settings.metrics_enabled:
        app.middleware("http")(metrics_middleware)
        set_app_info(app.title, app.version)
        app.get("/metrics")(metrics_endpoint)

    app.include_router(usage_router)
    app.include_router(admin_router)
    app.include_router(billing_router)
    app.include_router(setups_router)
    app.include_router(misc_router)

    return app


app = create_app()
