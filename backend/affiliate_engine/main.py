# Application entrypoint: wires the routers, the error handler for engine
# errors, and the logging/metrics middleware.

import os

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from affiliate_engine.api.admin_affiliates import router as admin_affiliates_router
from affiliate_engine.api.admin_commissions import router as admin_commissions_router
from affiliate_engine.api.admin_fraud import router as admin_fraud_router
from affiliate_engine.api.admin_offers import router as admin_offers_router
from affiliate_engine.api.admin_payouts import router as admin_payouts_router
from affiliate_engine.api.admin_postbacks import router as admin_postbacks_router
from affiliate_engine.api.clicks import router as clicks_router
from affiliate_engine.api.webhooks import router as webhooks_router
from affiliate_engine.core.db import Base, engine
from affiliate_engine.core.errors import EngineError
from affiliate_engine.core.logging import APILoggingMiddleware, configure_logging
from affiliate_engine.core.metrics import MetricsMiddleware
import affiliate_engine.models  # noqa: F401  registers every table on Base


# Local and test runs build the schema directly; deployments run alembic.
if os.getenv("SKIP_MIGRATIONS") != "1":
    Base.metadata.create_all(bind=engine)

configure_logging()

app = FastAPI(title="Affiliate Engine")


@app.exception_handler(EngineError)
def handle_engine_error(_request, exc: EngineError):
    response = JSONResponse(status_code=exc.status_code, content=exc.to_payload())
    response.headers["X-Error-Code"] = exc.code
    return response


app.add_middleware(APILoggingMiddleware)
app.add_middleware(MetricsMiddleware)

for router in (
    webhooks_router,
    clicks_router,
    admin_commissions_router,
    admin_payouts_router,
    admin_fraud_router,
    admin_affiliates_router,
    admin_offers_router,
    admin_postbacks_router,
):
    app.include_router(router)


# Prometheus scrape endpoint.
@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health")
def health():
    return {"status": "ok"}
