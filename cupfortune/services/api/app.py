"""HTTP surface for the fortune lifecycle.

Routes are thin: they resolve the caller, hand the request to the
orchestrator and serialise its result. Every `FortuneError` becomes an
`{error, details?}` body with the error's HTTP status.

Fortunes submitted without a principal are owned by the anonymous sentinel
and can be read and processed by anyone holding their id.
"""

from time import perf_counter

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from cupfortune.common.errors import FortuneError
from cupfortune.common.logging import bind_request_context, logger
from cupfortune.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from cupfortune.services.api.auth import optional_principal
from cupfortune.services.identity.service import IdentityProvider, Principal
from cupfortune.services.orchestrator.schemas import (
    FortuneIdRequest,
    FortuneSubmitRequest,
    PaymentConfirmRequest,
    ProcessPaidRequest,
)
from cupfortune.services.orchestrator.service import FortuneOrchestrator


def _dump(model) -> dict:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def create_app(orchestrator: FortuneOrchestrator, identity: IdentityProvider, service_name: str = "fortune-api") -> FastAPI:
    app = FastAPI(title="Coffee Cup Fortune API")
    app.state.orchestrator = orchestrator
    app.state.identity = identity

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Record request count and latency, and bind a trace id for log lines."""

        start = perf_counter()
        route = request.url.path
        method = request.method
        status_code = 500
        bind_request_context(request.headers.get("x-correlation-id"))
        try:
            response = await call_next(request)
            status_code = response.status_code
            route_obj = request.scope.get("route")
            if route_obj is not None and getattr(route_obj, "path", None):
                route = route_obj.path
            return response
        finally:
            elapsed = max(0.0, perf_counter() - start)
            http_request_duration_seconds.labels(service=service_name, route=route, method=method).observe(elapsed)
            http_requests_total.labels(
                service=service_name,
                route=route,
                method=method,
                status_code=str(status_code),
            ).inc()

    @app.exception_handler(FortuneError)
    async def fortune_error_handler(request: Request, exc: FortuneError):
        if exc.http_status >= 500:
            logger.error("request_failed path=%s error=%s details=%s", request.url.path, exc.message, exc.details)
        else:
            logger.info("request_rejected path=%s status=%s error=%s", request.url.path, exc.http_status, exc.message)
        return JSONResponse(status_code=exc.http_status, content=exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        details = f"{location}: {first.get('msg', 'invalid value')}" if location else first.get("msg")
        return JSONResponse(status_code=400, content={"error": "Invalid request body", "details": details})

    def get_orchestrator(request: Request) -> FortuneOrchestrator:
        return request.app.state.orchestrator

    @app.post("/api/fortune")
    async def submit_fortune(
        req: FortuneSubmitRequest,
        principal: Principal | None = Depends(optional_principal),
        orch: FortuneOrchestrator = Depends(get_orchestrator),
    ):
        """Upload photos and create a PENDING fortune (create-then-pay)."""

        return _dump(await orch.submit(principal, req))

    @app.post("/api/fortune/create-pending")
    async def create_pending_fortune(
        req: FortuneSubmitRequest,
        principal: Principal | None = Depends(optional_principal),
        orch: FortuneOrchestrator = Depends(get_orchestrator),
    ):
        """Create a PENDING fortune and stage its photos until payment (pay-then-create)."""

        return _dump(await orch.create_pending(principal, req))

    @app.post("/api/fortune/process")
    async def process_fortune(
        req: FortuneIdRequest,
        principal: Principal | None = Depends(optional_principal),
        orch: FortuneOrchestrator = Depends(get_orchestrator),
    ):
        return _dump(await orch.begin_processing(principal, req.fortune_id))

    @app.get("/api/fortune/process")
    def fortune_status(
        fortune_id: str | None = Query(default=None, alias="fortuneId"),
        principal: Principal | None = Depends(optional_principal),
        orch: FortuneOrchestrator = Depends(get_orchestrator),
    ):
        """Polling endpoint; prediction is present only once completed."""

        return _dump(orch.get_status(principal, fortune_id))

    @app.post("/api/fortune/process-paid")
    async def process_paid_fortune(
        req: ProcessPaidRequest,
        principal: Principal | None = Depends(optional_principal),
        orch: FortuneOrchestrator = Depends(get_orchestrator),
    ):
        return _dump(await orch.process_paid(principal, req))

    @app.get("/api/fortunes")
    def list_fortunes(
        principal: Principal | None = Depends(optional_principal),
        orch: FortuneOrchestrator = Depends(get_orchestrator),
    ):
        return _dump(orch.list_fortunes(principal))

    @app.post("/api/payment")
    async def create_payment_intent(
        req: FortuneIdRequest,
        principal: Principal | None = Depends(optional_principal),
        orch: FortuneOrchestrator = Depends(get_orchestrator),
    ):
        """Create a payment intent at the server-side price; client amounts are ignored."""

        return _dump(await orch.create_payment_intent(principal, req.fortune_id))

    @app.get("/api/payment")
    async def payment_lookup(
        session_id: str | None = None,
        principal: Principal | None = Depends(optional_principal),
        orch: FortuneOrchestrator = Depends(get_orchestrator),
    ):
        """Checkout session status when `session_id` is given, else the current price."""

        if session_id is not None:
            return _dump(await orch.get_session_status(principal, session_id))
        return _dump(await orch.get_price())

    @app.post("/api/payment/confirm")
    async def confirm_payment(
        req: PaymentConfirmRequest,
        principal: Principal | None = Depends(optional_principal),
        orch: FortuneOrchestrator = Depends(get_orchestrator),
    ):
        return _dump(await orch.confirm_payment(principal, req.payment_id))

    @app.post("/api/payment/webhook")
    async def payment_webhook(
        request: Request,
        stripe_signature: str | None = Header(default=None),
        orch: FortuneOrchestrator = Depends(get_orchestrator),
    ):
        payload = await request.body()
        return _dump(orch.handle_payment_webhook(payload, stripe_signature))

    @app.post("/api/email")
    async def email_reading(
        req: FortuneIdRequest,
        principal: Principal | None = Depends(optional_principal),
        orch: FortuneOrchestrator = Depends(get_orchestrator),
    ):
        return _dump(await orch.send_reading(principal, req.fortune_id))

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    @app.get("/health")
    def health():
        """Container health probe endpoint."""

        return {"ok": True}

    return app
