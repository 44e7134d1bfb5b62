import json
import sys
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from langgraph.graph import StateGraph, START, END

from config import Settings
from graph.state import LeadState
from graph.nodes.capture import capture
from graph.nodes.dispatch import dispatch
from graph.nodes.notify import notify
from graph.nodes.respond import respond
from tools.errors import PayloadTooLargeError, ValidationError
from tools.leadsquared import LeadSquaredClient
from tools.mailer import LeadNotifier, build_notifier


def configure_logging(settings: Settings) -> None:
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)
    logger.add(settings.log_file, rotation="1 day", retention="7 days", level=settings.log_level)


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with milliseconds and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# Build the LangGraph workflow
def build_workflow():
    """Build the lead submission workflow."""
    workflow = StateGraph(LeadState)

    # Add nodes
    workflow.add_node("capture", capture)
    workflow.add_node("dispatch", dispatch)
    workflow.add_node("notify", notify)
    workflow.add_node("respond", respond)

    workflow.add_edge(START, "capture")

    # Invalid submissions skip the CRM call and the notification
    def branch_decision(state: LeadState) -> str:
        if state.get("error") is not None:
            return "respond"
        return "dispatch"

    workflow.add_conditional_edges(
        "capture",
        branch_decision,
        {
            "dispatch": "dispatch",
            "respond": "respond"
        }
    )

    workflow.add_edge("dispatch", "notify")
    workflow.add_edge("notify", "respond")
    workflow.add_edge("respond", END)

    return workflow.compile()


lead_graph = build_workflow()

MAX_BODY_BYTES = 1024 * 1024


async def read_body(request: Request) -> bytes:
    """Read the request body, refusing anything over MAX_BODY_BYTES."""
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > MAX_BODY_BYTES:
            raise PayloadTooLargeError("Request body too large")
    return bytes(body)


async def submit_lead(request: Request, form: str) -> JSONResponse:
    """Run one submission through the workflow and return the shaped response."""
    submitted_at = utc_timestamp()

    try:
        raw_body = await read_body(request)
    except PayloadTooLargeError as e:
        logger.warning(f"Rejected oversized {form} submission")
        state = respond({"form": form, "error": e})
        return JSONResponse(status_code=state["status_code"], content=state["body"])

    try:
        payload = json.loads(raw_body) if raw_body.strip() else {}
    except ValueError:
        logger.warning(f"Invalid JSON body for {form} submission")
        state = respond({"form": form, "error": ValidationError("Invalid JSON body")})
        return JSONResponse(status_code=state["status_code"], content=state["body"])

    if not isinstance(payload, dict):
        payload = {}

    logger.info(f"Received {form} submission")

    initial_state = {
        "form": form,
        "raw": payload,
        "submitted_at": submitted_at,
        "errors": [],
    }

    services = request.app.state
    result = await lead_graph.ainvoke(
        initial_state,
        config={
            "configurable": {
                "settings": services.settings,
                "crm": services.crm,
                "notifier": services.notifier,
            }
        },
    )

    if result.get("errors"):
        logger.info(f"{form} submission finished with issues: {result['errors']}")

    return JSONResponse(status_code=result["status_code"], content=result["body"])


def create_app(
    settings: Optional[Settings] = None,
    crm: Optional[LeadSquaredClient] = None,
    notifier: Optional[LeadNotifier] = None,
) -> FastAPI:
    """Create the API with its CRM client and notifier built once and held on app.state."""
    settings = settings or Settings.from_env()

    app = FastAPI(
        title="Landing Lead Bridge",
        description="Forwards landing page form submissions to LeadSquared",
        version="1.0.0"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins or ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.crm = crm or LeadSquaredClient(settings)
    app.state.notifier = notifier or build_notifier(settings)

    @app.post("/api/internal-consultation")
    async def international_consultation(req: Request):
        """International consultation form (husband/wife names)."""
        return await submit_lead(req, "international")

    @app.post("/api/landing-pages")
    async def national_landing_page(req: Request):
        """National landing page lead form."""
        return await submit_lead(req, "national")

    @app.post("/api/new-website/book-appointment")
    async def book_appointment(req: Request):
        """New website appointment booking."""
        return await submit_lead(req, "appointment")

    @app.post("/api/website-bookings")
    async def website_booking(req: Request):
        """Website booking form."""
        return await submit_lead(req, "website")

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"ok": True, "status": "healthy", "timestamp": utc_timestamp()}

    # Error handlers
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={"ok": False, "error": "Internal Server Error"}
        )

    return app


settings = Settings.from_env()
configure_logging(settings)
app = create_app(settings)

if __name__ == "__main__":
    import uvicorn

    logger.info("Starting Landing Lead Bridge")

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=settings.port,
        log_level="info"
    )
