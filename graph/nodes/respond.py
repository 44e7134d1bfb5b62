from loguru import logger

from graph.forms import FORMS
from graph.state import LeadState
from tools.errors import LeadError
from tools.leadsquared import error_message

def respond(state: LeadState) -> LeadState:
    """Shape the final HTTP status and JSON body from the pipeline outcome."""
    schema = FORMS[state["form"]]
    shape = schema.response
    error = state.get("error")

    if error is not None:
        status = getattr(error, "status", None) or 500
        message = error_message(error) if isinstance(error, LeadError) else (str(error) or "Unknown error")
        logger.info(f"{schema.name} submission failed with {status}: {message}")
        state["status_code"] = status
        state["body"] = {shape.flag_key: False, shape.error_key: message}
        return state

    outcome = state["outcome"]
    body = {shape.flag_key: True}
    if shape.success_message:
        body["message"] = shape.duplicate_message if outcome.duplicate else shape.success_message
    body["duplicate"] = outcome.duplicate
    body["leadSquaredResponse"] = outcome.response
    body["submittedAt"] = state.get("submitted_at")

    state["status_code"] = shape.success_status
    state["body"] = body
    return state
