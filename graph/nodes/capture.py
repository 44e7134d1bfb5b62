from langchain_core.runnables import RunnableConfig
from loguru import logger

from graph.forms import FORMS, normalize
from graph.state import LeadState
from tools.errors import ValidationError

def capture(state: LeadState, config: RunnableConfig) -> LeadState:
    """Normalize and validate the incoming form submission."""
    schema = FORMS[state["form"]]
    logger.info(f"Starting capture for {schema.name} submission")

    settings = config.get("configurable", {}).get("settings")
    configured_source = settings.default_lead_source if settings else ""

    try:
        state["normalized"] = normalize(schema, state.get("raw") or {}, configured_source)
    except ValidationError as e:
        logger.warning(f"Rejected {schema.name} submission: {e}")
        state["error"] = e
        state.setdefault("errors", []).append(f"validation_failed: {e}")
        return state

    logger.info(f"Capture completed for {schema.name}: phone={state['normalized'].get('phone')}")
    return state
