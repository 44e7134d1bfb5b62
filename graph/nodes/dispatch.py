from langchain_core.runnables import RunnableConfig
from loguru import logger

from graph.forms import FORMS, build_payload
from graph.state import LeadState
from tools.leadsquared import DispatchFailure, describe_error

async def dispatch(state: LeadState, config: RunnableConfig) -> LeadState:
    """Build the CRM payload and create the lead. Failures are captured, not raised."""
    schema = FORMS[state["form"]]
    crm = config["configurable"]["crm"]

    payload = build_payload(schema, state["normalized"])
    state["payload"] = payload
    logger.info(f"Dispatching {schema.name} lead to LeadSquared ({len(payload)} attributes)")

    outcome = await crm.create_lead(payload)
    state["outcome"] = outcome

    if isinstance(outcome, DispatchFailure):
        description = describe_error(outcome.error)
        state["error"] = outcome.error
        state["status_note"] = f"FAILED – {description}"
        state.setdefault("errors", []).append(f"crm_failed: {description}")
        logger.error(f"LeadSquared submission failed ({schema.name}): {description}")
    else:
        state["status_note"] = "Success"

    return state
