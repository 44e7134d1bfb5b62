from langchain_core.runnables import RunnableConfig
from loguru import logger

from graph.forms import FORMS, summary_fields
from graph.state import LeadState

async def notify(state: LeadState, config: RunnableConfig) -> LeadState:
    """Email the submission summary and CRM outcome. Never fails the request."""
    schema = FORMS[state["form"]]
    notifier = config.get("configurable", {}).get("notifier")

    fields = summary_fields(schema, state.get("normalized", {}))
    fields["leadSquaredStatus"] = state.get("status_note", "")

    state["notified"] = False
    if notifier is None:
        return state

    try:
        state["notified"] = await notifier.notify(
            schema.title, schema.subject, fields, subject_keys=schema.subject_keys
        )
    except Exception as e:
        logger.error(f"Notification failed: {e}")
        state.setdefault("errors", []).append(f"notification_failed: {e}")

    return state
