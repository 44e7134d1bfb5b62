from typing import TypedDict, Optional, List, Dict, Any

class LeadState(TypedDict, total=False):
    """State shape for the lead submission workflow."""
    form: str                        # FormSchema name: international | national | appointment | website
    raw: Dict[str, Any]              # original request body
    submitted_at: str                # ISO timestamp captured on arrival
    normalized: Dict[str, str]       # cleaned fields plus composed notes/message
    payload: List[Dict[str, str]]    # LeadSquared attribute list
    outcome: Any                     # DispatchSuccess | DispatchFailure
    status_note: str                 # "Success" | "FAILED – ..."
    notified: bool
    error: Optional[Exception]       # ValidationError or the captured dispatch error
    status_code: int
    body: Dict[str, Any]             # JSON response
    errors: List[str]
