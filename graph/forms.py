"""
Declarative per-form configuration for the lead pipeline.

Every landing page runs the same graph; a FormSchema says which fields it
reads, what it requires, how the CRM attributes and notes are composed, what
the notification email shows and how the HTTP response is shaped.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from tools.errors import ValidationError

NA = "NA"

Lead = Dict[str, str]


@dataclass(frozen=True)
class RequiredRule:
    """Satisfied when any of `fields` is non-empty."""
    fields: Tuple[str, ...]
    message: str


@dataclass(frozen=True)
class ResponseShape:
    flag_key: str
    error_key: str
    success_status: int
    success_message: Optional[str] = None
    duplicate_message: Optional[str] = None


@dataclass(frozen=True)
class FormSchema:
    name: str
    title: str
    subject: str
    fields: Tuple[str, ...]
    required: Tuple[RequiredRule, ...]
    attributes: Tuple[Tuple[str, str], ...]
    summary: Tuple[str, ...]
    subject_keys: Tuple[str, ...]
    response: ResponseShape
    default_source: str
    source_keys: Tuple[str, ...] = ()
    use_configured_source: bool = False
    derive: Callable[[Lead], Lead] = field(default=lambda lead: lead)


def sanitize_phone(phone: Any) -> str:
    """Keep digits only, then the last 10 of them (drops a leading country code)."""
    if not phone:
        return ""
    return re.sub(r"[^0-9]", "", str(phone))[-10:]


def split_name(full_name: str) -> Tuple[str, str]:
    parts = (full_name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _or_na(value: str) -> str:
    return value or NA


def normalize(schema: FormSchema, raw: Dict[str, Any], configured_source: str = "") -> Lead:
    """
    Apply a form schema to a raw submission.

    Args:
        schema: Form being submitted
        raw: Parsed request body
        configured_source: DEFAULT_LEAD_SOURCE, used by forms that honour it

    Returns:
        The normalized lead, including composed fields

    Raises:
        ValidationError: a required rule is not satisfied
    """
    lead = {name: _clean(raw.get(name)) for name in schema.fields}
    lead["phone"] = sanitize_phone(lead.get("phone"))

    source = next((_clean(raw.get(k)) for k in schema.source_keys if _clean(raw.get(k))), "")
    if not source and schema.use_configured_source:
        source = configured_source
    lead["source"] = source or schema.default_source

    for rule in schema.required:
        if not any(lead.get(name) for name in rule.fields):
            raise ValidationError(rule.message)

    return schema.derive(lead)


def build_payload(schema: FormSchema, lead: Lead) -> List[Dict[str, str]]:
    """Map a normalized lead onto the CRM attribute list, dropping empty values."""
    payload = []
    for attribute, key in schema.attributes:
        value = lead.get(key)
        if value is None or str(value).strip() == "":
            continue
        payload.append({"Attribute": attribute, "Value": str(value)})
    return payload


def summary_fields(schema: FormSchema, lead: Lead) -> Dict[str, str]:
    return {key: lead.get(key, "") for key in schema.summary}


# International consultation

def _derive_international(lead: Lead) -> Lead:
    lead["fullName"] = " & ".join(p for p in (lead["husbandName"], lead["wifeName"]) if p)
    lead["notes"] = f"Type of service: {_or_na(lead['typeOfService'])}"
    return lead


INTERNATIONAL = FormSchema(
    name="international",
    title="International Consultation Lead",
    subject="New International Consultation",
    fields=("husbandName", "wifeName", "email", "phone", "typeOfService", "centerLocation"),
    required=(
        RequiredRule(("husbandName", "wifeName"), "At least one of husbandName or wifeName is required"),
        RequiredRule(("email",), "Email is required"),
        RequiredRule(("phone",), "Phone is required"),
    ),
    attributes=(
        ("FirstName", "fullName"),
        ("EmailAddress", "email"),
        ("Phone", "phone"),
        ("mx_Center_Location", "centerLocation"),
        ("Source", "source"),
        ("Notes", "notes"),
    ),
    summary=("husbandName", "wifeName", "email", "phone", "typeOfService", "centerLocation", "source"),
    subject_keys=("husbandName", "wifeName", "email"),
    response=ResponseShape(
        flag_key="success",
        error_key="message",
        success_status=200,
        success_message="Your consultation request has been submitted successfully!",
        duplicate_message="We have already received your consultation request with these details.",
    ),
    default_source="international",
    derive=_derive_international,
)


# National landing page

def _derive_national(lead: Lead) -> Lead:
    lead["notes"] = lead["message"] or "Free Fertility Consultation Request"
    return lead


NATIONAL = FormSchema(
    name="national",
    title="National Landing Page Lead",
    subject="New National Landing Page Lead",
    fields=("firstName", "lastName", "email", "phone", "message"),
    required=(
        RequiredRule(("firstName",), "First name is required"),
        RequiredRule(("phone",), "Phone is required"),
    ),
    attributes=(
        ("FirstName", "firstName"),
        ("LastName", "lastName"),
        ("EmailAddress", "email"),
        ("Phone", "phone"),
        ("Source", "source"),
        ("Notes", "notes"),
    ),
    summary=("firstName", "lastName", "email", "phone", "message", "source"),
    subject_keys=("firstName", "email"),
    response=ResponseShape(flag_key="ok", error_key="message", success_status=200),
    default_source="landing Google Ads",
    source_keys=("source",),
    derive=_derive_national,
)


# New website appointment booking

def _derive_appointment(lead: Lead) -> Lead:
    first_name, last_name = split_name(lead["name"])
    lead["firstName"] = first_name
    lead["lastName"] = last_name
    lead["name"] = f"{first_name} {last_name}".strip()

    details = [
        f"{label}: {lead[key]}"
        for label, key in (("Preferred Date", "date"), ("Preferred Time", "time"), ("Center", "center"))
        if lead[key]
    ]
    appointment = " | ".join(details)
    if lead["message"]:
        lead["notes"] = f"{appointment}{' | ' if appointment else ''}Message: {lead['message']}"
    else:
        lead["notes"] = appointment or "Appointment booking request"

    lines = [
        f"Preferred Date: {_or_na(lead['date'])}",
        f"Preferred Time: {_or_na(lead['time'])}",
        f"Center: {_or_na(lead['center'])}",
    ]
    if lead["message"]:
        lines.append(f"Message: {lead['message']}")
    lead["message"] = " | ".join(lines)
    return lead


APPOINTMENT = FormSchema(
    name="appointment",
    title="New Appointment Booking Request",
    subject="New Appointment Booking",
    fields=("name", "phone", "email", "date", "time", "center", "message"),
    required=(
        RequiredRule(("name",), "Missing required fields: name and phone"),
        RequiredRule(("phone",), "Missing required fields: name and phone"),
    ),
    attributes=(
        ("FirstName", "firstName"),
        ("LastName", "lastName"),
        ("Phone", "phone"),
        ("EmailAddress", "email"),
        ("mx_Appointment_Date", "date"),
        ("mx_Appointment_Time", "time"),
        ("mx_Center_Name", "center"),
        ("Source", "source"),
        ("Notes", "notes"),
    ),
    summary=("name", "phone", "email", "date", "time", "center", "message"),
    subject_keys=("name",),
    response=ResponseShape(flag_key="ok", error_key="error", success_status=201),
    default_source="website form",
    derive=_derive_appointment,
)


# Website booking

def _derive_website(lead: Lead) -> Lead:
    treatment = _or_na(lead["treatmentPreference"])
    trying = _or_na(lead["tryingDuration"])
    message = lead["message"]

    lead["notes"] = message or f"Treatment: {treatment} | Trying duration: {trying}"
    lead["message"] = message or (
        f"City: {_or_na(lead['city'])} | State: {_or_na(lead['state'])} | "
        f"Centre: {_or_na(lead['centre'])} | Treatment: {treatment} | Trying duration: {trying}"
    )
    lead["centerLocation"] = ", ".join(p for p in (lead["city"], lead["state"]) if p)
    lead["fullName"] = f"{lead['firstName']} {lead['lastName']}".strip()
    return lead


WEBSITE = FormSchema(
    name="website",
    title="Website Appointment Lead",
    subject="New Website Booking",
    fields=(
        "firstName", "lastName", "phone", "email", "city", "state",
        "centre", "treatmentPreference", "tryingDuration", "message",
    ),
    required=(
        RequiredRule(("firstName",), "Missing required fields: firstName and phone"),
        RequiredRule(("phone",), "Missing required fields: firstName and phone"),
    ),
    attributes=(
        ("FirstName", "firstName"),
        ("LastName", "lastName"),
        ("Phone", "phone"),
        ("EmailAddress", "email"),
        ("mx_City", "city"),
        ("mx_State", "state"),
        ("mx_Center_Name", "centre"),
        ("mx_Center_Location", "centerLocation"),
        ("Source", "source"),
        ("Notes", "notes"),
    ),
    summary=(
        "fullName", "phone", "email", "city", "state", "centre",
        "treatmentPreference", "tryingDuration", "source", "message",
    ),
    subject_keys=("fullName", "firstName"),
    response=ResponseShape(flag_key="ok", error_key="error", success_status=201),
    default_source="Website Form",
    source_keys=("source", "leadSource"),
    use_configured_source=True,
    derive=_derive_website,
)


FORMS: Dict[str, FormSchema] = {
    schema.name: schema for schema in (INTERNATIONAL, NATIONAL, APPOINTMENT, WEBSITE)
}
