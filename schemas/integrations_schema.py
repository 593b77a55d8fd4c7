from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from shared.config import INTEGRATION_KINDS

CALENDAR_OPS = ("create", "update", "delete")


def _optional_str(payload: Dict[str, Any], field: str) -> Optional[str]:
    value = payload.get(field)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "y"}


def normalize_kind(value: Any) -> str:
    kind = str(value or "").strip().lower()
    if kind not in INTEGRATION_KINDS:
        raise ValueError('Invalid kind parameter. Must be "gmail" or "calendar"')
    return kind


@dataclass(frozen=True)
class ExchangeRequest:
    code: str
    state: str

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "ExchangeRequest":
        code = _optional_str(payload, "code")
        state = _optional_str(payload, "state")
        if not code or not state:
            raise ValueError("Missing code or state parameter")
        return cls(code=code, state=state)


@dataclass(frozen=True)
class StartRequest:
    kind: str

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "StartRequest":
        return cls(kind=normalize_kind(payload.get("kind")))


@dataclass(frozen=True)
class RefreshRequest:
    user_id: str
    kind: str
    force: bool = False

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "RefreshRequest":
        kind = normalize_kind(payload.get("kind"))
        user_id = _optional_str(payload, "userId") or _optional_str(payload, "user_id")
        if not user_id:
            raise ValueError("Missing userId parameter")
        return cls(user_id=user_id, kind=kind, force=_as_bool(payload.get("force")))


@dataclass(frozen=True)
class CalendarEventInput:
    title: Optional[str] = None
    description: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    timezone: str = "UTC"
    location: Optional[str] = None
    google_event_id: Optional[str] = None
    deal_id: Optional[str] = None
    company_id: Optional[str] = None
    crm_event_id: Optional[str] = None

    def to_google_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "summary": self.title,
            "description": self.description,
            "start": {"dateTime": self.start, "timeZone": self.timezone},
            "end": {"dateTime": self.end, "timeZone": self.timezone},
            "location": self.location,
            "extendedProperties": {
                "private": {
                    "dealId": self.deal_id,
                    "companyId": self.company_id,
                    "crmEventId": self.crm_event_id,
                }
            },
        }
        private = body["extendedProperties"]["private"]
        body["extendedProperties"]["private"] = {k: v for k, v in private.items() if v is not None}
        return {k: v for k, v in body.items() if v is not None}


@dataclass(frozen=True)
class CalendarOperation:
    op: str
    event: CalendarEventInput

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "CalendarOperation":
        op = str(payload.get("op") or "").strip().lower()
        raw_event = payload.get("event")
        if op not in CALENDAR_OPS or not isinstance(raw_event, dict) or not raw_event:
            raise ValueError("Invalid operation or missing event data")
        event = CalendarEventInput(
            title=_optional_str(raw_event, "title"),
            description=_optional_str(raw_event, "description"),
            start=_optional_str(raw_event, "start"),
            end=_optional_str(raw_event, "end"),
            timezone=_optional_str(raw_event, "timezone") or "UTC",
            location=_optional_str(raw_event, "location"),
            google_event_id=_optional_str(raw_event, "googleEventId"),
            deal_id=_optional_str(raw_event, "dealId"),
            company_id=_optional_str(raw_event, "companyId"),
            crm_event_id=_optional_str(raw_event, "id"),
        )
        if op in ("update", "delete") and not event.google_event_id:
            raise ValueError(f"Missing googleEventId for {op} operation")
        if op in ("create", "update") and (not event.start or not event.end):
            raise ValueError(f"Missing start or end for {op} operation")
        return cls(op=op, event=event)


@dataclass(frozen=True)
class GmailSendRequest:
    to: str
    subject: str
    html: Optional[str] = None
    text: Optional[str] = None
    quote_id: Optional[str] = None
    invoice_id: Optional[str] = None

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "GmailSendRequest":
        to_value = _optional_str(payload, "to")
        subject = _optional_str(payload, "subject")
        html = payload.get("html") or None
        text = payload.get("text") or None
        if not to_value or not subject or (not html and not text):
            raise ValueError("Missing required fields: to, subject, and either html or text")
        if any(ch in to_value + subject for ch in "\r\n"):
            raise ValueError("Header fields must not contain line breaks")
        return cls(
            to=to_value,
            subject=subject,
            html=str(html) if html else None,
            text=str(text) if text else None,
            quote_id=_optional_str(payload, "quoteId"),
            invoice_id=_optional_str(payload, "invoiceId"),
        )
