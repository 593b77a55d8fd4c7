import logging
from typing import Dict

import azure.functions as func

from schemas.integrations_schema import CalendarOperation
from services.handlers import ProviderProxyHandler, json_response, parse_body

logger = logging.getLogger(__name__)


class CalendarProxyHandler(ProviderProxyHandler):
    """
    POST {op, event} -> one create/update/delete on the user's primary Google calendar.

    The stored token is refreshed (and persisted) first when it has expired;
    nothing is sent to Google when the user has no calendar integration.
    """

    name = "google-calendar-proxy"
    kind = "calendar"
    label = "Calendar"

    def process(self, req: func.HttpRequest, cors: Dict[str, str]) -> func.HttpResponse:
        user = self.authenticate(req)
        operation = parse_body(CalendarOperation, self.read_json(req))
        access_token = self.load_access_token(user)

        event = operation.event
        if operation.op == "create":
            created = self.google.create_event(access_token, event.to_google_body())
            google_event_id = created.get("id")
        elif operation.op == "update":
            updated = self.google.update_event(access_token, event.google_event_id, event.to_google_body())
            google_event_id = updated.get("id") or event.google_event_id
        else:
            self.google.delete_event(access_token, event.google_event_id)
            google_event_id = event.google_event_id

        logger.info("Calendar %s for user %s -> %s", operation.op, user.id, google_event_id)
        return json_response(
            {
                "ok": True,
                "googleEventId": google_event_id,
                "message": f"Calendar event {operation.op}d successfully",
            },
            200,
            cors,
        )
