import logging
from typing import Dict

import azure.functions as func

from schemas.integrations_schema import GmailSendRequest
from services.google_api import build_raw_message
from services.handlers import ProviderProxyHandler, json_response, parse_body

logger = logging.getLogger(__name__)


class GmailSendHandler(ProviderProxyHandler):
    """POST {to, subject, html|text, quoteId?, invoiceId?} -> users.messages.send, then an email_logs row."""

    name = "google-gmail-send"
    kind = "gmail"
    label = "Gmail"

    def process(self, req: func.HttpRequest, cors: Dict[str, str]) -> func.HttpResponse:
        user = self.authenticate(req)
        message = parse_body(GmailSendRequest, self.read_json(req))
        access_token = self.load_access_token(user)

        raw = build_raw_message(message.to, message.subject, message.html, message.text)
        sent = self.google.send_message(access_token, raw)
        message_id = sent.get("id")
        logger.info("Gmail message %s sent for user %s", message_id, user.id)

        # The email is already out; a failed log write only degrades the result.
        warning = self.store.record_email_log(
            user_id=user.id,
            recipient_email=message.to,
            subject=message.subject,
            message_id=message_id,
            quote_id=message.quote_id,
            invoice_id=message.invoice_id,
        )
        if warning:
            logger.warning("[%s] %s (message %s)", self.name, warning, message_id)

        return json_response(
            {"ok": True, "messageId": message_id, "message": "Email sent successfully"},
            200,
            cors,
        )
