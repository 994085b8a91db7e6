"""
SMS Webhook Routes: Inbound messages from the SMS provider.

The provider retries anything that is not a 2xx, so every request is
acknowledged with an empty TwiML document, including ones that were
ignored or failed.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Header, Request
from fastapi.responses import Response

from ..core import ConversationDep, get_settings
from ..core.security import verify_twilio_signature
from ..services.sms_conversation import InboundSms

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/sms", tags=["sms"])

EMPTY_TWIML = "<Response></Response>"


def _ack() -> Response:
    return Response(content=EMPTY_TWIML, media_type="text/xml")


@router.post("/incoming")
async def handle_incoming_sms(
    request: Request,
    conversation: ConversationDep,
    x_twilio_signature: Annotated[str | None, Header()] = None,
) -> Response:
    """
    Handle an inbound SMS (form-encoded ``From``, ``To``, ``Body``, ``MessageSid``).

    Replies to the sender are sent through the outbound transport, never
    in the TwiML body.
    """
    form_data = await request.form()
    params = {key: str(value) for key, value in form_data.items()}

    if settings.twilio_validate_signature:
        if not verify_twilio_signature(str(request.url), params, x_twilio_signature):
            logger.warning(
                f"Invalid Twilio signature on inbound SMS {params.get('MessageSid')!r}; ignoring"
            )
            return _ack()

    message = InboundSms(
        from_number=(params.get("From") or "").strip() or None,
        to_number=(params.get("To") or "").strip() or None,
        body=params.get("Body", ""),
        message_sid=(params.get("MessageSid") or params.get("SmsSid") or "").strip() or None,
    )

    try:
        result = await conversation.handle_inbound(message)
    except Exception:
        logger.exception(f"Unhandled error processing inbound SMS {message.message_sid}")
        return _ack()

    logger.info(
        f"Inbound SMS {message.message_sid} from {message.from_number}: {result.outcome.value}"
    )
    return _ack()
