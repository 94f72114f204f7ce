"""
VoIP "incoming call" pushes.

These wake a suspended or killed iOS app and hand the native call screen the
event to announce. APNs only routes them when the topic carries the ``.voip``
suffix and the push type is ``voip``; the regular bundle topic is accepted but
never rings.
"""
import logging

from backend.alert_scheduler import DEFAULT_EMOJI
from backend.apns_client import apns_headers, post_to_apns
from backend.delivery import (
    DeliveryResult,
    STATUS_NOT_CONFIGURED,
    STATUS_SIGNING_FAILED,
    STATUS_SKIPPED,
)
from backend.push_config import PushConfigError, PushSettings
from backend.token_signer import SigningError, sign_apns_jwt


def build_voip_payload(event_id, title, time=None, location=None, emoji=None):
    emoji = emoji or DEFAULT_EMOJI
    # No "duration": the call UI must stay up until the app ends it
    return {
        "aps": {"content-available": 1},
        "id": event_id,
        "name": f"{emoji} {title}",
        "media": "audio",
        "eventId": event_id,
        "eventTitle": title,
        "eventTime": time or "",
        "eventLocation": location or "",
        "eventEmoji": emoji,
    }


def send_call_push(voip_token, event_id, title, time=None, location=None, emoji=None,
                   settings=None, client=None, logger=None, now=None):
    logger = logger or logging.getLogger(__name__)
    settings = settings or PushSettings()
    if not voip_token:
        logger.info("No VoIP token for event %s, skipping call push", event_id)
        return DeliveryResult(STATUS_SKIPPED, error="No VoIP token registered")

    try:
        settings.require_apns()
    except PushConfigError as exc:
        logger.warning("VoIP push skipped: %s", exc)
        return DeliveryResult(STATUS_NOT_CONFIGURED, error=str(exc))

    try:
        jwt_token = sign_apns_jwt(settings.apns_team_id, settings.apns_key_id, settings.apns_private_key, now=now)
    except SigningError as exc:
        logger.error("APNs signing failed for VoIP push: %s", exc)
        return DeliveryResult(STATUS_SIGNING_FAILED, error=str(exc))

    headers = apns_headers(jwt_token, settings.voip_topic, "voip", priority=10, expiration=0)
    payload = build_voip_payload(event_id, title, time=time, location=location, emoji=emoji)
    logger.info("Sending VoIP push for event %s on topic %s", event_id, settings.voip_topic)
    result = post_to_apns(
        voip_token, payload, headers, settings.apns_host,
        timeout=settings.timeout, client=client,
    )
    if result.success:
        logger.info("VoIP push sent for event %s", event_id)
    else:
        logger.warning("VoIP push for event %s failed: %s", event_id, result.error)
    return result
