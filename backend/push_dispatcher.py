"""
One-shot alert pushes, routed to APNs or FCM by the device's platform.
"""
import logging

import requests

from backend.apns_client import apns_headers, post_to_apns
from backend.delivery import (
    DeliveryResult,
    STATUS_FAILED,
    STATUS_NOT_CONFIGURED,
    STATUS_SENT,
    STATUS_SIGNING_FAILED,
    STATUS_SKIPPED,
)
from backend.push_config import PushConfigError, PushSettings
from backend.token_signer import SigningError, TokenExchangeError, get_fcm_access_token, sign_apns_jwt
from models import db, DeviceRegistration


PLATFORM_IOS = "ios"
PLATFORM_ANDROID = "android"
PLATFORMS = {PLATFORM_IOS, PLATFORM_ANDROID}

FCM_SEND_URL = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"


def _registration_field(registration, name):
    if isinstance(registration, dict):
        return registration.get(name)
    return getattr(registration, name, None)


def build_apns_alert_payload(title, body, data=None):
    payload = {
        "aps": {
            "alert": {"title": title, "body": body or ""},
            "sound": "default",
            "badge": 1,
            "mutable-content": 1,
        },
    }
    for key, value in (data or {}).items():
        if key != "aps":
            payload[key] = value
    return payload


def build_fcm_message(token, title, body, data=None, channel_id=None):
    # FCM v1 only accepts string values in the data map
    string_data = {str(k): "" if v is None else str(v) for k, v in (data or {}).items()}
    return {
        "message": {
            "token": token,
            "notification": {"title": title, "body": body or ""},
            "data": string_data,
            "android": {
                "priority": "high",
                "notification": {"channel_id": channel_id, "sound": "default"},
            },
        }
    }


def _fcm_error_code(response):
    try:
        error = (response.json() or {}).get("error") or {}
    except ValueError:
        return None
    for detail in error.get("details") or []:
        if detail.get("errorCode"):
            return detail["errorCode"]
    return error.get("status")


def _send_apns_alert(token, title, body, data, settings, client, logger, now):
    try:
        settings.require_apns()
    except PushConfigError as exc:
        logger.warning("Push skipped: %s", exc)
        return DeliveryResult(STATUS_NOT_CONFIGURED, error=str(exc))
    try:
        jwt_token = sign_apns_jwt(settings.apns_team_id, settings.apns_key_id, settings.apns_private_key, now=now)
    except SigningError as exc:
        logger.error("APNs signing failed: %s", exc)
        return DeliveryResult(STATUS_SIGNING_FAILED, error=str(exc))

    headers = apns_headers(jwt_token, settings.apns_bundle_id, "alert", priority=10)
    return post_to_apns(
        token,
        build_apns_alert_payload(title, body, data),
        headers,
        settings.apns_host,
        timeout=settings.timeout,
        client=client,
    )


def _send_fcm(token, title, body, data, settings, session, logger, now):
    try:
        account = settings.service_account()
    except PushConfigError as exc:
        logger.warning("Push skipped: %s", exc)
        return DeliveryResult(STATUS_NOT_CONFIGURED, error=str(exc))

    http = session or requests
    try:
        access_token = get_fcm_access_token(account, session=http, now=now, timeout=settings.timeout)
    except SigningError as exc:
        logger.error("FCM assertion signing failed: %s", exc)
        return DeliveryResult(STATUS_SIGNING_FAILED, error=str(exc))
    except TokenExchangeError as exc:
        logger.error("FCM token exchange failed: %s", exc)
        return DeliveryResult(STATUS_FAILED, error=str(exc), status_code=exc.status_code, body=exc.body)
    except requests.RequestException as exc:
        return DeliveryResult(STATUS_FAILED, error=f"OAuth2 request failed: {exc}")

    message = build_fcm_message(token, title, body, data, channel_id=settings.fcm_channel_id)
    try:
        response = http.post(
            FCM_SEND_URL.format(project_id=account["project_id"]),
            json=message,
            headers={"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"},
            timeout=settings.timeout,
        )
    except requests.RequestException as exc:
        return DeliveryResult(STATUS_FAILED, error=f"FCM request failed: {exc}")

    if 200 <= response.status_code < 300:
        message_id = None
        try:
            message_id = (response.json() or {}).get("name")
        except ValueError:
            pass
        return DeliveryResult(STATUS_SENT, status_code=response.status_code, message_id=message_id)

    return DeliveryResult(
        STATUS_FAILED,
        error=f"FCM error: {response.status_code} - {response.text}",
        status_code=response.status_code,
        reason=_fcm_error_code(response),
        body=response.text,
    )


def send_push(registration, title, body, data=None, settings=None, client=None, session=None, logger=None, now=None):
    """
    Deliver one alert push to one device.

    ``registration`` is anything with ``token`` and ``platform``; a missing
    registration or empty token is a "skipped" outcome, not an error.
    """
    logger = logger or logging.getLogger(__name__)
    settings = settings or PushSettings()
    token = _registration_field(registration, "token") if registration is not None else None
    if not token:
        logger.info("No push destination registered, skipping")
        return DeliveryResult(STATUS_SKIPPED, error="No device token registered")

    platform = (_registration_field(registration, "platform") or "").lower()
    if platform == PLATFORM_IOS:
        result = _send_apns_alert(token, title, body, data, settings, client, logger, now)
    elif platform == PLATFORM_ANDROID:
        result = _send_fcm(token, title, body, data, settings, session, logger, now)
    else:
        return DeliveryResult(STATUS_FAILED, error=f"Unknown platform: {platform or 'none'}")

    if result.success:
        logger.info("Push sent via %s (%s)", platform, result.message_id or "no id")
    elif result.status == STATUS_FAILED:
        logger.warning("Push via %s failed: %s", platform, result.error)
    return result


def send_push_to_user(user_id, title, body, data=None, settings=None, client=None, session=None, logger=None):
    """
    Push to every registered device of a user.

    Registrations reported as dead by the provider are deleted so they are
    not retried on the next sweep.
    """
    logger = logger or logging.getLogger(__name__)
    registrations = DeviceRegistration.query.filter_by(user_id=user_id).all()
    if not registrations:
        return [DeliveryResult(STATUS_SKIPPED, error="No device token registered")]

    results = []
    for registration in registrations:
        result = send_push(
            registration, title, body, data,
            settings=settings, client=client, session=session, logger=logger,
        )
        if result.invalid_token:
            logger.warning(
                "Clearing %s token for user %s after provider reason %s",
                registration.platform, user_id, result.reason,
            )
            registration.token = None
            db.session.commit()
        results.append(result)
    return results
