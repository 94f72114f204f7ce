"""
APNs HTTP/2 transport.

Only builds and posts requests; provider tokens come from
``backend.token_signer.sign_apns_jwt`` and payloads from the dispatchers.
"""
import json

import httpx

from backend.delivery import DeliveryResult, STATUS_FAILED, STATUS_SENT


def apns_headers(jwt_token, topic, push_type, priority=10, expiration=None):
    headers = {
        "authorization": f"bearer {jwt_token}",
        "apns-topic": topic,
        "apns-push-type": push_type,
        "apns-priority": str(priority),
        "content-type": "application/json",
    }
    if expiration is not None:
        headers["apns-expiration"] = str(expiration)
    return headers


def _reason_from_body(body):
    try:
        return (json.loads(body) or {}).get("reason")
    except (TypeError, ValueError, AttributeError):
        return None


def post_to_apns(device_token, payload, headers, host, timeout=10, client=None):
    """POST one notification; never raises for transport or provider errors."""
    url = f"{host}/3/device/{device_token}"
    body = json.dumps(payload)
    try:
        if client is not None:
            response = client.post(url, headers=headers, content=body)
        else:
            with httpx.Client(http2=True, timeout=timeout) as http:
                response = http.post(url, headers=headers, content=body)
    except httpx.HTTPError as exc:
        return DeliveryResult(STATUS_FAILED, error=f"APNs request failed: {exc}")

    if response.status_code == 200:
        return DeliveryResult(STATUS_SENT, status_code=200, message_id=response.headers.get("apns-id"))

    text = response.text
    return DeliveryResult(
        STATUS_FAILED,
        error=f"APNs error: {response.status_code} - {text}",
        status_code=response.status_code,
        reason=_reason_from_body(text),
        body=text,
    )
