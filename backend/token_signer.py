"""
Bearer token minting for the two push providers.

APNs and FCM both speak "JWT", but with different algorithms, claim sets and
exchange flows, so each gets its own builder. PyJWT does the segment
encoding and signing; this module only owns the claims and key checks.
"""
import time

import jwt
import requests
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa


FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"

FCM_ASSERTION_LIFETIME = 3600


class SigningError(Exception):
    """Private key could not be loaded or used."""


class TokenExchangeError(Exception):
    """OAuth2 token endpoint refused the assertion."""

    def __init__(self, status_code, body):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Failed to get access token ({status_code}): {body}")


def _load_private_key(private_key_pem):
    if not private_key_pem:
        raise SigningError("Private key is empty")
    pem = private_key_pem
    if isinstance(pem, str):
        # Keys pasted into env vars often carry literal "\n" sequences
        pem = pem.replace("\\n", "\n").strip().encode("utf-8")
    try:
        return serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise SigningError(f"Could not load private key: {exc}") from exc


def sign_apns_jwt(team_id: str, key_id: str, private_key_pem: str, now=None) -> str:
    """Build an ES256 provider token for APNs. Minted per request, never cached."""
    key = _load_private_key(private_key_pem)
    if not isinstance(key, ec.EllipticCurvePrivateKey) or not isinstance(key.curve, ec.SECP256R1):
        raise SigningError("APNs signing key must be an EC P-256 key")

    issued_at = int(now if now is not None else time.time())
    try:
        # typ=None keeps the header to exactly {alg, kid}
        return jwt.encode(
            {"iss": team_id, "iat": issued_at},
            key,
            algorithm="ES256",
            headers={"kid": key_id, "typ": None},
        )
    except (jwt.PyJWTError, ValueError, TypeError) as exc:
        raise SigningError(f"ECDSA signing failed: {exc}") from exc


def build_fcm_assertion(service_account: dict, now=None) -> str:
    """Build the RS256 JWT assertion exchanged for an FCM access token."""
    client_email = (service_account or {}).get("client_email")
    private_key_pem = (service_account or {}).get("private_key")
    if not client_email or not private_key_pem:
        raise SigningError("Service account is missing client_email or private_key")

    key = _load_private_key(private_key_pem)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise SigningError("FCM service account key must be an RSA key")

    issued_at = int(now if now is not None else time.time())
    claims = {
        "iss": client_email,
        "scope": FCM_SCOPE,
        "aud": GOOGLE_TOKEN_URL,
        "iat": issued_at,
        "exp": issued_at + FCM_ASSERTION_LIFETIME,
    }
    try:
        return jwt.encode(claims, key, algorithm="RS256")
    except (jwt.PyJWTError, ValueError, TypeError) as exc:
        raise SigningError(f"RSA signing failed: {exc}") from exc


def get_fcm_access_token(service_account: dict, session=None, now=None, timeout=10) -> str:
    """
    Exchange a signed service-account assertion for an OAuth2 bearer token.

    Raises SigningError for key problems and TokenExchangeError when the
    token endpoint answers with a non-2xx status (the body is kept for
    diagnosis).
    """
    assertion = build_fcm_assertion(service_account, now=now)
    http = session or requests
    response = http.post(
        GOOGLE_TOKEN_URL,
        data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        timeout=timeout,
    )
    if not 200 <= response.status_code < 300:
        raise TokenExchangeError(response.status_code, response.text)
    token = (response.json() or {}).get("access_token")
    if not token:
        raise TokenExchangeError(response.status_code, response.text)
    return token
