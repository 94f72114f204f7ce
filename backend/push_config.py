"""Push provider secrets, read from the Flask config (itself fed from env)."""
import json


DEFAULT_APNS_HOST = "https://api.push.apple.com"
DEFAULT_FCM_CHANNEL_ID = "call_alerts"
DEFAULT_PUSH_TIMEOUT = 10


class PushConfigError(Exception):
    """A required secret is missing or unreadable."""


class PushSettings:
    def __init__(
        self,
        apns_team_id=None,
        apns_key_id=None,
        apns_private_key=None,
        apns_bundle_id=None,
        apns_host=DEFAULT_APNS_HOST,
        fcm_service_account=None,
        fcm_channel_id=DEFAULT_FCM_CHANNEL_ID,
        timeout=DEFAULT_PUSH_TIMEOUT,
    ):
        self.apns_team_id = apns_team_id
        self.apns_key_id = apns_key_id
        self.apns_private_key = apns_private_key
        self.apns_bundle_id = apns_bundle_id
        self.apns_host = (apns_host or DEFAULT_APNS_HOST).rstrip("/")
        self.fcm_service_account = fcm_service_account
        self.fcm_channel_id = fcm_channel_id or DEFAULT_FCM_CHANNEL_ID
        self.timeout = timeout

    @classmethod
    def from_mapping(cls, config):
        """Build settings from ``app.config`` or any dict-like mapping."""
        raw_account = config.get("FIREBASE_SERVICE_ACCOUNT_KEY")
        try:
            timeout = float(config.get("PUSH_TIMEOUT_SECONDS") or DEFAULT_PUSH_TIMEOUT)
        except (TypeError, ValueError):
            timeout = DEFAULT_PUSH_TIMEOUT
        return cls(
            apns_team_id=config.get("APNS_TEAM_ID"),
            apns_key_id=config.get("APNS_KEY_ID"),
            apns_private_key=config.get("APNS_PRIVATE_KEY"),
            apns_bundle_id=config.get("APNS_BUNDLE_ID"),
            apns_host=config.get("APNS_HOST") or DEFAULT_APNS_HOST,
            fcm_service_account=raw_account,
            fcm_channel_id=config.get("FCM_CHANNEL_ID"),
            timeout=timeout,
        )

    @property
    def voip_topic(self):
        return f"{self.apns_bundle_id}.voip"

    def missing_apns(self):
        missing = []
        for name, value in (
            ("APNS_TEAM_ID", self.apns_team_id),
            ("APNS_KEY_ID", self.apns_key_id),
            ("APNS_PRIVATE_KEY", self.apns_private_key),
            ("APNS_BUNDLE_ID", self.apns_bundle_id),
        ):
            if not value:
                missing.append(name)
        return missing

    def require_apns(self):
        missing = self.missing_apns()
        if missing:
            raise PushConfigError("APNs not configured: missing " + ", ".join(missing))

    def service_account(self):
        """Return the parsed FCM service account, raising PushConfigError if unusable."""
        raw = self.fcm_service_account
        if not raw:
            raise PushConfigError("FIREBASE_SERVICE_ACCOUNT_KEY not configured")
        if isinstance(raw, dict):
            account = raw
        else:
            try:
                account = json.loads(raw)
            except (TypeError, ValueError) as exc:
                raise PushConfigError(f"FIREBASE_SERVICE_ACCOUNT_KEY is not valid JSON: {exc}") from exc
        if not account.get("project_id"):
            raise PushConfigError("Service account has no project_id")
        return account
