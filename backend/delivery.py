STATUS_SENT = "sent"
STATUS_SKIPPED = "skipped"
STATUS_NOT_CONFIGURED = "not_configured"
STATUS_SIGNING_FAILED = "signing_failed"
STATUS_FAILED = "failed"

# Provider answers meaning the stored token is dead and must not be retried
INVALID_TOKEN_REASONS = {"BadDeviceToken", "Unregistered", "DeviceTokenNotForTopic", "UNREGISTERED"}


class DeliveryResult:
    """Outcome of one push attempt. Dispatchers return this instead of raising."""

    def __init__(self, status, error=None, status_code=None, reason=None, body=None, message_id=None):
        self.status = status
        self.error = error
        self.status_code = status_code
        self.reason = reason
        self.body = body
        self.message_id = message_id

    @property
    def success(self):
        return self.status == STATUS_SENT

    @property
    def skipped(self):
        return self.status == STATUS_SKIPPED

    @property
    def invalid_token(self):
        return self.reason in INVALID_TOKEN_REASONS

    def to_dict(self):
        data = {"success": self.success, "status": self.status}
        if self.error:
            data["error"] = self.error
        if self.status_code is not None:
            data["status_code"] = self.status_code
        if self.reason:
            data["reason"] = self.reason
        if self.message_id:
            data["message_id"] = self.message_id
        return data

    def __repr__(self):
        return f"<DeliveryResult {self.status} {self.status_code or ''} {self.reason or ''}>"
