from __future__ import annotations

from typing import Optional


class BridgeError(Exception):
    """Base class for every error raised by the bridge."""


# ---------------- Fatal (startup) ----------------


class ConfigMissing(BridgeError):
    pass


class ConfigInvalid(BridgeError):
    pass


class PlatformConnectFailed(BridgeError):
    pass


# ---------------- Per-item (never stop a consume loop) ----------------


class ProxyResolutionFailed(BridgeError):
    def __init__(self, channel_id: str, reason: str = ""):
        self.channel_id = str(channel_id)
        self.reason = str(reason or "")
        super().__init__(f"proxy resolution failed channel_id={self.channel_id} {self.reason}".strip())


class AttachmentError(BridgeError):
    def __init__(self, source_url: str, reason: str = ""):
        self.source_url = str(source_url)
        self.reason = str(reason or "")
        super().__init__(f"{self.source_url}: {self.reason}" if self.reason else self.source_url)


class AttachmentTooLarge(AttachmentError):
    pass


class AttachmentTransferFailed(AttachmentError):
    pass


class UploadRequestFailed(BridgeError):
    def __init__(self, status: int, body: str = ""):
        self.status = int(status or 0)
        self.body = str(body or "")
        super().__init__(f"webhook upload failed (HTTP {self.status}) {self.body[:300]}".strip())


class HubError(BridgeError):
    pass


class ForwardToHubFailed(HubError):
    def __init__(self, message_id: str, cause: Optional[BaseException] = None):
        self.message_id = str(message_id)
        detail = f" ({type(cause).__name__}: {cause})" if cause is not None else ""
        super().__init__(f"forward to hub failed message_id={self.message_id}{detail}")
