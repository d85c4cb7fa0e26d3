"""
Error taxonomy shared by the ledger, the pipeline stages and the HTTP layer.

Every failure the worker reports is one of these kinds, so callers can tell
"limit reached" from "vendor said no" from "prior step missing" without
parsing message strings.
"""

from typing import Optional


class GenerationError(Exception):
    """Base class for every reportable generation failure."""

    kind = "GenerationError"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class InvalidInput(GenerationError):
    """Caller data failed validation before any vendor call."""

    kind = "InvalidInput"
    status_code = 400


class VendorRejected(GenerationError):
    """Vendor answered with a non-2xx status or a malformed body."""

    kind = "VendorRejected"
    status_code = 502

    def __init__(self, vendor: str, message: str, *, vendor_status: Optional[int] = None, **kwargs):
        super().__init__(f"{vendor}: {message}", **kwargs)
        self.vendor = vendor
        self.vendor_status = vendor_status


class VendorTimeout(GenerationError):
    """Polling budget exhausted before the vendor job finished."""

    kind = "VendorTimeout"
    status_code = 504


class VendorUnavailable(GenerationError):
    """Network-level failure reaching a vendor or proxy."""

    kind = "VendorUnavailable"
    status_code = 503


class LimitReached(GenerationError):
    """The usage ledger denied admission."""

    kind = "LimitReached"
    status_code = 402


class StorageUnavailable(GenerationError):
    """Durable ledger or artifact store could not be reached."""

    kind = "StorageUnavailable"
    status_code = 503


class MissingDependency(GenerationError):
    """A stage precondition (e.g. the scene image) was not met."""

    kind = "MissingDependency"
    status_code = 409


class Cancelled(GenerationError):
    """The job was cancelled while this stage was running."""

    kind = "Cancelled"
    status_code = 409
