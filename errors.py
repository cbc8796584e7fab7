# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Exceptions raised by the roster sync components
"""
from typing import Optional


class RosterSyncError(Exception):
    """Base class for every error raised by roster sync"""


class ConfigurationError(RosterSyncError):
    """A required setting is missing or invalid. Never retried."""


class WorkforceAPIError(RosterSyncError):
    """The workforce (roster) API returned an unexpected response"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(WorkforceAPIError):
    """The workforce API answered 429 Too Many Requests"""


class SchedulingAPIError(RosterSyncError):
    """The scheduling system rejected a call or could not be reached"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ''):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class AccountCreationError(RosterSyncError):
    """A scheduling account could not be found or created for a shift holder"""


class SnapshotValidationError(RosterSyncError):
    """A sync request was malformed (bad date range, unknown branch, ...)"""
