"""
Error kinds raised by the resolution core.

Cancellation is not represented here: it travels as ``asyncio.CancelledError``
and is never wrapped into one of these classes.
"""


class VulngateError(Exception):
    """Base exception for the resolution core"""


class DataMissingError(VulngateError):
    """Requested data is not in the local cache (or nothing was ever synced)"""


class NotFoundError(DataMissingError):
    """A specific bulletin is not cached"""

    def __init__(self, bulletin_id: str):
        super().__init__(f"bulletin {bulletin_id} not found in cache")
        self.bulletin_id = bulletin_id


class CacheUnavailableError(VulngateError):
    """The cache store could not be opened and runs in degraded mode"""


class UpstreamError(VulngateError):
    """The remote intelligence source failed"""


class AllLookupsFailedError(UpstreamError):
    """Every attempted component lookup failed; an empty result would be a false negative"""

    def __init__(self, attempted: int):
        super().__init__(
            f"all {attempted} component lookups failed; results would be empty"
        )
        self.attempted = attempted


class ValidationError(VulngateError):
    """Malformed input such as a suppression document, collection name or severity"""


class ConfigurationError(VulngateError):
    """Missing or inconsistent configuration (e.g. no API key for online mode)"""
