"""Error types raised inside the display engine.

None of these are fatal: callers recover with defaults or the last
snapshot that was delivered successfully.
"""


class MasjidDisplayError(Exception):
    """Base class for display engine errors."""


class ConfigUnavailable(MasjidDisplayError):
    """Settings could not be fetched or parsed from the remote source."""


class ChannelDisconnected(ConfigUnavailable):
    """The connection to the settings source dropped or timed out."""


class InvalidCalculationInput(MasjidDisplayError):
    """Coordinates or calculation method missing or out of range."""
