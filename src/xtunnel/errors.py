"""
Error taxonomy for xtunnel.

Configuration errors are raised before anything is launched. Launch
errors are raised while bringing a tunnel up. Every error carries a
stable ``code`` used by the control API.
"""

from typing import Optional, Sequence


class TunnelError(Exception):
    """Base class for all xtunnel errors."""

    code = "tunnel_error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.__class__.__doc__ or self.code)

    @property
    def message(self) -> str:
        return str(self)


class ConfigError(TunnelError):
    """The runtime configuration could not be built."""

    code = "config_error"


class InvalidShareLink(ConfigError):
    """Share link is empty or not understood by the converter."""

    code = "invalid_share_link"


class UpstreamParseFailure(ConfigError):
    """Converter returned a payload of unexpected shape."""

    code = "upstream_parse_failure"


class PortUnavailable(ConfigError):
    """Required port is missing, out of range, or clashes with another."""

    code = "port_unavailable"


class MissingPreference(ConfigError):
    """A required preference has never been stored."""

    code = "missing_preference"

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Missing preference: {key}")


class ConfigSerializationFailure(ConfigError):
    """Configuration could not be serialized or written."""

    code = "config_serialization_failure"


class ConflictError(TunnelError):
    """Another managed tunnel is already active on this host."""

    code = "conflict"

    def __init__(self, sessions: Sequence = ()):
        self.sessions = list(sessions)
        names = ", ".join(s.name for s in self.sessions) or "unknown"
        super().__init__(f"Another tunnel is active: {names}")


class InterfaceSetupFailure(TunnelError):
    """Virtual interface could not be configured."""

    code = "interface_setup_failure"


class CoreLaunchFailure(TunnelError):
    """Proxy core failed to start."""

    code = "core_launch_failure"


class AssetDownloadFailure(TunnelError):
    """Geo-data asset could not be downloaded."""

    code = "asset_download_failure"


class ControlApiError(TunnelError):
    """The control API of a running tunnel could not be reached or refused a request."""

    code = "control_api_error"

    def __init__(self, message: Optional[str] = None, status: Optional[int] = None):
        self.status = status
        super().__init__(message)
