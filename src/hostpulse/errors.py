"""Exception types for hostpulse."""


class HostPulseError(Exception):
    """Base class for hostpulse errors."""


class ConfigError(HostPulseError):
    """Raised when settings from the environment or command line are invalid."""


class TunnelError(HostPulseError):
    """Raised when a public tunnel cannot be negotiated."""
