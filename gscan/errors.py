class ScanError(Exception):
    """Base class for everything gscan raises on purpose."""


class InvalidTarget(ScanError, ValueError):
    """Target string is not an address, CIDR block or range of the requested family."""


class InvalidPortRange(ScanError, ValueError):
    """Port bounds outside 1-65535 or start above end."""


class ConfigError(ScanError):
    """Bad config file or scan settings."""
