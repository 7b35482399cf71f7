"""Exceptions raised while building the stacks."""

from typing import Optional


class ConfigurationError(ValueError):
    """
    Raised when a required configuration value or environment variable is missing.

    Attributes:
        message: Human-readable error description
        config_key: The configuration key or environment variable at fault
    """

    def __init__(self, message: str, config_key: Optional[str] = None) -> None:
        self.message = message
        self.config_key = config_key
        super().__init__(self.message)


class BindingError(ValueError):
    """
    Raised when an imported export name has no single, earlier producer.

    Attributes:
        message: Human-readable error description
        export_name: The export name that failed to resolve
    """

    def __init__(self, message: str, export_name: Optional[str] = None) -> None:
        self.message = message
        self.export_name = export_name
        super().__init__(self.message)
