import json
import logging
import os
from typing import Any, Mapping, Optional

from infrastructure.lib.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_MISSING = object()


class AppConfig:
    """
    Settings shared by every stack.

    Wraps the nested ``config.json`` document and the process environment.
    Values are read through dotted paths such as ``ecs.clusterName`` and are
    returned verbatim.
    """

    def __init__(self, data: Mapping[str, Any],
                 environ: Optional[Mapping[str, str]] = None) -> None:
        self.data = data
        self.environ = os.environ if environ is None else environ

    @classmethod
    def load(cls, path: str = "config.json",
             environ: Optional[Mapping[str, str]] = None) -> "AppConfig":
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}", config_key=path)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Configuration file {path} is not valid JSON: {e}", config_key=path)

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {path} must hold a JSON object", config_key=path)

        logger.info("Loaded configuration from %s (sections: %s)", path, ", ".join(sorted(data)))
        return cls(data, environ)

    def get(self, key: str, default: Any = _MISSING) -> Any:
        node: Any = self.data
        for part in key.split("."):
            if not isinstance(node, Mapping) or part not in node:
                if default is not _MISSING:
                    return default
                raise ConfigurationError(f"Missing required configuration key: {key}", config_key=key)
            node = node[part]
        return node

    def require_env(self, name: str) -> str:
        value = self.environ.get(name)
        if not value:
            raise ConfigurationError(f"Environment variable {name} must be set", config_key=name)
        return value

    def env_or(self, name: str, key: str) -> str:
        """Return environment variable ``name``, falling back to configuration ``key``."""
        value = self.environ.get(name)
        if value:
            return value

        value = self.get(key, None)
        if value in (None, ""):
            raise ConfigurationError(
                f"Either environment variable {name} or configuration key {key} must be set",
                config_key=name,
            )
        logger.debug("%s not set, using configuration key %s", name, key)
        return value

    @property
    def env_name(self) -> str:
        return self.get("global.env")
