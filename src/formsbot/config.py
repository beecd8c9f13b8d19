"""formsbot configuration loader."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class StoreConfig:
    """Where forms and cooldowns are persisted."""

    url: str = "sqlite:///.formsbot/forms.sqlite"
    # Only used by the Redis backend
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 2.0


@dataclass
class BotConfig:
    """Main configuration for formsbot."""

    store: StoreConfig = field(default_factory=StoreConfig)

    # Register commands in these guilds only (fast iteration while developing)
    guild_ids: list[int] = field(default_factory=list)

    log_level: str = "INFO"

    # Never read from YAML; see token_from_env
    discord_token: str | None = None

    @classmethod
    def load(cls, config_path: str = ".formsbot/config.yaml") -> "BotConfig":
        """Load config from YAML file.

        Args:
            config_path: Path to config file (relative or absolute)

        Returns:
            Loaded configuration, or defaults if the file does not exist
        """
        path = Path(config_path)
        if not path.exists():
            return cls(discord_token=cls.token_from_env())

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        store_data = data.get("store", {})
        discord_data = data.get("discord", {})
        logging_data = data.get("logging", {})

        return cls(
            store=StoreConfig(
                url=store_data.get("url", StoreConfig.url),
                socket_timeout=float(store_data.get("socket_timeout", StoreConfig.socket_timeout)),
                socket_connect_timeout=float(
                    store_data.get("socket_connect_timeout", StoreConfig.socket_connect_timeout)
                ),
            ),
            guild_ids=[int(g) for g in discord_data.get("guild_ids", [])],
            log_level=str(logging_data.get("level", "INFO")).upper(),
            discord_token=cls.token_from_env(),
        )

    @staticmethod
    def token_from_env() -> str | None:
        return os.environ.get("DISCORD_TOKEN")

    def store_kwargs(self) -> dict:
        """Extra keyword arguments for ``create_state_store``."""
        if self.store.url.startswith("sqlite:"):
            return {}
        return {
            "socket_timeout": self.store.socket_timeout,
            "socket_connect_timeout": self.store.socket_connect_timeout,
        }
