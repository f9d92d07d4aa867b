"""
Hot-reloadable configuration.

The store holds one immutable ConfigSnapshot at a time. Each cycle grabs
the current snapshot when it starts and keeps using it, so a reload only
affects cycles started afterwards.

Strategy configs are versioned by name: a reload that changes a strategy's
type, params or enabled flag bumps its version; an unchanged strategy keeps
its version. Opportunities record the version that produced them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

import structlog

from config.settings import Settings, load_settings
from edgefinder.errors import ConfigurationError
from edgefinder.models.schemas import StrategyConfig, frozen_mapping, utcnow

logger = structlog.get_logger()


@dataclass(frozen=True)
class ConfigSnapshot:
    version: int
    settings: Settings
    strategies: tuple[StrategyConfig, ...]
    loaded_at: datetime = field(default_factory=utcnow)

    def strategy(self, name: str) -> Optional[StrategyConfig]:
        for config in self.strategies:
            if config.name == name:
                return config
        return None


def version_strategies(
    settings: Settings,
    previous: tuple[StrategyConfig, ...] = (),
) -> tuple[StrategyConfig, ...]:
    """Build StrategyConfigs, bumping versions of the ones that changed."""
    prior = {c.name: c for c in previous}
    seen = set()
    configs = []
    for entry in settings.strategies:
        if entry.name in seen:
            raise ConfigurationError(f"duplicate strategy name '{entry.name}'")
        seen.add(entry.name)

        candidate = StrategyConfig(
            name=entry.name,
            type=entry.type,
            enabled=entry.enabled,
            params=frozen_mapping(entry.params),
        )
        old = prior.get(entry.name)
        if old is None:
            configs.append(candidate)
        elif old.same_definition(candidate):
            configs.append(old)
        else:
            configs.append(StrategyConfig(
                name=candidate.name,
                type=candidate.type,
                enabled=candidate.enabled,
                params=candidate.params,
                version=old.version + 1,
            ))
    return tuple(configs)


class ConfigStore:
    """Current configuration plus reload."""

    def __init__(
        self,
        loader: Callable[[], Settings] = load_settings,
        initial: Optional[Settings] = None,
    ):
        self._loader = loader
        settings = initial if initial is not None else loader()
        self._current = ConfigSnapshot(
            version=1,
            settings=settings,
            strategies=version_strategies(settings),
        )
        self.logger = logger.bind(component="config_store")

    @property
    def current(self) -> ConfigSnapshot:
        return self._current

    def apply(self, settings: Settings) -> ConfigSnapshot:
        """Install new settings as the next snapshot."""
        previous = self._current
        snapshot = ConfigSnapshot(
            version=previous.version + 1,
            settings=settings,
            strategies=version_strategies(settings, previous.strategies),
        )
        self._current = snapshot

        old_versions = {c.name: c.version for c in previous.strategies}
        changed = [c.name for c in snapshot.strategies if old_versions.get(c.name) != c.version]
        self.logger.info(
            "Configuration reloaded",
            version=snapshot.version,
            strategies_changed=changed,
        )
        return snapshot

    def reload(self) -> ConfigSnapshot:
        """
        Re-read configuration from its source.

        Raises:
            ConfigurationError: the new configuration is invalid; the
                current snapshot stays in force
        """
        try:
            settings = self._loader()
        except (OSError, ValueError) as e:
            self.logger.error("Configuration reload failed", error=str(e))
            raise ConfigurationError(f"reload failed: {e}") from e
        return self.apply(settings)
