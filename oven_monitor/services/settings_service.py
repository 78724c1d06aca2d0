"""SettingsService: operator settings merged with defaults and kept durable."""

from typing import Any, Callable, Dict, List, Optional

import structlog
from pydantic import ValidationError

from ..models import LoggingSpec, OperatorSettings, OvenId, merge_settings
from .state_store import KeyValueStore


logger = structlog.get_logger(__name__)

SETTINGS_KEY = "settings"

SettingsListener = Callable[[OperatorSettings], None]


class SettingsService:
    """Current operator settings.

    Stored settings are merged over the configured defaults, so a partial or
    older stored payload still yields a complete OperatorSettings.
    """

    def __init__(self, state_store: KeyValueStore, defaults: Optional[OperatorSettings] = None):
        self.state_store = state_store
        self.defaults = defaults or OperatorSettings()
        self._listeners: List[SettingsListener] = []
        self._settings = self._load()

    def _load(self) -> OperatorSettings:
        stored = self.state_store.get(SETTINGS_KEY)
        if stored is None:
            return self.defaults.model_copy(deep=True)

        try:
            return merge_settings(self.defaults, stored)
        except ValidationError as e:
            logger.warning("Stored settings are invalid, using defaults", error=str(e))
            return self.defaults.model_copy(deep=True)

    def get(self) -> OperatorSettings:
        return self._settings

    def logging_for(self, oven_id: OvenId) -> LoggingSpec:
        return self._settings.logging_for(oven_id)

    def add_listener(self, listener: SettingsListener) -> None:
        self._listeners.append(listener)

    def save(self, patch: Optional[Dict[str, Any]]) -> OperatorSettings:
        """Merge ``patch`` into the current settings, persist and notify.

        Raises pydantic.ValidationError for an invalid patch and
        PersistenceError when the settings cannot be written; in both cases
        the current settings are unchanged.
        """
        merged = merge_settings(self._settings, patch)
        self.state_store.set(SETTINGS_KEY, merged.export_dict())
        self._settings = merged

        logger.info("Settings saved",
                    logging={oven_id.value: spec.model_dump(mode='json')
                             for oven_id, spec in merged.logging.items()})

        for listener in list(self._listeners):
            listener(merged)

        return merged


__all__ = ["SettingsService", "SETTINGS_KEY"]
