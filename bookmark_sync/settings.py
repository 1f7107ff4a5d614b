"""Persisted settings with change notifications."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from pydantic import ValidationError

from .models import Settings

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Mapping

LOGGER = logging.getLogger(__name__)

SETTINGS_KEYS: tuple[str, ...] = ("backendUrl", "apiKey", "autoSync", "extraHeaders")


class ConfigurationError(RuntimeError):
    """Raised when the settings do not allow an operation (e.g. no backend URL)."""


class SettingsStore(Protocol):
    """Opaque key-value storage behind the gateway."""

    def load(self) -> dict[str, object]: ...

    def save(self, values: Mapping[str, object]) -> None: ...


class InMemorySettingsStore:
    """Settings kept in process memory."""

    def __init__(self, initial: Mapping[str, object] | None = None) -> None:
        self._values: dict[str, object] = dict(initial or {})
        self._lock = threading.Lock()

    def load(self) -> dict[str, object]:
        with self._lock:
            return json.loads(json.dumps(self._values))

    def save(self, values: Mapping[str, object]) -> None:
        with self._lock:
            self._values.update(values)


class JsonFileSettingsStore:
    """Settings persisted as a JSON object in a single file."""

    def __init__(self, path: Path) -> None:
        self._path = path.expanduser()
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, object]:
        with self._lock:
            return self._read()

    def save(self, values: Mapping[str, object]) -> None:
        with self._lock:
            merged = self._read()
            merged.update(values)
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".settings-")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(merged, fh, indent=2, ensure_ascii=False)
            Path(tmp_name).replace(self._path)
            LOGGER.debug("Wrote settings to %s", self._path)

    def _read(self) -> dict[str, object]:
        if not self._path.exists():
            return {}
        raw: object = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        if not isinstance(raw, dict):
            msg = f"Settings file {self._path} does not contain a JSON object"
            raise ConfigurationError(msg)
        return raw


@dataclass(slots=True, frozen=True)
class SettingsChanged:
    """Notification emitted after every successful write."""

    settings: Settings
    changed_keys: frozenset[str]


class SettingsGateway:
    """Read/write access to the persisted settings.

    ``read`` never caches: every call returns the latest persisted snapshot, so
    a long-running pass always sees edits made since it was scheduled.
    """

    def __init__(self, store: SettingsStore) -> None:
        self._store = store
        self._listeners: list[Callable[[SettingsChanged], None]] = []
        self._listeners_lock = threading.Lock()
        self._last_seen: dict[str, object] | None = None
        self._seen_lock = threading.Lock()

    def read(self) -> Settings:
        """Return the current settings snapshot.

        Raises ``ConfigurationError`` when the persisted values are invalid.
        """
        raw = self._store.load()
        try:
            return Settings.model_validate({key: raw.get(key) for key in SETTINGS_KEYS})
        except ValidationError as exc:
            msg = f"Stored settings are invalid: {exc}"
            raise ConfigurationError(msg) from exc

    def write(self, changes: Mapping[str, object]) -> Settings:
        """Persist the given keys and notify every subscriber.

        Keys may be given under their persisted names (``autoSync``) or their
        field names (``auto_sync``). The merged snapshot is validated before
        anything is stored.
        """
        current = self._current_storage()
        merged = Settings.model_validate({**current, **_to_storage_keys(changes)})
        stored = merged.to_storage()
        changed_keys = frozenset(
            key for key in SETTINGS_KEYS if stored[key] != current[key]
        )
        self._store.save({key: stored[key] for key in SETTINGS_KEYS})
        with self._seen_lock:
            self._last_seen = stored
        LOGGER.info(
            "Settings saved (changed: %s)", ", ".join(sorted(changed_keys)) or "none",
        )
        self._notify(SettingsChanged(settings=merged, changed_keys=changed_keys))
        return merged

    def poll(self) -> SettingsChanged | None:
        """Notify subscribers of edits another writer made since the last look.

        Long-running processes call this periodically, since settings are
        usually changed by a separate ``config set`` invocation. The first call
        only records the baseline. Returns the emitted event, if any.
        """
        settings = self.read()
        stored = settings.to_storage()
        with self._seen_lock:
            previous, self._last_seen = self._last_seen, stored
        if previous is None:
            return None
        changed_keys = frozenset(key for key in SETTINGS_KEYS if stored[key] != previous[key])
        if not changed_keys:
            return None
        LOGGER.info("Settings changed externally: %s", ", ".join(sorted(changed_keys)))
        event = SettingsChanged(settings=settings, changed_keys=changed_keys)
        self._notify(event)
        return event

    def _current_storage(self) -> dict[str, object]:
        # An invalid stored snapshot must still be repairable through write().
        try:
            return self.read().to_storage()
        except ConfigurationError:
            raw = self._store.load()
            return {key: raw.get(key) for key in SETTINGS_KEYS}

    def subscribe(self, listener: Callable[[SettingsChanged], None]) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        with self._listeners_lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, event: SettingsChanged) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(event)


def _to_storage_keys(changes: Mapping[str, object]) -> dict[str, object]:
    aliases = {name: info.alias or name for name, info in Settings.model_fields.items()}
    converted: dict[str, object] = {}
    for key, value in changes.items():
        storage_key = aliases.get(key, key)
        if storage_key not in SETTINGS_KEYS:
            msg = f"Unknown setting: {key}"
            raise ConfigurationError(msg)
        converted[storage_key] = value
    return converted
