"""Handler registry: one callback per classification key."""
from __future__ import annotations

import logging
from typing import Callable, Dict, Iterator, List, Mapping, Optional

from ..exceptions import ConfigError
from ..models.keys import Key, parse_key

logger = logging.getLogger(__name__)

Handler = Callable[..., object]


class HandlerRegistry:
    """Maps classification keys to handlers.

    Populated at configuration time and then frozen; a session never
    mutates its registry. Registering a key twice keeps the last callback.
    """

    def __init__(self, handlers: Optional[Mapping] = None):
        self._handlers: Dict[Key, Handler] = {}
        self._frozen = False
        for key, callback in (handlers or {}).items():
            self.register(key, callback)

    def register(self, key, callback: Handler) -> None:
        if self._frozen:
            raise ConfigError("Handler registry is frozen once a session is open")
        try:
            key = parse_key(key)
        except ValueError as e:
            raise ConfigError(f"Unknown classification key: {key!r}") from e
        if not callable(callback):
            raise ConfigError(f"Handler for {key.value!r} is not callable: {callback!r}")
        if key in self._handlers:
            logger.debug("Replacing handler for %s", key.value)
        self._handlers[key] = callback

    def resolve(self, key) -> Optional[Handler]:
        return self._handlers.get(parse_key(key))

    def freeze(self) -> "HandlerRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def keys(self) -> List[Key]:
        return sorted(self._handlers, key=lambda k: k.value)

    def __contains__(self, key) -> bool:
        return parse_key(key) in self._handlers

    def __iter__(self) -> Iterator[Key]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._handlers)
