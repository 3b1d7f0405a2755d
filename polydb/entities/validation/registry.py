"""
Validator Registry - Named Validation Callables

✅ Declarative Callbacks:
Schemas may reference `custom`, `async_custom`, `compare` and `when.check`
callables by name. Names are resolved against a ValidatorRegistry at
validation time, which keeps schema declarations free of code.
"""

from typing import Any, Callable, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


class ValidatorNotFoundError(LookupError):
    """Raised when a schema references an unregistered validator name"""

    def __init__(self, name: str):
        super().__init__(f"No validator registered under '{name}'")
        self.name = name


class ValidatorRegistry:
    """Mapping of validator name to callable"""

    def __init__(self):
        self._validators: Dict[str, Callable[..., Any]] = {}

    def register(self, name: str, fn: Callable[..., Any], replace: bool = False):
        if name in self._validators and not replace:
            raise ValueError(f"Validator '{name}' is already registered")
        self._validators[name] = fn
        logger.debug(f"Registered validator '{name}'")

    def validator(self, name: Optional[str] = None):
        """
        Decorator registering a function under `name` (default: its own name).

            @registry.validator("strong_enough")
            def strong_enough(value, all_values):
                return len(value) > 8 or "too weak"
        """
        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.register(name or fn.__name__, fn)
            return fn
        return decorator

    def unregister(self, name: str):
        self._validators.pop(name, None)

    def resolve(self, ref: Any) -> Callable[..., Any]:
        """Return the callable for a name, or the reference itself if callable"""
        if callable(ref):
            return ref
        fn = self._validators.get(ref)
        if fn is None:
            raise ValidatorNotFoundError(ref)
        return fn

    def names(self) -> List[str]:
        return sorted(self._validators)

    def __contains__(self, name: str) -> bool:
        return name in self._validators


default_registry = ValidatorRegistry()


def validator(name: Optional[str] = None):
    """Register into the default registry"""
    return default_registry.validator(name)


# Export main components
__all__ = ["ValidatorRegistry", "ValidatorNotFoundError", "default_registry", "validator"]
