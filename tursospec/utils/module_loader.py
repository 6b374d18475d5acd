"""Engine module resolution."""

import importlib
from types import ModuleType
from typing import TYPE_CHECKING, Any, Final, Union

from tursospec.exceptions import ImproperConfigurationError

if TYPE_CHECKING:
    from tursospec.typing import EngineModule

__all__ = ("DEFAULT_ENGINE_MODULE", "import_string", "load_engine_module")

DEFAULT_ENGINE_MODULE: Final[str] = "tursospec.adapters.turso.engine"


def import_string(dotted_path: str) -> "Any":
    """Dotted Path Import.

    Import a dotted module path and return the attribute/class designated by the
    last name in the path. Raise ImportError if the import failed.

    Args:
        dotted_path: The path of the module to import.

    Raises:
        ImportError: Could not import the module.

    Returns:
        object: The imported object.
    """
    try:
        parts = dotted_path.split(".")
        for i in range(len(parts), 0, -1):
            module_path = ".".join(parts[:i])
            try:
                module = importlib.import_module(module_path)
                break
            except ModuleNotFoundError:
                continue
        else:
            msg = f"{dotted_path} doesn't look like a module path"
            raise ImportError(msg)
        obj: Any = module
        for attr in parts[i:]:
            try:
                obj = getattr(obj, attr)
            except AttributeError as e:
                msg = f"Module '{module.__name__}' has no attribute '{attr}' in '{dotted_path}'"
                raise ImportError(msg) from e
        return obj
    except Exception as e:
        msg = f"Could not import '{dotted_path}': {e}"
        raise ImportError(msg) from e


def load_engine_module(engine_module: "Union[str, ModuleType, EngineModule, None]" = None) -> "EngineModule":
    """Resolve the engine module a configuration will connect through.

    Called once by the owning configuration; the result is kept on that
    configuration rather than in a process-wide cache.

    Args:
        engine_module: A dotted path, an already imported module, any object
            exposing an async ``connect(target, **kwargs)``, or None for the
            bundled aiosqlite engine.

    Raises:
        ImproperConfigurationError: The module cannot be imported or has no ``connect``.

    Returns:
        The resolved engine module.
    """
    target = DEFAULT_ENGINE_MODULE if engine_module is None else engine_module
    if isinstance(target, str):
        try:
            target = import_string(target)
        except ImportError as e:
            msg = f"Engine module {engine_module!r} could not be imported"
            raise ImproperConfigurationError(msg) from e
    if not callable(getattr(target, "connect", None)):
        msg = f"Engine module {target!r} does not provide a connect() callable"
        raise ImproperConfigurationError(msg)
    return target  # type: ignore[return-value]
