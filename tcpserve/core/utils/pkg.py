import importlib
from typing import Any


def import_from_string(path: str) -> Any:
    """
    Resolve ``"package.module:attr"`` or ``"package.module.attr"`` to the
    named attribute.
    """
    module_name, sep, attr = path.partition(":")
    if not sep:
        module_name, _, attr = path.rpartition(".")

    if not module_name or not attr:
        raise ImportError(f"'{path}' is not of the form 'module:attribute'")

    module = importlib.import_module(module_name)

    obj: Any = module
    for part in attr.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError:
            raise ImportError(f"Module '{module_name}' has no attribute '{attr}'") from None
    return obj
