"""Field type coercion for emitted records.

Types are declared as a comma-separated ``name:type`` list, e.g.
``"pid:integer,cpu_percent:float"``. Fields without a declaration stay
as parsed.
"""

from typing import Any, Callable

import structlog

from watch_process.config import ConfigurationError, WatchConfig
from watch_process.parser import ProcessRecord

log = structlog.get_logger()

DEFAULT_TYPES = WatchConfig().types

_TRUE_VALUES = {"true", "yes", "1", "on"}
_FALSE_VALUES = {"false", "no", "0", "off"}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    if isinstance(value, float):
        return int(value)
    return int(str(value).strip())


CONVERTERS: dict[str, Callable[[Any], Any]] = {
    "string": str,
    "integer": _to_int,
    "float": float,
    "bool": _to_bool,
}


def parse_types(declaration: str) -> dict[str, str]:
    """Parse a ``name:type,...`` declaration into a mapping.

    Raises:
        ConfigurationError: On a malformed entry or unknown type name
    """
    types: dict[str, str] = {}
    for entry in declaration.split(","):
        entry = entry.strip()
        if not entry:
            continue
        name, sep, type_name = entry.partition(":")
        name, type_name = name.strip(), type_name.strip()
        if not sep or not name or not type_name:
            raise ConfigurationError(f"Invalid type declaration: {entry!r}")
        if type_name not in CONVERTERS:
            raise ConfigurationError(
                f"Unknown type {type_name!r} for {name!r}. Valid types: {sorted(CONVERTERS)}"
            )
        types[name] = type_name
    return types


def coerce_record(record: ProcessRecord, types: dict[str, str]) -> ProcessRecord:
    """Return a copy of record with declared fields converted.

    A value that does not convert is kept as-is.
    """
    result = dict(record)
    for name, type_name in types.items():
        if name not in result or result[name] is None:
            continue
        try:
            result[name] = CONVERTERS[type_name](result[name])
        except (TypeError, ValueError):
            log.debug("field_coercion_failed", field=name, type=type_name, value=result[name])
    return result
