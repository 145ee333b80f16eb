"""Batch Loader: batch documents (JSON or YAML) -> operation descriptors + options."""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from trlo.domain.errors import ValidationError
from trlo.domain.models.batch import BatchOptions

logger = logging.getLogger(__name__)

MAX_CONCURRENCY = 32

# Option name -> accepted document keys.
_OPTION_KEYS = {
    "concurrency": ("concurrency",),
    "continue_on_error": ("continueOnError", "continue_on_error"),
    "dry_run": ("dryRun", "dry_run"),
    "timeout_per_operation": ("timeoutPerOperation", "timeout_per_operation", "timeout"),
}
_METADATA_KEYS = {"name", "description", "version"}

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m)?\s*$", re.IGNORECASE)
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0}


def load_batch_text(text: str, source: str = "<stdin>") -> Any:
    """Parses a batch document, trying JSON first and YAML second.

    Raises:
        ValidationError: If the text is empty or neither valid JSON nor YAML.
    """
    if not text or not text.strip():
        raise ValidationError(f"batch document {source} is empty", field="operations")
    try:
        return json.loads(text)
    except json.JSONDecodeError as json_error:
        logger.debug(f"{source} is not JSON ({json_error}); trying YAML")
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValidationError(f"could not parse {source} as JSON or YAML: {e}", field="operations") from e


def load_batch_file(path: Union[str, Path]) -> Any:
    """Reads and parses a batch document from disk."""
    file_path = Path(path).expanduser()
    try:
        text = file_path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ValidationError(f"batch file not found: {file_path}", field="path") from e
    except OSError as e:
        raise ValidationError(f"cannot read batch file {file_path}: {e}", field="path") from e
    logger.info(f"Loaded batch file {file_path} ({len(text)} bytes)")
    return load_batch_text(text, source=str(file_path))


def extract_operations(document: Any) -> List[Any]:
    """Returns the raw operation descriptors of a parsed document.

    Accepts a bare list of operations or a mapping with an `operations` list.
    """
    if isinstance(document, list):
        return document
    if isinstance(document, Mapping):
        if "operations" not in document:
            raise ValidationError("batch document has no 'operations' list", field="operations")
        operations = document["operations"]
        if operations is None:
            return []
        if not isinstance(operations, list):
            raise ValidationError("'operations' must be a list", field="operations")
        return operations
    raise ValidationError("batch document must be a list of operations or a mapping with 'operations'",
                          field="operations")


def _document_options(document: Any) -> Dict[str, Any]:
    if not isinstance(document, Mapping):
        return {}
    known = {"operations", *_METADATA_KEYS}
    found: Dict[str, Any] = {}
    for option, keys in _OPTION_KEYS.items():
        known.update(keys)
        for key in keys:
            if key in document:
                found[option] = document[key]
                break
    unknown = sorted(set(document) - known)
    if unknown:
        raise ValidationError(f"unknown batch option(s): {', '.join(map(str, unknown))}", field=str(unknown[0]))
    return found


def parse_duration(value: Any, field: str = "timeoutPerOperation") -> Optional[float]:
    """Parses a duration into seconds.

    Numbers are seconds; strings may carry an `ms`, `s` or `m` suffix.
    `None`, `0`, "none" and "off" disable the timeout.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"invalid duration {value!r}", field=field)
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        if value.strip().lower() in ("none", "off", ""):
            return None
        match = _DURATION_PATTERN.match(value)
        if not match:
            raise ValidationError(f"invalid duration {value!r} (expected e.g. 30, 500ms, 10s, 2m)", field=field)
        seconds = float(match.group(1)) * _DURATION_UNITS[(match.group(2) or "s").lower()]
    else:
        raise ValidationError(f"invalid duration {value!r}", field=field)
    if seconds < 0:
        raise ValidationError("duration must not be negative", field=field)
    return seconds or None


def _parse_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "yes", "1", "on"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "no", "0", "off"):
        return False
    raise ValidationError(f"expected a boolean, got {value!r}", field=field)


def _parse_concurrency(value: Any, max_concurrency: int) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"concurrency must be an integer, got {value!r}", field="concurrency")
    try:
        concurrency = int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"concurrency must be an integer, got {value!r}", field="concurrency") from e
    if concurrency < 1 or concurrency > max_concurrency:
        raise ValidationError(f"concurrency must be between 1 and {max_concurrency}, got {concurrency}",
                              field="concurrency")
    return concurrency


def build_options(
    document: Any,
    overrides: Optional[Mapping[str, Any]] = None,
    defaults: Optional[BatchOptions] = None,
    max_concurrency: int = MAX_CONCURRENCY,
) -> BatchOptions:
    """Merges batch options: CLI overrides > document > configured defaults.

    Args:
        document: The parsed batch document.
        overrides: Option values given on the command line; None means unset.
        defaults: Defaults from configuration.
        max_concurrency: Upper bound accepted for `concurrency`.

    Raises:
        ValidationError: If any option value is invalid.
    """
    defaults = defaults or BatchOptions()
    merged: Dict[str, Any] = {
        "concurrency": defaults.concurrency,
        "continue_on_error": defaults.continue_on_error,
        "dry_run": defaults.dry_run,
        "timeout_per_operation": defaults.timeout_per_operation,
    }
    merged.update(_document_options(document))
    for key, value in (overrides or {}).items():
        if key not in merged:
            raise ValidationError(f"unknown option '{key}'", field=key)
        if value is not None:
            merged[key] = value

    return BatchOptions(
        concurrency=_parse_concurrency(merged["concurrency"], max_concurrency),
        continue_on_error=_parse_bool(merged["continue_on_error"], "continueOnError"),
        dry_run=_parse_bool(merged["dry_run"], "dryRun"),
        timeout_per_operation=parse_duration(merged["timeout_per_operation"]),
    )
