"""
Faultline Field Omission

Deliberately removes or blanks fields of a JSON-like value to simulate
incomplete backend data.

Two modes:
- manual: delete an explicit list of dot-paths (``"result.user.email"``)
- random: pick fields with a seeded generator, bounded by ``max_omit_count``

The input value is never mutated; omission works on a deep copy.
"""

import copy
import logging
from typing import Any, List, Optional

from .random_source import RandomSource, make_random_source
from .types import FieldOmitPolicy, RandomOmitPolicy

logger = logging.getLogger("faultline.engine")


class _Undefined:
    """Marker for a field whose value was set to "undefined"."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return 'UNDEFINED'

    def __bool__(self) -> bool:
        return False

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


UNDEFINED = _Undefined()


def collect_paths(value: Any, depth_limit: int, prefix: str = '', depth: int = 0) -> List[str]:
    """
    Collect every field path of a value up to ``depth_limit``.

    Depth 0 is the top-level keys. Lists are descended into, with their
    indices as path parts. Paths come out in traversal order, parents
    before children.

    Args:
        value: Value to walk
        depth_limit: Number of levels to collect
        prefix: Path of ``value`` itself
        depth: Level of ``value``'s keys

    Returns:
        List of dot-paths
    """
    paths: List[str] = []

    if depth >= depth_limit:
        return paths
    if isinstance(value, dict):
        entries = [(str(key), child) for key, child in value.items()]
    elif isinstance(value, list):
        entries = [(str(index), child) for index, child in enumerate(value)]
    else:
        return paths

    for key, child in entries:
        path = f"{prefix}.{key}" if prefix else key
        paths.append(path)

        if isinstance(child, (dict, list)):
            paths.extend(collect_paths(child, depth_limit, path, depth + 1))

    return paths


def _step(container: Any, part: str) -> Any:
    """Child of a dict or list by path part, or None when absent."""
    if isinstance(container, dict):
        return container.get(part)
    if isinstance(container, list):
        try:
            index = int(part)
        except ValueError:
            return None
        if 0 <= index < len(container):
            return container[index]
    return None


def apply_omit(data: Any, path: str, mode: str) -> bool:
    """
    Omit one field in place.

    Missing parents and non-container intermediates are skipped silently.
    Deleting a list element leaves an UNDEFINED hole instead of shifting
    the following elements, so other collected paths stay valid.

    Args:
        data: Value to modify
        path: Dot-path of the field
        mode: delete, undefined or null

    Returns:
        True when a field was changed
    """
    parts = path.split('.')
    current = data

    for part in parts[:-1]:
        current = _step(current, part)
        if current is None or current is UNDEFINED:
            return False

    last = parts[-1]
    replacement = None if mode == 'null' else UNDEFINED

    if isinstance(current, dict):
        if last not in current:
            return False
        if mode == 'delete':
            del current[last]
        else:
            current[last] = replacement
        return True

    if isinstance(current, list):
        try:
            index = int(last)
        except ValueError:
            return False
        if not 0 <= index < len(current):
            return False
        current[index] = replacement
        return True

    return False


def fisher_yates_shuffle(items: List[Any], rng: RandomSource) -> List[Any]:
    """Shuffled copy of ``items`` driven by ``rng``."""
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = int(rng() * (i + 1))
        result[i], result[j] = result[j], result[i]
    return result


def _is_excluded(path: str, exclude_fields: List[str]) -> bool:
    return any(path == excluded or path.startswith(f"{excluded}.") for excluded in exclude_fields)


def omit_manual(data: Any, fields: List[str]) -> Any:
    """Delete each listed path from ``data`` in place."""
    for field_path in fields:
        apply_omit(data, field_path, 'delete')
    return data


def select_random_paths(data: Any, policy: RandomOmitPolicy, rng: RandomSource) -> List[str]:
    """
    Choose the paths random mode will omit.

    Protected paths (and everything under them) are dropped, the rest is
    shuffled, then each path gets one draw against ``probability`` until
    ``max_omit_count`` paths are chosen.
    """
    eligible = [
        path for path in collect_paths(data, policy.depth_limit)
        if not _is_excluded(path, policy.exclude_fields)
    ]

    chosen: List[str] = []
    for path in fisher_yates_shuffle(eligible, rng):
        if len(chosen) >= policy.max_omit_count:
            break
        if rng() * 100 < policy.probability:
            chosen.append(path)

    return chosen


def omit_random(data: Any, policy: RandomOmitPolicy, rng: Optional[RandomSource] = None) -> Any:
    """
    Omit randomly selected fields from ``data`` in place.

    Args:
        data: Value to modify
        policy: Random omission settings
        rng: Random source used when the policy has no seed

    Returns:
        The modified value
    """
    if policy.seed is not None:
        rng = make_random_source(policy.seed)
    elif rng is None:
        rng = make_random_source()

    chosen = select_random_paths(data, policy, rng)
    for path in chosen:
        apply_omit(data, path, policy.omit_mode)

    if chosen:
        logger.debug(f"Omitted {len(chosen)} field(s): {', '.join(chosen)}")
    return data


def omit_fields(value: Any, policy: FieldOmitPolicy, rng: Optional[RandomSource] = None) -> Any:
    """
    Return a copy of ``value`` with fields omitted according to ``policy``.

    A disabled policy returns ``value`` itself. A seeded random policy
    always yields the same output for the same input.

    Args:
        value: JSON-like value (dicts, lists, scalars)
        policy: Field omission policy
        rng: Random source for unseeded random mode

    Returns:
        New value; ``value`` is left untouched
    """
    if not policy.enabled:
        return value

    cloned = copy.deepcopy(value)

    if policy.mode == 'manual':
        return omit_manual(cloned, policy.fields)

    return omit_random(cloned, policy.random, rng)


def to_jsonable(value: Any) -> Any:
    """
    Render a value for JSON encoding.

    Keys holding UNDEFINED are dropped and UNDEFINED list entries become
    None, the way a JavaScript client serializes ``undefined``.
    """
    if isinstance(value, dict):
        return {key: to_jsonable(child) for key, child in value.items() if child is not UNDEFINED}
    if isinstance(value, (list, tuple)):
        return [None if child is UNDEFINED else to_jsonable(child) for child in value]
    if value is UNDEFINED:
        return None
    return value
