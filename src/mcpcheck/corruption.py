"""Message corruption strategies used by network chaos.

Every strategy takes a decoded JSON value and a ``SeededRandom`` and returns
a corrupted value. Strategies never raise and never mutate their input.
Text-level strategies re-parse their result: if it is still valid JSON the
decoded value is returned, otherwise a ``RawPayload`` carrying the broken
text. Degenerate values (``{}``, ``[]``, ``""``) come back unchanged.
"""

from __future__ import annotations

import copy
import json
import math
import sys
from collections.abc import Callable
from typing import Any

from mcpcheck.messages import RawPayload, reparse
from mcpcheck.prng import SeededRandom

Strategy = Callable[[Any, SeededRandom], Any]


def _is_degenerate(value: Any) -> bool:
    return isinstance(value, (dict, list, str)) and len(value) == 0


def _as_text(value: Any) -> str:
    if isinstance(value, RawPayload):
        return value.text
    return json.dumps(value, ensure_ascii=False, default=str)


def _random_char(rng: SeededRandom) -> str:
    return chr(rng.next_int(32, 127))


def corrupt_bytes(message: Any, rng: SeededRandom) -> Any:
    """Replace, insert, delete or duplicate 1-3 characters of the wire text."""
    if message is None or _is_degenerate(message):
        return message
    chars = list(_as_text(message))
    for _ in range(rng.next_int(1, 4)):
        if not chars:
            break
        index = rng.next_int(0, len(chars))
        match rng.next_int(0, 4):
            case 0:
                chars[index] = _random_char(rng)
            case 1:
                chars.insert(index, _random_char(rng))
            case 2:
                del chars[index]
            case _:
                chars.insert(index, chars[index])
    return reparse("".join(chars))


def _objects(node: Any) -> list[dict[str, Any]]:
    """Every non-empty object in the tree, depth-first, root first."""
    found: list[dict[str, Any]] = []
    if isinstance(node, dict):
        if node:
            found.append(node)
        children = node.values()
    elif isinstance(node, list):
        children = node
    else:
        return found
    for child in children:
        found.extend(_objects(child))
    return found


def corrupt_structure(message: Any, rng: SeededRandom) -> Any:
    """Delete, rename, swap or wrap one key of one object in the message."""
    if not isinstance(message, dict) or not message:
        return message
    result = copy.deepcopy(message)
    candidates = _objects(result)
    target = candidates[rng.next_int(0, len(candidates))]
    keys = list(target)
    key = keys[rng.next_int(0, len(keys))]

    match rng.next_int(0, 4):
        case 0:
            del target[key]
        case 1:
            target[f"{key}_{rng.next_int(1000, 10000)}"] = target.pop(key)
        case 2 if len(keys) > 1:
            other = keys[(keys.index(key) + 1) % len(keys)]
            target[key], target[other] = target[other], target[key]
        case _:
            target[key] = {"_chaos_wrapped": target[key]}
    return result


def _mutate_value(value: Any, rng: SeededRandom) -> Any:
    if value is None:
        return {}
    if isinstance(value, bool):
        return not value
    if isinstance(value, (int, float)):
        match rng.next_int(0, 5):
            case 0:
                return -value if value else -1
            case 1:
                return value * 1_000_000_000 if value else sys.maxsize
            case 2:
                return math.inf
            case 3:
                return -math.inf
            case _:
                return math.nan
    if isinstance(value, str):
        if not value:
            return None
        index = rng.next_int(0, len(value))
        if rng.next_boolean(0.5):
            return value[:index]
        return value[:index] + _random_char(rng) + value[index + 1 :]
    if isinstance(value, dict) and not value:
        return None
    return value


def _slots(node: Any) -> list[tuple[Any, Any]]:
    """(container, key) for every leaf, depth-first."""
    slots: list[tuple[Any, Any]] = []
    items = node.items() if isinstance(node, dict) else enumerate(node)
    for key, child in items:
        if isinstance(child, (dict, list)) and child:
            slots.extend(_slots(child))
        elif not isinstance(child, list):
            slots.append((node, key))
    return slots


def corrupt_values(message: Any, rng: SeededRandom) -> Any:
    """Flip a boolean, push a number to an extreme, damage a string, or
    swap null and empty object."""
    if message is None or isinstance(message, RawPayload) or _is_degenerate(message):
        return message
    if not isinstance(message, (dict, list)):
        return _mutate_value(message, rng)
    result = copy.deepcopy(message)
    slots = _slots(result)
    if not slots:
        return result
    container, key = slots[rng.next_int(0, len(slots))]
    container[key] = _mutate_value(container[key], rng)
    return result


def truncate_payload(message: Any, rng: SeededRandom) -> Any:
    """Cut the wire text to 50-90% of its length."""
    if message is None or _is_degenerate(message):
        return message
    text = _as_text(message)
    if len(text) < 2:
        return message
    cut = math.floor(len(text) * rng.next_float(0.5, 0.9))
    return reparse(text[:cut])


STRATEGIES: tuple[Strategy, ...] = (
    corrupt_bytes,
    corrupt_structure,
    corrupt_values,
    truncate_payload,
)


def corrupt(message: Any, rng: SeededRandom) -> Any:
    """Apply one randomly chosen strategy."""
    strategy = STRATEGIES[rng.next_int(0, len(STRATEGIES))]
    return strategy(message, rng)
