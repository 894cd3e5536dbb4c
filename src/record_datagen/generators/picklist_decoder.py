"""
Dependent picklist decoder.

A dependent select option may carry a base64 validity bitmap ("validFor").
Bit i, read left to right across the decoded bytes, marks the option valid
under the i-th active option of the controlling field. Options without a
bitmap are valid under every controlling value. When a bitmap cannot be
decoded the decoder falls back to a permissive mapping and says so.
"""

import base64
import binascii
import hashlib
import json
import logging
import random
from datetime import datetime

from pydantic import BaseModel, Field

from ..shared.cache import LRUCache
from ..shared.exceptions import BitmapDecodeError
from ..shared.metrics import metrics_collector
from ..shared.models import Diagnostic, DiagnosticKind, FieldDescriptor, FieldType

logger = logging.getLogger(__name__)

BOOLEAN_CONTROLLING_VALUES = ["false", "true"]


class PicklistMapping(BaseModel):
    """Valid dependent values for each controlling value."""

    dependent_field: str
    controlling_field: str
    mapping: dict[str, list[str]] = Field(default_factory=dict)
    controlling_values: list[str] = Field(default_factory=list)
    fallback: bool = Field(False, description="Permissive mapping used after a decode failure")
    created: datetime = Field(default_factory=datetime.now)

    @property
    def total_combinations(self) -> int:
        return sum(len(values) for values in self.mapping.values())

    def valid_values(self, controlling_value: object) -> list[str]:
        """Dependent values allowed under `controlling_value`; empty when unknown."""
        if controlling_value is None:
            return []
        if isinstance(controlling_value, bool):
            key = "true" if controlling_value else "false"
        else:
            key = str(controlling_value)
        return list(self.mapping.get(key, []))

    def choose(self, controlling_value: object, rng: random.Random) -> str | None:
        """Pick one valid dependent value, or None when none is allowed."""
        values = self.valid_values(controlling_value)
        if not values:
            return None
        return rng.choice(values)


def base64_to_bits(payload: str) -> str:
    """
    Expand a base64 bitmap into a string of '0'/'1', eight bits per byte.

    Raises:
        BitmapDecodeError: When the payload is not valid base64
    """
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise BitmapDecodeError("invalid base64 payload", payload=payload, original_error=e) from e
    return "".join(format(byte, "08b") for byte in raw)


def controlling_values_of(controlling: FieldDescriptor) -> list[str]:
    """Positional controlling values: active options, or false/true for a checkbox."""
    if controlling.type is FieldType.BOOLEAN:
        return list(BOOLEAN_CONTROLLING_VALUES)
    return controlling.active_values


def decode_valid_for(dependent: FieldDescriptor, controlling: FieldDescriptor) -> dict[str, list[str]]:
    """
    Decode the validity bitmaps of `dependent` against `controlling`.

    Returns:
        Mapping of every controlling value to its valid dependent values, in
        dependent option order

    Raises:
        BitmapDecodeError: When either field lacks options or a bitmap is malformed
    """
    controlling_values = controlling_values_of(controlling)
    dependent_options = dependent.active_options

    if not dependent_options or not controlling_values:
        raise BitmapDecodeError("missing picklist values", field_name=dependent.name)

    mapping: dict[str, list[str]] = {value: [] for value in controlling_values}

    for option in dependent_options:
        if not option.valid_for:
            for value in controlling_values:
                mapping[value].append(option.value)
            continue

        try:
            bits = base64_to_bits(option.valid_for)
        except BitmapDecodeError as e:
            raise BitmapDecodeError(
                f"option '{option.value}' has an invalid bitmap",
                field_name=dependent.name,
                payload=option.valid_for,
                original_error=e.original_error,
            ) from e

        for index, value in enumerate(controlling_values):
            if index < len(bits) and bits[index] == "1":
                mapping[value].append(option.value)

    return mapping


def fallback_mapping(dependent: FieldDescriptor, controlling: FieldDescriptor) -> PicklistMapping:
    """Every active dependent value is valid under every controlling value."""
    controlling_values = controlling_values_of(controlling)
    dependent_values = dependent.active_values
    return PicklistMapping(
        dependent_field=dependent.name,
        controlling_field=controlling.name,
        mapping={value: list(dependent_values) for value in controlling_values},
        controlling_values=controlling_values,
        fallback=True,
    )


def encode_valid_for(positions: list[int], width: int) -> str:
    """
    Build a validity bitmap with the given bit positions set.

    Mainly useful for fixtures; the record store produces these bitmaps.
    """
    byte_count = max((width + 7) // 8, 1)
    raw = bytearray(byte_count)
    for position in positions:
        raw[position // 8] |= 0x80 >> (position % 8)
    return base64.b64encode(bytes(raw)).decode("ascii")


def _options_digest(field: FieldDescriptor) -> str:
    payload = json.dumps(
        [field.type.value, [(o.value, o.active, o.valid_for) for o in field.picklist_values]]
    )
    return hashlib.blake2b(payload.encode("utf-8"), digest_size=8).hexdigest()


class PicklistDecoder:
    """
    Decodes controlling/dependent picklist pairs with a bounded cache.

    One decoder belongs to one generation session. Recovered decode failures
    are kept as diagnostics for the caller to inspect.
    """

    def __init__(self, cache_size: int = 50):
        self._cache: LRUCache[tuple[str, str, str, str], PicklistMapping] = LRUCache(max_size=cache_size)
        self.diagnostics: list[Diagnostic] = []

    def decode(self, dependent: FieldDescriptor, controlling: FieldDescriptor) -> PicklistMapping:
        """
        Return the mapping for a dependent/controlling pair, decoding on a cache miss.

        Never raises; malformed metadata yields a fallback mapping plus a
        bitmap_decode_failure diagnostic.
        """
        key = (dependent.name, controlling.name, _options_digest(dependent), _options_digest(controlling))
        mapping, hit = self._cache.get_or_compute(key, lambda: self._build(dependent, controlling))
        if hit:
            logger.debug(f"Using cached picklist mapping {controlling.name} -> {dependent.name}")
        return mapping

    def clear(self) -> None:
        self._cache.clear()

    def cache_size(self) -> int:
        return len(self._cache)

    def _build(self, dependent: FieldDescriptor, controlling: FieldDescriptor) -> PicklistMapping:
        try:
            mapping = decode_valid_for(dependent, controlling)
        except BitmapDecodeError as e:
            logger.warning(f"Using permissive picklist mapping for {controlling.name} -> {dependent.name}: {e}")
            metrics_collector.record_picklist_fallback()
            self.diagnostics.append(
                Diagnostic(
                    kind=DiagnosticKind.BITMAP_DECODE_FAILURE,
                    message=str(e),
                    field=dependent.name,
                    details={"controlling_field": controlling.name},
                )
            )
            return fallback_mapping(dependent, controlling)

        result = PicklistMapping(
            dependent_field=dependent.name,
            controlling_field=controlling.name,
            mapping=mapping,
            controlling_values=list(mapping),
        )
        logger.debug(
            f"Decoded picklist mapping {controlling.name} -> {dependent.name}: "
            f"{len(result.controlling_values)} controlling values, {result.total_combinations} combinations"
        )
        return result
