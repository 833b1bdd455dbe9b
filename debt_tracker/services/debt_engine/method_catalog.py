"""
Method Catalog

Immutable selector -> MethodSpec lookup, built once and injected into
discovery and the amount resolver.
"""

from types import MappingProxyType
from typing import FrozenSet, Iterable, List, Mapping, Optional, Tuple

from ...config.lending_config import DEFAULT_METHOD_SPECS
from .models import DeltaSign, MethodSpec

WORD_HEX_LENGTH = 64
SELECTOR_HEX_LENGTH = 10  # "0x" + 8 hex chars


def selector_of(input_data) -> Optional[str]:
    """Extract the lowercase 0x-prefixed 4-byte selector from call data."""
    if input_data is None:
        return None
    if isinstance(input_data, (bytes, bytearray)):
        input_data = "0x" + bytes(input_data).hex()
    input_data = str(input_data)
    if not input_data.startswith("0x"):
        input_data = "0x" + input_data
    if len(input_data) < SELECTOR_HEX_LENGTH:
        return None
    return input_data[:SELECTOR_HEX_LENGTH].lower()


def split_words(input_data: str) -> List[str]:
    """Split the argument section of call data into 32-byte hex words."""
    data = input_data[2:] if input_data.startswith("0x") else input_data
    args = data[SELECTOR_HEX_LENGTH - 2:]
    return [args[i:i + WORD_HEX_LENGTH] for i in range(0, len(args), WORD_HEX_LENGTH)]


def decode_word(input_data: str, index: int) -> Optional[int]:
    """Unsigned integer at word `index`, or None if the data is too short."""
    if not input_data or index < 0:
        return None
    words = split_words(input_data)
    if index >= len(words) or len(words[index]) != WORD_HEX_LENGTH:
        return None
    try:
        return int(words[index], 16)
    except ValueError:
        return None


class MethodCatalog:
    """Read-only mapping of tracked selectors to their decode rules."""

    def __init__(self, specs: Iterable[MethodSpec]):
        table = {}
        for spec in specs:
            selector = spec.selector.lower()
            if selector in table:
                raise ValueError(f"Duplicate selector in method catalog: {selector}")
            table[selector] = spec
        self._specs: Mapping[str, MethodSpec] = MappingProxyType(table)

    @classmethod
    def from_config(cls, entries: Iterable[Tuple] = DEFAULT_METHOD_SPECS) -> "MethodCatalog":
        """Build the catalog from (selector, name, amount_field, sign[, scale]) tuples."""
        specs = []
        for entry in entries:
            selector, name, amount_field, sign = entry[:4]
            scale = entry[4] if len(entry) > 4 else 1
            specs.append(MethodSpec(
                selector=selector.lower(),
                name=name,
                amount_field=int(amount_field),
                sign=DeltaSign(sign),
                scale=int(scale),
            ))
        return cls(specs)

    def lookup(self, selector: Optional[str]) -> Optional[MethodSpec]:
        if not selector:
            return None
        return self._specs.get(str(selector).lower())

    def lookup_input(self, input_data) -> Optional[MethodSpec]:
        return self.lookup(selector_of(input_data))

    @property
    def selectors(self) -> FrozenSet[str]:
        return frozenset(self._specs)

    def __contains__(self, selector) -> bool:
        return self.lookup(selector) is not None

    def __len__(self) -> int:
        return len(self._specs)
