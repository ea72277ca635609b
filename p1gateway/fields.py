"""
Field Composition
Caller-declared, ordered sets of fields populated by one parse pass.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

from p1gateway.obis import ObisId
from p1gateway.result import ParseResult

ValueParser = Callable[[bytes, int, int], ParseResult]
ValueRenderer = Callable[[Any], bytes]
Visitor = Callable[["Field", Any, bool], None]


@dataclass(frozen=True)
class Field:
    """
    One identifier-tagged value extractor.

    ``parse`` receives the buffer and the value span ``[start, end)`` that
    follows the identifier. ``render`` produces the canonical value text
    (without the identifier) used when building telegrams.
    """
    name: str
    id: ObisId
    parse: ValueParser
    render: Optional[ValueRenderer] = None
    unit: str = ""


class ParsedData:
    """
    Aggregate of declared fields with one value slot and one present flag
    per field. Slots are allocated once; parsing only overwrites them.
    """

    def __init__(self, *fields: Field):
        names = set()
        ids = set()
        for field in fields:
            if field.name in names:
                raise ValueError(f"Duplicate field name: {field.name}")
            if field.id in ids:
                raise ValueError(f"Duplicate field id {field.id} ({field.name})")
            names.add(field.name)
            ids.add(field.id)

        self._fields: Tuple[Field, ...] = tuple(fields)
        self._index: Dict[str, int] = {f.name: i for i, f in enumerate(self._fields)}
        self._values = [None] * len(self._fields)
        self._present = [False] * len(self._fields)

    @property
    def fields(self) -> Tuple[Field, ...]:
        return self._fields

    def dispatch(self, obis_id: ObisId, buf: bytes, start: int, end: int) -> ParseResult:
        """
        Hand the value span to the first field declared with ``obis_id``.

        The field's result is returned as is. Without a matching field the
        result is NOT_MATCHED at ``start``.
        """
        for i, field in enumerate(self._fields):
            if field.id != obis_id:
                continue
            res = field.parse(buf, start, end)
            if res.matched:
                self._values[i] = res.value
                self._present[i] = True
            return res
        return ParseResult.not_matched(start)

    def visit(self, visitor: Visitor) -> None:
        """Call ``visitor(field, value, present)`` for every declared field."""
        for field, value, present in zip(self._fields, self._values, self._present):
            visitor(field, value, present)

    def reset(self) -> None:
        """Mark every field absent. Must happen before parsing another telegram."""
        for i in range(len(self._present)):
            self._present[i] = False
            self._values[i] = None

    def set(self, name: str, value: Any) -> None:
        """Populate a field directly, e.g. to build a telegram."""
        i = self._slot(name)
        self._values[i] = value
        self._present[i] = True

    def present(self, name: str) -> bool:
        return self._present[self._slot(name)]

    def get(self, name: str, default: Any = None) -> Any:
        i = self._slot(name)
        return self._values[i] if self._present[i] else default

    def __getitem__(self, name: str) -> Any:
        i = self._slot(name)
        if not self._present[i]:
            raise KeyError(f"Field not present: {name}")
        return self._values[i]

    def __contains__(self, name: str) -> bool:
        return name in self._index and self.present(name)

    def __len__(self):
        return len(self._fields)

    def __iter__(self) -> Iterator[Field]:
        return iter(self._fields)

    def as_dict(self) -> Dict[str, Any]:
        """Values of the present fields, in declaration order."""
        return {
            field.name: value
            for field, value, present in zip(self._fields, self._values, self._present)
            if present
        }

    def _slot(self, name: str) -> int:
        try:
            return self._index[name]
        except KeyError:
            raise KeyError(f"Unknown field: {name}") from None
