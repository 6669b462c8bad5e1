import json
from typing import Any

from sqlalchemy import Text, cast, type_coerce
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator, UserDefinedType

MAX_CUSTOM_PARAMS_BYTES = 64 * 1024


class CustomParameters:
    """
    Free-form event parameters.

    Holds either the decoded mapping or its JSON encoding and converts
    lazily, so the ingest path only encodes once (to measure the size) and
    reads never decode unless somebody asks for the values.
    """

    __slots__ = ("_data", "_encoded")

    def __init__(self, data: dict[str, Any] | None = None, encoded: str | None = None):
        self._data = data
        self._encoded = encoded
        if data is None and encoded is None:
            self._data = {}

    @classmethod
    def from_json(cls, encoded: str) -> "CustomParameters":
        return cls(encoded=encoded)

    @property
    def encoded(self) -> str:
        if self._encoded is None:
            self._encoded = json.dumps(self._data, separators=(",", ":"), ensure_ascii=False, default=str)
        return self._encoded

    @property
    def size(self) -> int:
        return len(self.encoded.encode("utf-8"))

    def to_dict(self) -> dict[str, Any]:
        if self._data is None:
            decoded = json.loads(self._encoded)
            self._data = decoded if isinstance(decoded, dict) else {}
        return self._data

    def __bool__(self) -> bool:
        return bool(self.to_dict())

    def __eq__(self, other) -> bool:
        if isinstance(other, CustomParameters):
            return self.to_dict() == other.to_dict()
        if isinstance(other, dict):
            return self.to_dict() == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"CustomParameters({self.encoded})"


class _JSONBText(UserDefinedType):
    """PostgreSQL JSONB column that travels to and from the driver as JSON text."""

    cache_ok = True

    def get_col_spec(self, **kw):
        return "JSONB"

    def bind_expression(self, bindvalue):
        return cast(bindvalue, JSONB)

    def column_expression(self, col):
        return type_coerce(cast(col, Text), col.type)


class CustomParametersType(TypeDecorator):
    """
    Column carrying a CustomParameters value as its JSON text.

    The driver never sees a dict: writes reuse the encoding made when the
    size was checked and reads hand back the undecoded text. JSONB on
    PostgreSQL, TEXT elsewhere.
    """

    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(_JSONBText())
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value, dialect):
        if value is None:
            return "{}"
        if not isinstance(value, CustomParameters):
            value = CustomParameters(dict(value))
        return value.encoded

    def process_result_value(self, value, dialect):
        if value is None:
            return CustomParameters()
        if isinstance(value, dict):
            return CustomParameters(value)
        return CustomParameters.from_json(value)
