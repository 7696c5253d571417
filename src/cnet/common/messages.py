"""
CNET protocol messages and their line-based wire encoding.

Wire format, one ``KEY:value`` line per field, joined by ``\\n``, no trailing newline::

    OPERATION:ADD          RESULT:7
    OPERAND1:3             STATUS:OK
    OPERAND2:4             MESSAGE:done
"""
from collections.abc import Mapping
from enum import Enum
import math
import re
from typing import Any, ClassVar, Dict, FrozenSet, List, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cnet.common.errors import MalformedMessageError, ValidationError


RecordT = TypeVar("RecordT", bound="LineRecord")

KEY_SEPARATOR = ":"
LINE_SEPARATOR = "\n"

# Plain ASCII decimal: optional sign, digits with optional fraction, optional exponent
DECIMAL_PATTERN = re.compile(r"[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")


class Operation(str, Enum):
    """Arithmetic operations understood by the server."""

    ADD = "ADD"
    SUB = "SUB"
    MUL = "MUL"
    DIV = "DIV"


class Status(str, Enum):
    """Outcome of a request as reported by the server."""

    OK = "OK"
    ERROR = "ERROR"


def is_number(text: str) -> bool:
    """
    Determine if a string represents a finite decimal number.

    Integers, negative numbers and decimals written with ASCII digits are accepted. Underscores,
    non-ASCII digits, padding, ``nan`` and ``inf`` are not, nor are values overflowing a float.

    :param str text: Candidate string

    :return: True if the string parses as a finite number, else False
    :rtype: bool
    """
    if not isinstance(text, str) or DECIMAL_PATTERN.fullmatch(text) is None:
        return False
    return math.isfinite(float(text))


class LineRecord(BaseModel):
    """
    Immutable message made of string fields, encoded as ``KEY:value`` lines.

    Subclasses only declare their schema:
        - the string fields, in wire order (the wire key is the field name upper-cased)
        - ``numeric_fields``: fields that must parse as finite numbers
        - ``allowed_values``: fields restricted to a closed set of values

    Validation runs on construction, so an instance is always valid. Rules are checked in a fixed
    order and the first violation is raised as ``ValidationError``:
        1. presence: every field given, as a non-empty single-line string without surrounding whitespace
        2. format: numeric fields parse as finite numbers
        3. membership: enumerated fields hold an allowed value
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    numeric_fields: ClassVar[Tuple[str, ...]] = ()
    allowed_values: ClassVar[Dict[str, FrozenSet[str]]] = {}

    def __init__(self, *args: Any, **data: Any) -> None:
        # Accept fields positionally, in wire order
        names: List[str] = list(type(self).model_fields)
        if len(args) > len(names):
            raise TypeError(f"{type(self).__name__} takes at most {len(names)} positional fields")
        for name, value in zip(names, args):
            if name in data:
                raise TypeError(f"{type(self).__name__} got multiple values for field {name!r}")
            data[name] = value
        super().__init__(**data)

    @model_validator(mode="before")
    @classmethod
    def _validate_raw_fields(cls, data: Any) -> Any:
        """Run the CNET rules on the raw input before pydantic coerces anything."""
        if not isinstance(data, Mapping):
            raise ValidationError(f"{cls.__name__} expects a mapping of fields, got {type(data).__name__}")

        unknown = sorted(set(data) - set(cls.model_fields))
        if unknown:
            raise ValidationError(f"{cls.__name__} has no field(s): {', '.join(unknown)}")

        # Enum members are stored as their plain string value
        values: Dict[str, Any] = {
            name: value.value if isinstance(value, Enum) else value for name, value in data.items()
        }
        cls._check(values)
        return values

    @classmethod
    def _check(cls, values: Mapping[str, Any]) -> None:
        """
        Check field values against the schema, raising on the first violated rule.

        :param Mapping values: Field name to value mapping

        :raises ValidationError: If a rule is violated
        """
        for name in cls.model_fields:
            value = values.get(name)
            if value is None:
                raise ValidationError(f"Invalid {cls.__name__}: field {name!r} is required")
            if not isinstance(value, str):
                raise ValidationError(
                    f"Invalid {cls.__name__}: field {name!r} must be a string, got {type(value).__name__}"
                )
            if not value.strip():
                raise ValidationError(f"Invalid {cls.__name__}: field {name!r} cannot be empty")
            # Values are trimmed when decoded and one line each on the wire
            if value != value.strip() or "\n" in value or "\r" in value:
                raise ValidationError(
                    f"Invalid {cls.__name__}: field {name!r} has surrounding whitespace or line breaks: {value!r}"
                )

        for name in cls.numeric_fields:
            if not is_number(values[name]):
                raise ValidationError(f"Invalid {cls.__name__}: {name} {values[name]!r} is not a number")

        for name, allowed in cls.allowed_values.items():
            if values[name] not in allowed:
                raise ValidationError(
                    f"Invalid {cls.__name__}: {name} {values[name]!r} is not one of {', '.join(sorted(allowed))}"
                )

    def validate_fields(self) -> None:
        """
        Re-run the field rules on this instance.

        Pure check with no side effects, returns None when the message is valid.

        :raises ValidationError: Describing the first violated rule
        """
        self._check({name: getattr(self, name) for name in type(self).model_fields})

    @classmethod
    def wire_keys(cls) -> List[str]:
        """Wire keys in the order they are encoded."""
        return [name.upper() for name in cls.model_fields]

    def encode(self) -> str:
        """
        Serialize the message to its canonical wire text.

        :return: ``KEY:value`` lines joined by newlines, without trailing newline
        :rtype: str
        """
        return LINE_SEPARATOR.join(
            f"{name.upper()}{KEY_SEPARATOR}{getattr(self, name)}" for name in type(self).model_fields
        )

    def __str__(self) -> str:
        return self.encode()

    @staticmethod
    def _extract_value(lines: List[str], key: str) -> str:
        """
        Return the value of the first line whose key is exactly ``key``.

        The key is the text before the first ``:``, so ``OPERAND`` never matches an ``OPERAND1`` line.

        :param List[str] lines: Wire text split into lines
        :param str key: Wire key to look up

        :return: Text after the first ``:``, stripped of surrounding whitespace
        :rtype: str
        :raises MalformedMessageError: If no line carries the key
        """
        for line in lines:
            head, separator, value = line.partition(KEY_SEPARATOR)
            if separator and head.strip() == key:
                return value.strip()
        raise MalformedMessageError(f"Key {key} not found in message")

    @classmethod
    def decode(cls: Type[RecordT], text: str) -> RecordT:
        """
        Build a message from wire text.

        :param str text: Wire text received from the peer

        :return: Validated message instance
        :raises MalformedMessageError: If the text is not a string or a required key is missing
        :raises ValidationError: If the extracted values violate a field rule
        """
        if not isinstance(text, str):
            raise MalformedMessageError(f"{cls.__name__} wire text must be str, got {type(text).__name__}")

        lines: List[str] = text.split(LINE_SEPARATOR)
        values: Dict[str, str] = {
            name: cls._extract_value(lines, name.upper()) for name in cls.model_fields
        }
        return cls(**values)


class Request(LineRecord):
    """Arithmetic operation sent to the server."""

    operation: str = Field(..., description="Operation keyword: ADD, SUB, MUL or DIV")
    operand1: str = Field(..., description="First operand, decimal number as a string")
    operand2: str = Field(..., description="Second operand, decimal number as a string")

    numeric_fields: ClassVar[Tuple[str, ...]] = ("operand1", "operand2")
    allowed_values: ClassVar[Dict[str, FrozenSet[str]]] = {
        "operation": frozenset(op.value for op in Operation),
    }

    def operands(self) -> Tuple[float, float]:
        """Both operands as floats."""
        return float(self.operand1), float(self.operand2)


class Response(LineRecord):
    """Server answer to a single request."""

    result: str = Field(..., description="Numeric result as a string")
    status: str = Field(..., description="OK or ERROR")
    message: str = Field(..., description="Human-readable description")

    allowed_values: ClassVar[Dict[str, FrozenSet[str]]] = {
        "status": frozenset(status.value for status in Status),
    }

    @classmethod
    def ok(cls, result: str, message: str = "Operation completed") -> "Response":
        """Successful response carrying ``result``."""
        return cls(result=result, status=Status.OK, message=message)

    @classmethod
    def error(cls, message: str, result: str = "0") -> "Response":
        """Failed response; ``result`` is a placeholder the client must ignore."""
        return cls(result=result, status=Status.ERROR, message=message)

    @property
    def succeeded(self) -> bool:
        return self.status == Status.OK.value
