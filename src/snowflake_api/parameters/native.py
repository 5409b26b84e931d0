import datetime
import decimal
import math
from enum import Enum, auto
from typing import Any, Dict, Optional, Sequence, Union

from snowflake_api.exc import InvalidParameterError

_EPOCH_DATE = datetime.date(1970, 1, 1)
_EPOCH_UTC = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)

# TIMESTAMP_TZ bindings carry the UTC offset in minutes shifted by a full day
_TZ_OFFSET_BIAS_MINUTES = 1440


class SnowflakeSupportedType(Enum):
    """Enumerate every binding type the warehouse accepts for positional parameters:

    https://docs.snowflake.com/en/sql-reference/data-types
    """

    ANY = auto()
    BINARY = auto()
    BOOLEAN = auto()
    DATE = auto()
    FIXED = auto()
    REAL = auto()
    TEXT = auto()
    TIME = auto()
    TIMESTAMP_LTZ = auto()
    TIMESTAMP_NTZ = auto()
    TIMESTAMP_TZ = auto()


TAllowedParameterValue = Union[
    str,
    int,
    float,
    bytes,
    bytearray,
    datetime.datetime,
    datetime.date,
    datetime.time,
    bool,
    decimal.Decimal,
    None,
]


def _epoch_nanoseconds(value: datetime.datetime) -> int:
    """Nanoseconds since the epoch. Naive values are read as wall-clock UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    delta = value - _EPOCH_UTC
    return (
        delta.days * 86_400 + delta.seconds
    ) * 1_000_000_000 + delta.microseconds * 1_000


def _type_error(param: "SnowflakeParameterBase", expected: str):
    python_type = type(param.value).__name__
    return InvalidParameterError(
        "{} expects {}, got {}".format(
            param.__class__.__name__, expected, python_type
        ),
        {"binding-type": param.BINDING_TYPE.name, "python-type": python_type},
    )


class SnowflakeParameterBase:
    """Parent class for FixedParameter, TextParameter etc..

    Each instance validates its Python value on construction and knows how to render
    it as a positional binding of the query request:

    ``{"type": "FIXED", "value": "42"}``

    Values are always sent as strings; the server parses them according to the
    binding type. No conversion beyond the one documented per class takes place, so
    a value of the wrong Python type raises InvalidParameterError instead of being
    coerced.

    Interface should be:

    from snowflake_api.parameters import FixedParameter
    param = FixedParameter(42)
    connection.execute("SELECT ?", [param])
    """

    BINDING_TYPE: SnowflakeSupportedType
    value: Any

    def __init__(self, value: Any):
        self.value = value
        self._validate()

    def _validate(self) -> None:
        pass

    def _binding_value(self) -> Optional[str]:
        return str(self.value)

    def as_binding(self) -> Dict[str, Optional[str]]:
        """Returns the dictionary placed under the parameter's position in ``bindings``."""
        return {"type": self.BINDING_TYPE.name, "value": self._binding_value()}

    def __str__(self):
        return f"{self.__class__.__name__}(value={self.value!r})"

    def __repr__(self):
        return self.__str__()

    def __eq__(self, other):
        return isinstance(other, self.__class__) and self.__dict__ == other.__dict__


class FixedParameter(SnowflakeParameterBase):
    """Wrap a Python `int` or `decimal.Decimal` that will be bound as a NUMBER.

    `bool` is rejected even though it is a subclass of `int`; use BooleanParameter.
    Decimals must be finite and are rendered in positional notation, never in
    scientific notation, so ``Decimal("1E+3")`` is sent as ``"1000"``.
    """

    BINDING_TYPE = SnowflakeSupportedType.FIXED

    def _validate(self):
        if type(self.value) is int:
            return
        if isinstance(self.value, decimal.Decimal):
            if not self.value.is_finite():
                raise InvalidParameterError(
                    "FixedParameter cannot bind non-finite {}".format(self.value),
                    {"binding-type": self.BINDING_TYPE.name},
                )
            return
        raise _type_error(self, "int or decimal.Decimal")

    def _binding_value(self):
        if isinstance(self.value, decimal.Decimal):
            return format(self.value, "f")
        return str(self.value)


class RealParameter(SnowflakeParameterBase):
    """Wrap a Python `float` that will be bound as a FLOAT."""

    BINDING_TYPE = SnowflakeSupportedType.REAL

    def _validate(self):
        if type(self.value) is not float:
            raise _type_error(self, "float")

    def _binding_value(self):
        if math.isnan(self.value):
            return "NaN"
        if math.isinf(self.value):
            return "inf" if self.value > 0 else "-inf"
        return repr(self.value)


class TextParameter(SnowflakeParameterBase):
    """Wrap a Python `str` that will be bound as a VARCHAR."""

    BINDING_TYPE = SnowflakeSupportedType.TEXT

    def _validate(self):
        if not isinstance(self.value, str):
            raise _type_error(self, "str")


class BooleanParameter(SnowflakeParameterBase):
    """Wrap a Python `bool` that will be bound as a BOOLEAN."""

    BINDING_TYPE = SnowflakeSupportedType.BOOLEAN

    def _validate(self):
        if type(self.value) is not bool:
            raise _type_error(self, "bool")

    def _binding_value(self):
        return "true" if self.value else "false"


class BinaryParameter(SnowflakeParameterBase):
    """Wrap Python `bytes` or `bytearray` that will be bound as a BINARY, hex encoded."""

    BINDING_TYPE = SnowflakeSupportedType.BINARY

    def _validate(self):
        if not isinstance(self.value, (bytes, bytearray)):
            raise _type_error(self, "bytes")

    def _binding_value(self):
        return bytes(self.value).hex().upper()


class DateParameter(SnowflakeParameterBase):
    """Wrap a Python `datetime.date` that will be bound as a DATE.

    The value is sent as milliseconds since 1970-01-01. A `datetime.datetime` is
    rejected because it would silently drop its time component.
    """

    BINDING_TYPE = SnowflakeSupportedType.DATE

    def _validate(self):
        if type(self.value) is not datetime.date:
            raise _type_error(self, "datetime.date")

    def _binding_value(self):
        return str((self.value - _EPOCH_DATE).days * 86_400_000)


class TimeParameter(SnowflakeParameterBase):
    """Wrap a Python `datetime.time` that will be bound as a TIME (nanoseconds since midnight)."""

    BINDING_TYPE = SnowflakeSupportedType.TIME

    def _validate(self):
        if not isinstance(self.value, datetime.time):
            raise _type_error(self, "datetime.time")
        if self.value.tzinfo is not None:
            raise InvalidParameterError(
                "TimeParameter cannot bind a time with tzinfo",
                {"binding-type": self.BINDING_TYPE.name},
            )

    def _binding_value(self):
        seconds = self.value.hour * 3600 + self.value.minute * 60 + self.value.second
        return str(seconds * 1_000_000_000 + self.value.microsecond * 1_000)


class TimestampNTZParameter(SnowflakeParameterBase):
    """Wrap a naive Python `datetime.datetime` that will be bound as a TIMESTAMP_NTZ.

    The wall-clock value is sent as nanoseconds since the epoch as if it were UTC.
    Timezone-aware values are rejected; bind them with TimestampTZParameter or
    TimestampLTZParameter.
    """

    BINDING_TYPE = SnowflakeSupportedType.TIMESTAMP_NTZ

    def _validate(self):
        if not isinstance(self.value, datetime.datetime):
            raise _type_error(self, "datetime.datetime")
        if self.value.tzinfo is not None:
            raise InvalidParameterError(
                "TimestampNTZParameter cannot bind a timezone-aware datetime",
                {"binding-type": self.BINDING_TYPE.name},
            )

    def _binding_value(self):
        return str(_epoch_nanoseconds(self.value))


class TimestampLTZParameter(SnowflakeParameterBase):
    """Wrap a timezone-aware Python `datetime.datetime` that will be bound as a TIMESTAMP_LTZ.

    The instant is sent as nanoseconds since the epoch; the server renders it in the
    session time zone.
    """

    BINDING_TYPE = SnowflakeSupportedType.TIMESTAMP_LTZ

    def _validate(self):
        if not isinstance(self.value, datetime.datetime):
            raise _type_error(self, "datetime.datetime")
        if self.value.utcoffset() is None:
            raise InvalidParameterError(
                "TimestampLTZParameter requires a timezone-aware datetime",
                {"binding-type": self.BINDING_TYPE.name},
            )

    def _binding_value(self):
        return str(_epoch_nanoseconds(self.value))


class TimestampTZParameter(TimestampLTZParameter):
    """Wrap a timezone-aware Python `datetime.datetime` that will be bound as a TIMESTAMP_TZ.

    Unlike TIMESTAMP_LTZ the UTC offset of the value is preserved. The binding value is
    ``"<nanoseconds since epoch> <offset in minutes + 1440>"``.
    """

    BINDING_TYPE = SnowflakeSupportedType.TIMESTAMP_TZ

    def _validate(self):
        if not isinstance(self.value, datetime.datetime):
            raise _type_error(self, "datetime.datetime")
        if self.value.utcoffset() is None:
            raise InvalidParameterError(
                "TimestampTZParameter requires a timezone-aware datetime",
                {"binding-type": self.BINDING_TYPE.name},
            )

    def _binding_value(self):
        offset_minutes = int(self.value.utcoffset().total_seconds() // 60)
        return "{} {}".format(
            _epoch_nanoseconds(self.value), offset_minutes + _TZ_OFFSET_BIAS_MINUTES
        )


class NullParameter(SnowflakeParameterBase):
    """Bind SQL NULL."""

    BINDING_TYPE = SnowflakeSupportedType.ANY

    def _validate(self):
        if self.value is not None:
            raise _type_error(self, "None")

    def _binding_value(self):
        return None


TSnowflakeParameter = Union[
    FixedParameter,
    RealParameter,
    TextParameter,
    BooleanParameter,
    BinaryParameter,
    DateParameter,
    TimeParameter,
    TimestampNTZParameter,
    TimestampLTZParameter,
    TimestampTZParameter,
    NullParameter,
]

TParameterSequence = Sequence[Union[TSnowflakeParameter, TAllowedParameterValue]]


def parameter_from_primitive(value: TAllowedParameterValue) -> SnowflakeParameterBase:
    """Returns a SnowflakeParameterBase subclass given an inferrable value

    ===========================  ===========================
    Python type                  Binding type
    ===========================  ===========================
    bool                         BOOLEAN
    int, decimal.Decimal         FIXED
    float                        REAL
    str                          TEXT
    bytes, bytearray             BINARY
    datetime.datetime (naive)    TIMESTAMP_NTZ
    datetime.datetime (aware)    TIMESTAMP_TZ
    datetime.date                DATE
    datetime.time                TIME
    None                         ANY (NULL)
    ===========================  ===========================
    """

    # bool must be checked before int, it is a subclass of int
    if type(value) is bool:
        return BooleanParameter(value)
    elif type(value) is int or isinstance(value, decimal.Decimal):
        return FixedParameter(value)
    elif type(value) is float:
        return RealParameter(value)
    elif isinstance(value, str):
        return TextParameter(value)
    elif isinstance(value, (bytes, bytearray)):
        return BinaryParameter(value)
    elif isinstance(value, datetime.datetime):
        if value.utcoffset() is None:
            return TimestampNTZParameter(value)
        return TimestampTZParameter(value)
    elif type(value) is datetime.date:
        return DateParameter(value)
    elif isinstance(value, datetime.time):
        return TimeParameter(value)
    elif value is None:
        return NullParameter(value)

    raise InvalidParameterError(
        "Could not infer parameter type from value: {!r} - {}. "
        "Please specify the type explicitly.".format(value, type(value).__name__),
        {"python-type": type(value).__name__},
    )


def to_bindings(
    parameters: Optional[TParameterSequence],
) -> Optional[Dict[str, Dict[str, Optional[str]]]]:
    """Validate positional parameters and render the ``bindings`` of a query request.

    Positions are 1-based strings. Raises InvalidParameterError on the first value
    that cannot be bound.
    """
    if parameters is None:
        return None

    if isinstance(parameters, (str, bytes, dict)) or not isinstance(
        parameters, Sequence
    ):
        raise InvalidParameterError(
            "Parameters must be a sequence of positional values, got {}".format(
                type(parameters).__name__
            )
        )

    bindings: Dict[str, Dict[str, Optional[str]]] = {}
    for position, parameter in enumerate(parameters, start=1):
        if not isinstance(parameter, SnowflakeParameterBase):
            try:
                parameter = parameter_from_primitive(parameter)
            except InvalidParameterError as e:
                e.context["position"] = position
                raise
        bindings[str(position)] = parameter.as_binding()

    return bindings or None
