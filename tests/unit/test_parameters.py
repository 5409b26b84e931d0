import datetime
from decimal import Decimal

import pytest

from snowflake_api.exc import (
    InvalidParameterError,
    ProgrammingError,
    StatementErrorKind,
)
from snowflake_api.parameters import (
    BinaryParameter,
    BooleanParameter,
    DateParameter,
    FixedParameter,
    NullParameter,
    RealParameter,
    TextParameter,
    TimeParameter,
    TimestampLTZParameter,
    TimestampNTZParameter,
    TimestampTZParameter,
)
from snowflake_api.parameters.native import (
    SnowflakeSupportedType,
    parameter_from_primitive,
    to_bindings,
)

PLUS_ONE = datetime.timezone(datetime.timedelta(hours=1))
MINUS_FIVE_THIRTY = datetime.timezone(-datetime.timedelta(hours=5, minutes=30))
# 1970-01-01T00:00:00Z
EPOCH_PLUS_ONE = datetime.datetime(1970, 1, 1, 1, tzinfo=PLUS_ONE)


class TestBindingValues:
    @pytest.mark.parametrize(
        "parameter,expected_type,expected_value",
        [
            (FixedParameter(42), "FIXED", "42"),
            (FixedParameter(-7), "FIXED", "-7"),
            (FixedParameter(Decimal("-12.50")), "FIXED", "-12.50"),
            (FixedParameter(Decimal("1E+3")), "FIXED", "1000"),
            (RealParameter(1.5), "REAL", "1.5"),
            (RealParameter(float("nan")), "REAL", "NaN"),
            (RealParameter(float("-inf")), "REAL", "-inf"),
            (TextParameter("it's"), "TEXT", "it's"),
            (BooleanParameter(True), "BOOLEAN", "true"),
            (BooleanParameter(False), "BOOLEAN", "false"),
            (BinaryParameter(b"\x01\xab"), "BINARY", "01AB"),
            (BinaryParameter(bytearray(b"\xff")), "BINARY", "FF"),
            (DateParameter(datetime.date(1970, 1, 2)), "DATE", "86400000"),
            (DateParameter(datetime.date(1969, 12, 31)), "DATE", "-86400000"),
            (TimeParameter(datetime.time(1, 0, 0, 5)), "TIME", "3600000005000"),
            (
                TimestampNTZParameter(datetime.datetime(1970, 1, 1, 0, 0, 1)),
                "TIMESTAMP_NTZ",
                "1000000000",
            ),
            (
                TimestampLTZParameter(EPOCH_PLUS_ONE),
                "TIMESTAMP_LTZ",
                "0",
            ),
            (
                TimestampTZParameter(EPOCH_PLUS_ONE),
                "TIMESTAMP_TZ",
                "0 1500",
            ),
            (
                TimestampTZParameter(
                    datetime.datetime(1970, 1, 1, 0, 0, 0, 1, tzinfo=MINUS_FIVE_THIRTY)
                ),
                "TIMESTAMP_TZ",
                "{} {}".format((5 * 3600 + 30 * 60) * 10**9 + 1000, 1440 - 330),
            ),
            (NullParameter(None), "ANY", None),
        ],
    )
    def test_as_binding(self, parameter, expected_type, expected_value):
        assert parameter.as_binding() == {
            "type": expected_type,
            "value": expected_value,
        }

    def test_parameters_compare_by_value(self):
        assert FixedParameter(1) == FixedParameter(1)
        assert FixedParameter(1) != FixedParameter(2)
        assert FixedParameter(1) != TextParameter("1")


class TestValidation:
    @pytest.mark.parametrize(
        "parameter_class,value",
        [
            (FixedParameter, 1.5),
            (FixedParameter, True),
            (FixedParameter, "1"),
            (FixedParameter, Decimal("NaN")),
            (FixedParameter, Decimal("Infinity")),
            (RealParameter, 1),
            (RealParameter, Decimal("1.5")),
            (TextParameter, b"bytes"),
            (BooleanParameter, 1),
            (BinaryParameter, "00FF"),
            (DateParameter, datetime.datetime(2024, 1, 1)),
            (TimeParameter, datetime.time(1, tzinfo=PLUS_ONE)),
            (TimestampNTZParameter, datetime.datetime(2024, 1, 1, tzinfo=PLUS_ONE)),
            (TimestampNTZParameter, datetime.date(2024, 1, 1)),
            (TimestampLTZParameter, datetime.datetime(2024, 1, 1)),
            (TimestampTZParameter, datetime.datetime(2024, 1, 1)),
            (NullParameter, 0),
        ],
    )
    def test_wrong_value_type_is_rejected(self, parameter_class, value):
        with pytest.raises(InvalidParameterError) as excinfo:
            parameter_class(value)
        assert excinfo.value.kind == StatementErrorKind.INVALID_PARAMETER

    def test_invalid_parameter_error_is_a_programming_error(self):
        with pytest.raises(ProgrammingError):
            FixedParameter(1.5)


class TestInference:
    @pytest.mark.parametrize(
        "value,expected_type",
        [
            (True, SnowflakeSupportedType.BOOLEAN),
            (1, SnowflakeSupportedType.FIXED),
            (Decimal("1.10"), SnowflakeSupportedType.FIXED),
            (1.0, SnowflakeSupportedType.REAL),
            ("1", SnowflakeSupportedType.TEXT),
            (b"1", SnowflakeSupportedType.BINARY),
            (bytearray(b"1"), SnowflakeSupportedType.BINARY),
            (datetime.datetime(2024, 1, 1), SnowflakeSupportedType.TIMESTAMP_NTZ),
            (
                datetime.datetime(2024, 1, 1, tzinfo=PLUS_ONE),
                SnowflakeSupportedType.TIMESTAMP_TZ,
            ),
            (datetime.date(2024, 1, 1), SnowflakeSupportedType.DATE),
            (datetime.time(12, 30), SnowflakeSupportedType.TIME),
            (None, SnowflakeSupportedType.ANY),
        ],
    )
    def test_parameter_from_primitive(self, value, expected_type):
        assert parameter_from_primitive(value).BINDING_TYPE == expected_type

    @pytest.mark.parametrize(
        "value", [[1, 2], {"a": 1}, (1,), {1}, object(), 1 + 2j]
    )
    def test_unsupported_values_are_rejected(self, value):
        with pytest.raises(InvalidParameterError, match="Could not infer"):
            parameter_from_primitive(value)


class TestToBindings:
    def test_no_parameters(self):
        assert to_bindings(None) is None
        assert to_bindings([]) is None

    def test_positions_are_one_based(self):
        bindings = to_bindings([7, "x", None])
        assert bindings == {
            "1": {"type": "FIXED", "value": "7"},
            "2": {"type": "TEXT", "value": "x"},
            "3": {"type": "ANY", "value": None},
        }

    def test_typed_and_primitive_values_mix(self):
        bindings = to_bindings((FixedParameter(Decimal("2.5")), 3.0))
        assert bindings["1"] == {"type": "FIXED", "value": "2.5"}
        assert bindings["2"] == {"type": "REAL", "value": "3.0"}

    def test_error_reports_position(self):
        with pytest.raises(InvalidParameterError) as excinfo:
            to_bindings([1, 2, ["nested"]])
        assert excinfo.value.context["position"] == 3

    @pytest.mark.parametrize("parameters", ["abc", b"abc", {"1": 1}, 5])
    def test_non_sequence_parameters_are_rejected(self, parameters):
        with pytest.raises(InvalidParameterError, match="sequence"):
            to_bindings(parameters)
