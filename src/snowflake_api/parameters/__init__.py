from snowflake_api.parameters.native import (
    BinaryParameter,
    BooleanParameter,
    DateParameter,
    FixedParameter,
    NullParameter,
    RealParameter,
    SnowflakeParameterBase,
    SnowflakeSupportedType,
    TextParameter,
    TimeParameter,
    TimestampLTZParameter,
    TimestampNTZParameter,
    TimestampTZParameter,
    TParameterSequence,
    parameter_from_primitive,
    to_bindings,
)

__all__ = [
    "BinaryParameter",
    "BooleanParameter",
    "DateParameter",
    "FixedParameter",
    "NullParameter",
    "RealParameter",
    "SnowflakeParameterBase",
    "SnowflakeSupportedType",
    "TextParameter",
    "TimeParameter",
    "TimestampLTZParameter",
    "TimestampNTZParameter",
    "TimestampTZParameter",
    "TParameterSequence",
    "parameter_from_primitive",
    "to_bindings",
]
