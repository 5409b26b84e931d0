"""
This example demonstrates how to bind positional parameters, either inferred from Python values or typed explicitly.
"""

from datetime import datetime, timezone
from decimal import Decimal
import os

import snowflake_api as sql
from snowflake_api.parameters import *

with open(os.getenv("SNOWFLAKE_PRIVATE_KEY_PATH"), "rb") as key_file:
    private_key = key_file.read()

connection = sql.connect(
    account_identifier=os.getenv("SNOWFLAKE_ACCOUNT"),
    user=os.getenv("SNOWFLAKE_USER"),
    private_key=private_key,
    warehouse=os.getenv("SNOWFLAKE_WAREHOUSE"),
)

# Example 1: the type of each value is inferred.
# int and Decimal bind as FIXED, str as TEXT, bool as BOOLEAN, naive datetime as TIMESTAMP_NTZ.

EX1_PARAMS = ["Jane", 30, True, Decimal("1234.50")]
ex1_result = connection.execute("SELECT ? AS NAME, ? AS AGE, ? AS ACTIVE, ? AS BALANCE", EX1_PARAMS).fetchone()

print("\nEXAMPLE 1")
print("Example 1 result\t→\t", ex1_result)


# Example 2: typed parameters choose the server type explicitly.
# An aware datetime infers TIMESTAMP_TZ; wrap it to compare against a TIMESTAMP_LTZ column instead.

now = datetime.now(tz=timezone.utc)
EX2_PARAMS = [TimestampLTZParameter(now), RealParameter(0.25), NullParameter(None)]
ex2_result = connection.execute("SELECT ?, ?, ?", EX2_PARAMS).fetchone()

print("\nEXAMPLE 2")
print("Example 2 result\t→\t", ex2_result)


# Example 3: a value that cannot be bound fails before anything is sent.

try:
    connection.execute("SELECT ?", [{"not": "bindable"}])
except sql.InvalidParameterError as e:
    print("\nEXAMPLE 3")
    print("Example 3 error\t→\t", e)

connection.close()
