import snowflake_api as sql
import os

with open(os.getenv("SNOWFLAKE_PRIVATE_KEY_PATH"), "rb") as key_file:
    private_key = key_file.read()

with sql.connect(
    account_identifier=os.getenv("SNOWFLAKE_ACCOUNT"),
    user=os.getenv("SNOWFLAKE_USER"),
    private_key=private_key,
    warehouse=os.getenv("SNOWFLAKE_WAREHOUSE"),
) as connection:

    result_set = connection.execute("SELECT CURRENT_ACCOUNT(), CURRENT_USER(), 1 AS ONE")

    for row in result_set:
        print(row)
