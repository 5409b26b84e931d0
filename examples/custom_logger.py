import snowflake_api as sql
import os
import logging


logger = logging.getLogger("snowflake_api")
logger.setLevel(logging.DEBUG)
fh = logging.FileHandler("pysnowflakelogs.log")
fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(process)d %(thread)d %(message)s"))
fh.setLevel(logging.DEBUG)
logger.addHandler(fh)

with open(os.getenv("SNOWFLAKE_PRIVATE_KEY_PATH"), "rb") as key_file:
    private_key = key_file.read()

with sql.connect(
    account_identifier=os.getenv("SNOWFLAKE_ACCOUNT"),
    user=os.getenv("SNOWFLAKE_USER"),
    private_key=private_key,
    warehouse=os.getenv("SNOWFLAKE_WAREHOUSE"),
    max_download_threads=2,
) as connection:

    query = "SELECT SEQ8() AS N, RANDSTR(64, RANDOM()) AS S FROM TABLE(GENERATOR(ROWCOUNT => 2000000))"
    print(f"executing query: {query}")
    try:
        result_set = connection.execute(query)
        print(f"{len(result_set.chunks)} chunks, {result_set.total_row_count} rows")
        while True:
            row = result_set.fetchone()
            if row is None:
                break
    except sql.exc.ResultError as e:
        print(f"error: {e}")
