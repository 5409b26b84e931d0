import snowflake_api as sql
import os, threading, time

"""
A running statement stops being observed once the cancel event passed to `execute` is set, as shown in the example below.
The connection stays usable afterwards.
"""

with open(os.getenv("SNOWFLAKE_PRIVATE_KEY_PATH"), "rb") as key_file:
    private_key = key_file.read()

with sql.connect(account_identifier = os.getenv("SNOWFLAKE_ACCOUNT"),
                 user               = os.getenv("SNOWFLAKE_USER"),
                 private_key        = private_key,
                 warehouse          = os.getenv("SNOWFLAKE_WAREHOUSE")) as connection:

    cancel_event = threading.Event()

    def execute_really_long_query():
        try:
            connection.execute("SELECT SYSTEM$WAIT(120)", cancel_event=cancel_event)
        except sql.exc.StatementCancelledError:
            print("It looks like this query was cancelled.")

    exec_thread = threading.Thread(target=execute_really_long_query)

    print("\n Beginning to execute long query")
    exec_thread.start()

    print("\n Waiting 15 seconds before canceling", end="", flush=True)

    seconds_waited = 0
    while seconds_waited < 15:
        seconds_waited += 1
        print(".", end="", flush=True)
        time.sleep(1)

    print("\n Setting the cancel event.")
    cancel_event.set()

    exec_thread.join(5)

    assert not exec_thread.is_alive()
    print("\n The previous statement is no longer observed")

    print("\n Now running a separate query on the same connection.")
    print(connection.execute("SELECT 1, 2, 3").fetchall())
