from snowflake_api.exc import *
from snowflake_api.parameters import *

# PEP 249 module globals
apilevel = "2.0"
threadsafety = 2  # Threads may share the module and connections.
paramstyle = "qmark"  # Question mark style, e.g. ...WHERE name=?


class _DBAPITypeObject(object):
    def __init__(self, *values):
        self.values = values

    def __eq__(self, other):
        return other in self.values

    def __repr__(self):
        return "DBAPITypeObject({})".format(self.values)


STRING = _DBAPITypeObject("TEXT")
BINARY = _DBAPITypeObject("BINARY")
NUMBER = _DBAPITypeObject("FIXED", "REAL", "BOOLEAN")
DATETIME = _DBAPITypeObject("TIMESTAMP_NTZ", "TIMESTAMP_LTZ", "TIMESTAMP_TZ")
DATE = _DBAPITypeObject("DATE")
ROWID = _DBAPITypeObject()

__version__ = "1.0.0"
USER_AGENT_NAME = "PySnowflakeApiClient"


def connect(account_identifier, **kwargs):
    from snowflake_api.client import Connection

    return Connection(account_identifier, **kwargs)
