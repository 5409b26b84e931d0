import os
import pytest


@pytest.fixture(scope="session")
def account_identifier():
    return os.getenv("SNOWFLAKE_ACCOUNT")


@pytest.fixture(scope="session")
def user():
    return os.getenv("SNOWFLAKE_USER")


@pytest.fixture(scope="session")
def private_key():
    path = os.getenv("SNOWFLAKE_PRIVATE_KEY_PATH")
    if not path:
        return None
    with open(path, "rb") as f:
        return f.read()


@pytest.fixture(scope="session")
def private_key_password():
    return os.getenv("SNOWFLAKE_PRIVATE_KEY_PASSWORD")


@pytest.fixture(scope="session")
def warehouse():
    return os.getenv("SNOWFLAKE_WAREHOUSE")


@pytest.fixture(scope="session")
def database():
    return os.getenv("SNOWFLAKE_DATABASE")


@pytest.fixture(scope="session")
def schema():
    return os.getenv("SNOWFLAKE_SCHEMA", "PUBLIC")


@pytest.fixture(scope="session")
def connection_details(
    account_identifier,
    user,
    private_key,
    private_key_password,
    warehouse,
    database,
    schema,
):
    return {
        "account_identifier": account_identifier,
        "user": user,
        "private_key": private_key,
        "private_key_password": private_key_password,
        "warehouse": warehouse,
        "database": database,
        "schema": schema,
    }
