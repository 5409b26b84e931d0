import itertools
import json
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from unittest.mock import MagicMock, Mock, patch

import pytest
from dateutil import tz

from snowflake_api.auth.common import ClientContext
from snowflake_api.backend.error_policy import ErrorPolicy
from snowflake_api.backend.executor import (
    PollPolicy,
    StatementExecutor,
    StatementHandle,
    StatementPoller,
    StatementRequest,
    _Execution,
    _filter_statement_parameters,
)
from snowflake_api.backend.rest_client import SnowflakeRestClient
from snowflake_api.backend.types import StatementState
from snowflake_api.common.unified_http_client import UnifiedHttpClient
from snowflake_api.exc import (
    AuthenticationError,
    ChunkFetchError,
    InvalidParameterError,
    InvalidServerResponseError,
    NonRecoverableNetworkError,
    RemoteStatementError,
    RequestError,
    SessionRejectedError,
    StatementCancelledError,
    StatementErrorKind,
    StatementTimeoutError,
    ThrottledError,
)
from snowflake_api.result_assembler import ResultAssembler

ROWTYPE = [
    {"name": "ID", "type": "fixed", "scale": 0},
    {"name": "NAME", "type": "text"},
]


def success(query_id="q1", rowset=None, total=None, chunks=None):
    rowset = [["1", "a"], ["2", "b"]] if rowset is None else rowset
    return {
        "success": True,
        "data": {
            "queryId": query_id,
            "rowtype": ROWTYPE,
            "rowset": rowset,
            "total": len(rowset) if total is None else total,
            "queryResultFormat": "json",
            "chunks": chunks or [],
        },
    }


def in_progress(query_id="q1"):
    return {
        "success": False,
        "code": "333334",
        "message": "Asynchronous execution in progress.",
        "data": {"queryId": query_id, "getResultUrl": "/queries/q1/result"},
    }


def failure(code="000904", message="invalid identifier 'X'", query_id="q1"):
    return {
        "success": False,
        "code": code,
        "message": message,
        "data": {"errorCode": code, "sqlState": "42000", "queryId": query_id},
    }


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def make_session(timezone=None):
    session = Mock()
    session.token = "tok"
    session.session_id = "1234"
    session.parameters = {"TIMEZONE": timezone} if timezone else {}
    session.next_sequence_id.side_effect = itertools.count(1)
    return session


class TestStatementExecutor:
    @pytest.fixture()
    def session(self):
        return make_session()

    @pytest.fixture()
    def session_manager(self, session):
        session_manager = Mock()
        session_manager.acquire.return_value = session
        return session_manager

    @pytest.fixture()
    def rest_client(self):
        rest_client = Mock()
        rest_client.submit_query.return_value = success()
        return rest_client

    @pytest.fixture()
    def assembler(self):
        return MagicMock()

    @pytest.fixture()
    def clock(self):
        return FakeClock()

    def make_executor(self, session_manager, rest_client, assembler, clock, **kwargs):
        kwargs.setdefault(
            "error_policy", ErrorPolicy(throttle_backoff_base=0, max_throttle_retries=2)
        )
        return StatementExecutor(
            session_manager,
            rest_client,
            assembler,
            poll_interval_base=0,
            clock=clock,
            **kwargs,
        )

    @pytest.fixture()
    def executor(self, session_manager, rest_client, assembler, clock):
        return self.make_executor(session_manager, rest_client, assembler, clock)

    def test_inline_result_is_materialized(self, session_manager, rest_client, clock):
        executor = self.make_executor(
            session_manager, rest_client, ResultAssembler(MagicMock()), clock
        )

        result_set = executor.execute(StatementRequest("select id, name from t"))

        assert result_set.fetchall() == [(1, "a"), (2, "b")]
        assert result_set.query_id == "q1"
        rest_client.get_query_result.assert_not_called()

    def test_inline_and_polled_results_are_identical(
        self, session_manager, rest_client, clock
    ):
        executor = self.make_executor(
            session_manager, rest_client, ResultAssembler(MagicMock()), clock
        )
        inline_result = executor.execute(StatementRequest("select id, name from t"))

        rest_client.submit_query.return_value = in_progress()
        rest_client.get_query_result.side_effect = [in_progress(), success()]
        polled_result = executor.execute(StatementRequest("select id, name from t"))

        assert rest_client.get_query_result.call_count == 2
        assert polled_result.description == inline_result.description
        assert polled_result.total_row_count == inline_result.total_row_count
        polled_rows = polled_result.fetchall()
        assert polled_rows == inline_result.fetchall()
        assert polled_rows == [(1, "a"), (2, "b")]

    def test_submission_body(self, executor, rest_client):
        executor.execute(
            StatementRequest(
                "select * from t where id = ?",
                parameters=[7],
                context={"query_tag": "nightly"},
            )
        )

        token, body, request_id = rest_client.submit_query.call_args[0]
        assert token == "tok"
        assert body["sqlText"] == "select * from t where id = ?"
        assert body["asyncExec"] is True
        assert body["sequenceId"] == 1
        assert body["bindings"] == {"1": {"type": "FIXED", "value": "7"}}
        assert body["parameters"] == {"QUERY_TAG": "nightly"}
        assert request_id

    def test_running_statement_is_polled_until_it_succeeds(
        self, executor, rest_client, assembler
    ):
        rest_client.submit_query.return_value = in_progress()
        rest_client.get_query_result.side_effect = [
            in_progress(),
            in_progress(),
            success(),
        ]

        result = executor.execute(StatementRequest("select 1"))

        assert result is assembler.materialize.return_value
        assert rest_client.get_query_result.call_count == 3
        assert rest_client.get_query_result.call_args[0] == (
            "tok",
            "/queries/q1/result",
        )
        descriptors, schema, total = assembler.materialize.call_args[0]
        assert total == 2
        assert [c.name for c in schema] == ["ID", "NAME"]
        assert descriptors[0].inline_rows == [["1", "a"], ["2", "b"]]

    def test_statement_failing_while_polled(self, executor, rest_client, assembler):
        rest_client.submit_query.return_value = in_progress()
        rest_client.get_query_result.side_effect = [
            in_progress(),
            in_progress(),
            failure(),
        ]

        with pytest.raises(RemoteStatementError) as excinfo:
            executor.execute(StatementRequest("select x"))

        error = excinfo.value
        assert error.kind == StatementErrorKind.REMOTE
        assert error.code == "000904"
        assert error.sql_state == "42000"
        assert error.query_id == "q1"
        assert rest_client.get_query_result.call_count == 3
        assert not assembler.materialize.called

    def test_rejected_submission(self, executor, rest_client):
        rest_client.submit_query.return_value = failure(code="001003")

        with pytest.raises(RemoteStatementError) as excinfo:
            executor.execute(StatementRequest("selec 1"))
        assert excinfo.value.code == "001003"

    def test_invalid_parameter_fails_before_any_network_call(
        self, executor, session_manager, rest_client
    ):
        with pytest.raises(InvalidParameterError) as excinfo:
            executor.execute(StatementRequest("select ?", parameters=[object()]))

        assert excinfo.value.kind == StatementErrorKind.INVALID_PARAMETER
        session_manager.acquire.assert_not_called()
        rest_client.submit_query.assert_not_called()

    def test_rejected_session_is_recovered_once(
        self, executor, session_manager, rest_client, session
    ):
        rest_client.submit_query.return_value = in_progress()
        rest_client.get_query_result.side_effect = [
            SessionRejectedError("expired", {"http-code": 401}),
            success(),
        ]

        executor.execute(StatementRequest("select 1"))

        session_manager.invalidate.assert_called_once_with(session)
        assert rest_client.get_query_result.call_count == 2

    def test_second_rejection_is_an_authentication_error(
        self, executor, session_manager, rest_client
    ):
        rest_client.submit_query.return_value = failure(
            code="390112", message="Your session has expired."
        )
        with pytest.raises(AuthenticationError):
            executor.execute(StatementRequest("select 1"))

        assert rest_client.submit_query.call_count == 2
        session_manager.invalidate.assert_called_once()

    def test_throttled_submission_is_retried_with_the_same_request_id(
        self, executor, rest_client
    ):
        rest_client.submit_query.side_effect = [
            RequestError("Too many requests", {"http-code": 429}),
            success(),
        ]

        executor.execute(StatementRequest("select 1"))

        first, second = rest_client.submit_query.call_args_list
        assert first[0][2] == second[0][2]

    def test_throttling_past_the_retry_budget(self, executor, rest_client):
        rest_client.submit_query.side_effect = RequestError(
            "Service unavailable", {"http-code": 503}
        )

        with pytest.raises(ThrottledError) as excinfo:
            executor.execute(StatementRequest("select 1"))

        assert excinfo.value.kind == StatementErrorKind.THROTTLED
        # max_throttle_retries=2
        assert rest_client.submit_query.call_count == 3

    def test_throttle_code_in_body(
        self, session_manager, rest_client, assembler, clock
    ):
        executor = self.make_executor(
            session_manager,
            rest_client,
            assembler,
            clock,
            error_policy=ErrorPolicy(
                throttle_codes=["000625"], throttle_backoff_base=0
            ),
        )
        rest_client.submit_query.side_effect = [failure(code="000625"), success()]

        executor.execute(StatementRequest("select 1"))

        assert rest_client.submit_query.call_count == 2

    def test_malformed_request(self, executor, rest_client):
        rest_client.submit_query.side_effect = RequestError(
            "Bad request", {"http-code": 400}
        )

        with pytest.raises(RemoteStatementError) as excinfo:
            executor.execute(StatementRequest("select 1"))

        assert excinfo.value.code == "400"
        assert rest_client.submit_query.call_count == 1

    def test_forbidden_is_not_a_session_rejection(
        self, executor, rest_client, session_manager
    ):
        rest_client.submit_query.side_effect = RequestError(
            "ExecuteStatement failed with HTTP 403", {"http-code": 403}
        )

        with pytest.raises(RemoteStatementError) as excinfo:
            executor.execute(StatementRequest("select 1"))

        assert excinfo.value.code == "403"
        session_manager.invalidate.assert_not_called()

    def test_not_implemented_on_submission(self, executor, rest_client):
        rest_client.submit_query.side_effect = NonRecoverableNetworkError(
            "Received code 501 from server.", {"http-code": 501}
        )

        with pytest.raises(RemoteStatementError) as excinfo:
            executor.execute(StatementRequest("select 1"))

        assert excinfo.value.code == "501"
        assert rest_client.submit_query.call_count == 1

    def test_chunk_without_url(self, executor, rest_client, assembler):
        rest_client.submit_query.return_value = success(
            total=3, chunks=[{"rowCount": 1}]
        )

        with pytest.raises(InvalidServerResponseError, match="url"):
            executor.execute(StatementRequest("select 1"))
        assert not assembler.materialize.called

    def test_network_error_without_status_propagates(self, executor, rest_client):
        rest_client.submit_query.side_effect = RequestError("connection reset")

        with pytest.raises(RequestError, match="connection reset"):
            executor.execute(StatementRequest("select 1"))

    def test_timeout_while_polling(self, executor, rest_client, clock):
        rest_client.submit_query.return_value = in_progress()

        def poll(*args):
            clock.now += 100
            return in_progress()

        rest_client.get_query_result.side_effect = poll

        with pytest.raises(StatementTimeoutError) as excinfo:
            executor.execute(StatementRequest("select 1", timeout=150))

        assert excinfo.value.query_id == "q1"
        assert rest_client.get_query_result.call_count == 2

    def test_cancel_before_submission(self, executor, rest_client):
        cancel_event = threading.Event()
        cancel_event.set()

        with pytest.raises(StatementCancelledError):
            executor.execute(StatementRequest("select 1"), cancel_event=cancel_event)
        rest_client.submit_query.assert_not_called()

    def test_cancel_while_polling(self, executor, rest_client):
        cancel_event = threading.Event()
        rest_client.submit_query.return_value = in_progress()

        def poll(*args):
            cancel_event.set()
            return in_progress()

        rest_client.get_query_result.side_effect = poll

        with pytest.raises(StatementCancelledError) as excinfo:
            executor.execute(StatementRequest("select 1"), cancel_event=cancel_event)

        assert excinfo.value.kind == StatementErrorKind.CANCELLED
        assert rest_client.get_query_result.call_count == 1

    def test_materialization_gets_cancel_event_and_session_timezone(
        self, session_manager, rest_client, assembler, clock
    ):
        session_manager.acquire.return_value = make_session("Europe/Paris")
        executor = self.make_executor(session_manager, rest_client, assembler, clock)
        cancel_event = threading.Event()

        executor.execute(StatementRequest("select 1"), cancel_event=cancel_event)

        kwargs = assembler.materialize.call_args[1]
        assert kwargs["cancel_event"] is cancel_event
        assert kwargs["query_id"] == "q1"
        assert kwargs["converter"].session_timezone == tz.gettz("Europe/Paris")

    def test_refresher_rereads_the_result(self, executor, rest_client, assembler):
        chunks = [{"url": "https://bucket/c1?sig=old", "rowCount": 3}]
        rest_client.submit_query.return_value = success(total=5, chunks=chunks)
        executor.execute(StatementRequest("select 1"))

        fresh = [{"url": "https://bucket/c1?sig=new", "rowCount": 3}]
        rest_client.get_query_result.return_value = success(total=5, chunks=fresh)
        refresher = assembler.materialize.call_args[1]["refresher"]

        descriptor = refresher(1)

        assert descriptor.index == 1
        assert descriptor.url == "https://bucket/c1?sig=new"
        assert rest_client.get_query_result.call_args[0][1] == "/queries/q1/result"

    def test_refresh_of_unknown_chunk(self, executor, rest_client):
        rest_client.get_query_result.return_value = success()
        handle = StatementHandle("q1", 0.0, "/queries/q1/result")

        with pytest.raises(ChunkFetchError) as excinfo:
            executor.refresh_chunk(handle, 4)
        assert excinfo.value.chunk_index == 4


class TestStatementPoller:
    def test_state_transitions(self):
        rest_client = Mock()
        rest_client.get_query_result.side_effect = [in_progress(), success()]
        session_manager = Mock()
        session_manager.acquire.return_value = make_session()
        executor = StatementExecutor(
            session_manager, rest_client, MagicMock(), error_policy=ErrorPolicy()
        )
        handle = StatementHandle("q1", 0.0, "/queries/q1/result", PollPolicy(base=0))
        poller = StatementPoller(executor, handle, _Execution(None, None))

        assert poller.state == StatementState.SUBMITTED
        assert poller.step() == StatementState.POLLING
        assert poller.step() == StatementState.SUCCEEDED
        assert poller.step() == StatementState.SUCCEEDED
        assert poller.polls == 2
        assert poller.response.query_id == "q1"

    def test_failure_is_terminal(self):
        rest_client = Mock()
        rest_client.get_query_result.return_value = failure()
        session_manager = Mock()
        session_manager.acquire.return_value = make_session()
        executor = StatementExecutor(
            session_manager, rest_client, MagicMock(), error_policy=ErrorPolicy()
        )
        handle = StatementHandle("q1", 0.0, "/queries/q1/result", PollPolicy(base=0))
        poller = StatementPoller(executor, handle, _Execution(None, None))

        with pytest.raises(RemoteStatementError):
            poller.step()
        assert poller.state == StatementState.FAILED


class TestPollPolicy:
    def test_interval_grows_and_is_capped(self):
        policy = PollPolicy(base=0.5, factor=2.0, maximum=3.0)
        assert [policy.interval(n) for n in range(5)] == [0.5, 1.0, 2.0, 3.0, 3.0]


class TestStatementParameters:
    def test_supported_parameters_are_kept(self):
        assert _filter_statement_parameters(
            {"query_tag": "etl", "USE_CACHED_RESULT": False}
        ) == {"QUERY_TAG": "etl", "USE_CACHED_RESULT": "False"}

    def test_unsupported_parameters_are_dropped(self, caplog):
        assert _filter_statement_parameters({"AUTOCOMMIT": "false"}) == {}
        assert "AUTOCOMMIT" in caplog.text

    def test_empty(self):
        assert _filter_statement_parameters(None) == {}


class TestStatementExecutorOverHttp:
    """Submits statements through the real transport to a local HTTP server."""

    @pytest.fixture()
    def server(self):
        class Handler(BaseHTTPRequestHandler):
            status = 200
            requests = []

            def do_POST(self):
                length = int(self.headers.get("Content-Length") or 0)
                self.rfile.read(length)
                Handler.requests.append(self.path)
                body = json.dumps(failure()).encode()
                self.send_response(Handler.status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format, *args):
                pass

        server = HTTPServer(("127.0.0.1", 0), Handler)
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        yield server
        server.shutdown()
        server.server_close()

    @pytest.fixture()
    def executor(self, server):
        context = ClientContext(
            "acct",
            host="127.0.0.1",
            port=server.server_address[1],
            scheme="http",
            retry_delay_min=0.01,
            retry_delay_max=0.01,
        )
        with patch(
            "snowflake_api.common.unified_http_client.detect_proxy",
            return_value=(None, None),
        ):
            http_client = UnifiedHttpClient(context)
        rest_client = SnowflakeRestClient(http_client, context.base_url)
        session_manager = Mock()
        session_manager.acquire.return_value = make_session()
        yield StatementExecutor(
            session_manager,
            rest_client,
            ResultAssembler(http_client),
            poll_interval_base=0,
        )
        http_client.close()

    @pytest.mark.parametrize("status", [500, 502, 504])
    def test_server_error_on_submission(self, server, executor, status):
        server.RequestHandlerClass.status = status

        with pytest.raises(RemoteStatementError) as excinfo:
            executor.execute(StatementRequest("select 1"))

        assert excinfo.value.kind == StatementErrorKind.REMOTE
        assert excinfo.value.code == str(status)
        (path,) = server.RequestHandlerClass.requests
        assert path.startswith("/queries/v1/query-request")

    def test_statement_error_answer(self, server, executor):
        with pytest.raises(RemoteStatementError) as excinfo:
            executor.execute(StatementRequest("select x"))

        assert excinfo.value.code == "000904"
