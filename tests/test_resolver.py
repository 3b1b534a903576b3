"""Tests for the Merkle-path resolver.

Tests cover:
- Response parsing and flag inversion
- Retry classification: 429, 5xx, transport failures, terminal 4xx
- Backoff schedule and attempt ceiling
- The explicit retry state machine
- End-to-end fetches against the in-memory indexer
"""

import json

import httpx
import pytest

from resource_tx.errors import (
    IndexerRateLimitedError,
    IndexerRequestError,
    IndexerTransientError,
    InvalidIndexerResponseError,
    InvalidRequestError,
)
from resource_tx.merkle import MerklePath
from resource_tx.resolver import (
    FetchState,
    HttpxTransport,
    MerklePathResolver,
    RetryMachine,
    RetryPolicy,
    TransportResponse,
    classify_response,
    parse_proof_response,
)

from conftest import INDEXER_URL

COMMITMENT = b"\x0c" * 32


class ScriptedTransport:
    """Replays a fixed sequence of responses or exceptions."""

    def __init__(self, *script):
        self.script = list(script)
        self.urls = []

    def get(self, url):
        self.urls.append(url)
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return item


def _ok_body(root=b"\x01" * 32, frontiers=()):
    return json.dumps({
        "root": root.hex(),
        "frontiers": [{"neighbour": n.hex(), "is_left": left} for n, left in frontiers],
    }).encode()


def _resolver(transport, sleeps=None, **policy):
    recorded = sleeps if sleeps is not None else []
    return MerklePathResolver(
        INDEXER_URL,
        transport=transport,
        policy=RetryPolicy(**policy),
        sleep=recorded.append,
    )


class TestParsing:
    """Test indexer response parsing."""

    def test_flags_are_inverted(self):
        """The indexer flags the running node; MerklePath flags the sibling."""
        body = json.loads(_ok_body(frontiers=[(b"\x02" * 32, True), (b"\x03" * 32, False)]))
        path = parse_proof_response(body).to_merkle_path()
        assert [n.is_left for n in path.nodes] == [False, True]
        assert [n.sibling for n in path.nodes] == [b"\x02" * 32, b"\x03" * 32]

    def test_prefixed_hex_accepted(self):
        """Hex values may carry a 0x prefix."""
        body = {"root": "0x" + "ab" * 32, "frontiers": []}
        assert parse_proof_response(body).root == b"\xab" * 32

    @pytest.mark.parametrize("body", [
        [],
        {"root": "00" * 32},
        {"frontiers": []},
        {"root": "00" * 32, "frontiers": {}},
        {"root": "00" * 32, "frontiers": [{"neighbour": "00" * 32}]},
        {"root": "00" * 32, "frontiers": [{"neighbour": "00" * 31, "is_left": True}]},
        {"root": "zz", "frontiers": []},
        {"root": 5, "frontiers": []},
    ])
    def test_malformed_bodies(self, body):
        """Bodies that are not a valid path raise InvalidIndexerResponseError."""
        with pytest.raises(InvalidIndexerResponseError):
            parse_proof_response(body)


class TestClassification:
    """Test HTTP status classification."""

    def test_rate_limited(self):
        """429 is rate limiting and retryable."""
        with pytest.raises(IndexerRateLimitedError) as exc:
            classify_response(TransportResponse(429, b""))
        assert exc.value.retryable

    @pytest.mark.parametrize("status", [500, 502, 503, 504])
    def test_server_errors_are_transient(self, status):
        """5xx responses are transient."""
        with pytest.raises(IndexerTransientError) as exc:
            classify_response(TransportResponse(status, b""))
        assert exc.value.status_code == status

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_client_errors_are_terminal(self, status):
        """Other 4xx responses are not retryable."""
        with pytest.raises(IndexerRequestError) as exc:
            classify_response(TransportResponse(status, b""))
        assert not exc.value.retryable

    def test_non_json_body(self):
        """A 200 with a non-JSON body is an invalid response."""
        with pytest.raises(InvalidIndexerResponseError):
            classify_response(TransportResponse(200, b"<html>"))


class TestRetryPolicy:
    """Test delays and the state machine."""

    def test_exponential_backoff(self):
        """Transient failures back off 0.25s doubling per attempt."""
        policy = RetryPolicy()
        error = IndexerTransientError("boom")
        assert [policy.delay_for(error, n) for n in range(1, 6)] == [0.25, 0.5, 1.0, 2.0, 4.0]

    def test_rate_limit_delay_is_fixed(self):
        """429 always waits 10 seconds."""
        policy = RetryPolicy()
        error = IndexerRateLimitedError("slow down")
        assert policy.delay_for(error, 1) == policy.delay_for(error, 5) == 10.0

    def test_machine_transitions(self):
        """FETCH -> WAIT -> FETCH -> DONE."""
        machine = RetryMachine()
        assert machine.record_failure(IndexerTransientError("x")) == FetchState.WAIT
        assert machine.pending_delay == 0.25
        machine.waited()
        assert machine.state == FetchState.FETCH
        assert machine.attempt == 2
        machine.record_success()
        assert machine.state == FetchState.DONE

    def test_machine_terminal_error(self):
        """A non-retryable error fails immediately."""
        machine = RetryMachine()
        assert machine.record_failure(IndexerRequestError("404")) == FetchState.FAILED
        assert not machine.exhausted

    def test_machine_rejects_invalid_transition(self):
        """waited() outside WAIT is a programming error."""
        with pytest.raises(RuntimeError):
            RetryMachine().waited()


class TestResolver:
    """Test fetches with scripted transports."""

    def test_url_format(self):
        """Paths are requested at /generate_proof/0x<hex>."""
        transport = ScriptedTransport(TransportResponse(200, _ok_body()))
        resolver = MerklePathResolver(INDEXER_URL + "/", transport=transport)
        resolver.fetch_proof(COMMITMENT)
        assert transport.urls == [f"{INDEXER_URL}/generate_proof/0x{COMMITMENT.hex()}"]

    def test_success_first_attempt(self):
        """A 200 returns without sleeping."""
        sleeps = []
        resolver = _resolver(ScriptedTransport(TransportResponse(200, _ok_body())), sleeps)
        assert resolver.merkle_path(COMMITMENT) == MerklePath.empty()
        assert sleeps == []

    def test_exhaustion_after_six_attempts(self):
        """Six 500s exhaust the attempts and raise the last transient error."""
        transport = ScriptedTransport(TransportResponse(500, b"down"))
        sleeps = []
        with pytest.raises(IndexerTransientError) as exc:
            _resolver(transport, sleeps).fetch_proof(COMMITMENT)
        assert len(transport.urls) == 6
        assert sleeps == [0.25, 0.5, 1.0, 2.0, 4.0]
        assert exc.value.context["attempt"] == 6

    def test_rate_limit_then_success(self):
        """A 429 waits the fixed delay, then the retry succeeds."""
        transport = ScriptedTransport(
            TransportResponse(429, b""),
            TransportResponse(200, _ok_body()),
        )
        sleeps = []
        _resolver(transport, sleeps).fetch_proof(COMMITMENT)
        assert sleeps == [10.0]
        assert len(transport.urls) == 2

    def test_mixed_failures_then_success(self):
        """Backoff resumes with the attempt count after a rate limit."""
        transport = ScriptedTransport(
            TransportResponse(503, b""),
            TransportResponse(429, b""),
            IndexerTransientError("connection reset"),
            TransportResponse(200, _ok_body()),
        )
        sleeps = []
        _resolver(transport, sleeps).fetch_proof(COMMITMENT)
        assert sleeps == [0.25, 10.0, 1.0]

    def test_not_found_is_terminal(self):
        """A 404 is raised after one attempt."""
        transport = ScriptedTransport(TransportResponse(404, b""))
        sleeps = []
        with pytest.raises(IndexerRequestError):
            _resolver(transport, sleeps).fetch_proof(COMMITMENT)
        assert len(transport.urls) == 1
        assert sleeps == []

    def test_invalid_body_is_terminal(self):
        """A malformed 200 is not retried."""
        transport = ScriptedTransport(TransportResponse(200, b'{"root": "00"}'))
        with pytest.raises(InvalidIndexerResponseError):
            _resolver(transport).fetch_proof(COMMITMENT)
        assert len(transport.urls) == 1

    def test_attempt_ceiling_is_configurable(self):
        """max_attempts bounds the number of requests."""
        transport = ScriptedTransport(TransportResponse(502, b""))
        with pytest.raises(IndexerTransientError):
            _resolver(transport, max_attempts=2).fetch_proof(COMMITMENT)
        assert len(transport.urls) == 2

    def test_commitment_size_checked(self):
        """Commitments must be 32 bytes."""
        with pytest.raises(InvalidRequestError):
            _resolver(ScriptedTransport(TransportResponse(200, _ok_body()))).url_for(b"\x00")


class TestHttpxTransport:
    """Test the httpx transport mapping."""

    def _transport(self, handler):
        return HttpxTransport(httpx.Client(transport=httpx.MockTransport(handler)))

    def test_response_passthrough(self):
        """Status and body are passed through."""
        transport = self._transport(lambda request: httpx.Response(503, content=b"busy"))
        assert transport.get(INDEXER_URL + "/x") == TransportResponse(503, b"busy")

    def test_connect_error_is_transient(self):
        """Connection failures map to IndexerTransientError."""
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(IndexerTransientError):
            self._transport(handler).get(INDEXER_URL + "/x")

    def test_timeout_is_transient(self):
        """Timeouts map to IndexerTransientError."""
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(IndexerTransientError):
            self._transport(handler).get(INDEXER_URL + "/x")

    def test_connect_errors_are_retried(self):
        """Transport failures go through the retry schedule."""
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, content=_ok_body())

        sleeps = []
        _resolver(self._transport(handler), sleeps).fetch_proof(COMMITMENT)
        assert len(calls) == 3
        assert sleeps == [0.25, 0.5]


class TestAgainstLedger:
    """Test fetches against the in-memory indexer."""

    def test_path_reaches_ledger_root(self, ledger, resolver):
        """Fetched paths recompute the ledger's commitment tree root."""
        commitments = [bytes([i]) * 32 for i in range(1, 6)]
        for cm in commitments:
            ledger.add(cm)
        root = ledger.tree().root()
        for cm in commitments:
            proof = resolver.fetch_proof(cm)
            assert proof.root == root
            assert proof.to_merkle_path().root(cm) == root

    def test_fetch_is_idempotent(self, ledger, resolver):
        """Repeated fetches against an unchanged indexer give identical paths."""
        ledger.add(COMMITMENT)
        ledger.add(b"\x0d" * 32)
        assert resolver.merkle_path(COMMITMENT) == resolver.merkle_path(COMMITMENT)

    def test_unknown_commitment_exhausts(self, ledger, resolver):
        """The indexer answers 500 for unknown commitments, retried to exhaustion."""
        with pytest.raises(IndexerTransientError):
            resolver.fetch_proof(COMMITMENT)
        assert len(ledger.requests) == 6
