import json
from threading import Event, Thread

import httpx
import pytest

from tutor_api.db import OfflineStore
from tutor_api.errors import UnsupportedPayload
from tutor_api.services.sync import (
    OfflineRequestQueue,
    OutboundRequest,
    ReplayCoordinator,
    ReplayLease,
    UpstreamResponse,
)

from conftest import ORIGIN, FakeUpstream


def _post(path: str, payload: dict, **headers: str) -> OutboundRequest:
    return OutboundRequest(
        method="POST",
        url=f"{ORIGIN}{path}",
        headers={"Content-Type": "application/json", **headers},
        body=json.dumps(payload, separators=(",", ":")).encode("utf-8"),
    )


def test_enqueue_captures_method_url_headers_and_body(store: OfflineStore) -> None:
    queue = OfflineRequestQueue(store, clock=lambda: 1_700_000_000_000)

    entry = queue.enqueue(_post("/api/x", {"a": 1}, **{"X-Trace": "t-1", "Content-Length": "7"}))

    assert entry.method == "POST"
    assert entry.url == f"{ORIGIN}/api/x"
    assert entry.headers == {"content-type": "application/json", "x-trace": "t-1"}
    assert entry.body == '{"a":1}'
    assert entry.enqueued_at == 1_700_000_000_000
    assert queue.size() == 1


def test_enqueue_accepts_text_bodies_and_empty_bodies(store: OfflineStore) -> None:
    queue = OfflineRequestQueue(store)

    queue.enqueue(
        OutboundRequest(
            method="PUT",
            url=f"{ORIGIN}/api/notes/1",
            headers={"content-type": "text/plain; charset=utf-8"},
            body=b"plain note",
        )
    )
    queue.enqueue(OutboundRequest(method="DELETE", url=f"{ORIGIN}/api/notes/2"))

    assert [(entry.method, entry.body) for entry in queue.entries()] == [
        ("PUT", "plain note"),
        ("DELETE", None),
    ]


def test_enqueue_rejects_binary_payloads(store: OfflineStore) -> None:
    queue = OfflineRequestQueue(store)
    upload = OutboundRequest(
        method="POST",
        url=f"{ORIGIN}/api/upload",
        headers={"content-type": "multipart/form-data; boundary=x"},
        body=b"--x\r\n\x00\x01",
    )

    with pytest.raises(UnsupportedPayload, match="unsupported for offline queue"):
        queue.enqueue(upload)

    assert queue.size() == 0


def test_replay_delivers_exact_body_and_removes_entry(
    store: OfflineStore, upstream: FakeUpstream
) -> None:
    queue = OfflineRequestQueue(store)
    coordinator = ReplayCoordinator(queue, upstream.transport())
    queue.enqueue(_post("/api/x", {"a": 1}))

    upstream.online = False
    down = coordinator.flush()
    assert down is not None
    assert (down.delivered, down.failed, down.remaining) == (0, 1, 1)

    upstream.online = True
    summary = coordinator.flush()

    assert summary is not None
    assert (summary.attempted, summary.delivered, summary.remaining) == (1, 1, 0)
    assert len(upstream.requests) == 1
    delivered = upstream.requests[0]
    assert delivered.method == "POST"
    assert delivered.url == httpx.URL(f"{ORIGIN}/api/x")
    assert delivered.content == b'{"a":1}'
    assert json.loads(delivered.content) == {"a": 1}
    assert queue.size() == 0


def test_replay_keeps_enqueue_order_for_same_url(
    store: OfflineStore, upstream: FakeUpstream
) -> None:
    queue = OfflineRequestQueue(store)
    queue.enqueue(_post("/api/progress", {"step": "A"}))
    queue.enqueue(_post("/api/other", {"step": "X"}))
    queue.enqueue(_post("/api/progress", {"step": "B"}))

    ReplayCoordinator(queue, upstream.transport()).flush()

    progress_steps = [
        json.loads(request.content)["step"]
        for request in upstream.requests
        if request.url.path == "/api/progress"
    ]
    assert progress_steps == ["A", "B"]


def test_http_error_status_leaves_entry_queued(
    store: OfflineStore, upstream: FakeUpstream
) -> None:
    queue = OfflineRequestQueue(store)
    upstream.route("POST", "/api/flaky", lambda request: httpx.Response(500))
    queue.enqueue(_post("/api/flaky", {"n": 1}))
    queue.enqueue(_post("/api/fine", {"n": 2}))

    summary = ReplayCoordinator(queue, upstream.transport()).flush()

    assert summary is not None
    assert (summary.delivered, summary.failed, summary.remaining) == (1, 1, 1)
    assert [entry.url for entry in queue.entries()] == [f"{ORIGIN}/api/flaky"]


def test_redirect_counts_as_delivered(store: OfflineStore, upstream: FakeUpstream) -> None:
    queue = OfflineRequestQueue(store)
    upstream.route(
        "POST", "/api/moved", lambda request: httpx.Response(303, headers={"location": "/done"})
    )
    queue.enqueue(_post("/api/moved", {}))

    ReplayCoordinator(queue, upstream.transport()).flush()

    assert queue.size() == 0


def test_replaying_empty_queue_is_a_no_op(store: OfflineStore, upstream: FakeUpstream) -> None:
    coordinator = ReplayCoordinator(OfflineRequestQueue(store), upstream.transport())

    first = coordinator.flush()
    second = coordinator.flush()

    assert first == second
    assert first is not None
    assert (first.attempted, first.delivered, first.failed, first.remaining) == (0, 0, 0, 0)
    assert upstream.requests == []


class _BlockingTransport:
    def __init__(self) -> None:
        self.started = Event()
        self.release = Event()
        self.calls = 0

    def send(self, request: OutboundRequest) -> UpstreamResponse:
        self.calls += 1
        self.started.set()
        self.release.wait(5)
        return UpstreamResponse(status_code=200)

    def close(self) -> None:
        pass


def test_concurrent_flush_is_coalesced(store: OfflineStore) -> None:
    queue = OfflineRequestQueue(store)
    queue.enqueue(_post("/api/x", {"a": 1}))
    transport = _BlockingTransport()
    coordinator = ReplayCoordinator(queue, transport)
    results = []

    worker = Thread(target=lambda: results.append(coordinator.flush()))
    worker.start()
    assert transport.started.wait(5)

    assert coordinator.running is True
    assert coordinator.flush() is None

    transport.release.set()
    worker.join(5)

    assert transport.calls == 1
    assert results[0] is not None
    assert results[0].delivered == 1
    assert coordinator.running is False
    assert queue.size() == 0


def test_replay_with_closed_store_does_not_raise(tmp_path, upstream: FakeUpstream) -> None:
    store = OfflineStore(f"sqlite+pysqlite:///{tmp_path / 'gone.db'}").open()
    coordinator = ReplayCoordinator(OfflineRequestQueue(store), upstream.transport())
    store.close()

    summary = coordinator.flush()

    assert summary is not None
    assert summary.attempted == 0


def test_coordinators_sharing_a_store_deliver_each_entry_once(store: OfflineStore) -> None:
    queue = OfflineRequestQueue(store)
    queue.enqueue(_post("/api/x", {"a": 1}))
    slow = _BlockingTransport()
    other = _BlockingTransport()
    other.release.set()
    first = ReplayCoordinator(queue, slow)
    second = ReplayCoordinator(OfflineRequestQueue(store), other)
    results = []

    worker = Thread(target=lambda: results.append(first.flush()))
    worker.start()
    assert slow.started.wait(5)

    assert second.running is False
    assert second.flush() is None

    slow.release.set()
    worker.join(5)

    assert slow.calls + other.calls == 1
    assert results[0].delivered == 1
    assert queue.size() == 0

    after = second.flush()
    assert after is not None
    assert after.attempted == 0


def test_lease_is_exclusive_until_released(store: OfflineStore) -> None:
    first = ReplayLease(store, holder="api")
    second = ReplayLease(store, holder="worker")

    assert first.acquire() is True
    assert second.acquire() is False
    assert first.renew() is True
    assert second.renew() is False

    first.release()

    assert second.acquire() is True
    assert first.acquire() is False


def test_expired_lease_can_be_taken_over(store: OfflineStore) -> None:
    now = [1_000_000]
    crashed = ReplayLease(store, holder="crashed", ttl_seconds=30, clock=lambda: now[0])
    survivor = ReplayLease(store, holder="survivor", ttl_seconds=30, clock=lambda: now[0])

    assert crashed.acquire() is True
    now[0] += 29_000
    assert survivor.acquire() is False

    now[0] += 1_000
    assert survivor.acquire() is True
    assert crashed.renew() is False


def test_replay_stops_when_lease_is_lost(store: OfflineStore, upstream: FakeUpstream) -> None:
    queue = OfflineRequestQueue(store)
    queue.enqueue(_post("/api/one", {"n": 1}))
    queue.enqueue(_post("/api/two", {"n": 2}))
    now = [1_000_000]
    lease = ReplayLease(store, holder="api", ttl_seconds=1, clock=lambda: now[0])
    rival = ReplayLease(store, holder="worker", ttl_seconds=1, clock=lambda: now[0])

    def take_over(request: httpx.Request) -> httpx.Response:
        now[0] += 5_000
        assert rival.acquire() is True
        return httpx.Response(200)

    upstream.route("POST", "/api/one", take_over)

    summary = ReplayCoordinator(queue, upstream.transport(), lease=lease).flush()

    assert summary is not None
    assert (summary.attempted, summary.delivered, summary.remaining) == (1, 1, 1)
    assert [request.url.path for request in upstream.requests] == ["/api/one"]
