import asyncio

from whiteboard_sync.server.connections import Connection, ConnectionRegistry


def test_broadcast_reaches_room_peers_except_sender(fake_socket) -> None:
    sockets = {name: fake_socket() for name in ("a", "b", "c")}

    async def run():
        registry = ConnectionRegistry()
        a = Connection(sockets["a"], "demo", "a")
        b = Connection(sockets["b"], "demo", "b")
        c = Connection(sockets["c"], "elsewhere", "c")
        for conn in (a, b, c):
            registry.register(conn)
        sent = registry.broadcast("demo", {"type": "seg", "n": 1}, exclude=a)
        await asyncio.gather(a.drain(), b.drain(), c.drain())
        return sent

    sent = asyncio.run(run())

    assert sent == 1
    assert sockets["a"].messages == []
    assert sockets["b"].messages == [{"type": "seg", "n": 1}]
    assert sockets["c"].messages == []


def test_duplicate_client_ids_are_tracked_separately(fake_socket) -> None:
    first, second = fake_socket(), fake_socket()

    async def run():
        registry = ConnectionRegistry()
        registry.register(Connection(first, "demo", "same"))
        registry.register(Connection(second, "demo", "same"))
        registry.broadcast("demo", {"type": "pageinfo"})
        await asyncio.gather(*(c.drain() for c in registry.in_room("demo")))
        return len(registry)

    assert asyncio.run(run()) == 2
    assert len(first.frames) == 1
    assert len(second.frames) == 1


def test_frames_are_delivered_in_queue_order(fake_socket) -> None:
    sock = fake_socket()

    async def run():
        registry = ConnectionRegistry()
        conn = Connection(sock, "demo", "x")
        registry.register(conn)
        for n in range(20):
            registry.broadcast("demo", {"n": n})
        await conn.drain()

    asyncio.run(run())

    assert [m["n"] for m in sock.messages] == list(range(20))


def test_failed_send_drops_only_that_connection(fake_socket) -> None:
    dead, alive = fake_socket(fail=True), fake_socket()

    async def run():
        registry = ConnectionRegistry()
        bad = Connection(dead, "demo", "dead")
        good = Connection(alive, "demo", "alive")
        registry.register(bad)
        registry.register(good)
        registry.broadcast("demo", {"n": 1})
        await asyncio.gather(bad.drain(), good.drain())
        registry.broadcast("demo", {"n": 2})
        await good.drain()
        return registry.in_room("demo"), bad

    remaining, bad = asyncio.run(run())

    assert [c.client_id for c in remaining] == ["alive"]
    assert bad.alive is False
    assert [m["n"] for m in alive.messages] == [1, 2]


def test_stalled_peer_does_not_block_others(fake_socket) -> None:
    slow, fast = fake_socket(stall=True), fake_socket()

    async def run():
        registry = ConnectionRegistry()
        stuck = Connection(slow, "demo", "slow")
        quick = Connection(fast, "demo", "fast")
        registry.register(stuck)
        registry.register(quick)
        for n in range(3):
            registry.broadcast("demo", {"n": n})
        await asyncio.wait_for(quick.drain(), timeout=1.0)
        await stuck.close()

    asyncio.run(run())

    assert [m["n"] for m in fast.messages] == [0, 1, 2]
    assert slow.frames == []


def test_discard_removes_connection_and_empty_room(fake_socket) -> None:
    async def run():
        registry = ConnectionRegistry()
        conn = Connection(fake_socket(), "demo", "x")
        registry.register(conn)
        registry.discard(conn)
        registry.discard(conn)
        await conn.close()
        return registry

    registry = asyncio.run(run())

    assert registry.in_room("demo") == []
    assert len(registry) == 0
    assert "demo" not in registry._by_room
