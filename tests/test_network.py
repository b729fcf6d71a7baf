"""
Tests for the connectivity monitor.
"""
from pingchat.services.network import ConnectivityWatcher, NetworkMonitor


async def test_listeners_run_only_on_reconnect():
    network = NetworkMonitor(online=True)
    calls = []

    async def listener():
        calls.append("restored")

    network.add_listener(listener)

    await network.set_online(True)
    assert calls == []

    await network.mark_offline()
    assert not network.is_online()
    assert calls == []

    await network.set_online(True)
    assert calls == ["restored"]


async def test_removed_listener_is_not_called():
    network = NetworkMonitor(online=False)
    calls = []

    async def listener():
        calls.append("restored")

    remove = network.add_listener(listener)
    remove()
    remove()

    await network.set_online(True)
    assert calls == []


async def test_failing_listener_does_not_block_others():
    network = NetworkMonitor(online=False)
    calls = []

    async def broken():
        raise RuntimeError("boom")

    async def healthy():
        calls.append("ok")

    network.add_listener(broken)
    network.add_listener(healthy)

    await network.set_online(True)
    assert calls == ["ok"]
    assert network.is_online()


async def test_watcher_restores_connectivity_when_store_answers():
    network = NetworkMonitor(online=False)
    answers = [False, True]
    restored = []

    async def check():
        return answers.pop(0)

    async def listener():
        restored.append(True)

    network.add_listener(listener)
    watcher = ConnectivityWatcher(network, check)

    assert not await watcher.check_once()
    assert not network.is_online()

    assert await watcher.check_once()
    assert network.is_online()
    assert restored == [True]


async def test_watcher_skips_check_while_online():
    network = NetworkMonitor(online=True)
    checks = []

    async def check():
        checks.append(True)
        return False

    assert await ConnectivityWatcher(network, check).check_once()
    assert checks == []
