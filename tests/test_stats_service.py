"""
Stats Service Scheduling Tests
"""

import asyncio
import threading
import time

from bridgestats.config import load_config, INTERVAL_VARIABLES
from bridgestats.processors.stats_service import StatsService, build_passes

from conftest import FakeChainClient, RecordingAlertSink


async def wait_for(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            raise AssertionError('condition not reached')
        await asyncio.sleep(0.01)


def test_each_pass_runs_until_stopped():
    calls = {'a': 0, 'b': 0}

    def make(name):
        def run():
            calls[name] += 1
            return {'pass': name}
        return run

    async def scenario():
        service = StatsService({'a': (make('a'), 0.01), 'b': (make('b'), 3600)})
        service.start()
        await wait_for(lambda: calls['a'] >= 3 and calls['b'] >= 1)
        await service.stop()
        return service

    service = asyncio.run(scenario())

    # The long interval pass ran once and then waited on the stop event
    assert calls['b'] == 1
    assert service.run_counts['a'] >= 3
    assert all(task.done() for task in service.tasks)


def test_failing_pass_keeps_its_loop_alive():
    calls = []

    def broken():
        calls.append(1)
        raise RuntimeError('database locked')

    async def scenario():
        service = StatsService({'broken': (broken, 0.01)})
        service.start()
        await wait_for(lambda: len(calls) >= 3)
        await service.stop()
        return service

    service = asyncio.run(scenario())

    assert service.error_counts['broken'] >= 3
    assert service.run_counts['broken'] == 0


def test_stop_waits_for_in_flight_pass():
    started = threading.Event()
    finished = []

    def slow():
        started.set()
        time.sleep(0.2)
        finished.append(True)

    async def scenario():
        service = StatsService({'slow': (slow, 3600)})
        service.start()
        await wait_for(started.is_set)
        await service.stop()

    asyncio.run(scenario())

    assert finished == [True]


def test_from_config_schedules_every_pass(db_manager):
    env = {variable: str(i + 1) for i, variable in enumerate(INTERVAL_VARIABLES.values())}
    env['ALERT_WEBHOOK_URL'] = 'https://hooks.example.com'
    config = load_config(env)

    service = StatsService.from_config(
        config, db_manager, chain_client=FakeChainClient(), alert_sink=RecordingAlertSink()
    )

    assert set(service.schedule) == set(INTERVAL_VARIABLES)
    for i, name in enumerate(INTERVAL_VARIABLES):
        assert service.schedule[name][1] == i + 1


def test_run_returns_after_stop(db_manager):
    ran = threading.Event()

    async def scenario():
        service = StatsService({'once': (ran.set, 3600)})
        runner = asyncio.create_task(service.run())
        await wait_for(ran.is_set)
        await service.stop()
        await asyncio.wait_for(runner, timeout=5)

    asyncio.run(scenario())
    assert ran.is_set()


def test_chain_reading_passes_get_their_own_client(db_manager):
    env = {variable: '60' for variable in INTERVAL_VARIABLES.values()}
    env['ALERT_WEBHOOK_URL'] = 'https://hooks.example.com'
    config = load_config(env)

    passes = build_passes(config, db_manager, alert_sink=RecordingAlertSink())

    clients = [passes[name].chain_client for name in ('token_statistics', 'token_balances', 'reserve_check')]
    assert len({id(client) for client in clients}) == 3
    assert len({id(client.session) for client in clients}) == 3
