import asyncio
import inspect
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch
import pytest

from weights_report.errors import ChainConnectionError, ChainDataError, NetworkTimeout
from weights_report.chain_reader import ChainReader, SUBTENSOR_MODULE, bt, unwrap
from weights_report.pipeline import compute_row, degenerate_row


def scale(value):
    """Mimic the ScaleObj wrapper returned by substrate queries"""
    return SimpleNamespace(value=value)


def make_subtensor(query_result=None, query_side_effect=None):
    subtensor = MagicMock()
    subtensor.initialize = AsyncMock()
    subtensor.close = AsyncMock()
    subtensor.substrate.query = AsyncMock(return_value=query_result, side_effect=query_side_effect)
    return subtensor


def run(coro):
    return asyncio.run(coro)


def test_unwrap_handles_scale_objects_and_raw_values():
    assert unwrap(scale(5)) == 5
    assert unwrap(7) == 7
    assert unwrap(None) is None


def test_read_scalar_passes_keys_as_params():
    subtensor = make_subtensor(scale(42))
    reader = ChainReader("ws://127.0.0.1:9944", subtensor=subtensor)

    async def scenario():
        async with reader:
            return await reader.uid_for_hotkey(19, "5Hotkey")

    assert run(scenario()) == 42
    subtensor.substrate.query.assert_awaited_once_with(
        module=SUBTENSOR_MODULE, storage_function='Uids', params=[19, "5Hotkey"])


def test_unregistered_uid_is_none():
    reader = ChainReader("ws://127.0.0.1:9944", subtensor=make_subtensor(scale(None)))
    assert run(reader.uid_for_hotkey(1, "5Nobody")) is None


def test_read_array_unwraps_items():
    subtensor = make_subtensor(scale([scale(1), 2, scale(3)]))
    reader = ChainReader("ws://127.0.0.1:9944", subtensor=subtensor)
    assert run(reader.emissions(1)) == [1, 2, 3]
    subtensor.substrate.query.assert_awaited_once_with(
        module=SUBTENSOR_MODULE, storage_function='Emission', params=[1])


def test_storage_function_names():
    subtensor = make_subtensor(scale([]))
    reader = ChainReader("ws://127.0.0.1:9944", subtensor=subtensor)

    async def scenario():
        await reader.pruning_scores(3)
        await reader.incentives(3)
        await reader.subnet_tao(3)
        await reader.subnet_alpha_in(3)
        await reader.blocks_since_last_step(3)

    run(scenario())
    names = [call.kwargs['storage_function'] for call in subtensor.substrate.query.await_args_list]
    assert names == ['PruningScores', 'Incentive', 'SubnetTAO', 'SubnetAlphaIn', 'BlocksSinceLastStep']


def test_read_array_of_none_is_empty():
    reader = ChainReader("ws://127.0.0.1:9944", subtensor=make_subtensor(scale(None)))
    assert run(reader.incentives(1)) == []


def test_read_array_rejects_scalars():
    reader = ChainReader("ws://127.0.0.1:9944", subtensor=make_subtensor(scale(12)))
    with pytest.raises(ChainDataError):
        run(reader.pruning_scores(1))


def test_slow_query_raises_network_timeout():
    async def slow_query(**kwargs):
        await asyncio.sleep(1)

    subtensor = make_subtensor(query_side_effect=slow_query)
    reader = ChainReader("ws://127.0.0.1:9944", timeout_seconds=0.01, subtensor=subtensor)
    with pytest.raises(NetworkTimeout):
        run(reader.subnet_tao(1))


def test_dropped_connection_raises_connection_error():
    subtensor = make_subtensor(query_side_effect=ConnectionResetError("socket closed"))
    reader = ChainReader("ws://127.0.0.1:9944", subtensor=subtensor)
    with pytest.raises(ChainConnectionError):
        run(reader.subnet_tao(1))


def test_query_failure_raises_chain_data_error():
    subtensor = make_subtensor(query_side_effect=ValueError("Storage function not found"))
    reader = ChainReader("ws://127.0.0.1:9944", subtensor=subtensor)
    with pytest.raises(ChainDataError):
        run(reader.subnet_tao(1))


def test_query_without_connection_fails():
    reader = ChainReader("ws://127.0.0.1:9944")
    with pytest.raises(ChainConnectionError):
        run(reader.subnet_tao(1))


def test_connect_creates_async_subtensor():
    subtensor = make_subtensor()
    with patch('weights_report.chain_reader.bt.AsyncSubtensor', return_value=subtensor) as factory:
        reader = ChainReader("wss://entrypoint-finney.opentensor.ai:443")
        run(reader.connect())
    factory.assert_called_once_with(network="wss://entrypoint-finney.opentensor.ai:443")
    subtensor.initialize.assert_awaited_once()


def test_unreachable_endpoint_raises_connection_error():
    subtensor = make_subtensor()
    subtensor.initialize.side_effect = OSError("Connection refused")
    reader = ChainReader("ws://127.0.0.1:1", subtensor=subtensor)
    with pytest.raises(ChainConnectionError):
        run(reader.connect())


def test_bad_network_name_raises_connection_error():
    with patch('weights_report.chain_reader.bt.AsyncSubtensor', side_effect=ValueError("bad network")):
        with pytest.raises(ChainConnectionError):
            run(ChainReader("nonsense").connect())


def test_context_manager_disconnects_on_error():
    subtensor = make_subtensor(query_side_effect=ValueError("boom"))
    reader = ChainReader("ws://127.0.0.1:9944", subtensor=subtensor)

    async def scenario():
        async with reader:
            await reader.subnet_tao(1)

    with pytest.raises(ChainDataError):
        run(scenario())
    subtensor.close.assert_awaited_once()
    assert reader.subtensor is None


def test_close_errors_are_not_raised():
    subtensor = make_subtensor()
    subtensor.close.side_effect = RuntimeError("already closed")
    reader = ChainReader("ws://127.0.0.1:9944", subtensor=subtensor)
    run(reader.disconnect())
    assert reader.subtensor is None


def test_installed_bittensor_provides_async_subtensor():
    # Not patched: checks the installed bittensor still has the API connect() relies on
    assert hasattr(bt, 'AsyncSubtensor')
    assert 'network' in inspect.signature(bt.AsyncSubtensor).parameters
    for name in ('initialize', 'close'):
        assert inspect.iscoroutinefunction(getattr(bt.AsyncSubtensor, name))


def test_undecodable_hotkey_gives_degenerate_row():
    async def query(module, storage_function, params):
        if storage_function == 'Uids' and params[1] == 'typo-hotkey':
            raise ValueError("Invalid SS58 address")
        return scale(3 if storage_function == 'Uids' else [10**9] * 256)

    reader = ChainReader("ws://127.0.0.1:9944", subtensor=make_subtensor(query_side_effect=query))
    assert run(compute_row(reader, 1, 'typo-hotkey', 2.0, 300.0)) == degenerate_row('typo-hotkey')
    assert run(compute_row(reader, 1, "5Hotkey", 2.0, 300.0)).uid == 3
