import asyncio
import pytest

from weights_report.errors import PriceFetchError

HOTKEY_A = "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"
HOTKEY_B = "5FHneW46xGXgs5mUiveU4sbTyGBzmstUspZC92UhjJM694ty"
HOTKEY_C = "5FLSigC9HGRKVhB9FiEo4Y3koPsNmBmLJbpXg2mp1hXcS59Y"
UNKNOWN_HOTKEY = "5DAAnrj7VHTznn2AWBemMuyBwZWs6FNFjdyVXUeYum3PTXFy"


class FakeChainReader:
    """In-memory stand-in for ChainReader, one subnet's worth of storage"""

    def __init__(self, netuid=1, uids=None, pruning_scores=None, incentives=None, emissions=None,
                 subnet_tao=1000, subnet_alpha_in=500, blocks_since_last_step=300, delays=None, errors=None,
                 hotkey_errors=None):
        self.netuid = netuid
        self.uids = uids or {}
        self.pruning_scores_data = pruning_scores if pruning_scores is not None else [0] * 256
        self.incentives_data = incentives if incentives is not None else [0] * 256
        self.emissions_data = emissions if emissions is not None else [0] * 256
        self.subnet_tao_value = subnet_tao
        self.subnet_alpha_in_value = subnet_alpha_in
        self.blocks = blocks_since_last_step
        self.delays = delays or {}
        self.errors = errors or {}
        self.hotkey_errors = hotkey_errors or {}
        self.calls = []
        self.connected = False
        self.disconnected = False

    async def __aenter__(self):
        self.connected = True
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.disconnected = True

    async def _record(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.errors:
            raise self.errors[name]

    async def blocks_since_last_step(self, netuid):
        await self._record('blocks_since_last_step', netuid)
        return self.blocks

    async def subnet_tao(self, netuid):
        await self._record('subnet_tao', netuid)
        return self.subnet_tao_value

    async def subnet_alpha_in(self, netuid):
        await self._record('subnet_alpha_in', netuid)
        return self.subnet_alpha_in_value

    async def uid_for_hotkey(self, netuid, hotkey):
        await self._record('uid_for_hotkey', netuid, hotkey)
        if hotkey in self.delays:
            await asyncio.sleep(self.delays[hotkey])
        if hotkey in self.hotkey_errors:
            raise self.hotkey_errors[hotkey]
        return self.uids.get(hotkey)

    async def pruning_scores(self, netuid):
        await self._record('pruning_scores', netuid)
        return list(self.pruning_scores_data)

    async def incentives(self, netuid):
        await self._record('incentives', netuid)
        return list(self.incentives_data)

    async def emissions(self, netuid):
        await self._record('emissions', netuid)
        return list(self.emissions_data)


class FakePriceFeed:
    def __init__(self, price=300.0, error=None):
        self.price = price
        self.error = error
        self.calls = []

    def fetch_spot_price_usd(self, asset_symbol='bittensor'):
        self.calls.append(asset_symbol)
        if self.error is not None:
            raise self.error
        return self.price


def slots(default=0, **overrides):
    """256 slot array with selected uids overridden: slots(5, u3=100)"""
    values = [default] * 256
    for key, value in overrides.items():
        values[int(key[1:])] = value
    return values


@pytest.fixture
def reader():
    emissions = slots(u0=5_000_000_000, u1=2_500_000_000, u2=1_000_000_000)
    incentives = slots(u0=65535, u1=32000, u2=100)
    return FakeChainReader(
        uids={HOTKEY_A: 0, HOTKEY_B: 1, HOTKEY_C: 2},
        pruning_scores=list(range(256)),
        incentives=incentives,
        emissions=emissions,
    )


@pytest.fixture
def price_feed():
    return FakePriceFeed(300.0)


@pytest.fixture
def failing_price_feed():
    return FakePriceFeed(error=PriceFetchError("HTTP 429"))
