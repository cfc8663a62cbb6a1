import asyncio
import logging
import bittensor as bt

from weights_report.errors import ChainConnectionError, ChainDataError, NetworkTimeout

logger = logging.getLogger(__name__)

SUBTENSOR_MODULE = 'SubtensorModule'


def unwrap(result):
    """Pull the decoded value out of a substrate query result (ScaleObj or raw)"""
    return getattr(result, 'value', result)


class ChainReader:
    """Read-only access to subtensor storage over a single websocket connection.

    Every network call is bounded by `timeout_seconds`; a call that runs over
    raises NetworkTimeout instead of hanging the report.
    """

    def __init__(self, endpoint, timeout_seconds=30.0, subtensor=None):
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self.subtensor = subtensor

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.disconnect()

    async def connect(self):
        if self.subtensor is None:
            try:
                self.subtensor = bt.AsyncSubtensor(network=self.endpoint)
            except Exception as e:
                raise ChainConnectionError(f"Error connecting to subtensor network at {self.endpoint}: {e}") from e
        logger.info(f"Connecting to subtensor at {self.endpoint}")
        try:
            await asyncio.wait_for(self.subtensor.initialize(), self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise NetworkTimeout(f"Timed out after {self.timeout_seconds}s connecting to {self.endpoint}") from e
        except Exception as e:
            raise ChainConnectionError(f"Error connecting to subtensor network at {self.endpoint}: {e}") from e
        logger.info("Connected!")
        return self

    async def disconnect(self):
        if self.subtensor is None:
            return
        try:
            await self.subtensor.close()
        except Exception as e:
            logger.warning(f"Error while closing subtensor connection: {e}")
        finally:
            self.subtensor = None

    async def _query(self, module, method, params):
        if self.subtensor is None:
            raise ChainConnectionError("Chain reader is not connected")
        what = f"{module}.{method}({', '.join(str(p) for p in params)})"
        logger.debug(f"Querying {what}")
        try:
            result = await asyncio.wait_for(
                self.subtensor.substrate.query(module=module, storage_function=method, params=list(params)),
                self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise NetworkTimeout(f"Timed out after {self.timeout_seconds}s reading {what}") from e
        except (ConnectionError, OSError) as e:
            raise ChainConnectionError(f"Lost connection to {self.endpoint} while reading {what}: {e}") from e
        except Exception as e:
            raise ChainDataError(f"Error reading {what}: {e}") from e
        return unwrap(result)

    async def read_scalar(self, module, method, *keys):
        return await self._query(module, method, keys)

    async def read_array(self, module, method, netuid):
        value = await self._query(module, method, [netuid])
        if value is None:
            return []
        if isinstance(value, (str, bytes, dict)) or not hasattr(value, '__iter__'):
            raise ChainDataError(f"Expected a list from {module}.{method}({netuid}), got {type(value).__name__}")
        return [unwrap(item) for item in value]

    # Subnet wide reads

    async def blocks_since_last_step(self, netuid):
        return await self.read_scalar(SUBTENSOR_MODULE, 'BlocksSinceLastStep', netuid)

    async def subnet_tao(self, netuid):
        return await self.read_scalar(SUBTENSOR_MODULE, 'SubnetTAO', netuid)

    async def subnet_alpha_in(self, netuid):
        return await self.read_scalar(SUBTENSOR_MODULE, 'SubnetAlphaIn', netuid)

    # Per participant reads

    async def uid_for_hotkey(self, netuid, hotkey):
        """UID of `hotkey` on `netuid`, or None when the hotkey is not registered"""
        return await self.read_scalar(SUBTENSOR_MODULE, 'Uids', netuid, hotkey)

    async def pruning_scores(self, netuid):
        return await self.read_array(SUBTENSOR_MODULE, 'PruningScores', netuid)

    async def incentives(self, netuid):
        return await self.read_array(SUBTENSOR_MODULE, 'Incentive', netuid)

    async def emissions(self, netuid):
        return await self.read_array(SUBTENSOR_MODULE, 'Emission', netuid)
