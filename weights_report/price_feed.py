import os
import math
import time
import logging
import requests

from weights_report.errors import PriceFetchError, NetworkTimeout

logger = logging.getLogger(__name__)

COINGECKO_URL = "https://api.coingecko.com/api/v3/simple/price"
KUCOIN_URL = "https://api.kucoin.com/api/v1/market/orderbook/level1"

# CoinGecko asset id -> Kucoin trading pair
KUCOIN_SYMBOLS = {
    'bittensor': 'TAO-USDT',
}


class PriceFeed:
    """Spot USD price of the network asset from CoinGecko or Kucoin"""

    def __init__(self, source='coingecko', timeout_seconds=30.0, session=None):
        if source not in ('coingecko', 'kucoin'):
            raise ValueError(f"Unknown price source: {source}")
        self.source = source
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def fetch_spot_price_usd(self, asset_symbol='bittensor'):
        if self.source == 'kucoin':
            price = self._fetch_kucoin(asset_symbol)
        else:
            price = self._fetch_coingecko(asset_symbol)

        if not math.isfinite(price) or price <= 0:
            raise PriceFetchError(f"Invalid {asset_symbol} price from {self.source}: {price}")
        logger.info(f"Retrieved price for {asset_symbol} from {self.source}: {price}")
        return price

    def _get_json(self, url, params=None, headers=None):
        logger.info(f"Fetching price data from: {url}")
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=self.timeout_seconds)
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise NetworkTimeout(f"Timed out after {self.timeout_seconds}s fetching {url}") from e
        except requests.exceptions.RequestException as e:
            raise PriceFetchError(f"Request error fetching price from {url}: {e}") from e

        # Check if response has content before parsing JSON
        if not response.content:
            raise PriceFetchError(f"Empty response from {url}")
        try:
            return response.json()
        except ValueError as e:
            raise PriceFetchError(f"Failed to parse JSON response: {e}, Response content: {response.content[:200]}") from e

    def _fetch_coingecko(self, asset_id):
        headers = {}
        api_key = os.getenv('COINGECKO_API_KEY')
        if api_key:
            headers['x-cg-demo-api-key'] = api_key

        data = self._get_json(COINGECKO_URL, params={'ids': asset_id, 'vs_currencies': 'usd'}, headers=headers)
        if not isinstance(data, dict) or not isinstance(data.get(asset_id), dict):
            raise PriceFetchError(f"Unexpected response format from CoinGecko: {data}")
        return _to_float(data[asset_id].get('usd'), 'CoinGecko')

    def _fetch_kucoin(self, asset_id):
        symbol = KUCOIN_SYMBOLS.get(asset_id, asset_id)
        # Add a timestamp to prevent caching
        data = self._get_json(KUCOIN_URL, params={'symbol': symbol, 't': int(time.time())})

        # Validate the response structure
        if not isinstance(data, dict):
            raise PriceFetchError(f"Unexpected response format from Kucoin API: {type(data)}")
        if data.get('code') != '200000' or 'data' not in data:
            raise PriceFetchError(f"Error response from Kucoin API: {data}")
        price_data = data.get('data')
        if not isinstance(price_data, dict):
            raise PriceFetchError(f"Unexpected price data format: {type(price_data)}")
        return _to_float(price_data.get('price'), 'Kucoin')


def _to_float(value, source):
    if value is None or value == '':
        raise PriceFetchError(f"No price data found in {source} response")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise PriceFetchError(f"Malformed price from {source}: {value!r}") from e
