class ReportError(Exception):
    """Base class for every error that aborts a weights report run"""


class ChainConnectionError(ReportError):
    """Could not open (or keep) the websocket connection to the subtensor node"""


class PriceFetchError(ReportError):
    """Spot price for TAO was not available or the payload was malformed"""


class ChainDataError(ReportError):
    """A subnet-wide on-chain value was missing or unusable"""


class NetworkTimeout(ReportError):
    """A single chain read or price request took longer than the configured timeout"""


class ConfigError(ReportError):
    pass
