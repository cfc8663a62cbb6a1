import os
import json
import math
import logging
from dataclasses import dataclass, field, asdict
from dotenv import load_dotenv

from weights_report.errors import ConfigError

logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

DEFAULT_CONFIG_PATH = '.weights_config.json'
DEFAULT_ENDPOINT = "wss://entrypoint-finney.opentensor.ai:443"
#DEFAULT_ENDPOINT = "ws://127.0.0.1:9944"
DEFAULT_NETUID = 1
DEFAULT_HOTKEYS = {
    1: [
        "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"
    ],
}
PRICE_SOURCES = ('coingecko', 'kucoin')


@dataclass(frozen=True)
class ProtocolParams:
    """Subnet protocol constants used by the report.

    These are fixed for a run. Each of them could be read from chain
    (Tempo, block time) in a more thorough implementation.
    """
    epoch_length: int = 361           # blocks per epoch (tempo + 1)
    block_interval_seconds: int = 12  # BLOCK_TIME
    epochs_per_day: int = 20          # target cadence, not derived from epoch_length
    rao_per_unit: float = 1e9         # raw emission units per alpha
    pruning_risk_threshold: int = 10  # fewer lower scores than this => High risk
    max_uids: int = 256


@dataclass
class ReportConfig:
    netuid: int = DEFAULT_NETUID
    endpoint: str = DEFAULT_ENDPOINT
    hotkeys: dict = field(default_factory=lambda: {k: list(v) for k, v in DEFAULT_HOTKEYS.items()})
    price_source: str = 'coingecko'
    timeout_seconds: float = 30.0
    max_concurrency: int = 8
    protocol: ProtocolParams = field(default_factory=ProtocolParams)

    @property
    def subnet_hotkeys(self):
        """Hotkeys configured for the selected netuid, in configured order"""
        return list(self.hotkeys.get(self.netuid, []))

    def validate(self):
        if self.price_source not in PRICE_SOURCES:
            raise ConfigError(f"Unknown price source '{self.price_source}', expected one of {', '.join(PRICE_SOURCES)}")
        if self.timeout_seconds <= 0:
            raise ConfigError(f"timeout_seconds must be positive, got {self.timeout_seconds}")
        if self.max_concurrency < 1:
            raise ConfigError(f"max_concurrency must be at least 1, got {self.max_concurrency}")
        if not self.endpoint:
            raise ConfigError("No subtensor endpoint configured")
        if not self.subnet_hotkeys:
            raise ConfigError(f"No hotkeys configured for netuid {self.netuid}")
        return self

    def to_dict(self):
        data = asdict(self)
        data['hotkeys'] = {str(k): v for k, v in self.hotkeys.items()}
        return data


def split_hotkeys(value):
    """Split a comma separated hotkey string, dropping blanks"""
    if not value:
        return []
    return [key.strip() for key in value.split(',') if key.strip()]


def parse_netuid(value):
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid netuid: {value!r}")


def parse_hotkeys_mapping(raw):
    """Normalize the JSON hotkeys section into {netuid: [hotkey, ...]}.

    JSON object keys are always strings, so "1" becomes 1. A bare list is
    accepted too and is returned under the key None, meaning "whatever
    netuid is selected".
    """
    if isinstance(raw, list):
        return {None: [str(key).strip() for key in raw if str(key).strip()]}
    if not isinstance(raw, dict):
        raise ConfigError(f"'hotkeys' must be an object or a list, got {type(raw).__name__}")

    mapping = {}
    for netuid, keys in raw.items():
        if isinstance(keys, str):
            keys = split_hotkeys(keys)
        if not isinstance(keys, list):
            raise ConfigError(f"Hotkeys for netuid {netuid} must be a list")
        mapping[parse_netuid(netuid)] = [str(key).strip() for key in keys if str(key).strip()]
    return mapping


def parse_protocol(raw):
    if raw is None:
        return ProtocolParams()
    if not isinstance(raw, dict):
        raise ConfigError("'protocol' must be an object")
    known = set(ProtocolParams.__dataclass_fields__)
    unknown = set(raw) - known
    if unknown:
        raise ConfigError(f"Unknown protocol parameters: {', '.join(sorted(unknown))}")
    for name, value in raw.items():
        # bool is an int subclass, reject it explicitly
        numeric = (int, float) if name == 'rao_per_unit' else (int,)
        if isinstance(value, bool) or not isinstance(value, numeric) or not math.isfinite(value) or value <= 0:
            raise ConfigError(f"Protocol parameter {name} must be a positive number, got {value!r}")
    return ProtocolParams(**raw)


def parse_number(value, cast, name):
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid {name}: {value!r}")


def read_config_file(path):
    """Load the JSON config file. Returns None when the file does not exist"""
    if not os.path.exists(path):
        return None
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Error loading configuration from {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration in {path} must be a JSON object")
    return data


def write_example_config(path):
    """Write an example configuration file and return its contents"""
    example_config = {
        "netuid": DEFAULT_NETUID,
        "endpoint": DEFAULT_ENDPOINT,
        "price_source": "coingecko",
        "timeout_seconds": 30,
        "max_concurrency": 8,
        "hotkeys": {str(k): v for k, v in DEFAULT_HOTKEYS.items()},
        "protocol": asdict(ProtocolParams()),
    }
    with open(path, 'w') as f:
        json.dump(example_config, f, indent=2)
    logger.info(f"Example configuration created at {path}")
    logger.info("Please edit this file with your subnet and hotkeys and run again.")
    return example_config


def build_config(file_data=None, env=None, overrides=None):
    """Merge defaults, the JSON config file, environment and CLI overrides.

    Precedence, highest first: overrides (CLI), env, file, defaults.
    `overrides` may carry netuid, endpoint, hotkeys (list), price_source and
    timeout_seconds; None values are ignored.
    """
    file_data = file_data or {}
    env = os.environ if env is None else env
    overrides = {k: v for k, v in (overrides or {}).items() if v is not None}

    config = ReportConfig()

    # JSON config file
    if 'netuid' in file_data:
        config.netuid = parse_netuid(file_data['netuid'])
    if 'endpoint' in file_data:
        config.endpoint = str(file_data['endpoint'])
    bare_hotkeys = []
    if 'hotkeys' in file_data:
        mapping = parse_hotkeys_mapping(file_data['hotkeys'])
        bare_hotkeys = mapping.pop(None, [])
        config.hotkeys = mapping
    if 'price_source' in file_data:
        config.price_source = str(file_data['price_source']).lower()
    if 'timeout_seconds' in file_data:
        config.timeout_seconds = parse_number(file_data['timeout_seconds'], float, 'timeout_seconds')
    if 'max_concurrency' in file_data:
        config.max_concurrency = parse_number(file_data['max_concurrency'], int, 'max_concurrency')
    config.protocol = parse_protocol(file_data.get('protocol'))

    # Environment
    if env.get('NETUID'):
        config.netuid = parse_netuid(env['NETUID'])
    if env.get('SUBTENSOR_ENDPOINT'):
        config.endpoint = env['SUBTENSOR_ENDPOINT']
    env_hotkeys = split_hotkeys(env.get('HOTKEYS', ''))

    # CLI
    if 'netuid' in overrides:
        config.netuid = parse_netuid(overrides['netuid'])
    if 'endpoint' in overrides:
        config.endpoint = overrides['endpoint']
    if 'price_source' in overrides:
        config.price_source = overrides['price_source'].lower()
    if 'timeout_seconds' in overrides:
        config.timeout_seconds = parse_number(overrides['timeout_seconds'], float, 'timeout_seconds')

    # Hotkeys given on the CLI or in env apply to the selected netuid
    cli_hotkeys = overrides.get('hotkeys') or []
    if cli_hotkeys:
        config.hotkeys[config.netuid] = list(cli_hotkeys)
    elif env_hotkeys:
        config.hotkeys[config.netuid] = env_hotkeys
    elif bare_hotkeys:
        config.hotkeys[config.netuid] = bare_hotkeys

    return config.validate()
