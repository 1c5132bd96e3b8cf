# rebalancer/config.py
import os
from typing import Dict, List, Mapping, Optional

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigError
from .models import TokenDescriptor, TokenPair

REQUIRED_SECTIONS = ('system', 'tokens', 'reference_token', 'pairs', 'strategy', 'jupiter')

DEFAULTS = {
    'system': {'interval_seconds': 60, 'log_level': 'INFO', 'enable_trading': False},
    'strategy': {'slippage_bps': 50, 'rebalance_threshold': 0.5, 'min_trade_value_usd': 0},
    'jupiter': {
        'base_url': 'https://lite-api.jup.ag/swap/v1',
        'timeout_seconds': 10,
        'priority_fee_lamports': 200000,
        'wrap_and_unwrap_sol': True,
        'fee_account': None,
    },
    'sender': {},
    'audit': {'trade_log': 'logs/trades.csv'},
    'rpc': {'endpoint': None},
    'wallet': {},
}


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def apply_env(config: dict, env: Mapping[str, str]) -> dict:
    """
    Environment wins over the YAML file for secrets and deploy switches.
    """
    if env.get('SOLANA_RPC_ENDPOINT'):
        config['rpc']['endpoint'] = env['SOLANA_RPC_ENDPOINT']
    if 'ENABLE_TRADING' in env:
        config['system']['enable_trading'] = _parse_bool(env['ENABLE_TRADING'])
    if env.get('LOG_LEVEL'):
        config['system']['log_level'] = env['LOG_LEVEL']

    wallet = config['wallet']
    if env.get('USER_KEYPAIR'):
        wallet['keypair_path'] = os.path.expanduser(env['USER_KEYPAIR'])
    if env.get('USER_PRIVATE_KEY'):
        wallet['private_key'] = env['USER_PRIVATE_KEY']
    if env.get('USER_MNEMONIC'):
        wallet['mnemonic'] = env['USER_MNEMONIC']
    if env.get('USER_DERIVATION_PATH'):
        wallet['derivation_path'] = env['USER_DERIVATION_PATH']
    return config


def validate(config: dict) -> dict:
    for section in REQUIRED_SECTIONS:
        if section not in config or config[section] in (None, {}, []):
            raise ConfigError(f"missing config section '{section}'")

    if not config['rpc'].get('endpoint'):
        raise ConfigError("SOLANA_RPC_ENDPOINT is not set")

    for symbol, token_cfg in config['tokens'].items():
        if not isinstance(token_cfg, dict) or 'address' not in token_cfg or 'decimals' not in token_cfg:
            raise ConfigError(f"token '{symbol}' needs an address and decimals")
        if not isinstance(token_cfg['decimals'], int) or token_cfg['decimals'] < 0:
            raise ConfigError(f"token '{symbol}' has invalid decimals {token_cfg['decimals']!r}")

    known = set(config['tokens'])
    if config['reference_token'] not in known:
        raise ConfigError(f"reference token '{config['reference_token']}' is not in tokens")
    for pair in config['pairs']:
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise ConfigError(f"pair {pair!r} must list exactly two token symbols")
        missing = [s for s in pair if s not in known]
        if missing:
            raise ConfigError(f"pair {pair!r} references unknown tokens {missing}")
        if pair[0] == pair[1]:
            raise ConfigError(f"pair {pair!r} trades a token against itself")

    threshold = float(config['strategy']['rebalance_threshold'])
    if not 0 <= threshold <= 1:
        raise ConfigError(f"rebalance_threshold must be within [0, 1], got {threshold}")
    if float(config['system']['interval_seconds']) <= 0:
        raise ConfigError("interval_seconds must be positive")
    return config


def load_config(path: str = "config.yaml", env: Optional[Mapping[str, str]] = None) -> dict:
    """
    Reads the YAML config, fills defaults, overlays environment values
    (a .env file is honoured) and validates the result.
    Raises ConfigError on anything missing or malformed.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    try:
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e

    config: Dict[str, object] = {}
    for section, defaults in DEFAULTS.items():
        merged = dict(defaults)
        merged.update(raw.get(section) or {})
        config[section] = merged
    for key, value in raw.items():
        if key not in DEFAULTS:
            config[key] = value

    return validate(apply_env(config, env))


def build_tokens(config: dict) -> Dict[str, TokenDescriptor]:
    return {
        symbol: TokenDescriptor(address=token_cfg['address'], symbol=symbol, decimals=token_cfg['decimals'])
        for symbol, token_cfg in config['tokens'].items()
    }


def build_pairs(config: dict) -> List[TokenPair]:
    tokens = build_tokens(config)
    return [TokenPair(tokens[a], tokens[b]) for a, b in config['pairs']]


def reference_token(config: dict) -> TokenDescriptor:
    return build_tokens(config)[config['reference_token']]
