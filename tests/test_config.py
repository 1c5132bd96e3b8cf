import textwrap

import pytest

from rebalancer.config import build_pairs, load_config, reference_token
from rebalancer.exceptions import ConfigError

CONFIG = textwrap.dedent("""
    system:
      interval_seconds: 30
    tokens:
      SOL: {address: So11111111111111111111111111111111111111112, decimals: 9}
      MBC: {address: 4s41P39cBUsBbVzEuf6TTLsdJGniuLfjKyR4ZEBgNKba, decimals: 9}
      USDC: {address: EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v, decimals: 6}
    reference_token: USDC
    pairs:
      - [SOL, MBC]
    strategy:
      slippage_bps: 30
      rebalance_threshold: 0.25
    jupiter:
      timeout_seconds: 3
""")

ENV = {'SOLANA_RPC_ENDPOINT': 'https://rpc.example.org'}


@pytest.fixture
def config_file(tmp_path):
    def write(text=CONFIG):
        path = tmp_path / "config.yaml"
        path.write_text(text)
        return str(path)
    return write


def test_load_merges_defaults_and_env(config_file):
    config = load_config(config_file(), env=ENV)

    assert config['rpc']['endpoint'] == 'https://rpc.example.org'
    assert config['system']['interval_seconds'] == 30
    assert config['system']['enable_trading'] is False
    assert config['strategy']['slippage_bps'] == 30
    assert config['jupiter']['timeout_seconds'] == 3
    assert config['jupiter']['base_url'] == 'https://lite-api.jup.ag/swap/v1'
    assert config['audit']['trade_log'] == 'logs/trades.csv'


@pytest.mark.parametrize("raw, expected", [("true", True), ("1", True), ("yes", True), ("false", False), ("0", False)])
def test_enable_trading_from_env(config_file, raw, expected):
    config = load_config(config_file(), env={**ENV, 'ENABLE_TRADING': raw})
    assert config['system']['enable_trading'] is expected


def test_wallet_sources_from_env(config_file):
    env = {**ENV, 'USER_KEYPAIR': '~/keys/bot.json', 'USER_MNEMONIC': 'abandon about',
           'USER_DERIVATION_PATH': "m/44'/501'/1'/0'", 'LOG_LEVEL': 'DEBUG'}
    config = load_config(config_file(), env=env)

    assert config['wallet']['keypair_path'].endswith('keys/bot.json')
    assert not config['wallet']['keypair_path'].startswith('~')
    assert config['wallet']['mnemonic'] == 'abandon about'
    assert config['wallet']['derivation_path'] == "m/44'/501'/1'/0'"
    assert config['system']['log_level'] == 'DEBUG'


def test_missing_rpc_endpoint(config_file):
    with pytest.raises(ConfigError, match="SOLANA_RPC_ENDPOINT"):
        load_config(config_file(), env={})


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "nope.yaml"), env=ENV)


def test_invalid_yaml(config_file):
    with pytest.raises(ConfigError):
        load_config(config_file("pairs: [SOL, MBC\n"), env=ENV)


def test_pair_with_unknown_token(config_file):
    with pytest.raises(ConfigError, match="unknown tokens"):
        load_config(config_file(CONFIG.replace("[SOL, MBC]", "[SOL, BONK]")), env=ENV)


def test_threshold_out_of_range(config_file):
    with pytest.raises(ConfigError, match="rebalance_threshold"):
        load_config(config_file(CONFIG.replace("0.25", "1.5")), env=ENV)


def test_missing_section(config_file):
    with pytest.raises(ConfigError, match="pairs"):
        load_config(config_file(CONFIG.replace("pairs:\n  - [SOL, MBC]\n", "")), env=ENV)


def test_build_pairs_and_reference(config_file):
    config = load_config(config_file(), env=ENV)

    pairs = build_pairs(config)
    assert [p.label for p in pairs] == ["SOL/MBC"]
    assert pairs[0].token0.decimals == 9
    assert reference_token(config).symbol == "USDC"
    assert reference_token(config).decimals == 6
