# main.py
import asyncio
import sys
from typing import Dict, List

import questionary
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from rebalancer.config import build_pairs, load_config, reference_token
from rebalancer.decision_engine import RebalanceEngine
from rebalancer.exceptions import ConfigError, WalletError
from rebalancer.execution import ExecutionService
from rebalancer.inventory import InventoryEngine
from rebalancer.jupiter import JupiterClient
from rebalancer.ledger import SolanaLedger
from rebalancer.logger import AsyncAuditLogger, setup_console_logger
from rebalancer.models import PairSnapshot, TokenPair
from rebalancer.strategy import RebalanceStrategy
from rebalancer.transaction_sender import SenderSettings, TransactionSender
from rebalancer.wallet import load_keypair

# --- UI HELPER FUNCTIONS ---

def startup_selection(config: dict, pairs: List[TokenPair]) -> List[TokenPair]:
    """Interactive CLI to select pairs and confirm live trading."""
    if not sys.stdin.isatty():
        return pairs

    print("\n⚖️  SOLANA REBALANCER \n")
    labels = [p.label for p in pairs]
    choices = [questionary.Choice(label, checked=True) for label in labels]
    chosen = questionary.checkbox("Select pairs to rebalance:", choices=choices).ask()
    if not chosen:
        print("No pairs selected. Exiting.")
        sys.exit()

    if config['system']['enable_trading']:
        go_live = questionary.confirm("ENABLE_TRADING is on: swaps will be signed and sent. Continue?", default=False).ask()
        if not go_live:
            print("Live trading not confirmed. Exiting.")
            sys.exit()

    return [p for p in pairs if p.label in chosen]


def generate_dashboard(snapshots: Dict[str, PairSnapshot], enable_trading: bool):
    """
    Builds the Rich table of the last evaluation of every pair.
    """
    table = Table(title="⚖️  Pair Balances")
    table.add_column("Pair", style="cyan")
    table.add_column("Balance 0", justify="right")
    table.add_column("Balance 1", justify="right")
    table.add_column("Value 0 (USD)", justify="right", style="green")
    table.add_column("Value 1 (USD)", justify="right", style="green")
    table.add_column("Split", justify="right")
    table.add_column("Decision", style="yellow")
    table.add_column("Last", style="magenta")

    for label, snap in snapshots.items():
        total = snap.value0 + snap.value1
        split = f"{snap.value0 / total * 100:.1f}% / {snap.value1 / total * 100:.1f}%" if total > 0 else "-"
        table.add_row(
            label,
            f"{snap.balance0:.4f} {snap.pair.token0.symbol}",
            f"{snap.balance1:.4f} {snap.pair.token1.symbol}",
            f"${snap.value0:,.2f}",
            f"${snap.value1:,.2f}",
            split,
            snap.decision.direction if snap.decision and snap.decision.trade_needed else "hold",
            snap.last_status,
        )

    mode = "[bold red]LIVE TRADING[/bold red]" if enable_trading else "[bold blue]DRY RUN[/bold blue]"
    return Panel(table, subtitle=mode)

# --- MAIN CONTROLLER ---

class RebalancerBot:
    def __init__(self, config: dict, pairs: List[TokenPair]):
        self.config = config
        self.pairs = pairs
        self.logger = setup_console_logger("Rebalancer", config['system']['log_level'])
        self.audit_log = AsyncAuditLogger(config['audit']['trade_log'], self.logger)

        wallet_cfg = config['wallet']
        self.keypair = load_keypair(
            keypair_path=wallet_cfg.get('keypair_path'),
            private_key=wallet_cfg.get('private_key'),
            mnemonic=wallet_cfg.get('mnemonic'),
            derivation_path=wallet_cfg.get('derivation_path'),
        )
        self.owner = str(self.keypair.pubkey())

        jup_cfg = config['jupiter']
        self.ledger = SolanaLedger(config['rpc']['endpoint'], self.logger)
        self.jupiter = JupiterClient(self.owner, self.logger,
                                     base_url=jup_cfg['base_url'],
                                     timeout=float(jup_cfg['timeout_seconds']))
        sender = TransactionSender(self.ledger, self.logger, SenderSettings.from_config(config['sender']))
        self.strategy = RebalanceStrategy(
            config=config,
            pairs=pairs,
            reference=reference_token(config),
            inventory=InventoryEngine(self.ledger, self.owner, self.logger),
            jupiter=self.jupiter,
            engine=RebalanceEngine(config, self.logger),
            execution=ExecutionService(self.ledger, self.keypair, sender, self.logger),
            logger=self.logger,
            audit_logger=self.audit_log,
        )

    async def run(self) -> int:
        try:
            self.logger.info(f"Rebalancer PubKey: {self.owner}")
            if not await self.ledger.initialize():
                print("❌ Diagnostic Failed. Check SOLANA_RPC_ENDPOINT.")
                return 1

            if not self.config['system']['enable_trading']:
                self.logger.warning("ENABLE_TRADING is not set. Trades will only be logged.")

            await self.audit_log.start()
            await self.jupiter.start()

            console = Console()
            with Live(console=console, refresh_per_second=1) as live:
                await self.strategy.run(on_cycle=lambda: live.update(
                    generate_dashboard(self.strategy.snapshots, self.strategy.enable_trading)))
            return 0
        finally:
            print("Shutting down resources...")
            await self.audit_log.stop()
            await self.jupiter.close()
            await self.ledger.shutdown()


def main() -> int:
    try:
        config = load_config("config.yaml")
    except ConfigError as e:
        print(f"FATAL: {e}", file=sys.stderr)
        return 1

    try:
        pairs = startup_selection(config, build_pairs(config))
        bot = RebalancerBot(config, pairs)
    except WalletError as e:
        print(f"FATAL: {e}", file=sys.stderr)
        return 1

    try:
        import uvloop
        asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
    except ImportError:
        pass
    return asyncio.run(bot.run())


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n🛑 Bot Stopped by User.")
        sys.exit()
