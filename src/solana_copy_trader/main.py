"""Entrypoint for the Solana copy-trading webhook service."""

from __future__ import annotations

import argparse
from typing import Optional

import uvicorn

from .config.settings import AppConfig, AppMode, get_app_config
from .execution.executor import TransactionExecutor
from .execution.solana_client import SolanaClient
from .execution.swap_builder import JupiterSwapBuilder
from .execution.wallet import Wallet, load_wallet
from .ingestion.market_data import JupiterMarketData
from .monitoring import bootstrap_observability
from .monitoring.logger import get_logger
from .orchestration.pipeline import CopyTradeOrchestrator
from .server.app import create_app
from .strategy.safety import SafetyGate
from .strategy.sizing import TradeSizer


def build_orchestrator(config: AppConfig) -> CopyTradeOrchestrator:
    """Wire the production collaborators for ``config``."""

    logger = get_logger(__name__)
    wallet: Optional[Wallet] = None
    if config.wallet.private_key or config.wallet.keypair_path:
        wallet = load_wallet(config.wallet)
    elif not config.dry_run:
        raise ValueError("Live mode requires WALLET__PRIVATE_KEY or WALLET__KEYPAIR_PATH")
    operator_address = wallet.address if wallet else config.wallet.operator_wallet_address

    chain_client = SolanaClient(wallet, config.rpc, config.execution)
    market_data = JupiterMarketData(config.market_data, config.execution)
    gate = SafetyGate(market_data, config.safety)
    executor: Optional[TransactionExecutor] = None
    if wallet is not None:
        executor = TransactionExecutor(
            chain_client,
            JupiterSwapBuilder(config.market_data, config.execution),
            wallet.public_key,
            config.execution,
        )
    logger.info(
        "Copy trader configured: mode=%s tracked=%s operator=%s",
        config.mode.active.value,
        config.wallet.tracked_wallet_address,
        operator_address,
    )
    return CopyTradeOrchestrator(
        safety_gate=gate,
        chain_client=chain_client,
        executor=executor,
        config=config,
        sizer=TradeSizer(config.trading),
        operator_address=operator_address,
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the Solana copy-trading webhook service")
    parser.add_argument("--dry-run", action="store_true", default=False)
    parser.add_argument("--host", help="Override the listen host")
    parser.add_argument("--port", type=int, help="Override the listen port")
    args = parser.parse_args()

    config = get_app_config()
    if args.dry_run:
        mode = config.mode.model_copy(update={"active": AppMode.DRY_RUN})
        config = config.model_copy(update={"mode": mode})
    bootstrap_observability(config=config)
    app = create_app(build_orchestrator(config), config)
    host = args.host or config.server.host
    port = args.port or config.server.port
    uvicorn.run(app, host=host, port=port, log_level=config.monitoring.log_level.lower())


if __name__ == "__main__":
    main()
