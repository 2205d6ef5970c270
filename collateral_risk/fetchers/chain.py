"""
Chain Fetcher - On-chain lending pool parameters via web3.

Reads from a Compound-style (Fuse) comptroller:
- Liquidation incentive
- Listed markets with collateral factor, underlying token and symbol
And the latest block height used to end the backtest window.

Calls are blocking web3 reads; rpc_call runs them through the dispatcher's
"rpc" budget on a worker thread.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from web3 import Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from ..config.settings import BASE_ASSET_ADDRESS, BASE_ASSET_SYMBOL, ETH_RPC_URL, REQUEST_TIMEOUT_SECONDS
from ..core.dispatcher import RequestDispatcher

logger = logging.getLogger(__name__)

# Minimal ABIs
COMPTROLLER_ABI = [
    {"inputs": [], "name": "liquidationIncentiveMantissa", "outputs": [{"type": "uint256"}], "stateMutability": "view", "type": "function"},
    {"inputs": [], "name": "getAllMarkets", "outputs": [{"type": "address[]"}], "stateMutability": "view", "type": "function"},
    {"inputs": [{"type": "address"}], "name": "markets", "outputs": [{"type": "bool", "name": "isListed"}, {"type": "uint256", "name": "collateralFactorMantissa"}], "stateMutability": "view", "type": "function"},
]

CTOKEN_ABI = [
    {"inputs": [], "name": "underlying", "outputs": [{"type": "address"}], "stateMutability": "view", "type": "function"},
    {"inputs": [], "name": "symbol", "outputs": [{"type": "string"}], "stateMutability": "view", "type": "function"},
]

ERC20_ABI = [
    {"inputs": [], "name": "symbol", "outputs": [{"type": "string"}], "stateMutability": "view", "type": "function"},
]

MANTISSA = 10**18


@dataclass(frozen=True)
class PoolMarket:
    """One listed market of a lending pool."""
    ctoken: str
    underlying: str
    symbol: str
    collateral_factor: float


def get_web3(rpc_url: Optional[str] = None) -> Web3:
    return Web3(Web3.HTTPProvider(rpc_url or ETH_RPC_URL, request_kwargs={"timeout": REQUEST_TIMEOUT_SECONDS}))


def get_latest_block(w3: Web3, lag: int = 2) -> int:
    """Head block minus lag, so subgraphs have indexed it."""
    return w3.eth.block_number - lag


def get_liquidation_incentive(w3: Web3, comptroller: str) -> float:
    """Liquidation bonus as a fraction (1.08e18 mantissa -> 0.08)."""
    contract = w3.eth.contract(address=Web3.to_checksum_address(comptroller), abi=COMPTROLLER_ABI)
    mantissa = contract.functions.liquidationIncentiveMantissa().call()
    return mantissa / MANTISSA - 1


def get_pool_markets(w3: Web3, comptroller: str) -> List[PoolMarket]:
    """
    All listed markets of a comptroller.

    A cToken without underlying() is the native-asset market and is reported
    with the base asset address.
    """
    contract = w3.eth.contract(address=Web3.to_checksum_address(comptroller), abi=COMPTROLLER_ABI)
    markets = []

    for ctoken in contract.functions.getAllMarkets().call():
        is_listed, cf_mantissa = contract.functions.markets(ctoken).call()
        if not is_listed:
            continue

        ctoken_contract = w3.eth.contract(address=ctoken, abi=CTOKEN_ABI)
        try:
            underlying = ctoken_contract.functions.underlying().call()
        except (ContractLogicError, BadFunctionCallOutput):
            underlying = None

        if underlying is None or int(underlying, 16) == 0:
            markets.append(PoolMarket(ctoken, BASE_ASSET_ADDRESS, BASE_ASSET_SYMBOL, cf_mantissa / MANTISSA))
            continue

        token = w3.eth.contract(address=underlying, abi=ERC20_ABI)
        try:
            symbol = token.functions.symbol().call()
        except (ContractLogicError, BadFunctionCallOutput):
            # some tokens return bytes32 symbols
            symbol = "???"
        markets.append(PoolMarket(ctoken, underlying.lower(), symbol, cf_mantissa / MANTISSA))

    logger.info("comptroller %s: %d listed markets", comptroller, len(markets))
    return markets


async def rpc_call(dispatcher: RequestDispatcher, fn: Callable[..., Any], *args) -> Any:
    """Run a blocking web3 read under the "rpc" rate budget."""
    async def operation():
        return await asyncio.to_thread(fn, *args)

    return await dispatcher.submit("rpc", None, operation)
