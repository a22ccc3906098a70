"""Transfer rail clients: the ledger protocol and its web3.py ERC-20 implementation."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

from eth_account import Account
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import ContractLogicError

from ticket_lottery.blockchain.contracts import ERC20_ABI
from ticket_lottery.utils.config import get_config_value
from ticket_lottery.utils.logger import get_logger

logger = get_logger(__name__)


class LedgerClient(Protocol):
    async def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        ...

    async def balance_of(self, address: str) -> int:
        ...


class TokenLedgerClient:
    """Async-friendly wrapper around an ERC-20 token contract.

    The operator account is the lottery's own account. Payouts use
    `transfer`; ticket payments pull from the player with `transferFrom`, so
    players must approve the operator account beforehand.
    """

    def __init__(self, config: Dict[str, Any]):
        ledger_cfg = config.get("ledger", {})
        self.rpc_url: str = ledger_cfg.get("rpc_url", "http://127.0.0.1:8545")
        try:
            self.rpc_timeout: float = float(ledger_cfg.get("rpc_timeout", 10.0))
        except (TypeError, ValueError):
            self.rpc_timeout = 10.0
        self.chain_id: int = int(ledger_cfg.get("chain_id", 31337))
        self.token_address: Optional[str] = ledger_cfg.get("token_address")
        self.tx_timeout: int = int(ledger_cfg.get("tx_timeout_seconds", 180))

        self._w3: Optional[Web3] = None
        self._contract: Optional[Contract] = None

        private_key = ledger_cfg.get("operator_private_key")
        self.account = Account.from_key(private_key) if private_key else None
        if self.account:
            logger.info("Operator account loaded: %s", self.account.address)

        self._gas_price_override: Optional[int] = None
        gas_price_setting = ledger_cfg.get("gas_price")
        if gas_price_setting:
            self._gas_price_override = Web3.to_wei(Decimal(str(gas_price_setting)), "gwei")
        self._gas_multiplier = float(ledger_cfg.get("gas_multiplier", 1.15))

    async def initialize(self) -> None:
        """Establish the RPC connection and bind the token contract."""
        self._w3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.rpc_timeout}))
        connected = await asyncio.to_thread(self._w3.is_connected)
        if not connected:  # pragma: no cover - depends on live RPC
            raise ConnectionError(f"Failed to connect to RPC at {self.rpc_url}")
        logger.info("Connected to RPC %s (chain id %s)", self.rpc_url, self.chain_id)

        if not self.token_address:
            raise ValueError("ledger.token_address is required for the web3 backend")
        address = Web3.to_checksum_address(self.token_address)
        self._contract = self._w3.eth.contract(address=address, abi=ERC20_ABI)
        logger.info("Token contract bound at %s", address)

    async def close(self) -> None:
        self._contract = None
        self._w3 = None

    @property
    def operator_address(self) -> Optional[str]:
        return self.account.address if self.account else None

    def _ensure_contract(self) -> Contract:
        if not self._contract:
            raise RuntimeError("Token contract not initialised")
        return self._contract

    def _ensure_web3(self) -> Web3:
        if not self._w3:
            raise RuntimeError("Web3 provider not initialised")
        return self._w3

    async def balance_of(self, address: str) -> int:
        contract = self._ensure_contract()
        target = Web3.to_checksum_address(address)

        def _call() -> int:
            return int(contract.functions.balanceOf(target).call())

        return await asyncio.to_thread(_call)

    async def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """Move `amount` tokens; returns False when the contract rejects it."""
        if not self.account:
            raise ValueError("Operator account not configured")
        to_addr = Web3.to_checksum_address(recipient)
        from_addr = Web3.to_checksum_address(sender)
        try:
            if from_addr == self.account.address:
                tx_hash = await self._send_transaction("transfer", to_addr, amount)
            else:
                tx_hash = await self._send_transaction("transferFrom", from_addr, to_addr, amount)
        except ContractLogicError as exc:
            logger.warning("Token transfer %s -> %s (%d) reverted: %s", from_addr, to_addr, amount, exc)
            return False
        receipt = await self.wait_for_transaction(tx_hash, timeout=self.tx_timeout)
        return receipt["status"] == 1

    async def _send_transaction(self, function_name: str, *args) -> str:
        contract = self._ensure_contract()
        w3 = self._ensure_web3()
        account = self.account

        def _send() -> str:
            tx_function = getattr(contract.functions, function_name)(*args)
            gas_estimate = tx_function.estimate_gas({"from": account.address})
            gas_price = self._gas_price_override or w3.eth.gas_price
            txn = tx_function.build_transaction(
                {
                    "from": account.address,
                    "gas": int(gas_estimate * self._gas_multiplier),
                    "gasPrice": gas_price,
                    "nonce": w3.eth.get_transaction_count(account.address),
                    "chainId": self.chain_id,
                }
            )
            signed = account.sign_transaction(txn)
            raw = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction")
            return Web3.to_hex(w3.eth.send_raw_transaction(raw))

        tx_hash = await asyncio.to_thread(_send)
        logger.info("Sent transaction %s for %s", tx_hash, function_name)
        return tx_hash

    async def wait_for_transaction(self, tx_hash: str, timeout: int = 180) -> Dict[str, Any]:
        w3 = self._ensure_web3()

        def _wait():
            receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
            return {
                "status": int(receipt["status"]),
                "blockNumber": int(receipt["blockNumber"]),
                "gasUsed": int(receipt["gasUsed"]),
            }

        return await asyncio.to_thread(_wait)

    async def health_check(self) -> Dict[str, Any]:
        try:
            w3 = self._ensure_web3()
            latest_block = await asyncio.to_thread(lambda: int(w3.eth.block_number))
            return {"status": "healthy", "backend": "web3", "latestBlock": latest_block}
        except Exception as exc:  # pragma: no cover - health failures are diagnostic
            logger.exception("Ledger health check failed")
            return {"status": "error", "backend": "web3", "detail": str(exc)}


async def build_ledger(config: Dict[str, Any]):
    """Create and initialise the ledger selected by `ledger.backend`."""
    backend = str(get_config_value(config, "ledger.backend", "memory")).lower()
    if backend == "memory":
        from ticket_lottery.blockchain.memory import InMemoryLedger
        from ticket_lottery.utils.common import derive_address

        ledger = InMemoryLedger()
        supply = int(get_config_value(config, "ledger.initial_supply", 0))
        if supply:
            ledger.mint(derive_address(get_config_value(config, "ledger.lottery_address")), supply)
        return ledger
    if backend == "web3":
        ledger = TokenLedgerClient(config)
        await ledger.initialize()
        return ledger
    raise ValueError(f"Unknown ledger backend '{backend}'")
