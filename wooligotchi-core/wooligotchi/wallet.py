"""
Wallet collaborator: owner identity, message signing, chain time and the
ERC-721 collateral transfer that buys a life.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, cast

from web3 import Web3
from web3.exceptions import ContractLogicError
from web3.middleware import ExtraDataToPOAMiddleware
from web3.types import TxParams

from .constants import DEFAULT_CHAIN_ID, DEFAULT_NFT_CONTRACT
from .signed_request import LocalKeySigner

logger = logging.getLogger(__name__)

ERC721_TRANSFER_ABI = [
    {
        "inputs": [
            {"internalType": "address", "name": "from", "type": "address"},
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "tokenId", "type": "uint256"},
        ],
        "name": "safeTransferFrom",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "uint256", "name": "tokenId", "type": "uint256"}],
        "name": "ownerOf",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
]

DEFAULT_RECEIPT_TIMEOUT_SECONDS = 120.0


class WalletError(Exception):
    """A wallet operation could not be completed."""


class WalletCollaborator(Protocol):
    """What the game core needs from a connected wallet."""

    @property
    def address(self) -> str: ...

    @property
    def network_id(self) -> int: ...

    def sign_message(self, message: str) -> str: ...

    async def submit_transfer(self, token_id: int) -> str: ...

    async def wait_for_receipt(self, tx_id: str) -> bool: ...

    async def chain_time(self) -> Optional[float]: ...


@dataclass
class WalletConfig:
    rpc_url: str
    private_key: str
    vault_address: str
    nft_contract: str = DEFAULT_NFT_CONTRACT
    chain_id: int = DEFAULT_CHAIN_ID
    receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT_SECONDS


class Web3Wallet:
    """Locally keyed wallet that talks to an EVM node over HTTP."""

    def __init__(
        self, config: WalletConfig, logger_: Optional[logging.Logger] = None
    ) -> None:
        self._config = config
        self._logger = logger_ or logger
        self._signer = LocalKeySigner(config.private_key)
        self._w3: Optional[Web3] = None
        self._nft: Optional[Any] = None
        self._initialise()

    def _initialise(self) -> None:
        rpc_url = (self._config.rpc_url or "").strip()
        if not rpc_url:
            self._logger.warning("Wallet has no RPC endpoint; chain features disabled")
            return
        try:
            w3 = Web3(Web3.HTTPProvider(rpc_url))
        except Exception as exc:
            self._logger.error(f"Failed to create Web3 provider: {exc}")
            return

        # Monad and other POA-style chains carry extra data in block headers.
        try:
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        except ValueError:
            pass
        except Exception as exc:
            self._logger.debug(f"Could not inject POA middleware: {exc}")

        try:
            self._nft = w3.eth.contract(
                address=Web3.to_checksum_address(self._config.nft_contract),
                abi=ERC721_TRANSFER_ABI,
            )
        except Exception as exc:
            self._logger.error(f"Failed to instantiate collateral contract: {exc}")
            return
        self._w3 = w3
        self._logger.info(
            "🔗 Wallet %s ready on chain %s", self.address, self._config.chain_id
        )

    @property
    def is_enabled(self) -> bool:
        return self._w3 is not None and self._nft is not None

    @property
    def address(self) -> str:
        return self._signer.address

    @property
    def network_id(self) -> int:
        return int(self._config.chain_id)

    def sign_message(self, message: str) -> str:
        return self._signer.sign_message(message)

    async def submit_transfer(self, token_id: int) -> str:
        """Send ``safeTransferFrom(owner, vault, token_id)``; returns the tx hash."""
        if not self.is_enabled:
            raise WalletError("wallet not connected to a chain")
        if not (self._config.vault_address or "").strip():
            raise WalletError("vault address not configured")
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._submit_transfer_sync, int(token_id))
        except WalletError:
            raise
        except ContractLogicError as exc:
            raise WalletError(f"transfer reverted: {exc}") from exc
        except Exception as exc:
            raise WalletError(f"transfer failed: {exc}") from exc

    def _submit_transfer_sync(self, token_id: int) -> str:
        assert self._w3 is not None and self._nft is not None
        w3 = self._w3
        owner = Web3.to_checksum_address(self.address)
        vault = Web3.to_checksum_address(self._config.vault_address)

        tx_params: Dict[str, Any] = {
            "from": owner,
            "nonce": w3.eth.get_transaction_count(owner, "pending"),
            "chainId": self.network_id,
        }
        fn = self._nft.functions.safeTransferFrom(owner, vault, token_id)
        try:
            tx_params["gas"] = int(fn.estimate_gas({"from": owner}) * 1.2)
        except ContractLogicError:
            raise
        except Exception as exc:
            self._logger.debug("Gas estimation failed for transfer: %s", exc)
        tx_params["gasPrice"] = w3.eth.gas_price

        txn = fn.build_transaction(cast(TxParams, tx_params))
        signed = w3.eth.account.sign_transaction(
            txn, private_key=self._signer_key()
        )
        raw_tx = getattr(signed, "raw_transaction", None) or getattr(
            signed, "rawTransaction", None
        )
        if raw_tx is None:
            raise WalletError("signed transaction missing raw payload")
        tx_hash = w3.eth.send_raw_transaction(raw_tx)
        tx_id = tx_hash.hex()
        if not tx_id.startswith("0x"):
            tx_id = f"0x{tx_id}"
        self._logger.info(
            "📤 Submitted collateral transfer of token %s to %s (tx=%s)",
            token_id,
            vault,
            tx_id,
        )
        return tx_id

    def _signer_key(self) -> str:
        key = self._config.private_key.strip()
        return key if key.startswith("0x") else f"0x{key}"

    async def wait_for_receipt(self, tx_id: str) -> bool:
        """Block until the receipt lands; ``True`` only for a successful status."""
        if self._w3 is None:
            raise WalletError("wallet not connected to a chain")
        w3 = self._w3
        loop = asyncio.get_running_loop()
        try:
            receipt = await loop.run_in_executor(
                None,
                lambda: w3.eth.wait_for_transaction_receipt(
                    tx_id, timeout=self._config.receipt_timeout
                ),
            )
        except Exception as exc:
            raise WalletError(f"receipt unavailable for {tx_id}: {exc}") from exc
        status = receipt.get("status") if hasattr(receipt, "get") else None
        return int(status or 0) == 1

    async def chain_time(self) -> Optional[float]:
        """Timestamp of the latest block, or ``None`` when the node is unreachable."""
        if self._w3 is None:
            return None
        w3 = self._w3
        loop = asyncio.get_running_loop()
        try:
            block = await loop.run_in_executor(None, w3.eth.get_block, "latest")
            timestamp = block.get("timestamp")
            if timestamp is None:
                raise KeyError("timestamp")
            return float(timestamp)
        except Exception as exc:
            self._logger.debug(
                "Failed to fetch latest block timestamp; falling back to system time: %s",
                exc,
            )
            return None
