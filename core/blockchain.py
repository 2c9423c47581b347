"""
core/blockchain.py — Event Anchoring Backend
==============================================
Every ledger event (proof stored, liveness updated, identity deleted,
proof verified) is anchored on a chain so the event history is
tamper-evident. Two backends:

  1. "simulation" — in-memory hash-linked blocks, no external dependencies
  2. "ethereum"   — writes the event hash as transaction data via web3.py

Set BLOCKCHAIN_BACKEND in .env to switch.
"""

import asyncio
import hashlib
import json
import logging
from datetime import datetime, timezone

from config import settings

logger = logging.getLogger("veriid.blockchain")


def _event_digest(data: dict) -> str:
    return hashlib.sha3_256(json.dumps(data, sort_keys=True).encode()).hexdigest()


# ── Simulated Chain (default — works with zero setup) ─────────────────────────
class SimulatedChain:
    """
    In-memory hash-linked block list.
    Data resets when the process restarts — the ledger store is the
    system of record, this is the audit trail.
    """

    def __init__(self):
        self.blocks = []
        self.block_number = 0

    async def connect(self):
        if not self.blocks:
            self._mine_block("GENESIS", {"message": "VeriID genesis block"})
        logger.info("SimulatedChain: ready (in-memory mode)")

    async def disconnect(self):
        logger.info("SimulatedChain: disconnected")

    async def ping(self) -> str:
        return f"ok — simulated chain, {len(self.blocks)} blocks"

    def _block_hash(self, block: dict) -> str:
        body = {k: block[k] for k in ("block_number", "block_type", "data", "prev_hash", "timestamp")}
        return _event_digest(body)

    def _mine_block(self, block_type: str, data: dict) -> dict:
        block = {
            "block_number": self.block_number,
            "block_type": block_type,
            "data": data,
            "prev_hash": self.blocks[-1]["hash"] if self.blocks else "0" * 64,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        block["hash"] = self._block_hash(block)
        self.blocks.append(block)
        self.block_number += 1
        return block

    async def write_block(self, block_type: str, data: dict) -> dict:
        if not self.blocks:
            await self.connect()
        block = self._mine_block(block_type, data)
        logger.info(f"Block #{block['block_number']} written [{block_type}] hash={block['hash'][:16]}...")
        return block

    def verify_chain(self) -> bool:
        """True if no block has been altered or unlinked."""
        prev = "0" * 64
        for block in self.blocks:
            if block["prev_hash"] != prev or self._block_hash(block) != block["hash"]:
                return False
            prev = block["hash"]
        return True


# ── Ethereum Backend ──────────────────────────────────────────────────────────
class EthereumChain:
    """
    Anchors event digests on an Ethereum node (local Hardhat/Ganache or a testnet).
    Requires: WEB3_PROVIDER_URL and DEPLOYER_PRIVATE_KEY in .env

    web3's HTTP provider blocks, so every node call runs in a worker thread.
    """

    def __init__(self):
        self.w3 = None

    async def connect(self):
        from web3 import Web3
        w3 = Web3(Web3.HTTPProvider(settings.WEB3_PROVIDER_URL))
        if not await asyncio.to_thread(w3.is_connected):
            raise ConnectionError(f"Cannot connect to {settings.WEB3_PROVIDER_URL}")
        self.w3 = w3
        block_number = await asyncio.to_thread(lambda: w3.eth.block_number)
        logger.info(f"Ethereum connected — block #{block_number}")

    async def disconnect(self):
        self.w3 = None

    async def ping(self) -> str:
        w3 = self.w3
        if w3 and await asyncio.to_thread(w3.is_connected):
            block_number = await asyncio.to_thread(lambda: w3.eth.block_number)
            return f"ok — Ethereum block #{block_number}"
        return "disconnected"

    def _send_anchor(self, block_type: str, data: dict) -> dict:
        account = self.w3.eth.account.from_key(settings.DEPLOYER_PRIVATE_KEY)
        calldata = f"{block_type}:{_event_digest(data)}"
        tx = {
            "from": account.address,
            "to": account.address,
            "value": 0,
            "data": self.w3.to_hex(text=calldata),
            "gas": 21000 + 16 * len(calldata),
            "gasPrice": self.w3.eth.gas_price,
            "nonce": self.w3.eth.get_transaction_count(account.address),
            "chainId": settings.CHAIN_ID,
        }
        signed = self.w3.eth.account.sign_transaction(tx, settings.DEPLOYER_PRIVATE_KEY)
        raw = getattr(signed, "raw_transaction", None) or signed.rawTransaction
        tx_hash = self.w3.eth.send_raw_transaction(raw)
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash)

        return {
            "block_type": block_type,
            "hash": self.w3.to_hex(receipt.transactionHash),
            "block_number": receipt.blockNumber,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def write_block(self, block_type: str, data: dict) -> dict:
        """Self-transfer carrying "<EVENT>:<sha3 of event>" as calldata."""
        if not self.w3:
            raise RuntimeError("Not connected to Ethereum")
        return await asyncio.to_thread(self._send_anchor, block_type, data)


# ── Factory — picks the right backend from .env ───────────────────────────────
def create_blockchain(backend: str = None):
    backend = (backend or settings.BLOCKCHAIN_BACKEND).lower()
    if backend == "ethereum":
        logger.info("Using Ethereum anchoring backend")
        return EthereumChain()
    logger.info("Using Simulated anchoring backend (development mode)")
    return SimulatedChain()


# Singleton — import this everywhere:  from core.blockchain import blockchain
blockchain = create_blockchain()
