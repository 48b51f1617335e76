"""Smart-contract chain adapter.

Drives a deployed hashed-timelock contract on an EVM chain. Calls are ABI
encoded with web3 and sent as JSON-RPC over httpx; transactions are signed
by the injected TransactionSigner.
"""

import asyncio
import hashlib
import logging
from decimal import ROUND_DOWN, Decimal
from typing import Any, Optional

import httpx
from eth_abi import decode
from web3 import Web3

from htlcbridge.adapters.base import ChainAdapter, OnChainStatus, TxRef
from htlcbridge.chains import Chain, TokenConfig, get_token
from htlcbridge.crypto import secret_hex
from htlcbridge.errors import (
    AlreadySettled,
    BridgeError,
    ChainUnavailable,
    InsufficientFunds,
    InvalidRecipient,
    LockNotFound,
    SecretMismatch,
    TimelockExpired,
    TimelockNotExpired,
    TransactionReverted,
    ValidationError,
)
from htlcbridge.signing.base import SigningError, TransactionSigner

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

HTLC_ABI = [
    {
        "name": "newContract",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {"name": "receiver", "type": "address"},
            {"name": "token", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "hashlock", "type": "bytes32"},
            {"name": "timelock", "type": "uint256"},
        ],
        "outputs": [{"name": "contractId", "type": "bytes32"}],
    },
    {
        "name": "withdraw",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "contractId", "type": "bytes32"},
            {"name": "preimage", "type": "bytes32"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "refund",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "contractId", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "getContract",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "contractId", "type": "bytes32"}],
        "outputs": [
            {"name": "sender", "type": "address"},
            {"name": "receiver", "type": "address"},
            {"name": "token", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "hashlock", "type": "bytes32"},
            {"name": "timelock", "type": "uint256"},
            {"name": "withdrawn", "type": "bool"},
            {"name": "refunded", "type": "bool"},
            {"name": "preimage", "type": "bytes32"},
        ],
    },
]

ERC20_ABI = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
]

GET_CONTRACT_TYPES = [
    "address", "address", "address", "uint256", "bytes32",
    "uint256", "bool", "bool", "bytes32",
]

HTLC_NEW_TOPIC = Web3.to_hex(
    Web3.keccak(text="LogHTLCNew(bytes32,address,address,address,uint256,bytes32,uint256)")
)

# contractId, sender and receiver are indexed topics
HTLC_NEW_DATA_TYPES = ["address", "uint256", "bytes32", "uint256"]


def _topic_address(address: str) -> str:
    return "0x" + "00" * 12 + address[2:].lower()


def _bytes32(value: str) -> bytes:
    raw = bytes.fromhex(value[2:] if value.startswith("0x") else value)
    if len(raw) != 32:
        raise ValidationError(f"Expected 32 bytes, got {len(raw)}")
    return raw


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a token amount to integer base units, truncating dust."""
    scaled = (Decimal(amount) * (Decimal(10) ** decimals)).quantize(
        Decimal("1"), rounding=ROUND_DOWN
    )
    return int(scaled)


def from_base_units(value: int, decimals: int) -> Decimal:
    return Decimal(value) / (Decimal(10) ** decimals)


class EVMHTLCAdapter(ChainAdapter):
    """Adapter for an HTLC contract on an EVM chain.

    Revert conditions are checked locally before sending so they surface as
    typed errors instead of opaque reverts.
    """

    def __init__(
        self,
        chain: Chain,
        rpc_url: str,
        htlc_address: str,
        signer: TransactionSigner,
        gas_limit: int = 200000,
        fallback_fee: Decimal = Decimal("0.001"),
        timeout: float = 30.0,
        receipt_timeout: float = 120.0,
        receipt_poll_interval: float = 2.0,
        log_lookback_blocks: int = 50000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(chain)
        if not self.config.is_evm:
            raise ValueError(f"{self.chain.value} is not an EVM chain")
        self.rpc_url = rpc_url
        self.htlc_address = Web3.to_checksum_address(htlc_address)
        self.signer = signer
        self.gas_limit = gas_limit
        self.fallback_fee = fallback_fee
        self.timeout = timeout
        self.receipt_timeout = receipt_timeout
        self.receipt_poll_interval = receipt_poll_interval
        self.log_lookback_blocks = log_lookback_blocks
        self._transport = transport
        self._w3 = Web3()
        self._htlc = self._w3.eth.contract(address=self.htlc_address, abi=HTLC_ABI)
        self._erc20 = self._w3.eth.contract(abi=ERC20_ABI)
        self._request_id = 0

    # ------------------------------------------------------------------
    # JSON-RPC
    # ------------------------------------------------------------------

    async def _rpc(self, method: str, params: list) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": self._request_id}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.rpc_url, json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise ChainUnavailable(f"{self.chain.value} RPC {method} failed: {e}") from e

        if "error" in data:
            message = str(data["error"].get("message", data["error"]))
            lowered = message.lower()
            if "insufficient funds" in lowered:
                raise InsufficientFunds(message)
            if "revert" in lowered:
                raise TransactionReverted(message)
            raise ChainUnavailable(f"{self.chain.value} RPC {method}: {message}")
        return data.get("result")

    async def _eth_call(self, to: str, data: str) -> bytes:
        result = await self._rpc("eth_call", [{"to": to, "data": data}, "latest"])
        return bytes.fromhex((result or "0x")[2:])

    async def _latest_timestamp(self) -> int:
        block = await self._rpc("eth_getBlockByNumber", ["latest", False])
        return int(block["timestamp"], 16)

    async def _gas_price(self) -> int:
        return int(await self._rpc("eth_gasPrice", []), 16)

    async def _send(
        self, sender: str, to: str, data: str, value: int = 0
    ) -> tuple[str, dict]:
        """Sign, submit and wait for a transaction; returns its hash and receipt."""
        nonce = int(await self._rpc("eth_getTransactionCount", [sender, "pending"]), 16)
        tx = {
            "to": to,
            "data": data,
            "value": value,
            "gas": self.gas_limit,
            "gasPrice": await self._gas_price(),
            "nonce": nonce,
            "chainId": self.config.chain_id,
        }
        try:
            raw = await self.signer.sign_evm_transaction(self.chain, sender, tx)
        except SigningError as e:
            raise BridgeError(f"Cannot sign for {sender}: {e}") from e

        tx_hash = await self._rpc("eth_sendRawTransaction", ["0x" + raw.hex()])
        logger.info(f"{self.chain.value} tx submitted: {tx_hash}")
        receipt = await self._wait_for_receipt(tx_hash)
        if int(receipt.get("status", "0x1"), 16) != 1:
            raise TransactionReverted(f"{self.chain.value} tx {tx_hash} reverted")
        return tx_hash, receipt

    async def _wait_for_receipt(self, tx_hash: str) -> dict:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.receipt_timeout
        while True:
            receipt = await self._rpc("eth_getTransactionReceipt", [tx_hash])
            if receipt:
                return receipt
            if loop.time() >= deadline:
                raise ChainUnavailable(f"No receipt for {tx_hash} after {self.receipt_timeout}s")
            await asyncio.sleep(self.receipt_poll_interval)

    # ------------------------------------------------------------------
    # Contract reads
    # ------------------------------------------------------------------

    def _token(self, symbol: str) -> TokenConfig:
        token = get_token(self.chain, symbol)
        if token is None:
            raise ValidationError(f"{symbol} is not supported on {self.chain.value}")
        return token

    async def _balance(self, owner: str, token: TokenConfig) -> int:
        if token.is_native:
            return int(await self._rpc("eth_getBalance", [owner, "latest"]), 16)
        data = self._erc20.encode_abi("balanceOf", args=[Web3.to_checksum_address(owner)])
        (balance,) = decode(["uint256"], await self._eth_call(token.address, data))
        return balance

    async def _allowance(self, owner: str, token: TokenConfig) -> int:
        data = self._erc20.encode_abi(
            "allowance", args=[Web3.to_checksum_address(owner), self.htlc_address]
        )
        (allowance,) = decode(["uint256"], await self._eth_call(token.address, data))
        return allowance

    async def get_contract(self, lock_id: str) -> dict:
        """Read an HTLC entry.

        Raises:
            LockNotFound: If the contract has no entry for the id
        """
        data = self._htlc.encode_abi("getContract", args=[_bytes32(lock_id)])
        raw = await self._eth_call(self.htlc_address, data)
        if not raw:
            raise LockNotFound(f"No lock {lock_id} on {self.chain.value}")
        (sender, receiver, token, amount, hashlock, timelock,
         withdrawn, refunded, preimage) = decode(GET_CONTRACT_TYPES, raw)
        if int(sender, 16) == 0:
            raise LockNotFound(f"No lock {lock_id} on {self.chain.value}")
        return {
            "sender": Web3.to_checksum_address(sender),
            "receiver": Web3.to_checksum_address(receiver),
            "token": token,
            "amount": amount,
            "hashlock": "0x" + hashlock.hex(),
            "timelock": timelock,
            "withdrawn": withdrawn,
            "refunded": refunded,
            "preimage": "0x" + preimage.hex() if any(preimage) else None,
        }

    # ------------------------------------------------------------------
    # ChainAdapter
    # ------------------------------------------------------------------

    async def lock(
        self,
        sender: str,
        recipient: str,
        token: str,
        amount: Decimal,
        hashlock: str,
        timelock: int,
    ) -> TxRef:
        if not self.validate_address(recipient):
            raise InvalidRecipient(f"Invalid {self.chain.value} recipient: {recipient}")
        token_config = self._token(token)
        units = to_base_units(amount, token_config.decimals)
        if units <= 0:
            raise ValidationError("Lock amount must be positive")
        if timelock <= await self._latest_timestamp():
            raise ValidationError("Timelock must be in the future")

        balance = await self._balance(sender, token_config)
        if balance < units:
            raise InsufficientFunds(
                f"{sender} has {from_base_units(balance, token_config.decimals)} {token}, "
                f"needs {amount}"
            )

        if not token_config.is_native and await self._allowance(sender, token_config) < units:
            approve = self._erc20.encode_abi("approve", args=[self.htlc_address, units])
            await self._send(sender, token_config.address, approve)

        data = self._htlc.encode_abi(
            "newContract",
            args=[
                Web3.to_checksum_address(recipient),
                ZERO_ADDRESS if token_config.is_native else token_config.address,
                units,
                _bytes32(hashlock),
                timelock,
            ],
        )
        tx_hash, receipt = await self._send(
            sender, self.htlc_address, data, value=units if token_config.is_native else 0
        )
        lock_id = self._lock_id_from_receipt(receipt)

        logger.info(f"{self.chain.value} lock {lock_id[:10]}: {amount} {token} -> {recipient}")
        return TxRef(self.chain, tx_hash, lock_id)

    def _lock_id_from_receipt(self, receipt: dict) -> str:
        for log in receipt.get("logs", []):
            topics = log.get("topics") or []
            if (
                len(topics) > 1
                and topics[0].lower() == HTLC_NEW_TOPIC.lower()
                and log.get("address", "").lower() == self.htlc_address.lower()
            ):
                return topics[1].lower()
        raise TransactionReverted(f"No LogHTLCNew event in {receipt.get('transactionHash')}")

    async def withdraw(self, lock_id: str, secret: str) -> TxRef:
        entry = await self.get_contract(lock_id)
        if entry["withdrawn"] or entry["refunded"]:
            raise AlreadySettled(f"Lock {lock_id} already settled")

        preimage = secret_hex(secret)
        if "0x" + hashlib.sha256(_bytes32(preimage)).hexdigest() != entry["hashlock"]:
            raise SecretMismatch(f"Preimage does not match lock {lock_id}")
        if await self._latest_timestamp() >= entry["timelock"]:
            raise TimelockExpired(f"Lock {lock_id} expired")

        data = self._htlc.encode_abi("withdraw", args=[_bytes32(lock_id), _bytes32(preimage)])
        tx_hash, _ = await self._send(entry["receiver"], self.htlc_address, data)
        logger.info(f"{self.chain.value} withdraw {lock_id[:10]}: {tx_hash}")
        return TxRef(self.chain, tx_hash, lock_id)

    async def refund(self, lock_id: str) -> TxRef:
        entry = await self.get_contract(lock_id)
        if entry["withdrawn"] or entry["refunded"]:
            raise AlreadySettled(f"Lock {lock_id} already settled")
        if await self._latest_timestamp() < entry["timelock"]:
            raise TimelockNotExpired(f"Lock {lock_id} not expired")

        data = self._htlc.encode_abi("refund", args=[_bytes32(lock_id)])
        tx_hash, _ = await self._send(entry["sender"], self.htlc_address, data)
        logger.info(f"{self.chain.value} refund {lock_id[:10]}: {tx_hash}")
        return TxRef(self.chain, tx_hash, lock_id)

    async def get_onchain_status(self, lock_id: str) -> OnChainStatus:
        entry = await self.get_contract(lock_id)
        return OnChainStatus(
            locked=not (entry["withdrawn"] or entry["refunded"]),
            withdrawn=entry["withdrawn"],
            refunded=entry["refunded"],
            preimage=entry["preimage"],
        )

    async def find_lock(
        self, sender: str, recipient: str, hashlock: str, timelock: int
    ) -> Optional[str]:
        """Scan recent LogHTLCNew events for a lock with these terms."""
        latest = int(await self._rpc("eth_blockNumber", []), 16)
        logs = await self._rpc(
            "eth_getLogs",
            [{
                "address": self.htlc_address,
                "fromBlock": hex(max(0, latest - self.log_lookback_blocks)),
                "toBlock": "latest",
                "topics": [
                    HTLC_NEW_TOPIC,
                    None,
                    _topic_address(sender),
                    _topic_address(recipient),
                ],
            }],
        )
        for log in logs or []:
            topics = log.get("topics") or []
            if len(topics) < 2:
                continue
            data = bytes.fromhex(log.get("data", "0x")[2:])
            _, _, log_hashlock, log_timelock = decode(HTLC_NEW_DATA_TYPES, data)
            if "0x" + log_hashlock.hex() == hashlock.lower() and log_timelock == timelock:
                return topics[1].lower()
        return None

    async def estimate_lock_fee(self) -> Decimal:
        """Live gas price times the HTLC gas limit, or the fixed fallback."""
        try:
            gas_price = await self._gas_price()
        except BridgeError as e:
            logger.warning(f"{self.chain.value} gas price unavailable, using fallback: {e}")
            return self.fallback_fee
        return from_base_units(gas_price * self.gas_limit, self.config.decimals)
