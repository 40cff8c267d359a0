from dataclasses import dataclass
from typing import Optional

from eth_account import Account
from loguru import logger
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted

from core.abi import BULK_SENDER_ABI, TOKEN_ABI
from core.errors import (
    ConfigurationError,
    FinalizationTimeout,
    ReadFailure,
    RevertFailure,
    SubmissionFailure,
)


def to_checksum(address: str, error=SubmissionFailure) -> str:
    try:
        return AsyncWeb3.to_checksum_address(address)
    except (TypeError, ValueError) as exc:
        raise error(f"Invalid address {address!r}") from exc


@dataclass
class TxOutcome:
    """Finalized result of a submitted transaction."""

    tx_hash: str
    success: bool
    block_number: Optional[int] = None
    gas_used: Optional[int] = None


class ChainClient:
    """
    Async EVM client bound to a single signing account.

    Reads go through ``call``; writes go through ``submit`` followed by
    ``await_finalization``.
    """

    def __init__(self, w3: AsyncWeb3, account, timeout: float = 180, poll_latency: float = 2.0):
        self.w3 = w3
        self.account = account
        self.timeout = timeout
        self.poll_latency = poll_latency

    @classmethod
    def connect(cls, rpc_url: str, private_key: str, **kwargs) -> "ChainClient":
        w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": 60}))
        try:
            account = Account.from_key(private_key)
        except Exception as exc:
            raise ConfigurationError(f"Invalid signing key: {type(exc).__name__}") from None
        logger.info(f"Connecting to {rpc_url} as {account.address}")
        return cls(w3, account, **kwargs)

    @property
    def address(self) -> str:
        return self.account.address

    def contract(self, address: str, abi: list):
        return self.w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=abi)

    async def call(self, contract_call):
        try:
            return await contract_call.call()
        except Exception as exc:
            raise ReadFailure(f"{contract_call.fn_name} call failed: {exc}") from exc

    async def submit(self, contract_call) -> str:
        """
        Build, sign and broadcast a contract call.

        :param contract_call: A bound contract function, e.g. ``contract.functions.approve(a, n)``

        :return: The transaction hash as a 0x-prefixed hex string
        """
        try:
            nonce = await self.w3.eth.get_transaction_count(self.address, "pending")
            chain_id = await self.w3.eth.chain_id
            tx = await contract_call.build_transaction({
                "from": self.address,
                "nonce": nonce,
                "chainId": chain_id,
            })
        except ContractLogicError as exc:
            # Gas estimation executes the call, so a revert surfaces here first.
            raise RevertFailure(f"{contract_call.fn_name} would revert: {exc}") from exc
        except Exception as exc:
            raise SubmissionFailure(f"Failed to build {contract_call.fn_name} transaction: {exc}") from exc

        try:
            signed = self.account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as exc:
            raise SubmissionFailure(f"Failed to send {contract_call.fn_name} transaction: {exc}") from exc

        tx_hash = AsyncWeb3.to_hex(tx_hash)
        logger.info(f"Submitted {contract_call.fn_name} transaction {tx_hash} (nonce {nonce})")
        return tx_hash

    async def await_finalization(self, tx_hash: str) -> TxOutcome:
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.timeout, poll_latency=self.poll_latency
            )
        except TimeExhausted as exc:
            raise FinalizationTimeout(
                f"Transaction {tx_hash} not finalized after {self.timeout}s"
            ) from exc
        except Exception as exc:
            raise SubmissionFailure(f"Failed waiting for {tx_hash}: {exc}") from exc

        return TxOutcome(
            tx_hash=tx_hash,
            success=receipt["status"] == 1,
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )


class TokenContract:
    """ERC-20 token handle."""

    def __init__(self, chain: ChainClient, address: str):
        self.chain = chain
        self.address = to_checksum(address, ConfigurationError)
        self.contract = chain.contract(self.address, TOKEN_ABI)

    async def balance_of(self, account: str) -> int:
        return await self.chain.call(
            self.contract.functions.balanceOf(to_checksum(account, ReadFailure))
        )

    async def allowance(self, owner: str, spender: str) -> int:
        return await self.chain.call(
            self.contract.functions.allowance(
                to_checksum(owner, ReadFailure),
                to_checksum(spender, ReadFailure),
            )
        )

    async def decimals(self) -> int:
        return int(await self.chain.call(self.contract.functions.decimals()))

    async def approve(self, spender: str, amount: int) -> str:
        return await self.chain.submit(
            self.contract.functions.approve(to_checksum(spender), amount)
        )


class BulkSenderContract:
    """Helper contract that pays many receivers in one atomic call."""

    def __init__(self, chain: ChainClient, address: str):
        self.chain = chain
        self.address = to_checksum(address, ConfigurationError)
        self.contract = chain.contract(self.address, BULK_SENDER_ABI)

    async def bulk_send_token(self, token_address: str, receivers: list[str], amounts: list[int]) -> str:
        return await self.chain.submit(
            self.contract.functions.bulksendToken(
                to_checksum(token_address),
                [to_checksum(r) for r in receivers],
                list(amounts),
            )
        )
