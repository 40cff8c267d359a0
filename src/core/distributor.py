"""
Reward distribution pass.

Runs balance inspection, allowance approval and the bulk transfer strictly in
order. Each step catches its own failures and returns a tagged StepResult,
so a caller can decide what to do next instead of parsing log output.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from loguru import logger

from core.batch import DEFAULT_DECIMALS, MAX_BATCH_SIZE, TransferBatch, format_units
from core.errors import DistributionError, ReadFailure, RevertFailure

APPROVE = "approve"
DISTRIBUTE = "distribute"


@dataclass
class BalanceReading:
    address: str
    balance: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class StepResult:
    """Outcome of one on-chain step."""

    step: str
    success: bool
    message: str
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    failure: Optional[str] = None  # validation | submission | revert | skipped

    def summary(self) -> str:
        status = "OK" if self.success else f"FAILED ({self.failure})"
        line = f"{self.step}: {status} - {self.message}"
        if self.tx_hash:
            line += f" [tx {self.tx_hash}]"
        return line


@dataclass
class DistributionReport:
    balances_before: list[BalanceReading] = field(default_factory=list)
    approve: Optional[StepResult] = None
    distribute: Optional[StepResult] = None
    balances_after: list[BalanceReading] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.approve and self.distribute and self.distribute.success)

    @property
    def failed_step(self) -> Optional[str]:
        """First step that did not complete, or None when the pass succeeded."""
        if self.approve is not None and not self.approve.success:
            if self.distribute is None or not self.distribute.success:
                return APPROVE
        if self.distribute is not None and not self.distribute.success:
            return DISTRIBUTE
        return None

    def balance_deltas(self) -> dict[str, int]:
        """Balance increase per address where both reads succeeded."""
        before = {r.address: r.balance for r in self.balances_before if r.ok}
        return {
            r.address: r.balance - before[r.address]
            for r in self.balances_after
            if r.ok and r.address in before
        }

    def summary(self) -> str:
        status = "SUCCESS" if self.success else "FAILED"
        lines = [f"=== Reward Distribution - {status} ==="]
        for step in (self.approve, self.distribute):
            if step is not None:
                lines.append(step.summary())
        deltas = self.balance_deltas()
        if deltas:
            lines.append(f"Total received: {sum(deltas.values())}")
        return "\n".join(lines)


class RewardDistributor:
    """
    Pays a TransferBatch through a bulk sender contract.

    :param chain: Client that awaits transaction finalization
    :param token: Reward token handle (balance_of, allowance, approve, decimals)
    :param bulk_sender: Bulk sender handle (bulk_send_token)
    :param max_batch_size: Entry limit enforced by the bulk sender
    :param decimals: Token decimals for log formatting, read from the token when omitted
    """

    def __init__(self, chain, token, bulk_sender, max_batch_size: int = MAX_BATCH_SIZE, decimals: Optional[int] = None):
        self.chain = chain
        self.token = token
        self.bulk_sender = bulk_sender
        self.max_batch_size = max_batch_size
        self._decimals = decimals

    async def token_decimals(self) -> int:
        """Token decimals as reported by the token. Raises ReadFailure."""
        if self._decimals is None:
            self._decimals = await self.token.decimals()
        return self._decimals

    async def decimals(self) -> int:
        try:
            return await self.token_decimals()
        except ReadFailure as exc:
            logger.warning(f"Could not read token decimals, assuming {DEFAULT_DECIMALS}: {exc}")
            return DEFAULT_DECIMALS

    async def _read_balance(self, address: str) -> BalanceReading:
        try:
            return BalanceReading(address, balance=await self.token.balance_of(address))
        except ReadFailure as exc:
            logger.error(f"Failed to read balance of {address}: {exc}")
            return BalanceReading(address, error=str(exc))

    async def inspect_balances(self, addresses) -> list[BalanceReading]:
        """Read all balances concurrently and return them in input order."""
        readings = await asyncio.gather(*(self._read_balance(a) for a in addresses))
        decimals = await self.decimals()
        for reading in readings:
            if reading.ok:
                logger.info(f"{reading.address}: {format_units(reading.balance, decimals)}")
        return list(readings)

    async def _transact(self, step: str, label: str, submit) -> StepResult:
        tx_hash = None
        try:
            tx_hash = await submit()
            outcome = await self.chain.await_finalization(tx_hash)
            if not outcome.success:
                raise RevertFailure(f"Transaction {tx_hash} reverted", tx_hash=tx_hash)
        except RevertFailure as exc:
            logger.error(f"{label} Failed: {exc}")
            return StepResult(step, False, str(exc), tx_hash=tx_hash, failure="revert")
        except DistributionError as exc:
            logger.error(f"{label} Failed: {exc}")
            return StepResult(step, False, str(exc), tx_hash=tx_hash, failure="submission")

        logger.info(
            f"{label} Successful: {tx_hash} (block {outcome.block_number}, gas used {outcome.gas_used})"
        )
        return StepResult(
            step, True, f"{label} Successful",
            tx_hash=tx_hash, block_number=outcome.block_number,
        )

    async def ensure_allowance(self, spender: str, amount: int) -> StepResult:
        """Approve spender for amount and wait for the approval to finalize."""
        return await self._transact(
            APPROVE, "Approve", lambda: self.token.approve(spender, amount)
        )

    async def distribute(self, batch: TransferBatch, token_address: Optional[str] = None) -> StepResult:
        """Send every entry of batch through the bulk sender in one transaction."""
        if len(batch) > self.max_batch_size:
            message = f"Batch has {len(batch)} entries, limit is {self.max_batch_size}"
            logger.error(f"Bulk Send Failed: {message}")
            return StepResult(DISTRIBUTE, False, message, failure="validation")

        token_address = token_address or self.token.address
        logger.info(
            f"Bulk sending {batch.total} base units of {token_address} to {len(batch)} receivers"
        )
        return await self._transact(
            DISTRIBUTE, "Bulk Send",
            lambda: self.bulk_sender.bulk_send_token(
                token_address, list(batch.receivers), list(batch.amounts)
            ),
        )

    async def _allowance_covers(self, amount: int) -> bool:
        try:
            current = await self.token.allowance(self.chain.address, self.bulk_sender.address)
        except ReadFailure as exc:
            logger.error(f"Failed to read existing allowance: {exc}")
            return False
        logger.info(f"Existing allowance {current}, batch needs {amount}")
        return current >= amount

    async def run(self, batch: TransferBatch, approve_amount: Optional[int] = None) -> DistributionReport:
        """
        Run one full distribution pass.

        Distribution is skipped when the approval fails and the allowance
        already on chain does not cover the batch.
        """
        report = DistributionReport()
        report.balances_before = await self.inspect_balances(batch.receivers)

        amount = approve_amount if approve_amount is not None else batch.total
        report.approve = await self.ensure_allowance(self.bulk_sender.address, amount)

        if not report.approve.success and not await self._allowance_covers(batch.total):
            logger.warning("Skipping bulk send, approval failed and allowance is insufficient")
            report.distribute = StepResult(
                DISTRIBUTE, False, "Skipped after failed approval", failure="skipped"
            )
        else:
            report.distribute = await self.distribute(batch)

        report.balances_after = await self.inspect_balances(batch.receivers)
        return report
