"""
Transfer batches for the bulk sender contract.

A batch pairs an ordered list of receivers with a same-length list of
amounts in the token's smallest unit. The bulk sender pays every entry in a
single atomic call, so a malformed batch is rejected here before anything
reaches the chain.
"""

import csv
import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, localcontext
from pathlib import Path

from core.errors import BatchValidationError

# Upper bound the bulk sender contract accepts per call.
MAX_BATCH_SIZE = 175

DEFAULT_DECIMALS = 18


@dataclass(frozen=True)
class TransferBatch:
    receivers: tuple
    amounts: tuple
    max_size: int = field(default=MAX_BATCH_SIZE, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "receivers", tuple(self.receivers))
        object.__setattr__(self, "amounts", tuple(self.amounts))
        errors = self.validate()
        if errors:
            raise BatchValidationError("; ".join(errors))

    def validate(self) -> list[str]:
        """Validate this batch. Returns list of error strings."""
        errors = []
        if len(self.receivers) != len(self.amounts):
            errors.append(
                f"{len(self.receivers)} receivers but {len(self.amounts)} amounts"
            )
        if not self.receivers:
            errors.append("Batch is empty")
        if len(self.receivers) > self.max_size:
            errors.append(
                f"Batch has {len(self.receivers)} entries, limit is {self.max_size}"
            )
        for i, receiver in enumerate(self.receivers):
            if not isinstance(receiver, str) or not receiver.strip():
                errors.append(f"Receiver {i + 1} is empty")
        for i, amount in enumerate(self.amounts):
            if isinstance(amount, bool) or not isinstance(amount, int):
                errors.append(f"Amount {i + 1} must be an integer, got {amount!r}")
            elif amount < 0:
                errors.append(f"Amount {i + 1} must not be negative, got {amount}")
        return errors

    @property
    def total(self) -> int:
        return sum(self.amounts)

    def __len__(self):
        return len(self.receivers)

    def __iter__(self):
        return iter(zip(self.receivers, self.amounts))


def split_batches(receivers, amounts, max_size: int = MAX_BATCH_SIZE) -> list[TransferBatch]:
    """Split a recipient list into consecutive batches of at most max_size."""
    if len(receivers) != len(amounts):
        raise BatchValidationError(
            f"{len(receivers)} receivers but {len(amounts)} amounts"
        )
    if max_size <= 0:
        raise BatchValidationError(f"Batch size must be positive, got {max_size}")
    return [
        TransferBatch(receivers[i: i + max_size], amounts[i: i + max_size], max_size=max_size)
        for i in range(0, len(receivers), max_size)
    ]


def to_base_units(amount, decimals: int = DEFAULT_DECIMALS) -> int:
    """
    Convert a human token amount to the token's smallest unit.

    :param amount: Amount such as ``"10.76"`` or ``Decimal("56.109")``
    :param decimals: Token decimals

    :return: The integer amount in base units
    """
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation:
        raise BatchValidationError(f"Invalid amount '{amount}'")
    if not value.is_finite() or value < 0:
        raise BatchValidationError(f"Invalid amount '{amount}'")

    # Enough precision that scaling never rounds.
    with localcontext() as ctx:
        ctx.prec = len(value.as_tuple().digits) + abs(decimals) + 1
        scaled = value.scaleb(decimals)
        integral = scaled.to_integral_value()
    if scaled != integral:
        raise BatchValidationError(
            f"Amount {amount} has more than {decimals} decimal places"
        )
    return int(integral)


def format_units(amount: int, decimals: int = DEFAULT_DECIMALS) -> str:
    with localcontext() as ctx:
        ctx.prec = len(str(abs(amount))) + abs(decimals) + 1
        value = Decimal(amount).scaleb(-decimals)
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def parse_batch_csv(filepath) -> list[tuple[str, str]]:
    """
    Parse a CSV file of reward entries.

    Expected format:
        address,amount[,label]
        0x116612cF1d491c372F9Eb3dDb86fBf9447bef28d,10.76,alice
    """
    entries = []
    with open(filepath, "r", newline="") as f:
        reader = csv.DictReader(f)
        if reader.fieldnames is None:
            raise BatchValidationError("CSV file is empty or has no headers")

        for row_num, row in enumerate(reader, start=2):
            normalized = {
                k.strip().lower(): (v or "").strip() for k, v in row.items() if k
            }
            address = normalized.get("address", "")
            amount = normalized.get("amount", "")
            if not address:
                raise BatchValidationError(f"Row {row_num}: missing address")
            if not amount:
                raise BatchValidationError(f"Row {row_num}: missing amount")
            entries.append((address, amount))
    return entries


def parse_batch_json(filepath) -> list[tuple[str, str]]:
    """
    Parse a JSON file of reward entries.

    Expected format:
        [{"address": "0x1166...", "amount": "10.76"}, ...]
    """
    with open(filepath, "r") as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise BatchValidationError("JSON must contain a list of reward entries")

    entries = []
    for i, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise BatchValidationError(f"Entry {i}: must be an object")
        if "address" not in entry:
            raise BatchValidationError(f"Entry {i}: missing 'address' field")
        if "amount" not in entry:
            raise BatchValidationError(f"Entry {i}: missing 'amount' field")
        entries.append((str(entry["address"]), str(entry["amount"])))
    return entries


def parse_batch_file(filepath, decimals: int = DEFAULT_DECIMALS) -> tuple[list[str], list[int]]:
    """Read a CSV or JSON reward file into receivers and base-unit amounts."""
    filepath = Path(filepath)
    if filepath.suffix.lower() == ".json":
        entries = parse_batch_json(filepath)
    else:
        entries = parse_batch_csv(filepath)

    receivers = [address for address, _ in entries]
    amounts = [to_base_units(amount, decimals) for _, amount in entries]
    return receivers, amounts
