import json

import pytest

from core.batch import (
    MAX_BATCH_SIZE,
    TransferBatch,
    format_units,
    parse_batch_file,
    split_batches,
    to_base_units,
)
from core.errors import BatchValidationError
from tests.fakes import SAMPLE_AMOUNTS, SAMPLE_RECEIVERS


def test_batch_exposes_total_and_pairs():
    batch = TransferBatch(SAMPLE_RECEIVERS, SAMPLE_AMOUNTS)

    assert len(batch) == 10
    assert batch.total == sum(SAMPLE_AMOUNTS)
    assert list(batch)[0] == (SAMPLE_RECEIVERS[0], to_base_units("10.76"))


def test_batch_at_limit_is_accepted():
    receivers = [f"0x{i:040x}" for i in range(MAX_BATCH_SIZE)]
    batch = TransferBatch(receivers, [1] * MAX_BATCH_SIZE)
    assert len(batch) == MAX_BATCH_SIZE


def test_batch_above_limit_is_rejected():
    receivers = [f"0x{i:040x}" for i in range(MAX_BATCH_SIZE + 1)]
    with pytest.raises(BatchValidationError, match="limit is 175"):
        TransferBatch(receivers, [1] * (MAX_BATCH_SIZE + 1))


def test_custom_limit():
    with pytest.raises(BatchValidationError, match="limit is 2"):
        TransferBatch(SAMPLE_RECEIVERS[:3], [1, 2, 3], max_size=2)


@pytest.mark.parametrize("receivers, amounts, message", [
    ([], [], "empty"),
    (["0xabc", ""], [1, 2], "Receiver 2 is empty"),
    (["0xabc"], [-1], "must not be negative"),
    (["0xabc"], [1.5], "must be an integer"),
])
def test_invalid_batches(receivers, amounts, message):
    with pytest.raises(BatchValidationError, match=message):
        TransferBatch(receivers, amounts)


def test_split_batches_preserves_order():
    receivers = [f"0x{i:040x}" for i in range(400)]
    amounts = list(range(400))

    batches = split_batches(receivers, amounts)

    assert [len(b) for b in batches] == [175, 175, 50]
    assert [r for b in batches for r in b.receivers] == receivers
    assert [a for b in batches for a in b.amounts] == amounts


def test_split_batches_rejects_mismatch():
    with pytest.raises(BatchValidationError):
        split_batches(SAMPLE_RECEIVERS, SAMPLE_AMOUNTS[:-1])


def test_base_units():
    assert to_base_units("10.76") == 10_760_000_000_000_000_000
    assert to_base_units("56.109") == 56_109_000_000_000_000_000
    assert to_base_units("1.5", decimals=6) == 1_500_000
    assert format_units(56_109_000_000_000_000_000) == "56.109"
    assert format_units(0) == "0"


def test_base_units_are_exact_beyond_default_precision():
    amount = "12345678901.123456789012345679"

    assert to_base_units(amount) == 12345678901123456789012345679
    assert format_units(12345678901123456789012345679) == amount
    assert to_base_units("1" * 40, decimals=6) == int("1" * 40) * 10 ** 6

    with pytest.raises(BatchValidationError, match="decimal places"):
        to_base_units("12345678901.1234567890123456789")


@pytest.mark.parametrize("amount", ["abc", "-1", "NaN", "0.0000001"])
def test_base_units_rejects_bad_amounts(amount):
    with pytest.raises(BatchValidationError):
        to_base_units(amount, decimals=6)


def test_parse_csv(tmp_path):
    path = tmp_path / "rewards.csv"
    path.write_text(
        "Address, Amount ,label\n"
        f"{SAMPLE_RECEIVERS[0]},10.76,alice\n"
        f"{SAMPLE_RECEIVERS[1]},7.21,\n"
    )

    receivers, amounts = parse_batch_file(path)

    assert receivers == SAMPLE_RECEIVERS[:2]
    assert amounts == SAMPLE_AMOUNTS[:2]


def test_parse_csv_missing_amount(tmp_path):
    path = tmp_path / "rewards.csv"
    path.write_text(f"address,amount\n{SAMPLE_RECEIVERS[0]},\n")

    with pytest.raises(BatchValidationError, match="Row 2: missing amount"):
        parse_batch_file(path)


def test_parse_json(tmp_path):
    path = tmp_path / "rewards.json"
    path.write_text(json.dumps([
        {"address": SAMPLE_RECEIVERS[2], "amount": "56.109"},
        {"address": SAMPLE_RECEIVERS[3], "amount": 120.77},
    ]))

    receivers, amounts = parse_batch_file(path)

    assert receivers == SAMPLE_RECEIVERS[2:4]
    assert amounts == SAMPLE_AMOUNTS[2:4]


def test_parse_json_requires_list(tmp_path):
    path = tmp_path / "rewards.json"
    path.write_text(json.dumps({"address": SAMPLE_RECEIVERS[0]}))

    with pytest.raises(BatchValidationError, match="list"):
        parse_batch_file(path)
