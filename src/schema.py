# Models with validation
from pydantic import BaseModel, Field, model_validator
from core.config import setting

# API request models
class DistributionRequest(BaseModel):
    transaction_id: str
    receivers: list[str]
    amounts: list[int] = Field(description="Amounts in the token's smallest unit")

    @model_validator(mode="after")
    def check_batch_shape(self):
        if len(self.receivers) != len(self.amounts):
            raise ValueError(
                f"{len(self.receivers)} receivers but {len(self.amounts)} amounts"
            )
        if not self.receivers:
            raise ValueError("At least one receiver is required")
        if len(self.receivers) > setting.max_batch_size:
            raise ValueError(
                f"Batch has {len(self.receivers)} entries, limit is {setting.max_batch_size}"
            )
        if any(amount < 0 for amount in self.amounts):
            raise ValueError("Amounts must not be negative")
        return self


class BalanceEntry(BaseModel):
    address: str
    balance: int | None = None
    error: str | None = None


class DistributionResponse(BaseModel):
    transaction_id: str
    status: str
    message: str
    approve_tx: str | None = None
    distribute_tx: str | None = None
    balances: list[BalanceEntry] = []


class BalancesRequest(BaseModel):
    addresses: list[str]


class BalancesResponse(BaseModel):
    balances: list[BalanceEntry]
