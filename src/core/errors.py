class DistributionError(Exception):
    """Base class for every failure raised while distributing rewards."""


class ConfigurationError(DistributionError):
    pass


class BatchValidationError(DistributionError, ValueError):
    """A transfer batch is malformed and must not reach the chain."""


class ReadFailure(DistributionError):
    """A read-only contract call could not be completed."""


class SubmissionFailure(DistributionError):
    """A transaction could not be built, signed or broadcast."""


class FinalizationTimeout(SubmissionFailure):
    """No receipt arrived for a submitted transaction in time."""


class RevertFailure(DistributionError):
    """The contract rejected the transaction."""

    def __init__(self, message: str, tx_hash: str | None = None):
        super().__init__(message)
        self.tx_hash = tx_hash
