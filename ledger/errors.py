"""Errors raised while deploying and initializing the staking program."""


class DeployError(Exception):
    """Base class for every failure that aborts a deployment run."""


class ConfigError(DeployError):
    """Deployment configuration is invalid or a step's prerequisites are missing."""


class LedgerConnectionError(DeployError):
    """Endpoint unreachable or cluster name unknown."""


class InsufficientFundsError(DeployError):
    """Payer balance is below the required minimum and cannot be topped up."""


class FileError(DeployError):
    """Program bytecode or keypair file is missing or unreadable."""


class EncodingError(DeployError):
    """Instruction field values cannot be encoded."""


class DecodeError(EncodingError):
    """Instruction bytes are malformed or truncated."""


class LedgerError(DeployError):
    """Failure reported by the ledger during a transaction lifecycle."""


class RentQueryError(LedgerError):
    """Minimum rent-exempt balance could not be fetched."""


class SubmissionError(LedgerError):
    """Transaction could not be signed or was rejected on submission."""


class ConfirmationError(LedgerError):
    """Transaction was not confirmed in time."""
