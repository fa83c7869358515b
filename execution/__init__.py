from execution.advisory_client import (
    AdvisoryClient,
    AdvisoryError,
    OpenAICompatibleAdvisor,
    ScoreThresholdAdvisor,
    build_advisor,
)
from execution.tx_submitter import TxSubmitter, TxSubmitterError
from execution.vault_client import VaultClient, VaultClientError

__all__ = [
    "AdvisoryClient",
    "AdvisoryError",
    "OpenAICompatibleAdvisor",
    "ScoreThresholdAdvisor",
    "TxSubmitter",
    "TxSubmitterError",
    "VaultClient",
    "VaultClientError",
    "build_advisor",
]
