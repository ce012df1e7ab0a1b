from execution.endpoint_resolver import EndpointResolver, NoEndpointAvailable
from execution.ledger_client import LedgerClientError, SubscriptionLedger
from execution.payment_executor import PaymentExecutor
from execution.tx_submitter import TxSubmitter, TxSubmitterError

__all__ = [
    "EndpointResolver",
    "LedgerClientError",
    "NoEndpointAvailable",
    "PaymentExecutor",
    "SubscriptionLedger",
    "TxSubmitter",
    "TxSubmitterError",
]
