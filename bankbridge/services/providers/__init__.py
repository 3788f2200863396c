"""
Bank data providers - vendor-agnostic accounts, transactions and institutions.

Supports:
- Plaid (US/CA)
- Teller (US)
- GoCardless Bank Account Data (EU/UK)
- EnableBanking (EU/UK)
"""

from .base_provider import BankingProvider, merge_transactions
from .provider_factory import ProviderFactory

__all__ = [
    "BankingProvider",
    "ProviderFactory",
    "merge_transactions",
]
