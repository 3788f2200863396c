"""
Provider factory for bank data vendors.

Centralizes provider construction so the GoCardless and EnableBanking
adapters share one cache and one credential cache.
"""

import logging
from typing import Dict, Optional, Union

from bankbridge.config import Settings, get_settings
from bankbridge.core.cache import KeyValueCache, create_cache
from bankbridge.core.credentials import CredentialCache
from bankbridge.core.retry import RetryPolicy
from bankbridge.schemas.banking import ProviderTag

from .base_provider import BankingProvider

logger = logging.getLogger(__name__)


class ProviderFactory:
    """Builds and memoizes one provider per tag."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        cache: Optional[KeyValueCache] = None,
        credentials: Optional[CredentialCache] = None,
        retry_policy: Optional[RetryPolicy] = None,
        **provider_kwargs,
    ):
        """
        Args:
            settings: Defaults to the process settings
            cache: Response cache; built from REDIS_URL when omitted
            credentials: Credential cache; wraps ``cache`` when omitted
            retry_policy: Rate limit retry policy for every provider
            provider_kwargs: Passed to every provider (``transport``, ``sleep``)
        """
        self.settings = settings or get_settings()
        self.cache = cache if cache is not None else create_cache(self.settings.REDIS_URL)
        self.credentials = credentials or CredentialCache(self.cache)
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self._provider_kwargs = provider_kwargs
        self._providers: Dict[ProviderTag, BankingProvider] = {}

    def get_provider(self, tag: Union[ProviderTag, str]) -> BankingProvider:
        """
        Get the provider for ``tag``.

        Raises:
            ValueError: If the tag is not a supported provider
        """
        try:
            tag = ProviderTag(tag.lower() if isinstance(tag, str) else tag)
        except ValueError:
            raise ValueError(
                f"Unsupported banking provider: {tag}. "
                f"Supported: {', '.join(t.value for t in ProviderTag)}"
            ) from None

        if tag not in self._providers:
            self._providers[tag] = self._create(tag)
            logger.info("Using banking provider: %s", tag.value)

        return self._providers[tag]

    def _create(self, tag: ProviderTag) -> BankingProvider:
        kwargs = dict(self._provider_kwargs, retry_policy=self.retry_policy)

        # Import only if needed
        if tag is ProviderTag.PLAID:
            from .plaid.provider import PlaidProvider

            return PlaidProvider(self.settings, **kwargs)
        if tag is ProviderTag.TELLER:
            from .teller.provider import TellerProvider

            return TellerProvider(self.settings, **kwargs)
        if tag is ProviderTag.GOCARDLESS:
            from .gocardless.provider import GoCardlessProvider

            return GoCardlessProvider(self.settings, self.cache, self.credentials, **kwargs)

        from .enablebanking.provider import EnableBankingProvider

        return EnableBankingProvider(self.settings, self.cache, self.credentials, **kwargs)

    def all_providers(self) -> Dict[ProviderTag, BankingProvider]:
        return {tag: self.get_provider(tag) for tag in ProviderTag}

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()
        self._providers.clear()
