"""
Institution directory across every banking provider.

Fetches institutions from all providers concurrently, merges duplicates,
copies logos into logo storage and caches the merged list. A provider that
fails contributes an entry to ``errors`` instead of failing the whole
listing; partial results are never cached.
"""

import asyncio
import base64
import logging
import os
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

import httpx

from bankbridge.config import Settings, get_settings
from bankbridge.core.cache import KeyValueCache
from bankbridge.schemas.banking import (
    GetInstitutionsRequest,
    Institution,
    InstitutionsResult,
    ProviderTag,
)
from bankbridge.services.banking_facade import BankingFacade
from bankbridge.services.providers.http_client import REQUEST_TIMEOUT
from bankbridge.services.storage_service import LogoStorage, LogoStorageError, logo_key

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/svg+xml": "svg",
    "image/webp": "webp",
    "image/gif": "gif",
}


def _cache_key(country_code: Optional[str]) -> str:
    return f"institutions_{country_code.upper() if country_code else 'all'}"


def merge_institutions(batches: List[List[Institution]]) -> List[Institution]:
    """
    Merge per-provider lists, keyed on (provider, id).

    Repeated entries keep the first occurrence and gain the union of
    countries. Result is sorted by name.
    """
    merged: Dict[Tuple[ProviderTag, str], Institution] = {}
    for batch in batches:
        for institution in batch:
            key = (institution.provider, institution.id)
            existing = merged.get(key)
            if existing is None:
                merged[key] = institution
                continue

            countries = list(existing.countries)
            countries += [country for country in institution.countries if country not in countries]
            if countries != existing.countries:
                merged[key] = existing.model_copy(update={"countries": countries})

    return sorted(merged.values(), key=lambda institution: institution.name.lower())


def logo_extension(logo: str) -> str:
    """File extension for a logo URL or data URI. Defaults to png."""
    if logo.startswith("data:"):
        media_type = logo[5:].split(";", 1)[0]
        return _EXTENSIONS.get(media_type, "png")

    _, extension = os.path.splitext(urlparse(logo).path)
    extension = extension.lstrip(".").lower()
    return extension if extension in _EXTENSIONS.values() or extension == "jpeg" else "png"


def decode_data_uri(logo: str) -> Tuple[bytes, str]:
    """Payload bytes and media type of a base64 ``data:`` URI."""
    header, _, payload = logo.partition(",")
    media_type = header[5:].split(";", 1)[0] or "application/octet-stream"
    return base64.b64decode(payload), media_type


class InstitutionDirectory:
    """Aggregated, cached institution listing with logo resolution."""

    def __init__(
        self,
        facade: BankingFacade,
        cache: KeyValueCache,
        storage: Optional[LogoStorage] = None,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        settings = settings or get_settings()
        self.facade = facade
        self.cache = cache
        self.storage = storage
        self.cache_ttl = settings.INSTITUTIONS_CACHE_TTL_HOURS * 60 * 60
        self._semaphore = asyncio.Semaphore(settings.LOGO_DOWNLOAD_CONCURRENCY)
        self._http_client = http_client

    async def get_institutions(
        self,
        country_code: Optional[str] = None,
        refresh: bool = False,
    ) -> InstitutionsResult:
        """
        All institutions for ``country_code`` (every country when omitted).

        Args:
            country_code: ISO 3166 country filter passed to every provider
            refresh: Ignore the cached listing

        Returns:
            Merged institutions plus a provider -> error message map
        """
        key = _cache_key(country_code)
        if not refresh:
            cached = await self.cache.get(key)
            if cached is not None:
                return InstitutionsResult(institutions=[Institution.model_validate(item) for item in cached])

        tags = list(ProviderTag)
        request = GetInstitutionsRequest(country_code=country_code)
        results = await asyncio.gather(
            *(self.facade.get_institutions(tag, request) for tag in tags),
            return_exceptions=True,
        )

        batches: List[List[Institution]] = []
        errors: Dict[str, str] = {}
        for tag, result in zip(tags, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error("Failed to fetch %s institutions: %s", tag.value, result)
                errors[tag.value] = str(result) or type(result).__name__
                continue
            logger.info("Fetched %d institutions from %s", len(result), tag.value)
            batches.append(result)

        institutions = merge_institutions(batches)
        if self.storage is not None:
            institutions = await self._resolve_logos(institutions)

        if errors:
            logger.warning("Institution listing incomplete, not caching (failed: %s)", ", ".join(errors))
        else:
            await self.cache.set(
                key,
                [institution.model_dump(mode="json") for institution in institutions],
                self.cache_ttl,
            )

        return InstitutionsResult(institutions=institutions, errors=errors)

    # ── Logos ────────────────────────────────────────────────────────────────

    async def _resolve_logos(self, institutions: List[Institution]) -> List[Institution]:
        if self._http_client is not None:
            return list(await asyncio.gather(*(self._resolve_logo(i, self._http_client) for i in institutions)))

        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT, follow_redirects=True) as client:
            return list(await asyncio.gather(*(self._resolve_logo(i, client) for i in institutions)))

    async def _resolve_logo(self, institution: Institution, client: httpx.AsyncClient) -> Institution:
        """Point ``logo`` at logo storage, uploading the vendor logo when missing."""
        if not institution.logo:
            return institution

        key = logo_key(institution.id, logo_extension(institution.logo))
        async with self._semaphore:
            try:
                if await self.storage.exists(key):
                    url = self.storage.public_url(key)
                else:
                    data, content_type = await self._download(institution.logo, client)
                    url = await self.storage.save(key, data, content_type=content_type)
            except (httpx.HTTPError, LogoStorageError, OSError, ValueError) as e:
                logger.warning("Failed to store logo for %s institution %s: %s", institution.provider.value, institution.id, e)
                return institution

        return institution.model_copy(update={"logo": url})

    async def _download(self, logo: str, client: httpx.AsyncClient) -> Tuple[bytes, str]:
        if logo.startswith("data:"):
            return decode_data_uri(logo)

        response = await client.get(logo)
        response.raise_for_status()
        content_type = response.headers.get("content-type", "image/png").split(";", 1)[0]
        return response.content, content_type
