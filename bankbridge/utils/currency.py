"""Currency code validation and resolution."""

from typing import Iterable, Optional

# Placeholder used only when no candidate supplies a usable code
NO_CURRENCY = "XXX"

# Active ISO-4217 alphabetic codes (funds/precious-metal codes excluded)
ISO_4217_CODES = frozenset(
    """
    AED AFN ALL AMD ANG AOA ARS AUD AWG AZN BAM BBD BDT BGN BHD BIF BMD BND BOB
    BRL BSD BTN BWP BYN BZD CAD CDF CHF CLP CNY COP CRC CUC CUP CVE CZK DJF DKK
    DOP DZD EGP ERN ETB EUR FJD FKP GBP GEL GHS GIP GMD GNF GTQ GYD HKD HNL HRK
    HTG HUF IDR ILS INR IQD IRR ISK JMD JOD JPY KES KGS KHR KMF KPW KRW KWD KYD
    KZT LAK LBP LKR LRD LSL LYD MAD MDL MGA MKD MMK MNT MOP MRU MUR MVR MWK MXN
    MYR MZN NAD NGN NIO NOK NPR NZD OMR PAB PEN PGK PHP PKR PLN PYG QAR RON RSD
    RUB RWF SAR SBD SCR SDG SEK SGD SHP SLE SLL SOS SRD SSP STN SVC SYP SZL THB
    TJS TMT TND TOP TRY TTD TWD TZS UAH UGX USD UYU UZS VES VND VUV WST XAF XCD
    XCG XOF XPF YER ZAR ZMW ZWL
    """.split()
)


def normalize_currency(code: Optional[str]) -> Optional[str]:
    """Upper-case and strip a currency code; None for blanks."""
    if not code or not isinstance(code, str):
        return None
    normalized = code.strip().upper()
    return normalized or None


def is_valid_currency(code: Optional[str]) -> bool:
    """True for a known ISO-4217 code. The placeholder is never valid."""
    normalized = normalize_currency(code)
    return normalized is not None and normalized != NO_CURRENCY and normalized in ISO_4217_CODES


def resolve_currency(candidates: Iterable[Optional[str]]) -> str:
    """
    First valid ISO-4217 code among ``candidates``, in order.

    Falls back to the placeholder only when every candidate is missing,
    blank, the placeholder itself, or unknown.

    >>> resolve_currency([None, "XXX", "eur"])
    'EUR'
    >>> resolve_currency([None, ""])
    'XXX'
    """
    for candidate in candidates:
        if is_valid_currency(candidate):
            return normalize_currency(candidate)
    return NO_CURRENCY
