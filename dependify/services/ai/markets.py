"""
Supported business markets and their per-market configuration.

Markets gate which tools a tenant may use: a tool declares the set of
markets it supports, and the registry filters on the tenant's market.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional


class MarketCode(str, Enum):
    """Supported market (region) codes."""
    NG = "NG"
    US = "US"
    UK = "UK"
    AU = "AU"
    NZ = "NZ"
    CA = "CA"


@dataclass(frozen=True)
class MarketConfig:
    code: MarketCode
    name: str
    currency: str
    currency_symbol: str
    payment_provider: str
    telephony_provider: str
    tax_label: str
    tax_rate: Optional[float]  # None = varies (e.g. US state sales tax)
    timezone: str
    payment_provider_fallback: Optional[str] = None


MARKETS: Dict[MarketCode, MarketConfig] = {
    MarketCode.NG: MarketConfig(
        code=MarketCode.NG,
        name="Nigeria",
        currency="NGN",
        currency_symbol="₦",
        payment_provider="paystack",
        payment_provider_fallback="flutterwave",
        telephony_provider="africas_talking",
        tax_label="VAT",
        tax_rate=0.075,
        timezone="Africa/Lagos",
    ),
    MarketCode.US: MarketConfig(
        code=MarketCode.US,
        name="United States",
        currency="USD",
        currency_symbol="$",
        payment_provider="stripe",
        telephony_provider="twilio",
        tax_label="Sales Tax",
        tax_rate=None,
        timezone="America/New_York",
    ),
    MarketCode.UK: MarketConfig(
        code=MarketCode.UK,
        name="United Kingdom",
        currency="GBP",
        currency_symbol="£",
        payment_provider="stripe",
        telephony_provider="twilio",
        tax_label="VAT",
        tax_rate=0.20,
        timezone="Europe/London",
    ),
    MarketCode.AU: MarketConfig(
        code=MarketCode.AU,
        name="Australia",
        currency="AUD",
        currency_symbol="A$",
        payment_provider="stripe",
        telephony_provider="twilio",
        tax_label="GST",
        tax_rate=0.10,
        timezone="Australia/Sydney",
    ),
    MarketCode.NZ: MarketConfig(
        code=MarketCode.NZ,
        name="New Zealand",
        currency="NZD",
        currency_symbol="NZ$",
        payment_provider="stripe",
        telephony_provider="twilio",
        tax_label="GST",
        tax_rate=0.15,
        timezone="Pacific/Auckland",
    ),
    MarketCode.CA: MarketConfig(
        code=MarketCode.CA,
        name="Canada",
        currency="CAD",
        currency_symbol="CA$",
        payment_provider="stripe",
        telephony_provider="twilio",
        tax_label="GST/HST",
        tax_rate=0.05,
        timezone="America/Toronto",
    ),
}

ALL_MARKETS = frozenset(MarketCode)


def get_market(code: MarketCode) -> MarketConfig:
    return MARKETS[MarketCode(code)]


def markets_with_fixed_tax_rate() -> List[MarketCode]:
    """Markets whose tax rate is a single national figure."""
    return [code for code, config in MARKETS.items() if config.tax_rate is not None]
