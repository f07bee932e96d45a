"""Currency conversion and formatting package."""

from finance_ledger.currency.normalizer import (
    ConversionFallbackWarning,
    ConversionResult,
    CurrencyNormalizer,
    RateSource,
    RateTable,
    convert,
    convert_with_confidence,
    format_amount,
    minor_units,
)

__all__ = [
    "ConversionFallbackWarning",
    "ConversionResult",
    "CurrencyNormalizer",
    "RateSource",
    "RateTable",
    "convert",
    "convert_with_confidence",
    "format_amount",
    "minor_units",
]
