"""
Currency Normalizer

Converts amounts between currencies with a rate table and formats them
for display.

DESIGN DECISION: Nothing here reads ambient configuration. The display
currency and the rate table are always passed in, so the same amount
renders identically in tests, reports and exports.

Rates are "units of currency per 1 unit of the base currency".
With rates {USD: 1, EUR: 0.9}, 10 EUR is 10 / 0.9 * 1 = 11.11 USD.

The normalizer never performs network I/O. A RateSource fetches tables;
RateTable keeps the last good one when a refresh fails.
"""

import warnings
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Mapping, Optional, Union

import structlog
from pydantic import BaseModel

from finance_ledger.audit import AuditLogger
from finance_ledger.models.audit import AuditEventBuilder
from finance_ledger.models.ledger import utcnow


Rates = Mapping[str, Union[Decimal, float, int, str]]


class ConversionFallbackWarning(UserWarning):
    """
    An amount was converted with the approximate single-rate fallback.

    Raised through `warnings.warn`; the same information is available
    as `ConversionResult.is_approximate`.
    """
    pass


class ConversionResult(BaseModel):
    """Outcome of a conversion, including how much to trust it."""

    amount: Decimal
    from_currency: Optional[str]
    to_currency: str
    is_converted: bool
    is_approximate: bool = False


# symbol, minor units
CURRENCY_FORMATS: dict[str, tuple[str, int]] = {
    "USD": ("$", 2),
    "EUR": ("€", 2),
    "GBP": ("£", 2),
    "INR": ("₹", 2),
    "CAD": ("CA$", 2),
    "AUD": ("A$", 2),
    "JPY": ("¥", 0),
    "KRW": ("₩", 0),
    "CNY": ("CN¥", 2),
    "CHF": ("CHF ", 2),
}

# Currencies without minor units, for codes missing from CURRENCY_FORMATS
ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW", "VND", "CLP", "ISK", "UGX", "XAF", "XOF"}


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _known_rate(rates: Rates, code: str) -> Optional[Decimal]:
    """Return the rate for `code` if it is usable (present and positive)."""
    raw = rates.get(code)
    if raw is None:
        return None
    try:
        rate = _to_decimal(raw)
    except (InvalidOperation, ValueError):
        return None
    if not rate.is_finite() or rate <= 0:
        return None
    return rate


def convert_with_confidence(
    amount: Decimal,
    from_currency: Optional[str],
    to_currency: str,
    rates: Rates,
) -> ConversionResult:
    """
    Convert `amount` and report whether the result is exact or approximate.

    - same currency (or no source currency): unchanged
    - both rates known: amount / rates[from] * rates[to]
    - only the target rate known: amount * rates[to], approximate
    - otherwise: unchanged, no error
    """
    amount = _to_decimal(amount)
    to_currency = to_currency.upper()
    from_currency = from_currency.upper() if from_currency else None

    if from_currency is None or from_currency == to_currency:
        return ConversionResult(
            amount=amount,
            from_currency=from_currency,
            to_currency=to_currency,
            is_converted=False,
        )

    from_rate = _known_rate(rates, from_currency)
    to_rate = _known_rate(rates, to_currency)

    if from_rate is not None and to_rate is not None:
        return ConversionResult(
            amount=(amount / from_rate) * to_rate,
            from_currency=from_currency,
            to_currency=to_currency,
            is_converted=True,
        )

    if to_rate is not None:
        # Treats the source as if it were the base currency
        return ConversionResult(
            amount=amount * to_rate,
            from_currency=from_currency,
            to_currency=to_currency,
            is_converted=True,
            is_approximate=True,
        )

    return ConversionResult(
        amount=amount,
        from_currency=from_currency,
        to_currency=to_currency,
        is_converted=False,
    )


def convert(
    amount: Decimal,
    from_currency: Optional[str],
    to_currency: str,
    rates: Rates,
) -> Decimal:
    """
    Convert `amount` from one currency to another.

    Emits ConversionFallbackWarning when the approximate single-rate
    fallback was used. Use convert_with_confidence to get the flag
    without going through the warnings machinery.
    """
    result = convert_with_confidence(amount, from_currency, to_currency, rates)
    if result.is_approximate:
        warnings.warn(
            f"No rate for {result.from_currency}; converted to "
            f"{result.to_currency} using the target rate only",
            ConversionFallbackWarning,
            stacklevel=2,
        )
    return result.amount


def minor_units(currency_code: str) -> int:
    """Number of decimal places the currency is displayed with."""
    code = currency_code.upper()
    if code in CURRENCY_FORMATS:
        return CURRENCY_FORMATS[code][1]
    return 0 if code in ZERO_DECIMAL_CURRENCIES else 2


def format_amount(amount: Decimal, currency_code: str) -> str:
    """
    Format an amount for display, e.g. "$1,234.50", "-€12.00", "¥1,235".

    Unknown codes are shown as a prefix: "XYZ 1,234.50".
    """
    code = currency_code.upper()
    places = minor_units(code)
    quantum = Decimal(1).scaleb(-places)
    value = _to_decimal(amount).quantize(quantum, rounding=ROUND_HALF_UP)

    sign = "-" if value < 0 else ""
    number = f"{abs(value):,.{places}f}"

    if code in CURRENCY_FORMATS:
        symbol = CURRENCY_FORMATS[code][0]
        return f"{sign}{symbol}{number}"
    return f"{sign}{code} {number}"


class RateSource(ABC):
    """
    Supplies exchange rate tables.

    Implementations talk to whatever rate service is configured.
    """

    @abstractmethod
    async def fetch_rates(self, base_currency: str) -> dict[str, Decimal]:
        """
        Fetch rates relative to `base_currency`.

        Returns:
            Mapping of currency code to units per 1 unit of base

        Raises:
            Any exception on failure; RateTable treats it as a failed refresh
        """
        pass


class RateTable:
    """
    The current rate table.

    The base currency always has rate 1. A failed or empty refresh
    leaves the previous table untouched.
    """

    def __init__(
        self,
        base_currency: str = "USD",
        rates: Optional[Rates] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._base_currency = base_currency.upper()
        self._audit_logger = audit_logger
        self._rates: dict[str, Decimal] = {self._base_currency: Decimal("1")}
        self._refreshed_at: Optional[datetime] = None
        self._logger = structlog.get_logger()
        if rates:
            self._rates.update(self._clean(rates))
            self._rates[self._base_currency] = Decimal("1")

    @property
    def base_currency(self) -> str:
        return self._base_currency

    @property
    def rates(self) -> dict[str, Decimal]:
        return dict(self._rates)

    @property
    def refreshed_at(self) -> Optional[datetime]:
        return self._refreshed_at

    def rate(self, currency_code: str) -> Optional[Decimal]:
        return self._rates.get(currency_code.upper())

    def _clean(self, rates: Rates) -> dict[str, Decimal]:
        cleaned = {}
        for code, raw in rates.items():
            rate = _known_rate(rates, code)
            if rate is None:
                self._logger.warning("rate_discarded", currency=code, rate=str(raw))
                continue
            cleaned[code.upper()] = rate
        return cleaned

    async def refresh(self, source: RateSource) -> bool:
        """
        Replace the table with a fresh one from `source`.

        Returns:
            True if the table was replaced, False if the previous one was kept
        """
        try:
            fetched = await source.fetch_rates(self._base_currency)
        except Exception as e:
            await self._refresh_failed(str(e))
            return False

        cleaned = self._clean(fetched or {})
        if not cleaned:
            await self._refresh_failed("source returned no usable rates")
            return False

        cleaned[self._base_currency] = Decimal("1")
        self._rates = cleaned
        self._refreshed_at = utcnow()
        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.rates_refreshed(self._base_currency, len(cleaned))
            )
        else:
            self._logger.info(
                "rates_refreshed",
                base_currency=self._base_currency,
                currency_count=len(cleaned),
            )
        return True

    async def _refresh_failed(self, error_message: str) -> None:
        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.rates_refresh_failed(self._base_currency, error_message)
            )
        else:
            self._logger.warning(
                "rates_refresh_failed",
                base_currency=self._base_currency,
                error=error_message,
            )


class CurrencyNormalizer:
    """
    Converts and formats amounts in one display currency.

    Usage:
        normalizer = CurrencyNormalizer("EUR", rate_table)
        normalizer.display(Decimal("100"), "USD")   # "€90.00"
    """

    def __init__(
        self,
        display_currency: str,
        rates: Union[RateTable, Rates],
    ):
        self._display_currency = display_currency.upper()
        self._rates = rates

    @property
    def display_currency(self) -> str:
        return self._display_currency

    def _rate_mapping(self) -> Rates:
        if isinstance(self._rates, RateTable):
            return self._rates.rates
        return self._rates

    def with_currency(self, display_currency: str) -> 'CurrencyNormalizer':
        """A normalizer for another display currency sharing the same rates."""
        return CurrencyNormalizer(display_currency, self._rates)

    def to_display(
        self,
        amount: Decimal,
        from_currency: Optional[str] = None,
    ) -> ConversionResult:
        return convert_with_confidence(
            amount, from_currency, self._display_currency, self._rate_mapping()
        )

    def display(self, amount: Decimal, from_currency: Optional[str] = None) -> str:
        """Convert to the display currency and format."""
        result = self.to_display(amount, from_currency)
        return format_amount(result.amount, self._display_currency)
