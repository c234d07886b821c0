# /anvil_harness/adapters/currency.py
from decimal import Decimal, localcontext
from typing import Union

from pydantic import BaseModel, ConfigDict


class NativeCurrency(BaseModel):
    model_config = ConfigDict(frozen=True)

    chain_id: int = 1
    symbol: str = "ETH"
    decimals: int = 18

    @property
    def is_native(self) -> bool:
        return True


class Token(BaseModel):
    model_config = ConfigDict(frozen=True)

    chain_id: int
    address: str
    decimals: int
    symbol: str | None = None

    @property
    def is_native(self) -> bool:
        return False


Currency = Union[NativeCurrency, Token]

ETH = NativeCurrency()


class CurrencyAmount(BaseModel):
    """An amount of `currency` held as an integer number of its smallest unit."""
    model_config = ConfigDict(frozen=True)

    currency: Currency
    raw: int

    @classmethod
    def from_raw(cls, currency: Currency, raw: int) -> "CurrencyAmount":
        return cls(currency=currency, raw=int(raw))

    @classmethod
    def from_exact(cls, currency: Currency, amount: Union[Decimal, int, str]) -> "CurrencyAmount":
        """`from_exact(ETH, "1.5")` is 1.5 ether."""
        with localcontext() as ctx:
            ctx.prec = 100
            raw = Decimal(amount) * (Decimal(10) ** currency.decimals)
        if raw != raw.to_integral_value():
            raise ValueError(f"{amount} has more than {currency.decimals} decimals")
        return cls(currency=currency, raw=int(raw))

    def to_exact(self) -> str:
        with localcontext() as ctx:
            ctx.prec = 100
            value = (Decimal(self.raw) / (Decimal(10) ** self.currency.decimals)).normalize()
        return format(value, "f")

    def __str__(self) -> str:
        return f"{self.to_exact()} {self.currency.symbol}"
