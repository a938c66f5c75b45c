"""
Shop configuration loaded once from ``settings.SHOP``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping, Optional

DEFAULT_SHIPPING_FEES = {"standard": "60", "express": "100"}

DEFAULT_PAYMENT_METHODS = {
    "credit_card": {"enabled": True, "label": "Credit card"},
    "bank_transfer": {"enabled": True, "label": "Bank transfer"},
    "promptpay": {"enabled": True, "label": "PromptPay"},
    "cash_on_delivery": {"enabled": True, "label": "Cash on delivery"},
}


@dataclass(frozen=True)
class ShopConfig:
    tax_rate: Decimal = Decimal("0.07")
    shipping_fees: Mapping[str, Decimal] = field(
        default_factory=lambda: MappingProxyType(
            {name: Decimal(fee) for name, fee in DEFAULT_SHIPPING_FEES.items()}
        )
    )
    free_shipping_threshold: Optional[Decimal] = None
    points_divisor: Decimal = Decimal("100")
    currency: str = "THB"
    payment_methods: Mapping[str, Mapping] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_PAYMENT_METHODS))
    )
    line_channel_access_token: str = ""
    notification_workers: int = 4
    page_size: int = 50

    @classmethod
    def from_dict(cls, raw: Mapping) -> ShopConfig:
        """Build config from a settings-style dict; missing keys keep their defaults."""
        threshold = raw.get("FREE_SHIPPING_THRESHOLD")
        fees = raw.get("SHIPPING_FEES", DEFAULT_SHIPPING_FEES)
        methods = raw.get("PAYMENT_METHODS", DEFAULT_PAYMENT_METHODS)
        config = cls(
            tax_rate=Decimal(str(raw.get("TAX_RATE", "0.07"))),
            shipping_fees=MappingProxyType({name: Decimal(str(fee)) for name, fee in fees.items()}),
            free_shipping_threshold=Decimal(str(threshold)) if threshold is not None else None,
            points_divisor=Decimal(str(raw.get("POINTS_DIVISOR", "100"))),
            currency=raw.get("CURRENCY", "THB"),
            payment_methods=MappingProxyType({name: dict(opts) for name, opts in methods.items()}),
            line_channel_access_token=raw.get("LINE_CHANNEL_ACCESS_TOKEN", ""),
            notification_workers=int(raw.get("NOTIFICATION_WORKERS", 4)),
            page_size=int(raw.get("PAGE_SIZE", 50)),
        )
        if config.tax_rate < 0:
            raise ValueError("TAX_RATE must be non-negative")
        if config.points_divisor <= 0:
            raise ValueError("POINTS_DIVISOR must be positive")
        return config

    @classmethod
    def from_settings(cls) -> ShopConfig:
        from django.conf import settings

        return cls.from_dict(getattr(settings, "SHOP", {}))

    def payment_method_enabled(self, payment_method: str) -> bool:
        options = self.payment_methods.get(payment_method)
        return bool(options and options.get("enabled", False))

    def enabled_payment_methods(self) -> list[dict]:
        """Public view of the enabled payment methods."""
        return [
            {"method": name, "label": options.get("label", name)}
            for name, options in self.payment_methods.items()
            if options.get("enabled", False)
        ]


def get_shop_config() -> ShopConfig:
    """Config built by the app at startup."""
    from django.apps import apps

    return apps.get_app_config("ordering").shop_config
