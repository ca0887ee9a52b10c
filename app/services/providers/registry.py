"""Payment providers registered by name."""

from app.services.providers.base import PaymentProvider

_providers: dict[str, PaymentProvider] = {}


def register_provider(provider: PaymentProvider) -> None:
    _providers[provider.name] = provider


def unregister_provider(name: str) -> None:
    _providers.pop(name, None)


def get_provider(name: str) -> PaymentProvider | None:
    if not _providers:
        register_default_providers()
    return _providers.get(name)


def available_providers() -> list[str]:
    if not _providers:
        register_default_providers()
    return sorted(_providers)


def register_default_providers() -> None:
    from app.services.providers.paypal_provider import PayPalProvider
    from app.services.providers.stripe_provider import StripeProvider

    _providers.setdefault("stripe", StripeProvider())
    _providers.setdefault("paypal", PayPalProvider())
