"""Provider gateways - the pay-per-call services behind the guard."""

from spendguard.providers.base import ProviderGateway, ProviderInfo
from spendguard.providers.email import EMAIL_PROVIDER_INFO, MockEmailProvider
from spendguard.providers.http import HttpProviderGateway

__all__ = [
    "ProviderGateway",
    "ProviderInfo",
    "MockEmailProvider",
    "EMAIL_PROVIDER_INFO",
    "HttpProviderGateway",
]
