from typing import Callable, Dict, List

from raiz.errors import ConfigurationError
from .base import ProviderOutcome, VulnerabilityProvider
from .ghsa import GhsaProvider
from .maven_central import MavenCentralProvider
from .nvd import NvdProvider
from .osv import OsvProvider


def _common(settings) -> dict:
    return {
        "timeout": settings.provider_timeout,
        "failure_threshold": settings.provider_failure_threshold,
        "cooldown": settings.provider_cooldown,
    }


PROVIDER_FACTORIES: Dict[str, Callable[..., VulnerabilityProvider]] = {
    "osv": lambda s: OsvProvider(s.osv_url, **_common(s)),
    "nvd": lambda s: NvdProvider(s.nvd_url, api_key=s.nvd_api_key, **_common(s)),
    "ghsa": lambda s: GhsaProvider(s.github_api_url, token=s.github_token, **_common(s)),
    "maven_central": lambda s: MavenCentralProvider(s.ossindex_url, user=s.ossindex_user,
                                                    token=s.ossindex_token, **_common(s)),
}


def create_provider(name: str, settings) -> VulnerabilityProvider:
    factory = PROVIDER_FACTORIES.get(name.strip().lower())
    if factory is None:
        raise ConfigurationError(
            f"Unknown vulnerability provider '{name}'. Choose from: {', '.join(PROVIDER_FACTORIES)}"
        )
    return factory(settings)


def build_providers(settings) -> List[VulnerabilityProvider]:
    return [create_provider(name, settings) for name in settings.providers]


__all__ = [
    "GhsaProvider",
    "MavenCentralProvider",
    "NvdProvider",
    "OsvProvider",
    "ProviderOutcome",
    "VulnerabilityProvider",
    "build_providers",
    "create_provider",
]
