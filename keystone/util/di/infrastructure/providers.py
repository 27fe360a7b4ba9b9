"""Social provider infrastructure providers."""

from dishka import Scope, provide

from keystone.adapter.provider import build_validators
from keystone.config import ProviderSettings
from keystone.domain.service import ProviderTokenValidator
from keystone.domain.value import SocialProvider
from keystone.util.di.base import ProviderBase


class ProvidersProvider(ProviderBase):
    """Social provider validators component base."""

    __mock_component__ = "providers"


class ProdProvidersProvider(ProvidersProvider):
    """Production validators calling the real providers."""

    __is_mock__ = False

    @provide(scope=Scope.APP)
    def get_validators(
        self, settings: ProviderSettings
    ) -> dict[SocialProvider, ProviderTokenValidator]:
        """Provide one token validator per supported provider."""
        return build_validators(settings)
