"""Fallback chain selection by tier, service type and modality"""

from typing import Optional, List, Tuple, Callable

from ....core.config import RouterConfig
from ....core.exceptions import TierCapabilityMismatch
from ....core.logger import CentralizedLogger
from ....models.ai_request import ModelDescriptor, RequestPreferences
from ....models.subscription import ProviderName, ServiceType, SubscriptionTier


FallbackChain = Tuple[ModelDescriptor, ...]


class ModelSelector:
    """Computes the ordered fallback chain for a request

    Selection depends only on the RouterConfig it is given and the call
    arguments: no I/O, no global state. The chain holds at most one model
    per provider so that a vendor outage does not exhaust it.
    """

    def __init__(self, config: RouterConfig):
        """Initialize model selector

        Args:
            config: Routing configuration (catalog, overrides, global switches)
        """
        self.config = config
        self.logger = CentralizedLogger("ModelSelector")

    def select_chain(
        self,
        tier: SubscriptionTier,
        service_type: ServiceType,
        has_images: bool,
        preferences: Optional[RequestPreferences] = None
    ) -> FallbackChain:
        """Select the ordered candidates for a request

        Args:
            tier: Effective subscription tier
            service_type: Requesting product feature
            has_images: Whether the request carries images
            preferences: Caller routing preferences

        Returns:
            Non-empty tuple of model descriptors, best first

        Raises:
            TierCapabilityMismatch: No model available to the tier can serve
                the request (e.g. vision on a tier without vision models)
        """
        tier = SubscriptionTier.parse(tier)
        service_type = ServiceType.parse(service_type)
        preferences = preferences or RequestPreferences()

        eligible = [
            descriptor for descriptor in self.config.catalog
            if self._usable(descriptor, has_images) and descriptor.min_tier <= tier
        ]
        if not eligible:
            modality = "vision" if has_images else "text"
            raise TierCapabilityMismatch(
                f"No {modality} model available for tier '{tier.value}'"
            )

        chain = self._best_per_provider(eligible)
        chain = self._move_to_front(chain, lambda d: d.provider == self.config.default_provider)

        if preferences.prefer_open_alt and not has_images:
            chain = self._move_to_front(chain, lambda d: d.provider == ProviderName.OPENAI)

        chain = self._apply_override(chain, tier, service_type, has_images)

        if not self.config.enable_automatic_fallback:
            chain = chain[:1]
        chain = chain[:self.config.max_chain_length]

        self.logger.debug(
            f"Chain for tier={tier.value} service={service_type.value} images={has_images}: "
            f"{[d.model_id for d in chain]}"
        )
        return tuple(chain)

    @staticmethod
    def _usable(descriptor: ModelDescriptor, has_images: bool) -> bool:
        return descriptor.enabled and (descriptor.vision or not has_images)

    @staticmethod
    def _rank_key(descriptor: ModelDescriptor):
        # Highest quality first, cheaper wins ties, model_id keeps it deterministic
        return (-descriptor.quality_score, descriptor.unit_cost, descriptor.model_id)

    def _best_per_provider(self, eligible: List[ModelDescriptor]) -> List[ModelDescriptor]:
        best = {}
        for descriptor in sorted(eligible, key=self._rank_key):
            best.setdefault(descriptor.provider, descriptor)
        return list(best.values())

    @staticmethod
    def _move_to_front(
        chain: List[ModelDescriptor],
        predicate: Callable[[ModelDescriptor], bool]
    ) -> List[ModelDescriptor]:
        front = [d for d in chain if predicate(d)]
        return front + [d for d in chain if not predicate(d)]

    def _apply_override(
        self,
        chain: List[ModelDescriptor],
        tier: SubscriptionTier,
        service_type: ServiceType,
        has_images: bool
    ) -> List[ModelDescriptor]:
        override = self.config.service_overrides.get(service_type)
        if override is None or not override.is_active:
            return chain

        if override.provider_override is not None:
            chain = self._move_to_front(chain, lambda d: d.provider == override.provider_override)

        model_id = override.models.get(tier)
        if not model_id:
            return chain

        descriptor = self.config.get_model(model_id)
        if descriptor is None:
            self.logger.warning(f"Override for {service_type.value} names unknown model '{model_id}'")
            return chain
        if not self._usable(descriptor, has_images):
            self.logger.warning(
                f"Override model '{model_id}' for {service_type.value} is disabled "
                f"or cannot handle images; using defaults"
            )
            return chain

        return [descriptor] + [d for d in chain if d.provider != descriptor.provider]


def select_chain(
    config: RouterConfig,
    tier: SubscriptionTier,
    service_type: ServiceType,
    has_images: bool,
    preferences: Optional[RequestPreferences] = None
) -> FallbackChain:
    """Functional form of ModelSelector.select_chain"""
    return ModelSelector(config).select_chain(tier, service_type, has_images, preferences)
