"""
Tests for IntroEligibilityCache.
"""

from dataclasses import replace

import pytest

from storekit_entitlements.exceptions import EligibilityQueryError
from storekit_entitlements.models.storekit import OfferPaymentMode, SubscriptionOffer
from storekit_entitlements.services.eligibility import IntroEligibilityCache
from storekit_entitlements.services.products import (
    COINS_PRODUCT_ID,
    LIFETIME_PRODUCT_ID,
    MONTHLY_PRODUCT_ID,
    YEARLY_PRODUCT_ID,
)


class TestIntroEligibilityCache:
    """Eligibility refresh and lookups."""

    @pytest.mark.asyncio
    async def test_only_subscriptions_with_offer_queried(self, catalog_client, products):
        cache = IntroEligibilityCache(catalog_client)

        snapshot = await cache.refresh(products)

        assert dict(snapshot) == {MONTHLY_PRODUCT_ID: True}
        assert not cache.is_eligible(YEARLY_PRODUCT_ID)
        assert not cache.is_eligible(LIFETIME_PRODUCT_ID)
        assert not cache.is_eligible(COINS_PRODUCT_ID)

    @pytest.mark.asyncio
    async def test_ineligible_after_using_offer(self, catalog_client, products):
        catalog_client.eligibility[MONTHLY_PRODUCT_ID] = False
        cache = IntroEligibilityCache(catalog_client)

        await cache.refresh(products)

        assert cache.is_determined(MONTHLY_PRODUCT_ID)
        assert cache.is_eligible(MONTHLY_PRODUCT_ID) is False

    @pytest.mark.asyncio
    async def test_query_failure_is_undetermined(self, catalog_client, products):
        catalog_client.eligibility_error = EligibilityQueryError(MONTHLY_PRODUCT_ID, "timeout")
        cache = IntroEligibilityCache(catalog_client)

        await cache.refresh(products)

        assert cache.snapshot()[MONTHLY_PRODUCT_ID] is None
        assert not cache.is_determined(MONTHLY_PRODUCT_ID)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("optimistic", [True, False])
    async def test_undetermined_resolved_by_policy(self, catalog_client, products, optimistic):
        catalog_client.eligibility_error = RuntimeError("store unavailable")
        cache = IntroEligibilityCache(catalog_client, optimistic=optimistic)

        await cache.refresh(products)

        assert cache.is_eligible(MONTHLY_PRODUCT_ID) is optimistic

    @pytest.mark.asyncio
    async def test_snapshot_is_read_only(self, catalog_client, products):
        cache = IntroEligibilityCache(catalog_client)
        await cache.refresh(products)

        with pytest.raises(TypeError):
            cache.snapshot()[MONTHLY_PRODUCT_ID] = False  # type: ignore[index]


class TestDescribeOffer:
    """Offer text shown next to a subscription."""

    @pytest.mark.asyncio
    async def test_free_trial_text(self, catalog_client, products, product_by_id):
        cache = IntroEligibilityCache(catalog_client)
        await cache.refresh(products)

        assert cache.describe_offer(product_by_id[MONTHLY_PRODUCT_ID]) == "Free trial: 1 week"

    @pytest.mark.asyncio
    async def test_regular_price_when_ineligible(self, catalog_client, products, product_by_id):
        catalog_client.eligibility[MONTHLY_PRODUCT_ID] = False
        cache = IntroEligibilityCache(catalog_client)
        await cache.refresh(products)

        assert cache.describe_offer(product_by_id[MONTHLY_PRODUCT_ID]) == "Regular price: $6.00"

    @pytest.mark.asyncio
    async def test_intro_price_text(self, catalog_client, product_by_id):
        monthly = replace(
            product_by_id[MONTHLY_PRODUCT_ID],
            introductory_offer=SubscriptionOffer(
                payment_mode=OfferPaymentMode.PAY_AS_YOU_GO,
                display_price="$1.99",
                period_value=3,
                period_unit="month",
            ),
        )
        cache = IntroEligibilityCache(catalog_client)
        await cache.refresh([monthly])

        assert cache.describe_offer(monthly) == "Intro price: $1.99 for 3 months"

    def test_no_text_without_offer(self, catalog_client, product_by_id):
        cache = IntroEligibilityCache(catalog_client)

        assert cache.describe_offer(product_by_id[YEARLY_PRODUCT_ID]) is None
        assert cache.describe_offer(product_by_id[LIFETIME_PRODUCT_ID]) is None
