"""
Tests for the safety data store and the live review feed, against an
in-memory SQLite database.
"""

import asyncio
from datetime import timedelta

import pytest

from safepath.models.domain import (
    AreaStatistics, DemographicTag, DemographicType, UserDemographics,
)
from safepath.services.repository import SafetyRepository
from safepath.services.review_feed import ReviewFeed

from helpers import ORIGIN, T0, east, make_review, north, recent

WOMAN = DemographicTag(DemographicType.GENDER, "woman")


class TestSafetyRepository:

    def test_add_review_builds_scores(self, settings, db):
        repo = SafetyRepository(settings=settings)

        async def scenario():
            await repo.add_review(make_review("r1", ORIGIN, 4.0, T0, location_id="cafe", tags=[WOMAN]), place_type="cafe")
            await repo.add_review(make_review("r2", ORIGIN, 2.0, recent(1), location_id="cafe", tags=[WOMAN]))
            return await repo.get_profile("cafe")

        profile = asyncio.run(scenario())
        assert profile.place_type == "cafe"
        assert profile.overall.avg_overall_score == pytest.approx(3.0)
        assert profile.overall.review_count == 2
        woman = [s for s in profile.scores if s.demographic_type == DemographicType.GENDER]
        assert woman[0].avg_overall_score == pytest.approx(3.0)
        assert not woman[0].low_confidence

    def test_duplicate_review_ignored(self, settings, db):
        repo = SafetyRepository(settings=settings)

        async def scenario():
            first = await repo.add_review(make_review("r1", ORIGIN, 4.0, T0, location_id="cafe"))
            second = await repo.add_review(make_review("r1", ORIGIN, 1.0, T0, location_id="cafe"))
            return first, second, await repo.get_profile("cafe")

        first, second, profile = asyncio.run(scenario())
        assert first is True
        assert second is False
        assert profile.overall.avg_overall_score == pytest.approx(4.0)

    def test_spatial_queries(self, settings, db):
        repo = SafetyRepository(settings=settings)

        async def scenario():
            await repo.add_review(make_review("near", north(300), 3.0, T0, location_id="near"))
            await repo.add_review(make_review("far", east(5000), 3.0, T0, location_id="far"))
            near = await repo.profiles_near(ORIGIN, 1000)
            reviews = await repo.reviews_near(ORIGIN, 1000)
            return near, reviews

        near, reviews = asyncio.run(scenario())
        assert [p.location_id for p in near] == ["near"]
        assert [r.review_id for r in reviews] == ["near"]

    def test_recent_reviews(self, settings, db):
        repo = SafetyRepository(settings=settings)

        async def scenario():
            await repo.add_review(make_review("old", ORIGIN, 3.0, T0 - timedelta(hours=1)))
            await repo.add_review(make_review("new", ORIGIN, 2.0, recent(5), tags=[WOMAN]))
            return await repo.recent_reviews(T0)

        reviews = asyncio.run(scenario())
        assert [r.review_id for r in reviews] == ["new"]
        assert reviews[0].tags == (WOMAN,)
        assert reviews[0].created_at == recent(5)

    def test_area_statistics_near(self, settings, db):
        repo = SafetyRepository(settings=settings)
        stats = AreaStatistics(crime_rate_per_1000=30.0, hate_crime_incidents=1, diversity_index=40.0, data_point_count=3)

        async def scenario():
            await repo.add_location("tract-1", north(200), name="Tract 1", area_statistics=stats)
            return await repo.area_statistics_near(ORIGIN), await repo.get_profile("tract-1")

        found, profile = asyncio.run(scenario())
        assert found == stats
        assert profile.overall is None

    def test_user_demographics(self, settings, db):
        repo = SafetyRepository(settings=settings)
        me = UserDemographics(race_ethnicity=["asian"], gender="woman", lgbtq_status=True)

        async def scenario():
            await repo.save_user_demographics("me", me)
            await repo.save_user_demographics("other", UserDemographics(gender="man"))
            return (
                await repo.get_user_demographics("me"),
                await repo.other_users_demographics("me"),
                await repo.get_user_demographics("missing"),
            )

        found, others, missing = asyncio.run(scenario())
        assert found == me
        assert list(others) == ["other"]
        assert missing is None


class TestReviewFeed:

    def test_publish_reaches_every_subscriber(self):
        async def scenario():
            feed = ReviewFeed()
            a, b = feed.subscribe(), feed.subscribe()
            review = make_review("r1", ORIGIN, 2.0, T0)
            delivered = feed.publish(review)
            return delivered, await a.get(), await b.get()

        delivered, got_a, got_b = asyncio.run(scenario())
        assert delivered == 2
        assert got_a.review_id == got_b.review_id == "r1"

    def test_closed_subscription_leaves_feed(self):
        async def scenario():
            feed = ReviewFeed()
            subscription = feed.subscribe()
            subscription.close()
            return feed.subscriber_count, feed.publish(make_review("r1", ORIGIN, 2.0, T0)), await subscription.get()

        count, delivered, item = asyncio.run(scenario())
        assert count == 0
        assert delivered == 0
        assert item is None

    def test_ingest_persists_once(self, settings, db):
        async def scenario():
            feed = ReviewFeed(SafetyRepository(settings=settings))
            subscription = feed.subscribe()
            review = make_review("r1", ORIGIN, 2.0, recent(1))
            first = await feed.ingest(review)
            second = await feed.ingest(review)
            received = await subscription.get()
            feed.close()
            drained = await subscription.get()
            return first, second, received, drained, await feed.recent(T0)

        first, second, received, drained, recent_reviews = asyncio.run(scenario())
        assert first is True
        assert second is False
        assert received.review_id == "r1"
        assert drained is None
        assert [r.review_id for r in recent_reviews] == ["r1"]
