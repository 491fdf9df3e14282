from campaign_dispatch.models.db import SuppressionReason
from campaign_dispatch.services.consent_resolver import ConsentResolver, active_topics
from campaign_dispatch.services.suppression_cache import SuppressionCache


def _resolver(session_factory, clock, **kwargs):
    cache = SuppressionCache(session_factory, ttl_seconds=60, clock=clock)
    return ConsentResolver(cache, session_factory, **kwargs), cache


def test_suppressed_address_is_excluded(session_factory, clock, consent_factory, suppression_factory):
    consent_factory("a@x.com", topics={"laboral": True})
    consent_factory("b@x.com", topics={"laboral": True})
    suppression_factory("a@x.com")
    resolver, _ = _resolver(session_factory, clock)

    assert resolver.resolve({"laboral": True}) == ["b@x.com"]


def test_topic_filter_requires_one_matching_topic(session_factory, clock, consent_factory):
    consent_factory("fiscal@x.com", topics={"fiscal": True})
    consent_factory("laboral@x.com", topics={"laboral": True, "fiscal": False})
    consent_factory("none@x.com", topics={})
    resolver, _ = _resolver(session_factory, clock)

    assert resolver.resolve({"fiscal": True, "laboral": False}) == ["fiscal@x.com"]
    assert resolver.resolve({"fiscal": True, "laboral": True}) == ["fiscal@x.com", "laboral@x.com"]
    # No enabled topic means no topic restriction
    assert resolver.resolve({"fiscal": False}) == ["fiscal@x.com", "laboral@x.com", "none@x.com"]


def test_marketing_and_commercial_consent(session_factory, clock, consent_factory):
    consent_factory("opted-out@x.com", marketing=False)
    consent_factory("plain@x.com")
    consent_factory("commercial@x.com", comercial=True)
    resolver, _ = _resolver(session_factory, clock)

    assert resolver.resolve({}) == ["commercial@x.com", "plain@x.com"]
    assert resolver.resolve({}, only_commercial=True) == ["commercial@x.com"]


def test_output_is_normalized_and_sorted(session_factory, clock, consent_factory):
    consent_factory("  Zed@X.com ")
    consent_factory("amy@x.com")
    consent_factory("not-an-email")
    resolver, _ = _resolver(session_factory, clock)

    assert resolver.resolve({}) == ["amy@x.com", "zed@x.com"]


def test_test_only_uses_fixed_recipients(session_factory, clock, consent_factory, suppression_factory):
    consent_factory("real@x.com")
    suppression_factory("blocked@x.com", SuppressionReason.BOUNCED)
    resolver, _ = _resolver(session_factory, clock, test_recipients=["QA@x.com", "qa@x.com", "blocked@x.com"])

    assert resolver.resolve({"fiscal": True}, test_only=True) == ["qa@x.com"]


def test_suppression_cache_ttl_and_evict(session_factory, clock, suppression_factory):
    cache = SuppressionCache(session_factory, ttl_seconds=60, clock=clock)
    assert cache.contains("late@x.com") is False

    suppression_factory("late@x.com")
    assert cache.contains("LATE@x.com") is False

    clock.advance(seconds=61)
    assert cache.contains("LATE@x.com") is True

    suppression_factory("later@x.com")
    cache.evict()
    assert cache.contains("later@x.com") is True


def test_active_topics():
    assert active_topics({"b": True, "a": True, "c": False}) == ["a", "b"]
    assert active_topics(None) == []
