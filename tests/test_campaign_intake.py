import pytest

from campaign_dispatch.exceptions import InvalidCampaign
from campaign_dispatch.models.schemas import CampaignCreate
from campaign_dispatch.services.campaign_intake import campaign_id, enqueue_campaign, parse_scheduled_at


def test_parse_scheduled_at_accepts_zulu_and_offsets():
    assert parse_scheduled_at("2026-01-06T08:00:00Z").isoformat() == "2026-01-06T08:00:00+00:00"
    assert parse_scheduled_at("2026-01-06T10:00:00+02:00").utcoffset().total_seconds() == 7200
    assert parse_scheduled_at("") is None
    with pytest.raises(InvalidCampaign) as exc:
        parse_scheduled_at("tomorrow-ish")
    assert exc.value.code == "BAD_SCHEDULED_AT"


def test_campaign_id_ignores_disabled_topics():
    a = CampaignCreate(subject="S", html="<p/>", materias={"laboral": True})
    b = CampaignCreate(subject="S ", html="<p/>", materias={"laboral": True, "fiscal": False})
    c = CampaignCreate(subject="S", html="<p/>", materias={"fiscal": True})
    assert campaign_id(a, None) == campaign_id(b, None)
    assert campaign_id(a, None) != campaign_id(c, None)
    assert len(campaign_id(a, None)) == 24


def test_enqueue_defaults_schedule_to_now(store, clock):
    payload = CampaignCreate.model_validate({"subject": "S", "html": "<p/>", "materias": {"laboral": True}, "onlyCommercial": True})
    queued = enqueue_campaign(store, payload, clock=clock)

    assert queued.scheduled is False and queued.duplicate is False
    view = store.get(queued.job_id)
    assert view.scheduled_at == clock()
    assert view.only_commercial is True
