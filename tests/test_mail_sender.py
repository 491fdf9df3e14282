import asyncio

from campaign_dispatch.services.mail_sender import Smtp2GoMailSender, _accepted


def test_accepted_reads_provider_response():
    assert _accepted(200, {"data": {"succeeded": 1, "email_id": "abc"}}) == "abc"
    assert _accepted(200, {"data": {"succeeded": ["x@x.com"]}}) == "ok"
    assert _accepted(200, {"data": {"succeeded": 1, "failures": ["x@x.com"]}}) is None
    assert _accepted(200, {"data": {"succeeded": 0}}) is None
    assert _accepted(200, {"data": {"succeeded": True}}) is None
    assert _accepted(500, {"data": {"email_id": "abc"}}) is None
    assert _accepted(200, None) is None


def test_missing_api_key_is_a_failed_result():
    sender = Smtp2GoMailSender(api_key="")
    result = asyncio.run(sender.send("a@x.com", "s", "<p>x</p>"))
    assert result.ok is False
    assert "SMTP2GO_API_KEY" in result.error
