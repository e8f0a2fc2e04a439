import json

import httpx
import pytest
import respx

from reachcheck.config import CheckEmailInput
from reachcheck.worker import (
    CheckEmailPayload,
    CheckEmailWebhook,
    WorkerVerifMethod,
    process_check_email,
    queue_name,
    run_worker,
)

WEBHOOK_URL = "https://hooks.example.com/done"


class RecordingChecker:
    def __init__(self):
        self.calls = []

    async def __call__(self, check_input):
        self.calls.append(check_input)
        return {"input": check_input.to_email, "is_reachable": "safe"}


def _body(webhook=None):
    data = {"input": {"to_email": "a@example.com"}}
    if webhook is not None:
        data["webhook"] = webhook
    return json.dumps(data).encode("utf-8")


def test_verif_method_parse():
    assert WorkerVerifMethod.parse("Headless") is WorkerVerifMethod.HEADLESS
    assert WorkerVerifMethod.parse("Smtp") is WorkerVerifMethod.SMTP


def test_verif_method_parse_rejects_unknown():
    with pytest.raises(ValueError, match="must be one of Headless, Smtp"):
        WorkerVerifMethod.parse("smtp")


def test_queue_name():
    assert queue_name(WorkerVerifMethod.SMTP) == "check_email.Smtp"
    assert queue_name(WorkerVerifMethod.HEADLESS) == "check_email.Headless"


def test_payload_from_json_without_webhook():
    payload = CheckEmailPayload.from_json(_body())
    assert payload.input.to_email == "a@example.com"
    assert payload.webhook is None


def test_payload_from_json_with_webhook():
    payload = CheckEmailPayload.from_json(_body({"url": WEBHOOK_URL, "extra": {"job": 7}}))
    assert payload.webhook == CheckEmailWebhook(url=WEBHOOK_URL, extra={"job": 7})
    assert payload.input == CheckEmailInput(to_email="a@example.com")


def test_payload_missing_extra_is_null():
    payload = CheckEmailPayload.from_json({"input": {}, "webhook": {"url": WEBHOOK_URL}})
    assert payload.webhook.extra is None


def test_payload_requires_input():
    with pytest.raises(ValueError, match="input"):
        CheckEmailPayload.from_json(b"{}")


@pytest.mark.asyncio
async def test_process_publishes_reply():
    checker = RecordingChecker()
    sent = []

    def publish(routing_key, body, correlation_id):
        sent.append((routing_key, json.loads(body), correlation_id))

    output = await process_check_email(_body(), "reply-queue", "corr-1", checker, publish, None, {})
    assert output == {"input": "a@example.com", "is_reachable": "safe"}
    assert sent == [("reply-queue", output, "corr-1")]


@pytest.mark.asyncio
async def test_process_skips_reply_without_correlation_id():
    sent = []
    await process_check_email(_body(), "reply-queue", None, RecordingChecker(), lambda *a: sent.append(a), None, {})
    assert sent == []


@pytest.mark.asyncio
async def test_process_applies_env_overrides():
    checker = RecordingChecker()
    await process_check_email(_body(), None, None, checker, None, None, {"RCH_FROM_EMAIL": "sender@example.com"})
    assert checker.calls[0].from_email == "sender@example.com"


@pytest.mark.asyncio
async def test_process_posts_webhook():
    with respx.mock:
        route = respx.post(WEBHOOK_URL).mock(return_value=httpx.Response(200, text="ok"))
        async with httpx.AsyncClient() as client:
            output = await process_check_email(
                _body({"url": WEBHOOK_URL, "extra": {"job": 7}}),
                None,
                None,
                RecordingChecker(),
                None,
                client,
                {"RCH_HEADER_SECRET": "secret"},
            )
    assert route.called
    request = route.calls.last.request
    assert request.headers["x-reacher-secret"] == "secret"
    assert json.loads(request.content) == {"output": output, "extra": {"job": 7}}


@pytest.mark.asyncio
async def test_process_webhook_needs_secret():
    with pytest.raises(RuntimeError, match="RCH_HEADER_SECRET"):
        await process_check_email(
            _body({"url": WEBHOOK_URL, "extra": None}), None, None, RecordingChecker(), None, None, {}
        )


@pytest.mark.asyncio
async def test_process_rejects_bad_json():
    checker = RecordingChecker()
    with pytest.raises(ValueError):
        await process_check_email(b"{not json", None, None, checker, None, None, {})
    assert checker.calls == []


def test_run_worker_requires_backend_name():
    with pytest.raises(RuntimeError, match="RCH_BACKEND_NAME"):
        run_worker(RecordingChecker(), {"RCH_VERIF_METHOD": "Smtp"})


def test_run_worker_requires_verif_method():
    with pytest.raises(RuntimeError, match="RCH_VERIF_METHOD"):
        run_worker(RecordingChecker(), {"RCH_BACKEND_NAME": "worker-1"})


def test_run_worker_rejects_unknown_method():
    with pytest.raises(ValueError, match="Unknown verification method"):
        run_worker(RecordingChecker(), {"RCH_BACKEND_NAME": "worker-1", "RCH_VERIF_METHOD": "Api"})