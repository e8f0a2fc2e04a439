"""Queue worker that verifies addresses sent over AMQP."""

from __future__ import annotations

import asyncio
import functools
import inspect
import json
import logging
import os
import re
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

import httpx
import pika

from .bulk import Checker
from .config import CheckEmailInput
from .server import REACHER_SECRET_HEADER, check_email

logger = logging.getLogger(__name__)

DEFAULT_AMQP_ADDR = "amqp://127.0.0.1:5672"
DEFAULT_CONCURRENCY = 10
MAX_PRIORITY = 5

Publish = Callable[[str, bytes, str], Union[None, Awaitable[None]]]


class WorkerVerifMethod(str, Enum):
    """How the worker verifies addresses."""

    HEADLESS = "Headless"
    SMTP = "Smtp"

    @classmethod
    def parse(cls, value: str) -> "WorkerVerifMethod":
        for member in cls:
            if member.value == value:
                return member
        raise ValueError(f"Unknown verification method {value}, must be one of Headless, Smtp")


@dataclass(frozen=True)
class CheckEmailWebhook:
    """Where to post the verification output, with extra data echoed back."""

    url: str
    extra: Any = None


def _webhook_from(data: Any) -> CheckEmailWebhook:
    if not isinstance(data, Mapping):
        raise ValueError("webhook should be an object")
    url = data.get("url")
    if not isinstance(url, str):
        raise ValueError("webhook url should be a string")
    return CheckEmailWebhook(url=url, extra=data.get("extra"))


@dataclass(frozen=True)
class CheckEmailPayload:
    """A queued verification request."""

    input: CheckEmailInput
    webhook: Optional[CheckEmailWebhook] = None

    @classmethod
    def from_json(cls, data: Union[str, bytes, bytearray, Mapping[str, Any]]) -> "CheckEmailPayload":
        if isinstance(data, (str, bytes, bytearray)):
            data = json.loads(data)
        if not isinstance(data, Mapping):
            raise ValueError("payload should be an object")
        if "input" not in data:
            raise ValueError("payload is missing field 'input'")
        webhook = data.get("webhook")
        return cls(
            input=CheckEmailInput.from_dict(data["input"]),
            webhook=None if webhook is None else _webhook_from(webhook),
        )


def queue_name(method: WorkerVerifMethod) -> str:
    """Name of the queue consumed by workers of the given method."""
    return f"check_email.{method.value}"


def _jsonable(output: Any) -> dict:
    if hasattr(output, "to_dict"):
        return output.to_dict()
    if isinstance(output, Mapping):
        return dict(output)
    raise TypeError(f"cannot serialize verification output of type {type(output).__name__}")


async def _post_webhook(webhook: CheckEmailWebhook, body: dict, secret: str, client: httpx.AsyncClient) -> str:
    response = await client.post(webhook.url, json=body, headers={REACHER_SECRET_HEADER: secret})
    return response.text


async def process_check_email(
    body: Union[str, bytes, bytearray],
    reply_to: Optional[str],
    correlation_id: Optional[str],
    checker: Checker,
    publish: Optional[Publish] = None,
    client: Optional[httpx.AsyncClient] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> dict:
    """Verify a queued request, then send the reply and the webhook if asked.

    Returns the verification output as a JSON-ready dict.
    """
    env = os.environ if environ is None else environ
    payload = CheckEmailPayload.from_json(body)
    logger.info("New job email=%s", payload.input.to_email)
    logger.debug("payload=%r", payload)

    output = _jsonable(await check_email(payload.input, checker, env))
    logger.info("Done check email=%s is_reachable=%s", output.get("input"), output.get("is_reachable"))
    reply = json.dumps(output, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

    if reply_to and correlation_id and publish is not None:
        sent = publish(reply_to, reply, correlation_id)
        if inspect.isawaitable(sent):
            await sent
        logger.debug("Sent reply reply_to=%s correlation_id=%s", reply_to, correlation_id)

    if payload.webhook is not None:
        secret = env.get("RCH_HEADER_SECRET")
        if secret is None:
            raise RuntimeError("RCH_HEADER_SECRET is not set")
        webhook_body = {"output": output, "extra": payload.webhook.extra}
        if client is None:
            async with httpx.AsyncClient() as own_client:
                text = await _post_webhook(payload.webhook, webhook_body, secret, own_client)
        else:
            text = await _post_webhook(payload.webhook, webhook_body, secret, client)
        logger.debug("Received webhook response email=%s res=%r", output.get("input"), text)
        logger.info("Finished check email=%s is_reachable=%s", output.get("input"), output.get("is_reachable"))

    return output


def _concurrency(env: Mapping[str, str]) -> int:
    text = env.get("RCH_WORKER_CONCURRENCY")
    if text is not None and re.fullmatch(r"\+?\d+", text) and int(text) <= 65535:
        return int(text)
    return DEFAULT_CONCURRENCY


def run_worker(checker: Checker, environ: Optional[Mapping[str, str]] = None) -> None:
    """Consume verification requests from the AMQP broker until stopped."""
    env = os.environ if environ is None else environ
    addr = env.get("RCH_AMQP_ADDR", DEFAULT_AMQP_ADDR)
    backend_name = env.get("RCH_BACKEND_NAME")
    if backend_name is None:
        raise RuntimeError("RCH_BACKEND_NAME is not set")
    method_text = env.get("RCH_VERIF_METHOD")
    if method_text is None:
        raise RuntimeError("RCH_VERIF_METHOD is not set")
    method = WorkerVerifMethod.parse(method_text)
    concurrency = _concurrency(env)

    parameters = pika.URLParameters(addr)
    parameters.client_properties = {"connection_name": backend_name}
    connection = pika.BlockingConnection(parameters)
    channel = connection.channel()
    channel.basic_qos(prefetch_count=concurrency)
    logger.info("Connected to AMQP broker backend=%s concurrency=%s", backend_name, concurrency)

    queue = queue_name(method)
    channel.queue_declare(queue=queue, durable=True, arguments={"x-max-priority": MAX_PRIORITY})

    loop = asyncio.new_event_loop()
    loop_thread = threading.Thread(target=loop.run_forever, daemon=True)
    loop_thread.start()

    def publish(routing_key: str, body: bytes, correlation_id: str) -> None:
        properties = pika.BasicProperties(correlation_id=correlation_id, content_type="application/json")
        connection.add_callback_threadsafe(
            functools.partial(channel.basic_publish, exchange="", routing_key=routing_key, body=body, properties=properties)
        )

    def on_message(ch: Any, method_frame: Any, properties: Any, body: bytes) -> None:
        future = asyncio.run_coroutine_threadsafe(
            process_check_email(body, properties.reply_to, properties.correlation_id, checker, publish, None, env),
            loop,
        )

        def done(fut: Any) -> None:
            if fut.cancelled():
                return
            error = fut.exception()
            if error is not None:
                logger.error("Error processing message: %r", error)
                return
            connection.add_callback_threadsafe(functools.partial(ch.basic_ack, delivery_tag=method_frame.delivery_tag))

        future.add_done_callback(done)

    channel.basic_consume(queue=queue, on_message_callback=on_message, consumer_tag=backend_name)
    logger.info("Worker will start consuming messages queue=%s", queue)
    try:
        channel.start_consuming()
    finally:
        loop.call_soon_threadsafe(loop.stop)
        loop_thread.join()
        loop.close()
        if connection.is_open:
            connection.close()