import asyncio
import inspect

import pytest

from capture_models import MessageDeliveryError
from message_channel import RetryPolicy, deliver_with_retry


class ScriptedSend:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self, message):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if outcome == "fail":
            raise MessageDeliveryError("not attached")
        if outcome == "hang":
            await asyncio.sleep(10)
        return {"success": True, "echo": message["action"]}


@pytest.mark.asyncio
async def test_first_attempt_succeeds():
    send = ScriptedSend(["ok"])
    result = await deliver_with_retry(send, {"action": "enableCapture"}, RetryPolicy(delay_s=0.01))
    assert result.ok and result.attempts == 1
    assert result.response == {"success": True, "echo": "enableCapture"}


@pytest.mark.asyncio
async def test_one_retry_then_give_up():
    send = ScriptedSend(["fail", "fail", "ok"])
    result = await deliver_with_retry(send, {"action": "x"}, RetryPolicy(max_retries=1, delay_s=0.01))
    assert not result.ok
    assert result.attempts == 2 and send.calls == 2
    assert result.error == "not attached"


@pytest.mark.asyncio
async def test_no_retry_policy():
    send = ScriptedSend(["fail", "ok"])
    result = await deliver_with_retry(send, {"action": "x"}, RetryPolicy(max_retries=0, delay_s=0.01))
    assert not result.ok and result.attempts == 1


@pytest.mark.asyncio
async def test_hung_attempt_times_out_and_retries():
    send = ScriptedSend(["hang", "ok"])
    result = await deliver_with_retry(send, {"action": "x"}, RetryPolicy(max_retries=1, delay_s=0.01, timeout_s=0.05))
    assert result.ok and result.attempts == 2


@pytest.mark.asyncio
async def test_retry_waits_for_the_delay():
    send = ScriptedSend(["fail", "ok"])
    loop = asyncio.get_running_loop()
    started = loop.time()
    result = await deliver_with_retry(send, {"action": "x"}, RetryPolicy(max_retries=1, delay_s=0.1))
    assert result.ok
    assert loop.time() - started >= 0.09


@pytest.mark.asyncio
async def test_default_policy_is_built_per_call():
    assert inspect.signature(deliver_with_retry).parameters["policy"].default is None

    send = ScriptedSend(["ok", "ok"])
    first = await deliver_with_retry(send, {"action": "a"})
    second = await deliver_with_retry(send, {"action": "b"})
    assert first.ok and second.ok
    assert first.attempts == second.attempts == 1
