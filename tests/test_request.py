import asyncio

import pytest

from calmeval.core.request import END_OF_STREAM, Outcome, Request, _EndOfStream
from calmeval.errors import OutcomeAlreadySetError, RateLimitExceeded, TransportError


class TestOutcome:
    """Tests for the terminal result value."""

    def test_success_unwraps_to_value(self) -> None:
        outcome = Outcome(value="32")

        assert outcome.ok
        assert outcome.unwrap() == "32"

    def test_failure_unwrap_raises(self) -> None:
        outcome = Outcome(error=TransportError("refused"))

        assert not outcome.ok
        with pytest.raises(TransportError):
            outcome.unwrap()


class TestRequest:
    """Tests for the write-once request cell."""

    def test_text_is_read_only(self) -> None:
        request = Request("2 * 4 * 4")

        with pytest.raises(AttributeError):
            request.text = "1 + 1"  # type: ignore[misc]
        assert request.text == "2 * 4 * 4"

    def test_end_of_stream_is_a_singleton(self) -> None:
        assert _EndOfStream() is END_OF_STREAM
        assert not isinstance(END_OF_STREAM, Request)

    @pytest.mark.asyncio
    async def test_reader_waits_for_completion(self) -> None:
        request = Request("5 / (7 - 5)")

        reader = asyncio.create_task(request.wait())
        await asyncio.sleep(0.01)
        assert not reader.done()

        request.complete("2.5")
        outcome = await reader

        assert outcome.value == "2.5"
        assert request.done()

    @pytest.mark.asyncio
    async def test_many_readers_see_the_same_outcome(self) -> None:
        request = Request("1 + 1")
        readers = [asyncio.create_task(request.wait()) for _ in range(5)]

        request.fail(RateLimitExceeded("quota"))
        outcomes = await asyncio.gather(*readers)

        assert all(outcome is outcomes[0] for outcome in outcomes)
        assert isinstance(outcomes[0].error, RateLimitExceeded)

    @pytest.mark.asyncio
    async def test_second_write_is_rejected(self) -> None:
        request = Request("1 + 1")
        request.complete("2")

        with pytest.raises(OutcomeAlreadySetError):
            request.complete("3")
        with pytest.raises(OutcomeAlreadySetError):
            request.fail(TransportError("late"))
        assert request.outcome().value == "2"

    @pytest.mark.asyncio
    async def test_wait_timeout_leaves_request_pending(self) -> None:
        request = Request("1 + 1")

        with pytest.raises(asyncio.TimeoutError):
            await request.wait(timeout=0.01)

        assert not request.done()
        request.complete("2")
        assert (await request.wait(timeout=1)).value == "2"

    @pytest.mark.asyncio
    async def test_outcome_before_completion_raises(self) -> None:
        request = Request("1 + 1")

        with pytest.raises(asyncio.InvalidStateError):
            request.outcome()

    @pytest.mark.asyncio
    async def test_done_callbacks_run_once(self) -> None:
        request = Request("1 + 1")
        seen: list[Request] = []
        request.add_done_callback(seen.append)

        request.complete("2")
        request.add_done_callback(seen.append)

        assert seen == [request, request]

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_reach_the_writer(self) -> None:
        request = Request("1 + 1")
        seen: list[Request] = []
        request.add_done_callback(lambda r: 1 / 0)
        request.add_done_callback(seen.append)

        request.complete("2")
        request.add_done_callback(lambda r: 1 / 0)

        assert seen == [request]
        assert request.outcome().value == "2"

    @pytest.mark.asyncio
    async def test_latency_is_recorded_on_completion(self) -> None:
        request = Request("1 + 1")
        assert request.latency is None

        await asyncio.sleep(0.01)
        request.complete("2")

        assert request.latency is not None
        assert request.latency >= 0.005
