"""
Unit tests for the SceneStudio retry loop, cancellation and input handling.
"""

import asyncio
from typing import Callable

import pytest

from scenegen.errors import GenerationFailed, GenerationInProgress, MissingInput
from scenegen.prompts import PROMPT_PRESETS, PromptOption
from scenegen.session import (
    TERMINAL_ERROR_MESSAGE,
    SceneStudio,
    StudioSnapshot,
    StudioState,
    retry_status,
)
from tests.helpers import PERSON_URL, PRODUCT_URL, RESULT_URL


class ScriptedGenerator:
    """Fails for the first `failures` calls, then returns RESULT_URL."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.calls: list[tuple[str, str, str]] = []

    async def __call__(self, person: str, product: str, prompt: str) -> str:
        self.calls.append((person, product, prompt))
        if len(self.calls) <= self.failures:
            raise GenerationFailed(f"attempt {len(self.calls)} failed")
        return RESULT_URL


class RecordingSleep:
    def __init__(self, on_sleep: Callable[[], None] | None = None) -> None:
        self.delays: list[float] = []
        self.on_sleep = on_sleep

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.on_sleep is not None:
            self.on_sleep()


def _studio(generate, sleep=None) -> SceneStudio:
    studio = SceneStudio(generate, sleep=sleep or RecordingSleep())
    studio.set_image("person", PERSON_URL)
    studio.set_image("product", PRODUCT_URL)
    return studio


def _statuses(snapshots: list[StudioSnapshot]) -> list[str]:
    return [snap.status for snap in snapshots if snap.status is not None]


class TestRetryLoop:
    def test_first_attempt_success(self) -> None:
        generator = ScriptedGenerator()
        studio = _studio(generator)

        asyncio.run(studio.generate())

        assert studio.state is StudioState.RESULTS
        assert studio.result == RESULT_URL
        assert studio.error is None
        assert generator.calls == [(PERSON_URL, PRODUCT_URL, PROMPT_PRESETS[PromptOption.LIFESTYLE])]

    def test_success_on_third_attempt_emits_two_retry_statuses(self) -> None:
        generator = ScriptedGenerator(failures=2)
        sleep = RecordingSleep()
        studio = _studio(generator, sleep)
        snapshots: list[StudioSnapshot] = []
        studio.subscribe(snapshots.append)

        asyncio.run(studio.generate())

        snapshot = studio.snapshot()
        assert snapshot.state is StudioState.RESULTS
        assert snapshot.attempt == 3
        assert snapshot.image == RESULT_URL
        assert snapshot.status is None
        assert _statuses(snapshots) == [retry_status(2, 3), retry_status(3, 3)]
        assert sleep.delays == [2.0, 2.0]

    def test_exhaustion_shows_generic_error_and_keeps_cause(self) -> None:
        generator = ScriptedGenerator(failures=3)
        sleep = RecordingSleep()
        studio = _studio(generator, sleep)

        asyncio.run(studio.generate())

        assert studio.state is StudioState.ERROR
        assert studio.error == TERMINAL_ERROR_MESSAGE
        assert studio.result is None
        assert len(generator.calls) == 3
        # No backoff after the final attempt.
        assert sleep.delays == [2.0, 2.0]
        assert isinstance(studio.last_failure, GenerationFailed)
        assert str(studio.last_failure) == "attempt 3 failed"

    def test_unexpected_exception_is_retried(self) -> None:
        calls = []

        async def generate(person: str, product: str, prompt: str) -> str:
            calls.append(prompt)
            if len(calls) == 1:
                raise ValueError("boom")
            return RESULT_URL

        studio = _studio(generate)
        asyncio.run(studio.generate())

        assert studio.state is StudioState.RESULTS
        assert len(calls) == 2

    def test_custom_attempt_limit_and_backoff(self) -> None:
        generator = ScriptedGenerator(failures=5)
        sleep = RecordingSleep()
        studio = SceneStudio(generator, max_attempts=2, backoff_seconds=0.5, sleep=sleep)
        studio.set_image("person", PERSON_URL)
        studio.set_image("product", PRODUCT_URL)

        asyncio.run(studio.generate())

        assert studio.state is StudioState.ERROR
        assert len(generator.calls) == 2
        assert sleep.delays == [0.5]


class TestPreconditions:
    def test_missing_image_raises(self) -> None:
        studio = SceneStudio(ScriptedGenerator())
        studio.set_image("person", PERSON_URL)

        with pytest.raises(MissingInput):
            asyncio.run(studio.generate())
        assert studio.state is StudioState.IDLE

    def test_second_run_is_refused_while_generating(self) -> None:
        studio = _studio(ScriptedGenerator())
        studio.begin()

        with pytest.raises(GenerationInProgress):
            studio.begin()

    def test_invalid_image_fails_immediately_without_remote_call(self) -> None:
        generator = ScriptedGenerator()
        studio = _studio(generator)
        studio.set_image("product", "data:text/plain;base64,AAAA")

        asyncio.run(studio.generate())

        assert studio.state is StudioState.ERROR
        assert "data:image/...;base64,..." in studio.error
        assert generator.calls == []

    def test_unknown_role_is_rejected(self) -> None:
        studio = SceneStudio(ScriptedGenerator())
        with pytest.raises(ValueError):
            studio.set_image("background", PERSON_URL)


class TestCancellation:
    def _run_with_cancel_in_flight(self, second_attempt_fails: bool):
        async def scenario():
            gate = asyncio.Event()
            calls = []

            async def generate(person: str, product: str, prompt: str) -> str:
                calls.append(prompt)
                if len(calls) == 1:
                    raise GenerationFailed("first attempt failed")
                await gate.wait()
                if second_attempt_fails:
                    raise GenerationFailed("second attempt failed")
                return RESULT_URL

            studio = _studio(generate)
            task = asyncio.create_task(studio.generate())
            while len(calls) < 2:
                await asyncio.sleep(0)

            snapshots: list[StudioSnapshot] = []
            studio.subscribe(snapshots.append)
            studio.cancel()
            state_after_cancel = studio.state

            gate.set()
            await task
            return studio, snapshots, state_after_cancel, calls

        return asyncio.run(scenario())

    @pytest.mark.parametrize("second_attempt_fails", [False, True])
    def test_cancel_during_in_flight_call_discards_outcome(self, second_attempt_fails: bool) -> None:
        studio, snapshots, state_after_cancel, calls = self._run_with_cancel_in_flight(
            second_attempt_fails
        )

        assert state_after_cancel is StudioState.IDLE
        assert studio.state is StudioState.IDLE
        assert studio.result is None
        assert studio.error is None
        assert len(calls) == 2
        # Only the cancel itself was published.
        assert len(snapshots) == 1
        assert snapshots[0].state is StudioState.IDLE

    def test_cancel_during_backoff_stops_before_next_attempt(self) -> None:
        generator = ScriptedGenerator(failures=3)
        studio = _studio(generator)
        studio._sleep = RecordingSleep(on_sleep=studio.cancel)

        asyncio.run(studio.generate())

        assert studio.state is StudioState.IDLE
        assert len(generator.calls) == 1

    def test_cancel_and_reset_are_noops_when_idle(self) -> None:
        studio = _studio(ScriptedGenerator())
        snapshots: list[StudioSnapshot] = []
        studio.subscribe(snapshots.append)
        before = studio.snapshot()

        studio.cancel()
        studio.reset()

        assert studio.snapshot() == before
        assert snapshots == []

    def test_cancel_after_results_is_noop(self) -> None:
        studio = _studio(ScriptedGenerator())
        asyncio.run(studio.generate())

        studio.cancel()

        assert studio.state is StudioState.RESULTS
        assert studio.result == RESULT_URL

    def test_new_run_after_cancel_ignores_stale_session(self) -> None:
        async def scenario():
            gate = asyncio.Event()
            calls = []

            async def generate(person: str, product: str, prompt: str) -> str:
                calls.append(prompt)
                if len(calls) == 1:
                    await gate.wait()
                    return "data:image/png;base64,c3RhbGU="
                return RESULT_URL

            studio = _studio(generate)
            stale = asyncio.create_task(studio.generate())
            while not calls:
                await asyncio.sleep(0)
            studio.cancel()

            await studio.generate()
            gate.set()
            await stale
            return studio

        studio = asyncio.run(scenario())
        assert studio.state is StudioState.RESULTS
        assert studio.result == RESULT_URL


class TestResetAndPrompt:
    def test_reset_after_results_clears_everything(self) -> None:
        studio = _studio(ScriptedGenerator())
        studio.select_prompt(PromptOption.CUSTOM, "skateboarding at sunset")
        asyncio.run(studio.generate())

        studio.reset()

        snapshot = studio.snapshot()
        assert snapshot.state is StudioState.IDLE
        assert snapshot.image is None
        assert not snapshot.has_person_image
        assert not snapshot.has_product_image
        assert snapshot.prompt_option is PromptOption.LIFESTYLE
        assert snapshot.prompt == PROMPT_PRESETS[PromptOption.LIFESTYLE]

    def test_reset_after_exhaustion_clears_last_failure(self) -> None:
        studio = _studio(ScriptedGenerator(failures=3))
        asyncio.run(studio.generate())
        assert studio.last_failure is not None

        studio.reset()

        assert studio.last_failure is None

    def test_cancel_clears_failure_from_earlier_attempt(self) -> None:
        studio = _studio(ScriptedGenerator(failures=3))
        studio._sleep = RecordingSleep(on_sleep=studio.cancel)

        asyncio.run(studio.generate())

        assert studio.state is StudioState.IDLE
        assert studio.last_failure is None

    def test_invalid_input_after_failed_run_clears_last_failure(self) -> None:
        studio = _studio(ScriptedGenerator(failures=3))
        asyncio.run(studio.generate())
        studio.set_image("person", "not a data url")

        asyncio.run(studio.generate())

        assert studio.state is StudioState.ERROR
        assert studio.last_failure is None

    def test_reset_while_generating_cancels_session(self) -> None:
        studio = _studio(ScriptedGenerator())
        session = studio.begin()

        studio.reset()

        assert session.cancelled
        assert studio.state is StudioState.IDLE
        assert studio.images == {"person": None, "product": None}

    def test_preset_replaces_prompt_and_custom_keeps_it(self) -> None:
        studio = SceneStudio(ScriptedGenerator())

        studio.select_prompt("fashion")
        assert studio.prompt == PROMPT_PRESETS[PromptOption.FASHION]

        studio.select_prompt(PromptOption.CUSTOM)
        assert studio.prompt_option is PromptOption.CUSTOM
        assert studio.prompt == PROMPT_PRESETS[PromptOption.FASHION]

        studio.select_prompt(PromptOption.CUSTOM, "a person on a beach")
        assert studio.prompt == "a person on a beach"

    def test_custom_prompt_is_sent_to_generator(self) -> None:
        generator = ScriptedGenerator()
        studio = _studio(generator)
        studio.select_prompt(PromptOption.CUSTOM, "")

        asyncio.run(studio.generate())

        assert generator.calls[0][2] == ""
