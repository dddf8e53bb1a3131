"""Retry loop and studio state for scene generation.

The studio moves between four states::

    idle -> generating -> results | error
    generating -> idle              (cancel / reset)

Cancellation is cooperative. Each run owns a RetrySession whose `cancelled`
flag is checked at the top of every attempt and right after every await; an
in-flight Gemini call is left to finish and its outcome is discarded.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Literal, Optional

from pydantic import BaseModel

from . import codec
from .errors import GenerationFailed, GenerationInProgress, InvalidImageFormat, MissingInput
from .prompts import DEFAULT_OPTION, PROMPT_PRESETS, PromptOption, resolve_prompt

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = 2.0
TERMINAL_ERROR_MESSAGE = (
    "Sorry, the AI couldn't create an image. Please try different images or a new prompt."
)

ImageRole = Literal["person", "product"]
GenerateScene = Callable[[str, str, str], Awaitable[str]]
Sleep = Callable[[float], Awaitable[object]]


class StudioState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    RESULTS = "results"
    ERROR = "error"


class StudioSnapshot(BaseModel):
    """What the presentation layer renders."""

    state: StudioState
    attempt: Optional[int] = None
    max_attempts: int
    status: Optional[str] = None
    error: Optional[str] = None
    image: Optional[str] = None
    prompt_option: PromptOption
    prompt: str
    has_person_image: bool
    has_product_image: bool


@dataclass
class RetrySession:
    attempt: int = 1
    cancelled: bool = False


@dataclass(frozen=True)
class Success:
    image: str


@dataclass(frozen=True)
class Failure:
    reason: str
    cause: GenerationFailed


def retry_status(attempt: int, max_attempts: int) -> str:
    return f"That didn't work, trying again... (Attempt {attempt}/{max_attempts})"


class SceneStudio:
    """Holds the two input images, the prompt selection and the generation state."""

    def __init__(
        self,
        generate_scene: GenerateScene,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_seconds: float = RETRY_BACKOFF_SECONDS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._generate_scene = generate_scene
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._listeners: list[Callable[[StudioSnapshot], None]] = []

        self.images: dict[str, Optional[str]] = {"person": None, "product": None}
        self.prompt_option: PromptOption = DEFAULT_OPTION
        self.prompt: str = PROMPT_PRESETS[DEFAULT_OPTION]

        self.state = StudioState.IDLE
        self.status: Optional[str] = None
        self.error: Optional[str] = None
        self.result: Optional[str] = None
        self.last_failure: Optional[GenerationFailed] = None
        self._session: Optional[RetrySession] = None
        self._attempt: Optional[int] = None

    # -- observation -----------------------------------------------------

    def subscribe(self, listener: Callable[[StudioSnapshot], None]) -> None:
        self._listeners.append(listener)

    def snapshot(self) -> StudioSnapshot:
        return StudioSnapshot(
            state=self.state,
            attempt=self._attempt,
            max_attempts=self.max_attempts,
            status=self.status,
            error=self.error,
            image=self.result,
            prompt_option=self.prompt_option,
            prompt=self.prompt,
            has_person_image=self.images["person"] is not None,
            has_product_image=self.images["product"] is not None,
        )

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in self._listeners:
            listener(snapshot)

    # -- inputs ----------------------------------------------------------

    def set_image(self, role: ImageRole, encoded: str) -> None:
        self._check_role(role)
        self.images[role] = encoded

    def clear_image(self, role: ImageRole) -> None:
        self._check_role(role)
        self.images[role] = None

    def select_prompt(self, option: PromptOption | str, text: Optional[str] = None) -> None:
        option = PromptOption(option)
        self.prompt_option = option
        self.prompt = resolve_prompt(option, self.prompt, text)

    @staticmethod
    def _check_role(role: str) -> None:
        if role not in ("person", "product"):
            raise ValueError(f"Unknown image role: {role}")

    # -- generation ------------------------------------------------------

    def begin(self) -> Optional[RetrySession]:
        """
        Enter the generating state and return the new session.

        Returns None when an input image is malformed. The studio is then in
        the error state with the specific decode message and no attempt runs.
        """
        if self.state is StudioState.GENERATING:
            raise GenerationInProgress("A generation is already running.")
        person, product = self.images["person"], self.images["product"]
        if person is None or product is None:
            raise MissingInput("Both a person image and a product image are required.")

        try:
            codec.decode(person)
            codec.decode(product)
        except InvalidImageFormat as exc:
            logger.warning("Rejected input image: %s", exc)
            self._session = None
            self._attempt = None
            self.result = None
            self.status = None
            self.last_failure = None
            self.error = str(exc)
            self.state = StudioState.ERROR
            self._notify()
            return None

        session = RetrySession()
        self._session = session
        self._attempt = session.attempt
        self.result = None
        self.error = None
        self.status = None
        self.last_failure = None
        self.state = StudioState.GENERATING
        self._notify()
        return session

    async def generate(self) -> None:
        session = self.begin()
        if session is not None:
            await self.run(session)

    async def run(self, session: RetrySession) -> None:
        person, product, prompt = self.images["person"], self.images["product"], self.prompt

        while session.attempt <= self.max_attempts:
            if session.cancelled:
                return

            self._attempt = session.attempt
            if session.attempt > 1:
                self.status = retry_status(session.attempt, self.max_attempts)
                self._notify()

            outcome = await self._attempt_once(person, product, prompt)
            if session.cancelled:
                return

            if isinstance(outcome, Success):
                self.result = outcome.image
                self.error = None
                self.status = None
                self.state = StudioState.RESULTS
                self._session = None
                self._notify()
                return

            self.last_failure = outcome.cause
            logger.warning("Generation attempt %d failed: %s", session.attempt, outcome.reason)

            if session.attempt == self.max_attempts:
                logger.error(
                    "Generation failed after %d attempts.",
                    self.max_attempts,
                    exc_info=outcome.cause,
                )
                self.error = TERMINAL_ERROR_MESSAGE
                self.status = None
                self.state = StudioState.ERROR
                self._session = None
                self._notify()
                return

            # Cancellation during the wait is honoured at the next loop top.
            await self._sleep(self.backoff_seconds)
            session.attempt += 1

    async def _attempt_once(self, person: str, product: str, prompt: str) -> Success | Failure:
        try:
            image = await self._generate_scene(person, product, prompt)
        except GenerationFailed as exc:
            return Failure(reason=str(exc), cause=exc)
        except Exception as exc:
            wrapped = GenerationFailed.wrap(exc)
            wrapped.__cause__ = exc
            return Failure(reason=str(wrapped), cause=wrapped)
        return Success(image)

    # -- user actions ----------------------------------------------------

    def cancel(self) -> None:
        """Abandon the running session. Does nothing unless generating."""
        if self.state is not StudioState.GENERATING:
            return
        self._abandon_session()
        self.state = StudioState.IDLE
        self._notify()

    def reset(self) -> None:
        """Cancel any run and clear inputs, output and prompt. Does nothing when idle."""
        if self.state is StudioState.IDLE:
            return
        self._abandon_session()
        self.images = {"person": None, "product": None}
        self.prompt_option = DEFAULT_OPTION
        self.prompt = PROMPT_PRESETS[DEFAULT_OPTION]
        self.state = StudioState.IDLE
        self._notify()

    def _abandon_session(self) -> None:
        if self._session is not None:
            self._session.cancelled = True
        self._session = None
        self._attempt = None
        self.status = None
        self.error = None
        self.result = None
        self.last_failure = None
