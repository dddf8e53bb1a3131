class SceneError(Exception):
    """Base error for everything raised by the scene generation core."""


class InvalidImageFormat(SceneError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or "Invalid image data URL format. Expected 'data:image/...;base64,...'"
        )


class GenerationFailed(SceneError):
    """Uniform failure raised by the orchestrator. The original error stays on `cause`."""

    PREFIX = "The AI model failed to generate an image. Details: "

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)

    @classmethod
    def wrap(cls, exc: BaseException) -> "GenerationFailed":
        detail = str(exc) or repr(exc)
        return cls(f"{cls.PREFIX}{detail}", cause=exc)


class NoImageInResponse(GenerationFailed):
    PLACEHOLDER = "No text response received."

    def __init__(self, text: str | None) -> None:
        self.text = text
        super().__init__(
            "The AI model responded with text instead of an image: "
            f'"{text or self.PLACEHOLDER}"'
        )


class MissingCredential(SceneError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"{name} environment variable is not set")


class MissingInput(SceneError):
    """Raised when generation is requested before both images are loaded."""


class GenerationInProgress(SceneError):
    """Raised when a second run is requested while one is active."""
