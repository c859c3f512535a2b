from __future__ import annotations


class EvvlError(Exception):
    """Base class for errors reported by the evvl CLI."""


class ProjectNotFound(EvvlError):
    def __init__(self, token: str) -> None:
        super().__init__(f"Project '{token}' not found")
        self.token = token


class PromptNotFound(EvvlError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Prompt '{name}' not found")
        self.name = name


class CorruptPrompt(EvvlError):
    """A prompt's currentVersionId points at no stored version."""

    def __init__(self, name: str) -> None:
        super().__init__(f"No current version found for prompt '{name}'")
        self.name = name


class NoPromptProvided(EvvlError):
    def __init__(self) -> None:
        super().__init__("No prompt provided. Use --prompt, --prompt-name, or pipe text to stdin.")


class RunNotFound(EvvlError):
    def __init__(self, run_id: str | None = None) -> None:
        message = "Run ID not found" if run_id else "No evaluation runs found"
        super().__init__(message)
        self.run_id = run_id


class StoreIOError(EvvlError):
    """Reading, writing or serializing the document store failed."""


class SubprocessUnavailable(EvvlError):
    """The version-control tool could not be run. Never escapes the detector."""
