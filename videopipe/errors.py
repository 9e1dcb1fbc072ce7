# videopipe/errors.py


class VideopipeError(Exception):
    """Base class for errors raised by videopipe."""


class ProcessingError(VideopipeError):
    """
    Any failure inside the transcode pipeline.

    Callers see one error type regardless of where the pipeline broke;
    `phase` is kept for logs and the progress stream only.
    """

    def __init__(self, message: str, phase: str | None = None):
        super().__init__(message)
        self.phase = phase


class MalformedMessageError(VideopipeError):
    """Payload could not be decoded or did not match the message contract."""


class ExistenceCheckError(VideopipeError):
    """The record store could not confirm or deny that a video exists."""
