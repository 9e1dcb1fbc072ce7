from enum import Enum
from typing import Annotated, Awaitable, Callable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from videopipe.errors import MalformedMessageError


class JobAction(str, Enum):
    PROCESS = "process"
    RETRY = "retry"


class VideoStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class WireModel(BaseModel):
    """
    Flat JSON object with camelCase keys on the wire.
    Unknown keys are ignored so older consumers keep working.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


class WorkMessage(WireModel):
    video_id: str
    object_name: str
    file_name: str = ""
    content_type: str = ""
    # informational only, the worker never branches on it
    action: JobAction = JobAction.PROCESS
    retry_count: int = Field(default=0, ge=0)

    @classmethod
    def for_attempt(
        cls,
        video_id: str,
        object_name: str,
        file_name: str,
        content_type: str,
        retry_count: int = 0,
    ) -> "WorkMessage":
        return cls(
            video_id=video_id,
            object_name=object_name,
            file_name=file_name,
            content_type=content_type,
            action=JobAction.RETRY if retry_count > 0 else JobAction.PROCESS,
            retry_count=retry_count,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "WorkMessage":
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise MalformedMessageError(f"Invalid work message: {e}") from e


class ProcessingMetadata(WireModel):
    size_bytes: int
    low_res_size_bytes: int
    original_resolution: str
    low_resolution: str
    duration_seconds: float


class _NotificationBase(WireModel):
    video_id: str
    # producer send time in epoch millis, the ordering key
    timestamp: int


class ProgressNotification(_NotificationBase):
    type: Literal["progress"] = "progress"
    status: VideoStatus = VideoStatus.PROCESSING
    progress: int = Field(ge=0, le=100)
    error: str | None = None


class CompleteNotification(_NotificationBase):
    type: Literal["complete"] = "complete"
    status: VideoStatus = VideoStatus.DONE
    progress: int = 100
    low_res_path: str | None = None
    thumbnail_path: str | None = None
    metadata: ProcessingMetadata | None = None


class FailedNotification(_NotificationBase):
    type: Literal["failed"] = "failed"
    status: VideoStatus = VideoStatus.FAILED
    progress: int = 0
    error: str = "Unknown error"


Notification = Annotated[
    Union[ProgressNotification, CompleteNotification, FailedNotification],
    Field(discriminator="type"),
]

_notification_adapter: TypeAdapter[Notification] = TypeAdapter(Notification)


def parse_notification(data: bytes) -> Notification:
    """
    Decode a notification queue payload.
    Unknown `type` values are rejected, not skipped.
    """
    try:
        return _notification_adapter.validate_json(data)
    except ValidationError as e:
        raise MalformedMessageError(f"Invalid notification message: {e}") from e


MessageHandler = Callable[[bytes], Awaitable[None]]
