# videopipe/config.py
import os
import tempfile
from enum import Enum

from pydantic import BaseModel


class OrphanCheckPolicy(str, Enum):
    # assume the video exists when the check itself fails
    OPEN = "open"
    # skip the message when the check itself fails
    CLOSED = "closed"


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


class Settings(BaseModel):
    gcp_project_id: str = ""
    gcs_bucket: str = ""

    video_processing_topic: str = "video-processing"
    video_processing_subscription: str = "video-processing-subscription"
    notification_topic: str = "video-notifications"
    notification_subscription: str = "video-notifications-subscription"

    worker_ack_deadline_seconds: int = 300
    notification_ack_deadline_seconds: int = 60
    worker_max_messages: int = 1
    notification_max_messages: int = 10
    reconnect_delay_seconds: float = 10.0
    publish_timeout_seconds: float = 10.0

    server_base_url: str = "http://server:3000"
    existence_check_timeout_seconds: float = 5.0
    orphan_check_policy: OrphanCheckPolicy = OrphanCheckPolicy.OPEN

    max_retry_attempts: int = 3
    retry_backoff_ms: int = 5000

    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    ffmpeg_preset: str = "fast"
    ffmpeg_threads: int = 0
    ffmpeg_max_bitrate: int = 8000
    ffmpeg_target_resolution: str = ""

    work_dir: str = os.path.join(tempfile.gettempdir(), "videopipe")
    firestore_collection: str = "videos"
    log_level: str = "INFO"

    @property
    def retry_backoff_seconds(self) -> float:
        return self.retry_backoff_ms / 1000.0

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from the process environment.
        Unset variables fall back to the field defaults.
        """
        defaults = cls()
        return cls(
            gcp_project_id=os.getenv("GCP_PROJECT_ID", ""),
            gcs_bucket=os.getenv("GCS_BUCKET", ""),
            video_processing_topic=os.getenv(
                "VIDEO_PROCESSING_TOPIC", defaults.video_processing_topic
            ),
            video_processing_subscription=os.getenv(
                "VIDEO_PROCESSING_SUBSCRIPTION", defaults.video_processing_subscription
            ),
            notification_topic=os.getenv(
                "VIDEO_NOTIFICATIONS_TOPIC", defaults.notification_topic
            ),
            notification_subscription=os.getenv(
                "VIDEO_NOTIFICATIONS_SUBSCRIPTION", defaults.notification_subscription
            ),
            worker_ack_deadline_seconds=_int(
                "WORKER_ACK_DEADLINE_SECONDS", defaults.worker_ack_deadline_seconds
            ),
            notification_ack_deadline_seconds=_int(
                "NOTIFICATION_ACK_DEADLINE_SECONDS",
                defaults.notification_ack_deadline_seconds,
            ),
            worker_max_messages=_int("WORKER_MAX_MESSAGES", defaults.worker_max_messages),
            notification_max_messages=_int(
                "NOTIFICATION_MAX_MESSAGES", defaults.notification_max_messages
            ),
            reconnect_delay_seconds=_float(
                "LISTENER_RECONNECT_DELAY_SECONDS", defaults.reconnect_delay_seconds
            ),
            publish_timeout_seconds=_float(
                "PUBLISH_TIMEOUT_SECONDS", defaults.publish_timeout_seconds
            ),
            server_base_url=os.getenv("SERVER_BASE_URL", defaults.server_base_url),
            existence_check_timeout_seconds=_float(
                "EXISTENCE_CHECK_TIMEOUT_SECONDS",
                defaults.existence_check_timeout_seconds,
            ),
            orphan_check_policy=OrphanCheckPolicy(
                os.getenv("ORPHAN_CHECK_POLICY", defaults.orphan_check_policy.value).lower()
            ),
            max_retry_attempts=_int("MAX_RETRY_ATTEMPTS", defaults.max_retry_attempts),
            retry_backoff_ms=_int("RETRY_BACKOFF_MS", defaults.retry_backoff_ms),
            ffmpeg_path=os.getenv("FFMPEG_PATH", defaults.ffmpeg_path),
            ffprobe_path=os.getenv("FFPROBE_PATH", defaults.ffprobe_path),
            ffmpeg_preset=os.getenv("FFMPEG_PRESET", defaults.ffmpeg_preset),
            ffmpeg_threads=_int("FFMPEG_THREADS", defaults.ffmpeg_threads),
            ffmpeg_max_bitrate=_int("FFMPEG_MAX_BITRATE", defaults.ffmpeg_max_bitrate),
            ffmpeg_target_resolution=os.getenv("FFMPEG_TARGET_RESOLUTION", ""),
            work_dir=os.getenv("WORK_DIR", defaults.work_dir),
            firestore_collection=os.getenv(
                "FIRESTORE_COLLECTION", defaults.firestore_collection
            ),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        )

    def require_gcp(self) -> None:
        if not self.gcp_project_id:
            raise RuntimeError("GCP_PROJECT_ID is not set")
