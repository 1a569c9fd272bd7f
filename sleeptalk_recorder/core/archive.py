"""Post-recording bookkeeping: event log entries and optional S3 mirroring.

Uploads run on daemon threads so that a slow network never delays the
automaton's poll loop.
"""

import datetime
import threading
from threading import Thread
from typing import List, Optional

from loguru import logger

from .capture import ArtifactRef
from .config import GateSettings
from .log import RecordingLogger
from .s3_upload import S3Uploader


class RecordingArchiver:
    """Records monitoring runs and mirrors finished recordings.

    Args:
        recording_logger: JSONL event log, or ``None`` to skip logging.
        uploader: S3 uploader, or ``None`` to keep recordings local only.
    """

    def __init__(
        self,
        recording_logger: Optional[RecordingLogger] = None,
        uploader: Optional[S3Uploader] = None,
    ) -> None:
        self._recording_logger = recording_logger
        self._uploader = uploader
        self._monitor_id = ''
        self._kept = 0
        self._lock = threading.Lock()
        self._threads: List[Thread] = []

    @property
    def monitor_id(self) -> str:
        return self._monitor_id

    def monitoring_started(self, settings: GateSettings, device_id: Optional[int] = None) -> None:
        now = datetime.datetime.now()
        self._monitor_id = now.strftime('%Y%m%d_%H%M%S')
        self._kept = 0
        if self._recording_logger is not None:
            self._recording_logger.write_monitoring_start(
                monitor_id=self._monitor_id,
                device_id=device_id,
                noise_threshold=settings.noise_threshold,
                silence_grace_period=settings.silence_grace_period,
                min_recording_warmup=settings.min_recording_warmup,
                at=now,
            )

    def monitoring_stopped(self) -> None:
        self.wait()
        if self._recording_logger is not None:
            self._recording_logger.write_monitoring_stop(monitor_id=self._monitor_id, recordings=self._kept)

    def finalized(self, artifact: ArtifactRef, duration_sec: float) -> None:
        """Log a kept recording, uploading it first when S3 is configured."""
        self._kept += 1
        if self._uploader is None:
            self._log_finalized(artifact, duration_sec, None, False)
            return

        thread = Thread(target=self._upload, args=(artifact, duration_sec), daemon=True)
        thread.start()
        with self._lock:
            self._threads.append(thread)
        logger.info(f'Uploading {artifact.name}')

    def discarded(self, artifact: ArtifactRef, reason: str) -> None:
        if self._recording_logger is not None:
            self._recording_logger.write_recording_discarded(
                monitor_id=self._monitor_id, name=artifact.name, reason=reason,
            )

    def wait(self, timeout: float = 30.0) -> None:
        """Wait for pending uploads to finish."""
        with self._lock:
            threads, self._threads = list(self._threads), []
        for t in threads:
            t.join(timeout=timeout)

    def _upload(self, artifact: ArtifactRef, duration_sec: float) -> None:
        s3_object_key: Optional[str] = None
        s3_uploaded = False
        try:
            s3_object_key = self._uploader.upload_artifact(artifact)
            s3_uploaded = True
            logger.info(f'Uploaded to S3: s3://{self._uploader.bucket}/{s3_object_key}')
        except Exception as error:
            logger.warning(f'Upload failed for {artifact.name}: {error}')
        self._log_finalized(artifact, duration_sec, s3_object_key, s3_uploaded)

    def _log_finalized(
        self,
        artifact: ArtifactRef,
        duration_sec: float,
        s3_object_key: Optional[str],
        s3_uploaded: bool,
    ) -> None:
        if self._recording_logger is None:
            return
        self._recording_logger.write_recording_finalized(
            monitor_id=self._monitor_id,
            name=artifact.name,
            file_path=str(artifact.path),
            started_at=artifact.created_at,
            duration_sec=duration_sec,
            s3_object_key=s3_object_key,
            s3_uploaded=s3_uploaded,
        )
