"""
Media ingestion service.

Runs one uploaded image through the pipeline: ingestion, metadata
extraction, format normalization, derivative generation, classification,
catalog persistence with memory date clustering, and cleanup.
"""

import logging
import random
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterator, Optional

from sqlalchemy.orm import sessionmaker

from memorygrove.catalog.database import session_scope
from memorygrove.catalog.models import Image
from memorygrove.common.logging_config import PerformanceTracker
from memorygrove.common.metrics import stage_duration_seconds
from memorygrove.config.settings import Settings, get_settings
from memorygrove.media.classifier import (
    ContentCategory,
    ContentClassifier,
    GoogleVisionAnnotator,
)
from memorygrove.media.clusterer import DateRangeResult, MemoryDateClusterer
from memorygrove.media.geocoder import ReverseGeocoder
from memorygrove.media.processor import ImageMetadata, ImageProcessor, sha256_hex
from memorygrove.notifications import (
    DatabaseNotificationSink,
    LoggingNotificationSink,
    NotificationSink,
)
from memorygrove.queue.interface import JobPayload
from memorygrove.storage.adapter import StorageAdapter

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]


def _no_progress(progress: int, status: str) -> None:
    pass


class MediaServiceError(Exception):
    """Exception raised during media processing service operations."""
    pass


@dataclass
class IngestResult:
    asset_id: int
    memory_id: Optional[int]
    original_path: str
    webp_path: str
    thumb_big_path: str
    thumb_small_path: str
    taken_at: datetime
    category: ContentCategory
    country: Optional[str] = None
    date_range: Optional[DateRangeResult] = None


class MediaIngestService:
    """
    Main service for processing uploaded images through the pipeline.

    Each call handles one image and owns its own database session, so a
    single service instance can be shared by concurrent worker threads.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        storage: StorageAdapter,
        processor: Optional[ImageProcessor] = None,
        classifier: Optional[ContentClassifier] = None,
        geocoder: Optional[ReverseGeocoder] = None,
        notifier: Optional[NotificationSink] = None,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize media service.

        Args:
            session_factory: Factory for per-job database sessions
            storage: Storage adapter for derivatives
            processor: Image processor (defaults from settings)
            classifier: Content classifier (defaults to no annotator)
            geocoder: Reverse geocoder; None disables country lookup
            notifier: Sink for new-photo events
            settings: Application settings
            rng: Random source shared with classification and clustering
        """
        self.session_factory = session_factory
        self.storage = storage
        self.settings = settings or get_settings()
        self.rng = rng or random.Random()
        self.processor = processor or ImageProcessor(
            thumb_big_size=self.settings.thumb_big_size,
            thumb_small_size=self.settings.thumb_small_size,
            webp_quality=self.settings.webp_quality,
            thumb_quality=self.settings.thumb_quality,
            heic_jpeg_quality=self.settings.heic_jpeg_quality,
        )
        self.classifier = classifier or ContentClassifier(
            threshold=self.settings.classifier_confidence_threshold,
            rng=self.rng,
        )
        self.geocoder = geocoder
        self.notifier = notifier or LoggingNotificationSink()
        self.gap_threshold = timedelta(days=self.settings.cluster_gap_days)
        self.max_duration = timedelta(days=self.settings.cluster_max_duration_days)

    @classmethod
    def from_settings(
        cls,
        session_factory: sessionmaker,
        storage: StorageAdapter,
        settings: Optional[Settings] = None,
    ) -> "MediaIngestService":
        """Build a service with the integrations enabled in settings."""
        settings = settings or get_settings()
        rng = random.Random()

        annotator = None
        if settings.vision_enabled:
            annotator = GoogleVisionAnnotator(settings.vision_credentials_path)

        geocoder = None
        if settings.geocoding_enabled:
            geocoder = ReverseGeocoder(
                base_url=settings.geocoding_url,
                user_agent=settings.geocoding_user_agent,
                timeout=settings.geocoding_timeout,
            )

        if settings.notifications_backend == "db":
            notifier: NotificationSink = DatabaseNotificationSink(session_factory)
        else:
            notifier = LoggingNotificationSink()

        return cls(
            session_factory,
            storage,
            classifier=ContentClassifier(
                annotator=annotator,
                threshold=settings.classifier_confidence_threshold,
                rng=rng,
            ),
            geocoder=geocoder,
            notifier=notifier,
            settings=settings,
            rng=rng,
        )

    @contextmanager
    def _stage(self, name: str) -> Iterator[None]:
        with PerformanceTracker(name, logger) as tracker:
            yield
        stage_duration_seconds.labels(stage=name).observe(tracker.duration_ms / 1000)

    def process(
        self,
        payload: JobPayload,
        report: ProgressCallback = _no_progress,
    ) -> IngestResult:
        """
        Process one uploaded image.

        Args:
            payload: Job payload describing the upload
            report: Called with (progress, status) after each stage

        Returns:
            IngestResult describing the stored asset

        Raises:
            MediaServiceError: If a fatal stage fails
            MediaProcessingError: If the image cannot be decoded or encoded
            StorageError: If derivatives cannot be written
        """
        source = Path(payload.source_path)
        asset_dir: Optional[Path] = None
        committed = False

        try:
            # Stage 1: ingestion
            with self._stage("ingestion"):
                content = self._read_source(source)
            report(5, "Source file read")

            # Stage 2: metadata (+ country lookup)
            with self._stage("metadata"):
                metadata = self.processor.extract_metadata(content)
                country = self._lookup_country(metadata)
            report(30, "Metadata extracted")

            # Stage 3: normalization
            with self._stage("normalization"):
                normalized = self.processor.normalize(content, payload.original_name)
                image = self.processor.load(normalized.content)
            report(40, "Format normalized")

            # Stage 4: primary WebP and large thumbnail
            with self._stage("thumbnail_big"):
                webp_bytes = self.processor.encode_webp(image)
                asset_dir = self.storage.create_asset_dir(uuid.uuid4().hex)
                original_path = self.storage.write(
                    asset_dir, f"original.{normalized.extension}", normalized.content)
                webp_path = self.storage.write(asset_dir, "image.webp", webp_bytes)
                big_bytes, _ = self.processor.thumbnail(
                    image, self.processor.thumb_big_size)
                thumb_big_path = self.storage.write(asset_dir, "thumb_big.webp", big_bytes)
            report(60, "Large thumbnail created")

            # Stage 5: small thumbnail
            with self._stage("thumbnail_small"):
                small_bytes, _ = self.processor.thumbnail(
                    image, self.processor.thumb_small_size)
                thumb_small_path = self.storage.write(
                    asset_dir, "thumb_small.webp", small_bytes)
            report(70, "Small thumbnail created")

            # Stage 6: classification
            with self._stage("classification"):
                category = self._classify(normalized.content, payload.type_hint)
            report(80, "Image classified")

            # Stage 7: persistence and memory date clustering
            with self._stage("persistence"):
                try:
                    with session_scope(self.session_factory) as db:
                        row = Image(
                            original_path=original_path,
                            webp_path=webp_path,
                            thumb_big_path=thumb_big_path,
                            thumb_small_path=thumb_small_path,
                            original_format=Path(payload.original_name).suffix.lower().lstrip(".")
                            or normalized.extension,
                            latitude=metadata.latitude,
                            longitude=metadata.longitude,
                            country=country,
                            type=category.value,
                            memory_id=payload.group_id,
                            context_id=payload.context_id,
                            created_by_user_id=payload.owner_id,
                            taken_at=metadata.taken_at,
                            original_taken_at=metadata.taken_at,
                            hash_original=sha256_hex(normalized.content),
                            hash_webp=sha256_hex(webp_bytes),
                        )
                        db.add(row)
                        db.flush()

                        date_range = None
                        if payload.group_id is not None:
                            clusterer = MemoryDateClusterer(
                                db,
                                gap_threshold=self.gap_threshold,
                                max_duration=self.max_duration,
                                rng=self.rng,
                            )
                            date_range = clusterer.update_memory_dates(payload.group_id)
                            db.refresh(row)

                        asset_id = row.id
                        taken_at = row.taken_at
                except Exception as e:
                    raise MediaServiceError(f"Failed to save image: {e}") from e
                committed = True
            report(90, "Saved to catalog")

            # Stage 8: cleanup
            self.storage.delete_file(str(source))
            report(100, "Completed")

        except Exception:
            if not committed:
                if asset_dir is not None:
                    self.storage.delete_asset_dir(asset_dir)
                self.storage.delete_file(str(source))
            raise

        logger.info(
            f"Ingested image {asset_id} ({category.value})",
            extra={"extra_fields": {
                "asset_id": asset_id,
                "memory_id": payload.group_id,
                "owner_id": payload.owner_id,
            }},
        )
        self._notify(payload.owner_id, asset_id)

        return IngestResult(
            asset_id=asset_id,
            memory_id=payload.group_id,
            original_path=original_path,
            webp_path=webp_path,
            thumb_big_path=thumb_big_path,
            thumb_small_path=thumb_small_path,
            taken_at=taken_at,
            category=category,
            country=country,
            date_range=date_range,
        )

    def _read_source(self, source: Path) -> bytes:
        if not source.exists():
            raise MediaServiceError(f"Source file not found: {source}")
        if not source.is_file():
            raise MediaServiceError(f"Source path is not a file: {source}")
        try:
            content = source.read_bytes()
        except OSError as e:
            raise MediaServiceError(f"Source file unreadable: {source}: {e}") from e
        if not content:
            raise MediaServiceError(f"Source file is empty: {source}")
        return content

    def _lookup_country(self, metadata: ImageMetadata) -> Optional[str]:
        if self.geocoder is None or not metadata.has_coordinates:
            return None
        try:
            return self.geocoder.country_for(metadata.latitude, metadata.longitude)
        except Exception as e:
            logger.warning(f"Country lookup failed: {e}")
            return None

    def _classify(self, content: bytes, type_hint: Optional[str]) -> ContentCategory:
        hinted = ContentCategory.parse(type_hint)
        if hinted is not None:
            logger.debug(f"Using type hint '{hinted.value}'")
            return hinted
        if type_hint:
            logger.warning(f"Ignoring unknown type hint '{type_hint}'")
        try:
            return self.classifier.classify(content)
        except Exception as e:
            logger.warning(f"Classifier failed, defaulting to landscape: {e}")
            return ContentCategory.LANDSCAPE

    def _notify(self, owner_id: int, asset_id: int) -> None:
        try:
            self.notifier.notify_new_photo(owner_id, asset_id)
        except Exception as e:
            logger.warning(f"Failed to emit new-photo notification: {e}")
