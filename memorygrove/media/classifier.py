"""Content classification of images into a fixed set of categories."""

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional

from memorygrove.common.metrics import classifications_total
from memorygrove.common.resilience import CircuitBreaker, get_circuit_breaker

logger = logging.getLogger(__name__)


class ClassificationError(Exception):
    pass


class ContentCategory(str, Enum):
    LANDSCAPE = "landscape"
    SINGLE_PERSON = "single-person"
    COUPLE = "couple"
    FOOD = "food"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["ContentCategory"]:
        """Category for a string value, or None if it is not one."""
        try:
            return cls(value)
        except ValueError:
            return None


PERSON_KEYWORDS = (
    'person', 'people', 'human', 'man', 'woman', 'boy', 'girl',
    'face', 'portrait', 'selfie', 'body', 'clothing',
)

FOOD_KEYWORDS = (
    'food', 'meal', 'dish', 'restaurant', 'cuisine', 'cooking',
    'dinner', 'lunch', 'breakfast', 'pizza', 'pasta', 'dessert',
    'plate', 'kitchen', 'dining',
)

LANDSCAPE_KEYWORDS = (
    'landscape', 'nature', 'mountain', 'beach', 'sea', 'ocean',
    'forest', 'park', 'garden', 'sunset', 'sunrise', 'sky',
    'outdoor', 'scenic', 'vista', 'panorama',
)

PAIRED_CONTEXT_KEYWORDS = ('couple', 'together', 'wedding')

DEFAULT_CONFIDENCE_THRESHOLD = 0.6


@dataclass
class ScoredEntity:
    description: Optional[str]
    score: Optional[float]


@dataclass
class VisionAnnotations:
    """What the vision capability detected in one image."""
    objects: List[ScoredEntity] = field(default_factory=list)
    labels: List[ScoredEntity] = field(default_factory=list)
    web_entities: List[ScoredEntity] = field(default_factory=list)
    face_count: int = 0

    def all_sources(self) -> List[ScoredEntity]:
        return [*self.objects, *self.labels, *self.web_entities]


def keyword_score(keywords: Iterable[str], sources: Iterable[ScoredEntity]) -> float:
    """Sum the scores of entities whose description contains any keyword."""
    keywords = tuple(keywords)
    score = 0.0
    for item in sources:
        if not item.description or not item.score:
            continue
        description = item.description.lower()
        if any(keyword in description for keyword in keywords):
            score += item.score
    return score


def has_paired_context(web_entities: Iterable[ScoredEntity]) -> bool:
    return any(
        entity.description
        and any(k in entity.description.lower() for k in PAIRED_CONTEXT_KEYWORDS)
        for entity in web_entities
    )


def categorize(
    annotations: VisionAnnotations,
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> ContentCategory:
    """
    Map vision annotations to a content category.

    Faces decide first: two or more is a couple, exactly one is a single
    person unless web entities suggest a paired context. Without faces the
    keyword scores decide, with landscape as the default.
    """
    if annotations.face_count >= 2:
        return ContentCategory.COUPLE
    if annotations.face_count == 1:
        if has_paired_context(annotations.web_entities):
            return ContentCategory.COUPLE
        return ContentCategory.SINGLE_PERSON

    sources = annotations.all_sources()
    person_score = keyword_score(PERSON_KEYWORDS, sources)
    food_score = keyword_score(FOOD_KEYWORDS, sources)
    landscape_score = keyword_score(LANDSCAPE_KEYWORDS, sources)

    if food_score > threshold and food_score > person_score and food_score > landscape_score:
        return ContentCategory.FOOD
    if person_score > threshold:
        return ContentCategory.SINGLE_PERSON
    return ContentCategory.LANDSCAPE


class VisionAnnotator(ABC):
    """External image annotation capability."""

    @abstractmethod
    def annotate(self, image_bytes: bytes) -> VisionAnnotations:
        """
        Detect objects, labels, web entities and faces in an image.

        Raises:
            ClassificationError: If the capability cannot annotate the image
        """
        pass


class GoogleVisionAnnotator(VisionAnnotator):
    """Annotator backed by Google Cloud Vision."""

    def __init__(self, credentials_path: Optional[str] = None):
        self.credentials_path = credentials_path
        self._client = None
        self._vision = None

    def _get_client(self):
        if self._client is None:
            from google.cloud import vision

            self._vision = vision
            if self.credentials_path:
                self._client = vision.ImageAnnotatorClient.from_service_account_file(
                    self.credentials_path)
            else:
                self._client = vision.ImageAnnotatorClient()
            logger.info("Google Cloud Vision client initialized")
        return self._client

    def annotate(self, image_bytes: bytes) -> VisionAnnotations:
        client = self._get_client()
        feature_type = self._vision.Feature.Type
        response = client.annotate_image({
            "image": {"content": image_bytes},
            "features": [
                {"type_": feature_type.OBJECT_LOCALIZATION},
                {"type_": feature_type.LABEL_DETECTION},
                {"type_": feature_type.FACE_DETECTION},
                {"type_": feature_type.WEB_DETECTION},
            ],
        })
        if response.error.message:
            raise ClassificationError(
                f"Vision API error: {response.error.message}")

        return VisionAnnotations(
            objects=[
                ScoredEntity(obj.name, obj.score)
                for obj in response.localized_object_annotations
            ],
            labels=[
                ScoredEntity(label.description, label.score)
                for label in response.label_annotations
            ],
            web_entities=[
                ScoredEntity(entity.description, entity.score)
                for entity in response.web_detection.web_entities
            ],
            face_count=len(response.face_annotations),
        )


class ContentClassifier:
    """
    Classifies decoded images via a vision annotator.

    Annotator failures (including an open circuit) yield a category drawn
    at random from the fixed set, using the injected random source.
    """

    def __init__(
        self,
        annotator: Optional[VisionAnnotator] = None,
        threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        rng: Optional[random.Random] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.annotator = annotator
        self.threshold = threshold
        self.rng = rng or random.Random()
        self.breaker = breaker or get_circuit_breaker("vision")

    def classify(self, image_bytes: bytes) -> ContentCategory:
        if self.annotator is None:
            classifications_total.labels(
                category=ContentCategory.LANDSCAPE.value, fallback="false").inc()
            return ContentCategory.LANDSCAPE

        try:
            annotations = self.breaker.call(self.annotator.annotate, image_bytes)
        except Exception as e:
            category = self.rng.choice(list(ContentCategory))
            logger.warning(
                f"Image classification failed, using random category "
                f"'{category.value}': {e}"
            )
            classifications_total.labels(
                category=category.value, fallback="true").inc()
            return category

        category = categorize(annotations, self.threshold)
        logger.debug(
            f"Classified image as '{category.value}' "
            f"({annotations.face_count} faces)"
        )
        classifications_total.labels(
            category=category.value, fallback="false").inc()
        return category
