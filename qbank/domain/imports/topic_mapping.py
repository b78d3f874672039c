"""
Resolution of free-text topic labels to canonical topics.

Strategies, in order:
1. Exact match on the normalized name
2. Fuzzy match (substring containment or ``SequenceMatcher`` ratio above a threshold)
3. Fallback: create the canonical topic (insert-if-absent on the unique ``name_key``)

A ``TopicResolver`` caches label resolutions for the lifetime of one import
run, so the same label always maps to the same topic id within that run.
"""
import logging
import re
import uuid
from difflib import SequenceMatcher
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from qbank.core.config import settings
from qbank.db.session import get_engine
from qbank.utils.serialization import to_db_timestamp, utcnow

from .models import MappingMethod, Topic, TopicMapping
from .results import TopicResolutionError

logger = logging.getLogger(__name__)

EXACT_CONFIDENCE = 100.0
CONTAINMENT_CONFIDENCE = 75.0
FALLBACK_CONFIDENCE = 50.0
LOW_CONFIDENCE_CUTOFF = 80.0

_WHITESPACE = re.compile(r"\s+")


def normalize_topic_name(name: str) -> str:
    """Lowercase and collapse whitespace: '  Cardiac   Physiology ' -> 'cardiac physiology'."""
    return _WHITESPACE.sub(" ", (name or "").strip()).casefold()


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", normalize_topic_name(name)).strip("-")
    return slug or "topic"


def list_topics() -> List[Topic]:
    engine = get_engine()
    with engine.connect() as conn:
        result = conn.execute(text("SELECT id, name FROM topics ORDER BY name"))
        return [Topic(id=str(row[0]), name=row[1]) for row in result]


def _select_topic_by_key(conn, name_key: str) -> Optional[Topic]:
    row = conn.execute(
        text("SELECT id, name FROM topics WHERE name_key = :name_key"),
        {"name_key": name_key},
    ).first()
    if row is None:
        return None
    return Topic(id=str(row[0]), name=row[1])


def create_topic_if_missing(name: str, description: str = "Auto-created from CSV import") -> Topic:
    """
    Return the canonical topic for ``name``, creating it when absent.

    Concurrent imports may race to create the same topic; the unique
    ``name_key`` constraint makes the loser re-read the winner's row.
    """
    name = _WHITESPACE.sub(" ", name.strip())
    name_key = normalize_topic_name(name)
    if not name_key:
        raise TopicResolutionError("Cannot create a topic with an empty name")

    engine = get_engine()
    with engine.connect() as conn:
        existing = _select_topic_by_key(conn, name_key)
    if existing is not None:
        return existing

    topic_id = str(uuid.uuid4())
    insert_sql = text("""
        INSERT INTO topics (id, name, name_key, slug, description, created_at)
        VALUES (:id, :name, :name_key, :slug, :description, :created_at)
    """)
    try:
        with engine.begin() as conn:
            conn.execute(insert_sql, {
                "id": topic_id,
                "name": name,
                "name_key": name_key,
                "slug": slugify(name),
                "description": description,
                "created_at": to_db_timestamp(utcnow()),
            })
        logger.info("Created canonical topic '%s' (%s)", name, topic_id)
        return Topic(id=topic_id, name=name)
    except IntegrityError:
        logger.info("Topic '%s' was created concurrently; reusing the existing row", name)
        with engine.connect() as conn:
            existing = _select_topic_by_key(conn, name_key)
        if existing is None:
            raise TopicResolutionError(f"Failed to create topic '{name}'")
        return existing


class TopicResolver:
    """Per-import label resolver with a label -> mapping cache."""

    def __init__(self, topics: Iterable[Topic], similarity_threshold: Optional[float] = None):
        self.similarity_threshold = (
            settings.topic_similarity_threshold if similarity_threshold is None else similarity_threshold
        )
        self._topics: List[Topic] = list(topics)
        self._by_key: Dict[str, Topic] = {normalize_topic_name(t.name): t for t in self._topics}
        self._cache: Dict[str, TopicMapping] = {}
        self.created_topics: List[Topic] = []

    @classmethod
    def from_database(cls) -> "TopicResolver":
        return cls(list_topics())

    def _fuzzy_match(self, label_key: str) -> Optional[Tuple[Topic, float]]:
        best: Optional[Topic] = None
        best_confidence = 0.0
        for topic in self._topics:
            topic_key = normalize_topic_name(topic.name)
            if not topic_key:
                continue
            confidence = 0.0
            if label_key in topic_key or topic_key in label_key:
                confidence = CONTAINMENT_CONFIDENCE
            ratio = SequenceMatcher(None, label_key, topic_key).ratio()
            if ratio >= self.similarity_threshold:
                confidence = max(confidence, round(ratio * 100, 2))
            if confidence > best_confidence:
                best, best_confidence = topic, confidence
        if best is None:
            return None
        return best, best_confidence

    def match(self, label: str) -> Optional[TopicMapping]:
        """Resolve ``label`` against known topics without creating anything."""
        if label in self._cache:
            return self._cache[label]

        label_key = normalize_topic_name(label)
        exact = self._by_key.get(label_key)
        if exact is not None:
            mapping = TopicMapping(label, exact.id, exact.name, EXACT_CONFIDENCE, MappingMethod.EXACT)
        else:
            fuzzy = self._fuzzy_match(label_key)
            if fuzzy is None:
                return None
            topic, confidence = fuzzy
            mapping = TopicMapping(label, topic.id, topic.name, confidence, MappingMethod.FUZZY)

        self._cache[label] = mapping
        return mapping

    def map_labels(self, labels: Iterable[str]) -> Dict[str, Optional[TopicMapping]]:
        """Map every distinct label; unmapped labels map to None."""
        mappings: Dict[str, Optional[TopicMapping]] = {}
        for label in labels:
            if label not in mappings:
                mappings[label] = self.match(label)
        return mappings

    def resolve_with_fallback(self, label: str) -> TopicMapping:
        """Resolve ``label``, creating a canonical topic when nothing matches."""
        mapping = self.match(label)
        if mapping is not None:
            return mapping

        try:
            topic = create_topic_if_missing(label)
        except TopicResolutionError:
            raise
        except Exception as exc:
            raise TopicResolutionError(f"Failed to create topic '{label}': {exc}") from exc

        if normalize_topic_name(topic.name) not in self._by_key:
            self._topics.append(topic)
            self._by_key[normalize_topic_name(topic.name)] = topic
            self.created_topics.append(topic)

        mapping = TopicMapping(label, topic.id, topic.name, FALLBACK_CONFIDENCE, MappingMethod.FALLBACK)
        self._cache[label] = mapping
        return mapping

    def confidence_stats(self) -> Dict[str, float]:
        confidences = [mapping.confidence for mapping in self._cache.values()]
        if not confidences:
            return {"average": 0.0, "min": 0.0, "max": 0.0, "low_confidence_count": 0}
        return {
            "average": round(sum(confidences) / len(confidences), 2),
            "min": min(confidences),
            "max": max(confidences),
            "low_confidence_count": len([c for c in confidences if c < LOW_CONFIDENCE_CUTOFF]),
        }
