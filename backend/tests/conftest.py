import math
import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from response_insights import models  # noqa: F401
from response_insights.core.cache import TagCache, InMemoryCacheBackend
from response_insights.core.embeddings import EmbeddingConfig, EmbeddingManager, EmbeddingProvider
from response_insights.db.session import Base
from response_insights.models.document import Document
from response_insights.services.insight_resolver import InsightResolver
from response_insights.services.insights_service import InsightService


def unit_vector_at_distance(distance: float):
    """A 3-d vector whose cosine distance to [1, 0, 0] is `distance`."""
    cos = 1.0 - distance
    return [cos, math.sqrt(1.0 - cos * cos), 0.0]


V1 = [1.0, 0.0, 0.0]


class FakeEmbeddingClient:
    """Returns a fixed vector per text; records every call."""

    def __init__(self, vectors=None, default=None):
        self.vectors = dict(vectors or {})
        self.default = default
        self.calls = []

    def embed_query(self, text):
        self.calls.append(text)
        if text in self.vectors:
            return self.vectors[text]
        if self.default is not None:
            return self.default
        raise LookupError(f"no vector configured for {text!r}")


class FailingEmbeddingClient:
    def __init__(self):
        self.calls = 0

    def embed_query(self, text):
        self.calls += 1
        raise ConnectionError("embedding service unreachable")


def make_embedding_manager(client, dimension=None):
    config = EmbeddingConfig(provider=EmbeddingProvider.LOCAL, model="fake-model", dimension=dimension)
    return EmbeddingManager(config, client=client)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def cache():
    return TagCache(InMemoryCacheBackend(), ttl_seconds=60)


@pytest.fixture
def insight_service(cache):
    return InsightService(cache=cache)


@pytest.fixture
def make_document(db):
    def _make(environment_id="env-a", text="Checkout takes forever", **fields):
        document = Document(
            id=fields.pop("id", f"doc_{uuid.uuid4().hex}"),
            environmentId=environment_id,
            text=text,
            **fields
        )
        db.add(document)
        db.commit()
        db.refresh(document)
        return document
    return _make


@pytest.fixture
def make_resolver(insight_service, cache):
    def _make(client, max_distance=0.35, serialize_per_environment=False):
        return InsightResolver(
            embedding_manager=make_embedding_manager(client),
            insight_service=insight_service,
            cache=cache,
            max_distance=max_distance,
            serialize_per_environment=serialize_per_environment,
        )
    return _make
