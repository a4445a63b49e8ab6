import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from conftest import (
    V1,
    FakeEmbeddingClient,
    FailingEmbeddingClient,
    make_embedding_manager,
    unit_vector_at_distance,
)
from response_insights.core.cache import (
    document_tag_by_insight_id,
    insight_tag_by_environment_id,
    insight_tag_by_id,
)
from response_insights.core.embeddings import get_insight_vector_text
from response_insights.core.errors import NotFoundError, ProviderError
from response_insights.db.session import Base
from response_insights.models.document import Document
from response_insights.models.document_insight import DocumentInsight
from response_insights.models.insight import Insight
from response_insights.schemas.insight import InsightCandidate, InsightCategory
from response_insights.services.insight_resolver import EnvironmentLocks, InsightResolver
from response_insights.services.insights_service import InsightService


SLOW_CHECKOUT = InsightCandidate(
    title="Slow checkout",
    description="Users report checkout is slow",
    category=InsightCategory.COMPLAINT,
)
CHECKOUT_LAG = InsightCandidate(
    title="Checkout lag",
    description="Paying takes a long time",
    category=InsightCategory.COMPLAINT,
)


def seed_slow_checkout(insight_service, db, environment_id="env-a"):
    return insight_service.create_insight(
        db,
        environment_id=environment_id,
        title=SLOW_CHECKOUT.title,
        description=SLOW_CHECKOUT.description,
        category=SLOW_CHECKOUT.category,
        vector=V1,
    )


def links_for(db, document_id):
    return db.query(DocumentInsight).filter(DocumentInsight.documentId == document_id).all()


def test_creates_insight_when_environment_is_empty(db, make_document, make_resolver):
    document = make_document()
    client = FakeEmbeddingClient({get_insight_vector_text(SLOW_CHECKOUT.title, SLOW_CHECKOUT.description): V1})
    resolver = make_resolver(client)

    result = resolver.resolve_insight(db, "env-a", document.id, SLOW_CHECKOUT)

    assert result.created is True
    assert result.distance is None
    insights = db.query(Insight).all()
    assert len(insights) == 1
    insight = insights[0]
    assert insight.id == result.insightId
    assert insight.environmentId == "env-a"
    assert insight.title == "Slow checkout"
    assert insight.description == "Users report checkout is slow"
    assert insight.category == InsightCategory.COMPLAINT
    assert insight.vector == V1
    assert [link.insightId for link in links_for(db, document.id)] == [insight.id]
    assert client.calls == ["Slow checkout: Users report checkout is slow"]


def test_merges_into_existing_insight_within_threshold(db, make_document, make_resolver, insight_service):
    existing = seed_slow_checkout(insight_service, db)
    document = make_document()
    resolver = make_resolver(FakeEmbeddingClient(default=unit_vector_at_distance(0.2)))

    result = resolver.resolve_insight(db, "env-a", document.id, CHECKOUT_LAG)

    assert result.created is False
    assert result.insightId == existing.id
    assert result.distance == pytest.approx(0.2)
    assert db.query(Insight).count() == 1
    assert [link.insightId for link in links_for(db, document.id)] == [existing.id]

    db.refresh(existing)
    assert existing.title == "Slow checkout"
    assert existing.description == "Users report checkout is slow"
    assert existing.vector == V1


def test_creates_distinct_insight_beyond_threshold(db, make_document, make_resolver, insight_service):
    existing = seed_slow_checkout(insight_service, db)
    document = make_document()
    far_vector = unit_vector_at_distance(0.5)
    resolver = make_resolver(FakeEmbeddingClient(default=far_vector))

    result = resolver.resolve_insight(db, "env-a", document.id, CHECKOUT_LAG)

    assert result.created is True
    assert result.insightId != existing.id
    assert db.query(Insight).count() == 2
    new_insight = db.get(Insight, result.insightId)
    assert new_insight.title == "Checkout lag"
    assert new_insight.vector == pytest.approx(far_vector)
    assert [link.insightId for link in links_for(db, document.id)] == [result.insightId]


def test_embedding_failure_leaves_no_rows(db, make_document, make_resolver):
    document = make_document()
    client = FailingEmbeddingClient()
    resolver = make_resolver(client)

    with pytest.raises(ProviderError):
        resolver.resolve_insight(db, "env-a", document.id, SLOW_CHECKOUT)

    assert client.calls == 1
    assert db.query(Insight).count() == 0
    assert db.query(DocumentInsight).count() == 0


@pytest.mark.parametrize("distance, merged", [(0.0, True), (0.34, True), (0.35, True), (0.36, False), (0.9, False)])
def test_merge_decision_follows_threshold(db, make_document, make_resolver, insight_service, distance, merged):
    existing = seed_slow_checkout(insight_service, db)
    document = make_document()
    resolver = make_resolver(FakeEmbeddingClient(default=unit_vector_at_distance(distance)))

    result = resolver.resolve_insight(db, "env-a", document.id, CHECKOUT_LAG)

    assert result.created is not merged
    assert (result.insightId == existing.id) is merged
    assert db.query(Insight).count() == (1 if merged else 2)


def test_custom_threshold_is_respected(db, make_document, make_resolver, insight_service):
    seed_slow_checkout(insight_service, db)
    document = make_document()
    resolver = make_resolver(FakeEmbeddingClient(default=unit_vector_at_distance(0.3)), max_distance=0.1)

    assert resolver.resolve_insight(db, "env-a", document.id, CHECKOUT_LAG).created is True


def test_never_merges_across_environments(db, make_document, make_resolver, insight_service):
    other_environment_insight = seed_slow_checkout(insight_service, db, environment_id="env-b")
    document = make_document(environment_id="env-a")
    resolver = make_resolver(FakeEmbeddingClient(default=V1))

    result = resolver.resolve_insight(db, "env-a", document.id, SLOW_CHECKOUT)

    assert result.created is True
    assert result.insightId != other_environment_insight.id
    assert db.get(Insight, result.insightId).environmentId == "env-a"


def test_same_input_state_gives_same_decision(db, make_document, make_resolver, insight_service):
    existing = seed_slow_checkout(insight_service, db)
    document = make_document()
    resolver = make_resolver(FakeEmbeddingClient(default=unit_vector_at_distance(0.1)))

    first = resolver.resolve_insight(db, "env-a", document.id, CHECKOUT_LAG)
    second = resolver.resolve_insight(db, "env-a", document.id, CHECKOUT_LAG)

    assert first.insightId == second.insightId == existing.id
    assert len(links_for(db, document.id)) == 1
    assert db.query(Insight).count() == 1


def test_second_document_with_same_topic_merges_into_created_insight(db, make_document, make_resolver):
    first_document = make_document()
    second_document = make_document(text="Paying is slow")
    resolver = make_resolver(FakeEmbeddingClient(default=V1))

    first = resolver.resolve_insight(db, "env-a", first_document.id, SLOW_CHECKOUT)
    second = resolver.resolve_insight(db, "env-a", second_document.id, CHECKOUT_LAG)

    assert first.created is True
    assert second.created is False
    assert second.insightId == first.insightId
    assert db.query(Insight).count() == 1
    assert db.query(DocumentInsight).count() == 2


def test_missing_document_rolls_back_new_insight(db, make_resolver):
    resolver = make_resolver(FakeEmbeddingClient(default=V1))

    with pytest.raises(NotFoundError):
        resolver.resolve_insight(db, "env-a", "doc_missing", SLOW_CHECKOUT)

    assert db.query(Insight).count() == 0
    assert db.query(DocumentInsight).count() == 0


def test_document_from_other_environment_is_rejected(db, make_document, make_resolver):
    document = make_document(environment_id="env-b")
    resolver = make_resolver(FakeEmbeddingClient(default=V1))

    with pytest.raises(NotFoundError):
        resolver.resolve_insight(db, "env-a", document.id, SLOW_CHECKOUT)

    assert db.query(Insight).count() == 0


def test_successful_resolution_revalidates_cache_tags(db, make_document, make_resolver, cache):
    events = []
    cache.subscribe(events.append)
    document = make_document()
    resolver = make_resolver(FakeEmbeddingClient(default=V1))

    result = resolver.resolve_insight(db, "env-a", document.id, SLOW_CHECKOUT)

    assert events == [[
        document_tag_by_insight_id(result.insightId),
        insight_tag_by_id(result.insightId),
        insight_tag_by_environment_id("env-a"),
    ]]


def test_failed_resolution_emits_no_cache_event(db, make_document, make_resolver, cache):
    events = []
    cache.subscribe(events.append)
    document = make_document()

    with pytest.raises(ProviderError):
        make_resolver(FailingEmbeddingClient()).resolve_insight(db, "env-a", document.id, SLOW_CHECKOUT)

    assert events == []


def test_serialized_resolver_makes_same_decisions(db, make_document, make_resolver, insight_service):
    existing = seed_slow_checkout(insight_service, db)
    document = make_document()
    resolver = make_resolver(FakeEmbeddingClient(default=unit_vector_at_distance(0.2)), serialize_per_environment=True)

    result = resolver.resolve_insight(db, "env-a", document.id, CHECKOUT_LAG)

    assert result.insightId == existing.id


class BarrierEmbeddingClient(FakeEmbeddingClient):
    """Holds every caller until `parties` embeddings are in flight."""

    def __init__(self, parties, default):
        super().__init__(default=default)
        self.barrier = threading.Barrier(parties, timeout=5)

    def embed_query(self, text):
        vector = super().embed_query(text)
        self.barrier.wait()
        return vector


def test_concurrent_calls_on_serialized_resolver_create_one_insight(tmp_path, cache):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'insights.db'}",
        connect_args={"check_same_thread": False, "timeout": 10},
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autoflush=False, bind=engine)

    with Session() as setup:
        document_ids = []
        for text in ("Checkout is slow", "Paying takes ages"):
            document = Document(id=f"doc_{len(document_ids)}", environmentId="env-a", text=text)
            setup.add(document)
            document_ids.append(document.id)
        setup.commit()

    resolver = InsightResolver(
        embedding_manager=make_embedding_manager(BarrierEmbeddingClient(2, default=V1)),
        insight_service=InsightService(cache=cache),
        cache=cache,
        serialize_per_environment=True,
    )
    results, errors = [], []
    candidates = [SLOW_CHECKOUT, CHECKOUT_LAG]

    def worker(document_id, candidate):
        session = Session()
        try:
            results.append(resolver.resolve_insight(session, "env-a", document_id, candidate))
        except Exception as e:
            errors.append(e)
        finally:
            session.close()

    threads = [
        threading.Thread(target=worker, args=(document_id, candidate))
        for document_id, candidate in zip(document_ids, candidates)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    try:
        assert errors == []
        assert sorted(result.created for result in results) == [False, True]
        with Session() as check:
            assert check.query(Insight).count() == 1
            assert check.query(DocumentInsight).count() == 2
    finally:
        engine.dispose()


def test_negative_threshold_is_rejected(insight_service):
    with pytest.raises(ValueError):
        InsightResolver(embedding_manager=None, insight_service=insight_service, max_distance=-0.1)


def test_environment_locks_block_only_the_same_environment():
    locks = EnvironmentLocks()
    entered = threading.Event()

    def worker(environment_id):
        with locks.hold(environment_id):
            entered.set()

    with locks.hold("env-a"):
        other = threading.Thread(target=worker, args=("env-b",))
        other.start()
        assert entered.wait(timeout=2)
        other.join(timeout=2)

        entered.clear()
        same = threading.Thread(target=worker, args=("env-a",))
        same.start()
        assert not entered.wait(timeout=0.2)

    assert entered.wait(timeout=2)
    same.join(timeout=2)
