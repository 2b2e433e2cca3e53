"""
Tests for EvaluationEngine: matching, page assembly, budgets and failures.
"""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from feedengine.compiler import FilterTreeCompiler
from feedengine.core.exceptions import (
    CorpusUnavailableError,
    EvaluationCancelledError,
    InvalidPageSizeError,
)
from feedengine.core.monitoring.metrics import get_metrics_collector
from feedengine.engine import CancellationToken, EvaluationContext, EvaluationEngine, PageCursor
from feedengine.engine import evaluator as evaluator_module
from feedengine.models import PostType
from feedengine.providers import InMemoryCorpus
from tests.conftest import BASE_TIME, block, make_entry


def compile_blocks(blocks):
    return FilterTreeCompiler().compile(blocks).expression


class SteppedTime:
    """Stand-in for the time module whose monotonic clock jumps after N reads."""

    def __init__(self, reads_before_expiry: int):
        self.reads = 0
        self.reads_before_expiry = reads_before_expiry

    def monotonic(self) -> float:
        self.reads += 1
        return 0.0 if self.reads <= self.reads_before_expiry else 100.0


@pytest.fixture
def alice_corpus():
    """Six public posts by alice, one minute apart."""
    return InMemoryCorpus([
        make_entry(f"p{i}", "alice", PostType.IMAGE, minutes=i, tags=["art"]) for i in range(6)
    ])


class TestEvaluate:
    """Test basic evaluation."""

    def test_image_and_art(self, five_post_corpus, social, clock, image_art_blocks):
        """Only followed, unblocked art images match, newest first."""
        engine = EvaluationEngine(five_post_corpus, social, clock=clock)
        page = engine.evaluate(compile_blocks(image_art_blocks), "viewer", limit=20)

        assert page.item_ids == ["art-2", "art-1"]
        assert page.has_more is False
        assert page.next_cursor is None
        assert page.degraded is False
        assert page.scanned == 5

    def test_zero_matches(self, five_post_corpus, social, clock):
        """A tree nothing matches gives an empty, final page."""
        engine = EvaluationEngine(five_post_corpus, social, clock=clock)
        page = engine.evaluate(compile_blocks([block("post-type", "equals", ["song"])]), "viewer")

        assert page.to_dict() == {"items": [], "next_cursor": None, "has_more": False, "degraded": False}

    def test_empty_tree_is_following_scope(self, social, clock):
        """With no blocks the feed holds entries from followed authors."""
        corpus = InMemoryCorpus([
            make_entry("a", "alice", minutes=1),
            make_entry("c", "carol", minutes=2),
            make_entry("b", "bob", minutes=3),
        ])
        page = EvaluationEngine(corpus, social, clock=clock).evaluate(compile_blocks([]), "viewer")
        assert page.item_ids == ["b", "a"]

    def test_exact_limit_has_no_more(self, alice_corpus, social, clock):
        """has_more is only set when a further match exists."""
        engine = EvaluationEngine(alice_corpus, social, clock=clock)
        page = engine.evaluate(compile_blocks([]), "viewer", limit=6)
        assert len(page.items) == 6
        assert page.has_more is False
        assert page.next_cursor is None

    def test_look_ahead_sets_has_more(self, alice_corpus, social, clock):
        """A seventh match is looked at but not returned."""
        alice_corpus.add(make_entry("p6", "alice", minutes=6))
        page = EvaluationEngine(alice_corpus, social, clock=clock).evaluate(compile_blocks([]), "viewer", limit=6)
        assert page.item_ids == ["p6", "p5", "p4", "p3", "p2", "p1"]
        assert page.has_more is True
        assert PageCursor.decode(page.next_cursor).position.entry_id == "p1"

    @pytest.mark.parametrize("limit", [0, -5])
    def test_limit_below_one(self, alice_corpus, social, limit):
        """Page sizes below one are rejected."""
        with pytest.raises(InvalidPageSizeError):
            EvaluationEngine(alice_corpus, social).evaluate(compile_blocks([]), "viewer", limit=limit)

    def test_snapshot_excludes_future_entries(self, alice_corpus, social, clock):
        """Entries created after the snapshot marker are skipped."""
        clock.now = BASE_TIME + timedelta(minutes=3)
        page = EvaluationEngine(alice_corpus, social, clock=clock).evaluate(compile_blocks([]), "viewer")
        assert page.item_ids == ["p3", "p2", "p1", "p0"]

    def test_records_metrics(self, alice_corpus, social, clock):
        """Evaluations and scanned candidates are counted."""
        EvaluationEngine(alice_corpus, social, clock=clock).evaluate(compile_blocks([]), "viewer")
        collector = get_metrics_collector()
        assert collector.get_metric("engine.evaluations").total == 1
        assert collector.get_metric("engine.scanned").total == 6


class TestBudget:
    """Test the wall-clock budget."""

    def test_zero_budget_degrades(self, alice_corpus, social, clock):
        """An exhausted budget returns a degraded page with a resume cursor."""
        engine = EvaluationEngine(alice_corpus, social, clock=clock)
        page = engine.evaluate(compile_blocks([]), "viewer", budget=0)

        assert page.degraded is True
        assert page.has_more is True
        assert page.items == []
        assert page.next_cursor is not None
        assert get_metrics_collector().get_metric("engine.degraded").total == 1

    def test_resume_after_degraded_page(self, alice_corpus, social, clock, monkeypatch):
        """A degraded page resumes from the last scanned candidate."""
        # deadline read, then two loop checks before expiry
        monkeypatch.setattr(evaluator_module, "time", SteppedTime(reads_before_expiry=3))
        engine = EvaluationEngine(alice_corpus, social, clock=clock)
        first = engine.evaluate(compile_blocks([]), "viewer", limit=4, budget=1.0)

        assert first.degraded is True
        assert first.item_ids == ["p5", "p4"]

        monkeypatch.setattr(evaluator_module, "time", SteppedTime(reads_before_expiry=1000))
        second = engine.evaluate(compile_blocks([]), "viewer", cursor=first.next_cursor, limit=4, budget=1.0)
        assert second.item_ids == ["p3", "p2", "p1", "p0"]
        assert second.degraded is False

    def test_full_page_at_deadline_not_degraded(self, alice_corpus, social, clock, monkeypatch):
        """If the page is already full when time runs out, it is returned normally."""
        monkeypatch.setattr(evaluator_module, "time", SteppedTime(reads_before_expiry=3))
        page = EvaluationEngine(alice_corpus, social, clock=clock).evaluate(
            compile_blocks([]), "viewer", limit=2, budget=1.0
        )
        assert page.item_ids == ["p5", "p4"]
        assert page.degraded is False
        assert page.has_more is True

    def test_no_budget(self, alice_corpus, social, clock):
        """A None budget scans to the end."""
        engine = EvaluationEngine(alice_corpus, social, default_budget=None, clock=clock)
        assert len(engine.evaluate(compile_blocks([]), "viewer").items) == 6


class TestCancellationAndFailures:
    """Test cancellation and collaborator failures."""

    def test_cancelled_token(self, alice_corpus, social, clock):
        """A cancelled token aborts the evaluation."""
        token = CancellationToken()
        token.cancel()
        with pytest.raises(EvaluationCancelledError):
            EvaluationEngine(alice_corpus, social, clock=clock).evaluate(
                compile_blocks([]), "viewer", cancel_token=token
            )

    def test_corpus_open_failure(self, social):
        """A corpus that cannot stream is reported as unavailable."""
        corpus = Mock()
        corpus.stream_candidates.side_effect = ConnectionError("db down")
        with pytest.raises(CorpusUnavailableError) as exc_info:
            EvaluationEngine(corpus, social).evaluate(compile_blocks([]), "viewer")
        assert exc_info.value.recoverable is True

    def test_corpus_fails_mid_stream(self, social):
        """Failures while iterating are reported the same way."""
        def broken_stream(viewer_id, since=None):
            yield make_entry(author_id="alice")
            raise TimeoutError("read timed out")

        corpus = Mock()
        corpus.stream_candidates.side_effect = broken_stream
        with pytest.raises(CorpusUnavailableError):
            EvaluationEngine(corpus, social).evaluate(compile_blocks([]), "viewer")

    def test_social_failure(self, alice_corpus):
        """A failing social context is reported as unavailable."""
        social = Mock()
        social.is_blocked.side_effect = ConnectionError("graph down")
        with pytest.raises(CorpusUnavailableError):
            EvaluationEngine(alice_corpus, social).evaluate(compile_blocks([]), "viewer")


class TestEvaluationContext:
    """Test per-evaluation memoisation."""

    def test_answers_memoised(self):
        """Each question reaches the social graph once."""
        social = Mock()
        social.is_following.return_value = True
        context = EvaluationContext("viewer", social)

        assert context.follows("alice") is True
        assert context.is_following("viewer", "alice") is True
        social.is_following.assert_called_once_with("viewer", "alice")

    def test_fresh_context_per_evaluation(self, alice_corpus, clock):
        """Nothing is memoised across evaluations."""
        social = Mock()
        social.is_blocked.return_value = False
        social.is_following.return_value = True
        engine = EvaluationEngine(alice_corpus, social, clock=clock)

        engine.evaluate(compile_blocks([]), "viewer")
        first_calls = social.is_following.call_count
        engine.evaluate(compile_blocks([]), "viewer")
        assert social.is_following.call_count == 2 * first_calls
