"""
Unit tests for the domain-set partition and next-batch planning.

Includes property-based testing with hypothesis for the accounting identity.
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from contentledger.batch.auditor import compute_domain_sets
from contentledger.batch.planner import plan_next_batch
from contentledger.core.models import Checkpoint, GroundTruth, LifecycleEntry, QueueEntry
from contentledger.core.exceptions import InvalidArgumentsError

pytestmark = pytest.mark.unit

KEYS = [f"k{i}" for i in range(12)]
key_sets = st.sets(st.sampled_from(KEYS))


def _entries(keys):
    return {key: LifecycleEntry(when="2025-01-01T00:00:00Z", why="test") for key in keys}


class TestComputeDomainSets:
    """Tests for D / R / M / X / U"""

    def test_partition(self):
        """Test each key lands in exactly one bucket with manual and deny precedence"""
        sets = compute_domain_sets(
            scope="promo",
            population={"a", "b", "c", "d", "e", "f"},
            manual={"c", "z"},
            deny={"a", "d"},
            done={"a", "c", "y"},
            rejected={"b"},
        )

        assert sets.manual == {"c"}
        assert sets.done == {"a"}
        assert sets.rejected == {"b"}
        assert sets.denied == {"d"}
        assert sets.unaccounted == {"e", "f"}
        assert sets.population_drift == {"y"}
        assert sets.identity_holds
        assert sets.counts() == {"P": 6, "D": 1, "R": 1, "M": 1, "X": 1, "U": 2, "drift": 1}

    def test_double_counted_key_breaks_identity(self):
        """Test a key both done and rejected is counted twice instead of disappearing"""
        sets = compute_domain_sets(
            scope="promo",
            population={"a", "b"},
            manual=set(),
            deny=set(),
            done={"a"},
            rejected={"a"},
        )

        assert sets.done == {"a"}
        assert sets.rejected == {"a"}
        assert sets.accounted_total == 3
        assert not sets.identity_holds

    def test_manual_wins_over_double_count(self):
        """Test manual keys leave D and R so the identity still holds"""
        sets = compute_domain_sets("promo", {"a"}, {"a"}, set(), {"a"}, {"a"})
        assert sets.identity_holds

    @given(population=key_sets, manual=key_sets, deny=key_sets, done=key_sets, rejected=key_sets)
    def test_property_identity_holds_for_disjoint_checkpoint(self, population, manual, deny, done, rejected):
        """Property test: |P| = |D|+|R|+|M|+|X|+|U| whenever done and rejected are disjoint"""
        rejected = rejected - done
        sets = compute_domain_sets("promo", population, manual, deny, done, rejected)

        assert sets.identity_holds
        buckets = [sets.done, sets.rejected, sets.manual, sets.denied, sets.unaccounted]
        assert set().union(*buckets) == population

    @given(population=key_sets, done=key_sets, rejected=key_sets)
    def test_property_overlap_inside_population_breaks_identity(self, population, done, rejected):
        """Property test: the identity fails exactly when done ∩ rejected reaches into P"""
        sets = compute_domain_sets("promo", population, set(), set(), done, rejected)
        assert sets.identity_holds == (not (done & rejected & population))


class TestPlanNextBatch:
    """Tests for the next-batch planner"""

    def _ground_truth(self, population, manual=(), deny=()):
        return GroundTruth(populations={"promo": set(population)}, manual=set(manual), deny=set(deny))

    def test_candidates_exclude_settled_keys(self):
        """Test done, rejected, manual and denied keys are not planned"""
        ground_truth = self._ground_truth(["a", "b", "c", "d", "e"], manual=["c"], deny=["d"])
        checkpoint = Checkpoint(done=_entries(["a"]), rejected=_entries(["b"]))

        plan = plan_next_batch("promo", ground_truth, checkpoint)

        assert plan.keys == ["e"]
        assert plan.candidates == 1

    def test_queued_keys_first(self):
        """Test requeued keys are planned before the rest"""
        ground_truth = self._ground_truth(["a", "b", "c", "z"])
        checkpoint = Checkpoint(queued={"z": QueueEntry(reason="transient-retry", queuedAt="t")})

        plan = plan_next_batch("promo", ground_truth, checkpoint, limit=3)

        assert plan.keys == ["z", "a", "b"]
        assert plan.queued_first == 1
        assert plan.summary()["planned"] == 3

    def test_invalid_keys_dropped(self):
        """Test keys failing hygiene are reported and skipped"""
        ground_truth = self._ground_truth(["good-key", "bad key", "also--bad"])

        plan = plan_next_batch("promo", ground_truth, Checkpoint())

        assert plan.keys == ["good-key"]
        assert plan.invalid == ["also--bad", "bad key"]

    def test_unknown_scope(self):
        with pytest.raises(InvalidArgumentsError):
            plan_next_batch("all", self._ground_truth(["a"]), Checkpoint())
