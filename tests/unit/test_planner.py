#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Unit tests for MigrationPlanner.

Plans are computed from definitions and hand-built ledger snapshots,
without a database.
"""
from datetime import datetime, timezone

import pytest

from schemaledger.errors import UnknownMigration
from schemaledger.migrations.ledger import LedgerSnapshot
from schemaledger.migrations.migration import Direction, LedgerEntry
from schemaledger.migrations.planner import MigrationPlanner
from tests.fixtures.helpers import create_table_migration


def snapshot(*batches, high_water=0):
    """Snapshot from lists of names, one list per batch starting at 1."""
    entries = []
    for batch, names in enumerate(batches, start=1):
        for name in names:
            entries.append(LedgerEntry(
                id=len(entries) + 1,
                migration_name=name,
                batch=batch,
                applied_at=datetime.now(timezone.utc),
            ))
    return LedgerSnapshot(entries=tuple(entries), high_water=high_water)


@pytest.fixture
def planner():
    return MigrationPlanner([
        create_table_migration(name, name.split('_', 1)[1])
        for name in ('004_d', '001_a', '003_c', '002_b')
    ])


class TestLedgerSnapshot:
    """Test snapshot queries."""

    def test_empty(self):
        empty = LedgerSnapshot()
        assert empty.latest_batch() == 0
        assert empty.next_batch() == 1
        assert empty.all_applied() == frozenset()

    def test_queries(self):
        snap = snapshot(['001_a', '002_b'], ['003_c'])
        assert snap.latest_batch() == 2
        assert snap.entries_in_batch(1) == ['001_a', '002_b']
        assert snap.batches_descending() == [2, 1]
        assert snap.get('003_c').batch == 2
        assert snap.get('999_z') is None

    def test_high_water_prevents_reuse(self):
        """A batch freed by rollback is not handed out again."""
        snap = snapshot(['001_a'], high_water=3)
        assert snap.next_batch() == 4


class TestForwardPlan:
    """Test pending computation."""

    def test_everything_pending(self, planner):
        plan = planner.forward_plan(LedgerSnapshot())
        assert plan.names == ['001_a', '002_b', '003_c', '004_d']
        assert plan.batch == 1
        assert all(s.direction == Direction.FORWARD for s in plan.steps)

    def test_pending_only(self, planner):
        plan = planner.forward_plan(snapshot(['001_a', '003_c']))
        assert plan.names == ['002_b', '004_d']
        assert plan.batch == 2

    def test_nothing_pending(self, planner):
        plan = planner.forward_plan(snapshot(['001_a', '002_b', '003_c', '004_d']))
        assert plan.is_empty
        assert plan.batch is None


class TestRollbackPlan:
    """Test reversal ordering."""

    def test_default_is_latest_batch(self, planner):
        plan = planner.rollback_plan(snapshot(['001_a'], ['002_b', '003_c']))
        assert plan.names == ['003_c', '002_b']
        assert all(s.direction == Direction.BACKWARD for s in plan.steps)

    def test_multiple_batches(self, planner):
        plan = planner.rollback_plan(snapshot(['001_a'], ['002_b', '003_c']), batches=2)
        assert plan.names == ['003_c', '002_b', '001_a']

    def test_more_batches_than_applied(self, planner):
        plan = planner.rollback_plan(snapshot(['001_a'], ['002_b']), batches=10)
        assert plan.names == ['002_b', '001_a']

    def test_steps_cross_batches(self, planner):
        """Steps reverse individual migrations, newest batch first."""
        snap = snapshot(['001_a', '002_b'], ['003_c'])
        assert planner.rollback_plan(snap, steps=1).names == ['003_c']
        assert planner.rollback_plan(snap, steps=2).names == ['003_c', '002_b']
        assert planner.rollback_plan(snap, steps=99).names == ['003_c', '002_b', '001_a']

    def test_empty_ledger(self, planner):
        assert planner.rollback_plan(LedgerSnapshot()).is_empty

    def test_insertion_order_within_batch(self):
        """Within a batch, reversal follows ledger insertion order, not names."""
        planner = MigrationPlanner([
            create_table_migration('001_a', 'a'),
            create_table_migration('002_b', 'b'),
        ])
        snap = snapshot(['002_b', '001_a'])
        assert planner.rollback_plan(snap).names == ['001_a', '002_b']

    @pytest.mark.parametrize('kwargs', [{'batches': 0}, {'steps': 0}, {'steps': -1}])
    def test_invalid_amount(self, planner, kwargs):
        with pytest.raises(ValueError):
            planner.rollback_plan(snapshot(['001_a']), **kwargs)

    def test_unknown_applied_migration(self, planner):
        with pytest.raises(UnknownMigration) as exc_info:
            planner.rollback_plan(snapshot(['001_a', '000_gone']))
        assert exc_info.value.migration_name == '000_gone'


class TestResetFreshRefresh:
    """Test whole-ledger plans."""

    def test_reset_reverses_everything(self, planner):
        plan = planner.reset_plan(snapshot(['001_a', '002_b'], ['003_c']))
        assert plan.kind == 'reset'
        assert plan.names == ['003_c', '002_b', '001_a']

    def test_fresh_ignores_ledger(self, planner):
        plan = planner.fresh_plan(snapshot(['001_a', '000_gone'], high_water=5))
        assert plan.wipe
        assert plan.names == ['001_a', '002_b', '003_c', '004_d']
        assert plan.batch == 6

    def test_fresh_ignores_irreversible(self):
        planner = MigrationPlanner([create_table_migration('001_a', 'a', irreversible=True)])
        plan = planner.fresh_plan(snapshot(['001_a']))
        assert plan.names == ['001_a']

    def test_refresh_is_reset_then_forward(self, planner):
        plan = planner.refresh_plan(snapshot(['001_a'], ['002_b']))
        assert plan.names == ['002_b', '001_a', '001_a', '002_b', '003_c', '004_d']
        assert [s.direction for s in plan.steps[:2]] == [Direction.BACKWARD] * 2
        assert plan.batch == 3

    def test_unknown_and_pending(self, planner):
        snap = snapshot(['001_a', '000_gone'])
        assert planner.unknown_applied(snap) == ['000_gone']
        assert [d.name for d in planner.pending(snap)] == ['002_b', '003_c', '004_d']
