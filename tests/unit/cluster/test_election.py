"""Tests for the generator/handler election policy."""

from itertools import combinations

import pytest

from duet.cluster.election import RoleAssignment, elect, find_inconsistencies
from duet.cluster.errors import InconsistencyKind

NODES = ["a", "b", "c", "d"]


def _all_states():
    """Every (online, generator, handler) over a four-node universe."""
    roles = [None, *NODES, "ghost"]
    for size in range(len(NODES) + 1):
        for online in combinations(NODES, size):
            for generator in roles:
                for handler in roles:
                    yield frozenset(online), generator, handler


class TestVacancy:
    """Tests for filling vacant or lost roles."""

    def test_empty_cluster_clears_both_roles(self) -> None:
        """No online nodes means no generator and no handler."""
        assert elect(set(), "a", "b") == RoleAssignment()

    def test_single_node_becomes_generator(self) -> None:
        """A lone node is generator and the handler is cleared."""
        assert elect({"x"}, None, None) == RoleAssignment(generator="x")

    def test_single_node_is_never_handler(self) -> None:
        """A lone node holding the handler role is promoted to generator."""
        assert elect({"x"}, "gone", "x") == RoleAssignment(generator="x", handler=None)

    def test_fresh_cluster_picks_two_smallest(self) -> None:
        """Empty role state elects the smallest id, then the next one."""
        assert elect({"c", "a", "b"}, None, None) == RoleAssignment("a", "b")

    def test_generator_loss_skips_current_handler(self) -> None:
        """New generator is the smallest id that is not the handler."""
        assert elect({"b", "c"}, "a", "b") == RoleAssignment("c", "b")

    def test_generator_loss_takes_smallest_when_handler_larger(self) -> None:
        """Handler keeps its role when a smaller id is free for generator."""
        assert elect({"a", "b", "c"}, "z", "c") == RoleAssignment("a", "c")

    def test_handler_loss_with_two_remaining(self) -> None:
        """Handler is re-elected among the non-generator nodes."""
        assert elect({"a", "c", "d"}, "a", "b") == RoleAssignment("a", "c")

    def test_handler_loss_below_two_nodes_clears_handler(self) -> None:
        """Handler is cleared, not reassigned to the generator."""
        assert elect({"x"}, "x", "y") == RoleAssignment(generator="x")

    def test_both_roles_lost(self) -> None:
        """Both roles are re-elected from scratch."""
        assert elect({"c", "d"}, "a", "b") == RoleAssignment("c", "d")

    def test_vacant_handler_filled_on_join(self) -> None:
        """A joining node fills a vacant handler role."""
        assert elect({"x", "y"}, "x", None) == RoleAssignment("x", "y")

    def test_joining_smaller_node_fills_handler(self) -> None:
        """Tie-break is by id, regardless of join order."""
        assert elect({"m", "b", "z"}, "m", None) == RoleAssignment("m", "b")

    def test_same_node_in_both_roles_is_corrected(self) -> None:
        """A handler equal to the generator is re-elected."""
        assert elect({"a", "b"}, "a", "a") == RoleAssignment("a", "b")


class TestStability:
    """Tests for keeping a healthy assignment."""

    def test_healthy_pair_unchanged(self) -> None:
        """Online generator and handler are never rotated."""
        assert elect({"a", "b", "c"}, "c", "b") == RoleAssignment("c", "b")

    def test_new_smaller_node_does_not_take_over(self) -> None:
        """A joining node with a smaller id does not churn roles."""
        assert elect({"0", "a", "b"}, "a", "b") == RoleAssignment("a", "b")

    def test_two_nodes_fixed_pair(self) -> None:
        """Two nodes keep their pair whichever way round it is."""
        assert elect({"x", "y"}, "y", "x") == RoleAssignment("y", "x")


class TestProperties:
    """Invariants checked over every small state."""

    def test_uniqueness(self) -> None:
        """Generator and handler never name the same node."""
        for online, generator, handler in _all_states():
            result = elect(online, generator, handler)
            if result.generator is not None and result.handler is not None:
                assert result.generator != result.handler

    def test_roles_are_online(self) -> None:
        """Assigned roles always name online nodes."""
        for online, generator, handler in _all_states():
            result = elect(online, generator, handler)
            assert result.generator is None or result.generator in online
            assert result.handler is None or result.handler in online

    def test_single_node_rule_and_handler_floor(self) -> None:
        """Fewer than two nodes never has a handler; one node is generator."""
        for online, generator, handler in _all_states():
            result = elect(online, generator, handler)
            if len(online) < 2:
                assert result.handler is None
            if len(online) == 1:
                assert result.generator == next(iter(online))
            if online:
                assert result.generator is not None

    def test_determinism(self) -> None:
        """Identical inputs always give identical outputs."""
        for online, generator, handler in _all_states():
            first = elect(online, generator, handler)
            assert elect(sorted(online, reverse=True), generator, handler) == first

    def test_stability(self) -> None:
        """Distinct online roles are returned unchanged."""
        for online, generator, handler in _all_states():
            if generator in online and handler in online and generator != handler:
                assert elect(online, generator, handler) == RoleAssignment(generator, handler)

    def test_idempotent(self) -> None:
        """Re-running the policy on its own output changes nothing."""
        for online, generator, handler in _all_states():
            result = elect(online, generator, handler)
            assert elect(online, result.generator, result.handler) == result


class TestRoleAssignment:
    """Tests for RoleAssignment helpers."""

    def test_changes_reports_differing_roles(self) -> None:
        """changes() names each role that moved."""
        current = RoleAssignment("a", "b")

        assert current.changes(RoleAssignment("a", "b")) == set()
        assert current.changes(RoleAssignment("c", "b")) == {"generator"}
        assert current.changes(RoleAssignment("a", None)) == {"handler"}
        assert current.changes(RoleAssignment()) == {"generator", "handler"}

    def test_is_immutable(self) -> None:
        """RoleAssignment is frozen."""
        assignment = RoleAssignment("a", "b")
        with pytest.raises(AttributeError):
            assignment.generator = "c"  # type: ignore


class TestFindInconsistencies:
    """Tests for role state inconsistency detection."""

    def test_consistent_state(self) -> None:
        """A valid assignment has no findings."""
        assert find_inconsistencies({"a", "b"}, "a", "b") == []

    def test_vacant_roles_are_not_findings(self) -> None:
        """Absent roles are vacancies, not inconsistencies."""
        assert find_inconsistencies({"a"}, None, None) == []

    def test_same_node_both_roles(self) -> None:
        """Both roles naming one node is reported."""
        kinds = {f.kind for f in find_inconsistencies({"a", "b"}, "a", "a")}
        assert InconsistencyKind.SAME_NODE_BOTH_ROLES in kinds

    def test_offline_roles(self) -> None:
        """Roles naming offline nodes are reported with the node id."""
        findings = find_inconsistencies({"c"}, "a", "b")

        assert {(f.kind, f.node_id) for f in findings} == {
            (InconsistencyKind.GENERATOR_OFFLINE, "a"),
            (InconsistencyKind.HANDLER_OFFLINE, "b"),
        }

    def test_handler_without_peers(self) -> None:
        """A handler that is the only online node is reported."""
        findings = find_inconsistencies({"b"}, None, "b")

        assert [f.kind for f in findings] == [InconsistencyKind.HANDLER_WITHOUT_PEERS]
        assert str(findings[0]) == "handler_without_peers (b)"
