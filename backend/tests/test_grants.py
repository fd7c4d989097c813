"""
Tests for the grant codec, the time-window filter and deduplication.
"""
import json

import pytest

from console.auth.grants import (
    SHARE_GROUPS_ANNOTATION,
    SHARE_ROLES_ANNOTATION,
    SHARE_USERS_ANNOTATION,
    Grant,
    ResourceGrants,
    active_grants,
    deduplicate_grants,
    parse_grants,
    parse_group_grants,
    serialize_grants,
)
from console.auth.rbac import Role
from console.errors import MalformedGrantsError
from grant_helpers import NOW_UNIX, at


class TestParseGrants:
    """Test decoding of stored grant annotations."""

    def test_parses_all_fields(self):
        annotations = {
            SHARE_USERS_ANNOTATION: json.dumps([
                {"principal": "alice@example.com", "role": "owner", "nbf": 1000, "exp": 2000},
                {"principal": "bob@example.com", "role": "Viewer"},
            ])
        }

        grants = parse_grants(annotations, SHARE_USERS_ANNOTATION)

        assert grants == [
            Grant(principal="alice@example.com", role=Role.OWNER, nbf=1000, exp=2000),
            Grant(principal="bob@example.com", role=Role.VIEWER),
        ]

    def test_missing_annotation_is_none(self):
        """Absence is not malformed."""
        assert parse_grants({}, SHARE_USERS_ANNOTATION) is None
        assert parse_grants(None, SHARE_USERS_ANNOTATION) is None

    def test_null_value_is_none(self):
        assert parse_grants({SHARE_USERS_ANNOTATION: "null"}, SHARE_USERS_ANNOTATION) is None

    def test_empty_array(self):
        assert parse_grants({SHARE_USERS_ANNOTATION: "[]"}, SHARE_USERS_ANNOTATION) == []

    def test_unknown_role_degrades_to_unspecified(self):
        annotations = {SHARE_USERS_ANNOTATION: '[{"principal": "a@example.com", "role": "admin"}]'}

        grants = parse_grants(annotations, SHARE_USERS_ANNOTATION)

        assert grants[0].role is Role.UNSPECIFIED

    def test_unknown_fields_are_ignored(self):
        annotations = {SHARE_USERS_ANNOTATION: '[{"principal": "a@example.com", "role": "editor", "note": "x"}]'}

        grants = parse_grants(annotations, SHARE_USERS_ANNOTATION)

        assert grants == [Grant(principal="a@example.com", role=Role.EDITOR)]

    def test_null_fields_degrade_one_record(self):
        """A null role or principal affects only its own record."""
        annotations = {
            SHARE_USERS_ANNOTATION: json.dumps([
                {"principal": "alice@example.com", "role": "owner"},
                {"principal": "bob@example.com", "role": None},
                {"principal": None, "role": "editor"},
            ])
        }

        grants = parse_grants(annotations, SHARE_USERS_ANNOTATION)

        assert grants == [
            Grant(principal="alice@example.com", role=Role.OWNER),
            Grant(principal="bob@example.com", role=Role.UNSPECIFIED),
            Grant(principal="", role=Role.EDITOR),
        ]
        assert active_grants(grants, at(NOW_UNIX)) == {
            "alice@example.com": Role.OWNER,
            "bob@example.com": Role.UNSPECIFIED,
        }

    @pytest.mark.parametrize(
        "value",
        [
            "not json",
            '{"principal": "a@example.com"}',
            '[{"principal": "a@example.com", "role": "owner"',
            '[{"principal": 42, "role": "owner"}]',
            '[{"principal": "a@example.com", "role": 3}]',
            '[{"principal": "a@example.com", "role": "owner", "exp": "soon"}]',
            '[{"principal": "a@example.com", "role": "owner", "nbf": 1.5}]',
        ],
    )
    def test_malformed_value_raises(self, value):
        """Malformed grants raise a distinct error naming the annotation."""
        with pytest.raises(MalformedGrantsError, match=f"invalid {SHARE_USERS_ANNOTATION} annotation") as exc_info:
            parse_grants({SHARE_USERS_ANNOTATION: value}, SHARE_USERS_ANNOTATION)

        assert exc_info.value.field == SHARE_USERS_ANNOTATION
        assert exc_info.value.__cause__ is not None


class TestGroupGrants:
    """Test the group bucket under its two annotation names."""

    def test_reads_share_groups(self):
        annotations = {SHARE_GROUPS_ANNOTATION: '[{"principal": "eng", "role": "editor"}]'}

        assert parse_group_grants(annotations) == [Grant(principal="eng", role=Role.EDITOR)]

    def test_share_roles_takes_precedence(self):
        annotations = {
            SHARE_GROUPS_ANNOTATION: '[{"principal": "old", "role": "viewer"}]',
            SHARE_ROLES_ANNOTATION: '[{"principal": "new", "role": "owner"}]',
        }

        assert parse_group_grants(annotations) == [Grant(principal="new", role=Role.OWNER)]

    def test_missing_is_none(self):
        assert parse_group_grants({}) is None


class TestSerializeGrants:
    """Test encoding of grant lists."""

    def test_empty_list_is_empty_array(self):
        assert serialize_grants([]) == "[]"

    def test_omits_absent_window(self):
        encoded = serialize_grants([Grant(principal="alice@example.com", role=Role.OWNER)])

        assert json.loads(encoded) == [{"principal": "alice@example.com", "role": "owner"}]

    def test_keeps_window(self):
        encoded = serialize_grants([Grant(principal="a", role=Role.VIEWER, nbf=10, exp=20)])

        assert json.loads(encoded) == [{"principal": "a", "role": "viewer", "nbf": 10, "exp": 20}]

    def test_parse_reads_serialized_output(self):
        grants = [
            Grant(principal="alice@example.com", role=Role.EDITOR, exp=5000),
            Grant(principal="bob@example.com", role=Role.VIEWER, nbf=100),
        ]

        encoded = serialize_grants(grants)

        assert parse_grants({SHARE_USERS_ANNOTATION: encoded}, SHARE_USERS_ANNOTATION) == grants


class TestActiveGrants:
    """Test the time-window filter."""

    def test_exp_equal_to_now_is_expired(self):
        grants = [Grant(principal="carol", role=Role.VIEWER, exp=NOW_UNIX)]

        assert active_grants(grants, at(NOW_UNIX)) == {}

    def test_exp_after_now_is_active(self):
        grants = [Grant(principal="carol", role=Role.VIEWER, exp=NOW_UNIX + 1)]

        assert active_grants(grants, at(NOW_UNIX)) == {"carol": Role.VIEWER}

    def test_nbf_equal_to_now_is_active(self):
        grants = [Grant(principal="carol", role=Role.VIEWER, nbf=NOW_UNIX)]

        assert active_grants(grants, at(NOW_UNIX)) == {"carol": Role.VIEWER}

    def test_nbf_after_now_is_not_yet_active(self):
        grants = [Grant(principal="carol", role=Role.VIEWER, nbf=NOW_UNIX + 1)]

        assert active_grants(grants, at(NOW_UNIX)) == {}

    def test_sub_second_now_is_truncated(self):
        """``now`` is compared in whole seconds."""
        grants = [Grant(principal="carol", role=Role.VIEWER, exp=1000)]

        assert active_grants(grants, at(999).replace(microsecond=999999)) == {"carol": Role.VIEWER}

    def test_naive_now_is_utc(self):
        grants = [Grant(principal="carol", role=Role.VIEWER, nbf=1000, exp=2000)]
        naive = at(1000).replace(tzinfo=None)

        assert active_grants(grants, naive) == {"carol": Role.VIEWER}
        assert active_grants(grants, naive.replace(second=naive.second - 1)) == {}
        assert active_grants(grants, at(2000).replace(tzinfo=None)) == {}

    def test_unbounded_grant_is_always_active(self):
        grants = [Grant(principal="carol", role=Role.OWNER)]

        assert active_grants(grants, at(0)) == {"carol": Role.OWNER}
        assert active_grants(grants, at(4_000_000_000)) == {"carol": Role.OWNER}

    def test_empty_principal_is_dropped(self):
        grants = [Grant(principal="", role=Role.OWNER)]

        assert active_grants(grants, at(NOW_UNIX)) == {}

    def test_none_is_empty(self):
        assert active_grants(None, at(NOW_UNIX)) == {}

    def test_last_active_grant_wins(self):
        grants = [
            Grant(principal="carol", role=Role.OWNER),
            Grant(principal="carol", role=Role.VIEWER),
            Grant(principal="carol", role=Role.EDITOR, exp=NOW_UNIX),
        ]

        assert active_grants(grants, at(NOW_UNIX)) == {"carol": Role.VIEWER}


class TestDeduplicateGrants:
    """Test collapsing grants per principal."""

    def test_keeps_highest_role(self):
        grants = [
            Grant(principal="alice", role=Role.VIEWER),
            Grant(principal="alice", role=Role.OWNER),
        ]

        assert deduplicate_grants(grants) == [Grant(principal="alice", role=Role.OWNER)]

    def test_keeps_window_of_winning_grant(self):
        grants = [
            Grant(principal="alice@example.com", role=Role.VIEWER),
            Grant(principal="alice@example.com", role=Role.OWNER, nbf=1000, exp=2000),
        ]

        result = deduplicate_grants(grants)

        assert result == [Grant(principal="alice@example.com", role=Role.OWNER, nbf=1000, exp=2000)]

    def test_tie_keeps_first_occurrence(self):
        grants = [
            Grant(principal="alice", role=Role.EDITOR, exp=100),
            Grant(principal="alice", role=Role.EDITOR, exp=200),
        ]

        assert deduplicate_grants(grants) == [Grant(principal="alice", role=Role.EDITOR, exp=100)]

    def test_preserves_first_appearance_order(self):
        grants = [
            Grant(principal="alice", role=Role.EDITOR),
            Grant(principal="bob", role=Role.VIEWER),
            Grant(principal="alice", role=Role.OWNER),
        ]

        result = deduplicate_grants(grants)

        assert [grant.principal for grant in result] == ["alice", "bob"]
        assert result[0].role is Role.OWNER

    def test_drops_empty_principals(self):
        grants = [
            Grant(principal="", role=Role.EDITOR),
            Grant(principal="alice@example.com", role=Role.VIEWER),
            Grant(principal="", role=Role.OWNER),
        ]

        assert deduplicate_grants(grants) == [Grant(principal="alice@example.com", role=Role.VIEWER)]

    def test_does_not_fold_case(self):
        """Principals differing only in case stay separate records."""
        grants = [
            Grant(principal="Alice@example.com", role=Role.VIEWER),
            Grant(principal="alice@example.com", role=Role.OWNER),
        ]

        assert len(deduplicate_grants(grants)) == 2

    def test_is_idempotent(self):
        grants = [
            Grant(principal="alice", role=Role.VIEWER),
            Grant(principal="bob", role=Role.OWNER, exp=10),
            Grant(principal="alice", role=Role.EDITOR),
            Grant(principal="", role=Role.OWNER),
            Grant(principal="bob", role=Role.VIEWER),
        ]

        once = deduplicate_grants(grants)

        assert deduplicate_grants(once) == once


class TestResourceGrants:
    """Test loading both buckets from annotations."""

    def test_from_annotations(self):
        annotations = {
            SHARE_USERS_ANNOTATION: '[{"principal": "alice@example.com", "role": "owner"}]',
            SHARE_ROLES_ANNOTATION: '[{"principal": "eng", "role": "viewer", "exp": 10}]',
        }

        grants = ResourceGrants.from_annotations("web", annotations, parent="acme")

        assert grants.parent == "acme"
        users, groups = grants.active(at(5))
        assert users == {"alice@example.com": Role.OWNER}
        assert groups == {"eng": Role.VIEWER}
        assert grants.active(at(10))[1] == {}

    def test_malformed_bucket_raises(self):
        annotations = {SHARE_ROLES_ANNOTATION: "{"}

        with pytest.raises(MalformedGrantsError) as exc_info:
            ResourceGrants.from_annotations("web", annotations)

        assert exc_info.value.field == SHARE_ROLES_ANNOTATION
