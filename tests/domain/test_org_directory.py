"""
Tests for org directory and policy value objects.
"""

import pytest

from approval_kernel.domain.org import (
    Person,
    Position,
    ReportsTo,
    ReportsToKind,
    normalize_email,
)
from approval_kernel.domain.policy import (
    ApprovalConfiguration,
    PolicyKey,
)
from approval_kernel.exceptions import UnknownPolicyError


class TestPersonIdentity:

    def test_identity_is_normalized_email(self):
        person = Person("Sam", "  Sam.Super@Corp.TEST ", "Supervisor", "Technical")
        assert person.identity == "sam.super@corp.test"
        assert person.has_email("SAM.SUPER@corp.test")

    def test_same_person_ignores_role_and_name(self):
        a = Person("Dana Head", "dana@corp.test", "Departmental Head", "Technical")
        b = Person("D. Head", "DANA@corp.test", "Head of Business", "Executive")
        assert a.same_person(b)
        assert not a.same_person(None)

    def test_normalize_email_handles_none(self):
        assert normalize_email(None) == ""


class TestReportsTo:

    def test_top_role_token_is_top(self):
        assert ReportsTo.from_token("President", "President").kind == ReportsToKind.TOP

    def test_missing_token_is_top(self):
        ref = ReportsTo.from_token(None, "President")
        assert ref.kind == ReportsToKind.TOP
        assert ref.token == "President"

    def test_other_tokens_stay_positions(self):
        ref = ReportsTo.from_token("Head of Technical", "President")
        assert ref.kind == ReportsToKind.POSITION
        assert ref.token == "Head of Technical"


class TestPositionMatching:

    @pytest.fixture
    def position(self):
        return Position(
            "Operations Manager",
            Person("Mr. Pascal Assam", "pascal@corp.test", "Operations Manager", "Technical"),
            ReportsTo.department_head(),
        )

    @pytest.mark.parametrize("token", ["Operations Manager", "Mr. Pascal Assam", "PASCAL@corp.test"])
    def test_matches_title_name_or_email(self, position, token):
        assert position.matches(token)

    def test_does_not_match_other_tokens(self, position):
        assert not position.matches("Operations")


class TestStaticOrgDirectory:

    def test_departments_in_declaration_order(self, org_directory):
        assert org_directory.list_departments() == ("Executive", "Technical", "Finance")
        assert len(org_directory) == 3

    def test_unknown_department_is_none(self, org_directory):
        assert org_directory.get_department("Marketing") is None

    def test_directory_cannot_be_mutated(self, org_directory):
        with pytest.raises(TypeError):
            org_directory._departments["Marketing"] = None

    def test_find_position_by_title(self, org_directory):
        technical = org_directory.get_department("Technical")
        assert technical.find_position("Supervisor").occupant.name == "Sam Super"
        assert technical.find_position("Head of Technical") is None


class TestPolicyLookup:

    def test_policy_for_accepts_string_keys(self, approval_config):
        assert approval_config.policy_for("cash_request").key == PolicyKey.CASH_REQUEST

    def test_unknown_policy_key_raises(self, approval_config):
        with pytest.raises(UnknownPolicyError) as exc_info:
            approval_config.policy_for("travel_request")
        assert exc_info.value.code == "UNKNOWN_POLICY"

    def test_policy_missing_from_table_raises(self, org_directory, policies):
        partial = {PolicyKey.CASH_REQUEST: policies[PolicyKey.CASH_REQUEST]}
        config = ApprovalConfiguration(directory=org_directory, policies=partial)
        with pytest.raises(UnknownPolicyError):
            config.policy_for(PolicyKey.SUPPLIER_INVOICE)

    def test_route_aliases_are_applied(self, policies):
        policy = policies[PolicyKey.SUPPLIER_ONBOARDING]
        assert policy.normalize_route_key(" Construction ") == "Project"
        assert policy.normalize_route_key("Catering") == "Catering"
        assert policy.normalize_route_key(None) is None

    def test_policy_routes_are_read_only(self, policies):
        policy = policies[PolicyKey.SUPPLIER_INVOICE]
        with pytest.raises(TypeError):
            policy.routes["Marketing"] = ()
