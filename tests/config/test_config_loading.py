"""
Tests for YAML configuration loading.

Tests cover:
- The shipped default set compiles, covers every policy, emits its trace
- Checksum determinism
- reports_to parsing (typed forms and legacy strings)
- Person references and failure on dangling ones
- Chains resolved from the shipped set for known org chart members
"""

from pathlib import Path

import pytest
import yaml

from approval_config import DEFAULT_CONFIG_SET, get_active_config
from approval_config.loader import (
    ORG_STRUCTURE_FILE,
    POLICIES_FILE,
    compute_checksum,
    load_config_set,
    parse_org_structure,
    parse_policies,
    parse_reports_to,
)
from approval_engines.chain_resolver import resolve_chain
from approval_kernel.domain.approval import StartingIdentity
from approval_kernel.domain.org import Person, ReportsToKind
from approval_kernel.domain.policy import PolicyKey, ResolverStrategy
from approval_kernel.exceptions import ConfigurationError

FINANCE_EMAIL = "ranibellmambo@gratoengineering.com"
HEAD_OF_BUSINESS_EMAIL = "kelvin.eyong@gratoglobal.com"
TECHNICAL_HEAD_EMAIL = "didier.oyong@gratoengineering.com"


@pytest.fixture(scope="module")
def default_config():
    return get_active_config()


def chain_emails(config, key, **identity):
    chain = resolve_chain(
        policy=config.policy_for(key),
        directory=config.directory,
        identity=StartingIdentity(**identity),
    )
    return [p.email for p in chain]


class TestDefaultSet:

    def test_every_policy_is_compiled(self, default_config):
        assert set(default_config.policies) == set(PolicyKey)

    def test_metadata(self, default_config):
        assert default_config.config_id == "grato-approvals"
        assert default_config.version == 3
        assert len(default_config.checksum) == 64
        assert "Technical" in default_config.directory.list_departments()

    def test_strategies(self, default_config):
        assert default_config.policy_for("cash_request").strategy == ResolverStrategy.SUPERVISOR_WALK
        assert default_config.policy_for("supplier_invoice").strategy == ResolverStrategy.TABLE_LOOKUP
        assert default_config.policy_for("user_hierarchy").subject_type == "user_provisioning"

    def test_checksum_is_deterministic(self):
        first = get_active_config()
        second = get_active_config()
        assert first.checksum == second.checksum

    def test_config_trace_is_logged(self, captured_logs):
        get_active_config(DEFAULT_CONFIG_SET)
        traces = [r for r in captured_logs() if r["message"] == "APPROVAL_CONFIG_TRACE"]
        assert traces
        assert traces[-1]["config_set_id"] == "grato-approvals"
        assert traces[-1]["policy_count"] == len(PolicyKey)

    def test_unknown_config_set(self):
        with pytest.raises(ConfigurationError):
            get_active_config("does-not-exist")


class TestDefaultChains:

    def test_field_technician_walks_to_top(self, default_config):
        assert chain_emails(
            default_config, PolicyKey.CASH_REQUEST,
            name="Mr. Boris Ngu", department="Technical",
        ) == [
            "joseph.tayou@gratoglobal.com",
            "pascal.rodrique@gratoglobal.com",
            TECHNICAL_HEAD_EMAIL,
            HEAD_OF_BUSINESS_EMAIL,
            FINANCE_EMAIL,
        ]

    def test_email_reference_resolves_to_occupant(self, default_config):
        emails = chain_emails(
            default_config, PolicyKey.CASH_REQUEST,
            name="Mr. Felix Tientcheu", department="Technical",
        )
        assert emails[0] == "pascal.rodrique@gratoglobal.com"

    def test_head_of_technical_token_falls_back_to_head(self, default_config):
        emails = chain_emails(
            default_config, PolicyKey.CASH_REQUEST,
            name="Mr. Kevin Minka", department="Technical",
        )
        assert emails == [TECHNICAL_HEAD_EMAIL, HEAD_OF_BUSINESS_EMAIL, FINANCE_EMAIL]

    def test_unknown_technical_person_gets_default_chain(self, default_config):
        emails = chain_emails(
            default_config, PolicyKey.CASH_REQUEST,
            name="Someone New", department="Technical",
        )
        assert emails == [TECHNICAL_HEAD_EMAIL, FINANCE_EMAIL, HEAD_OF_BUSINESS_EMAIL]

    @pytest.mark.parametrize("department", ["Technical", "IT", "HR/Admin", "Business Dev"])
    def test_supplier_invoice_routes_are_three_levels(self, default_config, department):
        emails = chain_emails(default_config, PolicyKey.SUPPLIER_INVOICE, department=department)
        assert len(emails) == 3
        assert emails[1:] == [HEAD_OF_BUSINESS_EMAIL, FINANCE_EMAIL]

    def test_supplier_onboarding_fallback(self, default_config):
        emails = chain_emails(default_config, PolicyKey.SUPPLIER_ONBOARDING, category="Catering")
        assert emails == [HEAD_OF_BUSINESS_EMAIL, FINANCE_EMAIL]

    def test_supplier_onboarding_alias(self, default_config):
        emails = chain_emails(default_config, PolicyKey.SUPPLIER_ONBOARDING, category="Construction")
        assert emails[0] == TECHNICAL_HEAD_EMAIL


class TestReportsToParsing:

    HEAD = Person("Dana Head", "dana@corp.test", "Head", "Technical")

    @pytest.mark.parametrize(
        "value,kind",
        [
            (None, ReportsToKind.TOP),
            ({"top": True}, ReportsToKind.TOP),
            ("President", ReportsToKind.TOP),
            ({"department_head": True}, ReportsToKind.DEPARTMENT_HEAD),
            ("Dana Head", ReportsToKind.DEPARTMENT_HEAD),
            ("DANA@corp.test", ReportsToKind.DEPARTMENT_HEAD),
            ({"position": "Supervisor"}, ReportsToKind.POSITION),
            ("Head of Technical", ReportsToKind.POSITION),
        ],
    )
    def test_forms(self, value, kind):
        assert parse_reports_to(value, self.HEAD, "President").kind == kind

    def test_unrecognised_mapping(self):
        with pytest.raises(ConfigurationError):
            parse_reports_to({"manager": "x"}, self.HEAD, "President")


class TestFragmentValidation:

    def _org(self):
        return {
            "departments": [
                {"name": "Technical", "head": {"name": "Dana", "email": "dana@corp.test"}},
            ],
        }

    def test_duplicate_department(self):
        data = self._org()
        data["departments"].append(data["departments"][0])
        with pytest.raises(ConfigurationError):
            parse_org_structure(data)

    def test_head_of_unknown_department(self):
        directory = parse_org_structure(self._org())
        data = {"policies": [{
            "key": "supplier_invoice",
            "strategy": "table_lookup",
            "routes": {"Technical": [{"head_of": "Marketing"}]},
        }]}
        with pytest.raises(ConfigurationError):
            parse_policies(data, directory)

    def test_unknown_fixed_role(self):
        directory = parse_org_structure(self._org())
        data = {"policies": [{
            "key": "cash_request", "strategy": "supervisor_walk", "finance": "treasurer",
        }]}
        with pytest.raises(ConfigurationError):
            parse_policies(data, directory)

    def test_unknown_strategy(self):
        directory = parse_org_structure(self._org())
        data = {"policies": [{"key": "cash_request", "strategy": "round_robin"}]}
        with pytest.raises(ConfigurationError):
            parse_policies(data, directory)

    def test_fallback_route_must_exist(self):
        directory = parse_org_structure(self._org())
        data = {"policies": [{
            "key": "supplier_onboarding",
            "strategy": "table_lookup",
            "fallback_route": "General",
            "routes": {"Technical": [{"head_of": "Technical"}]},
        }]}
        with pytest.raises(ConfigurationError):
            parse_policies(data, directory)

    def test_missing_fragment(self, tmp_path):
        (tmp_path / ORG_STRUCTURE_FILE).write_text(yaml.safe_dump(self._org()))
        with pytest.raises(ConfigurationError) as exc_info:
            load_config_set(tmp_path)
        assert POLICIES_FILE in str(exc_info.value)

    def test_incomplete_set_is_refused(self, tmp_path):
        set_dir = tmp_path / "partial"
        set_dir.mkdir()
        (set_dir / ORG_STRUCTURE_FILE).write_text(yaml.safe_dump(self._org()))
        (set_dir / POLICIES_FILE).write_text(yaml.safe_dump({"policies": [
            {"key": "cash_request", "strategy": "supervisor_walk"},
        ]}))
        with pytest.raises(ConfigurationError) as exc_info:
            get_active_config("partial", config_dir=tmp_path)
        assert "supplier_invoice" in str(exc_info.value)


def test_checksum_ignores_key_order():
    assert compute_checksum({"a": 1, "b": [1, 2]}) == compute_checksum({"b": [1, 2], "a": 1})
    assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})


def test_shipped_set_directory_exists():
    sets_dir = Path(__file__).resolve().parents[2] / "approval_config" / "sets" / DEFAULT_CONFIG_SET
    assert (sets_dir / ORG_STRUCTURE_FILE).exists()
