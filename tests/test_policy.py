"""
Tests for the housing policy gate: fee structures, deposits, Fair-Chance timing.
"""

import pytest

from governed_ai.jurisdictions import JurisdictionRegistry, get_jurisdiction_rules
from governed_ai.models import JurisdictionRules, Severity, ViolationCode
from governed_ai.policy import (
    REMEDIATION,
    check_all_policy_rules,
    check_fair_chance,
    check_fee_structures,
    gate_output,
    sanitize_output,
)


def _codes(result):
    return [v.code for v in result.violations]


class TestBrokerFee:
    """Test tenant-paid broker fee detection."""

    def test_prohibited_jurisdiction_blocks(self):
        gate = gate_output("The tenant must pay the broker fee.", "nyc")
        assert not gate.allowed
        violations = gate.check_result.violations
        assert [v.code for v in violations] == [ViolationCode.illegal_broker_fee]
        assert violations[0].severity == Severity.critical

    def test_permitted_jurisdiction_allows(self):
        gate = gate_output("The tenant must pay the broker fee.", "us-standard")
        assert gate.allowed
        assert gate.check_result.violations == []
        assert gate.sanitized_output is None

    @pytest.mark.parametrize("text", [
        "Tenants pay the broker fee at signing.",
        "The tenant is responsible for paying the broker fee.",
        "The broker fee is paid by the tenant.",
        "We will charge the tenant a broker fee of 15%.",
    ])
    def test_phrasings(self, text):
        result = check_fee_structures(text, get_jurisdiction_rules("nyc"))
        assert _codes(result) == [ViolationCode.illegal_broker_fee]

    def test_landlord_paid_fee_passes(self):
        result = check_fee_structures("The landlord pays the broker fee.", get_jurisdiction_rules("nyc"))
        assert result.passed
        assert result.violations == []

    def test_duplicates_suppressed_by_code(self):
        text = "The tenant must pay the broker fee. The broker fee is paid by the tenant."
        result = check_fee_structures(text, get_jurisdiction_rules("nyc"))
        assert _codes(result) == [ViolationCode.illegal_broker_fee]

    def test_custom_rules(self):
        rules = JurisdictionRules(id="custom", name="Custom", broker_fee_tenant_prohibited=True)
        result = check_fee_structures("the tenant must pay the broker fee", rules)
        assert not result.passed


class TestSecurityDeposit:
    """Test deposit cap detection."""

    def test_excessive_numeric(self):
        result = check_fee_structures("The security deposit is 3 months rent.", get_jurisdiction_rules("nyc"))
        assert _codes(result) == [ViolationCode.excessive_security_deposit]
        assert result.violations[0].evidence["months"] == 3

    def test_excessive_words(self):
        text = "We require two months' rent as a security deposit."
        result = check_fee_structures(text, get_jurisdiction_rules("nyc"))
        assert _codes(result) == [ViolationCode.excessive_security_deposit]

    def test_within_limit(self):
        text = "The security deposit is one month of rent."
        assert check_fee_structures(text, get_jurisdiction_rules("nyc")).violations == []

    def test_us_standard_two_months_allowed(self):
        rules = get_jurisdiction_rules("us-standard")
        assert check_fee_structures("The security deposit is 2 months rent.", rules).passed
        assert not check_fee_structures("The security deposit is 3 months rent.", rules).passed

    def test_no_cap(self, sample_registry):
        rules = sample_registry.get("tx")
        assert check_fee_structures("The security deposit is 6 months rent.", rules).passed

    def test_fractional_cap(self, sample_registry):
        rules = sample_registry.get("chicago")
        assert not check_fee_structures("The security deposit is 2 months rent.", rules).passed


class TestFairChance:
    """Test premature background check detection."""

    def test_action_before_offer_blocks(self):
        result = check_fair_chance(
            "We should run a background check on the applicant before proceeding.",
            get_jurisdiction_rules("nyc"),
            "initial_inquiry",
        )
        assert _codes(result) == [ViolationCode.premature_background_check]
        assert result.violations[0].evidence["check_type"] == "criminal_history"

    def test_credit_check_blocked_in_nyc(self):
        result = check_fair_chance(
            "We need to run their credit check before moving forward.",
            get_jurisdiction_rules("nyc"),
            "application_submitted",
        )
        assert not result.passed

    def test_informational_mention_passes(self):
        result = check_fair_chance(
            "Background checks are typically conducted after a conditional offer.",
            get_jurisdiction_rules("nyc"),
            "initial_inquiry",
        )
        assert result.passed

    @pytest.mark.parametrize("stage", ["conditional_offer", "background_check", "lease_signing", None, "unknown"])
    def test_not_evaluated_outside_pre_offer(self, stage):
        result = check_fair_chance(
            "We should run a background check now.", get_jurisdiction_rules("nyc"), stage
        )
        assert result.passed

    def test_ca_only_criminal_history(self):
        rules = get_jurisdiction_rules("ca-standard")
        assert check_fair_chance("We will run a credit check.", rules, "application_review").passed
        assert not check_fair_chance("We will run a criminal background check.", rules, "application_review").passed

    def test_disabled_jurisdiction(self):
        rules = get_jurisdiction_rules("us-standard")
        assert check_fair_chance("We should run a background check.", rules, "initial_inquiry").passed

    def test_matched_text_is_sentence(self):
        text = "Thanks for applying. We must run a criminal background check on you."
        result = check_fair_chance(text, get_jurisdiction_rules("nyc"), "initial_inquiry")
        assert result.violations[0].matched_text == "We must run a criminal background check on you."


class TestGate:
    """Test combined checks, gate result, and sanitization."""

    def test_combined_violations(self):
        text = "The tenant must pay the broker fee.\nWe should run a background check before reviewing their application."
        result = check_all_policy_rules(text, get_jurisdiction_rules("nyc"), "application_submitted")
        assert _codes(result) == [
            ViolationCode.illegal_broker_fee,
            ViolationCode.premature_background_check,
        ]
        assert len(result.fixes) == 2

    def test_sanitized_output(self):
        gate = gate_output("Note: the tenant must pay the broker fee. Thanks.", "nyc")
        assert "tenant must pay the broker fee" not in gate.sanitized_output
        assert REMEDIATION[ViolationCode.illegal_broker_fee] in gate.sanitized_output
        assert gate.sanitized_output.endswith("Thanks.")
        assert "broker" in gate.blocked_reason.lower()

    def test_sanitize_replaces_first_occurrence_only(self):
        text = "tenant pays the broker fee; tenant pays the broker fee"
        result = check_fee_structures(text, get_jurisdiction_rules("nyc"))
        sanitized = sanitize_output(text, result)
        assert sanitized.count("tenant pays the broker fee") == 1

    def test_alias_resolution(self):
        assert not gate_output("The tenant must pay the broker fee.", "NY_NYC").allowed

    def test_unknown_jurisdiction_is_permissive(self):
        assert gate_output("The tenant must pay the broker fee.", "atlantis").allowed

    def test_registry_override(self, sample_registry):
        gate = gate_output("The security deposit is 2 months rent.", "il-chicago", registry=sample_registry)
        assert not gate.allowed
        assert gate.check_result.rules.id == "chicago"
