"""Tests for the referer allow-list and label checks."""

from __future__ import annotations

import pytest
from file_gateway.access import (
    AccessPolicy,
    Decision,
    evaluate,
    host_matches,
    is_same_origin,
    label_decision,
    parse_domains,
    referer_allowed,
)
from file_gateway.records import Channel, ExternalPayload, ObjectRecord, PolicyLabel

ORIGIN = "https://img.example.net"


def make_record(label: PolicyLabel = PolicyLabel.NONE) -> ObjectRecord:
    return ObjectRecord(
        key="photos/cat.png",
        channel=Channel.EXTERNAL,
        payload=ExternalPayload(url="https://cdn.example.com/cat.png"),
        policy_label=label,
    )


class TestRefererAllowList:
    """Domain allow-list checks."""

    def test_foreign_referer_is_blocked(self):
        policy = AccessPolicy(allowed_domains=parse_domains("good.com"))
        decision = evaluate("https://evil.example.com/page", ORIGIN, make_record(), policy)
        assert decision is Decision.BLOCK_IMAGE

    def test_subdomain_is_allowed(self):
        policy = AccessPolicy(allowed_domains=parse_domains("good.com"))
        decision = evaluate("https://sub.good.com/post/1", ORIGIN, make_record(), policy)
        assert decision is Decision.ALLOW

    def test_exact_domain_is_allowed(self):
        policy = AccessPolicy(allowed_domains=parse_domains("good.com"))
        assert referer_allowed("http://good.com/", ORIGIN, policy)

    def test_suffix_without_dot_boundary_is_blocked(self):
        policy = AccessPolicy(allowed_domains=parse_domains("good.com"))
        assert not referer_allowed("https://notgood.com/", ORIGIN, policy)
        assert not referer_allowed("https://goodXcom.net/", ORIGIN, policy)

    @pytest.mark.parametrize(
        "referer",
        [None, "", "https://evil.example.com/"],
    )
    def test_empty_allow_list_allows_any_referer(self, referer):
        assert referer_allowed(referer, ORIGIN, AccessPolicy())
        assert evaluate(referer, ORIGIN, make_record(), AccessPolicy()) is Decision.ALLOW

    def test_missing_referer_passes_domain_check(self):
        policy = AccessPolicy(allowed_domains=parse_domains("good.com"))
        assert referer_allowed(None, ORIGIN, policy)

    def test_unparsable_referer_fails_closed(self):
        policy = AccessPolicy(allowed_domains=parse_domains("good.com"))
        assert not referer_allowed("not a url", ORIGIN, policy)
        assert not referer_allowed("https://[::1/", ORIGIN, policy)

    def test_unparsable_referer_fails_closed_without_allow_list(self):
        assert not referer_allowed("definitely not a url", ORIGIN, AccessPolicy())
        decision = evaluate(
            "definitely not a url", ORIGIN, make_record(), AccessPolicy()
        )
        assert decision is Decision.BLOCK_IMAGE

    def test_gateway_host_is_always_allowed(self):
        policy = AccessPolicy(allowed_domains=parse_domains("good.com"))
        assert referer_allowed("https://img.example.net/dashboard", ORIGIN, policy)

    def test_host_matching_is_case_insensitive(self):
        assert host_matches("CDN.Good.com", "good.com")

    def test_parse_domains(self):
        assert parse_domains(" a.com,,B.org , .c.net") == frozenset(
            {"a.com", "b.org", "c.net"}
        )
        assert parse_domains(None) == frozenset()
        assert parse_domains(["x.com"]) == frozenset({"x.com"})


class TestLabelDecision:
    """Per-object labels and allow-list-only mode."""

    def test_white_label_allows_in_whitelist_mode(self):
        policy = AccessPolicy(whitelist_mode=True)
        record = make_record(PolicyLabel.WHITE)
        assert evaluate(None, ORIGIN, record, policy) is Decision.ALLOW

    @pytest.mark.parametrize("label", [PolicyLabel.BLOCK, PolicyLabel.ADULT])
    def test_blocked_labels(self, label):
        decision = evaluate(None, ORIGIN, make_record(label), AccessPolicy())
        assert decision is Decision.BLOCK_IMAGE

    def test_unlabelled_in_whitelist_mode_shows_notice(self):
        policy = AccessPolicy(whitelist_mode=True)
        decision = evaluate("https://a.com/", ORIGIN, make_record(), policy)
        assert decision is Decision.ALLOW_LIST_NOTICE

    def test_unlabelled_without_whitelist_mode_allows(self):
        assert label_decision(None, ORIGIN, make_record(), AccessPolicy()) is Decision.ALLOW

    def test_same_origin_referer_bypasses_labels(self):
        policy = AccessPolicy(whitelist_mode=True)
        for label in (PolicyLabel.BLOCK, PolicyLabel.ADULT, PolicyLabel.NONE):
            decision = evaluate(f"{ORIGIN}/admin", ORIGIN, make_record(label), policy)
            assert decision is Decision.ALLOW

    def test_same_origin_requires_matching_scheme_and_port(self):
        assert is_same_origin("https://img.example.net/x", ORIGIN)
        assert not is_same_origin("http://img.example.net/x", ORIGIN)
        assert not is_same_origin("https://img.example.net:8443/x", ORIGIN)
        assert not is_same_origin("https://img.example.net.evil.com/x", ORIGIN)
        assert not is_same_origin(None, ORIGIN)
