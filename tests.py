#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""Automated tests"""

import unittest
from unittest import mock

import dns.exception
import dns.rcode
import dns.resolver
import dns.rrset
from expiringdict import ExpiringDict

import spfeval
import spfeval.utils
from spfeval.exceptions import (
    InvalidRecordVersion,
    MacroSyntaxError,
    NoAcceptableRecordError,
    ProcessingLimitExceeded,
    RedundantAcceptableRecordsError,
    SPFSyntaxError,
)
from spfeval.macro import MacroString
from spfeval.record import RecordV1, RecordV2
from spfeval.request import Request
from spfeval.result import FailResult, PassResult, Result
from spfeval.server import QueryRRType, Server
from spfeval.utils import DNSException, DNSTimeout, canonicalize_domain

HOSTNAME = "mx.example.org"


class FakeResolver(object):
    """An in-memory lookup adapter

    ``zone`` maps ``(domain, rr_type)`` to a list of answers. TXT and SPF
    answers are strings, or lists of character-string segments.
    """

    def __init__(self, zone=None, timeouts=(), failures=(), rcodes=None):
        self.zone = zone or {}
        self.timeouts = set(timeouts)
        self.failures = set(failures)
        self.rcodes = rcodes or {}
        self.queries = []

    def query(self, domain, rr_type):
        key = (domain, rr_type)
        self.queries.append(key)
        if key in self.timeouts:
            raise dns.exception.Timeout()
        if key in self.failures:
            return None
        if key in self.rcodes:
            return {"rcode": self.rcodes[key], "answers": []}
        if key not in self.zone:
            known = any(d == domain for d, _ in self.zone)
            return {"rcode": "NOERROR" if known else "NXDOMAIN", "answers": []}
        answers = []
        for value in self.zone[key]:
            if rr_type in ("TXT", "SPF"):
                strings = value if isinstance(value, list) else [value]
                answers.append(
                    {"type": rr_type, "strings": strings, "data": "".join(strings)}
                )
            else:
                answers.append({"type": rr_type, "strings": [], "data": value})
        return {"rcode": "NOERROR", "answers": answers}


def new_server(zone=None, **kwargs):
    resolver = kwargs.pop("resolver", None) or FakeResolver(zone)
    return Server(resolver=resolver, hostname=HOSTNAME, **kwargs)


def check(server, ip_address, identity="user@example.com", **kwargs):
    request = Request(identity, ip_address, **kwargs)
    return server.process(request)


class Test(unittest.TestCase):
    def testCanonicalizeDomain(self):
        """Canonical domains are short enough, lowercase and idempotent"""
        self.assertEqual(canonicalize_domain("Example.COM."), "example.com")

        long_label = "a" * 70 + ".example.com"
        self.assertEqual(canonicalize_domain(long_label), "a" * 63 + ".example.com")

        long_domain = ".".join(["b" * 63] * 5) + ".COM."
        canonical = canonicalize_domain(long_domain)
        self.assertLessEqual(len(canonical.encode()), 253)
        self.assertTrue(canonical.endswith(".com"))
        self.assertEqual(canonical, ".".join(["b" * 63] * 3) + ".com")

        for domain in ["Example.COM.", long_label, long_domain, "ünicode.example."]:
            canonical = canonicalize_domain(domain)
            self.assertEqual(canonicalize_domain(canonical), canonical)
            self.assertEqual(canonical, canonical.lower())
            self.assertFalse(canonical.endswith("."))
            self.assertLessEqual(len(canonical.encode()), 253)
            for label in canonical.split("."):
                self.assertLessEqual(len(label.encode()), 63)

    def testSPFTypeRecordSkipsTXTQuery(self):
        """An acceptable SPF type record means that TXT is not queried"""
        resolver = FakeResolver(
            {
                ("example.com", "SPF"): ["v=spf1 -all"],
                ("example.com", "TXT"): ["v=spf1 +all"],
            }
        )
        server = new_server(resolver=resolver, query_rr_types=QueryRRType.ALL)
        record = server.select_record(Request("example.com", "192.0.2.1"))
        self.assertEqual(record.text, "v=spf1 -all")
        self.assertEqual(resolver.queries, [("example.com", "SPF")])

    def testTXTFallback(self):
        """TXT records are used when no SPF type record applies"""
        resolver = FakeResolver(
            {
                ("example.com", "SPF"): ["not a policy"],
                ("example.com", "TXT"): ["v=spf1 -all"],
            }
        )
        server = new_server(resolver=resolver, query_rr_types=QueryRRType.ALL)
        record = server.select_record(Request("example.com", "192.0.2.1"))
        self.assertEqual(record.text, "v=spf1 -all")
        self.assertEqual(
            resolver.queries, [("example.com", "SPF"), ("example.com", "TXT")]
        )

    def testTXTOnlyByDefault(self):
        """Only TXT records are queried by default"""
        resolver = FakeResolver({("example.com", "TXT"): ["v=spf1 -all"]})
        server = new_server(resolver=resolver)
        self.assertEqual(server.query_rr_types, QueryRRType.TXT)
        server.select_record(Request("example.com", "192.0.2.1"))
        self.assertEqual(resolver.queries, [("example.com", "TXT")])

    def testMultiSegmentRecords(self):
        """Character-string segments are joined into one record"""
        server = new_server(
            {("example.com", "TXT"): [["v=spf1 ip4:192.0.2.0/24", " -all"]]}
        )
        record = server.select_record(Request("example.com", "192.0.2.1"))
        self.assertEqual(record.text, "v=spf1 ip4:192.0.2.0/24 -all")
        self.assertEqual(len(record.mechanisms), 2)

    def testHighestVersionWins(self):
        """Only the highest record version present is used"""
        for answers in [
            ["spf2.0/mfrom -all", "v=spf1 +all"],
            ["v=spf1 +all", "spf2.0/mfrom -all"],
        ]:
            server = new_server({("example.com", "TXT"): answers})
            record = server.select_record(Request("example.com", "192.0.2.1"))
            self.assertIsInstance(record, RecordV2)
            self.assertEqual(record.text, "spf2.0/mfrom -all")

        # Sender ID records do not apply to the helo scope
        server = new_server(
            {("mail.example.com", "TXT"): ["spf2.0/mfrom -all", "v=spf1 +all"]}
        )
        request = Request("mail.example.com", "192.0.2.1", scope="helo")
        self.assertIsInstance(server.select_record(request), RecordV1)

    def testRedundantRecords(self):
        """Two records of the same version are an error"""
        server = new_server(
            {("example.com", "TXT"): ["v=spf1 -all", "v=spf1 +all"]}
        )
        request = Request("example.com", "192.0.2.1")
        self.assertRaises(
            RedundantAcceptableRecordsError, server.select_record, request
        )

    def testNoAcceptableRecord(self):
        """No applicable record is an error"""
        server = new_server(
            {("example.com", "TXT"): ["google-site-verification=abc"]},
            query_rr_types=QueryRRType.ALL,
        )
        request = Request("example.com", "192.0.2.1")
        self.assertRaises(NoAcceptableRecordError, server.select_record, request)

        # A record for another scope is dropped, not retried as another version
        server = new_server({("example.com", "TXT"): ["spf2.0/mfrom -all"]})
        request = Request("user@example.com", "192.0.2.1", scope="pra")
        self.assertRaises(NoAcceptableRecordError, server.select_record, request)

        # No queries at all
        server = new_server({}, query_rr_types=QueryRRType.NONE)
        request = Request("example.com", "192.0.2.1")
        self.assertRaises(NoAcceptableRecordError, server.select_record, request)

    def testAllQueriesFailed(self):
        """The first DNS error is raised when no query succeeded"""
        resolver = FakeResolver(
            failures=[("example.com", "SPF")], timeouts=[("example.com", "TXT")]
        )
        server = new_server(resolver=resolver, query_rr_types=QueryRRType.ALL)
        request = Request("example.com", "192.0.2.1")
        with self.assertRaises(DNSException) as context:
            server.select_record(request)
        self.assertNotIsInstance(context.exception, DNSTimeout)
        self.assertEqual(
            context.exception.text, "Unknown error on DNS 'SPF' lookup of 'example.com'"
        )

        resolver = FakeResolver(rcodes={("example.com", "TXT"): "SERVFAIL"})
        server = new_server(resolver=resolver)
        with self.assertRaises(DNSException) as context:
            server.select_record(request)
        self.assertIn("SERVFAIL", context.exception.text)

    def testSPFTypeTimeout(self):
        """A time-out on the SPF type query falls back to TXT, if enabled"""
        zone = {("example.com", "TXT"): ["v=spf1 -all"]}
        resolver = FakeResolver(zone, timeouts=[("example.com", "SPF")])
        server = new_server(resolver=resolver, query_rr_types=QueryRRType.ALL)
        record = server.select_record(Request("example.com", "192.0.2.1"))
        self.assertEqual(record.text, "v=spf1 -all")

        resolver = FakeResolver(zone, timeouts=[("example.com", "SPF")])
        server = new_server(
            resolver=resolver,
            query_rr_types=QueryRRType.ALL,
            spf_timeout_fallback=False,
        )
        request = Request("example.com", "192.0.2.1")
        self.assertRaises(DNSTimeout, server.select_record, request)
        self.assertEqual(resolver.queries, [("example.com", "SPF")])

    def testMalformedRecordPropagates(self):
        """Syntax errors in a correctly tagged record are not ignored"""
        server = new_server({("example.com", "TXT"): ["v=spf1 foo -all"]})
        request = Request("example.com", "192.0.2.1")
        self.assertRaises(SPFSyntaxError, server.select_record, request)

    def testProcessErrorMapping(self):
        """Processing errors become results"""
        cases = [
            (FakeResolver(timeouts=[("example.com", "TXT")]), "temperror"),
            (FakeResolver(rcodes={("example.com", "TXT"): "REFUSED"}), "temperror"),
            (FakeResolver({}), "none"),
            (
                FakeResolver({("example.com", "TXT"): ["v=spf1 -all", "v=spf1 ~all"]}),
                "permerror",
            ),
            (
                FakeResolver({("example.com", "TXT"): ["v=spf1 ip4:x -all"]}),
                "permerror",
            ),
        ]
        for resolver, code in cases:
            result = check(new_server(resolver=resolver), "192.0.2.1")
            self.assertIsInstance(result, Result)
            self.assertEqual(result.code, code, result.text)
            self.assertIsNotNone(result.text)

    def testUnexpectedErrorsPropagate(self):
        """Errors outside of the SPF error taxonomy are not caught"""
        resolver = mock.Mock()
        resolver.query.side_effect = RuntimeError("bug")
        server = new_server(resolver=resolver)
        request = Request("example.com", "192.0.2.1")
        self.assertRaises(RuntimeError, server.process, request)

    def testLimitTrackerIsShared(self):
        """Sub-requests share the processing limits of the root request"""
        server = new_server({}, max_dns_interactive_terms=3)
        root = Request("example.com", "192.0.2.1")
        sub_request = root.new_sub_request(authority_domain="a.example.com")
        sub_sub_request = sub_request.new_sub_request(authority_domain="b.example.com")
        other_sub_request = root.new_sub_request(authority_domain="c.example.com")
        for request in (sub_request, sub_sub_request, other_sub_request):
            self.assertIs(request.limits, root.limits)
            self.assertIs(request.root_request, root)
            self.assertFalse(request.is_root)

        server.count_dns_interactive_term(root)
        server.count_dns_interactive_term(sub_request)
        server.count_dns_interactive_term(sub_sub_request)
        with self.assertRaises(ProcessingLimitExceeded) as context:
            server.count_dns_interactive_term(other_sub_request)
        self.assertEqual(context.exception.data, {"dns_interactive_terms": 4})
        self.assertEqual(root.limits.dns_interactive_terms, 4)

        # Unrelated requests have their own counters
        other_root = Request("example.com", "192.0.2.1")
        self.assertEqual(other_root.limits.dns_interactive_terms, 0)

    def testIncludeChainLimit(self):
        """Deep include chains hit the DNS-interactive term limit"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 include:i1.example.com -all"],
            ("i1.example.com", "TXT"): ["v=spf1 include:i2.example.com -all"],
            ("i2.example.com", "TXT"): ["v=spf1 include:i3.example.com -all"],
            ("i3.example.com", "TXT"): ["v=spf1 include:i4.example.com -all"],
            ("i4.example.com", "TXT"): ["v=spf1 +all"],
        }
        result = check(new_server(zone, max_dns_interactive_terms=3), "192.0.2.1")
        self.assertEqual(result.code, "permerror")

        request = Request("user@example.com", "192.0.2.1")
        result = new_server(zone).process(request)
        self.assertEqual(result.code, "pass")
        self.assertEqual(request.limits.dns_interactive_terms, 4)

    def testVoidLookupLimit(self):
        """Too many lookups without answers are a permanent error"""
        zone = {
            ("example.com", "TXT"): [
                "v=spf1 a:v1.example.com a:v2.example.com a:v3.example.com -all"
            ],
        }
        result = check(new_server(zone), "192.0.2.1")
        self.assertEqual(result.code, "permerror")
        self.assertIn("void", result.text)

        zone = {
            ("example.com", "TXT"): ["v=spf1 a:v1.example.com a:v2.example.com -all"]
        }
        result = check(new_server(zone), "192.0.2.1")
        self.assertEqual(result.code, "fail")

    def testVoidLookupsAcrossIncludes(self):
        """Void lookups in included records count against the same limit"""
        zone = {
            ("example.com", "TXT"): [
                "v=spf1 a:v1.example.com include:_spf.example.net -all"
            ],
            ("_spf.example.net", "TXT"): [
                "v=spf1 a:v2.example.net a:v3.example.net ~all"
            ],
        }
        request = Request("user@example.com", "192.0.2.1")
        result = new_server(zone).process(request)
        self.assertEqual(result.code, "permerror")
        self.assertEqual(request.limits.void_dns_lookups, 3)

        result = check(new_server(zone, max_void_dns_lookups=3), "192.0.2.1")
        self.assertEqual(result.code, "fail")

    def testServerDefaults(self):
        """Processing limits and record types default to RFC 7208 values"""
        server = Server(resolver=FakeResolver(), hostname=HOSTNAME)
        self.assertEqual(server.max_dns_interactive_terms, 10)
        self.assertEqual(server.max_name_lookups_per_term, 10)
        self.assertEqual(server.max_name_lookups_per_mx_mech, 10)
        self.assertEqual(server.max_name_lookups_per_ptr_mech, 10)
        self.assertEqual(server.max_void_dns_lookups, 2)
        self.assertEqual(server.query_rr_types, QueryRRType.TXT)
        self.assertTrue(server.spf_timeout_fallback)
        self.assertIsInstance(server.default_authority_explanation, MacroString)

        server = Server(
            resolver=FakeResolver(), hostname=HOSTNAME, max_name_lookups_per_term=4
        )
        self.assertEqual(server.max_name_lookups_per_mx_mech, 4)
        self.assertEqual(server.max_name_lookups_per_ptr_mech, 4)
        self.assertEqual(server.max_void_dns_lookups, 2)
        self.assertEqual(server.max_dns_interactive_terms, 10)

        server = Server(
            resolver=FakeResolver(),
            hostname=HOSTNAME,
            max_name_lookups_per_term=4,
            max_name_lookups_per_mx_mech=6,
        )
        self.assertEqual(server.max_name_lookups_per_mx_mech, 6)
        self.assertEqual(server.max_name_lookups_per_ptr_mech, 4)

    def testProcessRequestAgain(self):
        """A root request can be processed more than once"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 a:other.example.com -all"],
            ("other.example.com", "A"): ["198.51.100.1"],
        }
        server = new_server(zone)
        request = Request("user@example.com", "192.0.2.1")
        first = server.process(request)
        second = server.process(request)
        self.assertEqual(first.code, "fail")
        self.assertEqual(second.code, "fail")
        self.assertEqual(request.record.text, "v=spf1 a:other.example.com -all")
        self.assertEqual(request.limits.dns_interactive_terms, 1)

    def testSPFTypeRecordEndToEnd(self):
        """An SPF type -all record fails the check"""
        zone = {("example.com", "SPF"): ["v=spf1 -all"]}
        server = new_server(zone, query_rr_types=QueryRRType.TXT | QueryRRType.SPF)
        request = Request("example.com", "192.0.2.1")
        result = server.process(request)
        self.assertIsInstance(request.record, RecordV1)
        self.assertIsInstance(result, FailResult)
        self.assertEqual(result.text, "Mechanism '-all' matched")
        self.assertEqual(
            result.authority_explanation,
            "Please see http://www.open-spf.org/Why?s=mfrom;"
            "id=postmaster%40example.com;ip=192.0.2.1;r=mx.example.org",
        )

    def testIPMechanisms(self):
        """ip4 and ip6 mechanisms"""
        zone = {
            ("example.com", "TXT"): [
                "v=spf1 ip4:192.0.2.0/24 ip6:2001:db8::/32 ?ip4:203.0.113.1 -all"
            ]
        }
        server = new_server(zone)
        self.assertEqual(check(server, "192.0.2.10").code, "pass")
        self.assertEqual(check(server, "::ffff:192.0.2.10").code, "pass")
        self.assertEqual(check(server, "2001:db8::1").code, "pass")
        self.assertEqual(check(server, "203.0.113.1").code, "neutral")
        self.assertEqual(check(server, "198.51.100.1").code, "fail")

    def testAMechanism(self):
        """a mechanisms with and without CIDR lengths"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 a a:other.example.com/24 ~all"],
            ("example.com", "A"): ["192.0.2.1"],
            ("other.example.com", "A"): ["198.51.100.1"],
        }
        server = new_server(zone)
        self.assertEqual(check(server, "192.0.2.1").code, "pass")
        self.assertEqual(check(server, "198.51.100.200").code, "pass")
        self.assertEqual(check(server, "192.0.2.2").code, "softfail")

    def testMXMechanism(self):
        """mx mechanisms"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 mx -all"],
            ("example.com", "MX"): ["mail1.example.com", "mail2.example.com"],
            ("mail1.example.com", "A"): ["192.0.2.5"],
            ("mail2.example.com", "A"): ["192.0.2.6"],
        }
        server = new_server(zone)
        self.assertEqual(check(server, "192.0.2.6").code, "pass")
        self.assertEqual(check(server, "192.0.2.7").code, "fail")

        server = new_server(zone, max_name_lookups_per_mx_mech=1)
        result = check(server, "192.0.2.6")
        self.assertEqual(result.code, "permerror")

    def testPTRMechanism(self):
        """ptr mechanisms only match validated names"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 ptr -all"],
            ("1.2.0.192.in-addr.arpa", "PTR"): ["mail.example.com"],
            ("mail.example.com", "A"): ["192.0.2.1"],
            ("2.2.0.192.in-addr.arpa", "PTR"): ["mail.example.com"],
        }
        server = new_server(zone)
        self.assertEqual(check(server, "192.0.2.1").code, "pass")
        self.assertEqual(check(server, "192.0.2.2").code, "fail")

    def testPTRNameLimit(self):
        """Only the first PTR names up to the limit are validated"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 ptr -all"],
            ("1.2.0.192.in-addr.arpa", "PTR"): [
                "a.example.com",
                "b.example.com",
                "mail.example.com",
            ],
            ("a.example.com", "A"): ["198.51.100.1"],
            ("b.example.com", "A"): ["198.51.100.2"],
            ("mail.example.com", "A"): ["192.0.2.1"],
        }
        server = new_server(zone, max_name_lookups_per_ptr_mech=2)
        self.assertEqual(check(server, "192.0.2.1").code, "fail")
        server = new_server(zone, max_name_lookups_per_ptr_mech=3)
        self.assertEqual(check(server, "192.0.2.1").code, "pass")

    def testExistsMechanism(self):
        """exists mechanisms with macros"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 exists:%{i}._spf.%{d} -all"],
            ("192.0.2.1._spf.example.com", "A"): ["127.0.0.2"],
        }
        server = new_server(zone)
        self.assertEqual(check(server, "192.0.2.1").code, "pass")
        self.assertEqual(check(server, "192.0.2.2").code, "fail")

    def testIncludeMechanism(self):
        """include results map to matches, non-matches or errors"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 include:_spf.example.net -all"],
            ("_spf.example.net", "TXT"): ["v=spf1 ip4:192.0.2.0/24 ~all"],
        }
        server = new_server(zone)
        self.assertEqual(check(server, "192.0.2.1").code, "pass")
        self.assertEqual(check(server, "198.51.100.1").code, "fail")

        zone = {("example.com", "TXT"): ["v=spf1 include:missing.example.net -all"]}
        self.assertEqual(check(new_server(zone), "192.0.2.1").code, "permerror")

        resolver = FakeResolver(
            {("example.com", "TXT"): ["v=spf1 include:slow.example.net -all"]},
            timeouts=[("slow.example.net", "TXT")],
        )
        result = check(new_server(resolver=resolver), "192.0.2.1")
        self.assertEqual(result.code, "temperror")

    def testRedirectModifier(self):
        """redirect modifiers"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 redirect=_spf.example.net"],
            ("_spf.example.net", "TXT"): ["v=spf1 ip4:192.0.2.0/24 -all"],
        }
        server = new_server(zone)
        self.assertEqual(check(server, "192.0.2.1").code, "pass")
        self.assertEqual(check(server, "198.51.100.1").code, "fail")

        zone = {("example.com", "TXT"): ["v=spf1 redirect=missing.example.net"]}
        self.assertEqual(check(new_server(zone), "192.0.2.1").code, "permerror")

    def testDefaultNeutral(self):
        """No matching mechanism and no redirect is neutral"""
        zone = {("example.com", "TXT"): ["v=spf1 ip4:198.51.100.0/24"]}
        result = check(new_server(zone), "192.0.2.1")
        self.assertEqual(result.code, "neutral")
        self.assertEqual(
            result.text, "Default neutral result due to no mechanism matches"
        )

    def testExplanation(self):
        """exp modifiers provide the authority explanation"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 -all exp=explain.example.com"],
            ("explain.example.com", "TXT"): [
                "%{i} is not one of %{d}'s designated mail servers."
            ],
        }
        result = check(new_server(zone), "192.0.2.1")
        self.assertEqual(result.code, "fail")
        explanation = "192.0.2.1 is not one of example.com's designated mail servers."
        self.assertEqual(result.authority_explanation, explanation)
        self.assertEqual(result.to_dict()["authority_explanation"], explanation)

        # A missing explanation falls back to the default one
        zone = {("example.com", "TXT"): ["v=spf1 -all exp=missing.example.com"]}
        server = new_server(zone, default_authority_explanation="Denied by %{d}")
        result = check(server, "192.0.2.1")
        self.assertEqual(result.authority_explanation, "Denied by example.com")

    def testMacroExpansion(self):
        """Macro expansion examples from RFC 7208 § 7.4"""
        server = new_server({})
        request = Request("strong-bad@email.example.com", "192.0.2.3")
        examples = {
            "%{s}": "strong-bad@email.example.com",
            "%{o}": "email.example.com",
            "%{d}": "email.example.com",
            "%{d4}": "email.example.com",
            "%{d3}": "email.example.com",
            "%{d2}": "example.com",
            "%{d1}": "com",
            "%{dr}": "com.example.email",
            "%{d2r}": "example.email",
            "%{l}": "strong-bad",
            "%{l-}": "strong.bad",
            "%{lr}": "strong-bad",
            "%{lr-}": "bad.strong",
            "%{l1r-}": "strong",
            "%{ir}.%{v}._spf.%{d2}": "3.2.0.192.in-addr._spf.example.com",
            "%{lr-}.lp._spf.%{d2}": "bad.strong.lp._spf.example.com",
            "%{S}": "strong-bad%40email.example.com",
            "a%%b%_c%-d": "a%b c%20d",
        }
        for text, expanded in examples.items():
            macro_string = MacroString(text, server=server, request=request)
            self.assertEqual(macro_string.expand(), expanded, text)

        request = Request("strong-bad@email.example.com", "2001:db8::cb01")
        macro_string = MacroString("%{ir}.%{v}._spf.%{d2}", request=request)
        self.assertEqual(
            macro_string.expand(server),
            "1.0.b.c.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.8.b.d.0.1.0.0.2"
            ".ip6._spf.example.com",
        )

        explanation = MacroString("%{c} via %{r}", is_explanation=True)
        self.assertEqual(
            explanation.expand(server, request), "2001:db8::cb01 via mx.example.org"
        )

    def testMacroSyntax(self):
        """Invalid macro strings are rejected"""
        invalid = ["%", "%{x}", "%{c}", "%{_scope}", "%{d0}", "%{d", "%x", "%{d2r!}"]
        for text in invalid:
            self.assertRaises(MacroSyntaxError, MacroString, text)
        MacroString("%{c} %{r} %{t} %{_scope}", is_explanation=True)

    def testRecordSyntax(self):
        """Record parsing"""
        record = RecordV1.new_from_string("v=spf1 a/24 mx:example.net//64 foo=bar -all")
        self.assertEqual(record.scopes, ("helo", "mfrom"))
        self.assertEqual(len(record.mechanisms), 3)
        self.assertEqual(record.mechanisms[0]["cidr4"], 24)
        self.assertEqual(record.mechanisms[1]["domain_spec"], "example.net")
        self.assertEqual(record.mechanisms[1]["cidr6"], 64)
        self.assertEqual(record.mechanisms[2]["qualifier"], "-")
        self.assertEqual(record.modifiers["foo"], "bar")

        record = RecordV2.new_from_string("spf2.0/mfrom,pra -all")
        self.assertEqual(record.scopes, ("mfrom", "pra"))

        self.assertRaises(
            InvalidRecordVersion, RecordV1.new_from_string, "v=spf10 -all"
        )
        self.assertRaises(
            InvalidRecordVersion, RecordV2.new_from_string, "v=spf1 -all"
        )

        invalid_records = [
            "v=spf1 foo -all",
            "v=spf1 ip4:192.0.2.0/33 -all",
            "v=spf1 ip6:2001:db8::/129 -all",
            "v=spf1 include -all",
            "v=spf1 all:example.com",
            "v=spf1 exists:%{c}.example.com -all",
            "v=spf1 redirect=a.example.com redirect=b.example.com",
        ]
        for text in invalid_records:
            self.assertRaises(SPFSyntaxError, RecordV1.new_from_string, text)
        self.assertRaises(SPFSyntaxError, RecordV2.new_from_string, "spf2.0/bogus -all")

    def testSyntaxErrorMarker(self):
        """Syntax errors point at the problem"""
        with self.assertRaises(SPFSyntaxError) as context:
            RecordV1.new_from_string("v=spf1 ip4:192.0.2.1 foo -all")
        self.assertIn("➞foo", context.exception.text)

    def testRequest(self):
        """Requests"""
        request = Request("example.com", "192.0.2.1")
        self.assertEqual(request.local_part, "postmaster")
        self.assertEqual(request.sender, "postmaster@example.com")
        self.assertEqual(request.versions, (1, 2))
        self.assertTrue(request.is_root)

        request = Request("User@Example.COM", "192.0.2.1")
        self.assertEqual(request.local_part, "User")
        self.assertEqual(request.authority_domain, "example.com")

        self.assertRaises(
            ValueError, Request, "example.com", "192.0.2.1", scope="bogus"
        )
        self.assertRaises(
            ValueError, Request, "example.com", "192.0.2.1", scope="helo", versions=[2]
        )
        self.assertRaises(ValueError, Request, "example.com", "not an ip")

        request.record = RecordV1.new_from_string("v=spf1 -all")
        with self.assertRaises(ValueError):
            request.record = RecordV1.new_from_string("v=spf1 +all")

    def testResultClasses(self):
        """Results are looked up by name"""
        server = new_server({})
        self.assertIs(server.result_class(), Result)
        self.assertIs(server.result_class("PASS"), PassResult)
        codes = ["pass", "fail", "softfail", "neutral", "none", "temperror", "permerror"]
        for code in codes:
            self.assertEqual(server.result_class(code).code, code)
        self.assertRaises(ValueError, server.result_class, "bogus")

    def testReceivedSPFHeader(self):
        """Received-SPF headers"""
        zone = {("example.com", "TXT"): ["v=spf1 ip4:192.0.2.0/24 -all"]}
        result = check(
            new_server(zone), "192.0.2.1", helo_identity="mail.example.com"
        )
        header = result.received_spf_header()
        self.assertTrue(header.startswith("Received-SPF: pass ("))
        for pair in [
            "client-ip=192.0.2.1",
            'envelope-from="user@example.com"',
            "helo=mail.example.com",
            "receiver=mx.example.org",
            "identity=mailfrom",
        ]:
            self.assertIn(pair, header)

    def testDNSLookupExpandsMacros(self):
        """DNS lookups expand and canonicalize macro strings"""
        resolver = FakeResolver({("example.com", "A"): ["192.0.2.1"]})
        server = new_server(resolver=resolver)
        request = Request("user@Example.COM", "192.0.2.1")
        response = server.dns_lookup(MacroString("%{d}.", request=request), "A")
        self.assertEqual(response["answers"][0]["data"], "192.0.2.1")
        self.assertEqual(resolver.queries, [("example.com", "A")])

    def testDNSResolver(self):
        """The resolver adapter classifies dnspython outcomes"""
        cache = ExpiringDict(max_len=100, max_age_seconds=60)
        dns_resolver = mock.Mock()
        resolver = spfeval.utils.DNSResolver(dns_resolver, cache=cache)

        answer = mock.Mock()
        answer.rrset = dns.rrset.from_text(
            "example.com.", 300, "IN", "TXT", '"v=spf1 " "-all"'
        )
        answer.response.rcode.return_value = dns.rcode.NOERROR
        dns_resolver.resolve.return_value = answer
        response = resolver.query("example.com", "TXT")
        self.assertEqual(response["rcode"], "NOERROR")
        self.assertEqual(response["answers"][0]["strings"], ["v=spf1 ", "-all"])
        self.assertEqual(response["answers"][0]["data"], "v=spf1 -all")
        resolver.query("example.com", "TXT")
        self.assertEqual(dns_resolver.resolve.call_count, 1)

        answer.rrset = dns.rrset.from_text(
            "example.com.", 300, "IN", "MX", "10 mail.example.com."
        )
        response = resolver.query("example.com", "MX")
        self.assertEqual(response["answers"][0]["data"], "mail.example.com")

        dns_resolver.resolve.side_effect = dns.resolver.NXDOMAIN()
        response = resolver.query("missing.example.com", "TXT")
        self.assertEqual(response, {"rcode": "NXDOMAIN", "answers": []})

        dns_resolver.resolve.side_effect = dns.resolver.NoNameservers()
        response = resolver.query("broken.example.com", "TXT")
        self.assertEqual(response["rcode"], "SERVFAIL")
        self.assertNotIn("broken.example.com_TXT", cache)

        dns_resolver.resolve.side_effect = dns.exception.Timeout()
        self.assertRaises(
            dns.exception.Timeout, resolver.query, "slow.example.com", "TXT"
        )

        server = new_server(resolver=resolver)
        request = Request("slow.example.com", "192.0.2.1")
        self.assertEqual(server.process(request).code, "temperror")

    def testCheckHost(self):
        """The convenience API returns a result dictionary"""
        zone = {("example.com", "TXT"): ["v=spf1 ip4:192.0.2.0/24 -all"]}
        server = new_server(zone)
        results = spfeval.check_host(
            "192.0.2.1", "user@mail.example.com", server=server
        )
        self.assertEqual(results["result"], "none")
        self.assertEqual(results["base_domain"], "example.com")
        self.assertIsNone(results["record"])

        results = spfeval.check_hosts(
            [("192.0.2.1", "user@example.com"), ("198.51.100.1", "user@example.com")],
            server=server,
        )
        self.assertEqual([r["result"] for r in results], ["pass", "fail"])
        self.assertEqual(results[0]["record"], "v=spf1 ip4:192.0.2.0/24 -all")
        self.assertIsNotNone(results[1]["authority_explanation"])

        csv = spfeval.results_to_csv(results)
        self.assertTrue(csv.startswith("ip_address,identity,scope"))
        self.assertEqual(len(csv.strip().splitlines()), 3)
        self.assertIn('"result": "pass"', spfeval.results_to_json(results[0]))


if __name__ == "__main__":
    unittest.main(verbosity=2)
