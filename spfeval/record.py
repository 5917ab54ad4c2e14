# -*- coding: utf-8 -*-
"""Sender Policy Framework (SPF) records"""

from __future__ import annotations

import ipaddress
import logging
import re
from typing import Optional, TypedDict, Union, TYPE_CHECKING

import pyleri

from spfeval._constants import SYNTAX_ERROR_MARKER
from spfeval.exceptions import (
    InvalidRecordVersion,
    ProcessingLimitExceeded,
    SPFSyntaxError,
)
from spfeval.macro import (
    MacroString,
    get_ptr_names,
    is_validated_name,
    validate_macro_string,
)
from spfeval.result import Result
from spfeval.utils import DNSException, canonicalize_domain

if TYPE_CHECKING:
    from spfeval.request import Request
    from spfeval.server import Server

"""Copyright 2019-2025 Sean Whalen

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

   https://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License."""

SPF_MECHANISM_REGEX_STRING = (
    r"[+\-~?]?(?:all|include|exists|ptr|ip4|ip6|a|mx)(?=[:/\s]|$)\S*"
)
SPF_MODIFIER_REGEX_STRING = r"[a-zA-Z][\w.\-]*=\S*"

SPF_MECHANISM_REGEX = re.compile(
    r"^([+\-~?]?)(all|include|exists|ptr|ip4|ip6|a|mx)"
    r"(?::(.*?))?(?:/(\d+))?(?://(\d+))?$",
    re.IGNORECASE,
)
SPF_MODIFIER_REGEX = re.compile(r"^([a-zA-Z][\w.\-]*)=(.*)$")
TERM_REGEX = re.compile(r"\S+")

spf_qualifiers: dict[str, str] = {
    "": "pass",
    "+": "pass",
    "-": "fail",
    "~": "softfail",
    "?": "neutral",
}


class _SPFTermsGrammar(pyleri.Grammar):
    """Defines Pyleri grammar for the terms of an SPF record"""

    mechanism = pyleri.Regex(SPF_MECHANISM_REGEX_STRING, re.IGNORECASE)
    modifier = pyleri.Regex(SPF_MODIFIER_REGEX_STRING)

    START = pyleri.Repeat(pyleri.Choice(mechanism, modifier))


_SPF_TERMS_GRAMMAR = _SPFTermsGrammar()


class SPFMechanism(TypedDict):
    term: str
    qualifier: str
    mechanism: str
    domain_spec: Optional[str]
    network: Optional[Union[ipaddress.IPv4Network, ipaddress.IPv6Network]]
    cidr4: int
    cidr6: int


def _raise_term_syntax_error(
    record: str, pos: int, msg: str, syntax_error_marker: str
) -> None:
    marked_record = record[:pos] + syntax_error_marker + record[pos:]
    raise SPFSyntaxError(
        f"{msg} at position {pos} (marked with {syntax_error_marker}) "
        f"in: {marked_record}"
    )


def _validate_domain_spec(
    domain_spec: str, record: str, pos: int, syntax_error_marker: str
) -> None:
    if domain_spec == "" or "/" in domain_spec:
        _raise_term_syntax_error(
            record, pos, "Invalid domain-spec", syntax_error_marker
        )
    try:
        validate_macro_string(domain_spec)
    except SPFSyntaxError as error:
        _raise_term_syntax_error(record, pos, str(error), syntax_error_marker)


def _parse_mechanism(
    match: re.Match, record: str, pos: int, syntax_error_marker: str
) -> SPFMechanism:
    term = match.group(0)
    qualifier, name, value, cidr4, cidr6 = match.groups()
    name = name.lower()
    mechanism: SPFMechanism = {
        "term": term,
        "qualifier": qualifier,
        "mechanism": name,
        "domain_spec": None,
        "network": None,
        "cidr4": 32,
        "cidr6": 128,
    }

    if name == "all":
        if value is not None or cidr4 is not None or cidr6 is not None:
            _raise_term_syntax_error(
                record, pos, "The all mechanism takes no value", syntax_error_marker
            )
        return mechanism

    if name in ("ip4", "ip6"):
        if not value or cidr6 is not None:
            _raise_term_syntax_error(
                record, pos, f"Invalid {name} value", syntax_error_marker
            )
        network = f"{value}/{cidr4}" if cidr4 is not None else value
        try:
            if name == "ip4":
                ipaddress.IPv4Address(value)
                mechanism["network"] = ipaddress.IPv4Network(network, strict=False)
            else:
                ipaddress.IPv6Address(value)
                mechanism["network"] = ipaddress.IPv6Network(network, strict=False)
        except ValueError:
            _raise_term_syntax_error(
                record,
                pos,
                f"{value} is not a valid {name} value",
                syntax_error_marker,
            )
        return mechanism

    if value is not None:
        _validate_domain_spec(value, record, pos, syntax_error_marker)
        mechanism["domain_spec"] = value
    elif name in ("include", "exists"):
        _raise_term_syntax_error(
            record, pos, f"The {name} mechanism must have a value", syntax_error_marker
        )

    if cidr4 is not None or cidr6 is not None:
        if name not in ("a", "mx"):
            _raise_term_syntax_error(
                record,
                pos,
                f"The {name} mechanism takes no CIDR length",
                syntax_error_marker,
            )
        if cidr4 is not None:
            if int(cidr4) > 32:
                _raise_term_syntax_error(
                    record, pos, "Invalid IPv4 CIDR length", syntax_error_marker
                )
            mechanism["cidr4"] = int(cidr4)
        if cidr6 is not None:
            if int(cidr6) > 128:
                _raise_term_syntax_error(
                    record, pos, "Invalid IPv6 CIDR length", syntax_error_marker
                )
            mechanism["cidr6"] = int(cidr6)

    return mechanism


class Record(object):
    """
    A parsed SPF record

    Use :meth:`new_from_string` of a versioned subclass to create one.
    """

    version: int = 0
    version_tag: str = ""
    version_regex: re.Pattern = re.compile(r"(?!)")
    valid_scopes: tuple[str, ...] = ()

    def __init__(self, text: str, scopes: tuple[str, ...]):
        self.text = text
        self.scopes = scopes
        self.terms: list[str] = []
        self.mechanisms: list[SPFMechanism] = []
        self.modifiers: dict[str, str] = {}

    def __str__(self):
        return self.text

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.text!r}>"

    @property
    def redirect(self) -> Optional[str]:
        return self.modifiers.get("redirect")

    @property
    def exp(self) -> Optional[str]:
        return self.modifiers.get("exp")

    @classmethod
    def _parse_scopes(cls, version_match: re.Match) -> tuple[str, ...]:
        return cls.valid_scopes

    @classmethod
    def new_from_string(
        cls, text: str, *, syntax_error_marker: str = SYNTAX_ERROR_MARKER
    ) -> Record:
        """
        Parses an SPF record

        Args:
            text (str): The record text
            syntax_error_marker (str): The maker for pointing out syntax errors

        Returns:
            Record: The parsed record

        Raises:
            :exc:`spfeval.exceptions.InvalidRecordVersion`
            :exc:`spfeval.exceptions.SPFSyntaxError`
        """
        version_match = cls.version_regex.match(text)
        if version_match is None:
            raise InvalidRecordVersion(f"Not a '{cls.version_tag}' record: {text}")
        record = cls(text, cls._parse_scopes(version_match))
        record._parse_terms(version_match.end(), syntax_error_marker)
        return record

    def _parse_terms(self, offset: int, syntax_error_marker: str):
        text = self.text
        terms_text = text[offset:]
        stripped = terms_text.strip()
        if stripped:
            start = offset + terms_text.index(stripped[0])
            parsed_terms = _SPF_TERMS_GRAMMAR.parse(stripped)
            if not parsed_terms.is_valid:
                pos = start + parsed_terms.pos
                expecting = " or ".join(
                    sorted(str(x).strip('"') for x in parsed_terms.expecting)
                )
                marked_record = text[:pos] + syntax_error_marker + text[pos:]
                raise SPFSyntaxError(
                    f"Expected {expecting or 'a term'} at position {pos} "
                    f"(marked with {syntax_error_marker}) in: {marked_record}"
                )

        for term_match in TERM_REGEX.finditer(terms_text):
            term = term_match.group(0)
            pos = offset + term_match.start()
            self.terms.append(term)
            mechanism_match = SPF_MECHANISM_REGEX.match(term)
            if mechanism_match:
                self.mechanisms.append(
                    _parse_mechanism(mechanism_match, text, pos, syntax_error_marker)
                )
                continue
            modifier_match = SPF_MODIFIER_REGEX.match(term)
            if modifier_match is None:
                _raise_term_syntax_error(
                    text, pos, "Unknown term", syntax_error_marker
                )
            name, value = modifier_match.groups()
            name = name.lower()
            if name in ("redirect", "exp"):
                if name in self.modifiers:
                    _raise_term_syntax_error(
                        text,
                        pos,
                        f"Multiple {name} modifiers",
                        syntax_error_marker,
                    )
                _validate_domain_spec(value, text, pos, syntax_error_marker)
            else:
                # RFC 7208 § 6: unknown modifiers are ignored
                try:
                    validate_macro_string(value)
                except SPFSyntaxError as error:
                    _raise_term_syntax_error(
                        text, pos, str(error), syntax_error_marker
                    )
            self.modifiers.setdefault(name, value)

    def eval(self, server: Server, request: Request) -> Result:
        """
        Evaluates the record for a request

        Args:
            server (Server): The SPF server
            request (Request): The request being evaluated

        Returns:
            Result: The result of the evaluation

        Raises:
            :exc:`spfeval.utils.DNSException`
            :exc:`spfeval.exceptions.ProcessingLimitExceeded`
            :exc:`spfeval.exceptions.SPFSyntaxError`
        """
        for mechanism in self.mechanisms:
            matched = self._match_mechanism(mechanism, server, request)
            if isinstance(matched, Result):
                return matched
            if matched:
                result_code = spf_qualifiers[mechanism["qualifier"]]
                logging.debug(
                    f"{request.authority_domain}: {mechanism['term']} matched "
                    f"{request.ip_address}"
                )
                if result_code == "fail":
                    self._set_authority_explanation(server, request)
                return server.result_class(result_code)(
                    server, request, f"Mechanism '{mechanism['term']}' matched"
                )

        if self.redirect is not None:
            return self._eval_redirect(server, request)

        return server.result_class("neutral")(
            server, request, "Default neutral result due to no mechanism matches"
        )

    def _expand_domain_spec(
        self, mechanism: SPFMechanism, server: Server, request: Request
    ) -> str:
        if mechanism["domain_spec"] is None:
            return request.authority_domain
        macro_string = MacroString(
            mechanism["domain_spec"], server=server, request=request
        )
        return canonicalize_domain(macro_string.expand())

    def _match_mechanism(
        self, mechanism: SPFMechanism, server: Server, request: Request
    ) -> Union[bool, Result]:
        name = mechanism["mechanism"]
        if name == "all":
            return True
        elif name in ("ip4", "ip6"):
            return request.ip_address in mechanism["network"]

        server.count_dns_interactive_term(request)
        domain = self._expand_domain_spec(mechanism, server, request)

        if name == "a":
            return self._match_addresses(domain, mechanism, server, request)
        elif name == "mx":
            return self._match_mx(domain, mechanism, server, request)
        elif name == "ptr":
            return self._match_ptr(domain, server, request)
        elif name == "exists":
            response = server.dns_lookup(domain, "A")
            if any(a["type"] == "A" for a in response["answers"]):
                return True
            server.count_void_dns_lookup(request)
            return False
        elif name == "include":
            return self._match_include(domain, server, request)
        raise ValueError(f"Unknown mechanism: {name}")

    def _match_addresses(
        self,
        domain: str,
        mechanism: SPFMechanism,
        server: Server,
        request: Request,
        *,
        count_void: bool = True,
    ) -> bool:
        ip_address = request.ip_address
        if ip_address.version == 4:
            rr_type, prefix = "A", mechanism["cidr4"]
        else:
            rr_type, prefix = "AAAA", mechanism["cidr6"]
        response = server.dns_lookup(domain, rr_type)
        addresses = [a["data"] for a in response["answers"] if a["type"] == rr_type]
        if len(addresses) == 0:
            if count_void:
                server.count_void_dns_lookup(request)
            return False
        for address in addresses:
            network = ipaddress.ip_network(f"{address}/{prefix}", strict=False)
            if ip_address in network:
                return True
        return False

    def _match_mx(
        self, domain: str, mechanism: SPFMechanism, server: Server, request: Request
    ) -> bool:
        response = server.dns_lookup(domain, "MX")
        # A null MX (RFC 7505) has an empty exchange
        hosts = [
            a["data"] for a in response["answers"] if a["type"] == "MX" and a["data"]
        ]
        if len(hosts) == 0:
            server.count_void_dns_lookup(request)
            return False
        max_hosts = server.max_name_lookups_per_mx_mech
        if max_hosts is not None and len(hosts) > max_hosts:
            raise ProcessingLimitExceeded(
                f"{domain} has {len(hosts)}/{max_hosts} maximum MX records "
                "(RFC 7208 § 4.6.4)",
                mx_hosts=len(hosts),
            )
        for host in hosts:
            if self._match_addresses(
                host, mechanism, server, request, count_void=False
            ):
                return True
        return False

    def _match_ptr(self, domain: str, server: Server, request: Request) -> bool:
        # RFC 7208 § 5.5: DNS errors make the ptr mechanism not match
        try:
            names = get_ptr_names(server, request)
        except DNSException as error:
            logging.debug(f"ptr lookup for {request.ip_address} failed: {error}")
            return False
        if len(names) == 0:
            server.count_void_dns_lookup(request)
            return False
        max_names = server.max_name_lookups_per_ptr_mech
        if max_names is not None:
            names = names[:max_names]
        for name in names:
            if name != domain and not name.endswith(f".{domain}"):
                continue
            try:
                if is_validated_name(server, request, name):
                    return True
            except DNSException as error:
                logging.debug(f"Validating {name} failed: {error}")
        return False

    def _match_include(
        self, domain: str, server: Server, request: Request
    ) -> Union[bool, Result]:
        logging.debug(f"{request.authority_domain}: including {domain}")
        sub_request = request.new_sub_request(authority_domain=domain)
        result = server.process(sub_request)
        if result.is_code("pass"):
            return True
        elif result.code in ("fail", "softfail", "neutral"):
            return False
        elif result.is_code("temperror"):
            return server.result_class("temperror")(
                server,
                request,
                f"Temporary error in included policy of {domain}: {result.text}",
            )
        # RFC 7208 § 5.2: none and permerror both become permerror
        return server.result_class("permerror")(
            server,
            request,
            f"Included policy of {domain} could not be used: {result.text}",
        )

    def _eval_redirect(self, server: Server, request: Request) -> Result:
        server.count_dns_interactive_term(request)
        macro_string = MacroString(self.redirect, server=server, request=request)
        domain = canonicalize_domain(macro_string.expand())
        logging.debug(f"{request.authority_domain}: redirecting to {domain}")
        sub_request = request.new_sub_request(authority_domain=domain)
        result = server.process(sub_request)
        if result.is_code("none"):
            return server.result_class("permerror")(
                server,
                request,
                f"Redirect target {domain} has no applicable sender policy",
            )
        return result

    def _set_authority_explanation(self, server: Server, request: Request):
        explanation = None
        if self.exp is not None:
            # RFC 7208 § 6.2: any problem with the explanation means that
            # the default explanation is used instead
            try:
                domain = MacroString(self.exp, server=server, request=request)
                response = server.dns_lookup(domain, "TXT")
                texts = [a["data"] for a in response["answers"] if a["type"] == "TXT"]
                if len(texts) == 1:
                    explanation = MacroString(
                        texts[0], server=server, request=request, is_explanation=True
                    ).expand()
                else:
                    logging.debug(
                        f"Expected one explanation at {self.exp}, found {len(texts)}"
                    )
            except (DNSException, SPFSyntaxError) as error:
                logging.debug(f"Explanation lookup for {self.exp} failed: {error}")
        if explanation is None:
            explanation = server.default_authority_explanation.expand(server, request)
        request.set_state("authority_explanation", explanation)


class RecordV1(Record):
    """A ``v=spf1`` record (RFC 7208)"""

    version = 1
    version_tag = "v=spf1"
    version_regex = re.compile(r"^v=spf1(?=\s|$)", re.IGNORECASE)
    valid_scopes = ("helo", "mfrom")


class RecordV2(Record):
    """An ``spf2.0`` Sender ID record (RFC 4406)"""

    version = 2
    version_tag = "spf2.0"
    version_regex = re.compile(
        r"^spf2\.0/([\w\-]+(?:,[\w\-]+)*)(?=\s|$)", re.IGNORECASE
    )
    valid_scopes = ("mfrom", "pra")

    @classmethod
    def _parse_scopes(cls, version_match: re.Match) -> tuple[str, ...]:
        scopes = tuple(s.lower() for s in version_match.group(1).split(","))
        for scope in scopes:
            if scope not in cls.valid_scopes:
                raise SPFSyntaxError(
                    f"Invalid scope '{scope}' in record: {version_match.string}"
                )
        return scopes


RECORD_CLASSES_BY_VERSION: dict[int, type[Record]] = {
    RecordV1.version: RecordV1,
    RecordV2.version: RecordV2,
}
