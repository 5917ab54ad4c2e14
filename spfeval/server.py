# -*- coding: utf-8 -*-
"""SPF evaluation server"""

from __future__ import annotations

import enum
import logging
from typing import Optional, Union, TYPE_CHECKING
from collections.abc import Sequence

import dns.exception
import dns.resolver
from dns.nameserver import Nameserver

from spfeval._constants import (
    DEFAULT_AUTHORITY_EXPLANATION,
    DEFAULT_DNS_TIMEOUT,
    DEFAULT_MAX_DNS_INTERACTIVE_TERMS,
    DEFAULT_MAX_NAME_LOOKUPS_PER_TERM,
    DEFAULT_MAX_VOID_DNS_LOOKUPS,
)
from spfeval.exceptions import (
    InvalidRecordVersion,
    NoAcceptableRecordError,
    ProcessingLimitExceeded,
    RedundantAcceptableRecordsError,
    SPFSyntaxError,
)
from spfeval.macro import MacroString
from spfeval.record import RECORD_CLASSES_BY_VERSION, Record
from spfeval.result import Result
from spfeval.utils import (
    VALID_RCODES,
    DNSException,
    DNSResolver,
    DNSResponse,
    DNSTimeout,
    canonicalize_domain,
    get_hostname,
)

if TYPE_CHECKING:
    from spfeval.request import Request

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


class QueryRRType(enum.IntFlag):
    """The DNS record types that are queried for SPF records"""

    NONE = 0
    TXT = 1
    SPF = 2
    ALL = TXT | SPF


class Server(object):
    """
    Evaluates SPF requests

    A server holds configuration only. It is not modified by processing
    requests, so one server can process many requests concurrently as long
    as its DNS resolver can.
    """

    def __init__(
        self,
        *,
        default_authority_explanation: Optional[Union[str, MacroString]] = None,
        hostname: Optional[str] = None,
        resolver: Optional[Union[DNSResolver, dns.resolver.Resolver]] = None,
        nameservers: Optional[Sequence[str | Nameserver]] = None,
        timeout: float = DEFAULT_DNS_TIMEOUT,
        query_rr_types: QueryRRType = QueryRRType.TXT,
        spf_timeout_fallback: bool = True,
        max_dns_interactive_terms: Optional[int] = DEFAULT_MAX_DNS_INTERACTIVE_TERMS,
        max_name_lookups_per_term: Optional[int] = DEFAULT_MAX_NAME_LOOKUPS_PER_TERM,
        max_name_lookups_per_mx_mech: Optional[int] = None,
        max_name_lookups_per_ptr_mech: Optional[int] = None,
        max_void_dns_lookups: Optional[int] = DEFAULT_MAX_VOID_DNS_LOOKUPS,
    ):
        """
        Args:
            default_authority_explanation (str): The explanation used for
                                                 ``fail`` results when the
                                                 record has no ``exp``
            hostname (str): The hostname of the receiving server; detected if
                            not provided
            resolver: A lookup adapter with a ``query(domain, rr_type)``
                      method, or a ``dns.resolver.Resolver`` to wrap in one
            nameservers (list): A list of nameservers to query, if no
                                resolver is provided
            timeout (float): number of seconds to wait for an answer from
                             DNS, if no resolver is provided
            query_rr_types (QueryRRType): The DNS record types to query for
                                          SPF records
            spf_timeout_fallback (bool): Fall back to TXT records when a
                                         query for SPF type records times out
            max_dns_interactive_terms (int): The maximum number of terms that
                                             cause DNS queries
            max_name_lookups_per_term (int): The maximum number of names
                                             looked up for a single term
            max_name_lookups_per_mx_mech (int): The maximum number of MX hosts
                                                for an ``mx`` mechanism
            max_name_lookups_per_ptr_mech (int): The maximum number of PTR
                                                 names validated for a
                                                 ``ptr`` mechanism
            max_void_dns_lookups (int): The maximum number of DNS lookups
                                        returning no answers

        A limit of ``None`` disables that limit, except for
        ``max_name_lookups_per_mx_mech`` and ``max_name_lookups_per_ptr_mech``,
        which default to ``max_name_lookups_per_term`` when ``None``.
        """
        if default_authority_explanation is None:
            default_authority_explanation = DEFAULT_AUTHORITY_EXPLANATION
        if not isinstance(default_authority_explanation, MacroString):
            default_authority_explanation = MacroString(
                default_authority_explanation, server=self, is_explanation=True
            )
        if resolver is None:
            resolver = DNSResolver(nameservers=nameservers, timeout=timeout)
        elif isinstance(resolver, dns.resolver.Resolver):
            resolver = DNSResolver(resolver, timeout=timeout)
        if max_name_lookups_per_mx_mech is None:
            max_name_lookups_per_mx_mech = max_name_lookups_per_term
        if max_name_lookups_per_ptr_mech is None:
            max_name_lookups_per_ptr_mech = max_name_lookups_per_term

        self._default_authority_explanation = default_authority_explanation
        self._hostname = hostname or get_hostname()
        self._resolver = resolver
        self._query_rr_types = QueryRRType(query_rr_types)
        self._spf_timeout_fallback = spf_timeout_fallback
        self._max_dns_interactive_terms = max_dns_interactive_terms
        self._max_name_lookups_per_term = max_name_lookups_per_term
        self._max_name_lookups_per_mx_mech = max_name_lookups_per_mx_mech
        self._max_name_lookups_per_ptr_mech = max_name_lookups_per_ptr_mech
        self._max_void_dns_lookups = max_void_dns_lookups

    @property
    def default_authority_explanation(self) -> MacroString:
        return self._default_authority_explanation

    @property
    def hostname(self) -> str:
        return self._hostname

    @property
    def resolver(self) -> DNSResolver:
        return self._resolver

    @property
    def query_rr_types(self) -> QueryRRType:
        return self._query_rr_types

    @property
    def spf_timeout_fallback(self) -> bool:
        return self._spf_timeout_fallback

    @property
    def max_dns_interactive_terms(self) -> Optional[int]:
        return self._max_dns_interactive_terms

    @property
    def max_name_lookups_per_term(self) -> Optional[int]:
        return self._max_name_lookups_per_term

    @property
    def max_name_lookups_per_mx_mech(self) -> Optional[int]:
        return self._max_name_lookups_per_mx_mech

    @property
    def max_name_lookups_per_ptr_mech(self) -> Optional[int]:
        return self._max_name_lookups_per_ptr_mech

    @property
    def max_void_dns_lookups(self) -> Optional[int]:
        return self._max_void_dns_lookups

    def result_class(self, name: Optional[str] = None) -> type[Result]:
        """
        Returns the result factory, or the result class for a result code

        Args:
            name (str): A result code, e.g. ``pass``

        Returns:
            type: :class:`spfeval.result.Result` or one of its subclasses
        """
        if name is None:
            return Result
        return Result.by_name(name)

    def process(self, request: Request) -> Result:
        """
        Checks a request against the policy of its authority domain

        A root request may be processed again; its selected record and
        processing limits are reset first.

        Args:
            request (Request): The request to check

        Returns:
            Result: The result of the check
        """
        request.set_state("authority_explanation", None)
        if request.is_root:
            request.limits.reset()
            request.clear_record()

        try:
            record = self.select_record(request)
            request.record = record
            result = record.eval(self, request)
        except DNSException as error:
            result = self.result_class("temperror")(self, request, error.text)
        except NoAcceptableRecordError as error:
            result = self.result_class("none")(self, request, error.text)
        except (
            RedundantAcceptableRecordsError,
            SPFSyntaxError,
            ProcessingLimitExceeded,
        ) as error:
            result = self.result_class("permerror")(self, request, error.text)

        logging.debug(
            f"{request.authority_domain}: {result.code} for {request.ip_address}"
            f" ({result.text})"
        )
        return result

    def select_record(self, request: Request) -> Record:
        """
        Finds the one SPF record that applies to a request

        Args:
            request (Request): The request to find a record for

        Returns:
            Record: The record

        Raises:
            :exc:`spfeval.utils.DNSException`
            :exc:`spfeval.exceptions.NoAcceptableRecordError`
            :exc:`spfeval.exceptions.RedundantAcceptableRecordsError`
            :exc:`spfeval.exceptions.SPFSyntaxError`
        """
        domain = request.authority_domain
        versions = request.versions
        scope = request.scope

        records = []
        query_count = 0
        dns_errors = []

        if self.query_rr_types & QueryRRType.SPF:
            query_count += 1
            try:
                response = self.dns_lookup(domain, "SPF")
                records += self.get_acceptable_records_from_response(
                    response, "SPF", versions, scope
                )
            except DNSTimeout as error:
                if not self.spf_timeout_fallback:
                    raise error
                dns_errors.append(error)
            except DNSException as error:
                dns_errors.append(error)

        # NOTE: TXT records are still tried if there are SPF type records,
        # but none of them apply (RFC 7208 § 4.5), unlike the strict
        # reading of RFC 4406 § 4.4
        if len(records) == 0 and self.query_rr_types & QueryRRType.TXT:
            query_count += 1
            try:
                response = self.dns_lookup(domain, "TXT")
                records += self.get_acceptable_records_from_response(
                    response, "TXT", versions, scope
                )
            except DNSException as error:
                dns_errors.append(error)

        # Unless at least one query succeeded, re-raise the first DNS error
        if query_count > 0 and len(dns_errors) == query_count:
            raise dns_errors[0]

        if len(records) == 0:
            # RFC 7208 § 4.5
            raise NoAcceptableRecordError("No applicable sender policy available")

        # Discard all records but the highest version present, regardless of
        # the order of the answers
        preferred_record_class = type(max(records, key=lambda r: r.version))
        records = [r for r in records if type(r) is preferred_record_class]

        if len(records) != 1:
            # RFC 7208 § 4.5
            raise RedundantAcceptableRecordsError(
                f"Redundant applicable '{preferred_record_class.version_tag}' "
                "sender policies found"
            )

        logging.debug(f"{domain}: selected record {records[0]}")
        return records[0]

    def get_acceptable_records_from_response(
        self,
        response: DNSResponse,
        rr_type: str,
        versions: Sequence[int],
        scope: str,
    ) -> list[Record]:
        """
        Parses the SPF records in a DNS response that apply to a scope

        Args:
            response (DNSResponse): A DNS response
            rr_type (str): The record type of the query
            versions (list): Acceptable record versions
            scope (str): The requested scope

        Returns:
            list: A list of records

        Raises:
            :exc:`spfeval.exceptions.SPFSyntaxError`
        """
        # Try higher record versions first
        versions = sorted(versions, reverse=True)

        records = []
        for answer in response["answers"]:
            if answer["type"] != rr_type:
                continue
            text = "".join(answer["strings"])
            record = None
            for version in versions:
                record_class = RECORD_CLASSES_BY_VERSION[version]
                try:
                    record = record_class.new_from_string(text)
                except InvalidRecordVersion:
                    # Not an SPF record, or another version
                    continue
                break
            if record is None:
                continue
            if scope in record.scopes:
                records.append(record)
            else:
                logging.debug(f"Ignoring {record.version_tag} record for {scope}")
        return records

    def dns_lookup(self, domain: Union[str, MacroString], rr_type: str) -> DNSResponse:
        """
        Queries DNS through the server's resolver

        Args:
            domain: A domain name, or a macro string that expands to one
            rr_type (str): The record type to query for

        Returns:
            dict: The DNS response

        Raises:
            :exc:`spfeval.utils.DNSException`
            :exc:`spfeval.utils.DNSTimeout`
        """
        if isinstance(domain, MacroString):
            domain = domain.expand()
        domain = canonicalize_domain(domain)

        try:
            response = self.resolver.query(domain, rr_type)
        except dns.exception.Timeout:
            raise DNSTimeout(f"Time-out on DNS '{rr_type}' lookup of '{domain}'")
        except dns.exception.DNSException as error:
            raise DNSException(
                f"Error on DNS '{rr_type}' lookup of '{domain}': {error}"
            )

        if response is None:
            raise DNSException(f"Unknown error on DNS '{rr_type}' lookup of '{domain}'")

        # NXDOMAIN is an acceptable, but empty answer
        if response["rcode"] not in VALID_RCODES:
            raise DNSException(
                f"'{response['rcode']}' error on DNS '{rr_type}' lookup of '{domain}'"
            )

        return response

    def count_dns_interactive_term(self, request: Request):
        """
        Counts a term that causes DNS queries against the processing limit

        Raises:
            :exc:`spfeval.exceptions.ProcessingLimitExceeded`
        """
        count = request.root_request.limits.count_dns_interactive_term()
        max_terms = self.max_dns_interactive_terms
        if max_terms is not None and count > max_terms:
            logging.debug(f"DNS-interactive term limit hit by {request!r}")
            raise ProcessingLimitExceeded(
                f"Maximum DNS-interactive terms limit ({max_terms}) exceeded "
                "(RFC 7208 § 4.6.4)",
                dns_interactive_terms=count,
            )

    def count_void_dns_lookup(self, request: Request):
        """
        Counts a DNS lookup with no answers against the processing limit

        Raises:
            :exc:`spfeval.exceptions.ProcessingLimitExceeded`
        """
        count = request.root_request.limits.count_void_dns_lookup()
        max_void = self.max_void_dns_lookups
        if max_void is not None and count > max_void:
            logging.debug(f"Void DNS lookup limit hit by {request!r}")
            raise ProcessingLimitExceeded(
                f"Maximum void DNS look-ups limit ({max_void}) exceeded "
                "(RFC 7208 § 4.6.4)",
                void_dns_lookups=count,
            )
