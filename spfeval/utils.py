# -*- coding: utf-8 -*-
"""DNS utility functions"""

from __future__ import annotations

import logging
import re
import socket
import unicodedata
from typing import Optional, TypedDict
from collections.abc import Sequence

import dns.exception
import dns.rcode
import dns.rdatatype
import dns.resolver
from dns.nameserver import Nameserver
import publicsuffixlist
from expiringdict import ExpiringDict

from spfeval._constants import (
    DEFAULT_DNS_TIMEOUT,
    DNS_CACHE_MAX_AGE_SECONDS,
    DNS_CACHE_MAX_LEN,
)

"""Copyright 2019-2023 Sean Whalen

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

   https://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License."""

DNS_CACHE = ExpiringDict(
    max_len=DNS_CACHE_MAX_LEN, max_age_seconds=DNS_CACHE_MAX_AGE_SECONDS
)

# RFC 1035 § 2.3.4
MAX_LABEL_LENGTH = 63
MAX_DOMAIN_LENGTH = 253

ZERO_WIDTH_RE = re.compile(r"[\u200B-\u200D\uFEFF]")  # includes ZWSP, ZWNJ, ZWJ, BOM
PSL = publicsuffixlist.PublicSuffixList()

# Response codes that still count as a usable answer
VALID_RCODES = ("NOERROR", "NXDOMAIN")


class DNSAnswer(TypedDict):
    type: str
    strings: list[str]
    data: str


class DNSResponse(TypedDict):
    rcode: str
    answers: list[DNSAnswer]


class DNSException(Exception):
    """Raised when a general DNS error occurs"""

    def __init__(self, msg: str):
        self.text = msg
        Exception.__init__(self, msg)


class DNSTimeout(DNSException):
    """Raised when a DNS query times out"""


def normalize_domain(domain: str) -> str:
    """
    Normalize an input domain by removing zero-width characters and lowering it

    Args:
        domain (str): A domain or subdomain

    Returns:
        str: A normalized domain
    """
    domain = unicodedata.normalize("NFC", domain)
    domain = ZERO_WIDTH_RE.sub("", domain)
    return domain.lower()


def get_base_domain(domain: str) -> str:
    """
    Gets the base domain name for the given domain

    .. note::
        Results are based on a list of public domain suffixes at
        https://publicsuffix.org/list/public_suffix_list.dat.

    Args:
        domain (str): A domain or subdomain

    Returns:
        str: The base domain of the given domain

    """
    domain = normalize_domain(domain)
    return PSL.privatesuffix(domain) or domain


def canonicalize_domain(domain: str) -> str:
    """
    Brings a domain name into a form that is legal in a DNS query

    Overlong labels are cut to their first 63 bytes (RFC 4408 § 8.1/27),
    and leading labels are dropped while the name is longer than 253
    bytes (RFC 4408 § 8.1/25).

    Args:
        domain (str): A domain name

    Returns:
        str: A lowercase domain name without a trailing dot
    """
    domain = domain.lower().rstrip(".")
    labels = []
    for label in domain.split("."):
        encoded_label = label.encode("utf-8")
        if len(encoded_label) > MAX_LABEL_LENGTH:
            label = encoded_label[:MAX_LABEL_LENGTH].decode("utf-8", errors="ignore")
        labels.append(label)
    domain = ".".join(labels)
    while len(domain.encode("utf-8")) > MAX_DOMAIN_LENGTH and "." in domain:
        domain = domain.split(".", 1)[1]

    return domain


def get_hostname() -> str:
    """Returns the fully qualified name of the local host"""
    return socket.getfqdn()


def _decode_character_string(segment: bytes) -> str:
    try:
        return segment.decode()
    except UnicodeDecodeError:
        return "Undecodable characters"


def _answer_from_rdata(rdtype: int, rdata) -> DNSAnswer:
    rr_type = dns.rdatatype.to_text(rdtype)
    strings = []
    if rr_type in ("TXT", "SPF"):
        strings = list(map(_decode_character_string, rdata.strings))
        data = "".join(strings)
    elif rr_type == "MX":
        data = rdata.exchange.to_text().rstrip(".")
    elif rr_type in ("PTR", "CNAME"):
        data = rdata.target.to_text().rstrip(".")
    else:
        data = rdata.to_text()
    answer: DNSAnswer = {"type": rr_type, "strings": strings, "data": data}
    return answer


class DNSResolver(object):
    """
    Issues single DNS queries and reports their outcome as a
    :class:`DNSResponse`

    Timeouts are raised as :exc:`dns.exception.Timeout`. A ``None`` return
    value means that no response could be obtained at all.
    """

    def __init__(
        self,
        resolver: Optional[dns.resolver.Resolver] = None,
        *,
        nameservers: Optional[Sequence[str | Nameserver]] = None,
        timeout: float = DEFAULT_DNS_TIMEOUT,
        cache: Optional[ExpiringDict] = None,
    ):
        """
        Args:
            resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                              requests
            nameservers (list): A list of one or more nameservers to use
            timeout (float): Sets the DNS timeout in seconds
            cache (ExpiringDict): Cache storage
        """
        timeout = float(timeout)
        if resolver is None:
            resolver = dns.resolver.Resolver()
            if nameservers is not None:
                resolver.nameservers = nameservers
            resolver.timeout = timeout
            resolver.lifetime = timeout
        if cache is None:
            cache = DNS_CACHE
        self.resolver = resolver
        self.timeout = timeout
        self.cache = cache

    def query(self, domain: str, rr_type: str) -> Optional[DNSResponse]:
        """
        Queries DNS

        Args:
            domain (str): The domain or subdomain to query about
            rr_type (str): The record type to query for

        Returns:
            dict: A ``dict`` with the following keys:
                - ``rcode`` - The response code, e.g. ``NOERROR``
                - ``answers`` - A ``list`` of answers of the requested type

        Raises:
            :exc:`dns.exception.Timeout`
        """
        domain = normalize_domain(domain)
        rr_type = rr_type.upper()
        cache_key = f"{domain}_{rr_type}"
        if isinstance(self.cache, ExpiringDict):
            response = self.cache.get(cache_key)
            if response is not None:
                return response
        logging.debug(f"Querying {rr_type} records for {domain}")
        try:
            answer = self.resolver.resolve(
                domain,
                rr_type,
                lifetime=self.timeout,
                raise_on_no_answer=False,
                search=False,
            )
        except dns.resolver.NXDOMAIN:
            response: DNSResponse = {"rcode": "NXDOMAIN", "answers": []}
        except dns.resolver.YXDOMAIN:
            return {"rcode": "YXDOMAIN", "answers": []}
        except dns.resolver.NoNameservers:
            return {"rcode": "SERVFAIL", "answers": []}
        except dns.exception.Timeout:
            raise
        except dns.exception.DNSException as error:
            logging.debug(f"{rr_type} query for {domain} failed: {error}")
            return None
        else:
            answers = []
            if answer.rrset is not None:
                for rdata in answer.rrset:
                    answers.append(_answer_from_rdata(answer.rrset.rdtype, rdata))
            response = {
                "rcode": dns.rcode.to_text(answer.response.rcode()),
                "answers": answers,
            }

        if isinstance(self.cache, ExpiringDict) and response["rcode"] in VALID_RCODES:
            self.cache[cache_key] = response

        return response
