# -*- coding: utf-8 -*-
"""SPF check requests"""

from __future__ import annotations

import ipaddress
from typing import Any, Optional, Union, TYPE_CHECKING
from collections.abc import Sequence

from spfeval.utils import normalize_domain

if TYPE_CHECKING:
    from spfeval.record import Record

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

DEFAULT_LOCAL_PART = "postmaster"

# Record versions that may be used for each scope
VERSIONS_BY_SCOPE: dict[str, tuple[int, ...]] = {
    "mfrom": (1, 2),
    "helo": (1,),
    "pra": (2,),
}

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class LimitTracker(object):
    """
    Processing limit counters for one evaluation tree

    One tracker is created with each root request and handed by reference
    to every sub-request spawned from it.
    """

    def __init__(self):
        self.dns_interactive_terms = 0
        self.void_dns_lookups = 0

    def __repr__(self):
        return (
            f"<LimitTracker dns_interactive_terms={self.dns_interactive_terms} "
            f"void_dns_lookups={self.void_dns_lookups}>"
        )

    def reset(self):
        self.dns_interactive_terms = 0
        self.void_dns_lookups = 0

    def count_dns_interactive_term(self) -> int:
        self.dns_interactive_terms += 1
        return self.dns_interactive_terms

    def count_void_dns_lookup(self) -> int:
        self.void_dns_lookups += 1
        return self.void_dns_lookups


def _parse_ip_address(ip_address: Union[str, IPAddress]) -> IPAddress:
    ip_address = ipaddress.ip_address(ip_address)
    # IPv4-mapped IPv6 addresses are checked as IPv4 (RFC 7208 § 5)
    if isinstance(ip_address, ipaddress.IPv6Address) and ip_address.ipv4_mapped:
        return ip_address.ipv4_mapped
    return ip_address


class Request(object):
    """An SPF check of one identity for one client IP address"""

    def __init__(
        self,
        identity: str,
        ip_address: Union[str, IPAddress],
        *,
        scope: str = "mfrom",
        versions: Optional[Sequence[int]] = None,
        helo_identity: Optional[str] = None,
        authority_domain: Optional[str] = None,
        root_request: Optional[Request] = None,
        super_request: Optional[Request] = None,
        limits: Optional[LimitTracker] = None,
    ):
        """
        Args:
            identity (str): The identity to check; a mailbox or domain for
                            the ``mfrom`` and ``pra`` scopes, a domain for
                            the ``helo`` scope
            ip_address (str): The IP address of the SMTP client
            scope (str): ``mfrom``, ``helo`` or ``pra``
            versions (list): Acceptable record versions, in order of
                             preference
            helo_identity (str): The domain given by the client in HELO/EHLO
            authority_domain (str): The domain whose policy is checked;
                                    defaults to the identity's domain

        Raises:
            :exc:`ValueError`
        """
        scope = scope.lower()
        if scope not in VERSIONS_BY_SCOPE:
            raise ValueError(f"Invalid SPF scope: {scope}")
        if versions is None:
            versions = VERSIONS_BY_SCOPE[scope]
        versions = tuple(versions)
        for version in versions:
            if version not in VERSIONS_BY_SCOPE[scope]:
                raise ValueError(
                    f"SPF version {version} does not support the {scope} scope"
                )

        self.identity = identity
        self.scope = scope
        self.versions = versions
        self.ip_address = _parse_ip_address(ip_address)
        self.helo_identity = helo_identity

        if scope == "helo" or "@" not in identity:
            local_part, domain = "", identity
        else:
            local_part, domain = identity.rsplit("@", 1)
        self.local_part = local_part or DEFAULT_LOCAL_PART
        self.domain = normalize_domain(domain).rstrip(".")
        self.sender = f"{self.local_part}@{self.domain}"
        self.authority_domain = authority_domain or self.domain

        self._root_request = root_request
        self.super_request = super_request
        self.limits = limits if limits is not None else LimitTracker()
        self._state: dict[str, Any] = {}
        self._record: Optional[Record] = None

    def __repr__(self):
        return (
            f"<Request {self.scope}:{self.identity} ip={self.ip_address} "
            f"authority_domain={self.authority_domain}>"
        )

    @property
    def root_request(self) -> Request:
        """The request at the root of this evaluation tree"""
        return self._root_request or self

    @property
    def is_root(self) -> bool:
        return self._root_request is None

    @property
    def record(self) -> Optional[Record]:
        """The record selected for this request"""
        return self._record

    @record.setter
    def record(self, record: Record):
        if self._record is not None:
            raise ValueError(f"A record has already been selected for {self!r}")
        self._record = record

    def clear_record(self):
        """Empties the record slot so the request can be processed again"""
        self._record = None

    def state(self, key: str, default: Any = None) -> Any:
        """Gets a per-request state value"""
        return self._state.get(key, default)

    def set_state(self, key: str, value: Any):
        """Sets a per-request state value"""
        self._state[key] = value

    def new_sub_request(self, **kwargs) -> Request:
        """
        Creates a request for a nested policy check, e.g. for an ``include``
        mechanism or a ``redirect`` modifier

        The sub-request shares this request's root and processing limits.

        Args:
            **kwargs: Request attributes to override, e.g.
                      ``authority_domain``

        Returns:
            Request: A new request
        """
        options = {
            "scope": self.scope,
            "versions": self.versions,
            "helo_identity": self.helo_identity,
            "authority_domain": self.authority_domain,
        }
        options.update(kwargs)
        return Request(
            self.identity,
            self.ip_address,
            root_request=self.root_request,
            super_request=self,
            limits=self.limits,
            **options,
        )
