# -*- coding: utf-8 -*-

"""Evaluates Sender Policy Framework (SPF) policies for SMTP clients"""

from __future__ import annotations

import json
import logging
from csv import DictWriter
from io import StringIO
from time import sleep
from typing import Optional, Union
from collections.abc import Sequence

import dns.resolver
from dns.nameserver import Nameserver

import spfeval._constants
from spfeval.exceptions import (
    InvalidRecordVersion,
    MacroSyntaxError,
    NoAcceptableRecordError,
    ProcessingLimitExceeded,
    RedundantAcceptableRecordsError,
    SPFError,
    SPFSyntaxError,
)
from spfeval.macro import MacroString
from spfeval.record import Record, RecordV1, RecordV2
from spfeval.request import LimitTracker, Request
from spfeval.result import Result
from spfeval.server import QueryRRType, Server
from spfeval.utils import (
    DNSException,
    DNSResolver,
    DNSTimeout,
    canonicalize_domain,
    get_base_domain,
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


__version__ = spfeval._constants.__version__

__all__ = [
    "__version__",
    "check_host",
    "check_hosts",
    "results_to_json",
    "results_to_csv_rows",
    "results_to_csv",
    "output_to_file",
    "Server",
    "QueryRRType",
    "Request",
    "LimitTracker",
    "Record",
    "RecordV1",
    "RecordV2",
    "Result",
    "MacroString",
    "DNSResolver",
    "DNSException",
    "DNSTimeout",
    "SPFError",
    "SPFSyntaxError",
    "MacroSyntaxError",
    "InvalidRecordVersion",
    "NoAcceptableRecordError",
    "RedundantAcceptableRecordsError",
    "ProcessingLimitExceeded",
    "canonicalize_domain",
]


def check_host(
    ip_address: str,
    identity: str,
    *,
    helo_identity: Optional[str] = None,
    scope: str = "mfrom",
    server: Optional[Server] = None,
    query_rr_types: QueryRRType = QueryRRType.TXT,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = 2.0,
) -> dict:
    """
    Checks if an IP address may send mail using the given identity

    Args:
        ip_address (str): The IP address of the SMTP client
        identity (str): The ``MAIL FROM`` address, or the HELO domain for the
                        ``helo`` scope
        helo_identity (str): The domain given by the client in HELO/EHLO
        scope (str): ``mfrom``, ``helo`` or ``pra``
        server (Server): A preconfigured server to use; the remaining
                         arguments are ignored if this is provided
        query_rr_types (QueryRRType): The DNS record types to query for
                                      SPF records
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): number of seconds to wait for an answer from DNS

    Returns:
        dict: A ``dict`` with the following keys:

         - ``ip_address`` - The client IP address
         - ``identity`` - The checked identity
         - ``scope`` - The checked scope
         - ``helo_identity`` - The HELO/EHLO domain, if any
         - ``domain`` - The domain of the identity
         - ``base_domain`` - The base domain of the identity
         - ``record`` - The selected SPF record, if any
         - ``result`` - The result code
         - ``text`` - Text explaining the result
         - ``local_explanation`` - A receiver-side explanation
         - ``authority_explanation`` - The domain's explanation (``fail``
           only)
         - ``received_spf`` - A ``Received-SPF`` header

    Raises:
        :exc:`ValueError`
    """
    if server is None:
        server = Server(
            query_rr_types=query_rr_types,
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
        )
    request = Request(
        identity,
        ip_address,
        scope=scope,
        helo_identity=helo_identity,
    )
    logging.debug(f"Checking: {request!r}")
    result = server.process(request)

    results = {
        "ip_address": str(request.ip_address),
        "identity": request.identity,
        "scope": request.scope,
        "helo_identity": request.helo_identity,
        "domain": request.domain,
        "base_domain": get_base_domain(request.domain),
        "record": None,
    }
    if request.record is not None:
        results["record"] = request.record.text
    results.update(result.to_dict())
    results["received_spf"] = result.received_spf_header()

    return results


def check_hosts(
    checks: Sequence[Sequence[str]],
    *,
    scope: str = "mfrom",
    server: Optional[Server] = None,
    query_rr_types: QueryRRType = QueryRRType.TXT,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = 2.0,
    wait: float = 0.0,
) -> Union[dict, list[dict]]:
    """
    Checks a list of SMTP clients against the SPF policies of their identities

    Args:
        checks (list): A list of ``(ip_address, identity)`` or
                       ``(ip_address, identity, helo_identity)`` items
        scope (str): ``mfrom``, ``helo`` or ``pra``
        server (Server): A preconfigured server to use
        query_rr_types (QueryRRType): The DNS record types to query for
                                      SPF records
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): number of seconds to wait for an answer from DNS
        wait (float): number of seconds to wait between checks

    Returns:
       A ``dict`` or ``list`` of ``dict``, see :func:`check_host`
    """
    if server is None:
        server = Server(
            query_rr_types=query_rr_types,
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
        )
    results = []
    for check in checks:
        ip_address, identity = check[0].strip(), check[1].strip()
        helo_identity = None
        if len(check) > 2 and check[2].strip():
            helo_identity = check[2].strip()
        results.append(
            check_host(
                ip_address,
                identity,
                helo_identity=helo_identity,
                scope=scope,
                server=server,
            )
        )
        if wait > 0.0:
            logging.debug(f"Sleeping for {wait} seconds")
            sleep(wait)
    if len(results) == 1:
        results = results[0]

    return results


def results_to_json(
    results: Union[dict[str, object], list[dict[str, str]]],
) -> str:
    """
    Converts a dictionary of results or list of results to a JSON string

    Args:
        results (dict): A dictionary of results

    Returns:
        str: Results in JSON format
    """
    return json.dumps(results, ensure_ascii=False, indent=2)


CSV_FIELDS = [
    "ip_address",
    "identity",
    "scope",
    "helo_identity",
    "domain",
    "base_domain",
    "result",
    "text",
    "record",
    "local_explanation",
    "authority_explanation",
    "received_spf",
]


def results_to_csv_rows(
    results: Union[dict, list[dict]],
) -> list[dict]:
    """
    Converts a results dictionary or list of dictionaries and returns a
    list of CSV row dictionaries

    Args:
        results (dict): A dictionary of results

    Returns:
        list: A list of CSV row dictionaries
    """
    rows = []

    if type(results) is dict:
        results = [results]

    for result in results:
        row = {field: result.get(field) for field in CSV_FIELDS}
        rows.append(row)
    return rows


def results_to_csv(results: Union[dict, list[dict]]) -> str:
    """
    Converts a dictionary of results to CSV

    Args:
        results (dict): A dictionary of results

    Returns:
        str: A CSV of results
    """
    output = StringIO(newline="\n")
    writer = DictWriter(output, fieldnames=CSV_FIELDS)
    writer.writeheader()
    rows = results_to_csv_rows(results)
    writer.writerows(rows)
    output.flush()

    return output.getvalue()


def output_to_file(path: str, content: str):
    """
    Write given content to the given path

    Args:
        path (str): A file path
        content (str): JSON or CSV text
    """
    with open(
        path, "w", newline="\n", encoding="utf-8", errors="ignore"
    ) as output_file:
        output_file.write(content)
