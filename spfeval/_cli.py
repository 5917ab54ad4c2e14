#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Checks SMTP clients against Sender Policy Framework (SPF) policies"""

from __future__ import annotations

import os
from argparse import ArgumentParser

import logging

from spfeval import (
    __version__,
    QueryRRType,
    Server,
    check_hosts,
    results_to_json,
    results_to_csv,
    output_to_file,
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

QUERY_RR_TYPES = {
    "none": QueryRRType.NONE,
    "txt": QueryRRType.TXT,
    "spf": QueryRRType.SPF,
    "all": QueryRRType.ALL,
}


def _read_checks(path: str) -> list[list[str]]:
    checks = []
    with open(path) as checks_file:
        for line in checks_file.readlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            check = list(map(lambda c: c.strip(), line.split(",")))
            if len(check) < 2:
                logging.warning(f"Skipping malformed line: {line}")
                continue
            checks.append(check)
    return checks


def _main():
    """Called when the module in executed"""
    arg_parser = ArgumentParser(description=__doc__)
    arg_parser.add_argument(
        "check",
        nargs="+",
        help="an IP address and an identity, or a single path to a "
        "file containing lines of ip_address,identity[,helo_identity]",
    )
    arg_parser.add_argument("--helo", help="the HELO/EHLO domain of the client")
    arg_parser.add_argument(
        "-s",
        "--scope",
        default="mfrom",
        choices=["mfrom", "helo", "pra"],
        help="the identity scope to check (default mfrom)",
    )
    arg_parser.add_argument(
        "-q",
        "--query-rr-types",
        default="txt",
        choices=list(QUERY_RR_TYPES.keys()),
        help="the DNS record types to query for SPF records (default txt)",
    )
    arg_parser.add_argument(
        "-f",
        "--format",
        default="json",
        help="specify JSON or CSV screen output format",
    )
    arg_parser.add_argument(
        "-o",
        "--output",
        nargs="+",
        help="one or more file paths to output to "
        "(must end in .json or .csv) "
        "(silences screen output)",
    )
    arg_parser.add_argument(
        "--header",
        action="store_true",
        help="print only the Received-SPF header of each result",
    )
    arg_parser.add_argument(
        "-n", "--nameserver", nargs="+", help="nameservers to query"
    )
    arg_parser.add_argument(
        "-t",
        "--timeout",
        help="number of seconds to wait for an answer from DNS (default 2.0)",
        type=float,
        default=2.0,
    )
    arg_parser.add_argument(
        "-w",
        "--wait",
        type=float,
        help="number of seconds to wait between checks (default 0.0)",
        default=0.0,
    )
    arg_parser.add_argument("-v", "--version", action="version", version=__version__)
    arg_parser.add_argument(
        "--debug", action="store_true", help="enable debugging output"
    )

    args = arg_parser.parse_args()

    logging_format = "%(asctime)s - %(levelname)s: %(message)s"
    logging.basicConfig(level=logging.WARNING, format=logging_format)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.debug("Debug output enabled")

    if len(args.check) == 1 and os.path.exists(args.check[0]):
        checks = _read_checks(args.check[0])
    elif len(args.check) == 2:
        checks = [[args.check[0], args.check[1], args.helo or ""]]
    else:
        arg_parser.error("expected an IP address and an identity, or a file path")

    server = Server(
        query_rr_types=QUERY_RR_TYPES[args.query_rr_types],
        nameservers=args.nameserver,
        timeout=args.timeout,
    )
    results = check_hosts(checks, scope=args.scope, server=server, wait=args.wait)

    if args.header:
        if type(results) is dict:
            results = [results]
        for result in results:
            print(result["received_spf"])
    elif args.output is None:
        if args.format.lower() == "json":
            results = results_to_json(results)
        elif args.format.lower() == "csv":
            results = results_to_csv(results)
        print(results)
    else:
        for path in args.output:
            json_path = path.lower().endswith(".json")
            csv_path = path.lower().endswith(".csv")

            if not json_path and not csv_path:
                logging.error(f"Output path {path} must end in .json or .csv")
            else:
                if json_path:
                    output_to_file(path, results_to_json(results))
                elif csv_path:
                    output_to_file(path, results_to_csv(results))


if __name__ == "__main__":
    _main()
