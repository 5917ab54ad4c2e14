# -*- coding: utf-8 -*-
"""SPF macro strings (RFC 7208 § 7)"""

from __future__ import annotations

import ipaddress
import logging
import re
import time
from typing import Optional, TYPE_CHECKING
from urllib.parse import quote

import dns.reversename

from spfeval._constants import SYNTAX_ERROR_MARKER
from spfeval.exceptions import MacroSyntaxError
from spfeval.utils import DNSException

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

MACRO_LETTERS = set("slodiphcrtv")
EXPLANATION_ONLY_MACRO_LETTERS = set("crt")
MACRO_DELIMS = set(".-+,/_=")
SCOPE_MACRO = "_scope"

MACRO_EXPAND_REGEX = re.compile(
    r"%(?:%|_|-|\{(_scope|[a-z])(\d*)(r?)([.\-+,/_=]*)\})", re.IGNORECASE
)


def _raise_macro_syntax_error(
    text: str,
    pos: int,
    reason: str,
    syntax_error_marker: str,
) -> None:
    """Raise MacroSyntaxError with a caret-like marker inside the bad value."""
    marked_text = text[:pos] + syntax_error_marker + text[pos:]
    raise MacroSyntaxError(
        f"{reason} at position {pos} "
        f"(marked with {syntax_error_marker}) in macro string: {marked_text}"
    )


def validate_macro_string(
    text: str,
    *,
    is_explanation: bool = False,
    syntax_error_marker: str = SYNTAX_ERROR_MARKER,
) -> None:
    """
    Validates SPF macro syntax in a domain-spec or explanation string

    This is purely syntactic; no macro expansion or DNS lookups.

    Args:
        text (str): A macro string
        is_explanation (bool): The string is an explanation, so the ``c``,
                               ``r`` and ``t`` macros are allowed
        syntax_error_marker (str): The maker for pointing out syntax errors

    Raises:
        :exc:`spfeval.exceptions.MacroSyntaxError`
    """
    i = 0
    length = len(text)

    while i < length:
        ch = text[i]
        if ch != "%":
            i += 1
            continue

        if i + 1 >= length:
            _raise_macro_syntax_error(
                text, i, "Unterminated macro", syntax_error_marker
            )

        next_ch = text[i + 1]

        # Escapes: %%, %_, %-
        if next_ch in ("%", "_", "-"):
            i += 2
            continue

        if next_ch != "{":
            _raise_macro_syntax_error(
                text, i, "Invalid macro escape", syntax_error_marker
            )

        close = text.find("}", i + 2)
        if close == -1:
            _raise_macro_syntax_error(
                text, i, "Unterminated macro", syntax_error_marker
            )

        body = text[i + 2 : close]
        if not body:
            _raise_macro_syntax_error(text, i, "Empty macro", syntax_error_marker)

        if body.lower().startswith(SCOPE_MACRO):
            if not is_explanation:
                _raise_macro_syntax_error(
                    text,
                    i + 2,
                    "The _scope macro is only allowed in explanations",
                    syntax_error_marker,
                )
            rest = body[len(SCOPE_MACRO) :]
            rest_pos = i + 2 + len(SCOPE_MACRO)
        else:
            letter = body[0].lower()
            if letter not in MACRO_LETTERS:
                _raise_macro_syntax_error(
                    text, i + 2, "Invalid macro letter", syntax_error_marker
                )
            if letter in EXPLANATION_ONLY_MACRO_LETTERS and not is_explanation:
                _raise_macro_syntax_error(
                    text,
                    i + 2,
                    f"The {letter} macro is only allowed in explanations",
                    syntax_error_marker,
                )
            rest = body[1:]
            rest_pos = i + 3

        # transformers: *DIGIT [ "r" ]
        j = 0
        while j < len(rest) and rest[j].isdigit():
            j += 1

        if j and int(rest[:j]) == 0:
            _raise_macro_syntax_error(
                text, rest_pos, "Invalid macro transformer", syntax_error_marker
            )

        if j < len(rest) and rest[j] in ("r", "R"):
            j += 1

        delims = rest[j:]
        for k, d in enumerate(delims):
            if d not in MACRO_DELIMS:
                _raise_macro_syntax_error(
                    text,
                    rest_pos + j + k,
                    "Invalid macro delimiter",
                    syntax_error_marker,
                )

        i = close + 1


def _transform(value: str, digits: str, reverse: str, delimiters: str) -> str:
    # RFC 7208 § 7.3: split, reverse, then keep the right-hand parts
    delimiters = delimiters or "."
    parts = re.split("[" + re.escape(delimiters) + "]", value)
    if reverse:
        parts.reverse()
    if digits:
        parts = parts[-int(digits) :]
    return ".".join(parts)


def get_ptr_names(server: Server, request: Request) -> list[str]:
    """
    Looks up the PTR names of the request's client IP address

    Args:
        server (Server): The SPF server
        request (Request): The request being evaluated

    Returns:
        list: A list of hostnames

    Raises:
        :exc:`spfeval.utils.DNSException`
    """
    reverse_name = dns.reversename.from_address(str(request.ip_address)).to_text()
    response = server.dns_lookup(reverse_name, "PTR")
    return [a["data"].lower() for a in response["answers"] if a["type"] == "PTR"]


def is_validated_name(server: Server, request: Request, name: str) -> bool:
    """
    Checks if a PTR name resolves back to the request's client IP address

    Raises:
        :exc:`spfeval.utils.DNSException`
    """
    ip_address = request.ip_address
    rr_type = "A" if ip_address.version == 4 else "AAAA"
    response = server.dns_lookup(name, rr_type)
    addresses = [a["data"] for a in response["answers"] if a["type"] == rr_type]
    return any(
        ipaddress.ip_address(address) == ip_address for address in addresses
    )


def get_validated_domain(server: Server, request: Request) -> str:
    """
    Gets the validated domain name of the request's client IP address,
    as used by the ``p`` macro

    Args:
        server (Server): The SPF server
        request (Request): The request being evaluated

    Returns:
        str: The validated domain name, or ``unknown``
    """
    authority_domain = request.authority_domain.lower()
    validated = []
    try:
        names = get_ptr_names(server, request)
        max_names = server.max_name_lookups_per_term
        if max_names is not None:
            names = names[:max_names]
        for name in names:
            if is_validated_name(server, request, name):
                validated.append(name)
    except DNSException as error:
        logging.debug(
            f"Validated domain lookup for {request.ip_address} failed: {error}"
        )
        return "unknown"

    for name in validated:
        if name == authority_domain or name.endswith(f".{authority_domain}"):
            return name
    if validated:
        return validated[0]
    return "unknown"


class MacroString(object):
    """A domain-spec or explanation string that may contain SPF macros"""

    def __init__(
        self,
        text: str,
        *,
        server: Optional[Server] = None,
        request: Optional[Request] = None,
        is_explanation: bool = False,
    ):
        """
        Args:
            text (str): The unexpanded macro string
            server (Server): The server to expand the macros with
            request (Request): The request to expand the macros for
            is_explanation (bool): The string is an explanation

        Raises:
            :exc:`spfeval.exceptions.MacroSyntaxError`
        """
        validate_macro_string(text, is_explanation=is_explanation)
        self.text = text
        self.server = server
        self.request = request
        self.is_explanation = is_explanation

    def __str__(self):
        return self.text

    def __repr__(self):
        return f"MacroString({self.text!r})"

    def _macro_value(self, letter: str, server: Server, request: Request) -> str:
        ip_address = request.ip_address
        if letter == "s":
            return request.sender
        elif letter == "l":
            return request.local_part
        elif letter == "o":
            return request.domain
        elif letter == "d":
            return request.authority_domain
        elif letter == "i":
            if ip_address.version == 6:
                return ".".join(ip_address.exploded.replace(":", ""))
            return str(ip_address)
        elif letter == "p":
            return get_validated_domain(server, request)
        elif letter == "v":
            return "ip6" if ip_address.version == 6 else "in-addr"
        elif letter == "h":
            return request.helo_identity or "unknown"
        elif letter == "c":
            return str(ip_address)
        elif letter == "r":
            return (server.hostname if server else None) or "unknown"
        elif letter == "t":
            return str(int(time.time()))
        return request.scope

    def expand(
        self,
        server: Optional[Server] = None,
        request: Optional[Request] = None,
    ) -> str:
        """
        Expands the macros in the string

        Args:
            server (Server): The server, if not bound at construction
            request (Request): The request, if not bound at construction

        Returns:
            str: The expanded string
        """
        server = server or self.server
        request = request or self.request

        def _expand(match: re.Match) -> str:
            token = match.group(0)
            if token == "%%":
                return "%"
            elif token == "%_":
                return " "
            elif token == "%-":
                return "%20"
            if request is None:
                raise ValueError(f"Expanding {token} requires a request")
            letter, digits, reverse, delimiters = match.groups()
            value = self._macro_value(letter.lower(), server, request)
            if digits or reverse or delimiters:
                value = _transform(value, digits, reverse, delimiters)
            if letter[-1].isupper():
                value = quote(value, safe="")
            return value

        return MACRO_EXPAND_REGEX.sub(_expand, self.text)
