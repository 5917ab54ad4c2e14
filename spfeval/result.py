# -*- coding: utf-8 -*-
"""SPF evaluation results"""

from __future__ import annotations

from typing import Optional, TYPE_CHECKING

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

# RFC 7208 § 9.1
RECEIVED_SPF_IDENTITIES = {
    "mfrom": "mailfrom",
    "helo": "helo",
    "pra": "pra",
}


class Result(object):
    """
    The outcome of an SPF check

    Results are returned by :meth:`spfeval.server.Server.process`; they are
    never raised. Use :meth:`Result.by_name` to look up the class for a
    result code.
    """

    code: str = ""
    description = "{authority_domain}: {ip_address} was checked"

    def __init__(self, server: Server, request: Request, text: Optional[str] = None):
        """
        Args:
            server (Server): The server that produced the result
            request (Request): The request the result is for
            text (str): Text explaining the result
        """
        self.server = server
        self.request = request
        self.text = text

    def __str__(self):
        return self.code

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.code}: {self.text!r}>"

    @classmethod
    def by_name(cls, name: str) -> type[Result]:
        """
        Returns the result class for the given result code

        Args:
            name (str): A result code, e.g. ``pass``

        Returns:
            type: A subclass of :class:`Result`

        Raises:
            :exc:`ValueError`
        """
        try:
            return RESULT_CLASSES[name.lower()]
        except KeyError:
            raise ValueError(f"Unknown SPF result code: {name}")

    def is_code(self, code: str) -> bool:
        """Checks if the result has the given result code"""
        return self.code == code.lower()

    @property
    def local_explanation(self) -> str:
        """A receiver-side explanation of the result"""
        request = self.request
        explanation = self.description.format(
            authority_domain=request.authority_domain,
            ip_address=request.ip_address,
            identity=request.identity,
            scope=request.scope,
        )
        if self.text:
            return f"{explanation} ({self.text})"
        return explanation

    def received_spf_header(self) -> str:
        """
        Builds a ``Received-SPF`` header for the result (RFC 7208 § 9.1)

        Returns:
            str: The header, including its name
        """
        request = self.request
        pairs = [f"client-ip={request.ip_address}"]
        if request.scope == "mfrom":
            pairs.append(f'envelope-from="{request.identity}"')
        if request.helo_identity:
            pairs.append(f"helo={request.helo_identity}")
        if self.server.hostname:
            pairs.append(f"receiver={self.server.hostname}")
        identity = RECEIVED_SPF_IDENTITIES[request.scope]
        pairs.append(f"identity={identity}")
        if self.code in ("temperror", "permerror") and self.text:
            pairs.append(f'problem="{self.text}"')
        comment = self.local_explanation.replace("(", "[").replace(")", "]")
        return f"Received-SPF: {self.code} ({comment}) {'; '.join(pairs)}"

    def to_dict(self) -> dict:
        """
        Returns the result as a ``dict`` with the following keys:

        - ``result`` - The result code
        - ``text`` - Text explaining the result
        - ``local_explanation`` - A receiver-side explanation
        """
        return {
            "result": self.code,
            "text": self.text,
            "local_explanation": self.local_explanation,
        }


class PassResult(Result):
    code = "pass"
    description = (
        "{authority_domain}: {ip_address} is authorized to use "
        "'{identity}' in '{scope}' identity"
    )


class FailResult(Result):
    code = "fail"
    description = (
        "{authority_domain}: {ip_address} is not authorized to use "
        "'{identity}' in '{scope}' identity"
    )

    @property
    def authority_explanation(self) -> Optional[str]:
        """The explanation published by the authority domain"""
        return self.request.state("authority_explanation")

    def to_dict(self) -> dict:
        result = Result.to_dict(self)
        result["authority_explanation"] = self.authority_explanation
        return result


class SoftFailResult(Result):
    code = "softfail"
    description = (
        "{authority_domain}: {ip_address} is not authorized by default to use "
        "'{identity}' in '{scope}' identity, however the domain is not "
        "currently prepared for false failures"
    )


class NeutralResult(Result):
    code = "neutral"
    description = (
        "{authority_domain}: {ip_address} is neither permitted nor denied "
        "to use '{identity}' in '{scope}' identity"
    )


class NoneResult(Result):
    code = "none"
    description = (
        "{authority_domain}: No applicable sender policy available for "
        "'{identity}' in '{scope}' identity"
    )


class TempErrorResult(Result):
    code = "temperror"
    description = (
        "{authority_domain}: A transient error occurred while checking "
        "'{identity}' in '{scope}' identity"
    )


class PermErrorResult(Result):
    code = "permerror"
    description = (
        "{authority_domain}: The sender policy for '{identity}' in "
        "'{scope}' identity could not be interpreted"
    )


RESULT_CLASSES: dict[str, type[Result]] = {
    result_class.code: result_class
    for result_class in (
        PassResult,
        FailResult,
        SoftFailResult,
        NeutralResult,
        NoneResult,
        TempErrorResult,
        PermErrorResult,
    )
}
