# -*- coding: utf-8 -*-
"""SPF processing errors"""

from __future__ import annotations

from typing import Optional

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


class SPFError(Exception):
    """Raised when a fatal SPF error occurs"""

    def __init__(self, msg: str, data: Optional[dict] = None):
        """
        Args:
            msg (str): The error message
            data (dict): A dictionary of data to include in the output
        """
        self.text = msg
        self.data = data
        Exception.__init__(self, msg)


class SPFSyntaxError(SPFError):
    """Raised when an SPF syntax error is found"""


class MacroSyntaxError(SPFSyntaxError):
    """Raised when a macro string is malformed"""


class InvalidRecordVersion(SPFError):
    """Raised when a record is not tagged with the expected SPF version"""


class NoAcceptableRecordError(SPFError):
    """Raised when no applicable sender policy could be found"""


class RedundantAcceptableRecordsError(SPFError):
    """Raised when more than one applicable sender policy is found"""


class ProcessingLimitExceeded(SPFError):
    """Raised when evaluating a policy exceeds a processing limit"""

    def __init__(self, msg: str, **kwargs):
        SPFError.__init__(self, msg, data=kwargs or None)
