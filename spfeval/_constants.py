# -*- coding: utf-8 -*-
"""Constant values"""

from __future__ import annotations
import os

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

__version__ = "1.0.0"

SYNTAX_ERROR_MARKER = "➞"
DEFAULT_DNS_TIMEOUT = 2.0
CACHE_MAX_LEN = 200000
CACHE_MAX_AGE_SECONDS = 1800

# RFC 4408 § 10.1 / RFC 7208 § 4.6.4
DEFAULT_MAX_DNS_INTERACTIVE_TERMS = 10
DEFAULT_MAX_NAME_LOOKUPS_PER_TERM = 10
DEFAULT_MAX_VOID_DNS_LOOKUPS = 2

DEFAULT_AUTHORITY_EXPLANATION = (
    "Please see http://www.open-spf.org/Why?s=%{_scope};id=%{S};ip=%{C};r=%{R}"
)

env = os.environ

if "CACHE_MAX_LEN" in env:
    CACHE_MAX_LEN = int(env["CACHE_MAX_LEN"])
if "CACHE_MAX_AGE_SECONDS" in env:
    CACHE_MAX_AGE_SECONDS = int(env["CACHE_MAX_AGE_SECONDS"])

DNS_CACHE_MAX_LEN = CACHE_MAX_LEN
if "DNS_CACHE_MAX_LEN" in env:
    DNS_CACHE_MAX_LEN = int(env["DNS_CACHE_MAX_LEN"])
DNS_CACHE_MAX_AGE_SECONDS = CACHE_MAX_AGE_SECONDS
if "DNS_CACHE_MAX_AGE_SECONDS" in env:
    DNS_CACHE_MAX_AGE_SECONDS = int(env["DNS_CACHE_MAX_AGE_SECONDS"])

if "SPF_MAX_DNS_INTERACTIVE_TERMS" in env:
    DEFAULT_MAX_DNS_INTERACTIVE_TERMS = int(env["SPF_MAX_DNS_INTERACTIVE_TERMS"])
if "SPF_MAX_NAME_LOOKUPS_PER_TERM" in env:
    DEFAULT_MAX_NAME_LOOKUPS_PER_TERM = int(env["SPF_MAX_NAME_LOOKUPS_PER_TERM"])
if "SPF_MAX_VOID_DNS_LOOKUPS" in env:
    DEFAULT_MAX_VOID_DNS_LOOKUPS = int(env["SPF_MAX_VOID_DNS_LOOKUPS"])
