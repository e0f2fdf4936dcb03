# @file external_tools.py
# This module contains the wrappers around the external programs that do the
# cryptographic work of the key generator: openssl for keys and certificates,
# sbsiglist for EFI signature lists and sbvarsign for authenticated variables.
#
##
# Copyright (C) Microsoft Corporation
#
# SPDX-License-Identifier: BSD-2-Clause-Patent
##
"""Wrappers around the external programs used to build Secure Boot keys.

Each wrapper builds the parameter string for one step, runs the tool through
edk2toollib's RunCmd and returns a ToolResult holding the exit code and the
combined stdout/stderr of the tool. Nothing here raises on a tool failure;
the caller decides what a failed step means.
"""

import io
import logging
import shlex
from dataclasses import dataclass
from typing import Optional

from edk2toollib.utility_functions import RunCmd

OPENSSL = "openssl"
SBSIGLIST = "sbsiglist"
SBVARSIGN = "sbvarsign"
KNOWN_TOOLS = (OPENSSL, SBSIGLIST, SBVARSIGN)

# RunCmd only double quotes an executable containing spaces
SHELL_METACHARACTERS = "$`\"'\\;&|<>(){}*?[]!#~\n"


@dataclass
class ToolResult:
    """Outcome of one external tool invocation.

    Attributes:
        tool (str): the tool name, e.g. "openssl"
        returncode (int): the exit code of the tool
        output (str): combined stdout and stderr of the tool
    """

    tool: str
    returncode: int
    output: str = ""

    @property
    def ok(self) -> bool:
        """True when the tool exited with status zero."""
        return self.returncode == 0


def check_tool_path(path: str) -> str:
    """Returns path if the shell will run it as written.

    Raises:
        (ValueError): path holds characters the shell would expand or interpret
    """
    bad = sorted(set(SHELL_METACHARACTERS).intersection(str(path)))
    if bad:
        raise ValueError(f"Executable path {path!r} contains shell characters: {' '.join(bad)}")
    return path


def get_tool_path(tool: str, tools: Optional[dict] = None) -> str:
    """Returns the executable to run for tool.

    An entry in tools overrides the default. Without one the bare tool name
    is returned and resolved through PATH when the command runs.
    """
    if tool not in KNOWN_TOOLS:
        raise ValueError(f"Unknown external tool: {tool}")
    if tools and tools.get(tool):
        return check_tool_path(str(tools[tool]))
    return tool


def _quote(value) -> str:
    return shlex.quote(str(value))


def run_tool(tool: str, parameters: list, tools: Optional[dict] = None) -> ToolResult:
    """Runs tool with parameters and captures its combined output.

    Args:
        tool (str): one of KNOWN_TOOLS
        parameters (list): already quoted parameters
        tools (dict): optional executable overrides, keyed by tool name
    """
    out = io.StringIO()
    ret = RunCmd(get_tool_path(tool, tools), " ".join(parameters), outstream=out, logging_level=logging.DEBUG)
    return ToolResult(tool, ret, out.getvalue())


def generate_certificate(
    name: str, key_path: str, cert_path: str, expiration_days: Optional[int] = None, tools: Optional[dict] = None
) -> ToolResult:
    """Creates a self-signed certificate for CN=name and its private key.

    When expiration_days is None openssl applies its own default validity.
    """
    params = ["req", "-nodes", "-x509", "-subj", _quote(f"/CN={name}/")]
    params += ["-keyout", _quote(key_path)]
    params += ["-out", _quote(cert_path)]
    if expiration_days is not None:
        params += ["-days", str(expiration_days)]
    return run_tool(OPENSSL, params, tools)


def convert_to_der(cert_path: str, der_path: str, tools: Optional[dict] = None) -> ToolResult:
    """Re-encodes a PEM certificate as DER."""
    params = ["x509", "-outform", "DER", "-in", _quote(cert_path), "-out", _quote(der_path)]
    return run_tool(OPENSSL, params, tools)


def build_signature_list(owner: str, der_path: str, esl_path: str, tools: Optional[dict] = None) -> ToolResult:
    """Wraps a DER certificate in an x509 EFI signature list owned by owner."""
    params = ["--owner", _quote(owner), "--type", "x509", "--output", _quote(esl_path), _quote(der_path)]
    return run_tool(SBSIGLIST, params, tools)


def sign_variable(
    attributes: str,
    key_path: str,
    cert_path: str,
    variable: str,
    esl_path: str,
    auth_path: str,
    tools: Optional[dict] = None,
) -> ToolResult:
    """Signs a signature list into an authenticated variable update for variable."""
    params = ["--attr", attributes]
    params += ["--key", _quote(key_path)]
    params += ["--cert", _quote(cert_path)]
    params += ["--output", _quote(auth_path)]
    params += [_quote(variable), _quote(esl_path)]
    return run_tool(SBVARSIGN, params, tools)


def generate_rsa_key(key_path: str, bits: int = 2048, tools: Optional[dict] = None) -> ToolResult:
    """Generates a standalone RSA private key in PEM form."""
    return run_tool(OPENSSL, ["genrsa", "-out", _quote(key_path), str(bits)], tools)
