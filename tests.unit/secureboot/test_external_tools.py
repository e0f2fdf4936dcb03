# @file test_external_tools.py
# This contains unit tests for the external tool wrappers
##
# Copyright (c) Microsoft Corporation
#
# SPDX-License-Identifier: BSD-2-Clause-Patent
##
"""Unit test for the external_tools module."""

import logging
import sys
import unittest
from unittest.mock import patch

from sbkeytool.secureboot import external_tools


class Test_external_tools(unittest.TestCase):
    """Unit test for the external_tools module."""

    def test_get_tool_path_default(self) -> None:
        """Test that the bare tool name is used without an override."""
        self.assertEqual(external_tools.get_tool_path("sbsiglist"), "sbsiglist")
        self.assertEqual(external_tools.get_tool_path("sbsiglist", {}), "sbsiglist")
        self.assertEqual(external_tools.get_tool_path("sbsiglist", {"sbsiglist": ""}), "sbsiglist")

    def test_get_tool_path_override(self) -> None:
        """Test that an override replaces only its own tool."""
        tools = {"openssl": "/usr/local/bin/openssl3"}
        self.assertEqual(external_tools.get_tool_path("openssl", tools), "/usr/local/bin/openssl3")
        self.assertEqual(external_tools.get_tool_path("sbvarsign", tools), "sbvarsign")

    def test_get_tool_path_unknown(self) -> None:
        """Test that only the known tools can be run."""
        with self.assertRaises(ValueError):
            external_tools.get_tool_path("signtool")

    def test_tool_result_ok(self) -> None:
        """Test that only a zero exit code is a success."""
        self.assertTrue(external_tools.ToolResult("openssl", 0).ok)
        self.assertFalse(external_tools.ToolResult("openssl", 1, "error").ok)
        self.assertFalse(external_tools.ToolResult("openssl", 127, "not found").ok)

    @patch("sbkeytool.secureboot.external_tools.RunCmd")
    def test_run_tool_captures_output(self, mock_run_cmd) -> None:
        """Test that the combined tool output ends up in the result."""
        def fake_run_cmd(cmd, parameters, outstream=None, logging_level=None):
            outstream.write("unable to load certificate\n")
            return 1
        mock_run_cmd.side_effect = fake_run_cmd

        result = external_tools.run_tool("openssl", ["x509", "-in", "missing.pem"])
        self.assertEqual(result, external_tools.ToolResult("openssl", 1, "unable to load certificate\n"))
        self.assertEqual(mock_run_cmd.call_args.args, ("openssl", "x509 -in missing.pem"))
        self.assertEqual(mock_run_cmd.call_args.kwargs["logging_level"], logging.DEBUG)

    @patch("sbkeytool.secureboot.external_tools.RunCmd", return_value=0)
    def test_generate_certificate_quotes_subject(self, mock_run_cmd) -> None:
        """Test that names with spaces or quotes stay one shell word."""
        external_tools.generate_certificate("it's me", "/k/PK.key", "/k/PK.pem", 7)
        params = mock_run_cmd.call_args.args[1]
        self.assertIn("-subj '/CN=it'\"'\"'s me/'", params)
        self.assertTrue(params.endswith("-days 7"))

    @patch("sbkeytool.secureboot.external_tools.RunCmd", return_value=0)
    def test_sign_variable_parameter_order(self, mock_run_cmd) -> None:
        """Test that the variable name and signature list come last."""
        external_tools.sign_variable("NON_VOLATILE", "PK.key", "PK.pem", "KEK", "KEK.esl", "KEK.auth")
        self.assertEqual(mock_run_cmd.call_args.args,
                         ("sbvarsign", "--attr NON_VOLATILE --key PK.key --cert PK.pem --output KEK.auth KEK KEK.esl"))

    @unittest.skipIf(sys.platform.startswith("win"), "requires a POSIX shell")
    def test_run_missing_executable(self) -> None:
        """Test that a missing executable is a failed result, not an exception."""
        result = external_tools.run_tool("openssl", ["version"], {"openssl": "/nonexistent/openssl"})
        self.assertFalse(result.ok)
        self.assertNotEqual(result.output, "")

    def test_get_tool_path_rejects_shell_characters(self) -> None:
        """Test that an override the shell would expand is refused."""
        for path in ("/opt/$HOME/openssl", "/opt/`id`/openssl", "/opt/openssl; rm -rf x", "~/openssl"):
            with self.assertRaises(ValueError):
                external_tools.get_tool_path("openssl", {"openssl": path})
        self.assertEqual(external_tools.get_tool_path("openssl", {"openssl": "/opt/my tools/openssl"}),
                         "/opt/my tools/openssl")

    @patch("sbkeytool.secureboot.external_tools.RunCmd", return_value=0)
    def test_run_tool_refuses_shell_characters(self, mock_run_cmd) -> None:
        """Test that nothing runs with an unsafe override."""
        with self.assertRaises(ValueError):
            external_tools.run_tool("sbsiglist", ["--help"], {"sbsiglist": "$(touch pwned)"})
        mock_run_cmd.assert_not_called()
