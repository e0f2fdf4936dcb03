## @file test_key_chain_integration.py
# This unittest module runs the key chain generator against the real external tools.
#
##
# Copyright (C) Microsoft Corporation
#
# SPDX-License-Identifier: BSD-2-Clause-Patent
##
"""Tests for the key_chain module using openssl, sbsiglist and sbvarsign."""

import datetime
import os
import shutil
import tempfile
import unittest

from cryptography import x509
from cryptography.x509.oid import NameOID

from sbkeytool.secureboot import key_chain, key_chain_audit

TOOLS_AVAILABLE = all(shutil.which(tool) for tool in ("openssl", "sbsiglist", "sbvarsign"))


@unittest.skipUnless(TOOLS_AVAILABLE, "requires openssl, sbsiglist and sbvarsign")
class KeyChainIntegrationTest(unittest.TestCase):
    """Generates a real key chain."""

    @classmethod
    def setUpClass(cls) -> None:
        """Generates one key chain shared by the tests."""
        cls.output = os.path.join(tempfile.mkdtemp(), "keys")
        cls.produced = key_chain.generate_key_chain(
            "acme-corp", key_chain.KeyGenConfig(output=cls.output, expiration_days=30))

    def test_sixteen_files(self) -> None:
        """Test that exactly the expected files are written."""
        self.assertEqual(sorted(os.listdir(self.output)),
                         sorted(os.path.basename(path) for path in key_chain.expected_files(self.output)))
        self.assertEqual(len(self.produced), 16)

    def test_key_chain_is_consistent(self) -> None:
        """Test that owner, encodings and signers all check out."""
        self.assertEqual(key_chain_audit.audit_key_chain(self.output, "acme-corp"), [])

    def test_pk_certificate(self) -> None:
        """Test the subject and the 30 day validity of PK."""
        with open(os.path.join(self.output, "PK.pem"), "rb") as f:
            cert = x509.load_pem_x509_certificate(f.read())
        self.assertEqual(cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value, "acme-corp")
        self.assertEqual(cert.not_valid_after_utc - cert.not_valid_before_utc, datetime.timedelta(days=30))

    def test_rerun_keeps_owner(self) -> None:
        """Test that a second run overwrites the files with new keys but the same owner."""
        with open(os.path.join(self.output, "PK.der"), "rb") as f:
            first_der = f.read()
        output = os.path.join(tempfile.mkdtemp(), "keys")
        shutil.copytree(self.output, output)
        key_chain.generate_key_chain("acme-corp", key_chain.KeyGenConfig(output=output))
        with open(os.path.join(output, "PK.der"), "rb") as f:
            self.assertNotEqual(f.read(), first_der)
        self.assertEqual(key_chain_audit.audit_key_chain(output, "acme-corp"), [])
