# @file key_chain_audit.py
# Offline consistency check for a directory produced by the key chain generator.
#
##
# Copyright (C) Microsoft Corporation
#
# SPDX-License-Identifier: BSD-2-Clause-Patent
##
"""Offline consistency check for a generated Secure Boot key chain.

Checks that every file exists, that each DER file is the encoding of its PEM
certificate, that each EFI signature list holds that certificate under the
owner GUID derived from the name, and that each authenticated variable
carries its signature list and was signed with the parent certificate.
"""

import argparse
import logging
import os
import struct
import sys
import uuid
from typing import List, Tuple

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import Encoding, load_pem_private_key
from cryptography.x509.oid import NameOID

from sbkeytool import sbkey_logging
from sbkeytool.secureboot import key_chain

EFI_CERT_X509_GUID = uuid.UUID("a5c059a1-94e4-4aa7-87b5-ab155c2bf072")
EFI_CERT_TYPE_PKCS7_GUID = uuid.UUID("4aafd29d-68df-49ee-8aa9-347d375665a7")
WIN_CERT_TYPE_EFI_GUID = 0x0EF1

# SignatureType, SignatureListSize, SignatureHeaderSize, SignatureSize
ESL_HEADER = struct.Struct("<16sIII")
# dwLength, wRevision, wCertificateType, CertType
WIN_CERTIFICATE_UEFI_GUID = struct.Struct("<IHH16s")
EFI_TIME_SIZE = 16
GUID_SIZE = 16


def parse_signature_list(data: bytes) -> List[Tuple[uuid.UUID, uuid.UUID, bytes]]:
    """Decodes a concatenation of EFI_SIGNATURE_LISTs.

    Returns:
        (List[Tuple]): (signature type, signature owner, signature data) per entry

    Raises:
        (ValueError): the data is truncated or the sizes are inconsistent
    """
    entries = []
    offset = 0
    while offset < len(data):
        if len(data) - offset < ESL_HEADER.size:
            raise ValueError(f"Truncated signature list header at offset {offset}")
        sig_type, list_size, header_size, sig_size = ESL_HEADER.unpack_from(data, offset)
        if list_size > len(data) - offset or sig_size <= GUID_SIZE:
            raise ValueError(f"Invalid signature list sizes at offset {offset}")
        body_size = list_size - ESL_HEADER.size - header_size
        if body_size < 0 or body_size % sig_size != 0:
            raise ValueError(f"Signature list at offset {offset} is not a whole number of entries")

        entry = offset + ESL_HEADER.size + header_size
        for _ in range(body_size // sig_size):
            owner = uuid.UUID(bytes_le=data[entry:entry + GUID_SIZE])
            entries.append((uuid.UUID(bytes_le=sig_type), owner, data[entry + GUID_SIZE:entry + sig_size]))
            entry += sig_size
        offset += list_size
    return entries


def split_authenticated_variable(data: bytes) -> Tuple[bytes, bytes]:
    """Splits an EFI_VARIABLE_AUTHENTICATION_2 update into signature and payload.

    Returns:
        (Tuple[bytes, bytes]): the PKCS7 CertData and the variable payload following it

    Raises:
        (ValueError): the header is truncated or not a PKCS7 WIN_CERTIFICATE_UEFI_GUID
    """
    if len(data) < EFI_TIME_SIZE + WIN_CERTIFICATE_UEFI_GUID.size:
        raise ValueError("Truncated authenticated variable header")
    length, _, cert_type, cert_guid = WIN_CERTIFICATE_UEFI_GUID.unpack_from(data, EFI_TIME_SIZE)
    if cert_type != WIN_CERT_TYPE_EFI_GUID or uuid.UUID(bytes_le=cert_guid) != EFI_CERT_TYPE_PKCS7_GUID:
        raise ValueError("Authenticated variable is not signed with a PKCS7 certificate")
    end = EFI_TIME_SIZE + length
    if length < WIN_CERTIFICATE_UEFI_GUID.size or end > len(data):
        raise ValueError(f"Invalid authenticated variable certificate length: {length}")
    return data[EFI_TIME_SIZE + WIN_CERTIFICATE_UEFI_GUID.size:end], data[end:]


def _read(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def _audit_role(name: str, owner: uuid.UUID, role: str, output: str) -> List[str]:
    files = key_chain.role_files(output, role)
    parent = key_chain.role_files(output, key_chain.SIGNING_PARENT[role])
    findings = []

    cert = x509.load_pem_x509_certificate(_read(files.pem))
    der = _read(files.der)
    if cert.public_bytes(Encoding.DER) != der:
        findings.append(f"{files.der} is not the DER encoding of {files.pem}")

    common_names = [attr.value for attr in cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)]
    if common_names != [name]:
        findings.append(f"{files.pem} subject CN is {common_names}, expected {name}")

    esl = _read(files.esl)
    try:
        entries = parse_signature_list(esl)
    except ValueError as exp:
        return findings + [f"{files.esl}: {exp}"]
    if len(entries) != 1:
        findings.append(f"{files.esl} holds {len(entries)} entries, expected 1")
    for sig_type, sig_owner, sig_data in entries:
        if sig_type != EFI_CERT_X509_GUID:
            findings.append(f"{files.esl} entry type is {sig_type}, expected x509")
        if sig_owner != owner:
            findings.append(f"{files.esl} owner is {sig_owner}, expected {owner}")
        if sig_data != der:
            findings.append(f"{files.esl} does not hold {files.der}")

    try:
        cert_data, payload = split_authenticated_variable(_read(files.auth))
    except ValueError as exp:
        return findings + [f"{files.auth}: {exp}"]
    if payload != esl:
        findings.append(f"{files.auth} payload is not {files.esl}")
    parent_der = x509.load_pem_x509_certificate(_read(parent.pem)).public_bytes(Encoding.DER)
    if parent_der not in cert_data:
        findings.append(f"{files.auth} is not signed with {parent.pem}")
    return findings


def audit_key_chain(output: str, name: str) -> List[str]:
    """Checks a generated key chain directory.

    Returns:
        (List[str]): human readable findings, empty when the key chain is consistent
    """
    missing = [path for path in key_chain.expected_files(output) if not os.path.isfile(path)]
    if missing:
        return [f"Missing file: {path}" for path in missing]

    owner = key_chain.owner_guid(name)
    findings = []
    for role in key_chain.ROLES:
        findings += _audit_role(name, owner, role, output)

    policy_key_path = os.path.join(output, key_chain.POLICY_KEY_FILE)
    try:
        policy_key = load_pem_private_key(_read(policy_key_path), password=None)
    except (TypeError, ValueError) as exp:
        return findings + [f"{policy_key_path} cannot be loaded: {exp}"]
    if not isinstance(policy_key, rsa.RSAPrivateKey) or policy_key.key_size != key_chain.POLICY_KEY_BITS:
        findings.append(f"{policy_key_path} is not a {key_chain.POLICY_KEY_BITS}-bit RSA private key")
    return findings


def main():
    """Parses command-line parameters and audits the requested key chain directory."""
    parser = argparse.ArgumentParser(description="Check a Secure Boot key chain produced by genkey")
    parser.add_argument("name", help="the NAME the keys were generated for")
    parser.add_argument("-o", "--output", default=key_chain.DEFAULT_OUTPUT, help="the key directory to check")
    parser.add_argument("-v", "--verbose", action="store_true", default=False, help="verbose logging")
    options = parser.parse_args()

    sbkey_logging.setup_section_level()
    handler = sbkey_logging.setup_console_logging(
        logging.DEBUG if options.verbose else logging.INFO, isVerbose=options.verbose
    )
    logging.getLogger().setLevel(logging.DEBUG)
    try:
        findings = audit_key_chain(options.output, options.name)
    except ValueError as exp:
        logging.error(f"Unable to read key chain in {options.output}: {exp}")
        findings = [str(exp)]
    for finding in findings:
        logging.error(finding)
    if not findings:
        sbkey_logging.log_progress(f"Key chain in {options.output} is consistent for {options.name}")
    sbkey_logging.stop_logging(handler)
    sys.exit(1 if findings else 0)


if __name__ == "__main__":
    main()
