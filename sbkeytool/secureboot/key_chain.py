# @file key_chain.py
# This module contains the Secure Boot key chain generator. It creates the
# PK, KEK and DB keys for a name, wraps each certificate in an EFI signature
# list owned by a GUID derived from that name, and signs each list with its
# parent key into an authenticated variable update.
#
##
# Copyright (C) Microsoft Corporation
#
# SPDX-License-Identifier: BSD-2-Clause-Patent
##
"""Secure Boot key chain generator.

The generation is a fixed sequence of external tool runs. For each role in
PK, KEK, DB the certificate is created, converted to DER, wrapped in an EFI
signature list and signed with the parent key. PK signs itself and KEK, KEK
signs DB. A standalone RSA key for TPM PCR policy signing is created last.

The first failing step raises KeyGenError. Files produced before the failure
are left on disk and nothing is retried.
"""

import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from sbkeytool import sbkey_logging
from sbkeytool.secureboot import external_tools

ROLES = ("PK", "KEK", "DB")

# role -> role whose key and certificate sign its authenticated variable
SIGNING_PARENT = {
    "PK": "PK",
    "KEK": "PK",
    "DB": "KEK",
}

AUTH_ATTRIBUTES = "NON_VOLATILE,RUNTIME_ACCESS,BOOTSERVICE_ACCESS,TIME_BASED_AUTHENTICATED_WRITE_ACCESS"

POLICY_KEY_FILE = "tpm2-pcr-private.pem"
POLICY_KEY_BITS = 2048

DEFAULT_OUTPUT = "keys/"
DEFAULT_EXPIRATION_DAYS = 365

# step names, as reported in KeyGenError
STEP_DIRECTORY = "directory"
STEP_CERTIFICATE = "certificate"
STEP_DER = "der"
STEP_SIGNATURE_LIST = "signature list"
STEP_SIGN = "sign"
STEP_POLICY_KEY = "policy key"

logger = logging.getLogger(__name__)


class KeyGenError(Exception):
    """A key generation step failed.

    Attributes:
        role (str): the role being generated, None for steps outside the roles
        step (str): the failing step
        output (str): the captured output of the failing tool, or the OS error text
    """

    def __init__(self, role: Optional[str], step: str, output: str = "") -> None:
        """Inits the error."""
        self.role = role
        self.step = step
        self.output = output
        target = role if role is not None else "key chain"
        super().__init__(f"Error generating {target} ({step}): {output.strip()}")


@dataclass
class KeyGenConfig:
    """Configuration for one key chain generation.

    Attributes:
        output (str): destination directory, created with mode 0700 if missing
        expiration_days (int): certificate validity in days, None for the openssl default
        tools (dict): executable overrides keyed by tool name (openssl, sbsiglist, sbvarsign)
    """

    output: str = DEFAULT_OUTPUT
    expiration_days: Optional[int] = DEFAULT_EXPIRATION_DAYS
    tools: dict = field(default_factory=dict)


@dataclass
class RoleFiles:
    """Paths of the five files produced for one role."""

    key: str
    pem: str
    der: str
    esl: str
    auth: str

    def all(self) -> List[str]:
        """Returns the paths in the order they are created."""
        return [self.key, self.pem, self.der, self.esl, self.auth]


def owner_guid(name: str) -> uuid.UUID:
    """Returns the signature owner GUID for name.

    A version 5 UUID in the DNS namespace, so the same name always yields
    the same owner on any platform.
    """
    return uuid.uuid5(uuid.NAMESPACE_DNS, name)


def role_files(output: str, role: str) -> RoleFiles:
    """Returns the file paths for role inside output."""
    if role not in ROLES:
        raise ValueError(f"Unknown key role: {role}")
    return RoleFiles(*(os.path.join(output, f"{role}.{ext}") for ext in ("key", "pem", "der", "esl", "auth")))


def expected_files(output: str) -> List[str]:
    """Returns every path a successful generation produces, in creation order."""
    paths = []
    for role in ROLES:
        paths += role_files(output, role).all()
    paths.append(os.path.join(output, POLICY_KEY_FILE))
    return paths


def _check(result: external_tools.ToolResult, role: Optional[str], step: str) -> None:
    if result.ok:
        return
    target = role if role is not None else POLICY_KEY_FILE
    logger.error(f"Error generating {target} ({step}, {result.tool} returned {result.returncode}): {result.output}")
    raise KeyGenError(role, step, result.output)


def _create_output_directory(output: str) -> None:
    try:
        os.makedirs(output, mode=0o700, exist_ok=True)
    except OSError as exp:
        logger.error(f"Error creating output directory: {exp}")
        raise KeyGenError(None, STEP_DIRECTORY, str(exp)) from exp


def generate_role(name: str, role: str, owner: uuid.UUID, config: KeyGenConfig) -> RoleFiles:
    """Runs the four steps for one role.

    The parent key files of role must already exist in config.output.
    """
    files = role_files(config.output, role)
    parent = role_files(config.output, SIGNING_PARENT[role])

    sbkey_logging.log_section(f"Generating {role}")
    result = external_tools.generate_certificate(name, files.key, files.pem, config.expiration_days, config.tools)
    _check(result, role, STEP_CERTIFICATE)
    logger.info(f"{role} generated at {files.key} and {files.pem}")

    logger.info(f"Converting {role}.pem to DER")
    _check(external_tools.convert_to_der(files.pem, files.der, config.tools), role, STEP_DER)
    logger.info(f"{role} generated at {files.der}")

    logger.info(f"Generating {role}.esl")
    result = external_tools.build_signature_list(str(owner), files.der, files.esl, config.tools)
    _check(result, role, STEP_SIGNATURE_LIST)
    logger.info(f"{role} generated at {files.esl}")

    logger.info(f"Signing {role} with {SIGNING_PARENT[role]}")
    result = external_tools.sign_variable(
        AUTH_ATTRIBUTES, parent.key, parent.pem, role, files.esl, files.auth, config.tools
    )
    _check(result, role, STEP_SIGN)
    sbkey_logging.log_progress(f"{role} generated at {files.auth}")
    return files


def generate_policy_key(config: KeyGenConfig) -> str:
    """Creates the RSA key used to sign TPM PCR policies."""
    path = os.path.join(config.output, POLICY_KEY_FILE)
    logger.info("Generating policy encryption key")
    _check(external_tools.generate_rsa_key(path, POLICY_KEY_BITS, config.tools), None, STEP_POLICY_KEY)
    sbkey_logging.log_progress(f"Policy encryption key generated at {path}")
    return path


def generate_key_chain(name: str, config: Optional[KeyGenConfig] = None) -> List[str]:
    """Generates the PK, KEK and DB keys for name plus the policy key.

    Args:
        name (str): seeds the owner GUID and is the certificate common name
        config (KeyGenConfig): output directory, validity and tool overrides

    Returns:
        (List[str]): the produced files, in creation order

    Raises:
        (ValueError): name is empty
        (KeyGenError): the output directory or one of the steps failed
    """
    if not name:
        raise ValueError("A name is required to generate keys")
    if config is None:
        config = KeyGenConfig()

    owner = owner_guid(name)
    logger.info(f"Using owner GUID {owner} for {name}")

    _create_output_directory(config.output)

    produced = []
    for role in ROLES:
        produced += generate_role(name, role, owner, config).all()
    produced.append(generate_policy_key(config))
    return produced
