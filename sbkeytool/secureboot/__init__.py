"""secureboot package.

This package generates and checks UEFI Secure Boot key chains.

Modules:
    - key_chain: Generates the PK, KEK and DB keys, signature lists and authenticated variables for a name.
    - external_tools: Runs openssl, sbsiglist and sbvarsign for the individual steps.
    - key_chain_audit: Checks a generated key chain directory offline.
    - genkey_tool: Command-line interface for key_chain.

Copyright (c) Microsoft Corporation
SPDX-License-Identifier: BSD-2-Clause-Patent
"""
