## @file setup.py
# This contains setup info for sbkeytool pip module
#
##
# Copyright (c) Microsoft Corporation
#
# SPDX-License-Identifier: BSD-2-Clause-Patent
##
import setuptools

with open("readme.md", "r") as fh:
    long_description = fh.read()


setuptools.setup(
    name="sbkeytool",
    version="0.1.0",
    author="sbkeytool team",
    description="Generate UEFI Secure Boot PK, KEK and DB key chains with signed authenticated variables",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license='BSD-2-Clause-Patent',
    packages=setuptools.find_packages(include=["sbkeytool", "sbkeytool.*"]),
    python_requires=">=3.9",
    include_package_data=True,
    entry_points={
        'console_scripts': ['genkey=sbkeytool.secureboot.genkey_tool:main',
                            'sbkey_audit=sbkeytool.secureboot.key_chain_audit:main']
    },
    install_requires=[
        'pyyaml>=5.2',
        'edk2-pytool-library>=0.10.13',
        'cryptography>=42.0.0'
    ],
    extras_require={
        'test': ['pytest']
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: BSD License",
        "Operating System :: POSIX :: Linux",
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers"
    ]
)
