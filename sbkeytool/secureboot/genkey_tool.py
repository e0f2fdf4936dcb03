# @file genkey_tool.py
# This module contains the CLI interface for generating a UEFI Secure Boot
# key chain (PK, KEK, DB) for a name.
#
##
# Copyright (C) Microsoft Corporation
#
# SPDX-License-Identifier: BSD-2-Clause-Patent
##
"""Command-line interface for the Secure Boot key chain generator.

Options are layered: built-in defaults, then an optional YAML options file,
then the command line.
"""

import argparse
import copy
import logging
import os
import sys

import yaml

from sbkeytool import sbkey_logging
from sbkeytool.secureboot import external_tools, key_chain, key_chain_audit

TOOL_DESCRIPTION = """
genkey generates Secure Boot keys under the uuid generated by NAME.

PK, KEK and DB certificates are created with CN=NAME, wrapped in EFI
signature lists owned by the version 5 (DNS namespace) uuid of NAME, and
signed into authenticated variables: PK signs PK and KEK, KEK signs DB.

An example call might look like:
%s acme-corp -o /tmp/keys -e 30
""" % (os.path.basename(sys.argv[0]),)

CONFIG_FILE_NAME = "genkey.yaml"

DEFAULT_OPTIONS = {
    "output": key_chain.DEFAULT_OUTPUT,
    "expiration_in_days": key_chain.DEFAULT_EXPIRATION_DAYS,
    "tools": {},
}


def expiration_days(value):
    """argparse type for --expiration-in-days: a positive integer, or empty for the openssl default."""
    if value is None or str(value).strip() == "":
        return None
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise argparse.ArgumentTypeError(f"invalid number of days: '{value}'")
    try:
        days = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number of days: '{value}'")
    if days <= 0:
        raise argparse.ArgumentTypeError(f"number of days must be positive: '{value}'")
    return days


def tool_override(value):
    """argparse type for --tool: <tool_name>=<executable>."""
    (tool, sep, path) = value.partition("=")
    if not sep or not path or tool not in external_tools.KNOWN_TOOLS:
        raise argparse.ArgumentTypeError(
            f"expected <tool>=<path> with tool one of {', '.join(external_tools.KNOWN_TOOLS)}: '{value}'"
        )
    try:
        external_tools.check_tool_path(path)
    except ValueError as exp:
        raise argparse.ArgumentTypeError(str(exp))
    return (tool, path)


def get_cli_options(args=None):
    '''
    will parse the primary options from the command line. If provided, will take the options as
    an array in the first parameter
    '''
    parser = argparse.ArgumentParser(description=TOOL_DESCRIPTION, formatter_class=argparse.RawDescriptionHelpFormatter)

    parser.add_argument('name', help='seed for the owner uuid and the certificate common name')
    # unset flags stay None, DEFAULT_OPTIONS holds the defaults
    parser.add_argument('-o', '--output', dest='output', default=None,
                        help=f'output directory for the keys (default: {key_chain.DEFAULT_OUTPUT})')
    parser.add_argument('-e', '--expiration-in-days', dest='expiration_in_days', type=str, default=None,
                        help='in how many days from today should the certificates expire '
                        f'(default: {key_chain.DEFAULT_EXPIRATION_DAYS}, empty for the openssl default)')

    config_group = parser.add_mutually_exclusive_group()
    config_group.add_argument('--config', dest='options_file', type=argparse.FileType('r'),
                              help='a filesystem path to a yaml file to load with default options')
    config_group.add_argument('--config-dir', dest='config_dir',
                              help=f'a directory holding a {CONFIG_FILE_NAME} options file')

    parser.add_argument('--tool', action='append', dest='tools', type=tool_override, default=[],
                        help='use another executable for an external tool. format is <tool>=<path>')
    parser.add_argument('--verify', dest='verify', default=False, action='store_true',
                        help='check the generated key chain once all files are written')
    parser.add_argument('--log-dir', dest='log_dir',
                        help='also write a log file into this directory')
    parser.add_argument('-v', '--verbose', dest='verbose', default=False, action='store_true',
                        help='show the output of the external tools')

    options = parser.parse_args(args=args)
    # validated here, converted in build_config
    try:
        expiration_days(options.expiration_in_days)
    except argparse.ArgumentTypeError as exp:
        parser.error(f"argument -e/--expiration-in-days: {exp}")
    return options


def load_options_file(in_file):
    '''
    takes in an open file and loads it as a yaml-encoded options file,
    returning the contents in a dictionary
    '''
    if not hasattr(in_file, 'read'):
        return None

    file_options = yaml.safe_load(in_file)
    if file_options is None:
        return {}
    if not isinstance(file_options, dict):
        raise ValueError(f"Options file {getattr(in_file, 'name', '')} must hold a mapping")
    unknown = set(file_options) - set(DEFAULT_OPTIONS)
    if unknown:
        raise ValueError(f"Unknown options in options file: {', '.join(sorted(unknown))}")
    if 'output' in file_options:
        output = file_options['output']
        if not isinstance(output, str) or not output.strip():
            raise ValueError("Option 'output' must be a non-empty directory path")
    if 'expiration_in_days' in file_options:
        try:
            expiration_days(file_options['expiration_in_days'])
        except argparse.ArgumentTypeError as exp:
            raise ValueError(f"Option 'expiration_in_days': {exp}")
    tools = file_options.get('tools', {})
    if not isinstance(tools, dict):
        raise ValueError("Option 'tools' must be a mapping of tool name to executable")
    for (tool, path) in tools.items():
        if tool not in external_tools.KNOWN_TOOLS:
            raise ValueError(f"Unknown tool in option 'tools': {tool}")
        if not isinstance(path, str):
            raise ValueError(f"Executable for tool '{tool}' must be a path")
        external_tools.check_tool_path(path)
    return file_options


def find_options_file(config_dir):
    '''
    returns an open options file from config_dir, or None if there is none
    '''
    if config_dir is None:
        return None
    path = os.path.join(config_dir, CONFIG_FILE_NAME)
    if not os.path.isfile(path):
        logging.debug(f"No {CONFIG_FILE_NAME} in {config_dir}, using defaults")
        return None
    return open(path, 'r')


def update_options(file_options, cli_options):
    '''
    takes in a pre-loaded options dictionary and applies the options given on the
    command line on top of it, returning the final options
    '''
    updated_options = copy.deepcopy(DEFAULT_OPTIONS)
    if file_options is not None:
        updated_options.update(copy.deepcopy(file_options))
        updated_options['tools'] = dict(updated_options.get('tools') or {})

    if cli_options.output is not None:
        updated_options['output'] = cli_options.output
    if cli_options.expiration_in_days is not None:
        updated_options['expiration_in_days'] = cli_options.expiration_in_days
    for (tool, path) in cli_options.tools:
        updated_options['tools'][tool] = path

    return updated_options


def build_config(final_options):
    '''
    turns the final options dictionary into a KeyGenConfig
    '''
    return key_chain.KeyGenConfig(
        output=final_options['output'],
        expiration_days=expiration_days(final_options['expiration_in_days']),
        tools=final_options['tools'],
    )


def run(options):
    '''
    generates the key chain for parsed options. returns the process exit code
    '''
    try:
        options_file = options.options_file or find_options_file(options.config_dir)
        try:
            file_options = load_options_file(options_file)
        finally:
            if options_file is not None:
                options_file.close()
        config = build_config(update_options(file_options, options))
    except (OSError, ValueError, yaml.YAMLError, argparse.ArgumentTypeError) as exp:
        logging.error(f"Error loading options: {exp}")
        return 1

    try:
        key_chain.generate_key_chain(options.name, config)
    except key_chain.KeyGenError as exp:
        logging.critical(f"Key generation failed at step '{exp.step}'")
        return 1
    except ValueError as exp:
        logging.critical(f"Key generation failed: {exp}")
        return 1

    if options.verify:
        try:
            findings = key_chain_audit.audit_key_chain(config.output, options.name)
        except ValueError as exp:
            findings = [str(exp)]
        for finding in findings:
            logging.error(finding)
        if findings:
            return 1
        logging.info(f"Verified key chain in {config.output}")

    sbkey_logging.log_progress(f"Keys for {options.name} written to {config.output}")
    return 0


def main(args=None):
    options = get_cli_options(args)

    sbkey_logging.setup_section_level()
    logging.getLogger().setLevel(logging.DEBUG)
    handlers = [sbkey_logging.setup_console_logging(
        logging.DEBUG if options.verbose else logging.INFO, isVerbose=options.verbose)]
    if options.log_dir is not None:
        _, file_handler = sbkey_logging.setup_txt_logger(options.log_dir, logging_level=logging.DEBUG,
                                                         isVerbose=options.verbose)
        handlers.append(file_handler)

    try:
        ret = run(options)
    finally:
        sbkey_logging.stop_logging(handlers)
    sys.exit(ret)


if __name__ == '__main__':
    main()
