#!/usr/bin/env python
# Copyright 2021 Nicko van Someren
#
# Licensed under the Apache License, Version 2.0 (the "License")
# See the LICENSE.txt file for details

# SPDX-License-Identifier: Apache-2.0

"""Provide a command line interface for imapmirror"""

import argparse
import configparser
import functools
import logging
import sys

from tqdm import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from imapmirror import ConfigError, load_accounts, sync_accounts
from imapmirror.util import folder_matcher


logger = logging.getLogger("imapmirror")

EXIT_OK = 0
EXIT_CONFIG_NOT_FOUND = 2
EXIT_CONFIG_ERROR = 3
EXIT_INTERRUPTED = 130


def _build_parser():
    parser = argparse.ArgumentParser(
        description="Copy every message of the source accounts into the target accounts")
    parser.add_argument("config",
                        help="INI file with one section per account",
                        metavar="CONFIG")
    parser.add_argument("--account", "-a",
                        action="append", dest="accounts", metavar="NAME",
                        help="Only sync the named account (may be repeated)")
    parser.add_argument("--mirror", "-m", action="store_true",
                        help="Remove target messages that are not in the source, "
                             "for accounts that do not set replicate_only")

    parser.add_argument("--include", "-i",
                        type=lambda x: ('+', x), action="append", dest="filters",
                        metavar="PATTERN",
                        help="Include matching source folders in the list to be synced")
    parser.add_argument("--exclude", "-e",
                        type=lambda x: ('-', x), action="append", dest="filters",
                        metavar="PATTERN",
                        help="Exclude matching source folders in the list to be synced")
    parser.add_argument("--no-inbox", "-n",
                        const=('-', 'INBOX'), action="append_const", dest="filters",
                        help="Exclude INBOX from the list of folders to be synced")

    parser.add_argument("--dry-run", "-D", action="store_true",
                        help="Perform all steps except for creating mailboxes and writing messages")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Log debugging output, including tracebacks of failed accounts")
    parser.add_argument("--quiet", "-q", action="store_true",
                        help="Only log warnings and errors")
    return parser


def main(argv=None):
    args = _build_parser().parse_args(argv)

    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s")

    try:
        accounts = load_accounts(args.config, replicate_only=not args.mirror)
    except FileNotFoundError:
        logger.error("Config file not found: %s", args.config)
        return EXIT_CONFIG_NOT_FOUND
    except (OSError, configparser.Error, ConfigError) as e:
        logger.error("Could not read %s: %s", args.config, e)
        return EXIT_CONFIG_ERROR

    if args.accounts:
        unknown = set(args.accounts) - {account.name for account in accounts}
        if unknown:
            logger.error("No such account in %s: %s", args.config, ", ".join(sorted(unknown)))
            return EXIT_CONFIG_ERROR
        accounts = [account for account in accounts if account.name in args.accounts]

    folder_filter = None
    if args.filters:
        folder_filter = functools.partial(folder_matcher, args.filters)

    try:
        with logging_redirect_tqdm():
            batch = sync_accounts(
                accounts,
                progress_class=tqdm,
                folder_filter=folder_filter,
                dry_run=args.dry_run,
            )
    except KeyboardInterrupt:
        print("Folder sync interrupted by user.")
        return EXIT_INTERRUPTED

    logger.info("Done! %d messages copied, %d flagged for removal%s.",
                batch.copied, batch.deleted, " (dry run)" if args.dry_run else "")
    if batch.failed:
        logger.warning("%d account(s) failed: %s", len(batch.failed),
                       ", ".join(o.account.name for o in batch.failed))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
