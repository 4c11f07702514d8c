# Copyright 2021 Nicko van Someren
#
# Licensed under the Apache License, Version 2.0 (the "License")
# See the LICENSE.txt file for details

# SPDX-License-Identifier: Apache-2.0

"""Account configuration and the per-account sync driver"""

import configparser
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import imapclient

from .store import ImapStore
from .sync import WalkReport, walk_folders
from .util import DummyProgress


logger = logging.getLogger(__name__)

# Protocol name to whether it uses SSL/TLS
PROTOCOLS = {
    "imaps": True,
    "imap": False,
}
DEFAULT_PROTOCOL = "imaps"


class ConfigError(ValueError):
    """Raised when the account configuration is unusable"""


@dataclass
class ServerInfo:
    hostname: str
    port: Optional[int]
    username: str
    password: str
    SSL: bool = True


@dataclass(frozen=True)
class Account:
    name: str
    source: ServerInfo
    target: ServerInfo
    enabled: bool = True
    replicate_only: bool = True


def _server_info(section, prefix, fallback=None):
    name = section.name

    protocol = section.get(f"{prefix}_protocol", DEFAULT_PROTOCOL).strip().lower()
    if protocol not in PROTOCOLS:
        raise ConfigError(f"[{name}] unknown {prefix}_protocol {protocol!r}")

    port = section.get(f"{prefix}_port", "").strip()
    if port:
        try:
            port = int(port)
        except ValueError:
            raise ConfigError(f"[{name}] {prefix}_port is not a number: {port!r}") from None
    else:
        port = None

    values = {
        "host": section.get(f"{prefix}_host"),
        "user": section.get(f"{prefix}_user", fallback.username if fallback else None),
        "password": section.get(f"{prefix}_password", fallback.password if fallback else None),
    }
    missing = [f"{prefix}_{key}" for key, value in values.items() if not value]
    if missing:
        raise ConfigError(f"[{name}] missing {', '.join(missing)}")

    return ServerInfo(values["host"], port, values["user"], values["password"],
                      PROTOCOLS[protocol])


def _getboolean(section, key, default):
    try:
        return section.getboolean(key, default)
    except ValueError:
        raise ConfigError(f"[{section.name}] {key} is not a boolean: {section[key]!r}") from None


def parse_accounts(cfg: configparser.ConfigParser, replicate_only=True) -> List[Account]:
    """Turn each section of a parsed config into an Account, in file order"""
    accounts = []
    for name in cfg.sections():
        section = cfg[name]
        source = _server_info(section, "source")
        accounts.append(Account(
            name=name,
            source=source,
            target=_server_info(section, "target", fallback=source),
            enabled=_getboolean(section, "enabled", True),
            replicate_only=_getboolean(section, "replicate_only", replicate_only),
        ))
    return accounts


def load_accounts(path, replicate_only=True) -> List[Account]:
    """Read the account list from an INI file

    ``replicate_only`` is the mode for accounts that do not choose one.
    Raises FileNotFoundError if the file does not exist, and ConfigError
    if it is not UTF-8 or describes an unusable account.
    """
    # No interpolation so that passwords may contain '%'
    cfg = configparser.ConfigParser(interpolation=None)
    with open(path, encoding="utf-8") as config_file:
        try:
            cfg.read_file(config_file)
        except UnicodeDecodeError as e:
            raise ConfigError(f"{path} is not valid UTF-8: {e}") from None
    return parse_accounts(cfg, replicate_only=replicate_only)


@dataclass
class AccountOutcome:
    account: Account
    report: Optional[WalkReport] = None
    error: Optional[Exception] = None
    skipped: bool = False

    @property
    def ok(self):
        return self.error is None


@dataclass
class BatchReport:
    outcomes: List[AccountOutcome] = field(default_factory=list)

    @property
    def copied(self):
        return sum(o.report.copied for o in self.outcomes if o.report is not None)

    @property
    def deleted(self):
        return sum(o.report.deleted for o in self.outcomes if o.report is not None)

    @property
    def failed(self):
        return [o for o in self.outcomes if not o.ok]


def sync_account(
        account: Account,
        folder_filter=None, dry_run=False,
        progress_class=None, client_class=imapclient.IMAPClient,
        ) -> WalkReport:
    """Sync every folder of one account from its source to its target"""

    if progress_class is None:
        progress_class = DummyProgress

    src_info = account.source
    dest_info = account.target

    # Make sure that everything that needs clean-up has a context manager.
    with progress_class(desc="Connecting to source server") as progress:
        with client_class(host=src_info.hostname, port=src_info.port, ssl=src_info.SSL) as src:
            src.login(src_info.username, src_info.password)
            logger.info("Connected source to %s", src_info.hostname)

            progress.set_description("Connecting to destination server")

            with client_class(host=dest_info.hostname, port=dest_info.port, ssl=dest_info.SSL) as dest:
                dest.login(dest_info.username, dest_info.password)
                logger.info("Connected target to %s", dest_info.hostname)

                progress.set_description(f"Synchronizing {account.name}")
                with progress_class(desc="Message data", leave=False,
                                    unit="B", unit_scale=True) as data_progress:
                    return walk_folders(
                        ImapStore(src).root_folder(), ImapStore(dest).root_folder(),
                        replicate_only=account.replicate_only,
                        folder_filter=folder_filter, dry_run=dry_run,
                        progress=progress, data_progress=data_progress,
                    )


def sync_accounts(accounts, **kwargs) -> BatchReport:
    """Sync each enabled account in turn

    A failure in one account is logged and recorded in the returned report;
    the remaining accounts still run. Keyword arguments go to sync_account.
    """
    batch = BatchReport()
    for account in accounts:
        if not account.enabled:
            logger.info("Skip account %s, because it is disabled.", account.name)
            batch.outcomes.append(AccountOutcome(account, skipped=True))
            continue

        logger.info("Synchronizing account %s (%s)", account.name, account.source.username)
        try:
            report = sync_account(account, **kwargs)
        except Exception as exc:
            logger.error("Account %s failed: %s", account.name, exc,
                         exc_info=logger.isEnabledFor(logging.DEBUG))
            batch.outcomes.append(AccountOutcome(account, error=exc))
        else:
            logger.info("Account %s: %d messages copied, %d flagged for removal",
                        account.name, report.copied, report.deleted)
            batch.outcomes.append(AccountOutcome(account, report=report))
    return batch
