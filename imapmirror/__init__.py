# imapmirror

# Copyright 2021 Nicko van Someren
#
# Licensed under the Apache License, Version 2.0 (the "License")
# See the LICENSE.txt file for details

# SPDX-License-Identifier: Apache-2.0

"""A library and tool for mirroring IMAP folder trees between accounts"""

from .accounts import (
    Account, AccountOutcome, BatchReport, ConfigError, ServerInfo,
    load_accounts, sync_account, sync_accounts,
)
from .identity import IdentityKey, resolve_identity
from .sync import MessageSet, WalkReport, load_message_set, reconcile, walk_folders
