# Copyright 2021 Nicko van Someren
#
# Licensed under the Apache License, Version 2.0 (the "License")
# See the LICENSE.txt file for details

# SPDX-License-Identifier: Apache-2.0

"""Core synchronisation: message sets, reconciliation and the folder walk"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from .identity import IdentityKey, resolve_identity, has_identity_header, stamp_identity
from .store import HOLDS_MESSAGES, MessageRef
from .util import DummyProgress, translate_path


logger = logging.getLogger(__name__)


@dataclass
class MessageSet:
    """Identity key to message mapping for one folder at one point in time

    Keys are unique ignoring case. Later messages whose key is already
    present are kept aside in ``duplicates`` rather than replacing the
    first one.
    """
    messages: Dict[IdentityKey, MessageRef] = field(default_factory=dict)
    duplicates: List[Tuple[IdentityKey, MessageRef]] = field(default_factory=list)

    def add(self, key: IdentityKey, ref: MessageRef):
        if key in self.messages:
            self.duplicates.append((key, ref))
        else:
            self.messages[key] = ref

    def items(self):
        return self.messages.items()

    def __contains__(self, key):
        return key in self.messages

    def __len__(self):
        return len(self.messages)


@dataclass(frozen=True)
class Reconciliation:
    copy: List[Tuple[IdentityKey, MessageRef]]
    delete: List[Tuple[IdentityKey, MessageRef]]


@dataclass
class FolderResult:
    source_path: str
    target_path: str
    copied: int = 0
    deleted: int = 0
    duplicates: int = 0


@dataclass
class WalkReport:
    """What one walk over a folder tree did"""
    folders: List[FolderResult] = field(default_factory=list)
    created: List[str] = field(default_factory=list)

    @property
    def copied(self):
        return sum(f.copied for f in self.folders)

    @property
    def deleted(self):
        return sum(f.deleted for f in self.folders)


def load_message_set(folder) -> MessageSet:
    """Build the message set of an open folder from one batched header fetch"""
    message_set = MessageSet()
    for ref in folder.fetch_headers():
        message_set.add(resolve_identity(ref), ref)
    return message_set


def reconcile(source: MessageSet, target: MessageSet, replicate_only=True) -> Reconciliation:
    """Decide which source messages to copy and which target messages to delete

    Nothing is ever deleted when ``replicate_only`` is set.
    """
    copy = [(key, ref) for key, ref in source.items() if key not in target]
    if replicate_only:
        delete = []
    else:
        delete = [(key, ref) for key, ref in target.items() if key not in source]
    return Reconciliation(copy=copy, delete=delete)


def _report_duplicates(path, message_set):
    for key, ref in message_set.duplicates:
        logger.warning("Duplicate identity %s in %s (UID %s ignored)", key, path, ref.uid)


def sync_messages(src_folder, dest_folder,
                  replicate_only=True, dry_run=False,
                  dest_missing=False, data_progress=None) -> FolderResult:
    """Bring the messages of one target folder in line with its source folder

    When ``dest_missing`` is set the target folder does not exist (only
    possible in a dry run) and is treated as empty.
    """
    if data_progress is None:
        data_progress = DummyProgress()

    result = FolderResult(src_folder.path, dest_folder.path)

    src_folder.open(readonly=True)
    if not dest_missing:
        dest_folder.open(readonly=dry_run)

    source = load_message_set(src_folder)
    target = MessageSet() if dest_missing else load_message_set(dest_folder)
    logger.info("Processing %d messages...", len(source))

    _report_duplicates(src_folder.path, source)
    _report_duplicates(dest_folder.path, target)
    result.duplicates = len(source.duplicates) + len(target.duplicates)

    plan = reconcile(source, target, replicate_only)

    data_progress.reset(total=sum(ref.size for _, ref in plan.copy))
    if dry_run:
        for key, ref in plan.copy:
            logger.info("Would copy message %s to %s", key, dest_folder.path)
            data_progress.update(n=ref.size)
        result.copied = len(plan.copy)
    else:
        keys = {ref.uid: key for key, ref in plan.copy}
        for ref, raw, flags, msg_time in src_folder.fetch_messages([ref for _, ref in plan.copy]):
            key = keys[ref.uid]
            if not has_identity_header(ref):
                raw = stamp_identity(raw, key)
            logger.info("Copying message %s to %s", key, dest_folder.path)
            dest_folder.append(raw, flags, msg_time)
            result.copied += 1
            data_progress.update(n=ref.size)

    for key, ref in plan.delete:
        logger.info("Removing message %s from %s", key, dest_folder.path)
    if plan.delete and not dry_run:
        dest_folder.flag_deleted([ref for _, ref in plan.delete])
    result.deleted = len(plan.delete)

    if not dest_missing:
        dest_folder.close(expunge=bool(plan.delete) and not dry_run)
    src_folder.close()

    return result


def walk_folders(src_folder, dest_folder,
                 replicate_only=True, folder_filter=None, dry_run=False,
                 progress=None, data_progress=None,
                 report=None, dest_missing=False) -> WalkReport:
    """Mirror a source folder tree onto a target folder tree, depth first

    Missing target folders are created before their children are visited.
    ``folder_filter`` is a predicate on source folder paths; folders it
    rejects are neither created nor synchronised, but their children are
    still walked.
    """
    if progress is None:
        progress = DummyProgress()
    if report is None:
        report = WalkReport()

    selected = folder_filter is None or folder_filter(src_folder.path)
    logger.info("Synchronizing folder %s.", src_folder.path or "(root)")
    if src_folder.path:
        parts = src_folder.path.split(src_folder.separator) if src_folder.separator else [src_folder.path]
        progress.set_postfix_str('> '*(len(parts)-1) + parts[-1])
    progress.update()

    if src_folder.holds_messages and selected:
        report.folders.append(sync_messages(
            src_folder, dest_folder,
            replicate_only=replicate_only, dry_run=dry_run,
            dest_missing=dest_missing, data_progress=data_progress,
        ))

    if src_folder.holds_folders:
        for child in src_folder.children():
            target_path = translate_path(child.path, child.separator, dest_folder.separator)
            dest_child = dest_folder.store.folder(target_path)
            child_missing = False
            if folder_filter is None or folder_filter(child.path):
                if not dest_child.exists():
                    logger.info("Creating folder %s in target store.", target_path)
                    report.created.append(target_path)
                    if dry_run:
                        child_missing = True
                    else:
                        dest_child.create(HOLDS_MESSAGES)
            walk_folders(
                child, dest_child,
                replicate_only=replicate_only, folder_filter=folder_filter, dry_run=dry_run,
                progress=progress, data_progress=data_progress,
                report=report, dest_missing=child_missing,
            )

    return report
