# Copyright 2021 Nicko van Someren
#
# Licensed under the Apache License, Version 2.0 (the "License")
# See the LICENSE.txt file for details

# SPDX-License-Identifier: Apache-2.0

"""Folder and message access on top of an IMAPClient connection"""

import logging
from dataclasses import dataclass
from email.parser import BytesHeaderParser
from typing import Optional, Tuple

import imapclient


logger = logging.getLogger(__name__)

# Capability mask bits for folders
HOLDS_MESSAGES = 1
HOLDS_FOLDERS = 2

# Number of messages about which to get details in any given fetch
MSG_CHUNK_SIZE = 1000
# Upper bound on the message data pulled from the server in one fetch
BODY_CHUNK_BYTES = 4 << 20

# PEEK so that reading the headers of the target never marks them as seen;
# the server answers under the non-PEEK name.
MSG_ID_FETCH = b"BODY.PEEK[HEADER.FIELDS (MESSAGE-ID)]"
MSG_ID_HEADERS = b"BODY[HEADER.FIELDS (MESSAGE-ID)]"
MSG_SIZE = b"RFC822.SIZE"
MSG_FLAGS = b"FLAGS"
MSG_RFC822 = b"RFC822"
MSG_DATE = b"INTERNALDATE"

# Attribute names are case-insensitive, so flags are compared lowercased
NOSELECT = b"\\noselect"
NONEXISTENT = b"\\nonexistent"
NOINFERIORS = b"\\noinferiors"
HASNOCHILDREN = b"\\hasnochildren"


@dataclass(frozen=True)
class MessageRef:
    """A message in an open folder, as seen by the header prefetch"""
    uid: int
    headers: Tuple[Tuple[str, str], ...]
    size: int = 0


def _parse_headers(data):
    if not data:
        return ()
    parsed = BytesHeaderParser().parsebytes(data)
    return tuple((name, str(value)) for name, value in parsed.items())


# Determine chunking of messages to move
# Yields lists of message refs
def _chunk_messages(refs, max_size=BODY_CHUNK_BYTES):
    chunk = []
    chunk_total = 0
    for ref in refs:
        if chunk_total + ref.size >= max_size:
            if chunk:
                yield chunk
                chunk = [ref]
                chunk_total = ref.size
            else:
                yield [ref]
        else:
            chunk.append(ref)
            chunk_total += ref.size
    if chunk:
        yield chunk


def _decode_delimiter(delimiter):
    if delimiter is None:
        return None
    if isinstance(delimiter, bytes):
        return delimiter.decode("ASCII")
    return delimiter


class ImapStore:
    """One logged-in IMAP connection, viewed as a tree of folders"""

    def __init__(self, client):
        self.client = client
        self._delimiter = None
        self._delimiter_known = False

    @property
    def delimiter(self) -> Optional[str]:
        """The hierarchy separator of the server, or None for a flat namespace"""
        if not self._delimiter_known:
            # LIST "" "" returns just the hierarchy delimiter
            folder_data = self.client.list_folders("", "")
            if not folder_data:
                folder_data = self.client.list_folders()
            self._delimiter = _decode_delimiter(folder_data[0][1]) if folder_data else None
            self._delimiter_known = True
        return self._delimiter

    def root_folder(self) -> "Folder":
        return Folder(self, "", self.delimiter, (NOSELECT,))

    def folder(self, path: str) -> "Folder":
        """Return a handle for a folder that may or may not exist yet"""
        return Folder(self, path, self.delimiter)


class Folder:
    """A live handle on one folder of an ImapStore

    Only one folder per store can be open at a time, which is how the
    walker uses them.
    """

    def __init__(self, store: ImapStore, path: str, separator: Optional[str], flags=()):
        self.store = store
        self.path = path
        self.separator = separator
        self.flags = tuple(flag.lower() for flag in flags)
        self.readonly = True
        self._allowed_flags = None

    def __repr__(self):
        return f"Folder({self.path!r})"

    @property
    def client(self):
        return self.store.client

    @property
    def name(self):
        if self.separator and self.separator in self.path:
            return self.path.rsplit(self.separator, 1)[1]
        return self.path

    @property
    def capabilities(self) -> int:
        mask = 0
        if NOSELECT not in self.flags and NONEXISTENT not in self.flags:
            mask |= HOLDS_MESSAGES
        if NOINFERIORS not in self.flags:
            mask |= HOLDS_FOLDERS
        return mask

    @property
    def holds_messages(self) -> bool:
        return bool(self.capabilities & HOLDS_MESSAGES)

    @property
    def holds_folders(self) -> bool:
        return bool(self.capabilities & HOLDS_FOLDERS)

    def children(self):
        """List the immediate child folders"""
        if HASNOCHILDREN in self.flags:
            return []
        if self.path:
            if not self.separator:
                return []
            pattern = self.path + self.separator + "%"
        else:
            pattern = "%"
        result = []
        for flags, delimiter, path in self.client.list_folders("", pattern):
            if path == self.path:
                continue
            result.append(Folder(self.store, path, _decode_delimiter(delimiter), flags))
        # Sorting is not strictly necessary, but it makes log output prettier
        result.sort(key=lambda folder: folder.path)
        return result

    def exists(self) -> bool:
        return self.client.folder_exists(self.path)

    def create(self, capabilities=HOLDS_MESSAGES):
        # A folder created without a trailing separator can hold messages,
        # and IMAP servers let it hold sub-folders as well.
        self.client.create_folder(self.path)
        self.flags = () if capabilities & HOLDS_FOLDERS else (NOINFERIORS,)
        return self

    def open(self, readonly=True):
        folder_info = self.client.select_folder(self.path, readonly=readonly)
        self.readonly = readonly
        self._allowed_flags = set(folder_info.get(MSG_FLAGS, ()))

    def close(self, expunge=False):
        if expunge:
            self.client.expunge()
            self.client.close_folder()
        elif self.readonly or not self.client.has_capability("UNSELECT"):
            # CLOSE on a read-only folder never expunges
            self.client.close_folder()
        else:
            self.client.unselect_folder()

    def fetch_headers(self):
        """Return a MessageRef for every undeleted message in the open folder

        The headers are fetched in batches rather than one round trip per
        message.
        """
        uids = self.client.search(["NOT", "DELETED"])
        refs = []
        for i in range(-(-len(uids) // MSG_CHUNK_SIZE)):
            chunk_ids = uids[i*MSG_CHUNK_SIZE:(i+1)*MSG_CHUNK_SIZE]
            info = self.client.fetch(chunk_ids, [MSG_ID_FETCH, MSG_SIZE])
            for uid in chunk_ids:
                details = info.get(uid)
                if details is None:
                    # Expunged between SEARCH and FETCH
                    continue
                refs.append(MessageRef(
                    uid=uid,
                    headers=_parse_headers(details.get(MSG_ID_HEADERS)),
                    size=details.get(MSG_SIZE, 0),
                ))
        return refs

    def fetch_messages(self, refs):
        """Yield (ref, raw message, flags, internal date) for each ref, in order"""
        for chunk in _chunk_messages(refs):
            msgs = self.client.fetch([ref.uid for ref in chunk],
                                     [MSG_FLAGS, MSG_DATE, MSG_SIZE, MSG_RFC822])
            for ref in chunk:
                msg = msgs.get(ref.uid)
                if msg is None:
                    logger.warning("Message UID %s vanished from %s before it could be copied",
                                   ref.uid, self.path)
                    continue
                yield ref, msg[MSG_RFC822], msg.get(MSG_FLAGS, ()), msg.get(MSG_DATE)

    def append(self, raw: bytes, flags=(), msg_time=None):
        # Make sure that the destination supports the message flags
        if self._allowed_flags is not None:
            flags = [f for f in flags if f in self._allowed_flags]
        self.client.append(self.path, raw, flags, msg_time)

    def flag_deleted(self, refs):
        uids = [ref.uid for ref in refs]
        if uids:
            self.client.add_flags(uids, [imapclient.DELETED])
