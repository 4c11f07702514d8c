# Copyright 2021 Nicko van Someren
#
# Licensed under the Apache License, Version 2.0 (the "License")
# See the LICENSE.txt file for details

# SPDX-License-Identifier: Apache-2.0

"""Message identity keys

Two messages are considered the same message when their identity keys
match, ignoring case. The key is the value of the Message-ID header, or
a synthetic ``<uid>@<domain>`` value when the message has none.
"""

# Header holding the globally assigned message identifier
IDENTITY_HEADER = "Message-ID"
# Domain part of keys made up for messages with no Message-ID
SYNTHETIC_DOMAIN = "imapmirror.invalid"


class IdentityKey:
    """An identity key that compares and hashes case-insensitively

    The original spelling is kept in ``value`` and is what gets written
    into stamped copies and log output.
    """
    __slots__ = ("value", "_folded")

    def __init__(self, value: str):
        self.value = value
        self._folded = value.casefold()

    def __eq__(self, other):
        if not isinstance(other, IdentityKey):
            return NotImplemented
        return self._folded == other._folded

    def __hash__(self):
        return hash(self._folded)

    def __str__(self):
        return self.value

    def __repr__(self):
        return f"IdentityKey({self.value!r})"


def synthetic_key(uid) -> IdentityKey:
    return IdentityKey(f"{uid}@{SYNTHETIC_DOMAIN}")


def header_token(headers):
    """Return the first non-empty Message-ID value in a list of (name, value) pairs"""
    for name, value in headers:
        if name.lower() == IDENTITY_HEADER.lower():
            value = value.strip() if value else ""
            if value:
                return value
    return None


def resolve_identity(message) -> IdentityKey:
    """Work out the identity key of a message

    ``message`` needs ``headers`` (a sequence of (name, value) pairs) and
    ``uid`` attributes. A Message-ID header always wins over the UID.
    """
    token = header_token(message.headers)
    if token is not None:
        return IdentityKey(token)
    return synthetic_key(message.uid)


def has_identity_header(message) -> bool:
    return header_token(message.headers) is not None


def stamp_identity(raw: bytes, key: IdentityKey) -> bytes:
    # Put the key at the top of the header block so that the copy resolves
    # to the same key as the message it was made from.
    header = f"{IDENTITY_HEADER}: {key.value}\r\n".encode("ascii")
    return header + raw
