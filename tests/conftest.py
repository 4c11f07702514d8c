"""In-memory stand-in for the parts of imapclient.IMAPClient that imapmirror uses"""

import re
from datetime import datetime

import pytest
from imapclient.exceptions import IMAPClientError, LoginError


DELETED = b"\\Deleted"
FOLDER_FLAGS = (b"\\Answered", b"\\Flagged", b"\\Deleted", b"\\Seen", b"\\Draft")


def make_message(subject, message_id=None):
    lines = [f"Subject: {subject}", "From: sender@example.com"]
    if message_id is not None:
        lines.insert(0, f"Message-ID: {message_id}")
    return ("\r\n".join(lines) + f"\r\n\r\nBody of {subject}\r\n").encode()


def _id_headers(raw):
    header_block = raw.split(b"\r\n\r\n", 1)[0]
    lines = [line for line in header_block.split(b"\r\n")
             if line.lower().startswith(b"message-id:")]
    return b"".join(line + b"\r\n" for line in lines) + b"\r\n"


class FakeMessage:
    def __init__(self, raw, flags=(), date=None):
        self.raw = raw
        self.flags = set(flags)
        self.date = date or datetime(2021, 1, 1, 12, 0)


class FakeFolder:
    def __init__(self, flags=()):
        self.flags = tuple(flags)
        self.messages = {}
        self.next_uid = 1

    def add(self, raw, flags=(), uid=None):
        if uid is None:
            uid = self.next_uid
        self.messages[uid] = FakeMessage(raw, flags)
        self.next_uid = max(self.next_uid, uid + 1)
        return uid

    def live(self):
        return [m for m in self.messages.values() if DELETED not in m.flags]

    def message_ids(self):
        result = []
        for message in self.live():
            for line in _id_headers(message.raw).split(b"\r\n"):
                if line:
                    result.append(line.split(b":", 1)[1].strip().decode())
        return sorted(result)

    def expunge(self):
        self.messages = {uid: m for uid, m in self.messages.items() if DELETED not in m.flags}


class FakeServer:
    def __init__(self, delimiter="/", capabilities=("UNSELECT",)):
        self.delimiter = delimiter
        self.capabilities = set(capabilities)
        self.folders = {}
        self.password = None
        self.connections = 0
        self.created = []
        self.appended = []
        self.fetch_calls = []

    def add_folder(self, name, messages=(), flags=()):
        folder = self.folders.setdefault(name, FakeFolder(flags))
        for raw in messages:
            folder.add(raw)
        return folder

    def client(self, host=None, port=None, ssl=True):
        self.connections += 1
        return FakeIMAPClient(self)


class FakeIMAPClient:
    def __init__(self, server):
        self.server = server
        self.selected = None
        self.readonly = True
        self.logged_out = False

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.logout()
        return False

    def login(self, username, password):
        if self.server.password is not None and password != self.server.password:
            raise LoginError("authentication failed")

    def logout(self):
        self.logged_out = True

    def has_capability(self, capability):
        return capability in self.server.capabilities

    def _delimiter_bytes(self):
        if self.server.delimiter is None:
            return None
        return self.server.delimiter.encode()

    def list_folders(self, directory="", pattern="*"):
        if pattern == "":
            return [((b"\\Noselect",), self._delimiter_bytes(), "")]
        delimiter = self.server.delimiter
        regex = ""
        for char in directory + pattern:
            if char == "*":
                regex += ".*"
            elif char == "%":
                regex += f"[^{re.escape(delimiter)}]*" if delimiter else ".*"
            else:
                regex += re.escape(char)
        result = []
        for name in sorted(self.server.folders):
            if not re.fullmatch(regex, name):
                continue
            has_children = delimiter and any(
                other.startswith(name + delimiter) for other in self.server.folders)
            flags = self.server.folders[name].flags
            flags += (b"\\HasChildren",) if has_children else (b"\\HasNoChildren",)
            result.append((flags, self._delimiter_bytes(), name))
        return result

    def folder_exists(self, folder):
        return folder in self.server.folders

    def create_folder(self, folder):
        if folder in self.server.folders:
            raise IMAPClientError(f"folder {folder} exists")
        self.server.folders[folder] = FakeFolder()
        self.server.created.append(folder)

    def _folder(self):
        if self.selected is None:
            raise IMAPClientError("no folder selected")
        return self.server.folders[self.selected]

    def select_folder(self, folder, readonly=False):
        if folder not in self.server.folders or b"\\noselect" in (
                flag.lower() for flag in self.server.folders[folder].flags):
            raise IMAPClientError(f"cannot select {folder}")
        self.selected = folder
        self.readonly = readonly
        return {b"FLAGS": FOLDER_FLAGS, b"EXISTS": len(self._folder().messages)}

    def search(self, criteria):
        assert criteria == ["NOT", "DELETED"]
        folder = self._folder()
        return sorted(uid for uid, m in folder.messages.items() if DELETED not in m.flags)

    def fetch(self, messages, data):
        self.server.fetch_calls.append((self.selected, list(messages), list(data)))
        folder = self._folder()
        result = {}
        for uid in messages:
            message = folder.messages.get(uid)
            if message is None:
                continue
            details = {b"SEQ": uid}
            for item in data:
                if item == b"BODY.PEEK[HEADER.FIELDS (MESSAGE-ID)]":
                    details[b"BODY[HEADER.FIELDS (MESSAGE-ID)]"] = _id_headers(message.raw)
                elif item == b"RFC822.SIZE":
                    details[item] = len(message.raw)
                elif item == b"RFC822":
                    details[item] = message.raw
                elif item == b"FLAGS":
                    details[item] = tuple(sorted(message.flags))
                elif item == b"INTERNALDATE":
                    details[item] = message.date
            result[uid] = details
        return result

    def append(self, folder, msg, flags=(), msg_time=None):
        if folder not in self.server.folders:
            raise IMAPClientError(f"no such folder {folder}")
        self.server.folders[folder].add(msg, flags)
        self.server.appended.append((folder, msg, tuple(flags), msg_time))

    def add_flags(self, messages, flags):
        if self.readonly:
            raise IMAPClientError("folder is read-only")
        folder = self._folder()
        for uid in messages:
            folder.messages[uid].flags.update(flags)

    def expunge(self):
        self._folder().expunge()

    def close_folder(self):
        if not self.readonly:
            self._folder().expunge()
        self.selected = None

    def unselect_folder(self):
        self.selected = None


@pytest.fixture
def source_server():
    return FakeServer(delimiter="/")


@pytest.fixture
def target_server():
    return FakeServer(delimiter=".")
