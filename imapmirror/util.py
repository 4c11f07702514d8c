# Copyright 2021 Nicko van Someren
#
# Licensed under the Apache License, Version 2.0 (the "License")
# See the LICENSE.txt file for details

# SPDX-License-Identifier: Apache-2.0

"""Utility functions and classes"""

import fnmatch


class DummyProgress:
    """A dummy stub when progress indication is not needed"""
    def __init__(self, *args, **kwargs):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *args, **kwargs):
        return False

    def set_description(self, *args, **kwargs):
        pass

    def reset(self, *args, **kwargs):
        pass

    def update(self, *args, **kwargs):
        pass

    def set_postfix_str(self, *args, **kwargs):
        pass


def translate_path(path, src_sep, dest_sep, replace_sep='_'):
    """Rewrite a source folder path with the destination hierarchy separator

    Any destination separator that appears inside a source path segment is
    replaced with ``replace_sep`` so the segments survive unchanged in number
    and order.
    """
    if not dest_sep or src_sep == dest_sep:
        return path
    if not src_sep:
        return path.replace(dest_sep, replace_sep)
    return dest_sep.join(part.replace(dest_sep, replace_sep)
                         for part in path.split(src_sep))


def folder_matcher(pattern_list, name):
    """Match a folder name against an ordered list of inclusions and exclusions

    ``pattern_list`` holds ('+', pattern) and ('-', pattern) pairs. The last
    pattern that matches decides; if none does, the name is selected unless
    the list starts with an include.
    """
    selected = not (pattern_list and pattern_list[0][0] == '+')
    for direction, pattern in pattern_list:
        if fnmatch.fnmatch(name, pattern):
            selected = direction == '+'
    return selected
