#!/usr/bin/env python3
"""
Utility functions for TV Library Updater
Provides numeral parsing helpers and a reader/writer lock.
"""

import re
import threading
from contextlib import contextmanager


# Chinese numeral mappings
CHINESE_NUMERALS = {
    '零': 0, '一': 1, '二': 2, '两': 2, '三': 3, '四': 4, '五': 5,
    '六': 6, '七': 7, '八': 8, '九': 9, '十': 10,
    '壹': 1, '贰': 2, '叁': 3, '肆': 4, '伍': 5,  # Traditional
    '陆': 6, '柒': 7, '捌': 8, '玖': 9, '拾': 10
}

CHINESE_NUMERAL_CHARS = ''.join(CHINESE_NUMERALS.keys())

ROMAN_NUMERALS = {'I': 1, 'V': 5, 'X': 10, 'L': 50, 'C': 100, 'D': 500, 'M': 1000}


def parse_chinese_number(chinese_text: str) -> int:
    """Convert Chinese numerals to Arabic numbers"""
    if not chinese_text:
        return 0

    # Handle pure Arabic numbers
    if chinese_text.isdigit():
        return int(chinese_text)

    # Handle mixed Chinese-Arabic (like "第1集")
    arabic_match = re.search(r'\d+', chinese_text)
    if arabic_match:
        return int(arabic_match.group())

    result = 0
    temp = 0

    for char in chinese_text:
        if char in CHINESE_NUMERALS:
            num = CHINESE_NUMERALS[char]
            if num == 10:  # 十
                if temp == 0:
                    temp = 10  # 十 = 10
                else:
                    temp *= 10  # 二十 = 2 * 10
            elif num == 0:  # 零
                continue
            else:
                if temp == 10 or temp == 0:
                    temp += num  # 十五 = 10 + 5, or just 五 = 5
                else:
                    result += temp
                    temp = num

    result += temp
    return result if result > 0 else temp


def parse_roman_number(roman: str) -> int:
    """
    Convert a roman numeral (e.g. "XIV") to an int

    Returns:
        The value, or 0 if the text contains anything but roman digits
    """
    total = 0
    previous = 0
    for char in reversed(roman.upper()):
        value = ROMAN_NUMERALS.get(char)
        if value is None:
            return 0
        if value < previous:
            total -= value
        else:
            total += value
            previous = value
    return total


class ReadWriteLock:
    """
    Reader/writer lock: many concurrent readers or one exclusive writer

    Writers are preferred once waiting so a steady stream of readers cannot
    starve discovery.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self):
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()
