"""Simplified / traditional Chinese script detection.

Heuristic over a closed table of common simplified→traditional pairs. Characters
outside the table never mark a string as simplified, so untracked simplified
characters pass through. Swapping in a larger table does not change the contract.
"""

from collections.abc import Iterable
from enum import Enum


class ScriptType(str, Enum):
    """Chinese script classification of a string."""

    NONE = "none"
    SIMPLIFIED = "simplified"
    TRADITIONAL = "traditional"
    MIXED = "mixed"


SIMPLIFIED_TO_TRADITIONAL: dict[str, str] = {
    "个": "個",
    "东": "東",
    "丝": "絲",
    "丢": "丟",
    "两": "兩",
    "严": "嚴",
    "丧": "喪",
    "丰": "豐",
    "临": "臨",
    "为": "為",
    "丽": "麗",
    "举": "舉",
    "么": "麼",
    "义": "義",
    "乌": "烏",
    "乐": "樂",
    "乔": "喬",
    "习": "習",
    "乡": "鄉",
    "书": "書",
    "买": "買",
    "乱": "亂",
    "争": "爭",
    "于": "於",
    "亏": "虧",
    "云": "雲",
    "亚": "亞",
    "产": "產",
    "亩": "畝",
    "亲": "親",
    "亵": "褻",
    "亿": "億",
    "仅": "僅",
    "从": "從",
    "仑": "侖",
    "仓": "倉",
    "仪": "儀",
    "们": "們",
    "价": "價",
    "众": "眾",
    "优": "優",
    "伙": "夥",
    "会": "會",
    "伟": "偉",
    "传": "傳",
    "伤": "傷",
    "伦": "倫",
    "伪": "偽",
    "体": "體",
    "佣": "傭",
    "侠": "俠",
    "侧": "側",
    "侨": "僑",
    "侬": "儂",
    "俣": "俁",
    "俦": "儔",
    "俨": "儼",
    "俩": "倆",
    "俭": "儉",
    "债": "債",
    "倾": "傾",
    "偬": "傯",
    "偻": "僂",
    "伥": "倀",
    "偾": "僨",
    "偿": "償",
    "杂": "雜",
    "鸡": "雞",
    "阳": "陽",
    "阴": "陰",
    "阵": "陣",
    "阶": "階",
    "尔": "爾",
    "邬": "鄔",
    "图": "圖",
    "卢": "盧",
    "贝": "貝",
    "达": "達",
    "逻": "邏",
    "辑": "輯",
}

_SIMPLIFIED_CHARS = frozenset(SIMPLIFIED_TO_TRADITIONAL)
_TRADITIONAL_CHARS = frozenset(SIMPLIFIED_TO_TRADITIONAL.values())


def _is_cjk(char: str) -> bool:
    return "一" <= char <= "龥"


def classify_script(text: str) -> ScriptType:
    """Classify the Chinese script used in ``text``."""
    has_cjk = False
    has_simplified = False
    has_traditional = False

    for char in text:
        if not _is_cjk(char):
            continue
        has_cjk = True
        if char in _SIMPLIFIED_CHARS:
            has_simplified = True
        elif char in _TRADITIONAL_CHARS:
            has_traditional = True

    if not has_cjk:
        return ScriptType.NONE
    if has_simplified and has_traditional:
        return ScriptType.MIXED
    if has_simplified:
        return ScriptType.SIMPLIFIED
    # CJK text with no tracked simplified characters is treated as traditional.
    return ScriptType.TRADITIONAL


def is_simplified(text: str) -> bool:
    return classify_script(text) is ScriptType.SIMPLIFIED


def filter_simplified(items: Iterable[str]) -> list[str]:
    """Drop items classified as simplified Chinese, preserving order and duplicates."""
    return [item for item in items if not is_simplified(item)]
