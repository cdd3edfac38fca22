"""
Thread-title heuristics: recognised tags, title cleaning and performer /
studio name hints.
"""

import re

KNOWN_TAGS = [
    "XXX",
    "OnlyFans",
    "BBW",
    "T H I C C",
    "MILF",
    "Petite",
    "Teen",
    "Asian",
    "Indian",
    "Ebony",
    "Latina",
    "Feet",
    "Retired",
]

STUDIO_KEYWORDS = ["Official", "Network", "Productions", "Studios", "Entertainment"]

# (open, close) pairs a tag may be wrapped in
_BRACKETS = [("[", "]"), ("(", ")"), ("{", "}"), ("【", "】")]


# A standalone tag sits between whitespace, brackets, pipes or the string edges;
# trailing punctuation also ends it. "MILF-lover" does not carry the MILF tag.
_TAG_START = r"(?<![^\s\[\(\{【|])"
_TAG_END = r"(?![^\s\]\)\}】|,;:!?.])"


def _standalone(tag):
    return re.compile(_TAG_START + re.escape(tag) + _TAG_END, re.IGNORECASE)


_TAG_PATTERNS = {tag: _standalone(tag) for tag in KNOWN_TAGS}
_BRACKETED_PATTERNS = {
    tag: [
        re.compile(re.escape(open_) + r"\s*" + re.escape(tag) + r"\s*" + re.escape(close), re.IGNORECASE)
        for open_, close in _BRACKETS
    ]
    for tag in KNOWN_TAGS
}

_WHITESPACE = re.compile(r"\s+")
_TRAILING_SEPARATOR = re.compile(r"\s*[-|]\s*$")
_LEADING_SEPARATOR = re.compile(r"^\s*[-|]\s*")
_BRACKET_TOKEN = re.compile(r"\[(.*?)\]")
_AKA = re.compile(r"\(aka\s+(.*?)\)", re.IGNORECASE)


def extract_tags_from_title(title):
    """Known tags present in `title`, in KNOWN_TAGS order, canonical spelling"""
    if not title:
        return []
    return [tag for tag, pattern in _TAG_PATTERNS.items() if pattern.search(title)]


def clean_title(title):
    """Strip recognised tags (bracketed or standalone) and tidy separators"""
    if not title:
        return ""

    cleaned = title
    for tag in KNOWN_TAGS:
        for pattern in _BRACKETED_PATTERNS[tag]:
            cleaned = pattern.sub("", cleaned)
        cleaned = _TAG_PATTERNS[tag].sub("", cleaned)

    # Brackets emptied by tag removal
    cleaned = re.sub(r"\[\s*\]|\(\s*\)|\{\s*\}|【\s*】", "", cleaned)
    cleaned = _WHITESPACE.sub(" ", cleaned)
    cleaned = _TRAILING_SEPARATOR.sub("", cleaned)
    cleaned = _LEADING_SEPARATOR.sub("", cleaned)
    return cleaned.strip()


def extract_performer_names(title):
    """Candidate performer names from a title, most likely first.

    Patterns, in order: "Name - rest", "[Name]", "Name | rest", "(aka Name)".
    """
    cleaned = clean_title(title)
    names = []

    def add(name):
        name = name.strip().strip("[]").strip()
        if name and name not in names:
            names.append(name)

    if " - " in cleaned:
        add(cleaned.split(" - ")[0])

    for match in _BRACKET_TOKEN.findall(cleaned):
        add(match)

    if " | " in cleaned:
        add(cleaned.split(" | ")[0])

    for match in _AKA.findall(cleaned):
        add(match)

    return names


def extract_studio_names(title):
    """'<word> <Keyword>' pairs such as 'Brazzers Network'"""
    studios = []
    words = (title or "").split()
    for i, word in enumerate(words):
        if i == 0:
            continue
        if any(keyword in word for keyword in STUDIO_KEYWORDS):
            studio = f"{words[i - 1]} {word}"
            if studio not in studios:
                studios.append(studio)
    return studios
