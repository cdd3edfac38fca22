"""
Download-link extraction for the file hosts we track.
"""

import re
from collections import namedtuple

PROVIDER_PATTERNS = {
    "gofile": re.compile(r"https?://(?:www\.)?gofile\.io/d/[a-zA-Z0-9_-]+"),
    "pixeldrain": re.compile(r"https?://(?:www\.)?pixeldrain\.com/(?:u|l)/[a-zA-Z0-9_-]+"),
    "bunkr": re.compile(r"https?://(?:www\.)?(?:bunkr|bunkrr)\.[a-z]+/[a-z]/[a-zA-Z0-9_-]+"),
    "cyberdrop": re.compile(r"https?://(?:www\.)?cyberdrop\.(?:me|to|cc)/a/[a-zA-Z0-9_-]+"),
    "mediafire": re.compile(r"https?://(?:www\.)?mediafire\.com/(?:file|folder)/[a-zA-Z0-9_/-]+"),
    "mega": re.compile(r"https?://(?:www\.)?mega\.nz/(?:file|folder)/[a-zA-Z0-9#_-]+"),
}

PROVIDERS = tuple(PROVIDER_PATTERNS)

ExtractedLink = namedtuple("ExtractedLink", ["provider", "url"])


def detect_provider(url):
    """Provider tag for a single URL, or None"""
    for provider, pattern in PROVIDER_PATTERNS.items():
        if pattern.match(url or ""):
            return provider
    return None


def extract_links(*texts):
    """All provider links found in `texts`, de-duplicated, first-seen order.

    Post HTML and its plain text are usually both passed in, since an
    anchor's href and its visible text can differ.
    """
    seen = set()
    links = []
    for text in texts:
        if not text:
            continue
        matches = sorted(
            (match.start(), provider, match.group(0))
            for provider, pattern in PROVIDER_PATTERNS.items()
            for match in pattern.finditer(text)
        )
        for _, provider, url in matches:
            if url in seen:
                continue
            seen.add(url)
            links.append(ExtractedLink(provider, url))
    return links
