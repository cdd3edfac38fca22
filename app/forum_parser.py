"""
XenForo page parsing with BeautifulSoup.

Every function here is pure: it takes HTML (or an already-parsed soup) and
returns plain dicts. Fetching, retries and persistence live in
services/scraper_service.py.
"""

import logging
import re
from datetime import datetime, timezone
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from exceptions import ScraperException
from title_heuristics import clean_title, extract_performer_names, extract_studio_names, extract_tags_from_title
from utils import ensure_utc

logger = logging.getLogger("main")

_URL_SUFFIXES = ("/unread", "/latest")
_PAGE_SUFFIX = re.compile(r"/page-\d+$")
_THREAD_PATH = re.compile(r"/threads/(?:[^/]*\.)?(\d+)(?:/|$)")
_NUMBER = re.compile(r"([\d.,]+)\s*([KkMm]?)")
_IGNORED_IMAGES = ("/smilies/", "/avatars/", "data:image")


def make_soup(html):
    if isinstance(html, BeautifulSoup):
        return html
    return BeautifulSoup(html or "", "html.parser")


def normalize_thread_url(url):
    """Drop a trailing slash, the /unread or /latest suffix and any /page-N"""
    clean = (url or "").strip().rstrip("/")
    for suffix in _URL_SUFFIXES:
        if clean.endswith(suffix):
            clean = clean[: -len(suffix)]
    clean = _PAGE_SUFFIX.sub("", clean.rstrip("/"))
    return clean.rstrip("/")


def extract_thread_id(url):
    """'/threads/some-name.12345/' -> '12345'"""
    match = _THREAD_PATH.search(urlparse(url or "").path)
    if not match:
        raise ScraperException(f"invalid thread URL format: {url}")
    return match.group(1)


def page_url(clean_url, page):
    if page <= 1:
        return clean_url
    return f"{clean_url}/page-{page}"


def parse_count(text):
    """'1,234' -> 1234, '12.5K' -> 12500, '' -> 0"""
    match = _NUMBER.search(text or "")
    if not match:
        return 0
    number, suffix = match.groups()
    multiplier = {"k": 1000, "m": 1000000}.get(suffix.lower(), 1)
    try:
        if multiplier > 1:
            return int(float(number.replace(",", "")) * multiplier)
        return int(number.replace(",", "").replace(".", ""))
    except ValueError:
        return 0


def _text(node):
    return node.get_text(strip=True) if node is not None else ""


def parse_thread_page(html, url):
    """Thread-level fields from the first page, or None when the page has no title"""
    soup = make_soup(html)

    raw_title = _text(soup.select_one("h1.p-title-value"))
    if not raw_title:
        return None

    title = clean_title(raw_title)
    view_count = reply_count = 0
    for pair in soup.select("dl.pairs"):
        label = _text(pair.find("dt"))
        value = _text(pair.find("dd"))
        if "Views" in label:
            view_count = parse_count(value)
        elif "Replies" in label:
            reply_count = parse_count(value)

    thumbnails = []
    for img in soup.select(".message-main img"):
        src = img.get("src")
        if src and not any(marker in src for marker in _IGNORED_IMAGES) and src not in thumbnails:
            thumbnails.append(src)

    tags = extract_tags_from_title(raw_title)
    for anchor in soup.select(".tagList a"):
        tag = _text(anchor)
        if tag and tag not in tags:
            tags.append(tag)

    metadata = {
        "tags": tags,
        "performer_names": extract_performer_names(title),
        "studio_names": extract_studio_names(title),
        "is_pinned": soup.select_one(".structItem--sticky") is not None,
        "is_locked": soup.select_one(".structItem--locked") is not None,
    }
    if thumbnails:
        metadata["thumbnail_url"] = thumbnails[0]
        metadata["thumbnail_urls"] = thumbnails

    return {
        "external_id": extract_thread_id(url),
        "url": url,
        "raw_title": raw_title,
        "title": title,
        "author": _text(soup.select_one(".p-description .username")),
        "category": _text(soup.select_one(".p-breadcrumbs li:nth-last-child(2) a")),
        "view_count": view_count,
        "reply_count": reply_count,
        "post_count": len(soup.select(".message--post")),
        "metadata": metadata,
    }


def parse_post_time(value):
    """XenForo writes offsets as +0000, which older fromisoformat rejects"""
    parsed = ensure_utc(value)
    if parsed is None and value:
        try:
            parsed = datetime.strptime(value, "%Y-%m-%dT%H:%M:%S%z").astimezone(timezone.utc)
        except ValueError:
            logger.debug(f"Unparseable post time: {value}")
    return parsed


def _post_external_id(element):
    content_id = element.get("data-content") or element.get("id") or ""
    match = re.search(r"post-(\d+)", content_id)
    return match.group(1) if match else None


def parse_post(element):
    """One `.message--post` element as a dict; None when it has no identifier"""
    external_id = _post_external_id(element)
    if not external_id:
        return None

    body = element.select_one(".message-body .bbWrapper")
    attachments = []
    for attachment in element.select(".message-attachments .attachment"):
        img = attachment.find("img")
        if img is not None and img.get("src"):
            attachments.append({"type": "image", "url": img["src"], "thumbnail_url": img.get("data-thumbnail")})
    if body is not None:
        for img in body.find_all("img"):
            if not img.get("src"):
                continue
            if img.get("data-url"):
                attachments.append({"type": "image", "url": img["data-url"], "thumbnail_url": img["src"]})
            else:
                attachments.append({"type": "image", "url": img["src"], "thumbnail_url": None})

    time_tag = element.select_one(".message-attribution-main time")
    posted_at = parse_post_time(time_tag.get("datetime")) if time_tag is not None else None

    return {
        "external_id": external_id,
        "author": _text(element.select_one(".message-name .username")),
        "content_html": body.decode_contents() if body is not None else "",
        "plain_text": body.get_text(" ", strip=True) if body is not None else "",
        "likes": parse_count(_text(element.select_one(".reactionsBar-link"))),
        "posted_at": posted_at,
        "attachments": attachments,
    }


def parse_posts(html):
    """All parseable posts on a page. Broken post elements are logged and skipped."""
    soup = make_soup(html)
    posts = []
    for element in soup.select(".message--post"):
        try:
            post = parse_post(element)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping unparseable post element: {e}")
            continue
        if post is None:
            logger.warning("Skipping post element without an identifier")
            continue
        posts.append(post)
    return posts


def has_next_page(html, current_page):
    """Next button that is not disabled, or any page link beyond `current_page`"""
    soup = make_soup(html)

    next_button = soup.select_one(".pageNav-jump--next")
    if next_button is not None and "is-disabled" not in (next_button.get("class") or []):
        return True

    for page_link in soup.select(".pageNav-page"):
        number = _text(page_link)
        if number.isdigit() and int(number) > current_page:
            return True
    return False


def parse_thread_index(html, base_url):
    """Thread rows of a forum listing page"""
    soup = make_soup(html)
    threads = []
    for row in soup.select(".structItem--thread"):
        anchor = row.select_one(".structItem-title a[data-tp-primary]") or row.select_one(".structItem-title a")
        if anchor is None or not anchor.get("href"):
            continue
        title = _text(anchor)
        url = urljoin(base_url + "/", anchor["href"])
        try:
            external_id = extract_thread_id(url)
        except ScraperException:
            logger.warning(f"Skipping index row with unexpected URL: {url}")
            continue
        if not title:
            continue
        threads.append(
            {
                "title": title,
                "url": normalize_thread_url(url),
                "external_id": external_id,
                "author": _text(row.select_one(".structItem-cell--meta .username")),
                "reply_count": parse_count(_text(row.select_one(".structItem-cell--meta dd"))),
            }
        )
    return threads


def index_has_next_page(html):
    soup = make_soup(html)
    return soup.select_one(".pageNav-jump--next") is not None
