"""
Tests for XenForo page parsing
"""
from datetime import datetime, timezone

import pytest

from conftest import FORUM_URL, THREAD_URL, forum_index_html, post_html, thread_page_html
from exceptions import ScraperException
from forum_parser import (
    extract_thread_id,
    has_next_page,
    index_has_next_page,
    normalize_thread_url,
    page_url,
    parse_count,
    parse_posts,
    parse_thread_index,
    parse_thread_page,
)


@pytest.mark.parametrize('text,expected', [
    ('1,234', 1234),
    ('12.5K', 12500),
    ('1.2M', 1200000),
    ('42', 42),
    ('', 0),
    ('n/a', 0),
])
def test_parse_count(text, expected):
    assert parse_count(text) == expected


class TestThreadUrls:

    def test_normalize_strips_suffixes(self):
        assert normalize_thread_url(THREAD_URL + '/') == THREAD_URL
        assert normalize_thread_url(THREAD_URL + '/unread') == THREAD_URL
        assert normalize_thread_url(THREAD_URL + '/latest/') == THREAD_URL

    def test_normalize_strips_page_suffix(self):
        assert normalize_thread_url(THREAD_URL + '/page-3') == THREAD_URL
        assert normalize_thread_url(THREAD_URL + '/page-12/') == THREAD_URL
        assert page_url(normalize_thread_url(THREAD_URL + '/page-2'), 3) == THREAD_URL + '/page-3'

    def test_extract_thread_id(self):
        assert extract_thread_id(THREAD_URL) == '12345'
        assert extract_thread_id(THREAD_URL + '/page-3') == '12345'

    def test_invalid_url_raises(self):
        with pytest.raises(ScraperException):
            extract_thread_id('https://simpcity.su/forums/')

    @pytest.mark.parametrize('url', [
        'https://simpcity.su/members/someone.1/',
        'https://simpcity.su/forums/onlyfans.8/',
        'https://simpcity.su/threads/no-id-here/',
        'https://simpcity.su/threads/jane.12abc',
    ])
    def test_non_thread_paths_rejected(self, url):
        with pytest.raises(ScraperException):
            extract_thread_id(url)

    def test_bare_numeric_thread_path(self):
        assert extract_thread_id('https://simpcity.su/threads/777/') == '777'

    def test_page_url(self):
        assert page_url(THREAD_URL, 1) == THREAD_URL
        assert page_url(THREAD_URL, 3) == THREAD_URL + '/page-3'


class TestThreadPage:

    def test_thread_fields(self):
        html = thread_page_html([post_html(1, 'hello'), post_html(2, 'again')], tags=['beach'])
        thread = parse_thread_page(html, THREAD_URL)

        assert thread['external_id'] == '12345'
        assert thread['raw_title'] == '[OnlyFans] Jane Doe - Summer Set'
        assert thread['title'] == 'Jane Doe - Summer Set'
        assert thread['author'] == 'uploader'
        assert thread['category'] == 'OnlyFans'
        assert thread['view_count'] == 1234
        assert thread['reply_count'] == 10
        assert thread['post_count'] == 2
        assert thread['metadata']['tags'] == ['OnlyFans', 'beach']
        assert thread['metadata']['performer_names'] == ['Jane Doe']

    def test_thumbnails_skip_smilies(self):
        body = '<img src="/styles/smilies/wink.png"><img src="https://img.example/cover.jpg">'
        thread = parse_thread_page(thread_page_html([post_html(1, body)]), THREAD_URL)
        assert thread['metadata']['thumbnail_url'] == 'https://img.example/cover.jpg'

    def test_page_without_title(self):
        assert parse_thread_page('<html><body>Nothing</body></html>', THREAD_URL) is None


class TestPosts:

    def test_post_fields(self):
        body = 'Get it <a href="https://gofile.io/d/abc">here</a>'
        posts = parse_posts(thread_page_html([post_html(77, body, author='jane', likes=3)]))

        assert len(posts) == 1
        post = posts[0]
        assert post['external_id'] == '77'
        assert post['author'] == 'jane'
        assert post['likes'] == 3
        assert 'https://gofile.io/d/abc' in post['content_html']
        assert post['plain_text'].startswith('Get it')
        assert post['posted_at'] == datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)

    def test_post_without_identifier_is_skipped(self):
        broken = '<article class="message message--post"><div class="bbWrapper">x</div></article>'
        posts = parse_posts(thread_page_html([broken, post_html(2, 'ok')]))
        assert [p['external_id'] for p in posts] == ['2']

    def test_inline_images_become_attachments(self):
        body = '<img src="https://img.example/t.jpg" data-url="https://img.example/full.jpg">'
        post = parse_posts(thread_page_html([post_html(1, body)]))[0]
        assert post['attachments'] == [
            {'type': 'image', 'url': 'https://img.example/full.jpg', 'thumbnail_url': 'https://img.example/t.jpg'}
        ]


class TestPagination:

    def test_first_of_two_pages(self):
        assert has_next_page(thread_page_html([], page=1, total_pages=2), 1) is True

    def test_last_page(self):
        assert has_next_page(thread_page_html([], page=2, total_pages=2), 2) is False

    def test_single_page(self):
        assert has_next_page(thread_page_html([]), 1) is False

    def test_disabled_next_button(self):
        html = '<a class="pageNav-jump pageNav-jump--next is-disabled">Next</a>'
        assert has_next_page(html, 1) is False


class TestThreadIndex:

    def test_rows(self):
        html = forum_index_html([
            ('[OnlyFans] Jane Doe', '/threads/jane-doe.111/', '1,024'),
            ('Someone Else', '/threads/someone-else.222/unread', '5'),
        ])
        threads = parse_thread_index(html, FORUM_URL)

        assert [t['external_id'] for t in threads] == ['111', '222']
        assert threads[0]['url'] == 'https://simpcity.su/threads/jane-doe.111'
        assert threads[1]['url'] == 'https://simpcity.su/threads/someone-else.222'
        assert threads[0]['reply_count'] == 1024
        assert threads[0]['author'] == 'uploader'

    def test_row_with_bad_url_is_skipped(self):
        html = forum_index_html([('Rules', '/help/rules/', 0), ('Jane', '/threads/jane.9/', 1)])
        assert [t['external_id'] for t in parse_thread_index(html, FORUM_URL)] == ['9']

    def test_index_next_page(self):
        assert index_has_next_page(forum_index_html([], has_next=True)) is True
        assert index_has_next_page(forum_index_html([])) is False
