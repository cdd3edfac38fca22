"""
Pytest fixtures and configuration for VidStash tests
"""
import os
import sys
import pytest
from unittest.mock import MagicMock

import requests

# Add app directory to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), 'app'))

from settings import Config  # noqa: E402


THREAD_URL = 'https://simpcity.su/threads/jane-doe-onlyfans.12345'
FORUM_URL = 'https://simpcity.su/forums/onlyfans.8'


class FakeResponse:
    def __init__(self, status_code=200, text='', json_data=None):
        self.status_code = status_code
        self.text = text
        self._json = json_data

    def json(self):
        if self._json is None:
            raise ValueError('No JSON body')
        return self._json


class FakeSession:
    """Stands in for requests.Session; unknown URLs answer 404.

    A route registered with a list of responses plays them back in order and
    then keeps answering with the last one.
    """

    def __init__(self):
        self.max_redirects = 30
        self.routes = {}
        self.calls = []

    def add(self, method, url, *responses):
        self.routes[(method, url)] = list(responses)

    def add_page(self, url, html, status=200):
        self.add('GET', url, FakeResponse(status, html))

    def add_head(self, url, status=200):
        self.add('HEAD', url, FakeResponse(status))

    def fail(self, method, url, exc=None):
        self.add(method, url, exc or requests.ConnectionError(f'connection refused: {url}'))

    def _respond(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        responses = self.routes.get((method, url))
        if not responses:
            return FakeResponse(404, 'Not Found')
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self._respond('GET', url, **kwargs)

    def head(self, url, **kwargs):
        return self._respond('HEAD', url, **kwargs)

    def post(self, url, **kwargs):
        return self._respond('POST', url, **kwargs)

    def request(self, method, url, **kwargs):
        return self._respond(method.upper(), url, **kwargs)

    def calls_for(self, method, url=None):
        return [c for c in self.calls if c[0] == method and (url is None or c[1] == url)]


# --- XenForo HTML builders ---

def post_html(post_id, body, author='uploader', likes=0, posted_at='2026-01-10T12:00:00+0000'):
    return f'''
    <article class="message message--post" data-content="post-{post_id}" id="js-post-{post_id}">
      <div class="message-inner">
        <div class="message-cell message-cell--user">
          <h4 class="message-name"><a class="username" href="/members/{author}.1/">{author}</a></h4>
        </div>
        <div class="message-cell message-cell--main">
          <div class="message-main">
            <header class="message-attribution">
              <ul class="message-attribution-main">
                <li><a href="#"><time class="u-dt" datetime="{posted_at}">Jan 10, 2026</time></a></li>
              </ul>
            </header>
            <div class="message-body"><div class="bbWrapper">{body}</div></div>
            <div class="reactionsBar"><a class="reactionsBar-link" href="#">{likes}</a></div>
          </div>
        </div>
      </div>
    </article>
    '''


def page_nav_html(page, total_pages):
    if total_pages <= 1:
        return ''
    pages = ''.join(f'<li><a class="pageNav-page" href="page-{n}">{n}</a></li>' for n in range(1, total_pages + 1))
    next_button = (
        f'<a class="pageNav-jump pageNav-jump--next" href="page-{page + 1}">Next</a>' if page < total_pages else ''
    )
    return f'<nav class="pageNav"><ul class="pageNav-main">{pages}</ul>{next_button}</nav>'


def thread_page_html(posts, title='[OnlyFans] Jane Doe - Summer Set', page=1, total_pages=1,
                     replies=10, views='1,234', author='uploader', tags=()):
    tag_links = ''.join(f'<a class="tagItem" href="/tags/{t}/">{t}</a>' for t in tags)
    return f'''
    <html><body>
      <ul class="p-breadcrumbs">
        <li><a href="/">Home</a></li>
        <li><a href="/forums/onlyfans.8/">OnlyFans</a></li>
        <li><a href="#">{title}</a></li>
      </ul>
      <div class="p-title"><h1 class="p-title-value">{title}</h1></div>
      <div class="p-description"><a class="username" href="/members/{author}.1/">{author}</a></div>
      <dl class="pairs pairs--justified"><dt>Replies</dt><dd>{replies}</dd></dl>
      <dl class="pairs pairs--justified"><dt>Views</dt><dd>{views}</dd></dl>
      <div class="tagList">{tag_links}</div>
      {page_nav_html(page, total_pages)}
      <div class="block-body">{''.join(posts)}</div>
    </body></html>
    '''


def forum_index_html(threads, has_next=False):
    """`threads` is a list of (title, href, replies) tuples"""
    rows = ''.join(
        f'''
        <div class="structItem structItem--thread">
          <div class="structItem-cell structItem-cell--main">
            <div class="structItem-title"><a href="{href}" data-tp-primary="on">{title}</a></div>
          </div>
          <div class="structItem-cell structItem-cell--meta">
            <a class="username" href="/members/uploader.1/">uploader</a>
            <dl class="pairs"><dt>Replies</dt><dd>{replies}</dd></dl>
          </div>
        </div>
        '''
        for title, href, replies in threads
    )
    next_button = '<a class="pageNav-jump pageNav-jump--next" href="page-2">Next</a>' if has_next else ''
    return f'<html><body><div class="structItemContainer">{rows}</div>{next_button}</body></html>'


# --- application fixtures ---

FAST_SETTINGS = {
    'scraper': {
        'page_delay': 0,
        'thread_delay': 0,
        'index_delay': 0,
        'retry_backoff': 0,
        'timeout': 1,
    },
    'verifier': {
        'link_delay': 0,
        'sweep_delay': 0,
        'timeout': 1,
    },
    'watcher': {
        'settle_seconds': 0.3,
        'health_interval': 1,
    },
}


@pytest.fixture
def http():
    """Fake outbound HTTP shared by the scraper and the verifier"""
    return FakeSession()


@pytest.fixture
def config(tmp_path):
    return Config(
        server_mode='test',
        database_path=str(tmp_path / 'data' / 'video_storage.db'),
        backup_dir=str(tmp_path / 'backups'),
        api_key='test-key',
    )


@pytest.fixture
def app(config, http):
    from app import create_app
    from db import db

    _app = create_app(config, settings=FAST_SETTINGS, start_workers=False, http_session=http)
    yield _app

    pipeline = _app.extensions['vidstash']
    pipeline.activities.wait_for_resumers(timeout=5)
    pipeline.wait_for_tasks(timeout=5)
    pipeline.shutdown()
    with _app.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def pipeline(app):
    return app.extensions['vidstash']


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing"""
    logger = MagicMock()
    logger.info = MagicMock()
    logger.error = MagicMock()
    logger.warning = MagicMock()
    logger.debug = MagicMock()
    return logger
