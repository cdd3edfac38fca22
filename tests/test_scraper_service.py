"""
Tests for the forum scraper: thread scrape end to end, incremental updates,
pause/resume, error paths, forum scrape and thread queries
"""
import pytest

from conftest import FORUM_URL, THREAD_URL, FakeResponse, forum_index_html, post_html, thread_page_html
from exceptions import AuthenticationException, NotFoundException, ScraperException
from models.activity import ActivityStatus, TaskType
from models.notification import Priority

GOFILE = 'https://gofile.io/d/abc123'
PIXELDRAIN = 'https://pixeldrain.com/u/px42'
BUNKR = 'https://bunkr.si/a/album7'


def link(url):
    return f'Mirror: <a href="{url}">download</a>'


def two_page_thread(http, replies=10, extra_posts=()):
    first = thread_page_html(
        [post_html(1, link(GOFILE)), post_html(2, link(PIXELDRAIN))],
        page=1, total_pages=2, replies=replies,
    )
    second = thread_page_html(
        [post_html(3, link(BUNKR) + ' and the same ' + link(GOFILE))] + list(extra_posts),
        page=2, total_pages=2, replies=replies,
    )
    http.add_page(THREAD_URL, first)
    http.add_page(THREAD_URL + '/page-2', second)


@pytest.fixture
def scraper(pipeline):
    return pipeline.scraper


class TestThreadScrape:

    def test_two_page_thread_end_to_end(self, pipeline, scraper, http):
        two_page_thread(http)

        result = scraper.scrape_thread_complete(THREAD_URL + '/unread')

        assert result['status'] == 'completed'
        assert result['total_posts'] == 3
        assert result['posts_found'] == 3
        assert result['links_found'] == 3
        assert result['is_incremental'] is False

        activity = pipeline.activities.get(result['activity_id'])
        assert activity['task_type'] == TaskType.SCRAPER_THREAD
        assert activity['status'] == ActivityStatus.COMPLETED
        assert activity['progress'] == 100
        assert activity['message'] == 'Successfully scraped thread: 3 posts, 3 download links found'

        thread = scraper.get_thread(result['thread_id'])
        assert thread['url'] == THREAD_URL
        assert thread['external_id'] == '12345'
        assert thread['title'] == 'Jane Doe - Summer Set'
        assert thread['post_count'] == 3
        assert thread['download_count'] == 3

        posts = scraper.get_posts_by_thread(result['thread_id'])
        assert [p['post_number'] for p in posts] == [1, 2, 3]
        links = scraper.get_links_by_thread(result['thread_id'])
        assert sorted(l['provider'] for l in links) == ['bunkr', 'gofile', 'pixeldrain']

        # page 2 has no next button so the scraper probes page 3 before stopping
        assert http.calls_for('HEAD', THREAD_URL + '/page-3')

        notifications, _ = pipeline.notifications.get_all()
        assert notifications[0]['type'] == 'scrape_completed'
        assert notifications[0]['message'].startswith('✨ New thread scraped: 3 posts, 3 download links')

    def test_unchanged_reply_count_is_up_to_date(self, pipeline, scraper, http):
        two_page_thread(http)
        first = scraper.scrape_thread_complete(THREAD_URL)
        page_two_fetches = len(http.calls_for('GET', THREAD_URL + '/page-2'))

        again = scraper.scrape_thread_complete(THREAD_URL)

        assert again['status'] == 'up_to_date'
        assert again['thread_id'] == first['thread_id']
        assert len(http.calls_for('GET', THREAD_URL + '/page-2')) == page_two_fetches

        activity = pipeline.activities.get(again['activity_id'])
        assert activity['status'] == ActivityStatus.COMPLETED
        assert activity['message'] == (
            'Thread already up-to-date. 3 posts, 3 download links (no changes since last scrape)'
        )
        latest = pipeline.notifications.get_all()[0][0]
        assert latest['priority'] == Priority.LOW
        assert latest['message'].startswith('✓ Thread up-to-date')

    def test_new_replies_trigger_incremental_update(self, scraper, http):
        two_page_thread(http)
        scraper.scrape_thread_complete(THREAD_URL)

        two_page_thread(http, replies=11, extra_posts=[post_html(4, link('https://cyberdrop.me/a/new1'))])
        result = scraper.scrape_thread_complete(THREAD_URL)

        assert result['status'] == 'completed'
        assert result['is_incremental'] is True
        assert result['posts_found'] == 1
        assert result['links_found'] == 1
        assert scraper.get_thread(result['thread_id'])['download_count'] == 4

    def test_force_rescrapes_unchanged_thread(self, scraper, http):
        two_page_thread(http)
        scraper.scrape_thread_complete(THREAD_URL)

        result = scraper.scrape_thread_complete(THREAD_URL, force=True)
        assert result['status'] == 'completed'
        assert result['posts_found'] == 0

    def test_pause_saves_checkpoint_and_resume_finishes(self, pipeline, scraper, http):
        two_page_thread(http)
        activity = pipeline.activities.start_task(TaskType.SCRAPER_THREAD, 'Scraping', {'url': THREAD_URL})
        pipeline.activities.pause(activity['id'])

        result = scraper.scrape_thread_complete(THREAD_URL, activity_id=activity['id'])

        assert result['status'] == 'paused'
        paused = pipeline.activities.get(activity['id'])
        assert paused['checkpoint'] == {'url': THREAD_URL, 'page': 1, 'post_number': 0}
        assert paused['message'] == '⏸️ Task paused during post scraping (page 1)'

        pipeline.activities.resume(activity['id'])
        pipeline.activities.wait_for_resumers(timeout=5)

        done = pipeline.activities.get(activity['id'])
        assert done['status'] == ActivityStatus.COMPLETED
        assert done['message'].startswith('Successfully scraped thread: 3 posts')

    def test_cancel_stops_the_scrape(self, pipeline, scraper, http):
        two_page_thread(http)
        activity = pipeline.activities.start_task(TaskType.SCRAPER_THREAD, 'Scraping', {'url': THREAD_URL})
        pipeline.activities.cancel(activity['id'])

        result = scraper.scrape_thread_complete(THREAD_URL, activity_id=activity['id'])
        assert result['status'] == 'cancelled'
        assert not http.calls_for('GET', THREAD_URL + '/page-2')

    def test_failed_page_walk_is_retried_on_next_scrape(self, pipeline, scraper, http):
        two_page_thread(http)
        second = http.routes[('GET', THREAD_URL + '/page-2')]
        http.add('GET', THREAD_URL + '/page-2', FakeResponse(500))

        with pytest.raises(ScraperException):
            scraper.scrape_thread_complete(THREAD_URL)

        http.add('GET', THREAD_URL + '/page-2', *second)
        result = scraper.scrape_thread_complete(THREAD_URL)

        assert result['status'] == 'completed'
        assert result['total_posts'] == 3
        thread = scraper.get_thread(result['thread_id'])
        assert thread['post_count'] == 3
        assert thread['reply_count'] == 10

    def test_resumed_scrape_reports_stored_totals(self, pipeline, scraper, http):
        two_page_thread(http)
        scraper.scrape_thread_complete(THREAD_URL)
        activity = pipeline.activities.start_task(TaskType.SCRAPER_THREAD, 'Scraping', {'url': THREAD_URL})

        result = scraper.scrape_thread_complete(
            THREAD_URL, activity_id=activity['id'], checkpoint={'url': THREAD_URL, 'page': 2, 'post_number': 2}
        )

        assert result['status'] == 'completed'
        assert result['total_posts'] == 3
        done = pipeline.activities.get(activity['id'])
        assert done['message'] == 'Successfully scraped thread: 3 posts, 3 download links found'


class TestFetchErrors:

    def test_unauthorized_fails_activity(self, pipeline, scraper, http):
        http.add_page(THREAD_URL, 'Login required', status=401)

        with pytest.raises(AuthenticationException):
            scraper.scrape_thread_complete(THREAD_URL)

        failed = pipeline.activities.get_recent(1)[0]
        assert failed['status'] == ActivityStatus.FAILED
        assert failed['message'] == 'Failed to scrape thread: authentication required - please set session cookie'

    def test_server_error_is_retried(self, scraper, http):
        page = thread_page_html([post_html(1, link(GOFILE))])
        http.add('GET', THREAD_URL, FakeResponse(503), FakeResponse(200, page))

        result = scraper.scrape_thread_complete(THREAD_URL)

        assert result['status'] == 'completed'
        assert len(http.calls_for('GET', THREAD_URL)) == 2

    def test_persistent_server_error_gives_up(self, scraper, http):
        http.add('GET', THREAD_URL, FakeResponse(500))

        with pytest.raises(ScraperException) as exc_info:
            scraper.scrape_thread_complete(THREAD_URL)

        assert exc_info.value.status_code == 500
        assert len(http.calls_for('GET', THREAD_URL)) == scraper.max_retries + 1

    def test_connection_error(self, scraper, http):
        http.fail('GET', THREAD_URL)
        with pytest.raises(ScraperException):
            scraper.scrape_thread_complete(THREAD_URL)

    def test_invalid_thread_url(self, scraper):
        with pytest.raises(ScraperException):
            scraper.scrape_thread_complete('https://simpcity.su/forums')

    def test_missing_later_page_ends_pagination(self, scraper, http):
        first = thread_page_html([post_html(1, 'hi')], page=1, total_pages=2)
        http.add_page(THREAD_URL, first)

        result = scraper.scrape_thread_complete(THREAD_URL)
        assert result['status'] == 'completed'
        assert result['total_posts'] == 1


class TestSessionCookie:

    def test_cookie_is_cleaned_persisted_and_sent(self, pipeline, scraper, http):
        scraper.set_session_cookie('  xf_session=abc;\n xf_user=1 \r\n')
        assert scraper.get_session_cookie() == 'xf_session=abc; xf_user=1'

        scraper._session_cookie = ''
        assert scraper.load_session_cookie() == 'xf_session=abc; xf_user=1'

        http.add_page(THREAD_URL, thread_page_html([post_html(1, 'hi')]))
        scraper.scrape_thread_complete(THREAD_URL)
        headers = http.calls_for('GET', THREAD_URL)[0][2]['headers']
        assert headers['Cookie'] == 'xf_session=abc; xf_user=1'


class TestForumScrape:

    def test_forum_scrape_counts_successes_and_errors(self, pipeline, scraper, http):
        http.add_page(FORUM_URL, forum_index_html([
            ('[OnlyFans] Jane Doe', '/threads/jane-doe.111/', 3),
            ('Broken Thread', '/threads/broken.222/', 1),
        ]))
        http.add_page('https://simpcity.su/threads/jane-doe.111', thread_page_html([post_html(11, link(GOFILE))]))
        http.add_page('https://simpcity.su/threads/broken.222', 'gone', status=410)

        result = scraper.scrape_forum_and_save_all(FORUM_URL + '/')

        assert result['status'] == 'completed'
        assert result['total_threads'] == 2
        assert result['success_count'] == 1
        assert result['error_count'] == 1

        forum_activity = pipeline.activities.get(result['activity_id'])
        assert forum_activity['task_type'] == TaskType.FORUM_SCRAPE
        assert forum_activity['message'] == 'Forum scrape complete. Success: 1, Errors: 1'

        thread_activities = [
            a for a in pipeline.activities.get_recent(10) if a['task_type'] == TaskType.SCRAPER_THREAD
        ]
        assert sorted(a['status'] for a in thread_activities) == [ActivityStatus.COMPLETED, ActivityStatus.FAILED]

    def test_index_pages_are_walked(self, scraper, http):
        http.add_page(FORUM_URL, forum_index_html([('One', '/threads/one.1/', 0)], has_next=True))
        http.add_page(FORUM_URL + '/page-2', forum_index_html([('Two', '/threads/two.2/', 0), ('One', '/threads/one.1/', 0)]))

        threads, stop = scraper.enumerate_forum_threads(FORUM_URL)

        assert stop is None
        assert [t['external_id'] for t in threads] == ['1', '2']

    def test_paused_forum_scrape_checkpoints_thread_index(self, pipeline, scraper, http):
        http.add_page(FORUM_URL, forum_index_html([('One', '/threads/one.1/', 0)]))
        activity = pipeline.activities.start_task(TaskType.FORUM_SCRAPE, 'Forum', {'forum_url': FORUM_URL})
        checkpoint = {
            'forum_url': FORUM_URL,
            'threads': [{'title': 'One', 'url': 'https://simpcity.su/threads/one.1', 'external_id': '1'}],
            'thread_index': 0,
        }
        pipeline.activities.pause(activity['id'])

        result = scraper.scrape_forum_and_save_all(FORUM_URL, activity_id=activity['id'], checkpoint=checkpoint)

        assert result == {'activity_id': activity['id'], 'status': 'paused', 'thread_index': 0}
        saved = pipeline.activities.get(activity['id'])['checkpoint']
        assert saved['thread_index'] == 0
        assert saved['total_threads'] == 1


class TestQueries:

    @pytest.fixture
    def scraped(self, scraper, http):
        two_page_thread(http)
        return scraper.scrape_thread_complete(THREAD_URL)

    def test_list_and_filter(self, scraper, scraped):
        threads, total = scraper.get_all_threads()
        assert total == 1
        assert threads[0]['id'] == scraped['thread_id']

        assert scraper.get_all_threads(provider='gofile')[1] == 1
        assert scraper.get_all_threads(provider='mega')[1] == 0
        assert scraper.get_all_threads(filter='no_downloads')[1] == 0
        assert scraper.get_all_threads(search='jane')[1] == 1

    def test_search_matches_post_text(self, scraper, scraped):
        assert scraper.search_threads('Mirror')[1] == 1
        assert scraper.search_threads('nothing like this')[1] == 0

    def test_stats(self, scraper, scraped):
        stats = scraper.get_stats()
        assert stats['total_threads'] == 1
        assert stats['total_posts'] == 3
        assert stats['total_download_links'] == 3
        assert stats['provider_breakdown'] == {'bunkr': 1, 'gofile': 1, 'pixeldrain': 1}
        assert stats['last_scraped_at'] is not None

    def test_delete_thread_cascades(self, scraper, scraped):
        assert scraper.delete_thread(scraped['thread_id']) is True
        assert scraper.get_links_by_thread(scraped['thread_id']) == []
        assert scraper.get_posts_by_thread(scraped['thread_id']) == []
        with pytest.raises(NotFoundException):
            scraper.get_thread(scraped['thread_id'])
        with pytest.raises(NotFoundException):
            scraper.delete_thread(scraped['thread_id'])
