"""
Tests for the REST API: response envelopes, status codes and the
background task endpoints
"""
import pytest

from conftest import THREAD_URL, FakeResponse, FakeSession, post_html, thread_page_html
from models.activity import ActivityStatus, TaskType
from services.jdownloader_service import JDownloaderService

GOFILE = 'https://gofile.io/d/api42'


def data_of(response):
    body = response.get_json()
    assert body['success'] is True
    assert body['code'] == 'SUCCESS'
    return body.get('data')


def error_of(response, status, code):
    assert response.status_code == status
    body = response.get_json()
    assert body['success'] is False
    assert body['code'] == code
    return body['message']


class TestHealth:

    def test_health(self, client):
        response = client.get('/api/health')

        assert response.status_code == 200
        health = data_of(response)
        assert health['status'] == 'healthy'
        assert health['database'] == 'ok'
        assert health['hub'] == 'running'
        assert health['workers'] == 'disabled'

    def test_liveness(self, client):
        response = client.get('/api/health/live')
        assert response.status_code == 200
        assert response.get_json() == {'status': 'alive'}

    def test_unknown_route_uses_error_envelope(self, client):
        error_of(client.get('/api/nowhere'), 404, 'NOT_FOUND')

    def test_prometheus_metrics(self, client):
        client.get('/api/health')
        response = client.get('/api/metrics')
        assert response.status_code == 200
        assert b'vidstash_api_requests_total' in response.data

    def test_system_status(self, client):
        status = data_of(client.get('/api/system/status'))
        assert set(status) >= {'hub', 'activities', 'scheduler', 'watcher', 'companion'}
        assert status['builtin_jobs'] == []


class TestActivityApi:

    def create(self, client, task_type=TaskType.SCANNING):
        response = client.post('/api/activity', json={'task_type': task_type, 'message': 'Scanning library'})
        assert response.status_code == 201
        return data_of(response)

    def test_create_and_fetch(self, client):
        activity = self.create(client)

        fetched = data_of(client.get(f"/api/activity/{activity['id']}"))
        assert fetched['status'] == ActivityStatus.RUNNING
        assert fetched['message'] == 'Scanning library'

    def test_create_validation(self, client):
        response = client.post('/api/activity', json={})
        error_of(response, 400, 'VALIDATION_ERROR')
        assert response.get_json()['details'] == {'field': 'task_type'}
        message = error_of(client.post('/api/activity', json={'task_type': 'knitting'}), 400, 'VALIDATION_ERROR')
        assert 'knitting' in message

    def test_unknown_activity(self, client):
        error_of(client.get('/api/activity/999'), 404, 'NOT_FOUND')
        error_of(client.post('/api/activity/999/pause'), 404, 'NOT_FOUND')

    def test_status_and_stats(self, client):
        self.create(client)
        done = self.create(client)
        client.put(f"/api/activity/{done['id']}", json={'status': 'completed', 'completed': True})

        status = data_of(client.get('/api/activity/status'))
        assert status['running_tasks'] == 1
        assert status['completed_tasks'] == 1

        stats = data_of(client.get('/api/activity/stats'))
        assert stats[TaskType.SCANNING] == {'total': 2, 'running': 1, 'completed': 1}

    def test_list_by_status_is_paginated(self, client):
        for _ in range(3):
            self.create(client)

        body = client.get('/api/activity?status=running&limit=2').get_json()
        assert len(body['data']) == 2
        assert body['pagination']['total'] == 3
        assert body['pagination']['has_more'] is True

        assert len(data_of(client.get('/api/activity'))) == 3

    def test_pause_resume_cancel(self, client):
        activity = self.create(client)
        url = f"/api/activity/{activity['id']}"

        error_of(client.post(url + '/resume'), 409, 'CONFLICT')

        paused = data_of(client.post(url + '/pause'))
        assert paused['paused'] is True

        resumed = data_of(client.post(url + '/resume'))
        assert resumed['paused'] is False

        cancelled = data_of(client.post(url + '/cancel'))
        assert cancelled['status'] == ActivityStatus.FAILED
        assert cancelled['message'] == 'Cancelled by user'

        error_of(client.post(url + '/cancel'), 409, 'CONFLICT')
        error_of(client.post(url + '/pause'), 409, 'CONFLICT')

    def test_clean(self, client):
        self.create(client)

        assert data_of(client.post('/api/activity/clean', json={'days': 30})) == {'deleted': 0}
        error_of(client.post('/api/activity/clean', json={'days': -1}), 400, 'VALIDATION_ERROR')
        assert data_of(client.post('/api/activity/clean', json={'all': True})) == {'deleted': 1}

    def test_delete(self, client):
        activity = self.create(client)
        assert client.delete(f"/api/activity/{activity['id']}").status_code == 200
        error_of(client.get(f"/api/activity/{activity['id']}"), 404, 'NOT_FOUND')


class TestScraperApi:

    @pytest.fixture
    def scraped_thread(self, client, pipeline, http):
        http.add_page(THREAD_URL, thread_page_html([post_html(1, f'<a href="{GOFILE}">get</a>')]))

        response = client.post('/api/scraper/thread', json={'url': THREAD_URL})
        assert response.status_code == 202
        activity = data_of(response)
        pipeline.wait_for_tasks(timeout=5)
        return activity

    def test_thread_scrape_runs_in_background(self, client, pipeline, scraped_thread):
        assert scraped_thread['task_type'] == TaskType.SCRAPER_THREAD
        assert scraped_thread['details'] == {'url': THREAD_URL}

        activity = pipeline.activities.get(scraped_thread['id'])
        assert activity['status'] == ActivityStatus.COMPLETED
        assert activity['message'] == 'Successfully scraped thread: 1 posts, 1 download links found'

    def test_thread_listing_and_detail(self, client, scraped_thread):
        body = client.get('/api/scraper/threads?per_page=10').get_json()
        assert body['pagination']['total'] == 1
        thread = body['data'][0]
        assert thread['title'] == 'Jane Doe - Summer Set'

        assert data_of(client.get(f"/api/scraper/threads/{thread['id']}"))['url'] == THREAD_URL
        links = data_of(client.get(f"/api/scraper/threads/{thread['id']}/links"))
        assert [l['url'] for l in links] == [GOFILE]
        assert len(data_of(client.get(f"/api/scraper/threads/{thread['id']}/posts"))) == 1

        found = client.get('/api/scraper/threads/search?q=Jane').get_json()
        assert found['pagination']['total'] == 1
        error_of(client.get('/api/scraper/threads/search'), 400, 'VALIDATION_ERROR')

    def test_delete_thread(self, client, scraped_thread):
        thread_id = client.get('/api/scraper/threads').get_json()['data'][0]['id']

        assert client.delete(f'/api/scraper/threads/{thread_id}').status_code == 200
        error_of(client.get(f'/api/scraper/threads/{thread_id}'), 404, 'NOT_FOUND')
        error_of(client.post('/api/scraper/threads/delete', json={'ids': 'all'}), 400, 'VALIDATION_ERROR')

    def test_thread_scrape_validation(self, client, pipeline):
        error_of(client.post('/api/scraper/thread', json={}), 400, 'VALIDATION_ERROR')
        error_of(
            client.post('/api/scraper/thread', json={'url': 'https://simpcity.su/members/someone.1/'}),
            400,
            'VALIDATION_ERROR',
        )
        assert pipeline.activities.get_recent() == []

    def test_session_cookie(self, client, pipeline):
        assert data_of(client.get('/api/scraper/cookie')) == {'configured': False, 'length': 0}

        saved = data_of(client.post('/api/scraper/cookie', json={'cookie': ' xf_user=abc\n'}))
        assert saved == {'configured': True, 'length': 11}
        assert pipeline.scraper.get_session_cookie() == 'xf_user=abc'

        error_of(client.post('/api/scraper/cookie', json={}), 400, 'VALIDATION_ERROR')


class TestLinksApi:

    @pytest.fixture
    def thread_id(self, pipeline, http):
        http.add_page(THREAD_URL, thread_page_html([post_html(1, f'<a href="{GOFILE}">get</a>')]))
        return pipeline.scraper.scrape_thread_complete(THREAD_URL)['thread_id']

    def test_verify_thread(self, client, pipeline, http, thread_id):
        http.add_head(GOFILE, 404)

        response = client.post(f'/api/links/verify/thread/{thread_id}')
        assert response.status_code == 202
        activity = data_of(response)
        pipeline.wait_for_tasks(timeout=5)

        done = pipeline.activities.get(activity['id'])
        assert done['status'] == ActivityStatus.COMPLETED
        assert done['message'] == 'Verified 1/1 links - Active: 0, Dead: 1, Expired: 0'

        stats = data_of(client.get(f'/api/links/thread/{thread_id}/stats'))
        assert stats['dead'] == 1

    def test_verify_unknown_thread(self, client):
        error_of(client.post('/api/links/verify/thread/999'), 404, 'NOT_FOUND')

    def test_verify_single_link(self, client, pipeline, http, thread_id):
        http.add_head(GOFILE, 200)
        link_id = pipeline.scraper.get_links_by_thread(thread_id)[0]['id']

        checked = data_of(client.post(f'/api/links/verify/{link_id}'))
        assert checked['status'] == 'active'
        assert checked['last_checked_at'] is not None

    def test_sweep_validation(self, client):
        error_of(client.post('/api/links/verify/sweep', json={'limit': 0}), 400, 'VALIDATION_ERROR')

    def test_provider_health(self, client, thread_id):
        assert [r['provider'] for r in data_of(client.get('/api/links/health'))] == ['gofile']
        assert data_of(client.get('/api/links/health/gofile'))['total'] == 1
        error_of(client.get('/api/links/health/dropbox'), 400, 'VALIDATION_ERROR')

    def test_send_requires_thread(self, client):
        error_of(client.post('/api/links/send', json={}), 400, 'VALIDATION_ERROR')


class TestSchedulerApi:

    def create(self, client, **overrides):
        job = {
            'name': 'Nightly cleanup',
            'job_type': 'cleanup_old_activities',
            'schedule_type': 'interval',
            'schedule_config': {'interval_minutes': 60},
        }
        job.update(overrides)
        return client.post('/api/scheduler/jobs', json=job)

    def test_crud(self, client):
        response = self.create(client)
        assert response.status_code == 201
        job = data_of(response)
        assert job['next_run_at'] is None

        assert [j['id'] for j in data_of(client.get('/api/scheduler/jobs'))] == [job['id']]

        updated = data_of(client.put(f"/api/scheduler/jobs/{job['id']}", json={'name': 'Weekly cleanup'}))
        assert updated['name'] == 'Weekly cleanup'
        error_of(client.put(f"/api/scheduler/jobs/{job['id']}", json={'id': 5}), 400, 'VALIDATION_ERROR')

        assert client.delete(f"/api/scheduler/jobs/{job['id']}").status_code == 200
        error_of(client.get(f"/api/scheduler/jobs/{job['id']}"), 404, 'NOT_FOUND')

    def test_create_validation(self, client):
        error_of(self.create(client, name=''), 400, 'VALIDATION_ERROR')
        error_of(self.create(client, job_type='defragment'), 400, 'VALIDATION_ERROR')
        error_of(self.create(client, schedule_config={}), 400, 'VALIDATION_ERROR')

    def test_run_now_records_history(self, client, pipeline):
        job = data_of(self.create(client))

        response = client.post(f"/api/scheduler/jobs/{job['id']}/run")
        assert response.status_code == 202
        pipeline.scheduler.wait(timeout=5)

        history = data_of(client.get(f"/api/scheduler/history?job_id={job['id']}"))
        assert [h['status'] for h in history] == ['success']
        error_of(client.post('/api/scheduler/jobs/999/run'), 404, 'NOT_FOUND')

    def test_status(self, client):
        status = data_of(client.get('/api/scheduler/status'))
        assert status['running_jobs'] == []
        assert status['builtin_jobs'] == []


class TestSystemApi:

    def test_notifications(self, client, pipeline):
        first = pipeline.notifications.create('custom', 'One')
        pipeline.notifications.create('custom', 'Two')

        body = client.get('/api/notifications?per_page=1').get_json()
        assert body['pagination']['total'] == 2
        assert body['data'][0]['title'] == 'Two'

        assert data_of(client.post(f"/api/notifications/{first['id']}/read"))['is_read'] is True
        unread = client.get('/api/notifications?unread=true').get_json()
        assert [n['title'] for n in unread['data']] == ['Two']

        assert data_of(client.post('/api/notifications/read-all')) == {'updated': 1}
        assert data_of(client.get('/api/notifications/stats'))['unread'] == 0

        assert client.delete(f"/api/notifications/{first['id']}").status_code == 200
        error_of(client.delete(f"/api/notifications/{first['id']}"), 404, 'NOT_FOUND')

    def test_backups(self, client):
        response = client.post('/api/backups')
        assert response.status_code == 201
        backup = data_of(response)
        assert backup['type'] == 'manual'

        listing = data_of(client.get('/api/backups'))
        assert [b['name'] for b in listing['backups']] == [backup['name']]
        assert listing['stats']['total_backups'] == 1

        assert client.delete(f"/api/backups/{backup['name']}").status_code == 200
        error_of(client.delete(f"/api/backups/{backup['name']}"), 404, 'NOT_FOUND')

    def test_add_library(self, client, tmp_path):
        error_of(client.post('/api/libraries', json={'name': 'Main'}), 400, 'VALIDATION_ERROR')

        response = client.post('/api/libraries', json={'name': 'Main', 'path': str(tmp_path)})
        assert response.status_code == 201
        assert data_of(response)['path'] == str(tmp_path)

    def test_companion(self, client):
        assert data_of(client.get('/api/companion/status'))['running'] is False
        assert data_of(client.post('/api/companion/check')) == {'events': []}
        assert data_of(client.get('/api/companion/recommendations')) == []

    def test_watcher_status(self, client):
        assert data_of(client.get('/api/watcher/status'))['libraries'] == []

    def test_jdownloader(self, client, pipeline):
        session = FakeSession()
        pipeline.jdownloader = JDownloaderService('http://jd.local:3128', session=session, timeout=1)

        assert data_of(client.get('/api/jdownloader/status')) == {
            'available': False,
            'url': 'http://jd.local:3128',
        }

        session.fail('GET', 'http://jd.local:3128/downloadcontroller/start')
        error_of(client.post('/api/jdownloader/start'), 502, 'UPSTREAM_ERROR')
        error_of(client.post('/api/jdownloader/rewind'), 400, 'VALIDATION_ERROR')

        session.add('GET', 'http://jd.local:3128/downloadcontroller/stop', FakeResponse(200))
        assert client.post('/api/jdownloader/stop').status_code == 200
