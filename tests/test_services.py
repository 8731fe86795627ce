import json

import pytest

from apps.bliss.errors import MetadataFailure, NotFound, StorageFailure, ValidationFailure
from apps.bliss.services import BlissState, can_transition
from conftest import NOW, RecordingTransport, run_with_db


class FailingStorage:
    bucket = 'broken'

    async def put(self, key, data, content_type='application/octet-stream'):
        raise StorageFailure(f'S3 PUT failed for broken/{key}')

    async def exists(self, key):
        raise StorageFailure('S3 HEAD failed')


class FailingMetadata:
    table = 'broken'

    async def put(self, record):
        raise MetadataFailure('PutItem failed')


def _events(transport):
    return [(topic, json.loads(message)) for topic, message in transport.messages]


def test_submit_data_request_stores_record_and_notifies(make_coordinator, transport):
    coordinator = make_coordinator()

    async def scenario():
        submitted = await coordinator.submit_data_request('c1', 'starX', {'note': 'hi'})
        item = await coordinator.requests.get(submitted.id)
        data = await coordinator.fetch_request_data(submitted.id)
        return submitted, item, data

    submitted, item, data = run_with_db(scenario)
    assert isinstance(submitted.id, int)
    assert submitted.notified is True
    assert item['VIDEO_EXISTS'] is False
    assert item['EXPIRE_TIME'] == item['CREATED_AT'] + 3600 == NOW + 3600
    assert (data.client_id, data.celeb_name, data.payload) == ('c1', 'starX', {'note': 'hi'})
    assert _events(transport) == [('topic-request', {
        'EVENT': 'BLISS_REQUEST_RECEIVED', 'BLISS_REQUEST_ID': submitted.id,
        'CLIENT_ID': 'c1', 'CELEB_NAME': 'starX'})]


def test_missing_fields_fail_before_any_write(make_coordinator, transport):
    coordinator = make_coordinator()

    async def scenario():
        with pytest.raises(ValidationFailure, match='celeb_name is undefined'):
            await coordinator.submit_data_request('c1', None, {'note': 'hi'})
        with pytest.raises(ValidationFailure, match='bliss_video is undefined'):
            await coordinator.submit_video_request('c1', 'starX', None, 'video/mp4')
        with pytest.raises(ValidationFailure):
            await coordinator.fetch_request_video_url('abc')

    run_with_db(scenario)
    assert transport.messages == []


def test_video_request_uploads_then_flags_video(make_coordinator):
    coordinator = make_coordinator()

    async def scenario():
        submitted = await coordinator.submit_video_request('c1', 'starX', b'mp4-bytes', 'video/mp4')
        item = await coordinator.requests.get(submitted.id)
        url = await coordinator.fetch_request_video_url(submitted.id)
        return submitted, item, url

    submitted, item, url = run_with_db(scenario)
    assert item['VIDEO_EXISTS'] is True
    assert url.expire_time == 300
    assert f'/request/{submitted.id}?' in url.url


def test_failed_video_upload_writes_no_metadata(make_coordinator, transport):
    coordinator = make_coordinator(request_videos=FailingStorage())

    async def scenario():
        with pytest.raises(StorageFailure):
            await coordinator.submit_video_request('c1', 'starX', b'mp4-bytes', 'video/mp4')
        bliss_id = NOW - coordinator.clock.epoch_offset
        return await coordinator.requests.get(bliss_id)

    assert run_with_db(scenario) is None
    assert transport.messages == []


def test_failed_metadata_write_leaves_orphan_blob(make_coordinator, transport):
    coordinator = make_coordinator(requests=FailingMetadata())

    async def scenario():
        with pytest.raises(MetadataFailure):
            await coordinator.submit_video_request('c1', 'starX', b'mp4-bytes', 'video/mp4')
        return await coordinator.request_videos.exists(str(NOW - coordinator.clock.epoch_offset))

    assert run_with_db(scenario) is True
    assert transport.messages == []


def test_request_video_url_not_found_names_the_id(make_coordinator):
    coordinator = make_coordinator()

    async def scenario():
        submitted = await coordinator.submit_data_request('c1', 'starX', {'note': 'hi'})
        with pytest.raises(NotFound) as exc:
            await coordinator.fetch_request_video_url(submitted.id)
        return submitted.id, exc.value

    bliss_id, error = run_with_db(scenario)
    assert str(bliss_id) in error.message
    assert error.status_code == 404


def test_fetch_request_data_for_unknown_id_is_not_found(make_coordinator):
    coordinator = make_coordinator()

    async def scenario():
        with pytest.raises(NotFound):
            await coordinator.fetch_request_data(12345)

    run_with_db(scenario)


def test_attach_video_flips_flag(make_coordinator):
    coordinator = make_coordinator()

    async def scenario():
        submitted = await coordinator.submit_data_request('c1', 'starX', {'note': 'hi'})
        await coordinator.attach_request_video(submitted.id, b'late-video', 'video/mp4')
        data = await coordinator.fetch_request_data(submitted.id)
        url = await coordinator.fetch_request_video_url(submitted.id)
        return data, url

    data, url = run_with_db(scenario)
    assert data.video_present is True
    assert data.payload == {'note': 'hi'}
    assert url.url


def test_cancel_is_idempotent_and_keeps_video(make_coordinator, transport):
    coordinator = make_coordinator()

    async def scenario():
        submitted = await coordinator.submit_video_request('c1', 'starX', b'mp4-bytes', 'video/mp4')
        first = await coordinator.cancel_request(submitted.id)
        second = await coordinator.cancel_request(submitted.id)
        item = await coordinator.requests.get(submitted.id)
        still_there = await coordinator.request_videos.exists(str(submitted.id))
        return submitted.id, first, second, item, still_there

    bliss_id, first, second, item, still_there = run_with_db(scenario)
    assert item is None
    assert still_there is True
    assert first.video_deleted is False and second.video_deleted is False
    assert first.notified is True and second.notified is False
    cancels = [e for e in _events(transport) if e[0] == 'topic-cancel']
    assert len(cancels) == 1
    topic, cancel_event = cancels[0]
    assert topic == 'topic-cancel'
    assert cancel_event['EVENT'] == 'BLISS_REQUEST_CANCELED'
    assert cancel_event['CLIENT_ID'] == 'c1'
    assert cancel_event['BLISS_REQUEST_TIME'] == (bliss_id + coordinator.clock.epoch_offset) * 1000
    assert cancel_event['BLISS_REQUEST_DATE'] == '2023-11-14'


def test_cancel_can_delete_video(make_coordinator):
    coordinator = make_coordinator(cancel_deletes_video=True)

    async def scenario():
        submitted = await coordinator.submit_video_request('c1', 'starX', b'mp4-bytes', 'video/mp4')
        canceled = await coordinator.cancel_request(submitted.id)
        return canceled, await coordinator.request_videos.exists(str(submitted.id))

    canceled, exists = run_with_db(scenario)
    assert canceled.video_deleted is True
    assert exists is False


def test_notification_failure_does_not_fail_workflow(make_coordinator):
    from apps.bliss.notifications import NotificationPublisher
    coordinator = make_coordinator(publisher=NotificationPublisher(RecordingTransport(fail=True)))

    async def scenario():
        submitted = await coordinator.submit_data_request('c1', 'starX', {'note': 'hi'})
        return submitted, await coordinator.requests.get(submitted.id)

    submitted, item = run_with_db(scenario)
    assert submitted.notified is False
    assert item['BLISS_REQUESTER'] == 'c1'


def test_response_for_unknown_request_is_still_created(make_coordinator, transport):
    coordinator = make_coordinator()

    async def scenario():
        responded = await coordinator.submit_response(424242, 'c1', 'starX', b'reply', 'video/mp4')
        item = await coordinator.responses.get(responded.id)
        url = await coordinator.fetch_response_video_url(responded.id)
        return responded, item, url

    responded, item, url = run_with_db(scenario)
    assert item['BLISS_REQUEST_ID'] == 424242
    assert item['EXPIRE_TIME'] == NOW + 3600
    assert url.expire_time == 3600
    assert f'/response-output/{responded.id}?' in url.url
    topic, event = _events(transport)[0]
    assert topic == 'topic-response'
    assert event['EVENT'] == 'BLISS_RESPONSE_SENT'
    assert event['BLISS_RESPONSE_ID'] == responded.id
    assert event['BLISS_REQUEST_TIME'] == (424242 + coordinator.clock.epoch_offset) * 1000


def test_response_without_transmux_has_no_output_video(make_coordinator):
    coordinator = make_coordinator(transcoder=None)

    async def scenario():
        responded = await coordinator.submit_response(1, 'c1', 'starX', b'reply', 'video/mp4')
        assert await coordinator.response_videos.exists(str(responded.id))
        with pytest.raises(NotFound):
            await coordinator.fetch_response_video_url(responded.id)

    run_with_db(scenario)


def test_response_upload_failure_stops_workflow(make_coordinator, transport):
    coordinator = make_coordinator(response_videos=FailingStorage())

    async def scenario():
        with pytest.raises(StorageFailure):
            await coordinator.submit_response(1, 'c1', 'starX', b'reply', 'video/mp4')
        return await coordinator.response_output.exists(str(NOW - coordinator.clock.epoch_offset))

    assert run_with_db(scenario) is False
    assert transport.messages == []


def test_state_transitions():
    assert can_transition(None, BlissState.CREATED_NO_VIDEO)
    assert can_transition(BlissState.CREATED_NO_VIDEO, BlissState.CREATED_WITH_VIDEO)
    assert can_transition(BlissState.CREATED_WITH_VIDEO, BlissState.CANCELED)
    assert not can_transition(BlissState.CREATED_WITH_VIDEO, BlissState.CREATED_NO_VIDEO)
    assert not can_transition(BlissState.CANCELED, BlissState.RESPONDED)
    assert not can_transition(None, BlissState.RESPONDED)


def test_cancel_of_unknown_request_publishes_nothing(make_coordinator, transport):
    coordinator = make_coordinator()

    async def scenario():
        return await coordinator.cancel_request(987654)

    canceled = run_with_db(scenario)
    assert canceled.notified is False
    assert transport.messages == []


def test_unexpected_publish_error_does_not_fail_workflow(make_coordinator):
    import httpx
    from apps.bliss.notifications import NotificationPublisher

    class BadUrlTransport:
        async def publish(self, topic, message):
            raise httpx.InvalidURL('Invalid URL component')

    coordinator = make_coordinator(publisher=NotificationPublisher(BadUrlTransport()))

    async def scenario():
        submitted = await coordinator.submit_data_request('c1', 'starX', {'note': 'hi'})
        return submitted, await coordinator.requests.get(submitted.id)

    submitted, item = run_with_db(scenario)
    assert submitted.notified is False
    assert item['BLISS_REQUESTER'] == 'c1'


def test_attach_to_request_with_video_is_rejected(make_coordinator):
    from apps.bliss.errors import InvalidTransition
    coordinator = make_coordinator()

    async def scenario():
        submitted = await coordinator.submit_video_request('c1', 'starX', b'first', 'video/mp4')
        with pytest.raises(InvalidTransition) as exc:
            await coordinator.attach_request_video(submitted.id, b'second', 'video/mp4')
        return exc.value, await coordinator.request_videos.get(str(submitted.id))

    error, blob = run_with_db(scenario)
    assert error.status_code == 409
    assert blob == (b'first', 'video/mp4')


class TranscoderDown:
    def __init__(self, *args, **kwargs):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, url, content=None, headers=None):
        class Resp:
            status_code = 500
            text = 'encoder crashed'
            content = b''
        return Resp()


def test_transmux_failure_stops_before_metadata(make_coordinator, transport, monkeypatch):
    from apps.bliss.transcoder import HTTPTranscoder
    monkeypatch.setattr('apps.bliss.transcoder.httpx.AsyncClient', TranscoderDown)
    coordinator = make_coordinator(transcoder=HTTPTranscoder('http://transcoder.test/transmux'))

    async def scenario():
        with pytest.raises(StorageFailure, match='Transmux failed: 500'):
            await coordinator.submit_response(1, 'c1', 'starX', b'reply', 'video/mp4')
        response_id = str(NOW - coordinator.clock.epoch_offset)
        return (await coordinator.response_videos.exists(response_id),
                await coordinator.response_output.exists(response_id),
                await coordinator.responses.get(int(response_id)))

    uploaded, transmuxed, item = run_with_db(scenario)
    assert uploaded is True
    assert transmuxed is False
    assert item is None
    assert transport.messages == []


def test_response_metadata_failure_stops_before_publish(make_coordinator, transport):
    coordinator = make_coordinator(responses=FailingMetadata())

    async def scenario():
        with pytest.raises(MetadataFailure):
            await coordinator.submit_response(1, 'c1', 'starX', b'reply', 'video/mp4')
        return await coordinator.response_output.exists(str(NOW - coordinator.clock.epoch_offset))

    assert run_with_db(scenario) is True
    assert transport.messages == []
