"""
RSVPUpdateStream tests. The Socket.IO connection itself is not opened;
payload handling is driven directly.
"""
import pytest
from unittest.mock import AsyncMock, Mock

from eventcast.realtime import RSVPUpdateStream


@pytest.fixture
def reconciler():
    reconciler = Mock()
    reconciler.apply_update = AsyncMock(return_value=True)
    return reconciler


@pytest.fixture
def stream(reconciler):
    return RSVPUpdateStream('http://localhost:5000', reconciler, api_key='secret')


VALID_PAYLOAD = {
    'message_id': '555',
    'attendance': [{'person_id': 'u1', 'display_name': 'Alice', 'status': 'accepted'}],
    'timestamp': '2025-06-01T12:00:00',
}


@pytest.mark.unit
class TestHandleUpdate:

    @pytest.mark.asyncio
    async def test_valid_payload_is_applied(self, stream, reconciler):
        applied = await stream.handle_update(VALID_PAYLOAD)

        assert applied is True
        notification = reconciler.apply_update.await_args.args[0]
        assert notification.message_id == '555'
        assert notification.attendance[0].status == 'accepted'
        assert stream.get_stats()['events_applied'] == 1

    @pytest.mark.asyncio
    async def test_malformed_payload_is_rejected(self, stream, reconciler):
        applied = await stream.handle_update({'message_id': '555', 'attendance': [{'status': 'maybe'}]})

        assert applied is False
        reconciler.apply_update.assert_not_awaited()
        assert stream.get_stats()['events_rejected'] == 1

    @pytest.mark.asyncio
    async def test_reconciler_errors_do_not_escape(self, stream, reconciler):
        reconciler.apply_update.side_effect = RuntimeError('boom')

        assert await stream.handle_update(VALID_PAYLOAD) is False
        assert stream.get_stats()['events_received'] == 1

    @pytest.mark.asyncio
    async def test_stop_without_start_is_safe(self, stream):
        await stream.stop()

        assert stream.get_stats()['connected'] is False
