"""
Unit tests for the notification dispatcher.
"""

import asyncio

import pytest

from crkd.monitoring import ServiceMetrics
from crkd.notifications import (
    DeliveryError,
    DispatcherState,
    NotificationDispatcher,
    RecipientLookupError,
    ServiceNotReadyError,
    TransportError,
)
from crkd.notifications.events import (
    AdminAlert,
    AssignmentEmailRequest,
    BlogPublished,
    CaseUpdated,
    ContactFormSubmitted,
    OfficerAssigned,
    SubscriptionConfirmed,
)
from crkd.storage import Station
from tests.utils.fakes import FakeTransport, FlakyDocumentStore

ADMIN = "admin@crk.ke"


def _assignment(station="kilimani", officer_email="officer@police.go.ke"):
    officer = {'name': 'Jane Wanjiku', 'badgeNumber': 'KP-4411'}
    if station is not None:
        officer['station'] = station
    return OfficerAssigned.model_validate({
        'caseDetails': {
            'trackingId': 'CR-2024-001',
            'location': 'Kibera',
            'incidentType': 'robbery',
            'priority': 'high',
            'description': 'Armed robbery near the market',
        },
        'officerEmail': officer_email,
        'officerDetails': officer,
    })


def _blog():
    return BlogPublished.model_validate({'blog': {'id': 'b1', 'title': 'Safety tips', 'content': 'Lock doors'}})


class TestDispatcherReadiness:

    @pytest.mark.asyncio
    async def test_initialize_ready(self):
        transport = FakeTransport()
        dispatcher = NotificationDispatcher(transport, FlakyDocumentStore())

        assert dispatcher.state is DispatcherState.UNINITIALIZED
        state = await dispatcher.initialize()

        assert state is DispatcherState.READY
        assert dispatcher.is_ready
        assert transport.verify_calls == 1

    @pytest.mark.asyncio
    async def test_initialize_unavailable(self):
        transport = FakeTransport(verify_error=TransportError("535 bad credentials"))
        dispatcher = NotificationDispatcher(transport, FlakyDocumentStore())

        assert await dispatcher.initialize() is DispatcherState.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_initialize_runs_handshake_once(self):
        transport = FakeTransport()
        dispatcher = NotificationDispatcher(transport, FlakyDocumentStore())

        await dispatcher.initialize()
        await dispatcher.initialize()

        assert transport.verify_calls == 1

    @pytest.mark.asyncio
    async def test_handshake_timeout_marks_unavailable(self):
        class HangingTransport(FakeTransport):
            async def verify(self):
                await asyncio.sleep(10)

        dispatcher = NotificationDispatcher(HangingTransport(), FlakyDocumentStore(),
                                            send_timeout_seconds=0.05)

        assert await dispatcher.initialize() is DispatcherState.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_service_status_reflects_live_handshake(self):
        transport = FakeTransport()
        dispatcher = NotificationDispatcher(transport, FlakyDocumentStore())
        await dispatcher.initialize()

        ready = await dispatcher.get_service_status()
        transport.verify_error = TransportError("Invalid login: 535")
        error = await dispatcher.get_service_status()

        assert ready.to_dict() == {'status': 'ready', 'message': 'Email service is configured and ready'}
        assert error.status == 'error'
        assert error.details == "Invalid login: 535"
        assert transport.verify_calls == 3
        # the start-up decision stands until restart
        assert dispatcher.state is DispatcherState.READY

    @pytest.mark.asyncio
    async def test_sends_fail_fast_when_not_ready(self):
        transport = FakeTransport(verify_error=TransportError("down"))
        dispatcher = NotificationDispatcher(transport, FlakyDocumentStore(), admin_email=ADMIN,
                                            admin_emails=[ADMIN])
        await dispatcher.initialize()

        calls = [
            dispatcher.send_blog_notification(_blog()),
            dispatcher.send_case_update(CaseUpdated.model_validate(
                {'caseDetails': {'trackingId': 'CR-1', 'status': 'closed'}, 'userEmail': 'a@b.com'})),
            dispatcher.send_officer_assignment_notification(_assignment()),
            dispatcher.send_subscription_confirmation(SubscriptionConfirmed(email='a@b.com')),
            dispatcher.send_contact_form_submission(
                ContactFormSubmitted(name='A', email='a@b.com', message='hi')),
            dispatcher.send_admin_alert(AdminAlert(type='t', message='m')),
        ]
        for call in calls:
            with pytest.raises(ServiceNotReadyError):
                await call

        assert transport.attempts == []

    @pytest.mark.asyncio
    async def test_uninitialized_dispatcher_is_not_ready(self):
        transport = FakeTransport()
        dispatcher = NotificationDispatcher(transport, FlakyDocumentStore())

        with pytest.raises(ServiceNotReadyError):
            await dispatcher.send_subscription_confirmation(SubscriptionConfirmed(email='a@b.com'))
        assert transport.attempts == []

    def test_rejects_invalid_limits(self):
        with pytest.raises(ValueError):
            NotificationDispatcher(FakeTransport(), FlakyDocumentStore(), send_timeout_seconds=0)
        with pytest.raises(ValueError):
            NotificationDispatcher(FakeTransport(), FlakyDocumentStore(), max_concurrent_sends=0)


class TestOfficerAssignment:

    @pytest.fixture
    def store(self):
        store = FlakyDocumentStore()
        store.add_station(Station(id="kilimani", name="Kilimani", ocs_email="ocs.kilimani@police.go.ke"))
        store.add_station(Station(id="no-ocs", name="Rural post"))
        return store

    async def _ready(self, transport, store, admin_email=ADMIN):
        dispatcher = NotificationDispatcher(transport, store, admin_email=admin_email)
        await dispatcher.initialize()
        return dispatcher

    @pytest.mark.asyncio
    async def test_sends_to_officer_and_station_ocs(self, store):
        transport = FakeTransport()
        dispatcher = await self._ready(transport, store)

        result = await dispatcher.send_officer_assignment_notification(_assignment())

        assert result.success
        assert transport.recipients == ["officer@police.go.ke", "ocs.kilimani@police.go.ke"]
        assert transport.attempts[0].subject == "New Case Assignment: CR-2024-001"
        assert transport.attempts[1].subject == "Case Assignment Notification: CR-2024-001"

    @pytest.mark.asyncio
    async def test_station_without_ocs_falls_back_to_admin(self, store):
        transport = FakeTransport()
        dispatcher = await self._ready(transport, store)

        result = await dispatcher.send_officer_assignment_notification(_assignment(station="no-ocs"))

        assert result.success
        assert transport.recipients == ["officer@police.go.ke", ADMIN]

    @pytest.mark.asyncio
    async def test_unknown_or_missing_station_falls_back_to_admin(self, store):
        transport = FakeTransport()
        dispatcher = await self._ready(transport, store)

        await dispatcher.send_officer_assignment_notification(_assignment(station="unknown"))
        await dispatcher.send_officer_assignment_notification(_assignment(station=None))

        assert transport.recipients == ["officer@police.go.ke", ADMIN, "officer@police.go.ke", ADMIN]

    @pytest.mark.asyncio
    async def test_station_lookup_error_falls_back_to_admin(self, store):
        transport = FakeTransport()
        dispatcher = await self._ready(transport, store)
        store.fail_station_lookup = True

        result = await dispatcher.send_officer_assignment_notification(_assignment())

        assert result.success
        assert transport.recipients == ["officer@police.go.ke", ADMIN]

    @pytest.mark.asyncio
    async def test_secondary_failure_does_not_fail_operation(self, store):
        transport = FakeTransport(fail_for={"ocs.kilimani@police.go.ke": TransportError("550 no such user")})
        dispatcher = await self._ready(transport, store)

        result = await dispatcher.send_officer_assignment_notification(_assignment())

        assert result.success
        assert result.sent == 1
        assert len(transport.attempts) == 2

    @pytest.mark.asyncio
    async def test_secondary_skipped_without_admin_address(self, store):
        transport = FakeTransport()
        dispatcher = await self._ready(transport, store, admin_email=None)

        result = await dispatcher.send_officer_assignment_notification(_assignment(station="no-ocs"))

        assert result.success
        assert transport.recipients == ["officer@police.go.ke"]

    @pytest.mark.asyncio
    async def test_primary_failure_fails_operation(self, store):
        transport = FakeTransport(fail_for={"officer@police.go.ke": TransportError("550 mailbox full")})
        dispatcher = await self._ready(transport, store)

        with pytest.raises(DeliveryError) as exc_info:
            await dispatcher.send_officer_assignment_notification(_assignment())

        assert exc_info.value.operation == 'officer_assignment'
        assert exc_info.value.recipient == "officer@police.go.ke"
        # no OCS copy for an assignment the officer never heard about
        assert len(transport.attempts) == 1


class TestFanOut:

    @pytest.mark.asyncio
    async def test_blog_with_zero_subscribers_succeeds(self):
        transport = FakeTransport()
        dispatcher = NotificationDispatcher(transport, FlakyDocumentStore())
        await dispatcher.initialize()

        result = await dispatcher.send_blog_notification(_blog())

        assert result.success
        assert result.sent == 0
        assert transport.attempts == []

    @pytest.mark.asyncio
    async def test_blog_goes_to_active_subscribers_only(self):
        store = FlakyDocumentStore()
        store.add_subscriber("a@example.com")
        store.add_subscriber("gone@example.com", active=False)
        store.add_subscriber("b@example.com")
        transport = FakeTransport()
        dispatcher = NotificationDispatcher(transport, store, frontend_url="https://crk.ke")
        await dispatcher.initialize()

        result = await dispatcher.send_blog_notification(_blog())

        assert result.sent == 2
        assert sorted(transport.recipients) == ["a@example.com", "b@example.com"]
        assert 'href="https://crk.ke/blog/b1"' in transport.attempts[0].html

    @pytest.mark.asyncio
    async def test_one_bad_address_does_not_fail_the_rest(self):
        store = FlakyDocumentStore()
        for email in ("a@example.com", "bad@example.com", "c@example.com"):
            store.add_subscriber(email)
        transport = FakeTransport(fail_for={"bad@example.com": TransportError("550 unknown user")})
        dispatcher = NotificationDispatcher(transport, store)
        await dispatcher.initialize()

        result = await dispatcher.send_blog_notification(_blog())

        assert result.success
        assert result.sent == 2
        assert result.failed == 1
        assert result.failures[0].recipient == "bad@example.com"
        assert "550" in result.failures[0].error
        assert result.to_dict(include_summary=True)['failures'] == [
            {'recipient': 'bad@example.com', 'error': '550 unknown user'}
        ]

    @pytest.mark.asyncio
    async def test_all_failures_reported_as_unsuccessful(self):
        error = TransportError("connection reset")
        transport = FakeTransport(fail_for={ADMIN: error, "ops@crk.ke": error})
        dispatcher = NotificationDispatcher(transport, FlakyDocumentStore(), admin_emails=[ADMIN, "ops@crk.ke"])
        await dispatcher.initialize()

        result = await dispatcher.send_admin_alert(AdminAlert(type="Outage", message="db down"))

        assert not result.success
        assert result.failed == 2
        assert result.message == "Failed to send admin alert to any recipient"

    @pytest.mark.asyncio
    async def test_admin_alert_fans_out(self):
        transport = FakeTransport()
        dispatcher = NotificationDispatcher(transport, FlakyDocumentStore(), admin_emails=[ADMIN, "ops@crk.ke"])
        await dispatcher.initialize()

        result = await dispatcher.send_admin_alert(AdminAlert(type="Outage", message="db down"))

        assert result.success
        assert sorted(transport.recipients) == [ADMIN, "ops@crk.ke"]
        assert all(m.subject == "ALERT: Outage" for m in transport.attempts)

    @pytest.mark.asyncio
    async def test_admin_alert_without_admin_list(self):
        dispatcher = NotificationDispatcher(FakeTransport(), FlakyDocumentStore())
        await dispatcher.initialize()

        with pytest.raises(RecipientLookupError):
            await dispatcher.send_admin_alert(AdminAlert(type="Outage", message="db down"))

    @pytest.mark.asyncio
    async def test_in_flight_sends_are_bounded(self):
        store = FlakyDocumentStore()
        for i in range(12):
            store.add_subscriber(f"user{i}@example.com")
        transport = FakeTransport(send_delay=0.01)
        dispatcher = NotificationDispatcher(transport, store, max_concurrent_sends=3)
        await dispatcher.initialize()

        result = await dispatcher.send_blog_notification(_blog())

        assert result.sent == 12
        assert transport.max_in_flight <= 3

    @pytest.mark.asyncio
    async def test_stalled_send_times_out(self):
        store = FlakyDocumentStore()
        store.add_subscriber("slow@example.com")
        transport = FakeTransport(send_delay=1.0)
        dispatcher = NotificationDispatcher(transport, store, send_timeout_seconds=0.05)
        await dispatcher.initialize()

        result = await dispatcher.send_blog_notification(_blog())

        assert result.failed == 1
        assert "timed out" in result.failures[0].error


class TestSingleRecipientSends:

    @pytest.fixture
    def transport(self):
        return FakeTransport()

    @pytest.fixture
    def metrics(self):
        return ServiceMetrics()

    @pytest.fixture
    def dispatcher(self, transport, metrics):
        return NotificationDispatcher(transport, FlakyDocumentStore(), frontend_url="https://crk.ke/",
                                      admin_email=ADMIN, metrics=metrics)

    @pytest.mark.asyncio
    async def test_case_update(self, dispatcher, transport):
        await dispatcher.initialize()
        event = CaseUpdated.model_validate({
            'caseDetails': {'trackingId': 'CR-7', 'status': 'resolved', 'statusNotes': 'Suspect charged'},
            'userEmail': 'reporter@example.com',
        })

        result = await dispatcher.send_case_update(event)

        assert result.success
        assert transport.recipients == ['reporter@example.com']
        assert 'Suspect charged' in transport.attempts[0].html
        assert 'https://crk.ke/track-report' in transport.attempts[0].html

    @pytest.mark.asyncio
    async def test_subscription_confirmation(self, dispatcher, transport):
        await dispatcher.initialize()

        await dispatcher.send_subscription_confirmation(SubscriptionConfirmed(email='a@b.com'))

        assert transport.recipients == ['a@b.com']
        assert 'Thank you for subscribing!' in transport.attempts[0].html

    @pytest.mark.asyncio
    async def test_contact_form_goes_to_admin_with_reply_to(self, dispatcher, transport):
        await dispatcher.initialize()
        form = ContactFormSubmitted(name='Visitor', email='visitor@example.com', message='Hello')

        await dispatcher.send_contact_form_submission(form)

        assert transport.recipients == [ADMIN]
        assert transport.attempts[0].reply_to == 'visitor@example.com'

    @pytest.mark.asyncio
    async def test_contact_form_without_admin_address(self, transport):
        dispatcher = NotificationDispatcher(transport, FlakyDocumentStore())
        await dispatcher.initialize()

        with pytest.raises(RecipientLookupError):
            await dispatcher.send_contact_form_submission(
                ContactFormSubmitted(name='V', email='v@example.com', message='Hi'))
        assert transport.attempts == []

    @pytest.mark.asyncio
    async def test_assignment_email(self, dispatcher, transport):
        await dispatcher.initialize()
        event = AssignmentEmailRequest.model_validate({
            'officerEmail': 'officer@police.go.ke',
            'reportDetails': {
                'status': 'urgent', 'incidentType': 'assault', 'location': 'CBD', 'county': 'Nairobi',
                'date': '2024-01-01', 'time': '10:00', 'description': 'Fight',
                'assignedAt': '2024-01-01T10:30:00Z',
            },
        })

        await dispatcher.send_assignment_email(event)

        assert transport.attempts[0].subject == "[URGENT] New Case Assignment - Crime Report"

    @pytest.mark.asyncio
    async def test_failed_send_raises_delivery_error(self, dispatcher, transport, metrics):
        await dispatcher.initialize()
        transport.fail_for['a@b.com'] = TransportError("550 rejected")

        with pytest.raises(DeliveryError, match="subscription_confirmation to a@b.com failed"):
            await dispatcher.send_subscription_confirmation(SubscriptionConfirmed(email='a@b.com'))

        assert metrics.registry.get_sample_value(
            'crkd_notifications_total', {'event': 'subscription_confirmation', 'outcome': 'failure'}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_successful_send_is_counted(self, dispatcher, metrics):
        await dispatcher.initialize()

        await dispatcher.send_subscription_confirmation(SubscriptionConfirmed(email='a@b.com'))

        assert metrics.registry.get_sample_value(
            'crkd_notifications_total', {'event': 'subscription_confirmation', 'outcome': 'success'}
        ) == 1.0
