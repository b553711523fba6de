"""
Flash card state machine and its asyncio session driver.

Session tests step the clock by hand: ``ManualClock`` returns at once
for every delay except the tick length, which waits until the test
calls ``tick()``.
"""
import asyncio

import pytest

from nursing.errors import DuplicateOffer, RequestNotLive
from nursing.realtime import card as c
from nursing.realtime.card import CardBoundary, FlashCard
from nursing.realtime.session import FlashCardSession
from nursing.services.geolocation import Position

REQUEST = {
    'id': 'r1',
    'patientName': 'Ayesha Khan',
    'urgency': 'critical',
    'servicesNeeded': ['iv_cannula', 'injection', 'vital_signs', 'nebulization'],
    'patientOfferPrice': 2500,
    'locationAddress': 'Clifton',
    'status': 'live',
}


def make_card(**kwargs):
    kwargs.setdefault('distance_km', 5.4)
    return FlashCard(dict(REQUEST), **kwargs)


def counting_card(**kwargs):
    card = make_card(**kwargs)
    card.entered()
    return card


# ---------------------------------------------------------------------
# FlashCard
# ---------------------------------------------------------------------

def test_countdown_times_out_like_a_dismiss():
    card = counting_card(auto_hide_seconds=3)
    assert not card.tick()
    assert not card.tick()
    assert card.tick()
    assert card.state == c.DISMISSED
    assert card.dismiss_reason == c.TIMEOUT


def test_countdown_frozen_during_offer_input():
    card = counting_card()
    for _ in range(10):
        card.tick()
    assert card.remaining == 35
    card.accept()
    for _ in range(60):
        assert not card.tick()
    assert card.state == c.OFFER_INPUT
    assert card.remaining == 35
    card.cancel_offer()
    card.tick()
    assert card.remaining == 34


def test_accept_prefills_price_and_eta():
    card = counting_card()
    card.accept()
    assert card.price == '2500'
    assert card.eta == '17'


def test_accept_falls_back_to_nurse_fee_and_default_eta():
    card = FlashCard({**REQUEST, 'patientOfferPrice': None}, nurse_fee=1800)
    card.entered()
    card.accept()
    assert card.price == '1800'
    assert card.eta == '30'


@pytest.mark.parametrize('price,eta', [('', '20'), ('2500', ''), ('abc', '20'), ('2500', '-5'), ('0', '10')])
def test_invalid_offer_stays_in_offer_input(price, eta):
    card = counting_card()
    card.accept()
    assert card.confirm(price, eta) is None
    assert card.state == c.OFFER_INPUT
    assert card.error


def test_confirm_moves_to_submitting():
    card = counting_card()
    card.accept()
    assert card.confirm('3000', '25', 'On my way') == (3000, 25, 'On my way')
    assert card.state == c.SUBMITTING
    # input is locked while sending
    assert not card.dismiss()
    assert card.confirm('1', '1') is None


def test_submission_failure_returns_to_offer_input():
    card = counting_card()
    card.accept()
    card.confirm()
    card.submission_failed("You've already sent an offer for this request")
    assert card.state == c.OFFER_INPUT
    assert card.error == "You've already sent an offer for this request"


@pytest.mark.parametrize('setup', ['entering', 'counting', 'offer_input'])
def test_status_change_force_dismisses(setup):
    card = make_card()
    if setup != 'entering':
        card.entered()
    if setup == 'offer_input':
        card.accept()
    assert card.request_changed({**REQUEST, 'status': 'matched'})
    assert card.state == c.DISMISSED
    assert card.dismiss_reason == c.UNAVAILABLE
    assert card.notice == c.UNAVAILABLE_NOTICE


def test_live_update_refreshes_the_card():
    card = counting_card()
    assert not card.request_changed({**REQUEST, 'patientOfferPrice': 4000})
    assert card.render()['priceText'] == 'PKR 4,000'


def test_status_change_while_submitting_waits_for_the_result():
    card = counting_card()
    card.accept()
    card.confirm()
    assert not card.request_changed({**REQUEST, 'status': 'matched'})
    assert card.state == c.SUBMITTING
    card.submission_succeeded()
    assert card.state == c.ACCEPTED
    # accepted is never yanked
    assert not card.request_changed({**REQUEST, 'status': 'matched'})
    assert card.state == c.ACCEPTED


def test_failed_submission_after_status_change_dismisses():
    card = counting_card()
    card.accept()
    card.confirm()
    card.request_changed(None)
    card.submission_failed('This request is no longer available')
    assert card.state == c.DISMISSED
    assert card.notice == c.UNAVAILABLE_NOTICE


def test_request_gone_failure_dismisses_without_prior_change():
    # the status change happened before the card was watching
    card = counting_card()
    card.accept()
    card.confirm()
    card.submission_failed(RequestNotLive.default_message, True)
    assert card.state == c.DISMISSED
    assert card.dismiss_reason == c.UNAVAILABLE
    assert card.notice == c.UNAVAILABLE_NOTICE


@pytest.mark.parametrize('submitted', [False, True])
def test_manual_dismiss_is_locked_while_sending_or_sent(submitted):
    card = counting_card()
    card.accept()
    card.confirm()
    if submitted:
        card.submission_succeeded()
    assert not card.dismiss()
    assert card.state == (c.ACCEPTED if submitted else c.SUBMITTING)


def test_render():
    data = counting_card().render()
    assert data['urgencyLabel'] == '🚨 CRITICAL'
    assert data['servicesText'] == 'IV Cannula, Injection +2'
    assert data['priceText'] == 'PKR 2,500'
    assert data['distanceText'] == '5.4 km'
    assert data['remainingSeconds'] == 45
    assert 'offer' not in data

    open_price = FlashCard({**REQUEST, 'patientOfferPrice': None, 'servicesNeeded': ['elderly_care'],
                            'urgency': 'within_1_hour'})
    data = open_price.render()
    assert data['priceText'] == 'Open Price'
    assert data['servicesText'] == 'Elderly Care'
    assert data['urgencyLabel'] == '⏰ URGENT'
    assert data['distanceText'] is None


# ---------------------------------------------------------------------
# CardBoundary
# ---------------------------------------------------------------------

def test_boundary_contains_render_crash():
    dismissed = []
    card = FlashCard({**REQUEST, 'urgency': 'bogus'})
    boundary = CardBoundary(card, lambda: dismissed.append(True))

    assert boundary.render() is None
    assert dismissed == [True]
    assert boundary.crashed
    assert card.state == c.DISMISSED
    assert card.dismiss_reason == c.CRASHED

    # later calls render nothing and do not fire the callback again
    assert boundary.render() is None
    assert boundary.run(card.tick) is None
    assert dismissed == [True]


def test_boundary_passes_results_through():
    boundary = CardBoundary(counting_card(), lambda: None)
    assert boundary.render()['state'] == c.COUNTING
    assert not boundary.crashed


def test_boundary_survives_failing_callback():
    def explode():
        raise RuntimeError('parent gone')

    boundary = CardBoundary(FlashCard({**REQUEST, 'urgency': None}), explode)
    assert boundary.render() is None
    assert boundary.crashed


# ---------------------------------------------------------------------
# FlashCardSession
# ---------------------------------------------------------------------

TICK = 1.0


class ManualClock:
    def __init__(self):
        self.slept = []
        self._ticks = asyncio.Queue()

    async def __call__(self, seconds):
        self.slept.append(seconds)
        if seconds == TICK:
            await self._ticks.get()

    async def tick(self, n=1):
        for _ in range(n):
            self._ticks.put_nowait(None)
            await settle()


async def settle():
    for _ in range(20):
        await asyncio.sleep(0)


class Harness:
    def __init__(self, card=None, submit=None, position=None, clock=None):
        self.frames = []
        self.closed_with = None
        self.accepted_with = None
        self.submitted = []
        self.clock = clock or ManualClock()
        self._submit = submit
        self._position = position
        self.session = FlashCardSession(
            card or make_card(),
            send=self.send,
            submit=self.submit,
            locate=self.locate,
            on_accepted=self.on_accepted,
            on_close=self.on_close,
            sleep=self.clock,
            tick_seconds=TICK,
            enter_seconds=0.05,
            exit_seconds=0.3,
            accepted_hold_seconds=2.0,
        )

    async def send(self, frame):
        self.frames.append(frame)

    async def locate(self):
        return self._position

    async def submit(self, price, eta, message, position):
        self.submitted.append((price, eta, message, position))
        if self._submit is not None:
            return await self._submit()
        return {'id': 'o1'}

    async def on_accepted(self, offer):
        self.accepted_with = offer

    async def on_close(self, reason):
        self.closed_with = reason

    @property
    def last(self):
        return self.frames[-1]['card']


@pytest.mark.asyncio
async def test_session_enters_and_counts_down():
    h = Harness()
    await h.session.start()
    await settle()
    assert h.last['state'] == c.COUNTING
    await h.clock.tick(3)
    assert h.last['remainingSeconds'] == 42
    await h.session.stop()


@pytest.mark.asyncio
async def test_session_timeout_closes_after_exit_transition():
    h = Harness(card=make_card(auto_hide_seconds=2))
    await h.session.start()
    await settle()
    await h.clock.tick(2)
    assert h.session.closed.is_set()
    assert h.closed_with == c.TIMEOUT
    assert h.last['state'] == c.DISMISSED
    assert 0.3 in h.clock.slept


@pytest.mark.asyncio
async def test_session_force_dismiss_within_one_tick():
    h = Harness()
    await h.session.start()
    await settle()
    await h.session.request_changed({**REQUEST, 'status': 'matched'})
    assert h.closed_with == c.UNAVAILABLE
    assert h.last['notice'] == c.UNAVAILABLE_NOTICE


@pytest.mark.asyncio
async def test_session_offer_flow_accepts_then_dismisses():
    h = Harness(position=Position(24.9, 67.0))
    await h.session.start()
    await settle()
    await h.session.accept()
    await h.session.offer('3000', '20', 'Coming')
    await settle()
    assert h.submitted == [(3000, 20, 'Coming', Position(24.9, 67.0))]
    assert h.accepted_with == {'id': 'o1'}
    assert h.closed_with == c.COMPLETED
    assert 2.0 in h.clock.slept
    states = [f['card']['state'] for f in h.frames if f['card']]
    assert c.SUBMITTING in states and c.ACCEPTED in states


@pytest.mark.asyncio
async def test_session_invalid_offer_never_submits():
    h = Harness()
    await h.session.start()
    await settle()
    await h.session.accept()
    await h.session.offer('', '20')
    await settle()
    assert h.submitted == []
    assert h.last['state'] == c.OFFER_INPUT
    assert h.last['error'] == 'Please fill all required fields'
    await h.session.stop()


@pytest.mark.asyncio
async def test_session_duplicate_offer_returns_to_input():
    async def duplicate():
        raise DuplicateOffer()

    h = Harness(submit=duplicate)
    await h.session.start()
    await settle()
    await h.session.accept()
    await h.session.offer()
    await settle()
    assert h.last['state'] == c.OFFER_INPUT
    assert h.last['error'] == DuplicateOffer.default_message
    assert h.closed_with is None
    await h.session.stop()


@pytest.mark.asyncio
async def test_session_defers_force_dismiss_while_submitting():
    release = asyncio.Event()

    async def slow():
        await release.wait()
        return {'id': 'o2'}

    h = Harness(submit=slow)
    await h.session.start()
    await settle()
    await h.session.accept()
    await h.session.offer()
    await settle()
    await h.session.request_changed({**REQUEST, 'status': 'matched'})
    assert h.closed_with is None
    assert h.last['state'] == c.SUBMITTING

    release.set()
    await settle()
    assert h.accepted_with == {'id': 'o2'}
    assert h.closed_with == c.COMPLETED


@pytest.mark.asyncio
async def test_session_crash_renders_nothing_and_closes():
    h = Harness(card=FlashCard({**REQUEST, 'urgency': 'bogus'}))
    await h.session.start()
    await settle()
    assert h.frames[0] == {'type': 'card', 'card': None}
    assert h.closed_with == c.CRASHED
    assert h.session.closed.is_set()


@pytest.mark.asyncio
async def test_session_request_not_live_on_submit_dismisses():
    async def gone():
        raise RequestNotLive()

    h = Harness(submit=gone)
    await h.session.start()
    await settle()
    await h.session.accept()
    await h.session.offer()
    await settle()
    assert h.closed_with == c.UNAVAILABLE
    assert h.last['notice'] == c.UNAVAILABLE_NOTICE


class HoldingClock(ManualClock):
    """Also blocks on the accepted hold until ``release_hold()``."""

    def __init__(self, hold_seconds):
        super().__init__()
        self.hold_seconds = hold_seconds
        self._hold = asyncio.Event()

    async def __call__(self, seconds):
        await super().__call__(seconds)
        if seconds == self.hold_seconds:
            await self._hold.wait()

    async def release_hold(self):
        self._hold.set()
        await settle()


@pytest.mark.asyncio
async def test_session_dismiss_during_accepted_hold_still_reports_offer():
    h = Harness(clock=HoldingClock(2.0))
    await h.session.start()
    await settle()
    await h.session.accept()
    await h.session.offer()
    await settle()
    assert h.last['state'] == c.ACCEPTED

    await h.session.dismiss()
    assert h.closed_with is None
    await h.clock.release_hold()
    assert h.accepted_with == {'id': 'o1'}
    assert h.closed_with == c.COMPLETED
