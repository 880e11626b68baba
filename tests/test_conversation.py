"""Tests for the conversation engine.

Covers:
  - Pure routing functions (rule priority)
  - Pending confirmation / decline
  - Cancellation of an active appointment (request, confirm, abort)
  - Awaiting-link answers, bare yes/no and intent replies
  - Failure handling (store and calendar errors)
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch
from zoneinfo import ZoneInfo

import pytest

from clinic_bot import messages
from clinic_bot.conversation import (
    AWAITING_CANCEL,
    AWAITING_LINK,
    IDLE,
    ConversationEngine,
    route_after_active,
    route_after_pending,
    route_tail,
)
from clinic_bot.intents import Intent
from clinic_bot.models import ConversationState
from clinic_bot.notifications import Notifier
from clinic_bot.services.mailer import Mailer

PHONE = "5511987654321"
SENDER = f"{PHONE}@c.us"
LINK = "https://clinic.example"
DENTIST = "Dra. Teste"
SP = ZoneInfo("America/Sao_Paulo")


@pytest.fixture
def engine(repository, calendar, notifier):
    return ConversationEngine(
        repository,
        calendar,
        notifier,
        booking_link=LINK,
        dentist_name=DENTIST,
        duration_minutes=30,
        timezone="America/Sao_Paulo",
    )


def _chat(engine, *texts, sender=SENDER):
    """Send *texts* in order; return the replies and the final state."""

    async def _run():
        replies = [await engine.handle_message(sender, text) for text in texts]
        return replies, await engine.conversation_state(sender)

    return asyncio.run(_run())


def _cell(store, row_number, column_index):
    return store.rows[row_number - 1][column_index]


# ── Routing ──────────────────────────────────────────────────────────


class TestRouting:
    def test_pending_affirmative_confirms(self):
        state = {"text": "sim", "pending": {"values": [], "row_number": 2}}
        assert route_after_pending(state) == "confirm_pending"

    def test_pending_negative_declines(self):
        state = {"text": "não", "pending": {"values": [], "row_number": 2}}
        assert route_after_pending(state) == "decline_pending"

    def test_cancel_keyword_on_pending_is_a_decline(self):
        # "cancelar" is also a negative token, and rule 1 wins.
        state = {"text": "cancelar", "pending": {"values": [], "row_number": 2}}
        assert route_after_pending(state) == "decline_pending"

    def test_cancel_request_needs_active_lookup(self):
        assert route_after_pending({"text": "quero cancelar", "pending": None}) == "lookup_active"

    def test_awaiting_cancel_needs_active_lookup(self):
        state = {"text": "ok", "pending": None, "conversation": AWAITING_CANCEL}
        assert route_after_pending(state) == "lookup_active"

    def test_awaiting_cancel_affirmative_with_active(self):
        state = {"text": "sim", "active": {"values": [], "row_number": 2}, "conversation": AWAITING_CANCEL}
        assert route_after_active(state) == "cancel_active"

    def test_awaiting_cancel_affirmative_without_active_asks_to_clarify(self):
        state = {"text": "sim", "active": None, "conversation": AWAITING_CANCEL}
        assert route_after_active(state) == "clarify"

    def test_awaiting_cancel_negative_aborts_even_without_active(self):
        state = {"text": "não", "active": None, "conversation": AWAITING_CANCEL}
        assert route_after_active(state) == "abort_cancel"

    def test_awaiting_link_answers(self):
        assert route_tail({"text": "sim", "conversation": AWAITING_LINK}) == "send_link"
        assert route_tail({"text": "depois", "conversation": AWAITING_LINK}) == "decline_link"

    def test_bare_yes_no_when_idle(self):
        assert route_tail({"text": "claro"}) == "clarify"
        assert route_tail({"text": "n", "conversation": IDLE}) == "clarify"

    def test_free_text_goes_to_intent(self):
        assert route_tail({"text": "quanto custa um clareamento?"}) == "intent_reply"


# ── Rule 1: Pending resolution ──────────────────────────────────────


class TestPendingResolution:
    def test_affirmative_confirms_and_creates_event(self, engine, store, calendar, notifier, row):
        store.rows.append(row(status="Pendente"))

        replies, state = _chat(engine, "sim")

        assert "CONFIRMADO" in replies[0]
        assert state is ConversationState.IDLE
        assert _cell(store, 2, 6) == "Confirmado"
        assert _cell(store, 2, 8) == "evt-1"

        event = calendar.created[0]
        assert event["summary"] == "[CONFIRMADO] Avaliação - Ana"
        assert event["color_id"] == "2"
        assert event["start"] == datetime(2025, 5, 10, 18, 0, tzinfo=SP)
        assert event["end"] == datetime(2025, 5, 10, 18, 30, tzinfo=SP)
        assert PHONE in event["description"]

        assert notifier.operator[0][1] == messages.SUBJECT_CONFIRMED
        assert ("a@x.com", messages.SUBJECT_PATIENT_CONFIRMED) in [(to, s) for to, s, _ in notifier.emails]

    def test_confirms_even_when_calendar_fails(self, engine, store, calendar, row):
        calendar.create_result = None
        store.rows.append(row(status="Pendente"))

        replies, state = _chat(engine, "Sim")

        assert "CONFIRMADO" in replies[0]
        assert state is ConversationState.IDLE
        assert _cell(store, 2, 6) == "Confirmado"
        assert _cell(store, 2, 8) == ""

    def test_confirms_even_when_calendar_raises(self, engine, store, calendar, row):
        async def _boom(*args, **kwargs):
            raise RuntimeError("calendar down")

        calendar.create_event = _boom
        store.rows.append(row(status="Pendente"))

        replies, _ = _chat(engine, "sim")
        assert "CONFIRMADO" in replies[0]
        assert _cell(store, 2, 6) == "Confirmado"

    def test_negative_cancels_pending(self, engine, store, notifier, row):
        store.rows.append(row(status="Pendente"))

        replies, state = _chat(engine, "não")

        assert "CANCELADO" in replies[0]
        assert state is ConversationState.IDLE
        assert _cell(store, 2, 6) == "Cancelado"
        assert notifier.operator[0][1] == messages.SUBJECT_CANCELLED

    def test_most_recent_pending_row_wins(self, engine, store, row):
        store.rows.append(row(id="old", date="01/05/2025"))
        store.rows.append(row(id="new", date="20/05/2025"))

        _chat(engine, "sim")

        assert _cell(store, 2, 6) == "Pendente"
        assert _cell(store, 3, 6) == "Confirmado"

    def test_matches_hand_typed_phone(self, engine, store, row):
        store.rows.append(row(phone="(11) 98765-4321"))

        _chat(engine, "sim")
        assert _cell(store, 2, 6) == "Confirmado"

    def test_other_phones_are_untouched(self, engine, store, row):
        store.rows.append(row(phone="5521999998888"))

        replies, state = _chat(engine, "sim")

        assert replies[0] == messages.CLARIFY_REPLY
        assert state is ConversationState.AWAITING_LINK
        assert _cell(store, 2, 6) == "Pendente"

    def test_status_write_failure_apologises(self, engine, store, row):
        store.rows.append(row(status="Pendente"))

        async def _fail(*args, **kwargs):
            raise OSError("sheet unavailable")

        store.update_cell = _fail

        replies, state = _chat(engine, "sim")
        assert replies[0] == messages.CONFIRM_FAILED_REPLY
        assert state is ConversationState.IDLE

    def test_no_patient_email_when_mail_disabled(self, engine, store, notifier, row):
        notifier.email_enabled = False
        store.rows.append(row(status="Pendente"))

        _chat(engine, "sim")
        assert notifier.emails == []

    def test_email_failure_does_not_block_confirmation(self, engine, store, notifier, row):
        store.rows.append(row(status="Pendente"))

        async def _fail(to, subject, body):
            raise RuntimeError("smtp exploded")

        notifier.send_email = _fail

        replies, state = _chat(engine, "sim")
        assert "CONFIRMADO" in replies[0]
        assert replies[0] != messages.CONFIRM_FAILED_REPLY
        assert _cell(store, 2, 6) == "Confirmado"
        assert state is ConversationState.IDLE

    @patch("clinic_bot.services.mailer.smtplib.SMTP")
    def test_email_with_line_break_does_not_block_confirmation(self, mock_smtp, repository, calendar, store, row):
        channel = MagicMock()
        channel.is_connected = True
        channel.send_text = AsyncMock()
        gateway = Notifier(
            channel,
            Mailer("bot@example.com", "secret", "smtp.example.com", 587),
            operator_phone="5511900000000",
            operator_email="",
        )
        engine = ConversationEngine(
            repository, calendar, gateway,
            booking_link=LINK, dentist_name=DENTIST, duration_minutes=30, timezone="America/Sao_Paulo",
        )
        store.rows.append(row(status="Pendente", email="a@x.com\nBcc: z@y.com"))

        replies, _ = _chat(engine, "sim")
        assert "CONFIRMADO" in replies[0]
        assert _cell(store, 2, 6) == "Confirmado"
        mock_smtp.assert_not_called()


# ── Rules 2 and 3: cancelling an active appointment ─────────────────


class TestActiveCancellation:
    def test_request_then_confirm_deletes_event(self, engine, store, calendar, notifier, row):
        store.rows.append(row(status="Confirmado", event_id="evt-9"))

        replies, state = _chat(engine, "quero cancelar", "sim")

        assert "10/05/2025" in replies[0] and "18:00" in replies[0]
        assert "CANCELADO" in replies[1]
        assert state is ConversationState.IDLE
        assert calendar.deleted == ["evt-9"]
        assert _cell(store, 2, 6) == "Cancelado"
        assert _cell(store, 2, 8) == ""
        assert notifier.operator[-1][1] == messages.SUBJECT_CANCELLED

    def test_request_moves_to_awaiting_confirmation(self, engine, store, row):
        store.rows.append(row(status="Confirmado"))

        _, state = _chat(engine, "Preciso CANCELAR")
        assert state is ConversationState.AWAITING_CANCEL_CONFIRMATION

    def test_negative_aborts(self, engine, store, calendar, row):
        store.rows.append(row(status="Confirmado", event_id="evt-9"))

        replies, state = _chat(engine, "cancelar minha consulta", "não")

        assert replies[1] == messages.CANCEL_ABORTED_REPLY
        assert state is ConversationState.IDLE
        assert calendar.deleted == []
        assert _cell(store, 2, 6) == "Confirmado"

    def test_affirmative_without_active_cancels_nothing(self, engine, store, calendar, row):
        store.rows.append(row(status="Confirmado", event_id="evt-9"))

        async def _run():
            await engine.handle_message(SENDER, "quero cancelar")
            store.rows[1][6] = "Cancelado"  # cancelled elsewhere meanwhile
            reply = await engine.handle_message(SENDER, "sim")
            return reply, await engine.conversation_state(SENDER)

        reply, state = asyncio.run(_run())

        assert reply == messages.CLARIFY_REPLY
        assert state is ConversationState.AWAITING_LINK
        assert calendar.deleted == []

    def test_no_active_appointment(self, engine):
        replies, state = _chat(engine, "quero cancelar")

        assert replies[0] == messages.NO_ACTIVE_APPOINTMENT_REPLY
        assert state is ConversationState.IDLE

    def test_active_lookup_failure_gives_no_reply(self, engine, store):
        async def _fail():
            raise OSError("sheet unavailable")

        store.query_all = _fail

        replies, _ = _chat(engine, "quero cancelar")
        assert replies == [None]


# ── Rules 4–6 ────────────────────────────────────────────────────────


class TestLinkAndIntents:
    def test_intent_reply_then_link(self, engine):
        replies, state = _chat(engine, "estou com dor de dente", "sim")

        assert replies[0] == messages.intent_reply(Intent.PAIN, link=LINK, dentist=DENTIST)
        assert replies[1] == messages.link_reply(LINK)
        assert state is ConversationState.IDLE

    def test_intent_leaves_awaiting_link(self, engine):
        _, state = _chat(engine, "quanto custa?")
        assert state is ConversationState.AWAITING_LINK

    def test_greeting_clears_state(self, engine):
        replies, state = _chat(engine, "Olá!")

        assert replies[0] == messages.intent_reply(Intent.GREETING, link=LINK, dentist=DENTIST)
        assert state is ConversationState.IDLE

    def test_awaiting_link_declined(self, engine):
        replies, state = _chat(engine, "aparelho", "depois")

        assert replies[1] == messages.LINK_DECLINED_REPLY
        assert state is ConversationState.IDLE

    def test_bare_affirmative_asks_to_clarify(self, engine):
        replies, state = _chat(engine, "sim")

        assert replies[0] == messages.CLARIFY_REPLY
        assert state is ConversationState.AWAITING_LINK

    def test_pending_lookup_failure_is_treated_as_none(self, engine, store):
        async def _fail():
            raise OSError("sheet unavailable")

        store.query_all = _fail

        replies, _ = _chat(engine, "oi")
        assert replies[0] == messages.intent_reply(Intent.GREETING, link=LINK, dentist=DENTIST)


class TestIgnoredSenders:
    def test_group_messages_are_ignored(self, engine, store, row):
        store.rows.append(row(status="Pendente"))

        reply = asyncio.run(engine.handle_message("120363025@g.us", "sim"))

        assert reply is None
        assert _cell(store, 2, 6) == "Pendente"

    def test_group_flag_is_honoured(self, engine):
        assert asyncio.run(engine.handle_message(SENDER, "oi", is_group=True)) is None

    def test_states_are_per_phone(self, engine):
        async def _run():
            await engine.handle_message(SENDER, "quanto custa?")
            await engine.handle_message("5521999998888@c.us", "oi")
            return (
                await engine.conversation_state(SENDER),
                await engine.conversation_state("5521999998888"),
            )

        mine, other = asyncio.run(_run())
        assert mine is ConversationState.AWAITING_LINK
        assert other is ConversationState.IDLE


class TestPerPhoneLocks:
    def test_locks_are_released_after_each_message(self, engine):
        _chat(engine, "oi", "quanto custa?")
        _chat(engine, "oi", sender="5521999998888@c.us")

        assert dict(engine._locks) == {}
        assert not engine._lock_users

    def test_concurrent_messages_share_one_lock(self, engine, store, row):
        store.rows.append(row(status="Pendente"))

        async def _run():
            return await asyncio.gather(
                engine.handle_message(SENDER, "sim"),
                engine.handle_message(SENDER, "oi"),
            )

        first, second = asyncio.run(_run())

        assert "CONFIRMADO" in first
        assert second == messages.intent_reply(Intent.GREETING, link=LINK, dentist=DENTIST)
        assert _cell(store, 2, 6) == "Confirmado"
        assert dict(engine._locks) == {}
