"""Per-phone conversation state machine for inbound WhatsApp messages.

Architecture:
  The engine is a LangGraph ``StateGraph`` whose checkpointer (``MemorySaver``)
  is keyed by the sender's canonical phone, so each phone gets its own
  ``ConversationState`` (``IDLE``, ``AWAITING_CANCEL_CONFIRMATION``,
  ``AWAITING_LINK``).  When a message leaves the phone in ``IDLE`` its thread
  is deleted, so idle conversations cost nothing and a restart simply forgets
  everyone (the appointment sheet is the durable part).

  Routing follows a fixed priority; the first rule that applies wins:

    lookup_pending ─┬─ Pending + yes      → confirm_pending
                    ├─ Pending + no       → decline_pending
                    ├─ awaiting cancel /
                    │  "cancelar" in text → lookup_active ─┬─ awaiting cancel + active + yes → cancel_active
                    │                                      ├─ awaiting cancel + no          → abort_cancel
                    │                                      ├─ "cancelar" in text            → request_cancel
                    │                                      └─ (tail rules below)
                    └─ tail rules:  awaiting link + yes → send_link
                                    awaiting link + no  → decline_link
                                    bare yes / no       → clarify
                                    anything else       → intent_reply

Concurrency:
  Messages from the same phone are serialised with a per-phone
  ``asyncio.Lock``; different phones interleave freely at await points.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter, defaultdict
from typing import Any

from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, StateGraph
from typing_extensions import TypedDict

from clinic_bot import messages
from clinic_bot.appointments import AppointmentRepository
from clinic_bot.config import BOOKING_LINK, CONSULTATION_MINUTES, DENTIST_NAME, TIMEZONE
from clinic_bot.intents import (
    Intent,
    classify_intent,
    is_affirmative,
    is_negative,
    wants_to_cancel,
)
from clinic_bot.models import Appointment, AppointmentStatus, ConversationState
from clinic_bot.notifications import NotificationGateway
from clinic_bot.phone import is_group_chat, phone_from_chat_id
from clinic_bot.scheduling import event_color, event_summary, event_window
from clinic_bot.services.google_calendar import CalendarGateway
from clinic_bot.services.metrics import metrics

logger = logging.getLogger(__name__)

IDLE = ConversationState.IDLE.value
AWAITING_CANCEL = ConversationState.AWAITING_CANCEL_CONFIRMATION.value
AWAITING_LINK = ConversationState.AWAITING_LINK.value


class ConversationGraphState(TypedDict, total=False):
    """What flows through the graph for one inbound message.

    ``conversation`` is the only key that matters across messages; the rest
    is rewritten on every invocation.  Appointments travel as plain records
    (see ``Appointment.to_record``) so the checkpoint stays JSON-friendly.
    """

    phone: str
    text: str
    conversation: str
    pending: dict[str, Any] | None
    active: dict[str, Any] | None
    reply: str | None


# ── Routing (pure functions of the state) ───────────────────────────


def _current(state: ConversationGraphState) -> str:
    return state.get("conversation") or IDLE


def route_tail(state: ConversationGraphState) -> str:
    """Rules 4–6: awaiting-link answers, bare yes/no, generic intent."""
    text = state.get("text", "")
    affirmative, negative = is_affirmative(text), is_negative(text)
    if _current(state) == AWAITING_LINK:
        if affirmative:
            return "send_link"
        if negative:
            return "decline_link"
    if affirmative or negative:
        return "clarify"
    return "intent_reply"


def route_after_pending(state: ConversationGraphState) -> str:
    """Rule 1, then decide whether the active appointment is needed."""
    text = state.get("text", "")
    if state.get("pending"):
        if is_affirmative(text):
            return "confirm_pending"
        if is_negative(text):
            return "decline_pending"
    if _current(state) == AWAITING_CANCEL or wants_to_cancel(text):
        return "lookup_active"
    return route_tail(state)


def route_after_active(state: ConversationGraphState) -> str:
    """Rules 2 and 3, falling back to the tail rules."""
    text = state.get("text", "")
    if _current(state) == AWAITING_CANCEL:
        if state.get("active") and is_affirmative(text):
            return "cancel_active"
        if is_negative(text):
            return "abort_cancel"
    if wants_to_cancel(text):
        return "request_cancel"
    return route_tail(state)


_TAIL_NODES = ["send_link", "decline_link", "clarify", "intent_reply"]


class ConversationEngine:
    """Consumes inbound messages and returns the reply to send back.

    Side effects (sheet updates, calendar events, operator notices, e-mails)
    happen inside the graph nodes.  Calendar and e-mail failures never stop a
    reply; only a failure of the status transition itself turns the reply
    into an apology.
    """

    def __init__(
        self,
        repository: AppointmentRepository,
        calendar: CalendarGateway,
        notifier: NotificationGateway,
        *,
        booking_link: str = BOOKING_LINK,
        dentist_name: str = DENTIST_NAME,
        duration_minutes: int = CONSULTATION_MINUTES,
        timezone: str = TIMEZONE,
    ):
        self._repo = repository
        self._calendar = calendar
        self._notifier = notifier
        self._booking_link = booking_link
        self._dentist_name = dentist_name
        self._duration_minutes = duration_minutes
        self._timezone = timezone
        self._checkpointer = MemorySaver()
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._lock_users: Counter[str] = Counter()
        self._graph = self._build_graph()

    # ── Public API ───────────────────────────────────────────────────

    async def handle_message(self, sender: str, text: str, *, is_group: bool = False) -> str | None:
        """Process one inbound message; return the reply, or ``None`` for none.

        *sender* may be a chat id (``5511…@c.us``) or a raw phone number.
        Group chats are ignored entirely.
        """
        if is_group or is_group_chat(sender):
            logger.debug("Ignoring group message from %s", sender)
            return None
        phone = phone_from_chat_id(sender)
        if not phone:
            logger.warning("Ignoring message with unusable sender %r", sender)
            return None

        # A phone keeps its lock only while one of its messages is in flight.
        lock = self._locks[phone]
        self._lock_users[phone] += 1
        try:
            async with lock:
                return await self._run_turn(phone, text)
        finally:
            self._lock_users[phone] -= 1
            if not self._lock_users[phone]:
                del self._lock_users[phone]
                self._locks.pop(phone, None)

    async def _run_turn(self, phone: str, text: str) -> str | None:
        config = {"configurable": {"thread_id": phone}}
        try:
            result = await self._graph.ainvoke(
                {"phone": phone, "text": text or "", "pending": None, "active": None, "reply": None},
                config=config,
            )
        except Exception:
            logger.exception("Error handling WhatsApp message from %s", phone)
            return None

        if (result.get("conversation") or IDLE) == IDLE:
            await self._checkpointer.adelete_thread(phone)
        return result.get("reply")

    async def conversation_state(self, phone: str) -> ConversationState:
        """Current state for *phone* (``IDLE`` when nothing is stored)."""
        canonical = phone_from_chat_id(phone)
        snapshot = await self._graph.aget_state({"configurable": {"thread_id": canonical}})
        return ConversationState(snapshot.values.get("conversation") or IDLE)

    # ── Lookups ──────────────────────────────────────────────────────

    async def _lookup_pending(self, state: ConversationGraphState) -> dict:
        try:
            pending = await self._repo.find_pending(state["phone"])
        except Exception:
            logger.warning("Pending lookup failed for %s", state["phone"], exc_info=True)
            pending = None
        return {"pending": pending.to_record() if pending else None}

    async def _lookup_active(self, state: ConversationGraphState) -> dict:
        active = await self._repo.find_active(state["phone"])
        return {"active": active.to_record() if active else None}

    # ── Side-effect helpers ──────────────────────────────────────────

    async def _create_calendar_event(self, appt: Appointment, phone: str) -> str | None:
        try:
            window = event_window(
                appt.date, appt.time,
                duration_minutes=self._duration_minutes, tz_name=self._timezone,
            )
            return await self._calendar.create_event(
                event_summary(appt.patient_name, AppointmentStatus.CONFIRMED),
                f"Agendamento via bot. Telefone: {phone}",
                window.start,
                window.end,
                event_color(AppointmentStatus.CONFIRMED),
            )
        except Exception:
            logger.warning("Calendar event creation failed for row %d", appt.row_number, exc_info=True)
            return None

    async def _delete_calendar_event(self, event_id: str) -> bool:
        try:
            return await self._calendar.delete_event(event_id)
        except Exception:
            logger.warning("Calendar event deletion failed for %s", event_id, exc_info=True)
            return False

    # ── Rule 1: Pending resolution ──────────────────────────────────

    async def _confirm_pending(self, state: ConversationGraphState) -> dict:
        appt = Appointment.from_record(state["pending"])
        phone = state["phone"]
        try:
            event_id = await self._create_calendar_event(appt, phone)
            if event_id:
                await self._repo.set_calendar_event(appt, event_id)
            await self._repo.set_status(appt, AppointmentStatus.CONFIRMED)

            notice = messages.operator_notice(messages.OPERATOR_CONFIRMED, appt, phone)
            await self._notifier.notify_operator(notice, subject=messages.SUBJECT_CONFIRMED)
        except Exception:
            logger.exception("Error confirming appointment at row %d", appt.row_number)
            return {"reply": messages.CONFIRM_FAILED_REPLY, "conversation": IDLE}

        await self._email_patient(appt, messages.SUBJECT_PATIENT_CONFIRMED, messages.patient_confirmed_email(appt))
        metrics.record_event("appointment_confirmed", outcome="with_event" if event_id else "no_event")
        logger.info("Appointment %s confirmed (row %d)", appt.id, appt.row_number)
        return {"reply": messages.confirmed_reply(appt, self._dentist_name), "conversation": IDLE}

    async def _email_patient(self, appt: Appointment, subject: str, body: str) -> None:
        if not appt.email or not self._notifier.email_enabled:
            return
        try:
            await self._notifier.send_email(appt.email, subject, body)
        except Exception:
            logger.warning("E-mail to patient of row %d failed", appt.row_number, exc_info=True)

    async def _decline_pending(self, state: ConversationGraphState) -> dict:
        appt = Appointment.from_record(state["pending"])
        phone = state["phone"]
        try:
            await self._repo.set_status(appt, AppointmentStatus.CANCELLED)
        except Exception:
            logger.warning("Failed to mark row %d as cancelled", appt.row_number, exc_info=True)
        notice = messages.operator_notice(messages.OPERATOR_PENDING_CANCELLED, appt, phone)
        await self._notifier.notify_operator(notice, subject=messages.SUBJECT_CANCELLED)
        metrics.record_event("appointment_cancelled", outcome="declined_pending")
        return {"reply": messages.pending_cancelled_reply(appt), "conversation": IDLE}

    # ── Rules 2 and 3: cancelling an active appointment ─────────────

    async def _cancel_active(self, state: ConversationGraphState) -> dict:
        appt = Appointment.from_record(state["active"])
        phone = state["phone"]
        try:
            await self._repo.set_status(appt, AppointmentStatus.CANCELLED)
            if appt.calendar_event_id:
                await self._delete_calendar_event(appt.calendar_event_id)
                await self._repo.set_calendar_event(appt, "")
            notice = messages.operator_notice(messages.OPERATOR_CANCELLED, appt, phone)
            await self._notifier.notify_operator(notice, subject=messages.SUBJECT_CANCELLED)
            reply = messages.active_cancelled_reply(appt)
            metrics.record_event("appointment_cancelled", outcome="patient")
            logger.info("Appointment %s cancelled by patient (row %d)", appt.id, appt.row_number)
        except Exception:
            logger.exception("Error cancelling appointment at row %d", appt.row_number)
            reply = messages.CANCEL_FAILED_REPLY
        return {"reply": reply, "conversation": IDLE}

    async def _abort_cancel(self, state: ConversationGraphState) -> dict:
        return {"reply": messages.CANCEL_ABORTED_REPLY, "conversation": IDLE}

    async def _request_cancel(self, state: ConversationGraphState) -> dict:
        appt = Appointment.from_record(state.get("active"))
        if appt is None:
            return {"reply": messages.NO_ACTIVE_APPOINTMENT_REPLY, "conversation": IDLE}
        return {"reply": messages.ask_cancel_confirmation(appt), "conversation": AWAITING_CANCEL}

    # ── Rules 4–6 ────────────────────────────────────────────────────

    async def _send_link(self, state: ConversationGraphState) -> dict:
        return {"reply": messages.link_reply(self._booking_link), "conversation": IDLE}

    async def _decline_link(self, state: ConversationGraphState) -> dict:
        return {"reply": messages.LINK_DECLINED_REPLY, "conversation": IDLE}

    async def _clarify(self, state: ConversationGraphState) -> dict:
        return {"reply": messages.CLARIFY_REPLY, "conversation": AWAITING_LINK}

    async def _intent_reply(self, state: ConversationGraphState) -> dict:
        intent = classify_intent(state.get("text", ""))
        logger.debug("Intent for %s: %s", state["phone"], intent.value)
        reply = messages.intent_reply(intent, link=self._booking_link, dentist=self._dentist_name)
        next_state = IDLE if intent is Intent.GREETING else AWAITING_LINK
        return {"reply": reply, "conversation": next_state}

    # ── Graph assembly ───────────────────────────────────────────────

    def _build_graph(self):
        graph = StateGraph(ConversationGraphState)

        graph.add_node("lookup_pending", self._lookup_pending)
        graph.add_node("lookup_active", self._lookup_active)
        graph.add_node("confirm_pending", self._confirm_pending)
        graph.add_node("decline_pending", self._decline_pending)
        graph.add_node("cancel_active", self._cancel_active)
        graph.add_node("abort_cancel", self._abort_cancel)
        graph.add_node("request_cancel", self._request_cancel)
        graph.add_node("send_link", self._send_link)
        graph.add_node("decline_link", self._decline_link)
        graph.add_node("clarify", self._clarify)
        graph.add_node("intent_reply", self._intent_reply)

        graph.set_entry_point("lookup_pending")

        after_pending = ["confirm_pending", "decline_pending", "lookup_active", *_TAIL_NODES]
        graph.add_conditional_edges(
            "lookup_pending", route_after_pending, {name: name for name in after_pending},
        )
        after_active = ["cancel_active", "abort_cancel", "request_cancel", *_TAIL_NODES]
        graph.add_conditional_edges(
            "lookup_active", route_after_active, {name: name for name in after_active},
        )

        terminal = ["confirm_pending", "decline_pending", *after_active]
        for name in terminal:
            graph.add_edge(name, END)

        compiled = graph.compile(checkpointer=self._checkpointer)
        logger.debug("Conversation graph compiled with %d terminal nodes", len(terminal))
        return compiled
