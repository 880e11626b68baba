"""Clinic Bot — a WhatsApp scheduling assistant for a dental clinic.

Architecture Overview
=====================

Patients book on a web page (Pending row in a Google Sheet), then confirm or
cancel by replying on WhatsApp.  Three flows share the same sheet:

1. **Conversation** — every inbound WhatsApp message runs through a LangGraph
   state machine (``clinic_bot.conversation``) with one checkpointed thread per
   phone: resolve a Pending booking, confirm a cancellation, hand out the
   booking link, or answer a classified free-text question.

2. **Booking API** — availability from Google Calendar, Pending booking
   creation, clinic-side cancellation and the dashboard listing
   (``clinic_bot.bookings``).

3. **Reminders** — an APScheduler job sweeps the sheet every few minutes and
   sends the 24h and 2h reminders exactly once each (``clinic_bot.reminders``).

Key Design Decisions
--------------------
- **Storage**: the sheet is the only durable state; conversation state is
  in-memory and falls back to idle after a restart.
- **Lenient side effects**: calendar, WhatsApp and e-mail failures are logged
  and never block the status change or the reply.
- **Resilience**: Google calls retry with exponential backoff (3 attempts) on
  timeouts, connection errors and 5xx responses.
- **Dual Interface**: FastAPI server (production) + CLI simulator (development).

Package Structure
-----------------
- ``clinic_bot/config.py`` — Centralized configuration from environment variables
- ``clinic_bot/models.py`` — Appointment row, statuses, reminder milestones
- ``clinic_bot/appointments.py`` — Store contract, in-memory store, repository
- ``clinic_bot/conversation.py`` — LangGraph conversation engine
- ``clinic_bot/reminders.py`` — Reminder sweep and scheduler
- ``clinic_bot/bookings.py`` — Booking API operations
- ``clinic_bot/server.py`` — FastAPI application
- ``clinic_bot/main.py`` — CLI simulator
- ``clinic_bot/services/`` — Google, WhatsApp, SMTP and metrics clients
- ``clinic_bot/api/`` — FastAPI routes and Pydantic schemas
"""
