"""CLI simulator for the clinic bot.

Chats with the conversation engine from the terminal, against an in-memory
appointment store, a calendar that only logs, and a notifier that prints
outbound WhatsApp messages and e-mails instead of sending them.
For production, use the FastAPI server (clinic_bot/server.py).

Usage:
    python -m clinic_bot.main                        # default phone
    python -m clinic_bot.main --phone 11987654321    # chat as this phone
    python -m clinic_bot.main --debug                # show every log line

Commands inside the chat:
    /book DD/MM/YYYY HH:MM [name]   create a Pending booking for your phone
    /rows                           dump the in-memory sheet
    /state                          show your conversation state
    /remind                         run one reminder sweep now
    quit                            exit
"""

from __future__ import annotations

import argparse
import asyncio
import itertools
import logging
from datetime import datetime
from typing import Any

from dotenv import load_dotenv

from clinic_bot.appointments import AppointmentRepository, InMemoryAppointmentStore
from clinic_bot.bookings import BookingService, BookingValidationError
from clinic_bot.conversation import ConversationEngine
from clinic_bot.phone import chat_id, normalize_phone
from clinic_bot.reminders import ReminderScheduler

logger = logging.getLogger(__name__)

BOT_NAME = "Bot"


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        for noisy in ("httpx", "httpcore", "apscheduler"):
            logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger("clinic_bot").setLevel(logging.DEBUG if debug else logging.INFO)


class ConsoleCalendar:
    """Calendar gateway that keeps events in a dict and logs every call."""

    def __init__(self) -> None:
        self.events: dict[str, dict[str, Any]] = {}
        self._ids = itertools.count(1)

    async def create_event(self, summary, description, start, end, color_id) -> str:
        event_id = f"evt-{next(self._ids)}"
        self.events[event_id] = {
            "summary": summary,
            "description": description,
            "start": {"dateTime": start.isoformat()},
            "end": {"dateTime": end.isoformat()},
            "colorId": color_id,
        }
        logger.info("Calendar: created %s %s (%s → %s)", event_id, summary, start, end)
        return event_id

    async def patch_event(self, event_id, summary, color_id) -> str | None:
        if event_id not in self.events:
            return None
        self.events[event_id].update(summary=summary, colorId=color_id)
        logger.info("Calendar: patched %s → %s", event_id, summary)
        return event_id

    async def delete_event(self, event_id) -> bool:
        logger.info("Calendar: deleted %s", event_id)
        return self.events.pop(event_id, None) is not None

    async def list_events(self, time_min, time_max) -> list[dict[str, Any]]:
        return [
            event for event in self.events.values()
            if time_min <= datetime.fromisoformat(event["start"]["dateTime"]) <= time_max
        ]


class ConsoleNotifier:
    """Prints outbound notifications; e-mail counts as configured."""

    email_enabled = True

    def __init__(self, operator_phone: str = "5511900000000"):
        self._operator_phone = operator_phone

    async def send_text(self, phone: str, message: str) -> bool:
        print(f"  [whatsapp → {normalize_phone(phone)}] {message}")
        return True

    async def send_email(self, to: str, subject: str, body: str) -> None:
        if to:
            print(f"  [e-mail → {to}] {subject}")

    async def notify_operator(self, message: str, subject: str | None = None) -> None:
        await self.send_text(self._operator_phone, message)
        if subject:
            await self.send_email("clinica@example.com", subject, message)


async def _handle_command(line: str, phone: str, bookings: BookingService,
                          engine: ConversationEngine, store: InMemoryAppointmentStore,
                          reminders: ReminderScheduler) -> None:
    command, *args = line.split()
    if command == "/book":
        if len(args) < 2:
            print("Usage: /book DD/MM/YYYY HH:MM [name]")
            return
        try:
            appt = await bookings.create(
                patient_name=" ".join(args[2:]) or "Paciente Teste",
                phone=phone,
                email="paciente@example.com",
                date=args[0],
                time=args[1],
                procedure="avaliação",
            )
        except BookingValidationError as exc:
            print(f"Invalid booking: {exc}")
            return
        print(f">> Pending booking {appt.id[:8]}… at row {appt.row_number}\n")
    elif command == "/rows":
        for row in store.rows:
            print("  " + " | ".join(row))
    elif command == "/state":
        print(f">> {(await engine.conversation_state(phone)).value}")
    elif command == "/remind":
        print(f">> {await reminders.sweep()} reminder(s) fired")
    else:
        print(f"Unknown command {command}")


async def _chat(phone: str) -> None:
    store = InMemoryAppointmentStore()
    repository = AppointmentRepository(store)
    calendar = ConsoleCalendar()
    notifier = ConsoleNotifier()
    engine = ConversationEngine(repository, calendar, notifier)
    bookings = BookingService(repository, calendar, notifier)
    reminders = ReminderScheduler(repository, notifier, operator_phone="5511900000000")
    sender = chat_id(phone)
    logger.info("Chatting as %s", sender)

    while True:
        try:
            user_input = (await asyncio.to_thread(input, "You: ")).strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nTchau!")
            break

        if not user_input:
            continue
        if user_input.lower() in ("exit", "quit", "q"):
            print("\nTchau!")
            break
        if user_input.startswith("/"):
            await _handle_command(user_input, phone, bookings, engine, store, reminders)
            continue

        reply = await engine.handle_message(sender, user_input)
        if reply is None:
            print(f"\n{BOT_NAME}: (no reply)\n")
        else:
            print(f"\n{BOT_NAME}: {reply}\n")


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Clinic bot CLI simulator")
    parser.add_argument("--phone", default="11987654321", help="Phone number to chat as")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    phone = normalize_phone(args.phone)
    if not phone:
        parser.error(f"invalid phone: {args.phone!r}")

    print("\n" + "=" * 60)
    print("  Clinic Bot - CLI Simulator")
    print("=" * 60)
    print("  Type a message as the patient and press Enter.")
    print("  Commands: /book, /rows, /state, /remind, 'quit' to exit.")
    print("=" * 60 + "\n")

    asyncio.run(_chat(phone))


if __name__ == "__main__":
    main()
