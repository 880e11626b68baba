"""Every text the bot sends: chat replies, operator notices, reminders and
e-mail bodies.  Patients and clinic staff read Portuguese.
"""

from __future__ import annotations

from clinic_bot.config import BOOKING_LINK, DENTIST_NAME
from clinic_bot.intents import Intent
from clinic_bot.models import Appointment


def booking_url(base: str = BOOKING_LINK) -> str:
    base = str(base or "").strip()
    if not base:
        return "/agendamento.html"
    return base + "agendamento.html" if base.endswith("/") else base + "/agendamento.html"


def intent_reply(intent: Intent, *, link: str = BOOKING_LINK, dentist: str = DENTIST_NAME) -> str:
    """Humanized answer for a classified free-text message."""
    cta = f"\n\n🟩 *AGENDAR AGORA*\n👉 {booking_url(link)}"
    replies = {
        Intent.GREETING: f"Olá 👋! Sou a assistente virtual da {dentist}. Como posso te ajudar hoje?",
        Intent.PRICE: (
            "Entendo sua dúvida sobre valores. Como cada tratamento é personalizado, "
            f"a {dentist} só passa orçamento após avaliação presencial. {cta}"
        ),
        Intent.PAIN: (
            "Sinto muito que esteja sentindo dor. 😔 Casos com dor são priorizados — a melhor "
            f"forma de resolver com segurança é uma avaliação. {cta}"
        ),
        Intent.ORTHO: (
            f"Para indicar aparelho ou alinhadores a {dentist} precisa avaliar sua mordida e "
            f"posição dos dentes presencialmente. Quer agendar uma avaliação? {cta}"
        ),
        Intent.DENT: (
            "Procedimentos estéticos (clareamento, lentes, restaurações) exigem avaliação para "
            f"garantir segurança e resultado natural. Agende sua avaliação: {cta}"
        ),
        Intent.HOF: (
            "Harmonização orofacial deve ser planejada após análise das proporções faciais — "
            f"a avaliação é o primeiro passo. {cta}"
        ),
        Intent.SCHEDULE: (
            "Perfeito — podemos marcar sua avaliação agora. Toque no link abaixo para escolher "
            f"o melhor horário: {cta}"
        ),
        Intent.UNSCHEDULE: (
            "Tudo bem — você pode cancelar ou reagendar facilmente. Use o link abaixo para "
            f"acessar a agenda e escolher outro horário: {cta}"
        ),
        Intent.CONFIRM: f"Ótimo! Vou deixar o link para você agendar agora: {cta}",
        Intent.DENY: (
            "Sem problemas — se preferir, posso te ajudar com outras dúvidas ou deixar o link "
            f"para agendar mais tarde: {cta}"
        ),
    }
    return replies.get(
        intent,
        f"Posso te ajudar melhor pessoalmente com a avaliação da {dentist}. "
        f"Para agendar é só tocar no link abaixo: {cta}",
    )


# ── Conversation replies ─────────────────────────────────────────────

def confirmed_reply(appt: Appointment, dentist: str = DENTIST_NAME) -> str:
    return (
        "🎉 *AGENDAMENTO CONFIRMADO!* 🎉\n\n"
        f"Que ótimo, {appt.patient_name}! Seu horário para *{appt.date}* às *{appt.time}* "
        f"está CONFIRMADO na agenda da {dentist}."
    )


CONFIRM_FAILED_REPLY = "❌ Ocorreu um erro ao confirmar seu agendamento. Tente novamente mais tarde."


def pending_cancelled_reply(appt: Appointment) -> str:
    return f"Ok {appt.patient_name}, seu agendamento em {appt.date} às {appt.time} foi CANCELADO."


def active_cancelled_reply(appt: Appointment) -> str:
    return (
        f"✅ Seu agendamento em {appt.date} às {appt.time} foi CANCELADO com sucesso. "
        "Para reagendar, envie AGENDAR."
    )


CANCEL_FAILED_REPLY = "❌ Falha no cancelamento. Tente novamente mais tarde."
CANCEL_ABORTED_REPLY = "Cancelamento abortado. Em que mais posso ajudar?"
NO_ACTIVE_APPOINTMENT_REPLY = "Não encontrei agendamentos ativos vinculados a este número."
LINK_DECLINED_REPLY = "Entendi. Posso ajudar em outra coisa?"
CLARIFY_REPLY = (
    "Não entendi exatamente. Posso te ajudar a agendar uma avaliação? "
    "Responda SIM para receber o link."
)


def ask_cancel_confirmation(appt: Appointment) -> str:
    return (
        f"Você tem um agendamento ATIVO para **{appt.date}** às **{appt.time}**. "
        "Você deseja **CANCELAR** este agendamento? Responda **SIM** para confirmar."
    )


def link_reply(link: str = BOOKING_LINK) -> str:
    return f"Ótimo! Aqui está o link para agilizar seu agendamento online:\n{booking_url(link)}"


# ── Operator notices ─────────────────────────────────────────────────

def operator_notice(title: str, appt: Appointment, phone: str | None = None) -> str:
    return (
        f"{title}\nPaciente: {appt.patient_name}\nTelefone: {phone or appt.phone}\n"
        f"Data: {appt.date}\nHorário: {appt.time}"
    )


OPERATOR_CONFIRMED = "🟢 AGENDAMENTO CONFIRMADO:"
OPERATOR_PENDING_CANCELLED = "🔴 AGENDAMENTO CANCELADO (pendente):"
OPERATOR_CANCELLED = "🔴 AGENDAMENTO CANCELADO:"
OPERATOR_NEW_PENDING = "🟡 NOVO AGENDAMENTO PENDENTE"

SUBJECT_CONFIRMED = "🟢 AGENDAMENTO CONFIRMADO"
SUBJECT_CANCELLED = "🔴 AGENDAMENTO CANCELADO"
SUBJECT_PATIENT_CONFIRMED = "✅ Confirmação de Agendamento"
SUBJECT_PRE_CONFIRMATION = "Pré-Confirmação de Agendamento"
SUBJECT_NEW_PENDING = "Novo Agendamento Pendente"


def patient_confirmed_email(appt: Appointment) -> str:
    return f"Seu agendamento em {appt.date} às {appt.time} foi CONFIRMADO."


# ── Booking API ──────────────────────────────────────────────────────

def pre_confirmation(appt: Appointment) -> str:
    return (
        "⚠️*PRÉ-CONFIRMAÇÃO NECESSÁRIA!*⚠️\n"
        f"Olá {appt.patient_name}, sua avaliação está AGENDADA (pré) para {appt.date} às "
        f"{appt.time}. Responda *SIM* por aqui para confirmar."
    )


def clinic_cancelled(appt: Appointment) -> str:
    return (
        "⚠️ *CANCELAMENTO EFETUADO* ⚠️\n\n"
        f"Olá {appt.patient_name}, o seu agendamento para {appt.date} às {appt.time} "
        "foi **CANCELADO** pela clínica."
    )


# ── Reminders ────────────────────────────────────────────────────────

def _procedure(appt: Appointment) -> str:
    return appt.procedure or "sua avaliação"


def patient_reminder_24h(appt: Appointment) -> str:
    return (
        f"🔔 Lembrete: Olá {appt.patient_name}, seu agendamento para *{_procedure(appt)}* é "
        f"amanhã às {appt.time}. Caso precise alterar ou cancelar, responda por aqui."
    )


def operator_reminder_24h(appt: Appointment) -> str:
    return (
        f"🔔 Lembrete 24h: Paciente {appt.patient_name} ({_procedure(appt)}) - "
        f"{appt.date} {appt.time}"
    )


def patient_reminder_2h(appt: Appointment) -> str:
    return (
        f"⏰ Lembrete: Olá {appt.patient_name}, seu agendamento para *{_procedure(appt)}* é "
        f"HOJE às {appt.time}. Estaremos te aguardando!"
    )


def operator_reminder_2h(appt: Appointment) -> str:
    return (
        f"⏰ Lembrete 2h: Paciente {appt.patient_name} ({_procedure(appt)}) - "
        f"{appt.date} {appt.time}"
    )
