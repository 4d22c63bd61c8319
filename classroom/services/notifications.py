"""Best-effort email notifications for classroom bookings.

Emails are rendered with Jinja2 and delivered through the Resend API. The
booking endpoints schedule ``notify_session_booked`` as a background task, so
nothing here may raise back into a request: every delivery failure is logged
and reported as ``False``.
"""

import logging
from datetime import datetime
from pathlib import Path

import resend
from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import BaseModel

from classroom.core import config

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / 'templates'
SESSION_BOOKED_TEMPLATE = 'session_booked.html'

_environment = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(['html']),
    trim_blocks=True,
    lstrip_blocks=True,
)


class BookedSessionNotice(BaseModel):
    """Snapshot of a booked session, detached from the database session."""
    org_id: int
    organization_name: str
    start_time: datetime
    end_time: datetime
    instructor_name: str
    instructor_email: str
    student_name: str
    student_email: str


def format_session_date(value: datetime) -> str:
    return value.strftime('%A, %B %d, %Y')


def format_session_time(start_time: datetime, end_time: datetime) -> str:
    def clock(value: datetime) -> str:
        return value.strftime('%I:%M %p').lstrip('0')

    return f'{clock(start_time)} - {clock(end_time)} UTC'


def render_session_booked_email(notice: BookedSessionNotice, is_instructor: bool) -> tuple[str, str]:
    """Return ``(subject, html)`` for one participant of a booked session."""
    other_person_name = notice.student_name if is_instructor else notice.instructor_name
    user_name = notice.instructor_name if is_instructor else notice.student_name
    classroom_path = f'/workspace/{notice.org_id}/classroom'
    if is_instructor:
        subject = f'New session booked with {other_person_name}'
        heading = 'New Session Booked'
        classroom_path += '/manage'
    else:
        subject = f'Session confirmed with {other_person_name}'
        heading = 'Session Confirmed'

    html = _environment.get_template(SESSION_BOOKED_TEMPLATE).render(
        heading=heading,
        user_name=user_name,
        other_person_name=other_person_name,
        session_date=format_session_date(notice.start_time),
        session_time=format_session_time(notice.start_time, notice.end_time),
        session_link=f'{config.APP_BASE_URL}{classroom_path}',
        is_instructor=is_instructor,
        organization_name=notice.organization_name,
    )
    return subject, html


def send_email(to: str, subject: str, html: str) -> bool:
    if not config.RESEND_API_KEY:
        logger.info('RESEND_API_KEY not configured; skipping email "%s" to %s', subject, to)
        return False

    resend.api_key = config.RESEND_API_KEY
    try:
        resend.Emails.send({
            'from': config.EMAIL_FROM,
            'to': to,
            'subject': subject,
            'html': html,
        })
    except Exception:
        logger.exception('Failed to send email "%s" to %s', subject, to)
        return False

    logger.info('Sent email "%s" to %s', subject, to)
    return True


def notify_session_booked(notice: BookedSessionNotice) -> dict[str, int]:
    results = []
    for recipient, is_instructor in ((notice.instructor_email, True), (notice.student_email, False)):
        try:
            subject, html = render_session_booked_email(notice, is_instructor=is_instructor)
        except Exception:
            logger.exception('Failed to render session booked email for %s', recipient)
            results.append(False)
            continue
        results.append(send_email(recipient, subject, html))

    successful = sum(1 for sent in results if sent)
    return {'successful': successful, 'failed': len(results) - successful, 'total': len(results)}
