"""
SMS notifications to clients and lawyers.

Every send is audited in the `sms_messages` table (pending, then sent or
failed). Sending never raises: callers get {success, error} and decide
whether a failure matters, which for the discovery workflow it never does
beyond a warning.
"""
import logging
import re
import uuid
from datetime import date, datetime
from typing import Any, Dict, Optional

import requests

from config import Config
from models import utc_now
from services.record_store import Repository, get_repository

logger = logging.getLogger(__name__)

SMS_TABLE = 'sms_messages'

MESSAGE_TYPES = (
    'invitation',
    'questionnaire_sent',
    'reminder',
    'deadline_warning',
    'completion',
    'login_link',
    'custom',
)


def _format_deadline(deadline: Optional[str]) -> str:
    if not deadline:
        return 'as soon as possible'
    try:
        parsed = datetime.fromisoformat(str(deadline).replace('Z', '+00:00'))
    except ValueError:
        try:
            parsed = date.fromisoformat(str(deadline))
        except ValueError:
            return str(deadline)
    return f"{parsed.month}/{parsed.day}/{parsed.year}"


def _plural(count: int) -> str:
    return '' if count == 1 else 's'


def build_message(message_type: str, context: Dict[str, Any]) -> str:
    """Render the message body for a template kind."""
    client_name = context.get('client_name') or 'there'
    lawyer_name = context.get('lawyer_name') or 'your attorney'
    case_name = context.get('case_name') or 'your case'
    question_count = context.get('question_count') or 0
    deadline = _format_deadline(context.get('deadline'))
    remaining = context.get('remaining_questions') or question_count
    link = context.get('login_link') or ''

    if message_type == 'questionnaire_sent':
        return (f'Hi {client_name}, {lawyer_name} needs your input for "{case_name}". '
                f'Please complete {question_count} questions by {deadline}. Sign in here: {link}')
    if message_type == 'login_link':
        return f'DocuLaw: Your login link is ready. Tap here to sign in to your client portal: {link}'
    if message_type == 'reminder':
        return (f'Reminder: You have {remaining} unanswered question{_plural(remaining)} '
                f'for "{case_name}" due {deadline}. Sign in: {link}')
    if message_type == 'deadline_warning':
        return (f'URGENT: Your questionnaire for "{case_name}" is due tomorrow. '
                f'{remaining} question{_plural(remaining)} remaining. Please complete ASAP: {link}')
    if message_type == 'completion':
        return (f'{client_name} has completed the questionnaire for "{case_name}". '
                f'All {question_count} questions answered. Review responses in DocuLaw.')
    if message_type == 'invitation':
        return (f'Hi {client_name}, {lawyer_name} has invited you to DocuLaw, your secure client portal. '
                f'Access your account: {link}')
    if message_type == 'custom':
        return (context.get('custom_message')
                or f'Message from {lawyer_name} about "{case_name}": Please check your DocuLaw portal.')
    return 'DocuLaw: You have a new notification. Please sign in to your portal.'


class SmsService:
    """SMS sender with a provider toggle (dev logs only, twilio sends)."""

    def __init__(self, repository: Optional[Repository] = None, provider: Optional[str] = None):
        self._repository = repository
        self.provider = (provider or Config.SMS_PROVIDER or 'dev').strip().lower()

    @property
    def repository(self) -> Repository:
        if self._repository is None:
            self._repository = get_repository()
        return self._repository

    def _normalize_phone(self, phone: str) -> str:
        digits = re.sub(r"\D", "", phone or "")
        if phone.startswith("+"):
            return f"+{digits}"
        if len(digits) == 10:
            return f"+1{digits}"
        if len(digits) == 11 and digits.startswith("1"):
            return f"+{digits}"
        return f"+{digits}" if digits else phone

    def send(self, to_phone: str, message_type: str, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Send a templated SMS.

        Returns:
            {"success": bool, "error": str|None, "message_id": ..., "message_body": ...}
        """
        context = context or {}
        if not to_phone:
            return {'success': False, 'error': 'to_phone is required'}
        if message_type not in MESSAGE_TYPES:
            return {'success': False, 'error': f'Unknown message type: {message_type}'}

        target = self._normalize_phone(to_phone)
        body = build_message(message_type, context)
        message_id = self._audit_pending(target, body, message_type, context)

        try:
            sid = self._deliver(target, body)
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"SMS {message_type} to {target} failed: {e}")
            self._audit_update(message_id, {'status': 'failed', 'error_message': str(e)})
            return {'success': False, 'error': str(e), 'message_id': message_id}

        self._audit_update(message_id, {'status': 'sent', 'twilio_message_sid': sid, 'sent_at': utc_now()})
        logger.info(f"SMS {message_type} sent to {target}")
        return {
            'success': True,
            'error': None,
            'message_id': message_id,
            'message_body': body,
            'twilio_sid': sid
        }

    def _deliver(self, target: str, body: str) -> Optional[str]:
        if self.provider == 'dev':
            logger.info(f"[DEV SMS] to={target} body={body}")
            return None

        if self.provider == 'twilio':
            sid = (Config.TWILIO_ACCOUNT_SID or '').strip()
            token = (Config.TWILIO_AUTH_TOKEN or '').strip()
            sender = (Config.TWILIO_PHONE_NUMBER or '').strip()
            if not sid or not token or not sender:
                raise ValueError("Twilio credentials not configured "
                                 "(TWILIO_ACCOUNT_SID/TWILIO_AUTH_TOKEN/TWILIO_PHONE_NUMBER)")

            response = requests.post(
                f"https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json",
                data={'To': target, 'From': sender, 'Body': body},
                auth=(sid, token),
                timeout=20
            )
            if response.status_code >= 400:
                raise ValueError(f"Twilio SMS failed: {response.status_code} {response.text[:200]}")
            return response.json().get('sid')

        raise ValueError(f"Unsupported SMS_PROVIDER: {self.provider}")

    def _audit_pending(self, target: str, body: str, message_type: str, context: Dict[str, Any]) -> Optional[str]:
        row = {
            'id': str(uuid.uuid4()),
            'lawyer_id': context.get('lawyer_id'),
            'client_id': context.get('client_id'),
            'case_id': context.get('case_id'),
            'questionnaire_id': context.get('questionnaire_id'),
            'to_phone': target,
            'from_phone': Config.TWILIO_PHONE_NUMBER,
            'message_body': body,
            'message_type': message_type,
            'status': 'pending',
            'created_at': utc_now()
        }
        try:
            self.repository.insert(SMS_TABLE, [row])
            return row['id']
        except Exception as e:
            # Sending matters more than the audit row
            logger.error(f"Error logging SMS to store: {e}")
            return None

    def _audit_update(self, message_id: Optional[str], changes: Dict[str, Any]) -> None:
        if not message_id:
            return
        try:
            self.repository.update(SMS_TABLE, changes, {'id': message_id})
        except Exception as e:
            logger.error(f"Error updating SMS audit row {message_id}: {e}")


# Global instance
sms_service = SmsService()
