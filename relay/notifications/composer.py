"""Email templates and per-notification-type composers.

Templates live in ``{root}/{TemplateName}/{culture}.email``::

    Subject: Welcome, {{UserName}}
    ---
    <p>Body with {{Placeholders}}</p>

Culture lookup falls back from the full name (``pl-PL``) to the language
(``pl``) and then to the configured default culture.
"""
import html
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from relay.config import settings
from relay.core.exceptions import TemplateNotFoundError
from relay.notifications.payloads import (
	PAYLOAD_TYPES,
	InvitationEmailPayload,
	TrainingCompletedEmailPayload,
	WelcomeEmailPayload,
)

logger = logging.getLogger(__name__)

SUBJECT_PREFIX = "subject:"
SEPARATOR = "\n---\n"


@dataclass(frozen=True)
class EmailMessage:
	to: str
	subject: str
	body: str
	is_html: bool = False


def sanitize_value(value: Optional[str]) -> str:
	if not value:
		return ""
	return value.replace("\r", " ").replace("\n", " ").strip()


def render(template: str, replacements: Dict[str, str]) -> str:
	result = template
	for token, value in replacements.items():
		result = result.replace(token, value)
	return result


def format_weight(weight: float) -> str:
	text = f"{weight:.2f}".rstrip("0").rstrip(".")
	return text or "0"


class EmailTemplateLoader:
	def __init__(self, root: Optional[str] = None, default_culture: Optional[str] = None):
		path = Path(root or settings.EMAIL_TEMPLATE_ROOT)
		if not path.is_absolute():
			path = Path(__file__).parent / path
		self.root = path
		self.default_culture = default_culture or settings.EMAIL_DEFAULT_CULTURE
		self._cache: Dict[Path, Tuple[str, str]] = {}

	def _path(self, template_name: str, culture_name: str) -> Path:
		return self.root / template_name / f"{culture_name.strip().lower()}.email"

	def _candidates(self, template_name: str, culture_name: str) -> List[Path]:
		cultures = []
		for culture in (culture_name, self.default_culture):
			if not culture or not culture.strip():
				continue
			cultures.append(culture)
			language = culture.split("-")[0]
			if language != culture:
				cultures.append(language)
		return [self._path(template_name, culture) for culture in cultures]

	def load(self, template_name: str, culture_name: str) -> Tuple[str, str]:
		"""Return (subject, body) for the best matching culture"""
		for path in self._candidates(template_name, culture_name):
			if path in self._cache:
				return self._cache[path]
			if path.is_file():
				template = self._parse(path)
				self._cache[path] = template
				return template

		raise TemplateNotFoundError(f"Email template not found: {template_name} ({culture_name})")

	@staticmethod
	def _parse(path: Path) -> Tuple[str, str]:
		content = path.read_text(encoding="utf-8").replace("\r\n", "\n")
		index = content.find(SEPARATOR)
		if index <= 0:
			raise ValueError(f"Invalid email template format in {path}")

		header = content[:index].strip()
		body = content[index + len(SEPARATOR):].strip()
		if not header.lower().startswith(SUBJECT_PREFIX):
			raise ValueError(f"Template subject header is missing in {path}")

		return header[len(SUBJECT_PREFIX):].strip(), body


class EmailTemplateComposer:
	"""Turns a stored notification payload into an EmailMessage"""

	def __init__(self, loader: Optional[EmailTemplateLoader] = None, invitation_base_url: Optional[str] = None):
		self.loader = loader or EmailTemplateLoader()
		self.invitation_base_url = (invitation_base_url or settings.INVITATION_BASE_URL).rstrip("/")
		self._composers: Dict[str, Callable] = {
			WelcomeEmailPayload.notification_type: self.compose_welcome,
			InvitationEmailPayload.notification_type: self.compose_trainer_invitation,
			TrainingCompletedEmailPayload.notification_type: self.compose_training_completed,
		}

	def compose(self, notification_type: str, payload_json: str) -> EmailMessage:
		composer = self._composers.get(notification_type)
		if composer is None:
			raise LookupError(f"No email composer registered for notification type '{notification_type}'")

		try:
			payload = PAYLOAD_TYPES[notification_type].model_validate_json(payload_json)
		except ValidationError as e:
			raise ValueError(f"Failed to deserialize {notification_type} email payload") from e
		return composer(payload)

	def compose_welcome(self, payload: WelcomeEmailPayload) -> EmailMessage:
		subject, body = self.loader.load("Welcome", payload.culture_name)
		replacements = {"{{UserName}}": sanitize_value(payload.user_name)}
		return EmailMessage(
			to=payload.recipient_email,
			subject=render(subject, replacements),
			body=render(body, replacements),
		)

	def compose_trainer_invitation(self, payload: InvitationEmailPayload) -> EmailMessage:
		subject, body = self.loader.load("TrainerInvitation", payload.culture_name)
		expires_at = payload.expires_at
		if expires_at.tzinfo is not None:
			expires_at = expires_at.astimezone(timezone.utc)

		replacements = {
			"{{TrainerName}}": sanitize_value(payload.trainer_name),
			"{{InvitationCode}}": sanitize_value(payload.invitation_code),
			"{{AcceptUrl}}": f"{self.invitation_base_url}/accept/{payload.invitation_id}",
			"{{RejectUrl}}": f"{self.invitation_base_url}/reject/{payload.invitation_id}",
			"{{ExpiresAt}}": expires_at.strftime("%Y-%m-%d %H:%M UTC"),
		}
		return EmailMessage(
			to=payload.recipient_email,
			subject=render(subject, replacements),
			body=render(body, replacements),
		)

	def compose_training_completed(self, payload: TrainingCompletedEmailPayload) -> EmailMessage:
		subject, body = self.loader.load("TrainingCompleted", payload.culture_name)
		replacements = {
			"{{PlanDayName}}": sanitize_value(payload.plan_day_name),
			"{{TrainingDate}}": payload.training_date.strftime("%Y-%m-%d %H:%M"),
			"{{TrainingTable}}": self._training_table(payload),
		}
		return EmailMessage(
			to=payload.recipient_email,
			subject=render(subject, replacements),
			body=render(body, replacements),
			is_html=True,
		)

	@staticmethod
	def _training_table(payload: TrainingCompletedEmailPayload) -> str:
		if not payload.exercises:
			return '<p style="margin:0; font-size:14px; color:#4b5563;">No exercises recorded.</p>'

		groups = defaultdict(list)
		for exercise in payload.exercises:
			groups[exercise.exercise_name].append(exercise)

		rows = [
			'<table style="width:100%; border-collapse:collapse; margin:12px 0;">',
			"  <thead><tr><th>Series</th><th>Reps</th><th>Weight</th><th>Unit</th></tr></thead>",
			"  <tbody>",
		]
		for name in sorted(groups):
			rows.append(f'    <tr><td colspan="4" style="font-weight:600;">{html.escape(sanitize_value(name))}</td></tr>')
			for entry in sorted(groups[name], key=lambda e: e.series):
				rows.append(
					f"    <tr><td>Series #{entry.series}</td><td>{entry.reps}</td>"
					f"<td>{format_weight(entry.weight)}</td><td>{html.escape(entry.unit.value)}</td></tr>"
				)
		rows.append("  </tbody>")
		rows.append("</table>")
		return "\n".join(rows)
