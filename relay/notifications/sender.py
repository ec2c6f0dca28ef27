import asyncio
import logging
import re
import smtplib
import uuid
from datetime import datetime, timezone
from email.message import EmailMessage as MimeMessage
from email.utils import formataddr
from pathlib import Path
from typing import Optional, Protocol

from relay.config import Settings, settings as app_settings
from relay.notifications.composer import EmailMessage

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
	async def send(self, message: EmailMessage) -> bool:
		...


class DummyEmailSender:
	"""Writes each message to ``{output_dir}/*.email.txt`` instead of sending it"""

	def __init__(self, output_dir: str, enabled: bool = True):
		self.output_dir = Path(output_dir)
		self.enabled = enabled

	async def send(self, message: EmailMessage) -> bool:
		if not self.enabled:
			return False

		self.output_dir.mkdir(parents=True, exist_ok=True)
		stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
		recipient = re.sub(r"[^A-Za-z0-9_.-]", "_", message.to) or "unknown"
		path = self.output_dir / f"{stamp}_{recipient}_{uuid.uuid4().hex[:8]}.email.txt"
		path.write_text(
			f"To: {message.to}\nSubject: {message.subject}\nHtml: {message.is_html}\n\n{message.body}\n",
			encoding="utf-8",
		)
		logger.info(f"Dummy email for {message.to} written to {path}")
		return True


class SmtpEmailSender:
	def __init__(
			self,
			host: str,
			port: int,
			from_address: str,
			from_name: str = "",
			username: Optional[str] = None,
			password: Optional[str] = None,
			use_tls: bool = True,
			enabled: bool = True,
			timeout: float = 30.0,
	):
		self.host = host
		self.port = port
		self.from_address = from_address
		self.from_name = from_name
		self.username = username
		self.password = password
		self.use_tls = use_tls
		self.enabled = enabled
		self.timeout = timeout

	def _build(self, message: EmailMessage) -> MimeMessage:
		mime = MimeMessage()
		mime["From"] = formataddr((self.from_name, self.from_address))
		mime["To"] = message.to
		mime["Subject"] = message.subject
		if message.is_html:
			mime.set_content(message.body, subtype="html")
		else:
			mime.set_content(message.body)
		return mime

	def _send_blocking(self, mime: MimeMessage):
		with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
			if self.use_tls:
				smtp.starttls()
			if self.username:
				smtp.login(self.username, self.password or "")
			smtp.send_message(mime)

	async def send(self, message: EmailMessage) -> bool:
		if not self.enabled:
			return False

		await asyncio.to_thread(self._send_blocking, self._build(message))
		logger.info(f"Email '{message.subject}' sent to {message.to} via {self.host}:{self.port}")
		return True


def build_email_sender(settings: Settings = app_settings) -> EmailSender:
	mode = settings.EMAIL_DELIVERY_MODE.lower()
	if mode == "smtp":
		return SmtpEmailSender(
			host=settings.SMTP_HOST,
			port=settings.SMTP_PORT,
			from_address=settings.EMAIL_FROM_ADDRESS,
			from_name=settings.EMAIL_FROM_NAME,
			username=settings.SMTP_USERNAME,
			password=settings.SMTP_PASSWORD,
			use_tls=settings.SMTP_USE_TLS,
			enabled=settings.EMAIL_ENABLED,
		)
	if mode == "dummy":
		return DummyEmailSender(settings.EMAIL_DUMMY_OUTPUT_DIR, enabled=settings.EMAIL_ENABLED)
	raise ValueError(f"Unsupported EMAIL_DELIVERY_MODE '{settings.EMAIL_DELIVERY_MODE}'")
