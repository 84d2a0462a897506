import smtplib
from email.message import EmailMessage

from flask import current_app

from racing_plate.errors import DeliveryFailed


SUBJECTS = {
    'verify': 'Verify Your Racing Plate Account',
    'reset': 'Reset Your Racing Plate Password',
}

_BODIES = {
    'verify': 'Welcome to Racing Plate!\n\nYour verification code is: {code}\n',
    'reset': 'Your password reset code is: {code}\n',
}

_FOOTER = '\nThis code will expire in {minutes} minutes.\nIf you didn\'t request this, please ignore this email.\n'


def render_code_message(purpose, code, ttl_seconds):
    body = _BODIES[purpose].format(code=code) + _FOOTER.format(minutes=max(1, ttl_seconds // 60))
    return SUBJECTS[purpose], body


class SmtpNotifier:
    def __init__(self, server, port, username, password, sender, use_tls=True, timeout=10):
        self.server = server
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, to, subject, body):
        message = EmailMessage()
        message['From'] = self.sender
        message['To'] = to
        message['Subject'] = subject
        message.set_content(body)
        try:
            with smtplib.SMTP(self.server, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            current_app.logger.error(f"[mail-fail] to={to} subject={subject!r} error={exc}")
            raise DeliveryFailed() from exc
        current_app.logger.info(f"[mail-sent] to={to} subject={subject!r}")


class ConsoleNotifier:
    """Development backend: writes the mail to the application log."""

    def send(self, to, subject, body):
        current_app.logger.info(f"[mail-console] to={to} subject={subject!r}\n{body}")


def notifier_from_config(config):
    backend = config.get('MAIL_BACKEND', 'smtp')
    if backend == 'console':
        return ConsoleNotifier()
    if backend == 'smtp':
        return SmtpNotifier(
            server=config['MAIL_SERVER'],
            port=int(config.get('MAIL_PORT', 587)),
            username=config.get('MAIL_USERNAME'),
            password=config.get('MAIL_PASSWORD'),
            sender=config.get('MAIL_DEFAULT_SENDER'),
            use_tls=bool(config.get('MAIL_USE_TLS', True)),
        )
    raise ValueError(f"Unknown MAIL_BACKEND '{backend}'")
