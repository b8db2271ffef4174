# ============================================
# Email 寄送 (SMTP)
# ============================================

import smtplib
from email.message import EmailMessage
import logging

logger = logging.getLogger(__name__)


class Mailer:
    """
    用 smtplib 寄信,設定從 app.config 的 MAIL_* 讀取

    MAIL_SUPPRESS_SEND=True 時只寫 log (開發 / 測試環境)
    """

    def __init__(self, config):
        self.server = config.get('MAIL_SERVER')
        self.port = config.get('MAIL_PORT', 587)
        self.use_tls = config.get('MAIL_USE_TLS', True)
        self.use_ssl = config.get('MAIL_USE_SSL', False)
        self.username = config.get('MAIL_USERNAME')
        self.password = config.get('MAIL_PASSWORD')
        self.sender = config.get('MAIL_DEFAULT_SENDER')
        self.timeout = config.get('MAIL_TIMEOUT', 10)
        self.suppress = config.get('MAIL_SUPPRESS_SEND', False)

    def send(self, to_email, subject, body_text, body_html=None):
        msg = EmailMessage()
        msg['Subject'] = subject
        msg['From'] = self.sender
        msg['To'] = to_email
        msg.set_content(body_text)
        if body_html:
            msg.add_alternative(body_html, subtype='html')

        if self.suppress:
            logger.info(f"Mail suppressed: '{subject}' to {to_email}")
            return

        if self.use_ssl:
            smtp = smtplib.SMTP_SSL(self.server, self.port, timeout=self.timeout)
        else:
            smtp = smtplib.SMTP(self.server, self.port, timeout=self.timeout)

        with smtp as server:
            if self.use_tls and not self.use_ssl:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg)

        logger.info(f"Mail sent: '{subject}' to {to_email}")

    def send_otp_email(self, to_email, otp, expires_minutes):
        subject = 'Your Password Reset OTP'
        body_text = (
            f"Your OTP for password reset is: {otp}. "
            f"It will expire in {expires_minutes} minutes."
        )
        body_html = (
            f"<p>Your OTP for password reset is: <strong>{otp}</strong>. "
            f"It will expire in {expires_minutes} minutes.</p>"
        )
        self.send(to_email, subject, body_text, body_html)
