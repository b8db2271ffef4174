from flask_jwt_extended import create_access_token
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from models import db, User, OneTimePassword
from errors import (DuplicateEmail, InvalidCredentials, InvalidOrExpiredCode,
                    NotFound, ValidationError, InternalError)
from datetime import datetime, timedelta
import secrets
import logging

logger = logging.getLogger(__name__)


def normalize_email(email):
    return (email or '').strip().lower()


class CredentialService:
    """
    註冊、登入、忘記密碼 (OTP) 和使用者查詢

    bcrypt 和 mailer 由 create_app 注入
    """

    def __init__(self, bcrypt, mailer, otp_length=6, otp_expires=timedelta(minutes=10)):
        self.bcrypt = bcrypt
        self.mailer = mailer
        self.otp_length = otp_length
        self.otp_expires = otp_expires

    def _hash_password(self, password):
        return self.bcrypt.generate_password_hash(password).decode('utf-8')

    # ============================================
    # 註冊 / 登入
    # ============================================

    def signup(self, name, email, password):
        email = normalize_email(email)

        if User.query.filter_by(email=email).first():
            raise DuplicateEmail()

        user = User(name=name.strip(), email=email, password_hash=self._hash_password(password))

        try:
            db.session.add(user)
            db.session.commit()
        except IntegrityError:
            # 兩個請求同時用同一個 email 註冊
            db.session.rollback()
            raise DuplicateEmail()

        logger.info(f"New user registered: {user.email}")
        return user

    def login(self, email, password):
        """
        Returns:
            tuple: (access_token, user)
        """
        email = normalize_email(email)
        user = User.query.filter_by(email=email).first()

        # 不要區分是 email 錯還是 password 錯,避免帳號枚舉攻擊
        if not user or not self.bcrypt.check_password_hash(user.password_hash, password):
            logger.warning(f"Failed login attempt for email: {email}")
            raise InvalidCredentials()

        token = create_access_token(identity=str(user.id), additional_claims={'email': user.email})

        logger.info(f"User logged in: {user.email}")
        return token, user

    # ============================================
    # 忘記密碼 / OTP
    # ============================================

    def _generate_code(self):
        low = 10 ** (self.otp_length - 1)
        return str(low + secrets.randbelow(9 * low))

    def request_password_reset(self, email):
        """
        產生 OTP 並寄出

        不管 email 存不存在都正常回傳,呼叫端看不出差別
        """
        email = normalize_email(email)
        user = User.query.filter_by(email=email).first()
        if not user:
            logger.info(f"Password reset requested for unknown email: {email}")
            return

        now = datetime.utcnow()
        code = self._generate_code()

        try:
            # 舊的 OTP 和所有已過期的紀錄一起清掉
            OneTimePassword.query.filter(
                or_(OneTimePassword.email == email, OneTimePassword.expires_at <= now)
            ).delete(synchronize_session=False)

            db.session.add(OneTimePassword(
                email=email,
                code=code,
                created_at=now,
                expires_at=now + self.otp_expires
            ))
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to store OTP for {email}: {str(e)}", exc_info=True)
            raise InternalError('Failed to process password reset request')

        try:
            self.mailer.send_otp_email(email, code, int(self.otp_expires.total_seconds() // 60))
        except Exception as e:
            logger.error(f"Failed to send OTP email to {email}: {str(e)}", exc_info=True)
            return

        logger.info(f"Password reset OTP sent to: {email}")

    def verify_reset(self, email, code, new_password):
        email = normalize_email(email)
        now = datetime.utcnow()

        record = OneTimePassword.query.filter(
            OneTimePassword.email == email,
            OneTimePassword.code == code,
            OneTimePassword.expires_at > now
        ).first()

        user = User.query.filter_by(email=email).first() if record else None
        if not record or not user:
            logger.warning(f"Invalid or expired OTP for email: {email}")
            raise InvalidOrExpiredCode()

        user.password_hash = self._hash_password(new_password)

        try:
            # 用過的 OTP 刪掉 (同一個 email 的其他 OTP 也一起失效)
            OneTimePassword.query.filter_by(email=email).delete(synchronize_session=False)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Password reset error for {email}: {str(e)}", exc_info=True)
            raise InternalError('Password reset failed due to server error')

        logger.info(f"Password reset for user: {email}")
        return user

    def purge_expired_otps(self, now=None):
        """刪除所有過期的 OTP,回傳刪除筆數"""
        now = now or datetime.utcnow()
        deleted = OneTimePassword.query.filter(
            OneTimePassword.expires_at <= now
        ).delete(synchronize_session=False)
        db.session.commit()

        logger.info(f"Purged {deleted} expired OTP records")
        return deleted

    # ============================================
    # 使用者查詢 (指派用)
    # ============================================

    def get_user(self, user_id):
        return db.session.get(User, user_id)

    def list_users(self):
        return User.query.order_by(User.name.asc(), User.id.asc()).all()

    def search_users(self, q):
        """name 或 email 包含 q (不分大小寫)"""
        if not q or not q.strip():
            raise ValidationError('Search query is required')

        q = q.strip()
        return User.query.filter(
            or_(
                User.name.icontains(q, autoescape=True),
                User.email.icontains(q, autoescape=True)
            )
        ).order_by(User.name.asc(), User.id.asc()).all()

    def find_by_email(self, email):
        if not email or not email.strip():
            raise ValidationError('Email is required')

        user = User.query.filter_by(email=normalize_email(email)).first()
        if not user:
            raise NotFound('User not found')
        return user

    def find_by_name(self, name):
        if not name or not name.strip():
            raise ValidationError('Name is required')

        return User.query.filter(
            func.lower(User.name) == name.strip().lower()
        ).order_by(User.id.asc()).all()
