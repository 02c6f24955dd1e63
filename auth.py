import logging
import secrets
from datetime import timedelta
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

from config import (
    ALGORITHM,
    OTP_EXPIRE_MINUTES,
    RESET_TOKEN_EXPIRE_HOURS,
    SESSION_TOKEN_EXPIRE_HOURS,
)
from database import OTPS, USER_PUBLIC_PROJECTION, USERS, to_object_id, utcnow

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

FORGOT_PASSWORD_MESSAGE = "If an account exists with this email, a password reset link has been sent."
DEV_MODE_WARNING = "Email not configured. Using dev mode."


def generate_otp() -> str:
    """Six-digit code, uniform over 000000-999999"""
    return f"{secrets.randbelow(10 ** 6):06d}"


class AuthService:
    def __init__(self, settings, store, mailer):
        self.settings = settings
        self.store = store
        self.mailer = mailer

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """Verify a plain password against a hashed password"""
        return pwd_context.verify(plain_password, hashed_password)

    def get_password_hash(self, password: str) -> str:
        """Generate a hashed password from a plain password"""
        return pwd_context.hash(password)

    def create_access_token(self, data: dict, expires_delta: timedelta = None) -> str:
        """Create a JWT with optional expiration"""
        to_encode = data.copy()
        if expires_delta:
            expire = utcnow() + expires_delta
        else:
            expire = utcnow() + timedelta(minutes=15)
        to_encode.update({"exp": expire})
        return jwt.encode(to_encode, self.settings.jwt_secret, algorithm=ALGORITHM)

    def create_session_token(self, user: dict) -> str:
        return self.create_access_token(
            {"userId": str(user["_id"]), "email": user["email"], "name": user.get("name")},
            expires_delta=timedelta(hours=SESSION_TOKEN_EXPIRE_HOURS),
        )

    def create_reset_token(self, user: dict) -> str:
        return self.create_access_token(
            {"userId": str(user["_id"]), "email": user["email"], "type": "reset"},
            expires_delta=timedelta(hours=RESET_TOKEN_EXPIRE_HOURS),
        )

    def decode_token(self, token: str) -> Optional[dict]:
        """Decode a JWT and return its payload, or None if invalid or expired"""
        try:
            return jwt.decode(token, self.settings.jwt_secret, algorithms=[ALGORITHM])
        except JWTError as e:
            logger.warning(f"Token decoding failed: {e}")
            return None

    def get_identity(self, token: str) -> Optional[dict]:
        """Claims of a session token as ``{userId, email, name}``"""
        payload = self.decode_token(token)
        if not payload or payload.get("type") == "reset":
            return None
        if not payload.get("userId") or not payload.get("email"):
            return None
        return {
            "userId": payload["userId"],
            "email": payload["email"],
            "name": payload.get("name"),
        }

    def get_user_by_email(self, email: str, include_password: bool = False) -> Optional[dict]:
        projection = None if include_password else USER_PUBLIC_PROJECTION
        return self.store.find_one(USERS, {"email": email.lower()}, projection)

    def _otp_response(self, sent: bool, otp: str, sent_message: str, dev_message: str) -> dict:
        if sent:
            return {"message": sent_message}
        if self.settings.expose_dev_otp:
            return {"message": dev_message, "devOTP": otp, "warning": DEV_MODE_WARNING}
        return {"message": "OTP generated, but the email could not be delivered. Please request a new code."}

    # Registration
    def send_otp(self, name: str, email: str, password: str) -> dict:
        """Start registration: store a pending OTP and email it"""
        if self.get_user_by_email(email):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User already exists with this email")

        otp = generate_otp()
        # A new code replaces any pending one for this email in a single write
        self.store.replace_or_create(OTPS, {"email": email}, {
            "email": email,
            "otp": otp,
            "name": name,
            # Plaintext until verification; hashed when the user is created
            "password": password,
            "expiresAt": utcnow() + timedelta(minutes=OTP_EXPIRE_MINUTES),
        })
        logger.info(f"OTP issued for {email}")

        sent = self.mailer.send_otp(email, name, otp)
        return self._otp_response(
            sent, otp, "OTP sent to your email. Please check your inbox.", "OTP sent to email"
        )

    def resend_otp(self, email: str) -> dict:
        pending = self.store.find_one(OTPS, {"email": email})
        if not pending:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No pending registration found for this email")

        otp = generate_otp()
        self.store.update_by_id(OTPS, pending["_id"], {
            "otp": otp,
            "expiresAt": utcnow() + timedelta(minutes=OTP_EXPIRE_MINUTES),
        })
        logger.info(f"OTP reissued for {email}")

        sent = self.mailer.send_otp(email, pending.get("name", ""), otp, resend=True)
        return self._otp_response(sent, otp, "New OTP sent to your email", "OTP resent")

    def verify_otp(self, email: str, otp: str) -> dict:
        """Finish registration: check the code and promote the pending record to a user"""
        not_found = HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No OTP found for this email. Please request a new one.",
        )
        pending = self.store.find_one(OTPS, {"email": email})
        if not pending:
            raise not_found

        if utcnow() > pending["expiresAt"]:
            self.store.delete_one(OTPS, {"_id": pending["_id"]})
            logger.info(f"Expired OTP discarded for {email}")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="OTP expired. Please request a new one.")

        if pending["otp"] != otp:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid OTP. Please try again.")

        # Only one concurrent verify gets the record back
        claimed = self.store.claim(OTPS, {"_id": pending["_id"], "otp": otp})
        if not claimed:
            raise not_found

        try:
            user = self.store.create_document(USERS, {
                "name": claimed["name"],
                "email": email,
                "password": self.get_password_hash(claimed["password"]),
                "verified": True,
                "resetPasswordToken": None,
                "resetPasswordExpire": None,
            })
        except DuplicateKeyError:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User already exists with this email")
        logger.info(f"User registered: {email}")

        token = self.create_session_token(user)
        self.mailer.send_welcome(user["email"], user["name"])
        return {
            "message": "Registration successful!",
            "token": token,
            "user": {"id": str(user["_id"]), "name": user["name"], "email": user["email"]},
        }

    # Login and password reset
    def authenticate_user(self, email: str, password: str) -> Optional[dict]:
        """Return the verified user for these credentials, or None"""
        user = self.get_user_by_email(email, include_password=True)
        if not user or not user.get("verified"):
            return None
        if not self.verify_password(password, user["password"]):
            return None
        return user

    def login(self, email: str, password: str) -> dict:
        user = self.authenticate_user(email, password)
        if not user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid email or password",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return {
            "message": "Login successful",
            "token": self.create_session_token(user),
            "user": {"id": str(user["_id"]), "email": user["email"], "name": user.get("name")},
        }

    def forgot_password(self, email: str) -> dict:
        user = self.get_user_by_email(email)
        if not user:
            logger.info("Password reset requested for unknown email")
            return {"message": FORGOT_PASSWORD_MESSAGE}

        reset_token = self.create_reset_token(user)
        self.store.update_by_id(USERS, user["_id"], {
            "resetPasswordToken": reset_token,
            "resetPasswordExpire": utcnow() + timedelta(hours=RESET_TOKEN_EXPIRE_HOURS),
        })
        self.mailer.send_password_reset(user["email"], user.get("name", ""), reset_token)
        return {"message": FORGOT_PASSWORD_MESSAGE}

    def reset_password(self, token: str, new_password: str) -> dict:
        invalid_token = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired reset token",
        )
        payload = self.decode_token(token)
        if not payload or payload.get("type") != "reset":
            raise invalid_token

        user_id = to_object_id(payload.get("userId"))
        if user_id is None:
            raise invalid_token

        # The stored token and expiry must both agree with the presented one
        user = self.store.update_one(
            USERS,
            {
                "_id": user_id,
                "resetPasswordToken": token,
                "resetPasswordExpire": {"$gt": utcnow()},
            },
            {
                "password": self.get_password_hash(new_password),
                "resetPasswordToken": None,
                "resetPasswordExpire": None,
            },
            projection=USER_PUBLIC_PROJECTION,
        )
        if not user:
            raise invalid_token
        logger.info(f"Password reset for {user['email']}")

        self.mailer.send_reset_confirmation(user["email"], user.get("name", ""))
        return {"message": "Password reset successful. You can now log in with your new password."}


# Dependencies
def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> dict:
    """Dependency to get current authenticated user"""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    identity = auth_service.get_identity(token)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


def get_optional_user(
    token: Optional[str] = Depends(oauth2_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> Optional[dict]:
    """Like get_current_user, but anonymous requests pass through as None"""
    if not token:
        return None
    return auth_service.get_identity(token)
