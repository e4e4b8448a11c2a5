"""
auth/engine.py -- Session Engine: the credential and session state machine.

SessionEngine orchestrates the Credential Store (UserStore), the One-Time-Code
Ledger (CodeLedger), the Refresh-Token Ledger (RefreshTokenLedger), the Token
Signer and a Notifier to implement every account flow:

  register / verify_email / resend_verification
  login (password) / request_login_code / verify_login_code
  refresh / logout / authenticate
  request_password_reset / reset_password_with_code / change_password

Concurrency:
  The engine holds no mutable state of its own -- only references to its
  collaborators and a frozen EngineConfig. Every read-and-mutate step that
  must be atomic (code supersession, code consumption, attempt counting,
  lock clearing, revoke-all) is a single storage operation in the stores.
  Two requests for the same user therefore only contend on that user's rows.

Errors:
  Business-rule violations raise ServiceError with the kind the transport
  maps to a status code. Nothing here catches a ServiceError to re-label it.
  Store failures arrive already translated to INTERNAL by auth/db.py.

Enumeration:
  Password login on an unknown email runs bcrypt against a dummy hash and
  returns the same UNAUTHORIZED as a wrong password [C1].
  request_password_reset returns the same FlowResult whether or not the
  email exists, and whether or not the re-issue cap was hit.
  Code-verification flows on an unknown email fail exactly like a wrong code.

Layer rule: no imports from api/. notify/ is used only through the
Notifier protocol.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.engine import Engine

from auth.codes import CodeLedger
from auth.models import (
    CodePurpose,
    FlowResult,
    LoginResult,
    PurgeResult,
    RefreshResult,
    RegisterResult,
    User,
)
from auth.passwords import burn_verify, verify_password, warm_dummy_hash
from auth.refresh_tokens import RefreshTokenLedger
from auth.store import UserStore
from auth.tokens import TokenSigner
from core.config import EngineConfig, utc_now
from core.errors import (
    ServiceError,
    forbidden,
    internal_error,
    not_found,
    too_many_requests,
    unauthorized,
    validation_error,
)
from notify.protocol import Notifier

logger = logging.getLogger("authkeep.engine")

PASSWORD_RESET_MESSAGE = "If the email exists, a password reset code has been sent"


def _locked(remaining: timedelta) -> ServiceError:
    minutes = max(1, math.ceil(remaining.total_seconds() / 60))
    return forbidden(
        "Account is locked due to multiple failed login attempts. "
        f"Please try again in {minutes} minutes.",
        code="account_locked",
        retry_after_minutes=minutes,
    )


class SessionEngine:
    """Account and session flows over the three stores and the signer.

    Usage:
        engine = SessionEngine(users, codes, refresh_tokens, signer, notifier, config)
        engine.register("a@x.com", "Abc12345!")
        engine.verify_email("a@x.com", "123456")
        result = engine.login("a@x.com", "Abc12345!")
        result.access_token, result.refresh_token
    """

    def __init__(
        self,
        users: UserStore,
        codes: CodeLedger,
        refresh_tokens: RefreshTokenLedger,
        signer: TokenSigner,
        notifier: Notifier,
        config: EngineConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.users = users
        self.codes = codes
        self.refresh_tokens = refresh_tokens
        self.signer = signer
        self.notifier = notifier
        self.config = config
        self._clock = clock

    # ------------------------------------------------------------------
    # Registration and email verification
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> RegisterResult:
        """Create an unverified user and send a verify-email code.

        Raises CONFLICT if the email is taken. If the code cannot be handed to
        the notifier the flow fails with INTERNAL; the user row remains and
        resend_verification() recovers it.
        """
        user = self.users.create_user(email, password, first_name, last_name)
        code = self.codes.issue(user.id, CodePurpose.VERIFY_EMAIL)
        self._deliver(self.notifier.send_verification_code, user.email, code, "verification")
        logger.info("User %d registered", user.id)
        return RegisterResult(
            user=user.public(),
            message="Registration successful. Please check your email for the verification code.",
        )

    def verify_email(self, email: str, code: str) -> FlowResult:
        user = self._require_unverified(email)
        if not self.codes.verify(user.id, code, CodePurpose.VERIFY_EMAIL):
            raise unauthorized("Invalid or expired code", code="invalid_code")
        self.users.set_verified(user.id)
        logger.info("User %d verified their email", user.id)
        return FlowResult("Email verified successfully. You can now login.")

    def resend_verification(self, email: str) -> FlowResult:
        user = self._require_unverified(email)
        self._require_issue_budget(user, CodePurpose.VERIFY_EMAIL)
        code = self.codes.issue(user.id, CodePurpose.VERIFY_EMAIL)
        self._deliver(self.notifier.send_verification_code, user.email, code, "verification")
        return FlowResult("Verification code sent to your email")

    def _require_unverified(self, email: str) -> User:
        user = self.users.find_by_email(email)
        if user is None:
            raise not_found("User not found", code="user_not_found")
        if user.is_verified:
            raise validation_error("Email already verified", code="already_verified")
        return user

    # ------------------------------------------------------------------
    # Password login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> LoginResult:
        """Authenticate with email and password and open a session.

        Order matters: lock window first (a locked account is rejected even
        with the right password), then the password (only this step touches
        the attempt counter), then verified/active status.
        """
        user = self.users.find_by_email(email)
        if user is None:
            burn_verify(password, self.config.bcrypt_rounds)
            raise unauthorized("Invalid credentials", code="bad_credentials")

        now = self._clock()
        if user.is_locked(now):
            raise _locked(user.locked_until - now)
        if user.locked_until is not None:
            self.users.clear_expired_lock(user.id)

        if not verify_password(password, user.hashed_password):
            attempts = self.users.increment_failed_attempts(user.id)
            remaining = self.config.max_login_attempts - attempts
            logger.info("Failed login for user %d (%d consecutive)", user.id, attempts)
            if remaining <= 0:
                raise _locked(self.config.lock_window)
            raise unauthorized(
                f"Invalid credentials. {remaining} attempt(s) remaining.",
                code="bad_credentials",
                remaining_attempts=remaining,
            )

        if not user.is_verified:
            raise forbidden("Please verify your email before logging in", code="email_not_verified")
        if not user.is_active:
            raise forbidden("Account is deactivated", code="account_inactive")

        if not self.users.touch_login_if_unlocked(user.id):
            # Locked by a concurrent failure after the read above.
            locked_until = self.users.find_by_id(user.id).locked_until
            raise _locked(locked_until - self._clock() if locked_until else self.config.lock_window)
        return self._issue_session(user)

    # ------------------------------------------------------------------
    # Code-based login
    # ------------------------------------------------------------------

    def request_login_code(self, email: str) -> FlowResult:
        user = self.users.find_by_email(email)
        if user is None:
            raise not_found("User not found", code="user_not_found")
        if not user.is_verified:
            raise forbidden("Please verify your email first", code="email_not_verified")
        if not user.is_active:
            raise forbidden("Account is deactivated", code="account_inactive")
        self._require_issue_budget(user, CodePurpose.LOGIN)
        code = self.codes.issue(user.id, CodePurpose.LOGIN)
        self._deliver(self.notifier.send_login_code, user.email, code, "login")
        return FlowResult("Login code sent to your email")

    def verify_login_code(self, email: str, code: str) -> LoginResult:
        """Exchange a login code for a session.

        Verified/active status was enforced when the code was issued and is
        not re-checked here unless EngineConfig.recheck_status_on_code_login
        is set. The lockout window does not apply to code login.
        """
        user = self.users.find_by_email(email)
        if user is None or not self.codes.verify(user.id, code, CodePurpose.LOGIN):
            raise unauthorized("Invalid or expired code", code="invalid_code")
        if self.config.recheck_status_on_code_login and not (user.is_active and user.is_verified):
            raise forbidden("Account is deactivated", code="account_inactive")
        return self._open_session(user)

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    def _open_session(self, user: User) -> LoginResult:
        """Success tail of code login, which does not consult the lock."""
        self.users.touch_login(user.id)
        return self._issue_session(user)

    def _issue_session(self, user: User) -> LoginResult:
        access_token = self.signer.issue_access(user)
        refresh_token = self.signer.issue_refresh(user)
        self.refresh_tokens.store(user.id, refresh_token, self.signer.expiry_of(refresh_token))
        logger.info("Session opened for user %d", user.id)
        return LoginResult(user=user.public(), access_token=access_token, refresh_token=refresh_token)

    def refresh(self, refresh_token: str) -> RefreshResult:
        """Issue a new access token. The refresh token itself is not rotated."""
        claims = self.signer.verify_refresh(refresh_token)
        user_id = claims["user_id"]
        if not self.refresh_tokens.is_valid(refresh_token, user_id):
            raise unauthorized("Invalid or expired refresh token", code="refresh_token_revoked")
        user = self.users.find_by_id(user_id)
        if user is None or not user.is_active:
            raise unauthorized("User not found or inactive", code="account_inactive")
        return RefreshResult(access_token=self.signer.issue_access(user))

    def logout(self, refresh_token: str) -> FlowResult:
        """Revoke the presented refresh token. Revoking an absent or already
        revoked token is not an error."""
        if self.refresh_tokens.revoke(refresh_token):
            logger.info("Refresh token revoked on logout")
        return FlowResult("Logout successful")

    def authenticate(self, access_token: str) -> User:
        """Resolve a bearer access token to an active User."""
        claims = self.signer.verify_access(access_token)
        user = self.users.find_by_id(claims["user_id"])
        if user is None:
            raise unauthorized("User not found", code="user_not_found")
        if not user.is_active:
            raise forbidden("Account is deactivated", code="account_inactive")
        return user

    # ------------------------------------------------------------------
    # Password reset and change
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str) -> FlowResult:
        """Send a reset code if the account exists. The response never says which."""
        user = self.users.find_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return FlowResult(PASSWORD_RESET_MESSAGE)
        if not self._within_issue_budget(user, CodePurpose.PASSWORD_RESET):
            logger.warning("Password reset code cap reached for user %d", user.id)
            return FlowResult(PASSWORD_RESET_MESSAGE)
        code = self.codes.issue(user.id, CodePurpose.PASSWORD_RESET)
        self._deliver(self.notifier.send_password_reset_code, user.email, code, "password reset")
        return FlowResult(PASSWORD_RESET_MESSAGE)

    def reset_password_with_code(self, email: str, code: str, new_password: str) -> FlowResult:
        """Set a new password with a reset code and end every existing session."""
        user = self.users.find_by_email(email)
        if user is None or not self.codes.verify(user.id, code, CodePurpose.PASSWORD_RESET):
            raise unauthorized("Invalid or expired code", code="invalid_code")
        self.users.set_password(user.id, new_password)
        self.refresh_tokens.revoke_all(user.id)
        logger.info("Password reset for user %d", user.id)
        return FlowResult("Password reset successful. Please login with your new password.")

    def change_password(self, user_id: int, current_password: str, new_password: str) -> FlowResult:
        """Change the password of an authenticated user and end every session.

        A wrong current password does not count toward the login lockout.
        """
        user = self.users.find_by_id(user_id)
        if user is None:
            raise not_found("User not found", code="user_not_found")
        if not verify_password(current_password, user.hashed_password):
            raise unauthorized("Current password is incorrect", code="bad_credentials")
        self.users.set_password(user.id, new_password)
        self.refresh_tokens.revoke_all(user.id)
        logger.info("Password changed for user %d", user.id)
        return FlowResult("Password changed successfully. Please login again.")

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def purge_expired(self) -> PurgeResult:
        """Delete expired codes and refresh tokens. Scheduled use only."""
        return PurgeResult(
            codes_deleted=self.codes.cleanup_expired(),
            refresh_tokens_deleted=self.refresh_tokens.cleanup_expired(),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _within_issue_budget(self, user: User, purpose: CodePurpose) -> bool:
        return self.codes.recent_issue_count(user.id, purpose) < self.config.otp_max_per_hour

    def _require_issue_budget(self, user: User, purpose: CodePurpose) -> None:
        if not self._within_issue_budget(user, purpose):
            raise too_many_requests(
                "Too many codes requested. Please try again later.",
                code="code_rate_limited",
            )

    @staticmethod
    def _deliver(send: Callable[[str, str], bool], email: str, code: str, kind: str) -> None:
        """Hand a code to the notifier; any failure fails the enclosing flow."""
        try:
            delivered = send(email, code)
        except ServiceError:
            raise
        except Exception:
            logger.exception("Notifier raised while sending %s code", kind)
            delivered = False
        if not delivered:
            raise internal_error(f"Failed to send {kind} email", code="delivery_failed")


def build_session_engine(
    db_engine: Engine,
    config: EngineConfig,
    notifier: Notifier,
    clock: Callable[[], datetime] = utc_now,
    code_generator: Callable[[], str] | None = None,
) -> SessionEngine:
    """Wire the stores and signer around one shared database Engine."""
    warm_dummy_hash(config.bcrypt_rounds)
    return SessionEngine(
        users=UserStore(
            db_engine,
            max_login_attempts=config.max_login_attempts,
            lock_window=config.lock_window,
            bcrypt_rounds=config.bcrypt_rounds,
            clock=clock,
        ),
        codes=CodeLedger(
            db_engine,
            code_length=config.otp_length,
            ttl=config.otp_ttl,
            clock=clock,
            code_generator=code_generator,
        ),
        refresh_tokens=RefreshTokenLedger(db_engine, clock=clock),
        signer=TokenSigner(config, clock=clock),
        notifier=notifier,
        config=config,
        clock=clock,
    )
