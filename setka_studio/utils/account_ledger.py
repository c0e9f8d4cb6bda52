"""In-memory user accounts, credit balances and promo codes."""

import hashlib
import hmac
import logging
import secrets
import string
from threading import Lock
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from setka_studio.core.models import PaymentMode

logger = logging.getLogger(__name__)

PROMO_CODE_LENGTH = 16
PASSWORD_LENGTH = 12
HASH_ITERATIONS = 100_000
_PROMO_ALPHABET = string.ascii_uppercase + string.digits


class UserAccount(BaseModel):
    """A user's balance, own API key and payment mode."""

    username: str = Field(..., min_length=1)
    credits: int = Field(default=0, ge=0)
    api_key: Optional[str] = None
    payment_mode: PaymentMode = PaymentMode.CREDITS
    password_hash: Optional[str] = Field(default=None, repr=False)

    @property
    def can_log_in(self) -> bool:
        return self.password_hash is not None


class PromoCode(BaseModel):
    """A code that grants credits once per user."""

    code: str
    credits: int = Field(..., gt=0)
    used_by: List[str] = Field(default_factory=list)


def generate_secret(length: int, alphabet: str = _PROMO_ALPHABET) -> str:
    """Random code of ``length`` characters from ``alphabet``."""
    return "".join(secrets.choice(alphabet) for _ in range(length))


def hash_password(password: str, salt: Optional[str] = None) -> str:
    """Salted PBKDF2 hash in ``salt$hexdigest`` form."""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), HASH_ITERATIONS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
    salt, _, _ = password_hash.partition("$")
    return hmac.compare_digest(hash_password(password, salt), password_hash)


class AccountLedger:
    """Thread-safe store of accounts and promo codes.

    All balance changes go through ``try_charge``, ``add_credits`` and
    ``redeem_promo_code``, which hold the ledger lock for the whole
    read-modify-write. Usernames are matched case-insensitively.
    """

    def __init__(self, shared_api_key: Optional[str] = None):
        """Initialize the ledger.

        Args:
            shared_api_key: Service key used for generations paid with credits
        """
        self.shared_api_key = shared_api_key
        self._accounts: Dict[str, UserAccount] = {}
        self._promo_codes: Dict[str, PromoCode] = {}
        self._lock = Lock()

    @staticmethod
    def _key(username: str) -> str:
        return username.strip().lower()

    def _get(self, username: str) -> UserAccount:
        account = self._accounts.get(self._key(username))
        if account is None:
            raise KeyError(f"Unknown user: {username}")
        return account

    def create_user(
        self,
        username: str,
        credits: int = 0,
        password: Optional[str] = None
    ) -> UserAccount:
        """Create an account.

        Args:
            username: Unique, case-insensitive login name
            credits: Starting balance
            password: Login password; accounts without one cannot log in

        Raises:
            ValueError: If the username is blank or taken
        """
        if not username.strip():
            raise ValueError("Username must not be empty")

        with self._lock:
            key = self._key(username)
            if key in self._accounts:
                raise ValueError(f"User already exists: {username}")
            account = UserAccount(
                username=username.strip(),
                credits=credits,
                password_hash=hash_password(password) if password else None,
            )
            self._accounts[key] = account

        logger.info(f"Created user {account.username} with {credits} credit(s)")
        return account.model_copy()

    def get_user(self, username: str) -> Optional[UserAccount]:
        """Return a snapshot of the account, or None."""
        with self._lock:
            account = self._accounts.get(self._key(username))
            return account.model_copy() if account else None

    def list_users(self) -> List[UserAccount]:
        with self._lock:
            return [account.model_copy() for account in self._accounts.values()]

    def delete_user(self, username: str) -> bool:
        with self._lock:
            removed = self._accounts.pop(self._key(username), None)
        if removed:
            logger.info(f"Deleted user {removed.username}")
        return removed is not None

    def authenticate(self, username: str, password: str) -> bool:
        """Check a login. Unknown users and accounts without a password fail."""
        with self._lock:
            account = self._accounts.get(self._key(username))
            password_hash = account.password_hash if account else None
        if password_hash is None or not password:
            return False
        return verify_password(password, password_hash)

    def set_password(self, username: str, password: str) -> None:
        """Replace the user's login password.

        Raises:
            ValueError: If the password is blank
            KeyError: If the user does not exist
        """
        if not password.strip():
            raise ValueError("Password must not be empty")
        password_hash = hash_password(password)
        with self._lock:
            self._get(username).password_hash = password_hash

    def set_credits(self, username: str, credits: int) -> None:
        """Overwrite the balance (administrator correction).

        Raises:
            ValueError: If credits is negative
        """
        if credits < 0:
            raise ValueError("Credits must not be negative")
        with self._lock:
            self._get(username).credits = credits

    def balance(self, username: str) -> int:
        with self._lock:
            return self._get(username).credits

    def try_charge(self, username: str, amount: int) -> bool:
        """Deduct ``amount`` credits if the balance covers it.

        A zero charge always succeeds.

        Raises:
            ValueError: If amount is negative
            KeyError: If the user does not exist
        """
        if amount < 0:
            raise ValueError("Charge amount must not be negative")

        with self._lock:
            account = self._get(username)
            if account.credits < amount:
                logger.info(
                    f"Charge of {amount} refused for {account.username}: balance {account.credits}"
                )
                return False
            account.credits -= amount
            return True

    def add_credits(self, username: str, amount: int) -> int:
        """Add credits and return the new balance.

        Raises:
            ValueError: If amount is not positive
        """
        if amount <= 0:
            raise ValueError("Credit amount must be positive")

        with self._lock:
            account = self._get(username)
            account.credits += amount
            return account.credits

    def set_api_key(self, username: str, api_key: Optional[str]) -> None:
        """Store (or clear, with None or blank) the user's own API key."""
        with self._lock:
            self._get(username).api_key = (api_key or "").strip() or None

    def set_payment_mode(self, username: str, payment_mode: PaymentMode) -> None:
        with self._lock:
            self._get(username).payment_mode = payment_mode

    def create_promo_code(self, credits: int) -> PromoCode:
        """Create a promo code with a fresh random code.

        Raises:
            ValueError: If credits is not positive
        """
        if credits <= 0:
            raise ValueError("A promo code must grant at least one credit")

        with self._lock:
            code = self._new_code()
            promo = PromoCode(code=code, credits=credits)
            self._promo_codes[code] = promo

        logger.info(f"Created promo code worth {credits} credit(s)")
        return promo.model_copy(deep=True)

    def _new_code(self) -> str:
        while True:
            code = generate_secret(PROMO_CODE_LENGTH)
            if code not in self._promo_codes:
                return code

    def list_promo_codes(self) -> List[PromoCode]:
        with self._lock:
            return [promo.model_copy(deep=True) for promo in self._promo_codes.values()]

    def delete_promo_code(self, code: str) -> bool:
        with self._lock:
            return self._promo_codes.pop(code.strip().upper(), None) is not None

    def redeem_promo_code(self, username: str, code: str) -> int:
        """Grant a promo code's credits to a user.

        Returns:
            The user's new balance

        Raises:
            KeyError: If the user does not exist
            ValueError: If the code is unknown or this user already redeemed it
        """
        with self._lock:
            account = self._get(username)
            promo = self._promo_codes.get(code.strip().upper())
            if promo is None:
                raise ValueError("Promo code not found")

            key = self._key(username)
            if key in promo.used_by:
                raise ValueError("You have already used this promo code")

            promo.used_by.append(key)
            account.credits += promo.credits
            balance = account.credits

        logger.info(f"{account.username} redeemed a promo code for {promo.credits} credit(s)")
        return balance

    def for_user(self, username: str) -> "AccountGateway":
        """Billing and credential collaborator bound to one user."""
        self.balance(username)
        return AccountGateway(self, username)


class AccountGateway:
    """Per-user view of the ledger used by the generation orchestrator."""

    def __init__(self, ledger: AccountLedger, username: str):
        self.ledger = ledger
        self.username = username

    def try_charge(self, amount: int) -> bool:
        return self.ledger.try_charge(self.username, amount)

    def resolve_credential(self, payment_mode: PaymentMode) -> Optional[str]:
        """Shared service key for credits, the user's own key otherwise."""
        if payment_mode == PaymentMode.CREDITS:
            return self.ledger.shared_api_key or None
        account = self.ledger.get_user(self.username)
        return account.api_key if account else None

    def __repr__(self) -> str:
        return f"AccountGateway(username='{self.username}')"
