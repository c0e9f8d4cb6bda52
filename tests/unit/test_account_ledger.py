"""Unit tests for accounts, credits and promo codes."""

import pytest
from concurrent.futures import ThreadPoolExecutor

from setka_studio.core.models import PaymentMode
from setka_studio.utils.account_ledger import (
    PASSWORD_LENGTH,
    PROMO_CODE_LENGTH,
    AccountGateway,
    AccountLedger,
    generate_secret,
)


@pytest.fixture
def ledger():
    ledger = AccountLedger(shared_api_key="shared-key")
    ledger.create_user("Alice", credits=10)
    return ledger


class TestAccounts:
    """Tests for user management."""

    def test_create_user(self, ledger):
        account = ledger.create_user("bob", credits=5)

        assert account.username == "bob"
        assert account.credits == 5
        assert account.payment_mode == PaymentMode.CREDITS
        assert account.api_key is None

    def test_usernames_case_insensitive(self, ledger):
        assert ledger.balance("alice") == 10
        with pytest.raises(ValueError, match="already exists"):
            ledger.create_user("ALICE")

    def test_blank_username(self, ledger):
        with pytest.raises(ValueError):
            ledger.create_user("   ")

    def test_get_user_returns_copy(self, ledger):
        snapshot = ledger.get_user("alice")
        snapshot.credits = 1000

        assert ledger.balance("alice") == 10

    def test_unknown_user(self, ledger):
        assert ledger.get_user("nobody") is None
        with pytest.raises(KeyError):
            ledger.balance("nobody")

    def test_list_and_delete(self, ledger):
        ledger.create_user("bob")

        assert {account.username for account in ledger.list_users()} == {"Alice", "bob"}
        assert ledger.delete_user("BOB") is True
        assert ledger.delete_user("bob") is False

    def test_api_key_and_payment_mode(self, ledger):
        ledger.set_api_key("alice", "  my-key  ")
        ledger.set_payment_mode("alice", PaymentMode.API_KEY)

        account = ledger.get_user("alice")
        assert account.api_key == "my-key"
        assert account.payment_mode == PaymentMode.API_KEY

        ledger.set_api_key("alice", "")
        assert ledger.get_user("alice").api_key is None


class TestLogin:
    """Tests for passwords and authentication."""

    def test_authenticate(self, ledger):
        ledger.create_user("bob", password="s3cret-pass")

        assert ledger.authenticate("BOB", "s3cret-pass") is True
        assert ledger.authenticate("bob", "wrong") is False
        assert ledger.authenticate("bob", "") is False

    def test_password_stored_hashed(self, ledger):
        account = ledger.create_user("bob", password="s3cret-pass")

        assert account.can_log_in
        assert "s3cret-pass" not in account.password_hash
        assert "s3cret-pass" not in repr(account)

    def test_account_without_password_cannot_log_in(self, ledger):
        assert not ledger.get_user("alice").can_log_in
        assert ledger.authenticate("alice", "") is False
        assert ledger.authenticate("alice", "anything") is False

    def test_unknown_user_cannot_log_in(self, ledger):
        assert ledger.authenticate("nobody", "pass") is False

    def test_set_password(self, ledger):
        ledger.set_password("alice", "new-pass")

        assert ledger.authenticate("alice", "new-pass") is True
        with pytest.raises(ValueError):
            ledger.set_password("alice", "  ")

    def test_generated_password(self):
        password = generate_secret(PASSWORD_LENGTH)

        assert len(password) == PASSWORD_LENGTH
        assert password.isalnum()


class TestCredits:
    """Tests for charging and adding credits."""

    def test_charge_within_balance(self, ledger):
        assert ledger.try_charge("alice", 4) is True
        assert ledger.balance("alice") == 6

    def test_charge_exact_balance(self, ledger):
        assert ledger.try_charge("alice", 10) is True
        assert ledger.balance("alice") == 0

    def test_charge_over_balance_refused(self, ledger):
        assert ledger.try_charge("alice", 11) is False
        assert ledger.balance("alice") == 10

    def test_zero_charge_always_succeeds(self, ledger):
        ledger.try_charge("alice", 10)

        assert ledger.try_charge("alice", 0) is True

    def test_negative_charge(self, ledger):
        with pytest.raises(ValueError):
            ledger.try_charge("alice", -1)

    def test_set_credits(self, ledger):
        ledger.set_credits("alice", 3)

        assert ledger.balance("alice") == 3
        with pytest.raises(ValueError):
            ledger.set_credits("alice", -1)

    def test_add_credits(self, ledger):
        assert ledger.add_credits("alice", 5) == 15
        with pytest.raises(ValueError):
            ledger.add_credits("alice", 0)

    def test_concurrent_charges_never_overdraw(self, ledger):
        with ThreadPoolExecutor(max_workers=8) as executor:
            outcomes = list(executor.map(lambda _: ledger.try_charge("alice", 3), range(20)))

        assert outcomes.count(True) == 3
        assert ledger.balance("alice") == 1


class TestPromoCodes:
    """Tests for promo codes."""

    def test_create_code(self, ledger):
        promo = ledger.create_promo_code(25)

        assert len(promo.code) == PROMO_CODE_LENGTH
        assert promo.code.isalnum() and promo.code == promo.code.upper()
        assert promo.credits == 25
        assert [p.code for p in ledger.list_promo_codes()] == [promo.code]

    def test_invalid_amount(self, ledger):
        with pytest.raises(ValueError):
            ledger.create_promo_code(0)

    def test_redeem_once_per_user(self, ledger):
        promo = ledger.create_promo_code(5)

        assert ledger.redeem_promo_code("alice", promo.code.lower()) == 15
        with pytest.raises(ValueError, match="already used"):
            ledger.redeem_promo_code("Alice", promo.code)
        assert ledger.balance("alice") == 15

    def test_code_shared_between_users(self, ledger):
        promo = ledger.create_promo_code(5)
        ledger.create_user("bob")

        ledger.redeem_promo_code("alice", promo.code)

        assert ledger.redeem_promo_code("bob", promo.code) == 5
        assert ledger.list_promo_codes()[0].used_by == ["alice", "bob"]

    def test_unknown_code(self, ledger):
        with pytest.raises(ValueError, match="not found"):
            ledger.redeem_promo_code("alice", "NOPE")

    def test_delete_code(self, ledger):
        promo = ledger.create_promo_code(5)

        assert ledger.delete_promo_code(promo.code) is True
        with pytest.raises(ValueError, match="not found"):
            ledger.redeem_promo_code("alice", promo.code)


class TestAccountGateway:
    """Tests for the per-user billing and credential view."""

    def test_for_unknown_user(self, ledger):
        with pytest.raises(KeyError):
            ledger.for_user("nobody")

    def test_try_charge(self, ledger):
        gateway = ledger.for_user("alice")

        assert isinstance(gateway, AccountGateway)
        assert gateway.try_charge(3) is True
        assert ledger.balance("alice") == 7

    def test_credits_mode_uses_shared_key(self, ledger):
        ledger.set_api_key("alice", "own-key")

        assert ledger.for_user("alice").resolve_credential(PaymentMode.CREDITS) == "shared-key"

    def test_api_key_mode_uses_own_key(self, ledger):
        gateway = ledger.for_user("alice")

        assert gateway.resolve_credential(PaymentMode.API_KEY) is None
        ledger.set_api_key("alice", "own-key")
        assert gateway.resolve_credential(PaymentMode.API_KEY) == "own-key"

    def test_no_shared_key(self):
        ledger = AccountLedger()
        ledger.create_user("alice")

        assert ledger.for_user("alice").resolve_credential(PaymentMode.CREDITS) is None
