"""Tests for wallet top-ups and balance."""

import mongomock
import pytest
from pymongo.errors import PyMongoError

import wallet
from errors import ConflictError, ForbiddenError, GatewayError, ValidationError


def topup_metadata(user):
    return {"purpose": wallet.TOPUP_PURPOSE, "userId": str(user["_id"])}


def reload(db, user):
    return db["user"].find_one({"_id": user["_id"]})


class TestTopUp:
    def test_initialize_sends_minor_units_and_purpose(self, gateway, user):
        session = wallet.initialize_top_up(gateway, user, 25.5)

        assert session["reference"]
        sent = gateway.initialized[0]
        assert sent["amount"] == 2550
        assert sent["email"] == "alice@example.com"
        assert sent["metadata"] == topup_metadata(user)

    @pytest.mark.parametrize("amount", [0, -10])
    def test_initialize_rejects_non_positive_amount(self, gateway, user, amount):
        with pytest.raises(ValidationError):
            wallet.initialize_top_up(gateway, user, amount)

    def test_verify_credits_balance(self, db, gateway, user):
        gateway.add("ref_top", amount=5000, metadata=topup_metadata(user))

        result = wallet.verify_top_up(db, gateway, user, "ref_top")

        assert result == {"amount": 50.0, "wallet_balance": 50.0}
        stored = reload(db, user)
        assert stored["processed_references"] == ["ref_top"]
        assert db["wallet_transaction"].count_documents({"reference": "ref_top"}) == 1

    def test_verify_twice_credits_once(self, db, gateway, user):
        gateway.add("ref_top", amount=5000, metadata=topup_metadata(user))
        wallet.verify_top_up(db, gateway, user, "ref_top")

        with pytest.raises(ConflictError):
            wallet.verify_top_up(db, gateway, reload(db, user), "ref_top")

        assert reload(db, user)["wallet_balance"] == 50.0

    def test_verify_with_stale_user_credits_once(self, db, gateway, user):
        gateway.add("ref_top", amount=5000, metadata=topup_metadata(user))
        wallet.verify_top_up(db, gateway, user, "ref_top")

        # a concurrent request still holds the user document read before the credit
        with pytest.raises(ConflictError):
            wallet.verify_top_up(db, gateway, user, "ref_top")

        assert reload(db, user)["wallet_balance"] == 50.0
        assert db["wallet_transaction"].count_documents({}) == 1

    def test_failed_credit_can_be_retried(self, db, gateway, user, monkeypatch):
        gateway.add("ref_top", amount=5000, metadata=topup_metadata(user))
        real_update_one = mongomock.collection.Collection.update_one

        def update_one(self, filter, update, *args, **kwargs):
            if self.name == "user" and "processed_references" in filter:
                raise PyMongoError("connection reset")
            return real_update_one(self, filter, update, *args, **kwargs)

        monkeypatch.setattr(mongomock.collection.Collection, "update_one", update_one)
        with pytest.raises(PyMongoError):
            wallet.verify_top_up(db, gateway, user, "ref_top")
        monkeypatch.undo()

        assert db["wallet_transaction"].count_documents({"reference": "ref_top"}) == 0
        assert reload(db, user)["wallet_balance"] == 0

        result = wallet.verify_top_up(db, gateway, reload(db, user), "ref_top")

        assert result == {"amount": 50.0, "wallet_balance": 50.0}
        assert db["wallet_transaction"].count_documents({"reference": "ref_top"}) == 1

    def test_verify_other_users_reference(self, db, gateway, make_user):
        owner = make_user(username="owner")
        other = make_user(username="other")
        gateway.add("ref_top", amount=5000, metadata=topup_metadata(owner))

        with pytest.raises(ForbiddenError):
            wallet.verify_top_up(db, gateway, other, "ref_top")

        assert reload(db, other)["wallet_balance"] == 0

    def test_verify_order_payment_reference_is_not_a_top_up(self, db, gateway, user):
        gateway.add("ref_order", amount=5000, metadata={"order_id": "abc", "user_id": str(user["_id"])})
        with pytest.raises(ForbiddenError):
            wallet.verify_top_up(db, gateway, user, "ref_order")

    def test_verify_unsuccessful_transaction(self, db, gateway, user):
        gateway.add("ref_top", status="abandoned", amount=5000, metadata=topup_metadata(user))
        with pytest.raises(GatewayError):
            wallet.verify_top_up(db, gateway, user, "ref_top")
        assert reload(db, user)["wallet_balance"] == 0

    def test_verify_requires_reference(self, db, gateway, user):
        with pytest.raises(ValidationError):
            wallet.verify_top_up(db, gateway, user, "")


class TestDebit:
    def test_debit_within_balance(self, db, make_user):
        user = make_user(wallet_balance=100.0)
        assert wallet.debit(db, user["_id"], 60.0) is True
        assert reload(db, user)["wallet_balance"] == 40.0

    def test_debit_never_goes_negative(self, db, make_user):
        user = make_user(wallet_balance=100.0)
        assert wallet.debit(db, user["_id"], 100.01) is False
        assert reload(db, user)["wallet_balance"] == 100.0

    def test_refund(self, db, make_user):
        user = make_user(wallet_balance=10.0)
        wallet.refund(db, user["_id"], 5.0)
        assert reload(db, user)["wallet_balance"] == 15.0


class TestWalletApi:
    def test_balance(self, client, make_user, auth_headers):
        user = make_user(wallet_balance=42.5)
        res = client.get("/api/wallet/balance", headers=auth_headers(user))
        assert res.status_code == 200
        assert res.json()["walletBalance"] == 42.5

    def test_initialize_add_funds(self, client, user, auth_headers):
        res = client.post("/api/wallet/initialize-add-funds", json={"amount": 100}, headers=auth_headers(user))
        assert res.status_code == 200
        assert res.json()["authorizationUrl"]

    def test_verify_add_funds(self, client, gateway, user, auth_headers):
        gateway.add("ref_top", amount=250000, metadata=topup_metadata(user))

        res = client.post("/api/wallet/verify-add-funds", json={"reference": "ref_top"}, headers=auth_headers(user))

        assert res.status_code == 200
        body = res.json()
        assert body["message"] == "Wallet successfully topped up with 2500.00 NGN!"
        assert body["walletBalance"] == 2500.0

        res = client.post("/api/wallet/verify-add-funds", json={"reference": "ref_top"}, headers=auth_headers(user))
        assert res.status_code == 409
        assert res.json()["success"] is False
