from collections import defaultdict
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from eth_utils import keccak, to_checksum_address

from server import create_app
from trips.models.database import db
from trips.models.typings import TransferFailed
from trips.services.ValueDelivery import ValueDelivery

JWT_SECRET = "test-secret"

OWNER = to_checksum_address("0x" + "0a" * 20)
ALICE = to_checksum_address("0x" + "a1" * 20)
BOB = to_checksum_address("0x" + "b2" * 20)
CAROL = to_checksum_address("0x" + "c3" * 20)


def fingerprint(text):
    return "0x" + keccak(text=text).hex()


class RecordingDelivery(ValueDelivery):
    """进程内收款目标：记账到 balances，可配置失败或在转账中回调"""

    def __init__(self):
        self.balances = defaultdict(int)
        self.calls = []
        self.fail = False
        self.on_deliver = None

    def deliver(self, donor, recipient, amount):
        self.calls.append((donor, recipient, amount))
        if self.on_deliver is not None:
            callback, self.on_deliver = self.on_deliver, None
            callback(donor, recipient, amount)
        if self.fail:
            raise TransferFailed(f"{recipient} rejected the transfer", recipient, amount)
        self.balances[recipient] += amount
        return "0x" + format(len(self.calls), "064x")


def build_app(delivery, registry=None, **overrides):
    config = {
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "JWT_SECRET_KEY": JWT_SECRET,
        "REGISTRY": registry or {
            "name": "Trips",
            "symbol": "TRIP",
            "descriptor_base": "https://trips.example/meta/",
            "initial_owner": OWNER,
            "default_royalty_bps": 500,
        },
    }
    config.update(overrides)
    return create_app(config, delivery=delivery)


@pytest.fixture
def delivery():
    return RecordingDelivery()


@pytest.fixture
def app(delivery, tmp_path):
    app = build_app(
        delivery,
        WALLET_MNEMONIC_FILE=str(tmp_path / "mnemonic.txt"),
        WALLET_ENCRYPTION_KEY_FILE=str(tmp_path / "encryption_key.txt"),
    )
    with app.app_context():
        yield app
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def donations(app):
    return app.extensions["trips"]["donation_manager"]


def auth_header(address, secret=JWT_SECRET):
    token = jwt.encode({"user_address": address, "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
                       secret, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}
