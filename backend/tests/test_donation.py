import threading

import pytest

from conftest import ALICE, BOB, CAROL, build_app, fingerprint
from trips.managers.TripLedgerManager import TripLedgerManager
from trips.models.database import db
from trips.models.ErrorLog import ErrorLog
from trips.models.TripEvent import TripEvent
from trips.models.typings import InvalidArgument, TransferFailed, UnknownRecord, ZeroAmount


def donation_events():
    return [e.to_dict() for e in TripEvent.query.filter_by(event_name="DonationReceived").order_by(TripEvent.event_id)]


class TestDonate:

    def test_donation_reaches_creator(self, app, delivery, donations):
        TripLedgerManager.mint(fingerprint("h1"), ALICE)

        event = donations.donate(1, CAROL, 1)

        assert delivery.balances[ALICE] == 1
        assert delivery.calls == [(CAROL, ALICE, 1)]
        assert event.to_dict() == {
            "event_id": 2,
            "event": "DonationReceived",
            "record_id": 1,
            "donor": CAROL,
            "creator": ALICE,
            "amount": 1,
            "tx_hash": "0x" + format(1, "064x"),
        }
        # 捐赠不改变记录本身
        assert TripLedgerManager.owner_of(1) == ALICE
        assert TripLedgerManager.total_supply() == 1

    def test_donation_goes_to_creator_after_transfer(self, app, delivery, donations):
        TripLedgerManager.mint(fingerprint("h1"), ALICE)
        TripLedgerManager.transfer(1, ALICE, BOB)

        donations.donate(1, CAROL, 25)

        assert delivery.balances == {ALICE: 25}

    def test_large_amounts_survive_storage(self, app, delivery, donations):
        TripLedgerManager.mint(fingerprint("h1"), ALICE)
        amount = 3 * 10 ** 24

        donations.donate(1, BOB, str(amount))

        assert delivery.balances[ALICE] == amount
        assert donation_events()[0]["amount"] == amount

    @pytest.mark.parametrize("record_id", [0, 2, 10 ** 6, 10 ** 30])
    def test_unknown_record(self, app, delivery, donations, record_id):
        TripLedgerManager.mint(fingerprint("h1"), ALICE)

        with pytest.raises(UnknownRecord):
            donations.donate(record_id, CAROL, 5)

        assert delivery.calls == []
        assert donation_events() == []

    @pytest.mark.parametrize("amount", [0, -1, "0"])
    def test_non_positive_amount(self, app, delivery, donations, amount):
        TripLedgerManager.mint(fingerprint("h1"), ALICE)

        with pytest.raises(ZeroAmount):
            donations.donate(1, CAROL, amount)
        assert delivery.calls == []

    @pytest.mark.parametrize("amount", [None, "1.5", 1.5, True])
    def test_malformed_amount(self, app, delivery, donations, amount):
        TripLedgerManager.mint(fingerprint("h1"), ALICE)

        with pytest.raises(InvalidArgument):
            donations.donate(1, CAROL, amount)
        assert delivery.calls == []

    def test_failed_delivery_leaves_no_trace(self, app, delivery, donations):
        TripLedgerManager.mint(fingerprint("h1"), ALICE)
        delivery.fail = True
        events_before = TripEvent.query.count()

        with pytest.raises(TransferFailed) as exc_info:
            donations.donate(1, CAROL, 7)

        assert exc_info.value.recipient == ALICE
        assert exc_info.value.amount == 7
        assert delivery.balances == {}
        assert TripEvent.query.count() == events_before
        assert ErrorLog.query.filter_by(error_code="TransferFailed").count() == 1

    def test_reentrant_mint_during_delivery(self, app, delivery, donations):
        TripLedgerManager.mint(fingerprint("h1"), ALICE)

        def reenter(donor, recipient, amount):
            # 收款方在转账过程中再次调用登记簿
            TripLedgerManager.mint(fingerprint("h2"), recipient)
            TripLedgerManager.transfer(1, recipient, BOB)

        delivery.on_deliver = reenter
        donations.donate(1, CAROL, 3)

        assert TripLedgerManager.total_supply() == 2
        assert TripLedgerManager.owner_of(1) == BOB
        assert TripLedgerManager.creator_of(2) == ALICE
        assert delivery.balances == {ALICE: 3}
        names = [e.event_name for e in TripEvent.query.order_by(TripEvent.event_id)]
        assert names == ["RecordCreated", "RecordCreated", "RecordTransferred", "DonationReceived"]

    def test_reentrant_donation_during_delivery(self, app, delivery, donations):
        TripLedgerManager.mint(fingerprint("h1"), ALICE)

        delivery.on_deliver = lambda donor, recipient, amount: donations.donate(1, recipient, 2)
        donations.donate(1, CAROL, 3)

        assert delivery.balances == {ALICE: 5}
        assert [(e["donor"], e["amount"]) for e in donation_events()] == [(ALICE, 2), (CAROL, 3)]

    def test_failed_reentrant_call_does_not_break_outer_donation(self, app, delivery, donations):
        TripLedgerManager.mint(fingerprint("h1"), ALICE)

        def reenter(donor, recipient, amount):
            with pytest.raises(UnknownRecord):
                donations.donate(42, recipient, 1)

        delivery.on_deliver = reenter
        donations.donate(1, CAROL, 3)

        assert delivery.balances == {ALICE: 3}
        assert len(donation_events()) == 1

    def test_slow_delivery_does_not_block_other_threads(self, app, delivery, donations):
        TripLedgerManager.mint(fingerprint("h1"), ALICE)
        minted = threading.Event()

        def mint_elsewhere():
            with app.app_context():
                TripLedgerManager.mint(fingerprint("h2"), BOB)
                db.session.remove()
            minted.set()

        def waiting_for_receipt(donor, recipient, amount):
            # 等待回执期间，其他线程的铸造照常完成
            worker = threading.Thread(target=mint_elsewhere)
            worker.start()
            worker.join(5)
            assert minted.is_set()

        delivery.on_deliver = waiting_for_receipt
        donations.donate(1, CAROL, 3)

        assert TripLedgerManager.total_supply() == 2
        assert TripLedgerManager.owner_of(2) == BOB
        assert [e.event_name for e in TripEvent.query.order_by(TripEvent.event_id)] == \
            ["RecordCreated", "RecordCreated", "DonationReceived"]


class TestWeb3Delivery:
    """对 eth-tester 链发送真实的原生币转账"""

    @pytest.fixture
    def chain_app(self):
        pytest.importorskip("eth_tester")
        from web3 import EthereumTesterProvider, Web3

        from trips.services.ValueDelivery import Web3ValueDelivery

        w3 = Web3(EthereumTesterProvider())
        app = build_app(Web3ValueDelivery(w3))
        with app.app_context():
            yield app, w3
            db.session.remove()

    def test_creator_balance_increases_by_exact_amount(self, chain_app):
        app, w3 = chain_app
        donor, creator = w3.eth.accounts[1], w3.eth.accounts[2]
        TripLedgerManager.mint(fingerprint("h1"), creator)
        creator_before = w3.eth.get_balance(creator)

        event = app.extensions["trips"]["donation_manager"].donate(1, donor, 12345)

        assert w3.eth.get_balance(creator) - creator_before == 12345
        receipt = w3.eth.get_transaction_receipt(event.tx_hash)
        assert receipt["status"] == 1
        assert receipt["to"] == creator

    def test_unfunded_donation_fails(self, chain_app):
        app, w3 = chain_app
        donor, creator = w3.eth.accounts[1], w3.eth.accounts[2]
        TripLedgerManager.mint(fingerprint("h1"), creator)
        creator_before = w3.eth.get_balance(creator)

        with pytest.raises(TransferFailed):
            app.extensions["trips"]["donation_manager"].donate(1, donor, w3.eth.get_balance(donor) * 2)

        assert w3.eth.get_balance(creator) == creator_before
        assert donation_events() == []


def test_unexpected_delivery_error_becomes_transfer_failed(app, donations):
    class BrokenTarget:
        def deliver(self, donor, recipient, amount):
            raise ConnectionError("rpc down")

    TripLedgerManager.mint(fingerprint("h1"), ALICE)
    donations.delivery, previous = BrokenTarget(), donations.delivery
    try:
        with pytest.raises(TransferFailed) as exc_info:
            donations.donate(1, CAROL, 1)
    finally:
        donations.delivery = previous
    assert isinstance(exc_info.value.__cause__, ConnectionError)
    assert donation_events() == []
