# -*- coding: utf-8 -*-
import os
import time
import traceback
from datetime import datetime, timedelta, timezone
from functools import wraps

import jwt
from eth_account.messages import encode_defunct
from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import cross_origin
from web3 import Web3

from trips.managers.AdminManager import AdminManager
from trips.managers.Config import Config
from trips.managers.DonationManager import DonationManager
from trips.managers.RoyaltyManager import RoyaltyManager
from trips.managers.TripLedgerManager import TripLedgerManager, normalize_address, parse_int
from trips.models.database import db
from trips.models.JWTBlacklist import JWTBlacklist
from trips.models.typings import (
    DecoratorException,
    NotFound,
    RegistryException,
    TransferFailed,
    Unauthorized,
    UnknownRecord,
)
from trips.services.ValueDelivery import Web3ValueDelivery
from trips.services.WalletService import WalletService

LOGIN_MAX_SKEW_SECONDS = 300
TOKEN_TTL_HOURS = 12

ERROR_STATUS = {
    NotFound: 404,
    UnknownRecord: 404,
    Unauthorized: 403,
    TransferFailed: 502,
}

bp = Blueprint("trips", __name__)
w3 = Web3()


def success(data=None, message="OK"):
    return jsonify({
        "status": "success",
        "data": data if data is not None else {},
        "message": message
    })


def failure(message, code="BadRequest", http_status=400):
    return jsonify({
        "status": "error",
        "data": {},
        "code": code,
        "message": message
    }), http_status


@bp.app_errorhandler(RegistryException)
def handle_registry_exception(e):
    return failure(e.message, e.code, ERROR_STATUS.get(type(e), 400))


def is_token_blacklisted(token):
    """
    判断jwt是否已经失效
    :param token: jwt
    :return:
    """
    return JWTBlacklist.query.filter_by(token=token).first() is not None


def token_required(f):
    """
    鉴权，并从jwt中获取用户地址
    :param f:
    :return: 用户地址
    """
    try:
        @wraps(f)
        def decorator(*args, **kwargs):
            token = None
            auth_header = request.headers.get('Authorization')

            if auth_header and auth_header.startswith('Bearer '):
                token = auth_header[7:]

            if not token:
                return failure("Token is missing!", "Unauthenticated", 401)

            try:
                decoded = jwt.decode(token, current_app.config["JWT_SECRET_KEY"], algorithms=["HS256"])
                user_address = decoded['user_address']
            except (jwt.InvalidTokenError, KeyError) as e:
                return failure(f"Invalid token: {str(e)}", "Unauthenticated", 401)

            if is_token_blacklisted(token):
                return failure("Token is blacklisted.", "Unauthenticated", 401)

            return f(user_address, *args, **kwargs)

        return decorator
    except Exception as e:
        raise DecoratorException("token_required装饰器出错：" + ", ".join(str(arg) for arg in e.args))


def donation_manager():
    return current_app.extensions["trips"]["donation_manager"]


def wallet_service():
    return current_app.extensions["trips"]["wallet_service"]()


@bp.route('/', methods=['GET', 'POST'])
def index():
    return "ok"


# ==================== 登录 ====================

@bp.route('/login', methods=['POST'])
@cross_origin()
def login():
    data = request.get_json(force=True, silent=True) or {}
    signature = data.get('signature')
    ts = data.get('ts')
    if not signature or ts is None:
        return failure("Signature information is missing or invalid.", "Unauthenticated", 401)

    # ts 是签名的消息本身，同时用来防止重放旧签名
    try:
        skew = abs(time.time() - int(ts))
    except (TypeError, ValueError):
        return failure("ts must be a unix timestamp.", "Unauthenticated", 401)
    if skew > LOGIN_MAX_SKEW_SECONDS:
        return failure("Signature has expired.", "Unauthenticated", 401)

    try:
        signable_message = encode_defunct(text=str(ts))
        user_address = w3.eth.account.recover_message(signable_message, signature=signature)
    except Exception as e:
        return failure(f"Signature information is missing or invalid: {e}", "Unauthenticated", 401)

    token = jwt.encode({'user_address': user_address,
                        'exp': datetime.now(timezone.utc) + timedelta(hours=TOKEN_TTL_HOURS)},
                       current_app.config["JWT_SECRET_KEY"], algorithm="HS256")
    return success({"access_token": token, "user_address": user_address}, "Login successful.")


@bp.route('/logout', methods=['GET'])
@cross_origin()
@token_required
def logout(user_address):
    token = request.headers.get('Authorization')[7:]
    db.session.add(JWTBlacklist(token=token))
    db.session.commit()
    return success(message="User logged out successfully")


# ==================== 登记簿查询 ====================

@bp.route('/registry', methods=['GET'])
@cross_origin()
def get_registry():
    return success(TripLedgerManager.get_state().to_dict())


@bp.route('/trips/total-supply', methods=['GET'])
@cross_origin()
def get_total_supply():
    return success({"total_supply": TripLedgerManager.total_supply()})


@bp.route('/trips/index/<index>', methods=['GET'])
@cross_origin()
def get_trip_by_index(index):
    return success({"record_id": TripLedgerManager.token_by_index(index)})


@bp.route('/trips/fingerprint/<fingerprint>', methods=['GET'])
@cross_origin()
def get_trip_by_fingerprint(fingerprint):
    return success({"record_id": TripLedgerManager.fingerprint_to_id(fingerprint)})


@bp.route('/trips/<record_id>', methods=['GET'])
@cross_origin()
def get_trip(record_id):
    trip = TripLedgerManager.get_trip(record_id)
    data = trip.to_dict()
    data["descriptor"] = TripLedgerManager.descriptor_for(trip.record_id)
    return success(data)


@bp.route('/trips/<record_id>/royalty', methods=['GET'])
@cross_origin()
def get_royalty(record_id):
    receiver, royalty_amount = RoyaltyManager.royalty_info(record_id, request.args.get('sale_amount', '0'))
    return success({"receiver": receiver, "royalty_amount": royalty_amount})


@bp.route('/owners/<owner>/trips', methods=['GET'])
@cross_origin()
def get_owner_trips(owner):
    record_ids = TripLedgerManager.tokens_of_owner(owner)
    return success({"owner": normalize_address(owner, "owner"), "balance": len(record_ids), "record_ids": record_ids})


@bp.route('/owners/<owner>/trips/<index>', methods=['GET'])
@cross_origin()
def get_owner_trip_by_index(owner, index):
    return success({"record_id": TripLedgerManager.token_of_owner_by_index(owner, index)})


@bp.route('/events', methods=['GET'])
@cross_origin()
def get_events():
    """链下索引服务按 since 增量拉取事件"""
    since = parse_int(request.args.get('since', '0'), "since")
    # 每页 1-500 条
    limit = max(1, min(parse_int(request.args.get('limit', '100'), "limit"), 500))
    record_id = request.args.get('record_id')
    if record_id is not None:
        record_id = parse_int(record_id, "record_id")
    events = TripLedgerManager.list_events(since=since, limit=limit, record_id=record_id)
    return success({"events": [event.to_dict() for event in events]})


# ==================== 登记簿写操作 ====================

@bp.route('/trips/mint', methods=['POST'])
@cross_origin()
@token_required
def mint_trip(user_address):
    data = request.get_json(force=True, silent=True) or {}
    record_id = TripLedgerManager.mint(data.get('fingerprint'), user_address)
    return success({"record_id": record_id,
                    "descriptor": TripLedgerManager.descriptor_for(record_id)}, "铸造成功")


@bp.route('/trips/<record_id>/transfer', methods=['POST'])
@cross_origin()
@token_required
def transfer_trip(user_address, record_id):
    data = request.get_json(force=True, silent=True) or {}
    trip = TripLedgerManager.transfer(record_id, user_address, data.get('to'))
    return success({"record_id": trip.record_id, "owner": trip.owner_address}, "转移成功")


@bp.route('/trips/<record_id>/donate', methods=['POST'])
@cross_origin()
@token_required
def donate_trip(user_address, record_id):
    data = request.get_json(force=True, silent=True) or {}
    event = donation_manager().donate(record_id, user_address, data.get('amount'))
    return success(event.to_dict(), "捐赠成功")


@bp.route('/wallet/create', methods=['POST'])
@cross_origin()
@token_required
def create_wallet(user_address):
    wallet = wallet_service().create_wallet(user_address)
    return success({"user_address": user_address, "wallet_address": wallet.address})


# ==================== 管理员 ====================

@bp.route('/admin/descriptor-base', methods=['POST'])
@cross_origin()
@token_required
def admin_set_descriptor_base(user_address):
    data = request.get_json(force=True, silent=True) or {}
    new_base = AdminManager.set_descriptor_base(user_address, data.get('descriptor_base'))
    return success({"descriptor_base": new_base})


@bp.route('/admin/default-royalty', methods=['POST'])
@cross_origin()
@token_required
def admin_set_default_royalty(user_address):
    data = request.get_json(force=True, silent=True) or {}
    rate = AdminManager.set_default_royalty_rate(user_address, data.get('rate_bps'))
    return success({"default_royalty_bps": rate})


@bp.route('/admin/transfer-role', methods=['POST'])
@cross_origin()
@token_required
def admin_transfer_role(user_address):
    data = request.get_json(force=True, silent=True) or {}
    new_owner = AdminManager.transfer_admin_role(user_address, data.get('new_owner'))
    return success({"owner": new_owner})


# --------------------------------------------------------------------------


def create_app(test_config=None, delivery=None):
    """
    :param test_config: 覆盖 app.config 的配置
    :param delivery: 捐赠转账的收款目标，默认走 web3 节点
    """
    app = Flask(__name__)
    app.config['SQLALCHEMY_DATABASE_URI'] = Config.database_uri()
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['JWT_SECRET_KEY'] = os.environ.get("JWT_SECRET_KEY") or Config.get_value("JWT_SECRET_KEY")
    app.config['REGISTRY'] = Config.get_value("registry", default={})
    app.config['RPC_URL'] = Config.get_value("rpc_url", default="http://127.0.0.1:8545")
    app.config['WALLET_MNEMONIC_FILE'] = None
    app.config['WALLET_ENCRYPTION_KEY_FILE'] = None
    if test_config:
        app.config.update(test_config)

    db.init_app(app)

    wallets = {}

    def get_wallet_service():
        # 托管钱包会在磁盘上生成助记词和密钥，用到时才创建
        if "service" not in wallets:
            wallets["service"] = WalletService(app.config['WALLET_MNEMONIC_FILE'],
                                               app.config['WALLET_ENCRYPTION_KEY_FILE'])
        return wallets["service"]

    if delivery is None:
        delivery = Web3ValueDelivery(Web3(Web3.HTTPProvider(app.config['RPC_URL'])), get_wallet_service())

    app.extensions["trips"] = {
        "donation_manager": DonationManager(delivery),
        "wallet_service": get_wallet_service,
    }
    app.register_blueprint(bp)

    with app.app_context():
        db.create_all()
        registry = app.config['REGISTRY']
        TripLedgerManager.deploy(
            registry.get("name", "Trips"),
            registry.get("symbol", "TRIP"),
            registry.get("descriptor_base", ""),
            registry.get("initial_owner"),
            registry.get("default_royalty_bps", 500),
        )

    return app


if __name__ == '__main__':
    try:
        app = create_app()
        print("【启动】Trip 登记簿服务启动")
        app.run(
            host='0.0.0.0',
            port=5000,
            debug=False,
            threaded=True
        )
    except Exception:
        error_stack = traceback.format_exc()
        with open("error.log", "a", encoding="utf-8") as f:
            f.write(f"[{datetime.now(timezone.utc)}] {error_stack}\n")
        raise
