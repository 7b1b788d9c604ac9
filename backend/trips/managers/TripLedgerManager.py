import re
import threading
from functools import wraps

from eth_utils import is_address, is_hex, to_checksum_address
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from trips.models.database import db
from trips.models.RegistryState import RegistryState
from trips.models.Trip import Trip
from trips.models.TripEvent import TripEvent
from trips.models.TripOwnerIndex import TripOwnerIndex
from trips.models.typings import (
    DuplicateFingerprint,
    InvalidArgument,
    InvalidRate,
    NotFound,
    Unauthorized,
)

MAX_ROYALTY_BPS = 10000
REGISTRY_STATE_ID = 1
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# 所有写操作串行执行；可重入，转账回调里再次调用本系统不会死锁
_operation_lock = threading.RLock()


def serialized(f):
    """
    写操作装饰器：持有全局锁执行，异常时回滚会话
    """
    @wraps(f)
    def decorator(*args, **kwargs):
        with _operation_lock:
            try:
                return f(*args, **kwargs)
            except Exception:
                db.session.rollback()
                raise

    return decorator


def normalize_address(address, field="address", allow_zero=True):
    """
    校验并转换为 checksum 地址
    :param allow_zero: 为 False 时拒绝零地址（零地址表示“无人持有”，不能作为持有者或管理员）
    """
    if not isinstance(address, str) or not is_address(address):
        raise InvalidArgument(f"{field} 不是合法地址: {address!r}")
    address = to_checksum_address(address)
    if not allow_zero and address == ZERO_ADDRESS:
        raise InvalidArgument(f"{field} 不能是零地址")
    return address


def normalize_fingerprint(fingerprint):
    """
    指纹统一成 0x + 64位小写hex，接受 32 字节 bytes 或 hex 字符串
    """
    if isinstance(fingerprint, (bytes, bytearray)):
        if len(fingerprint) != 32:
            raise InvalidArgument(f"指纹必须是32字节，当前 {len(fingerprint)} 字节")
        return "0x" + bytes(fingerprint).hex()
    if not isinstance(fingerprint, str) or not is_hex(fingerprint):
        raise InvalidArgument(f"指纹不是合法的hex: {fingerprint!r}")
    body = fingerprint[2:] if fingerprint[:2].lower() == "0x" else fingerprint
    if len(body) != 64:
        raise InvalidArgument(f"指纹必须是32字节，当前 {len(body) // 2} 字节")
    return "0x" + body.lower()


def parse_int(value, field):
    """把请求里的整数参数（int 或十进制字符串）转换成 int，范围由调用方校验"""
    if isinstance(value, bool):
        raise InvalidArgument(f"{field} 必须是整数")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str) and re.fullmatch(r"-?\d+", value.strip()):
        result = int(value.strip())
    else:
        raise InvalidArgument(f"{field} 必须是整数: {value!r}")
    return result


class TripLedgerManager:
    """
    登记簿核心：持有 trips / trip_owner_index / registry_state 三张表
    负责铸造、转移以及所有只读查询
    """

    # ---------------------------------------------------------------- 部署

    @classmethod
    @serialized
    def deploy(cls, name, symbol, descriptor_base, initial_owner, default_royalty_bps):
        """
        初始化全局配置；已经部署过则直接返回现有配置
        """
        state = db.session.get(RegistryState, REGISTRY_STATE_ID)
        if state is not None:
            return state

        owner = normalize_address(initial_owner, "initial_owner", allow_zero=False)
        rate = parse_int(default_royalty_bps, "default_royalty_bps")
        if rate < 0 or rate > MAX_ROYALTY_BPS:
            raise InvalidRate(f"默认版税费率必须在 0-{MAX_ROYALTY_BPS} 之间，当前 {rate}")

        state = RegistryState(
            id=REGISTRY_STATE_ID,
            name=name,
            symbol=symbol,
            descriptor_base=descriptor_base or "",
            default_royalty_bps=rate,
            owner_address=owner,
            next_record_id=1,
        )
        db.session.add(state)
        db.session.commit()
        print(f"【部署】{name}({symbol}) 管理员 {owner}，默认版税 {rate} bps")
        return state

    @classmethod
    def get_state(cls):
        state = db.session.get(RegistryState, REGISTRY_STATE_ID)
        if state is None:
            raise NotFound("登记簿尚未部署")
        return state

    # ---------------------------------------------------------------- 铸造

    @classmethod
    @serialized
    def mint(cls, fingerprint, caller):
        """
        铸造新记录：指纹唯一，creator = owner = caller
        :return: 新记录ID
        """
        fingerprint = normalize_fingerprint(fingerprint)
        caller = normalize_address(caller, "caller")
        state = cls.get_state()

        existing = Trip.query.filter_by(fingerprint=fingerprint).first()
        if existing is not None:
            raise DuplicateFingerprint(f"指纹 {fingerprint} 已被登记")

        record_id = state.next_record_id
        trip = Trip(
            record_id=record_id,
            owner_address=caller,
            creator_address=caller,
            fingerprint=fingerprint,
            # 以铸造时的默认费率固定下来，之后修改全局默认值不会影响它
            royalty_receiver=caller,
            royalty_bps=state.default_royalty_bps,
        )
        db.session.add(trip)
        try:
            db.session.flush()
        except IntegrityError:
            # 并发写入时唯一索引兜底；只有指纹冲突才算重复登记，其他约束冲突原样抛出
            db.session.rollback()
            if Trip.query.filter_by(fingerprint=fingerprint).first() is not None:
                raise DuplicateFingerprint(f"指纹 {fingerprint} 已被登记")
            raise
        cls._add_to_owner(caller, record_id)
        state.next_record_id = record_id + 1

        db.session.add(TripEvent(
            event_name=TripEvent.RECORD_CREATED,
            record_id=record_id,
            creator_address=caller,
            fingerprint=fingerprint,
        ))
        db.session.commit()
        return record_id

    # ---------------------------------------------------------------- 转移

    @classmethod
    @serialized
    def transfer(cls, record_id, caller, to):
        """
        持有者把记录转给 to；creator 永远不变
        """
        caller = normalize_address(caller, "caller")
        to = normalize_address(to, "to", allow_zero=False)
        trip = cls.get_trip(record_id)
        if trip.owner_address != caller:
            raise Unauthorized(f"{caller} 不是记录 {trip.record_id} 的持有者")

        previous_owner = trip.owner_address
        if to != previous_owner:
            cls._remove_from_owner(previous_owner, trip.record_id)
            trip.owner_address = to
            cls._add_to_owner(to, trip.record_id)

        db.session.add(TripEvent(
            event_name=TripEvent.RECORD_TRANSFERRED,
            record_id=trip.record_id,
            from_address=previous_owner,
            to_address=to,
        ))
        db.session.commit()
        return trip

    # 以下两个方法只修改会话，不提交；由调用方在同一事务里提交

    @classmethod
    def _add_to_owner(cls, owner, record_id):
        position = TripOwnerIndex.query.filter_by(owner_address=owner).count()
        db.session.add(TripOwnerIndex(owner_address=owner, position=position, record_id=record_id))
        db.session.flush()

    @classmethod
    def _remove_from_owner(cls, owner, record_id):
        """用最后一个元素填补被移除的位置"""
        entry = TripOwnerIndex.query.filter_by(owner_address=owner, record_id=record_id).one()
        last = TripOwnerIndex.query.filter_by(owner_address=owner) \
            .order_by(TripOwnerIndex.position.desc()).first()
        if last.id == entry.id:
            db.session.delete(entry)
            db.session.flush()
            return
        moved_record_id = last.record_id
        db.session.delete(last)
        db.session.flush()
        entry.record_id = moved_record_id
        db.session.flush()

    # ---------------------------------------------------------------- 查询

    @classmethod
    def get_trip(cls, record_id, error=NotFound):
        """
        :param error: 记录不存在时抛出的异常类型（查询用 NotFound，捐赠和版税用 UnknownRecord）
        """
        record_id = parse_int(record_id, "record_id")
        # id 连续分配且不会销毁，超出范围的直接判定不存在
        if record_id <= 0 or record_id > cls.total_supply():
            raise error(f"记录 {record_id} 不存在")
        return db.session.get(Trip, record_id)

    @classmethod
    def owner_of(cls, record_id):
        return cls.get_trip(record_id).owner_address

    @classmethod
    def creator_of(cls, record_id):
        return cls.get_trip(record_id).creator_address

    @classmethod
    def fingerprint_to_id(cls, fingerprint):
        fingerprint = normalize_fingerprint(fingerprint)
        trip = Trip.query.filter_by(fingerprint=fingerprint).first()
        if trip is None:
            raise NotFound(f"指纹 {fingerprint} 未登记")
        return trip.record_id

    @classmethod
    def total_supply(cls):
        return cls.get_state().next_record_id - 1

    @classmethod
    def token_by_index(cls, index):
        """全局枚举：没有销毁操作，第 index 个记录就是 index + 1"""
        index = parse_int(index, "index")
        if index < 0 or index >= cls.total_supply():
            raise NotFound(f"下标 {index} 越界")
        return index + 1

    @classmethod
    def balance_of(cls, owner):
        owner = normalize_address(owner, "owner")
        return TripOwnerIndex.query.filter_by(owner_address=owner).count()

    @classmethod
    def tokens_of_owner(cls, owner):
        owner = normalize_address(owner, "owner")
        rows = TripOwnerIndex.query.filter_by(owner_address=owner) \
            .order_by(TripOwnerIndex.position.asc()).all()
        return [row.record_id for row in rows]

    @classmethod
    def token_of_owner_by_index(cls, owner, index):
        owner = normalize_address(owner, "owner")
        index = parse_int(index, "index")
        if index < 0 or index >= cls.balance_of(owner):
            raise NotFound(f"{owner} 的下标 {index} 越界")
        return TripOwnerIndex.query.filter_by(owner_address=owner, position=index).one().record_id

    @classmethod
    def descriptor_for(cls, record_id):
        trip = cls.get_trip(record_id)
        return cls.get_state().descriptor_base + str(trip.record_id)

    @classmethod
    def owner_counts(cls):
        """每个持有者的记录数，用于对账"""
        rows = db.session.query(TripOwnerIndex.owner_address, func.count(TripOwnerIndex.id)) \
            .group_by(TripOwnerIndex.owner_address).all()
        return {owner: count for owner, count in rows}

    @classmethod
    def list_events(cls, since=0, limit=100, record_id=None):
        query = TripEvent.query.filter(TripEvent.event_id > since)
        if record_id is not None:
            query = query.filter(TripEvent.record_id == record_id)
        return query.order_by(TripEvent.event_id.asc()).limit(limit).all()
