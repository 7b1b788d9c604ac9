from trips.managers.AccessManager import AccessManager
from trips.managers.TripLedgerManager import (
    MAX_ROYALTY_BPS,
    TripLedgerManager,
    normalize_address,
    parse_int,
    serialized,
)
from trips.models.database import db
from trips.models.typings import InvalidArgument, InvalidRate


class AdminManager:
    """
    管理员操作：只修改全局配置，不会动铸造时已经写入的版税覆盖值
    """

    @classmethod
    @serialized
    def set_descriptor_base(cls, caller, new_base):
        AccessManager.instance().require_admin(caller)
        if not isinstance(new_base, str):
            raise InvalidArgument("descriptor_base 必须是字符串")
        state = TripLedgerManager.get_state()
        state.descriptor_base = new_base
        db.session.commit()
        return state.descriptor_base

    @classmethod
    @serialized
    def set_default_royalty_rate(cls, caller, new_rate_bps):
        AccessManager.instance().require_admin(caller)
        rate = parse_int(new_rate_bps, "new_rate_bps")
        if rate < 0 or rate > MAX_ROYALTY_BPS:
            raise InvalidRate(f"版税费率必须在 0-{MAX_ROYALTY_BPS} 之间，当前 {rate}")
        state = TripLedgerManager.get_state()
        state.default_royalty_bps = rate
        db.session.commit()
        return rate

    @classmethod
    @serialized
    def transfer_admin_role(cls, caller, new_owner):
        access = AccessManager.instance()
        access.require_admin(caller)
        new_owner = normalize_address(new_owner, "new_owner", allow_zero=False)
        access.transfer_role(new_owner)
        db.session.commit()
        print(f"【管理员】管理权限从 {caller} 转移到 {new_owner}")
        return new_owner
