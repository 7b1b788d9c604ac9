from trips.models.typings import Unauthorized


class SingleOwnerPolicy:
    """
    单一管理员：调用者必须等于 registry_state 中保存的 owner
    """

    def __init__(self, state_loader):
        self.state_loader = state_loader

    def current_owner(self):
        return self.state_loader().owner_address

    def is_authorized(self, caller):
        return caller is not None and caller.lower() == self.current_owner().lower()

    def set_owner(self, new_owner):
        self.state_loader().owner_address = new_owner


class AccessManager:
    """
    管理权限入口，策略对象可替换（例如以后换成多签或角色表）
    """
    _instance = None

    @classmethod
    def instance(cls):
        """单例模式"""
        if cls._instance is None:
            from trips.managers.TripLedgerManager import TripLedgerManager
            cls._instance = cls(SingleOwnerPolicy(TripLedgerManager.get_state))
        return cls._instance

    def __init__(self, policy):
        self.policy = policy

    def use_policy(self, policy):
        self.policy = policy

    def require_admin(self, caller):
        if not self.policy.is_authorized(caller):
            raise Unauthorized(f"{caller} 没有管理权限")
        return caller

    def transfer_role(self, new_owner):
        self.policy.set_owner(new_owner)
