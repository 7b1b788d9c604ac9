# -*- coding: utf-8 -*-
"""
@author yumu
@version 1.0.0
"""
from trips.models.database import db
from trips.models.ErrorLog import ErrorLog


class CustomException(Exception):
    """
    自定义的异常类的基类
    """

    def __init__(self, message):
        super().__init__(message)
        self.message = message
        self.record_error()

    @property
    def code(self):
        return type(self).__name__

    def record_error(self):
        """
        触发异常自动记录到数据库中
        先回滚当前会话，保证失败的操作不会留下任何未提交的修改
        :return:
        """
        try:
            from flask import has_app_context
            if has_app_context():
                db.session.rollback()
                error = ErrorLog(error_code=self.code, error_event=self.message,
                                 tx_hash=getattr(self, 'tx_hash', None))
                db.session.add(error)
                db.session.commit()
            else:
                # 没有应用上下文时只打印错误
                print(f"[CustomException] {self.code}: {self.message}")
        except Exception as e:
            print(f"[CustomException] {self.message} (无法记录到数据库: {e})")


class ConfigOperationException(CustomException):
    """
    配置文件操作异常类
    """
    pass


class DecoratorException(CustomException):
    """
    装饰器处理异常类
    """
    pass


class RegistryException(CustomException):
    """
    登记簿操作异常的基类，任何子类被抛出时整个操作都不会产生状态变化和事件
    """
    pass


class DuplicateFingerprint(RegistryException):
    """
    指纹已被登记
    """
    pass


class UnknownRecord(RegistryException):
    """
    捐赠、版税查询时记录不存在
    """
    pass


class ZeroAmount(RegistryException):
    """
    捐赠金额必须大于0
    """
    pass


class TransferFailed(RegistryException):
    """
    向创作者转账失败（拒收、回滚、RPC 错误、余额不足等）
    tx_hash 不为空说明交易已经广播，需要按哈希对账
    """

    def __init__(self, message, recipient=None, amount=None, tx_hash=None):
        self.recipient = recipient
        self.amount = amount
        self.tx_hash = tx_hash
        super().__init__(message)


class Unauthorized(RegistryException):
    """
    调用者没有权限
    """
    pass


class InvalidRate(RegistryException):
    """
    版税费率超出 [0, 10000] 基点
    """
    pass


class NotFound(RegistryException):
    """
    读取不存在的记录、指纹或越界的枚举下标
    """
    pass


class InvalidArgument(RegistryException):
    """
    参数格式错误（指纹、地址、金额、下标）
    """
    pass
