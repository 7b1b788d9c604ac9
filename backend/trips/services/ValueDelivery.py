from eth_account import Account
from web3 import Web3

from trips.models.typings import TransferFailed


class ValueDelivery:
    """
    可收款目标：把 amount 从 donor 转给 recipient
    成功返回交易标识，任何失败都必须抛 TransferFailed
    """

    def deliver(self, donor, recipient, amount):
        raise NotImplementedError


class Web3ValueDelivery(ValueDelivery):
    """
    通过 web3 发送原生币转账
    donor 有托管钱包时本地签名后发 raw transaction，否则由节点托管账户发送

    失败分两个阶段：
    广播之前失败（取私钥、估算 gas、发送被拒），转账没有发生，TransferFailed.tx_hash 为 None；
    广播之后失败（等回执超时、RPC 断开），交易可能稍后仍被打包，
    TransferFailed.tx_hash 带上交易哈希，同时写进 error_log 供人工对账。
    回执 status 为 0 时交易已确定回滚，也带上 tx_hash。
    """

    def __init__(self, w3, wallet_service=None, receipt_timeout=120):
        self.w3 = w3
        self.wallet_service = wallet_service
        self.receipt_timeout = receipt_timeout

    def deliver(self, donor, recipient, amount):
        try:
            private_key = self.wallet_service.get_signing_key(donor) if self.wallet_service else None
            if private_key:
                tx_hash = self._send_signed(private_key, recipient, amount)
            else:
                tx_hash = self.w3.eth.send_transaction({'from': donor, 'to': recipient, 'value': amount})
        except Exception as e:
            raise TransferFailed(f"向 {recipient} 转账 {amount} 失败: {e}", recipient, amount) from e

        tx_hash = Web3.to_hex(tx_hash)
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except Exception as e:
            raise TransferFailed(f"向 {recipient} 转账 {amount} 已广播但未确认, tx={tx_hash}: {e}",
                                 recipient, amount, tx_hash=tx_hash) from e

        if receipt['status'] != 1:
            raise TransferFailed(f"向 {recipient} 转账被回滚, tx={tx_hash}", recipient, amount, tx_hash=tx_hash)
        return tx_hash

    def _send_signed(self, private_key, recipient, amount):
        sender = Account.from_key(private_key).address
        tx = {
            'to': recipient,
            'value': amount,
            'nonce': self.w3.eth.get_transaction_count(sender, 'pending'),
            'gasPrice': self.w3.eth.gas_price,
            'chainId': self.w3.eth.chain_id,
        }
        # 收款方是合约时 21000 不够，按估算来；估算失败说明对方会拒收
        tx['gas'] = self.w3.eth.estimate_gas({'from': sender, 'to': recipient, 'value': amount})
        signed_tx = self.w3.eth.account.sign_transaction(tx, private_key=private_key)
        # web3.py 7.x 使用 raw_transaction，旧版本使用 rawTransaction
        raw_tx = getattr(signed_tx, 'raw_transaction', None) or getattr(signed_tx, 'rawTransaction', None)
        return self.w3.eth.send_raw_transaction(raw_tx)
