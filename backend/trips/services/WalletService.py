import os

from cryptography.fernet import Fernet, InvalidToken
from eth_account import Account
from mnemonic import Mnemonic

from trips.managers.Config import Config, ROOT_DIR
from trips.managers.TripLedgerManager import serialized
from trips.models.database import db
from trips.models.Wallet import Wallet


class WalletService:
    """
    托管钱包：从助记词按 m/44'/60'/0'/0/{index} 派生，私钥用 Fernet 加密后入库
    """

    def __init__(self, mnemonic_file=None, encryption_key_file=None):
        mnemonic_file = mnemonic_file or Config.get_value(
            'wallet', 'mnemonic_file', default=os.path.join(ROOT_DIR, 'mnemonic.txt'))
        encryption_key_file = encryption_key_file or Config.get_value(
            'wallet', 'encryption_key_file', default=os.path.join(ROOT_DIR, 'encryption_key.txt'))

        # 种子短语
        if not os.path.exists(mnemonic_file):
            mnemo = Mnemonic("english")
            mnemonic = mnemo.generate(strength=256)
            with open(mnemonic_file, 'w') as f:
                f.write(mnemonic)
        else:
            with open(mnemonic_file, 'r') as f:
                mnemonic = f.read().strip()
        self.mnemonic = mnemonic

        # 加密密钥
        if not os.path.exists(encryption_key_file):
            encryption_key = Fernet.generate_key()
            with open(encryption_key_file, 'wb') as f:
                f.write(encryption_key)
        else:
            with open(encryption_key_file, 'rb') as f:
                encryption_key = f.read()
        self.cipher = Fernet(encryption_key)

        # 启用 eth-account 的助记词功能
        Account.enable_unaudited_hdwallet_features()

    @serialized
    def create_wallet(self, user_address):
        """
        为用户生成托管钱包，已有则直接返回
        派生下标取自当前钱包数，读下标到提交之间持有全局锁，两个用户不会派生出同一个地址
        """
        wallet = Wallet.query.filter_by(user_address=user_address).first()
        if wallet is not None:
            return wallet

        index = Wallet.query.count()
        account = Account.from_mnemonic(self.mnemonic, account_path=f"m/44'/60'/0'/0/{index}")
        encrypted_private_key = self.cipher.encrypt(account.key.hex().encode()).decode()

        wallet = Wallet(user_address=user_address, address=account.address, private_key=encrypted_private_key)
        db.session.add(wallet)
        db.session.commit()
        print(f"【钱包】为 {user_address} 生成托管钱包 {account.address}")
        return wallet

    def get_wallet(self, user_address):
        return Wallet.query.filter_by(user_address=user_address).first()

    def get_signing_key(self, user_address):
        """
        返回解密后的私钥；用户没有托管钱包时返回 None
        """
        wallet = self.get_wallet(user_address)
        if wallet is None:
            return None
        try:
            return self.cipher.decrypt(wallet.private_key.encode()).decode()
        except InvalidToken:
            print(f"解密钱包 ID {wallet.id} 失败: 无效的加密密钥或数据损坏")
            raise
