# -*- coding: utf-8 -*-
"""
@author yumu
@version 1.0.0
"""
import json
import os

from trips.models.typings import ConfigOperationException

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
CONFIG_FILE = os.environ.get("TRIP_CONFIG_FILE", os.path.join(ROOT_DIR, "config.json"))


class Config:
    _instance = None

    @classmethod
    def _get_instance(cls, config_file=CONFIG_FILE):
        if cls._instance is None:
            cls._instance = cls.__new__(cls)
            cls._instance.config_file = config_file
            cls._instance.config = {}
            cls._instance.config = cls.load_config()
        return cls._instance

    @classmethod
    def use_file(cls, config_file):
        """
        切换到指定的配置文件（测试或多实例部署时使用）
        :param config_file: 配置文件路径
        :return: None
        """
        cls._instance = None
        cls._get_instance(config_file)

    @classmethod
    def load_config(cls):
        """
        加载配置文件
        :return: 配置文件，json形式
        """
        instance = cls._get_instance()
        try:
            if os.path.exists(instance.config_file):
                with open(instance.config_file, 'r', encoding='utf-8') as file:
                    return json.load(file)
            else:
                return {}
        except (OSError, ValueError) as e:
            raise ConfigOperationException("读取配置文件出错" + ", ".join(str(arg) for arg in e.args))

    @classmethod
    def save_config(cls):
        """
        存入配置文件
        :return: None
        """
        instance = cls._get_instance()
        try:
            with open(instance.config_file, 'w', encoding='utf-8') as file:
                json.dump(instance.config, file, indent=2)
        except OSError as e:
            raise ConfigOperationException("存入配置文件出错" + ", ".join(str(arg) for arg in e.args))

    @classmethod
    def get_value(cls, *args, default=None):
        """
        从配置文件中获取配置，针对多级key做了优化
        :param args: 指定的key，可以为多级
        :param default: key 不存在时返回的值
        :return: 获取到的值
        """
        instance = cls._get_instance()
        value = instance.config
        try:
            for key in args:
                value = value[key]
            return value
        except (KeyError, TypeError):
            return default

    @classmethod
    def set_value(cls, *args):
        """
        修改配置文件的值，针对多级key做了优化
        :param args: 指定的key，可以为多级，最后一个参数是要修改的值
        :return: None
        """
        instance = cls._get_instance()
        value = args[-1]
        keys = args[:-1]

        config_section = instance.config
        for key in keys[:-1]:
            if key not in config_section:
                config_section[key] = {}
            config_section = config_section[key]

        config_section[keys[-1]] = value
        cls.save_config()

    @classmethod
    def database_uri(cls):
        """
        优先使用 database_uri，否则按 MariaDB 配置拼接
        """
        uri = cls.get_value("database_uri")
        if uri:
            return uri
        return "mysql+pymysql://root:" + str(cls.get_value("MariaDB_password", default="")) + "@" + \
            str(cls.get_value("MariaDB_url", default="127.0.0.1:3306/trips"))
