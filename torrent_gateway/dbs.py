from peewee import SqliteDatabase

from .config import Config


SQLITE_DB_PATH = Config.SQLITE_DB_PATH


sdb = SqliteDatabase(SQLITE_DB_PATH)
