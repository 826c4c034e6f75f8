import os

from config import db_config_from_env, env_flag

# No default: production must be given a real key.
SECRET_KEY = os.environ["SECRET_KEY"]

DB_CONFIG = db_config_from_env(database="creche_db", user="creche")
DB_ISOLATION_LEVEL = os.getenv("DB_ISOLATION_LEVEL", "READ COMMITTED")

DEBUG = False
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

AUTO_INIT_DB = env_flag("AUTO_INIT_DB", False)
AUTO_SEED_DB = False
