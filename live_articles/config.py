# live_articles/config.py
import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# ========= 数据库 =========
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:////tmp/live_articles.db")
POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))

# ========= 认证 =========
JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "1440"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
# 开启时，没有存储密码哈希的账号也能通过校验
ALLOW_EMPTY_PASSWORD_LOGIN = _flag("ALLOW_EMPTY_PASSWORD_LOGIN", "true")

# ========= 图片存储 =========
CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")
CLOUDINARY_FOLDER = os.getenv("CLOUDINARY_FOLDER", "live-articles")
MAX_IMAGE_BYTES = int(os.getenv("MAX_IMAGE_BYTES", "500000"))

# ========= 业务 =========
POPULAR_WINDOW_DAYS = int(os.getenv("POPULAR_WINDOW_DAYS", "30"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
