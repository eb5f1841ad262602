# live_articles/storage.py
import io
import logging

import cloudinary
import cloudinary.uploader

from . import config
from .errors import DependencyError

logger = logging.getLogger(__name__)


class CloudinaryStorage:
    """
    文章配图的外部存储。

    只对外暴露两个操作：
    - upload(data) 返回图片描述 {public_id, url, secure_url, created_at}
    - delete(public_id)
    SDK 的任何异常都会转换为 DependencyError。
    """

    def __init__(self, folder: str = config.CLOUDINARY_FOLDER):
        self.folder = folder
        self._configured = False

    def _configure(self):
        if self._configured:
            return
        cloudinary.config(
            cloud_name=config.CLOUDINARY_CLOUD_NAME,
            api_key=config.CLOUDINARY_API_KEY,
            api_secret=config.CLOUDINARY_API_SECRET,
            secure=True,
        )
        self._configured = True

    def upload(self, data: bytes) -> dict:
        self._configure()
        try:
            result = cloudinary.uploader.upload(io.BytesIO(data), folder=self.folder)
        except Exception as e:
            raise DependencyError("The error occurred with uploading photo") from e

        logger.info("uploaded image %s", result.get("public_id"))
        return {
            "public_id": result.get("public_id"),
            "url": result.get("url"),
            "secure_url": result.get("secure_url"),
            "created_at": result.get("created_at"),
        }

    def delete(self, public_id: str) -> None:
        self._configure()
        try:
            result = cloudinary.uploader.destroy(public_id)
        except Exception as e:
            raise DependencyError("The error occurred with deleting photo") from e

        # 图片已不存在时视为删除成功
        if result.get("result") not in ("ok", "not found"):
            raise DependencyError(f"The error occurred with deleting photo: {result.get('result')}")
