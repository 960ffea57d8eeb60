"""
凭证提供者：向网关提供当前的 Bearer Token（或 None）。
Token 的获取由外部登录流程完成，这里只负责读取与保存。
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

_CREDENTIALS_DIR = Path(os.getenv("DESKBOARD_ROOT", ".")) / "data"
_CREDENTIALS_FILE = "credentials.json"
_TOKEN_KEY = "bearer_token"


class CredentialProvider:
    """凭证提供者接口。"""

    def get_token(self) -> Optional[str]:
        raise NotImplementedError

    @property
    def authenticated(self) -> bool:
        return bool(self.get_token())


class StaticCredentials(CredentialProvider):
    """固定 Token，主要用于测试和脚本。"""

    def __init__(self, token: Optional[str] = None):
        self.token = token

    def get_token(self) -> Optional[str]:
        return self.token


class FileCredentials(CredentialProvider):
    """
    基于文件的 Token 存储。
    环境变量 DESKBOARD_TOKEN 优先于文件内容。
    """

    def __init__(self, path: str | Path | None = None):
        if path is None:
            path = _CREDENTIALS_DIR / _CREDENTIALS_FILE
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"凭证文件: {self.path}")

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.error(f"读取凭证文件失败: {e}")
            return {}

    def _save(self, data: dict[str, Any]):
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
        except IOError as e:
            logger.error(f"保存凭证文件失败: {e}")

    def get_token(self) -> Optional[str]:
        env_token = os.getenv("DESKBOARD_TOKEN")
        if env_token:
            return env_token
        return self._load().get(_TOKEN_KEY) or None

    def set_token(self, token: str):
        data = self._load()
        data[_TOKEN_KEY] = token
        self._save(data)
        logger.debug("Token 已保存")

    def clear(self):
        """登出时删除 Token。"""
        data = self._load()
        if _TOKEN_KEY in data:
            del data[_TOKEN_KEY]
            self._save(data)
            logger.debug("Token 已删除")
