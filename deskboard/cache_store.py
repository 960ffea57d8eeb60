"""
本地缓存：基于 TinyDB 的两级模板缓存。
一级为全部模板元数据（全局唯一条目），二级为每个模板的组件列表。
读取时做结构校验，无效条目自动删除并视为未命中。
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Optional, Type

from pydantic import ValidationError
from tinydb import Query, TinyDB
from tinydb.storages import Storage

from deskboard.errors import CacheCorruption
from deskboard.wire import SUCCESS, TemplatesEnvelope, WidgetsEnvelope

logger = logging.getLogger(__name__)

_DATA_DIR = Path(os.getenv("DESKBOARD_ROOT", ".")) / "data"

TEMPLATES_KEY = "templates"
WIDGETS_PREFIX = "widgets:"
ACTIVE_TEMPLATE_KEY = "active_template"


def widgets_key(template_id: int | str) -> str:
    return f"{WIDGETS_PREFIX}{template_id}"


class CacheStore:
    """TinyDB 缓存操作封装。"""

    def __init__(self, db_path: str | Path | None = None, storage: Optional[Type[Storage]] = None):
        if storage is not None:
            self.db = TinyDB(storage=storage)
            logger.info("缓存使用内存存储")
        else:
            if db_path is None:
                db_path = _DATA_DIR / "cache.json"
            db_path = Path(db_path)
            db_path.parent.mkdir(parents=True, exist_ok=True)
            self.db = TinyDB(str(db_path), indent=2, ensure_ascii=False)
            logger.info(f"TinyDB 缓存已打开: {db_path}")
        self.entries = self.db.table("entries")
        self.preferences = self.db.table("preferences")

    # ── 通用键值 ──────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """读取原始条目；反序列化失败时删除条目并返回 None。"""
        Entry = Query()
        results = self.entries.search(Entry.key == key)
        if not results:
            return None
        try:
            return json.loads(results[0]["blob"])
        except (KeyError, TypeError, json.JSONDecodeError) as e:
            self._purge(CacheCorruption(key, str(e)))
            return None

    def set(self, key: str, payload: Any):
        """写入条目（按 key 覆盖）。"""
        Entry = Query()
        record = {
            "key": key,
            "blob": json.dumps(payload, ensure_ascii=False),
            "updated_at": time.time(),
        }
        self.entries.upsert(record, Entry.key == key)
        logger.debug(f"缓存已写入: {key}")

    def clear_one(self, key: str):
        """删除单个条目。"""
        Entry = Query()
        self.entries.remove(Entry.key == key)

    def clear_all(self, prefix: str | None = None):
        """删除所有缓存条目；指定 prefix 时只删除该命名空间。"""
        if prefix is None:
            self.entries.truncate()
            logger.info("全部缓存已清除")
            return
        Entry = Query()
        removed = self.entries.remove(Entry.key.test(lambda k: isinstance(k, str) and k.startswith(prefix)))
        logger.debug(f"已清除 {len(removed)} 个缓存条目 (prefix={prefix})")

    def keys(self) -> list[str]:
        return [doc["key"] for doc in self.entries.all() if "key" in doc]

    def _purge(self, error: CacheCorruption):
        logger.warning(f"{error.message}，已删除")
        self.clear_one(error.key)

    # ── 模板元数据 ────────────────────────────────────

    def get_templates(self) -> TemplatesEnvelope | None:
        """读取模板列表；必须成功状态且至少一个模板，否则视为未命中。"""
        raw = self.get(TEMPLATES_KEY)
        if raw is None:
            return None
        try:
            envelope = TemplatesEnvelope.model_validate(raw)
        except ValidationError as e:
            self._purge(CacheCorruption(TEMPLATES_KEY, f"{e.error_count()} validation errors"))
            return None
        if envelope.status != SUCCESS or len(envelope.templates) == 0:
            self._purge(CacheCorruption(TEMPLATES_KEY, "missing success marker or empty list"))
            return None
        return envelope

    def set_templates(self, envelope: TemplatesEnvelope):
        self.set(TEMPLATES_KEY, envelope.to_wire())

    def clear_templates(self):
        self.clear_one(TEMPLATES_KEY)

    # ── 组件列表 ──────────────────────────────────────

    def get_widgets(self, template_id: int) -> WidgetsEnvelope | None:
        """读取指定模板的组件列表；允许空列表。"""
        key = widgets_key(template_id)
        raw = self.get(key)
        if raw is None:
            return None
        try:
            envelope = WidgetsEnvelope.model_validate(raw)
        except ValidationError as e:
            self._purge(CacheCorruption(key, f"{e.error_count()} validation errors"))
            return None
        if envelope.status != SUCCESS:
            self._purge(CacheCorruption(key, "missing success marker"))
            return None
        return envelope

    def set_widgets(self, template_id: int, envelope: WidgetsEnvelope):
        self.set(widgets_key(template_id), envelope.to_wire())

    def clear_widgets(self, template_id: int):
        self.clear_one(widgets_key(template_id))

    def clear_all_widgets(self):
        self.clear_all(WIDGETS_PREFIX)

    # ── 当前模板 ──────────────────────────────────────

    def get_active_template_id(self) -> str | None:
        Pref = Query()
        results = self.preferences.search(Pref.key == ACTIVE_TEMPLATE_KEY)
        return results[0].get("value") if results else None

    def set_active_template_id(self, template_id: str):
        Pref = Query()
        self.preferences.upsert({"key": ACTIVE_TEMPLATE_KEY, "value": template_id}, Pref.key == ACTIVE_TEMPLATE_KEY)

    def clear_active_template_id(self):
        Pref = Query()
        self.preferences.remove(Pref.key == ACTIVE_TEMPLATE_KEY)

    # ── 管理 ──────────────────────────────────────────

    def close(self):
        """关闭数据库。"""
        self.db.close()
