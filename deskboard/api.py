"""
FastAPI 路由：把 TemplateStore 的状态和操作暴露给 UI 外壳。
"""

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from deskboard.errors import (
    AuthRequired,
    DuplicateName,
    FavoriteLimitExceeded,
    NameTooShort,
    ReservedNameCollision,
    TemplateAlreadySaved,
    TemplateError,
    TemplateNotFound,
    TemplateStillInitializing,
    TransportError,
    UpstreamError,
    WidgetNotFound,
)
from deskboard.models import WidgetCoordinates
from deskboard.store_state import template_status
from deskboard.wire import WidgetFieldsUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# 这些全局引用会在 main.py 中注入
_store = None
_credentials = None


def init_api(store, credentials):
    """注入全局依赖（由 main.py 调用）。"""
    global _store, _credentials
    _store = store
    _credentials = credentials


def _http_error(error: TemplateError) -> HTTPException:
    """把领域错误映射为 HTTP 状态码。"""
    if isinstance(error, AuthRequired):
        status = 401
    elif isinstance(error, (TemplateNotFound, WidgetNotFound)):
        status = 404
    elif isinstance(error, (
        DuplicateName,
        ReservedNameCollision,
        NameTooShort,
        FavoriteLimitExceeded,
        TemplateStillInitializing,
        TemplateAlreadySaved,
    )):
        status = 409
    elif isinstance(error, (UpstreamError, TransportError)):
        status = 502
    else:
        status = 500
    return HTTPException(status, error.message)


# ── 请求体 ────────────────────────────────────────────

class RefreshRequest(BaseModel):
    preferred_name: Optional[str] = None
    preferred_id: Optional[str] = None


class CreateTemplateBody(BaseModel):
    name: str = ""
    layout: str
    widgets: List[str] = []
    icon: Optional[str] = None


class SaveTemplateBody(BaseModel):
    name: Optional[str] = None
    icon: Optional[str] = None


class RenameBody(BaseModel):
    name: str


class UpdateTemplateBody(BaseModel):
    name: Optional[str] = None
    icon: Optional[str] = None
    display_order: Optional[int] = None
    is_favorite: Optional[bool] = None


class ReorderBody(BaseModel):
    template_ids: List[str]


class AddWidgetBody(BaseModel):
    kind: str
    position: str
    title: Optional[str] = None
    coordinates: Optional[WidgetCoordinates] = None
    tab_group_id: Optional[int] = None


class DetailsTemplateBody(BaseModel):
    symbol: str


class TokenBody(BaseModel):
    token: str


# ── 状态 ──────────────────────────────────────────────

@router.get("/state")
async def get_state() -> dict[str, Any]:
    """当前模板列表、激活模板、加载标志和错误。"""
    snapshot = _store.snapshot()
    result = snapshot.model_dump()
    result["statuses"] = {t.id: template_status(t).value for t in snapshot.templates}
    return result


@router.delete("/error")
async def clear_error() -> dict[str, str]:
    _store.clear_error()
    return {"message": "Error cleared"}


# ── 模板列表 ──────────────────────────────────────────

@router.get("/templates")
async def list_templates() -> list[dict]:
    """获取模板列表（首次调用时从缓存或远程加载）。"""
    if not _store.templates:
        await _store.load()
    return [t.model_dump() for t in _store.templates]


@router.post("/templates/refresh")
async def refresh_templates(body: Optional[RefreshRequest] = None) -> list[dict]:
    """跳过模板缓存，从远程重新加载。"""
    body = body or RefreshRequest()
    templates = await _store.refresh_all(body.preferred_name, body.preferred_id)
    return [t.model_dump() for t in templates]


@router.put("/templates/order")
async def reorder_templates(body: ReorderBody) -> list[dict]:
    try:
        templates = await _store.reorder_templates(body.template_ids)
    except TemplateError as e:
        raise _http_error(e)
    return [t.model_dump() for t in templates]


# ── 单个模板 ──────────────────────────────────────────

@router.post("/templates")
async def create_template(body: CreateTemplateBody) -> dict[str, Any]:
    try:
        template = await _store.create_template(body.name, body.layout, body.widgets, body.icon)
    except TemplateError as e:
        raise _http_error(e)
    return template.model_dump()


@router.post("/templates/details")
async def open_details_template(body: DetailsTemplateBody) -> dict[str, Any]:
    """打开某个品种的详情模板，不存在时由后端创建。"""
    try:
        template = await _store.open_details_template(body.symbol)
    except TemplateError as e:
        raise _http_error(e)
    return template.model_dump()


@router.post("/templates/{template_id}/save")
async def save_template(template_id: str, body: Optional[SaveTemplateBody] = None) -> dict[str, Any]:
    """把本地未保存的模板保存到远程。"""
    body = body or SaveTemplateBody()
    try:
        template = await _store.save_template(template_id, body.name, body.icon)
    except TemplateError as e:
        raise _http_error(e)
    return template.model_dump()


@router.put("/templates/{template_id}/name")
async def rename_template(template_id: str, body: RenameBody) -> dict[str, Any]:
    try:
        template = await _store.rename_template(template_id, body.name)
    except TemplateError as e:
        raise _http_error(e)
    return template.model_dump()


@router.patch("/templates/{template_id}")
async def update_template(template_id: str, body: UpdateTemplateBody) -> dict[str, Any]:
    try:
        template = await _store.update_template(
            template_id,
            name=body.name,
            icon=body.icon,
            display_order=body.display_order,
            is_favorite=body.is_favorite,
        )
    except TemplateError as e:
        raise _http_error(e)
    return template.model_dump()


@router.post("/templates/{template_id}/hide")
async def hide_template(template_id: str) -> dict[str, Any]:
    try:
        hidden = await _store.hide_template(template_id)
    except TemplateError as e:
        raise _http_error(e)
    return {"hidden": hidden, "active_template_id": _store.active_template_id}


@router.delete("/templates/{template_id}")
async def delete_template(template_id: str) -> dict[str, Any]:
    try:
        deleted = await _store.delete_template(template_id)
    except TemplateError as e:
        raise _http_error(e)
    return {"deleted": deleted, "active_template_id": _store.active_template_id}


@router.post("/templates/{template_id}/active")
async def set_active_template(template_id: str) -> dict[str, str]:
    try:
        _store.set_active_template(template_id)
    except TemplateError as e:
        raise _http_error(e)
    return {"active_template_id": template_id}


# ── 组件 ──────────────────────────────────────────────

@router.post("/templates/{template_id}/widgets")
async def add_widget(template_id: str, body: AddWidgetBody) -> dict[str, Any]:
    try:
        widget = await _store.add_widget(
            template_id,
            body.kind,
            body.position,
            title=body.title,
            coordinates=body.coordinates,
            tab_group_id=body.tab_group_id,
        )
    except TemplateError as e:
        raise _http_error(e)
    return widget.model_dump()


@router.post("/templates/{template_id}/widgets/refresh")
async def refresh_widgets(template_id: str) -> dict[str, Any]:
    """只刷新一个模板的组件，不重新拉取整个列表。"""
    try:
        template = await _store.refresh_template_widgets(template_id)
    except TemplateError as e:
        raise _http_error(e)
    return template.model_dump()


@router.patch("/templates/{template_id}/widgets/{widget_id}")
async def update_widget(template_id: str, widget_id: str, body: WidgetFieldsUpdate) -> dict[str, Any]:
    try:
        widget = await _store.update_widget_fields(template_id, widget_id, body)
    except TemplateError as e:
        raise _http_error(e)
    return widget.model_dump()


@router.delete("/templates/{template_id}/widgets/at/{position}")
async def remove_widget_at(template_id: str, position: str) -> dict[str, Any]:
    try:
        widget = await _store.remove_widget_at(template_id, position)
    except TemplateError as e:
        raise _http_error(e)
    return {"removed": widget.id}


@router.delete("/templates/{template_id}/widgets/{widget_id}")
async def remove_widget(template_id: str, widget_id: str) -> dict[str, str]:
    try:
        await _store.remove_widget_by_id(template_id, widget_id)
    except TemplateError as e:
        raise _http_error(e)
    return {"removed": widget_id}


# ── 登录状态 ──────────────────────────────────────────

@router.post("/auth/token")
async def set_token(body: TokenBody) -> dict[str, Any]:
    """保存 Bearer Token 并重新加载该用户的模板。"""
    _credentials.set_token(body.token)
    _store.reset()
    templates = await _store.load(force_refresh=True)
    logger.info(f"Token 已更新，加载了 {len(templates)} 个模板")
    return {"authenticated": True, "templates": len(templates)}


@router.delete("/auth/token")
async def logout() -> dict[str, Any]:
    """登出：删除 Token，清空缓存和内存状态。"""
    _credentials.clear()
    _store.reset()
    await _store.load()
    return {"authenticated": False}
