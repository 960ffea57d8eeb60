"""
Deskboard 主入口：启动模板同步服务的 FastAPI 后端。
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from tinydb.storages import MemoryStorage

from deskboard import api
from deskboard.cache_store import CacheStore
from deskboard.config_loader import AppConfig, load_config
from deskboard.credentials import FileCredentials
from deskboard.gateway import TemplateGateway
from deskboard.store import TemplateStore
from deskboard.symbols import SymbolValidator

# 日志配置
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan 事件处理：启动时加载模板，关闭时释放连接。"""
    store: TemplateStore = app.state.store

    # 启动时：加载模板（有缓存时不访问网络）
    templates = await store.load()
    logger.info(f"启动时加载了 {len(templates)} 个模板，激活模板: {store.active_template_id}")

    yield  # 应用运行中

    # 关闭时：关闭 HTTP 客户端和数据库
    logger.info("正在关闭...")
    await app.state.gateway.close()
    app.state.cache.close()


def create_app(config: AppConfig | None = None) -> FastAPI:
    """创建并配置 FastAPI 应用。"""
    app = FastAPI(
        title="Deskboard API",
        description="Dashboard template and widget synchronization",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS 中间件
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── 初始化核心组件 ────────────────────────────────────────
    if config is None:
        logger.info("正在加载配置...")
        config = load_config()
    logger.info(f"远程模板服务: {config.remote.base_url}")

    # 本地缓存
    if config.cache.in_memory:
        cache = CacheStore(storage=MemoryStorage)
    else:
        cache = CacheStore(db_path=Path(config.cache.path))

    # 凭证
    credentials = FileCredentials(config.credentials_path)

    # 远程网关
    gateway = TemplateGateway(
        config.remote.base_url,
        credentials,
        cache,
        timeout=config.remote.timeout,
        cache_clear_key=config.remote.cache_clear_key,
        fallback_icon=config.rules.fallback_icon,
        default_icon=config.rules.default_icon,
    )

    # 品种名称校验
    symbols = SymbolValidator(
        config.remote.symbols_url,
        config.remote.symbol_modules,
        cache_seconds=config.rules.symbol_cache_seconds,
    )

    store = TemplateStore(gateway, credentials, cache, symbols=symbols, rules=config.rules)

    # 注入依赖到 API 模块
    api.init_api(store=store, credentials=credentials)

    # 注册 API 路由
    app.include_router(api.router)

    # 将组件存到 app.state，供 lifespan 访问
    app.state.config = config
    app.state.cache = cache
    app.state.gateway = gateway
    app.state.store = store

    return app


def main():
    """主入口。"""
    port = int(sys.argv[1]) if len(sys.argv) > 1 else 8400

    logger.info(f"🚀 启动 Deskboard 后端 (port={port})...")

    app = create_app()

    uvicorn.run(
        app,
        host="127.0.0.1",
        port=port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
