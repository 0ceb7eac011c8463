"""MySQL连接池

基于 aiomysql 连接池，提供带等待上限的签出和保证归还的签入。
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import aiomysql

from ..utils.error_handler import retry_on_error, RetryStrategy
from ..utils.exceptions import ConfigError, ConnectionExhaustedError, ConnectionFailedError
from ..utils.log_manager import get_logger


class ConnectionPool:
    """诊断连接池"""

    def __init__(self, config: Dict[str, Any], max_size: int = 4):
        """
        初始化连接池（不立即连接）

        Args:
            config: database 配置段，包含 host、port、username、password、database 等
            max_size: 连接池最大连接数，通常等于工作并发数
        """
        self.config = config
        self.max_size = config.get('pool_size', max_size)
        self._pool: Optional[aiomysql.Pool] = None
        self.logger = get_logger('connection_pool')

    def validate_config(self) -> bool:
        """
        验证数据库配置

        Returns:
            bool: 配置是否有效
        """
        if 'host' not in self.config:
            self.logger.error("数据库配置缺少必需字段: host")
            return False

        port = self.config.get('port', 3306)
        if not isinstance(port, int) or port <= 0 or port > 65535:
            self.logger.error(f"MySQL端口号无效: {port}")
            return False

        username = self.config.get('username')
        if username is not None and not isinstance(username, str):
            self.logger.error(f"MySQL用户名类型无效: {type(username)}")
            return False

        if not isinstance(self.max_size, int) or self.max_size <= 0:
            self.logger.error(f"连接池大小无效: {self.max_size}")
            return False

        return True

    @property
    def target(self) -> str:
        """目标数据库标识，不包含密码"""
        username = self.config.get('username', 'root')
        host = self.config.get('host', 'localhost')
        port = self.config.get('port', 3306)
        database = self.config.get('database', '')
        return f"{username}@{host}:{port}/{database}"

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    @retry_on_error(max_attempts=3, base_delay=1.0,
                    strategy=RetryStrategy.EXPONENTIAL_BACKOFF,
                    retryable_errors=[ConnectionFailedError])
    async def open(self) -> None:
        """
        创建连接池

        Raises:
            ConfigError: 数据库配置无效
            ConnectionFailedError: 多次重试后仍无法连接
        """
        if self._pool is not None:
            return

        if not self.validate_config():
            raise ConfigError("数据库配置验证失败")

        self.logger.info(f"创建MySQL连接池: {self.target}, 最大连接数 {self.max_size}")
        try:
            self._pool = await aiomysql.create_pool(
                host=self.config.get('host', 'localhost'),
                port=self.config.get('port', 3306),
                user=self.config.get('username', 'root'),
                password=self.config.get('password', ''),
                db=self.config.get('database', ''),
                connect_timeout=self.config.get('connect_timeout', 10),
                minsize=0,
                maxsize=self.max_size,
                autocommit=True,
            )
        except aiomysql.Error as e:
            raise ConnectionFailedError(f"MySQL连接失败: {e}", cause=e)
        except OSError as e:
            raise ConnectionFailedError(f"无法连接到 {self.target}: {e}", cause=e)

    async def acquire(self, wait_timeout: float) -> Any:
        """
        签出一个连接

        Args:
            wait_timeout: 等待空闲连接的最长时间（秒）

        Returns:
            aiomysql 连接

        Raises:
            ConnectionExhaustedError: 等待超时或无法建立新连接
        """
        if self._pool is None:
            raise ConnectionExhaustedError("连接池尚未打开")

        async def checkout():
            return await self._pool.acquire()

        try:
            return await asyncio.wait_for(checkout(), wait_timeout)
        except asyncio.TimeoutError:
            raise ConnectionExhaustedError(
                f"{wait_timeout}s 内未能获得数据库连接", wait_timeout=wait_timeout)
        except (aiomysql.Error, OSError) as e:
            raise ConnectionExhaustedError(f"获取数据库连接失败: {e}", cause=e)

    def release(self, connection: Any, discard: bool = False) -> None:
        """
        签入一个连接

        Args:
            connection: 由 acquire 签出的连接
            discard: 为 True 时关闭连接而不是放回池中（超时、出错或取消之后）
        """
        if self._pool is None:
            connection.close()
            return

        if discard:
            try:
                connection.close()
            except Exception as e:
                self.logger.warning(f"关闭MySQL连接时出错: {e}")
        self._pool.release(connection)

    @asynccontextmanager
    async def connection(self, wait_timeout: float) -> AsyncIterator[Any]:
        """签出连接的上下文管理器，异常或取消时丢弃连接"""
        conn = await self.acquire(wait_timeout)
        discard = True
        try:
            yield conn
            discard = False
        finally:
            self.release(conn, discard=discard)

    async def kill_query(self, thread_id: int, wait_timeout: float = 2.0) -> bool:
        """
        在另一条连接上终止指定线程正在执行的查询

        Returns:
            bool: 是否成功发出 KILL QUERY
        """
        try:
            async with self.connection(wait_timeout) as conn:
                async with conn.cursor() as cursor:
                    await cursor.execute("KILL QUERY %s", (int(thread_id),))
            self.logger.info(f"已终止线程 {thread_id} 上的查询")
            return True
        except (ConnectionExhaustedError, aiomysql.Error) as e:
            self.logger.warning(f"终止线程 {thread_id} 的查询失败: {e}")
            return False

    async def close(self) -> None:
        """关闭连接池并等待所有连接关闭"""
        if self._pool is None:
            return
        self._pool.close()
        await self._pool.wait_closed()
        self._pool = None
        self.logger.info("MySQL连接池已关闭")
