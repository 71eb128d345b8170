import time
import logging
import traceback
from typing import Dict, List, Optional

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..models.analysis import ResultSet
from .validator import QueryValidator

logger = logging.getLogger(__name__)

_engine_cache: Dict[str, Engine] = {}


def _get_engine(database_url: str) -> Engine:
    eng = _engine_cache.get(database_url)
    if eng is not None:
        return eng
    # SQLite需要关闭线程检查 (查询在工作线程中执行)
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    eng = create_engine(database_url, pool_pre_ping=True, future=True, connect_args=connect_args)
    _engine_cache[database_url] = eng
    return eng


class QueryExecutor:
    """负责执行只读SQL并返回结果集 (Responsible for executing read-only SQL)"""

    def __init__(self, database_url: str, engine: Optional[Engine] = None):
        self.database_url = database_url
        self._engine = engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = _get_engine(self.database_url)
        return self._engine

    def execute(self, sql: str) -> ResultSet:
        """
        执行查询，所有错误都以 success=False 的结果集返回

        Args:
            sql: 只读SQL语句

        Returns:
            查询结果集
        """
        logger.info(f"Executing query: {sql[:200]}")
        start = time.perf_counter()

        is_valid, validation = QueryValidator.validate_query(sql, require_schema=False)
        if not is_valid:
            messages = "; ".join(err["message"] for err in validation["errors"])
            logger.warning(f"Refusing to execute query: {messages}")
            return ResultSet.failure(sql, messages)

        try:
            with self.engine.connect() as conn:
                cursor = conn.execute(text(sql))
                columns = list(cursor.keys())
                rows = [list(row) for row in cursor.fetchall()]
        except SQLAlchemyError as e:
            elapsed = int((time.perf_counter() - start) * 1000)
            logger.error(f"Error executing query: {e}")
            logger.debug(traceback.format_exc())
            # 只暴露驱动的首行错误信息
            message = (str(getattr(e, "orig", None) or e).splitlines() or ["Query failed"])[0]
            return ResultSet.failure(sql, message, elapsed)

        elapsed = int((time.perf_counter() - start) * 1000)
        logger.info(f"Query executed successfully, returned {len(rows)} rows in {elapsed}ms")
        return ResultSet(
            query=sql,
            columns=columns,
            rows=rows,
            success=True,
            execution_time_ms=elapsed
        )

    def test_connection(self) -> bool:
        """用 SELECT 1 检查数据库是否可用"""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error(f"Database connection test failed: {e}")
            return False
        logger.info("Database connection test successful")
        return True

    def list_tables(self, schema: str) -> List[str]:
        """列出schema中的表名 (按名称排序)，出错时返回空列表"""
        try:
            return sorted(inspect(self.engine).get_table_names(schema=schema))
        except SQLAlchemyError as e:
            logger.error(f"Error fetching tables: {e}")
            return []
