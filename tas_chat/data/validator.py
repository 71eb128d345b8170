import re
import logging
from typing import Dict, Any, Tuple

logger = logging.getLogger(__name__)

FORBIDDEN_KEYWORDS = (
    "DROP", "DELETE", "TRUNCATE", "ALTER", "CREATE", "INSERT",
    "UPDATE", "GRANT", "REVOKE", "MERGE", "COPY", "VACUUM",
)

_FORBIDDEN_RE = re.compile(r"\b(" + "|".join(FORBIDDEN_KEYWORDS) + r")\b", re.IGNORECASE)
_READ_ONLY_START_RE = re.compile(r"^\s*(SELECT|WITH)\b", re.IGNORECASE)


class QueryValidator:
    """负责校验SQL语句是否为只读且安全"""

    @staticmethod
    def validate_query(sql: str, schema: str = "tas_demo", require_schema: bool = True) -> Tuple[bool, Dict[str, Any]]:
        """
        校验查询语句

        Args:
            sql: 待校验的SQL
            schema: 必须引用的schema命名空间
            require_schema: 是否要求引用schema (帮助文本常量查询不引用任何表)

        Returns:
            校验结果(True/False)和详细信息
        """
        validation_results = {
            "is_valid": True,
            "errors": []
        }

        if not sql or not sql.strip():
            validation_results["is_valid"] = False
            validation_results["errors"].append({
                "type": "empty_query",
                "message": "Query is empty"
            })
            return False, validation_results

        if not _READ_ONLY_START_RE.match(sql):
            validation_results["is_valid"] = False
            validation_results["errors"].append({
                "type": "not_read_only",
                "message": "Only SELECT queries are allowed"
            })

        forbidden = sorted({m.upper() for m in _FORBIDDEN_RE.findall(sql)})
        if forbidden:
            validation_results["is_valid"] = False
            validation_results["errors"].append({
                "type": "forbidden_keyword",
                "message": f"Query contains forbidden keyword(s): {', '.join(forbidden)}"
            })

        # 只允许单条语句
        if ";" in sql.strip().rstrip(";"):
            validation_results["is_valid"] = False
            validation_results["errors"].append({
                "type": "multiple_statements",
                "message": "Only a single statement is allowed"
            })

        if require_schema and f"{schema}." not in sql:
            validation_results["is_valid"] = False
            validation_results["errors"].append({
                "type": "missing_schema",
                "message": f"Query does not reference schema '{schema}'"
            })

        return validation_results["is_valid"], validation_results

    @staticmethod
    def clean_generated_query(raw: str) -> str:
        """清理LLM生成的SQL：去掉markdown代码块和SELECT/WITH之前的说明文字"""
        if not raw:
            return ""

        sql = raw.replace("```sql", "").replace("```SQL", "").replace("```", "").strip()

        match = re.search(r"\b(SELECT|WITH)\b", sql, re.IGNORECASE)
        if match and match.start() > 0:
            sql = sql[match.start():]

        return sql.strip().rstrip(";").strip()
