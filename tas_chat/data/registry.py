"""
查询模式注册表 (Query Pattern Registry)

把规范短语映射到固定的只读SQL模板和图表提示。模板是完整的查询语句，
任何用户输入都不会被拼接进SQL。新增短语只需在 QUERY_PATTERNS 中添加条目。
"""
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from ..models.patterns import ChartHint, PatternEntry, QueryCategory

logger = logging.getLogger(__name__)

SCHEMA_DESCRIPTION = """
Database Schema for Time and Attendance System (TAS):

Tables in schema 'tas_demo':
1. tenant (tenant_id UUID PRIMARY KEY, tenant_name TEXT, tenant_code TEXT, onboarded_date_time_utc TIMESTAMP, is_active BOOLEAN)
2. location (location_id UUID PRIMARY KEY, location_name TEXT, tenant_id UUID REFERENCES tenant, is_active BOOLEAN)
3. colleague_details (id UUID PRIMARY KEY, colleague_uuid UUID, colleague_payload TEXT, tenant_id UUID REFERENCES tenant, location_id UUID REFERENCES location)
4. planned_shift (planned_shift_id UUID PRIMARY KEY, colleague_uuid UUID, start_date_time_utc TIMESTAMP, end_date_time_utc TIMESTAMP, shift_payload TEXT, tenant_id UUID REFERENCES tenant)
5. exception (exception_id UUID PRIMARY KEY, exception_type TEXT, location_uuid UUID, colleague_uuid UUID, exception_date_utc TIMESTAMP, tenant_id UUID REFERENCES tenant, exception_duration INT)
6. exception_detail (exception_summary_id UUID PRIMARY KEY, exception_id UUID REFERENCES exception, tenant_id UUID REFERENCES tenant, start_date_time_utc TIMESTAMP, end_date_time_utc TIMESTAMP, duration_mins INT, is_balanced BOOLEAN, status TEXT)
7. exception_audit (audit_exception_id UUID PRIMARY KEY, exception_id UUID REFERENCES exception, exceptionAction TEXT, created_date_time_utc TIMESTAMP, manager_uuid UUID, payload TEXT)

Common exception types: 'LATE_IN', 'EARLY_OUT', 'MISSED_PUNCH', 'OVERTIME', 'ABSENCE'
Exception statuses: 'OPEN', 'RESOLVED', 'PENDING'
""".strip()

# 无法匹配时返回的帮助文本 (常量结果，不访问任何表)
HELP_QUERY = """SELECT 'Available queries:
- show active tenants
- show all tenants
- colleagues by location (chart)
- exceptions by type (chart)
- daily exceptions (chart)
- tenant overview (chart)
- shift patterns (chart)
- exception status distribution (chart)
- colleague activity
- top 5 colleagues generating exceptions' AS message"""

SUGGESTIONS: Tuple[str, ...] = (
    "Show tenant overview",
    "Show colleagues by location",
    "Show daily exceptions",
    "Show exceptions by type",
    "Show shift patterns",
    "Show exception status distribution",
    "Show active tenants",
    "Show colleague activity",
)

QUERY_PATTERNS: Tuple[PatternEntry, ...] = (
    PatternEntry(
        phrase="active tenants",
        category=QueryCategory.ACTIVE_TENANTS.value,
        template=(
            "SELECT tenant_id, tenant_name, tenant_code, onboarded_date_time_utc, is_active "
            "FROM tas_demo.tenant WHERE is_active = true"
        ),
    ),
    PatternEntry(
        phrase="all tenants",
        category=QueryCategory.ALL_TENANTS.value,
        template="SELECT * FROM tas_demo.tenant ORDER BY tenant_name",
    ),
    PatternEntry(
        phrase="colleagues by location",
        category=QueryCategory.COLLEAGUES_BY_LOCATION.value,
        template="""
            SELECT
                l.location_name,
                t.tenant_name,
                COUNT(cd.colleague_uuid) AS colleague_count
            FROM tas_demo.location l
            JOIN tas_demo.tenant t ON l.tenant_id = t.tenant_id
            LEFT JOIN tas_demo.colleague_details cd ON l.location_id = cd.location_id
            GROUP BY l.location_name, t.tenant_name, l.location_id
            ORDER BY colleague_count DESC
        """.strip(),
        chart_hint=ChartHint(kind="bar", value_columns=("colleague_count",), label_column="location_name"),
    ),
    PatternEntry(
        phrase="exceptions by type",
        category=QueryCategory.EXCEPTIONS_BY_TYPE.value,
        template="""
            SELECT
                e.exception_type,
                COUNT(*) AS exception_count,
                AVG(e.exception_duration) AS avg_duration_mins,
                COUNT(DISTINCT e.colleague_uuid) AS affected_colleagues
            FROM tas_demo.exception e
            GROUP BY e.exception_type
            ORDER BY exception_count DESC
        """.strip(),
        chart_hint=ChartHint(kind="donut", value_columns=("exception_count",), label_column="exception_type"),
    ),
    PatternEntry(
        phrase="daily exceptions",
        category=QueryCategory.DAILY_EXCEPTIONS.value,
        template="""
            SELECT
                DATE(e.exception_date_utc) AS exception_date,
                COUNT(*) AS total_exceptions,
                COUNT(CASE WHEN ed.status = 'RESOLVED' THEN 1 END) AS resolved_count,
                COUNT(CASE WHEN ed.status = 'OPEN' THEN 1 END) AS open_count
            FROM tas_demo.exception e
            JOIN tas_demo.exception_detail ed ON e.exception_id = ed.exception_id
            WHERE e.exception_date_utc >= CURRENT_DATE - INTERVAL '30 days'
            GROUP BY DATE(e.exception_date_utc)
            ORDER BY exception_date DESC
        """.strip(),
        chart_hint=ChartHint(
            kind="line",
            value_columns=("total_exceptions", "resolved_count", "open_count"),
            label_column="exception_date",
        ),
    ),
    PatternEntry(
        phrase="tenant overview",
        category=QueryCategory.TENANT_OVERVIEW.value,
        template="""
            SELECT
                t.tenant_name,
                t.is_active,
                COUNT(DISTINCT l.location_id) AS location_count,
                COUNT(DISTINCT cd.colleague_uuid) AS colleague_count,
                COUNT(DISTINCT ps.planned_shift_id) AS shift_count
            FROM tas_demo.tenant t
            LEFT JOIN tas_demo.location l ON t.tenant_id = l.tenant_id
            LEFT JOIN tas_demo.colleague_details cd ON t.tenant_id = cd.tenant_id
            LEFT JOIN tas_demo.planned_shift ps ON t.tenant_id = ps.tenant_id
            GROUP BY t.tenant_id, t.tenant_name, t.is_active
            ORDER BY colleague_count DESC
        """.strip(),
        chart_hint=ChartHint(
            kind="bar",
            value_columns=("location_count", "colleague_count", "shift_count"),
            label_column="tenant_name",
        ),
    ),
    PatternEntry(
        phrase="shift patterns",
        category=QueryCategory.SHIFT_PATTERNS.value,
        template="""
            SELECT
                EXTRACT(HOUR FROM start_date_time_utc) AS shift_hour,
                COUNT(*) AS shift_count,
                COUNT(DISTINCT colleague_uuid) AS unique_colleagues
            FROM tas_demo.planned_shift
            WHERE start_date_time_utc >= CURRENT_DATE - INTERVAL '7 days'
            GROUP BY EXTRACT(HOUR FROM start_date_time_utc)
            ORDER BY shift_hour
        """.strip(),
        chart_hint=ChartHint(kind="line", value_columns=("shift_count",), label_column="shift_hour"),
    ),
    PatternEntry(
        phrase="exception status distribution",
        category=QueryCategory.EXCEPTION_STATUS_DISTRIBUTION.value,
        template="""
            SELECT
                ed.status,
                t.tenant_name,
                COUNT(*) AS count
            FROM tas_demo.exception_detail ed
            JOIN tas_demo.tenant t ON ed.tenant_id = t.tenant_id
            GROUP BY ed.status, t.tenant_name
            ORDER BY t.tenant_name, ed.status
        """.strip(),
        chart_hint=ChartHint(kind="stacked-bar", value_columns=("count",), group_by=("tenant_name", "status")),
    ),
    PatternEntry(
        phrase="colleague activity",
        category=QueryCategory.COLLEAGUE_ACTIVITY.value,
        template="""
            SELECT
                cd.colleague_uuid,
                t.tenant_name,
                l.location_name,
                COUNT(DISTINCT ps.planned_shift_id) AS total_shifts,
                COUNT(DISTINCT e.exception_id) AS total_exceptions
            FROM tas_demo.colleague_details cd
            JOIN tas_demo.tenant t ON cd.tenant_id = t.tenant_id
            JOIN tas_demo.location l ON cd.location_id = l.location_id
            LEFT JOIN tas_demo.planned_shift ps ON cd.colleague_uuid = ps.colleague_uuid
            LEFT JOIN tas_demo.exception e ON cd.colleague_uuid = e.colleague_uuid
            GROUP BY cd.colleague_uuid, t.tenant_name, l.location_name
            HAVING COUNT(DISTINCT ps.planned_shift_id) > 0 OR COUNT(DISTINCT e.exception_id) > 0
            ORDER BY total_exceptions DESC
            LIMIT 20
        """.strip(),
    ),
    PatternEntry(
        phrase="top 5 colleagues",
        category=QueryCategory.TOP_COLLEAGUES.value,
        template="""
            WITH colleague_exceptions AS (
                SELECT
                    e.colleague_uuid,
                    cd.colleague_payload->>'name' AS colleague_name,
                    t.tenant_name,
                    l.location_name,
                    COUNT(DISTINCT e.exception_id) AS exception_count,
                    STRING_AGG(DISTINCT e.exception_type, ', ') AS exception_types,
                    AVG(e.exception_duration) AS avg_exception_duration_mins
                FROM tas_demo.exception e
                JOIN tas_demo.colleague_details cd ON e.colleague_uuid = cd.colleague_uuid
                JOIN tas_demo.tenant t ON cd.tenant_id = t.tenant_id
                JOIN tas_demo.location l ON cd.location_id = l.location_id
                WHERE e.exception_date_utc >= CURRENT_DATE - INTERVAL '30 days'
                GROUP BY e.colleague_uuid, cd.colleague_payload->>'name', t.tenant_name, l.location_name
                ORDER BY exception_count DESC
                LIMIT 5
            ),
            recent_shifts AS (
                SELECT
                    ps.colleague_uuid,
                    COUNT(*) AS total_shifts,
                    AVG(EXTRACT(EPOCH FROM (ps.end_date_time_utc - ps.start_date_time_utc))/3600) AS avg_shift_hours
                FROM tas_demo.planned_shift ps
                WHERE ps.start_date_time_utc >= CURRENT_DATE - INTERVAL '30 days'
                GROUP BY ps.colleague_uuid
            )
            SELECT
                ce.colleague_uuid,
                ce.colleague_name,
                ce.tenant_name,
                ce.location_name,
                ce.exception_count,
                ce.exception_types,
                ce.avg_exception_duration_mins,
                COALESCE(rs.total_shifts, 0) AS total_shifts,
                ROUND(rs.avg_shift_hours::numeric, 2) AS avg_shift_hours,
                CASE
                    WHEN ce.exception_count > 10 THEN 'High risk - frequent exceptions'
                    WHEN ce.avg_exception_duration_mins > 60 THEN 'Long duration exceptions'
                    WHEN ce.exception_types LIKE '%ABSENCE%' THEN 'Attendance issues'
                    WHEN ce.exception_types LIKE '%LATE_IN%' OR ce.exception_types LIKE '%EARLY_OUT%' THEN 'Punctuality issues'
                    ELSE 'General exceptions'
                END AS exception_reason
            FROM colleague_exceptions ce
            LEFT JOIN recent_shifts rs ON ce.colleague_uuid = rs.colleague_uuid
            ORDER BY ce.exception_count DESC
        """.strip(),
    ),
)


class PatternRegistry:
    """
    只读的模式注册表

    匹配规则: 对规范化后的语句做子串匹配，最长的短语优先；
    长度相同时按注册顺序取第一个。
    """

    def __init__(self, entries: Iterable[PatternEntry]):
        self._entries: Tuple[PatternEntry, ...] = tuple(entries)
        self._by_category: Dict[str, PatternEntry] = {}
        for entry in self._entries:
            if entry.category in self._by_category:
                raise ValueError(f"Duplicate pattern category: {entry.category}")
            self._by_category[entry.category] = entry
        logger.info(f"Pattern registry loaded with {len(self._entries)} entries")

    @property
    def entries(self) -> Tuple[PatternEntry, ...]:
        return self._entries

    def match(self, utterance: str) -> Optional[PatternEntry]:
        """返回与语句匹配的条目，没有则返回None"""
        normalized = " ".join(utterance.lower().split())
        best: Optional[PatternEntry] = None
        for entry in self._entries:
            if entry.phrase.lower() in normalized:
                if best is None or len(entry.phrase) > len(best.phrase):
                    best = entry
        return best

    def get(self, category: str) -> Optional[PatternEntry]:
        return self._by_category.get(category)

    def chart_hint(self, category: str) -> Optional[ChartHint]:
        entry = self._by_category.get(category)
        return entry.chart_hint if entry else None

    def phrases(self) -> List[str]:
        return [entry.phrase for entry in self._entries]


def build_default_registry() -> PatternRegistry:
    """构建默认注册表 (进程启动时调用一次)"""
    return PatternRegistry(QUERY_PATTERNS)
