"""Error-based SQL injection probing.

Probes are syntax-breaking strings only; no data is read or modified. A
response counts when it shows a database error signature that the
unmodified request did not.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Sequence, Tuple

from .models import FormInfo, Finding
from .probes import (
    MAX_ENDPOINTS,
    MAX_FORMS,
    ProbeClient,
    TesterResult,
    injectable_fields,
    limit,
    submit_form,
)
from .progress import ScanProgress
from .rules import PatternRule, create_finding, pattern_rule
from .transport import ScanSession
from .urltools import query_param_names, replace_query_param

logger = logging.getLogger("riskscan.sqli_tester")
logger.addHandler(logging.NullHandler())

SQLI_DELAY_MS = 500
SQLI_PAYLOADS = [
    "'",
    '"',
    "'--",
    "' UNION SELECT NULL--",
    "' OR '1'='1",
    "')",
    "1' AND '1'='1",
]

_SIGNATURES = {
    "MySQL": [
        r"SQL syntax.*?MySQL",
        r"Warning.*?\Wmysqli?_",
        r"valid MySQL result",
        r"MySqlClient\.",
        r"MySqlException",
        r"com\.mysql\.jdbc",
        r"check the manual that (?:corresponds|fits) to your (?:MySQL|MariaDB) server version",
        r"Unknown column '[^']+' in '",
    ],
    "PostgreSQL": [
        r"PostgreSQL.*?ERROR",
        r"Warning.*?\Wpg_",
        r"valid PostgreSQL result",
        r"Npgsql\.",
        r"PG::SyntaxError",
        r"org\.postgresql\.util\.PSQLException",
        r"ERROR:\s+syntax error at or near",
        r"unterminated quoted string at or near",
    ],
    "MSSQL": [
        r"Driver.*?SQL[\s-]?Server",
        r"OLE DB.*?SQL Server",
        r"\[SQL Server\]|\[ODBC SQL Server Driver\]",
        r"SqlException",
        r"System\.Data\.SqlClient",
        r"Unclosed quotation mark after the character string",
        r"Incorrect syntax near",
        r"Microsoft SQL Native Client error",
    ],
    "Oracle": [
        r"\bORA-\d{4,5}",
        r"Oracle error",
        r"Oracle.*?Driver",
        r"quoted string not properly terminated",
        r"oracle\.jdbc",
        r"SQL command not properly ended",
    ],
    "SQLite": [
        r"SQLite/JDBCDriver",
        r"SQLite\.Exception",
        r"System\.Data\.SQLite\.SQLiteException",
        r"sqlite3\.OperationalError",
        r"SQLITE_ERROR",
        r"unrecognized token:",
    ],
    "Generic": [
        r"syntax error.*?near",
        r"unexpected end of SQL command",
        r"unterminated string literal",
        r"SQLSTATE\[\w+\]",
        r"quoted string not terminated",
    ],
}

SQL_ERROR_SIGNATURES: List[PatternRule] = [
    pattern_rule("WSS-SQLI-001", regex, family)
    for family, patterns in _SIGNATURES.items()
    for regex in patterns
]


def match_sql_error(body: str) -> Optional[Tuple[PatternRule, str]]:
    for signature in SQL_ERROR_SIGNATURES:
        match = signature.search(body)
        if match:
            return signature, match.group(0)
    return None


def _probe(send, location: str) -> Optional[Finding]:
    baseline = send("1")
    if baseline is not None and match_sql_error(baseline.text or ""):
        logger.info("Skipping %s: database error already present without payload", location)
        return None
    for payload in SQLI_PAYLOADS:
        resp = send(payload)
        if resp is None:
            continue
        hit = match_sql_error(resp.text or "")
        if hit:
            signature, evidence = hit
            return create_finding(
                "WSS-SQLI-001",
                location,
                evidence[:200],
                description=f"{signature.label} error returned for payload {payload!r}",
            )
    return None


def probe_sqli(
    target_url: str,
    endpoints: Sequence[str],
    forms: Sequence[FormInfo],
    session: ScanSession,
    *,
    progress: Optional[ScanProgress] = None,
    delay_ms: int = SQLI_DELAY_MS,
) -> TesterResult:
    client = ProbeClient(session, delay_ms)
    result = TesterResult()

    for endpoint in limit(endpoints, MAX_ENDPOINTS):
        for name in query_param_names(endpoint):
            location = f"{endpoint} (parameter: {name})"

            def send(value: str, _endpoint=endpoint, _name=name):
                return client.get(replace_query_param(_endpoint, _name, value))

            finding = _probe(send, location)
            if finding:
                result.vulnerabilities.append(finding)
                if progress:
                    progress.warning(f"SQL error signature at {location}", phase="dynamic")

    for form in limit(forms, MAX_FORMS):
        for field_name in injectable_fields(form):
            location = f"{form.action} (form field: {field_name}, method: {form.method})"

            def send(value: str, _form=form, _field=field_name):
                return submit_form(client, _form, _field, value)

            finding = _probe(send, location)
            if finding:
                result.vulnerabilities.append(finding)
                if progress:
                    progress.warning(f"SQL error signature at {location}", phase="dynamic")

    result.requests_sent = client.requests_sent
    return result
