"""
Hard locks for append-only storage.

Evidence nodes and ledger entries are never updated and never deleted, no
matter which caller asks. The locks sit on the Session and Engine classes, so
they apply to every session and connection in the process, including ones
created by tests and batch jobs.

The single permitted change is the retention sweep flipping an evidence node
from un-archived to archived.
"""
import logging
import re

from sqlalchemy import event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from railcert.errors import IntegrityViolation

logger = logging.getLogger(__name__)

APPEND_ONLY_TABLES = frozenset({"evidence_nodes", "ledger_entries"})
ARCHIVABLE_TABLE = "evidence_nodes"
ARCHIVAL_FLAG = "archived"
ARCHIVAL_TIMESTAMP = "archived_at"
ARCHIVAL_COLUMNS = frozenset({ARCHIVAL_FLAG, ARCHIVAL_TIMESTAMP})

_COMMENTS = re.compile(r"/\*.*?\*/|--[^\n]*", re.DOTALL)
_IDENT = r'[`"\[]?(\w+)[`"\]]?'
_TABLE = r'(?:[`"\[]?\w+[`"\]]?\.)?' + _IDENT

# (verb, pattern capturing the target table); searched anywhere in the statement
_WRITE_PATTERNS = (
    ("UPDATE", re.compile(r"\bUPDATE\s+(?:OR\s+\w+\s+)?(?:ONLY\s+)?" + _TABLE, re.IGNORECASE)),
    ("DELETE", re.compile(r"\bDELETE\s+FROM\s+(?:ONLY\s+)?" + _TABLE, re.IGNORECASE)),
    ("REPLACE", re.compile(r"\bREPLACE\s+INTO\s+" + _TABLE, re.IGNORECASE)),
    ("UPSERT", re.compile(
        r"\bINSERT\s+(?:OR\s+\w+\s+)?INTO\s+" + _TABLE + r"\b.*\bON\s+(?:CONFLICT|DUPLICATE\s+KEY)\b",
        re.IGNORECASE | re.DOTALL,
    )),
)
_TRUNCATE = re.compile(r"\bTRUNCATE\s+(?:TABLE\s+)?(?:ONLY\s+)?([^;]+)", re.IGNORECASE)

_ARCHIVAL_UPDATE = re.compile(
    r"^UPDATE\s+" + _TABLE + r"\s+SET\s+(.*?)(?:\s+WHERE\b.*)?$",
    re.IGNORECASE | re.DOTALL,
)
_ASSIGNMENT = re.compile(
    _IDENT + r"\s*=\s*(\?|%\(\w+\)s|%s|:\w+|\$\d+|'(?:[^']|'')*'|[^,\s]+)",
)
_POSITIONAL = ("?", "%s")


def _violation(message: str) -> None:
    # A firing lock means something tried to bypass the ledger
    logger.critical("HARD LOCK: %s", message)
    raise IntegrityViolation(message)


def _changed_columns(obj) -> set:
    state = inspect(obj)
    return {
        prop.key
        for prop in state.mapper.column_attrs
        if state.attrs[prop.key].history.has_changes()
    }


def _is_archival(obj, changed: set) -> bool:
    """True when the only change is un-archived → archived, with an archival time."""
    if not getattr(obj, "__archivable__", False):
        return False
    if ARCHIVAL_FLAG not in changed or not changed <= ARCHIVAL_COLUMNS:
        return False
    if getattr(obj, ARCHIVAL_TIMESTAMP, None) is None:
        return False
    history = inspect(obj).attrs[ARCHIVAL_FLAG].history
    return list(history.added) == [True] and True not in history.deleted


@event.listens_for(Session, "before_flush")
def reject_append_only_mutations(session, flush_context, instances):
    for obj in session.deleted:
        if getattr(obj, "__append_only__", False):
            _violation(f"delete is not allowed on append-only model {type(obj).__name__}")

    for obj in session.dirty:
        if not getattr(obj, "__append_only__", False):
            continue
        changed = _changed_columns(obj)
        if not changed or _is_archival(obj, changed):
            continue
        _violation(
            f"update is not allowed on append-only model {type(obj).__name__} "
            f"(columns: {', '.join(sorted(changed))})"
        )


@event.listens_for(Session, "do_orm_execute")
def reject_bulk_append_only_writes(orm_execute_state):
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    verb = "update" if orm_execute_state.is_update else "delete"
    for mapper in orm_execute_state.all_mappers:
        if getattr(mapper.class_, "__append_only__", False):
            _violation(f"bulk {verb} is not allowed on append-only model {mapper.class_.__name__}")


def append_only_writes(statement: str) -> list:
    """(verb, table) for every write against an append-only table found in a SQL statement."""
    writes = []
    for verb, pattern in _WRITE_PATTERNS:
        for match in pattern.finditer(statement):
            table = match.group(1).lower()
            if table in APPEND_ONLY_TABLES:
                writes.append((verb, table))
    for match in _TRUNCATE.finditer(statement):
        for target in match.group(1).split(","):
            words = target.split()
            if not words:
                continue
            names = re.findall(r"\w+", words[0])
            table = names[-1].lower() if names else ""
            if table in APPEND_ONLY_TABLES:
                writes.append(("TRUNCATE", table))
    return writes


def _literal(token: str):
    if token.startswith("'"):
        return token[1:-1].replace("''", "'")
    upper = token.upper()
    if upper == "NULL":
        return None
    if upper in ("TRUE", "FALSE"):
        return upper == "TRUE"
    try:
        return int(token)
    except ValueError:
        return token


def _bound_value(token: str, params, position: int):
    if token in _POSITIONAL:
        return params[position]
    if token.startswith("%("):
        return params[token[2:-2]]
    if token.startswith(":"):
        return params[token[1:]]
    if token.startswith("$"):
        return params[int(token[1:]) - 1]
    return _literal(token)


def _truthy(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "t", "true")
    return bool(value)


def is_archival_statement(statement: str, parameters, executemany: bool = False) -> bool:
    """
    True for an UPDATE of evidence_nodes that only sets archived to true and
    archived_at to a non-null value, for every parameter set.
    """
    match = _ARCHIVAL_UPDATE.match(statement)
    if not match or match.group(1).lower() != ARCHIVABLE_TABLE:
        return False
    clause = match.group(2)
    if _ASSIGNMENT.sub("", clause).strip(" ,\t\n"):
        return False

    assignments = []
    position = 0
    for column, token in _ASSIGNMENT.findall(clause):
        assignments.append((column.lower(), token, position))
        if token in _POSITIONAL:
            position += 1
    if {column for column, _, _ in assignments} != ARCHIVAL_COLUMNS or len(assignments) != 2:
        return False

    param_sets = parameters if executemany else [parameters]
    for params in param_sets:
        try:
            values = {column: _bound_value(token, params, pos) for column, token, pos in assignments}
        except (KeyError, IndexError, TypeError, ValueError):
            return False
        if not _truthy(values[ARCHIVAL_FLAG]) or values[ARCHIVAL_TIMESTAMP] is None:
            return False
    return True


@event.listens_for(Engine, "before_cursor_execute")
def reject_append_only_statements(conn, cursor, statement, parameters, context, executemany):
    cleaned = " ".join(_COMMENTS.sub(" ", statement).split())
    writes = append_only_writes(cleaned)
    if not writes:
        return
    if writes == [("UPDATE", ARCHIVABLE_TABLE)] and is_archival_statement(cleaned, parameters, executemany):
        return
    verb, table = writes[0]
    _violation(f"{verb} statement against append-only table {table} rejected")
