"""
Safety Validator - read-only policy for SQL text.

Every SQL text headed for the database or a GeoServer SQL View passes
through here, whether it was compiled from a Query Definition, typed by
hand, or produced by a natural-language model. Validation is pure: one
call, one fresh verdict, nothing cached.

Policy, applied in order:

    1. Read-only
        Exactly one SELECT (or WITH ... SELECT) statement. INSERT, UPDATE,
        DELETE, MERGE and INTO anywhere outside literals, other write verbs
        (DROP, SET, CLUSTER ...) where a statement or CTE body starts, and
        FOR UPDATE/SHARE locking are rejected (WriteOperationBlocked).

    2. Injection patterns
        Stacked statements, comments after the statement began, UNION
        probing system catalogs or NULL-only select lists, and always-true
        tautologies (InjectionPatternDetected). Server-side functions with
        side effects (DangerousFunctionBlocked).

    3. Row limit
        Missing top-level LIMIT -> REWRITE with ` LIMIT {default}`.
        LIMIT above the maximum, or LIMIT ALL -> REWRITE down to the maximum.
        A LIMIT expression, or FETCH FIRST above the maximum -> REWRITE by
        wrapping the statement in an outer SELECT with the maximum LIMIT.
        A trailing `;` is dropped from every allowed text.

    4. Allow-list
        Optional schema/table allow-list checked against FROM, JOIN and
        TABLE relations; CTE names are not relations (SchemaNotAllowed).

Tokenising is done by sqlparse, so semicolons, comment markers and
keywords inside string literals, quoted identifiers and dollar quotes
never count.

Exports:
    SQLValidator: Validator class
"""

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Set, Tuple

import sqlparse
from sqlparse import tokens as T

from exceptions import ContractViolationError, SQLRejectedError
from util_logger import LoggerFactory, ComponentType
from core.models.enums import ValidationReason, VerdictOutcome
from core.models.statement import CompiledStatement, ValidatedStatement, ValidationVerdict


# Data-modifying words rejected wherever they appear outside literals
DML_KEYWORDS = frozenset({"INSERT", "UPDATE", "DELETE", "MERGE", "REPLACE INTO", "INTO"})

# Statement verbs that change schema, privileges or session state. These
# are ordinary words elsewhere (column aliases such as `cluster` or `set`),
# so they only count where a statement starts.
STATEMENT_VERBS = frozenset({
    "UPSERT", "DROP", "TRUNCATE", "ALTER", "CREATE", "GRANT", "REVOKE",
    "COPY", "EXECUTE", "CALL", "DO", "VACUUM", "REINDEX", "CLUSTER",
    "REFRESH", "LISTEN", "NOTIFY", "UNLISTEN", "PREPARE", "DEALLOCATE",
    "DISCARD", "RESET", "SET", "BEGIN", "COMMIT", "ROLLBACK", "SAVEPOINT",
})

LOCKING_WORDS = frozenset({"UPDATE", "SHARE", "NO", "KEY"})

DANGEROUS_FUNCTIONS = frozenset({
    "pg_sleep", "pg_sleep_for", "pg_sleep_until",
    "pg_read_file", "pg_read_binary_file", "pg_ls_dir", "pg_stat_file",
    "pg_file_write", "pg_file_rename", "pg_file_unlink",
    "lo_import", "lo_export", "lo_get", "lo_put", "lo_create", "lo_unlink", "lo_from_bytea",
    "dblink", "dblink_exec", "dblink_connect", "dblink_send_query",
    "set_config", "pg_reload_conf", "pg_rotate_logfile",
    "pg_terminate_backend", "pg_cancel_backend",
    "pg_advisory_lock", "pg_advisory_xact_lock", "pg_try_advisory_lock",
    "nextval", "setval",
    "query_to_xml", "query_to_xml_and_xmlschema", "cursor_to_xml",
    "pg_logical_emit_message", "pg_create_restore_point", "pg_switch_wal",
})

SYSTEM_CATALOGS = frozenset({
    "pg_catalog", "information_schema", "pg_shadow", "pg_authid", "pg_user",
    "pg_roles", "pg_group", "pg_settings", "pg_stat_activity", "pg_tables",
    "pg_class", "pg_namespace", "pg_proc", "pg_attribute", "pg_database",
    "pg_user_mappings", "pg_hba_file_rules", "pg_file_settings",
})

_RELATION_SKIP_WORDS = frozenset({"ONLY", "LATERAL"})
# First words of the clauses that close a FROM list
_FROM_LIST_END_WORDS = frozenset({
    "WHERE", "GROUP", "HAVING", "WINDOW", "ORDER", "LIMIT", "OFFSET", "FETCH",
    "UNION", "INTERSECT", "EXCEPT", "FOR", "RETURNING",
})


@dataclass
class _Lexeme:
    """A significant token with its parenthesis depth and query context."""

    token: Any
    position: int
    depth: int
    in_query: bool
    kind: str

    @property
    def value(self) -> str:
        return self.token.value

    @property
    def words(self) -> Tuple[str, ...]:
        """Uppercased words of a keyword or bare name; empty for everything else."""
        if self.kind != "word":
            return ()
        return tuple(self.token.value.upper().split())

    @property
    def phrase(self) -> str:
        return " ".join(self.words)

    @property
    def name(self) -> Optional[str]:
        """Identifier text for bare or double-quoted names."""
        if self.kind == "word":
            return self.token.value
        if self.kind == "quoted":
            return self.token.value[1:-1].replace('""', '"')
        return None

    def is_punct(self, char: str) -> bool:
        return self.kind == "punct" and self.token.value == char


def _classify(token) -> Optional[str]:
    ttype = token.ttype
    if token.is_whitespace:
        return None
    if ttype in T.Comment:
        return "comment"
    if ttype in T.Name.Placeholder:
        return "placeholder"
    value = token.value
    if value.startswith('"') and len(value) > 1:
        return "quoted"
    if ttype in T.Literal or value[:1] in ("'", "$"):
        return "literal"
    if ttype in T.Keyword or ttype in T.Name:
        return "word"
    if ttype in T.Punctuation:
        return "punct"
    return "op"


class _ScannedSQL:
    """Leaf tokens of a SQL text plus the significant lexemes among them."""

    def __init__(self, text: str):
        self.tokens = []
        for statement in sqlparse.parse(text):
            self.tokens.extend(statement.flatten())

        self.lexemes: List[_Lexeme] = []
        self.comment_after_start = False

        contexts: List[Optional[bool]] = [True]
        for position, token in enumerate(self.tokens):
            kind = _classify(token)
            if kind is None:
                continue
            if kind == "comment":
                if self.lexemes:
                    self.comment_after_start = True
                continue

            if contexts[-1] is None:
                # First token inside a parenthesis decides subquery vs expression
                contexts[-1] = kind == "word" and token.value.upper().split()[0] in ("SELECT", "WITH")

            if kind == "punct" and token.value == ")" and len(contexts) > 1:
                contexts.pop()

            lexeme = _Lexeme(token, position, len(contexts) - 1, bool(contexts[-1]), kind)
            self.lexemes.append(lexeme)

            if kind == "punct" and token.value == "(":
                contexts.append(None)

    def next_after(self, index: int) -> Optional[_Lexeme]:
        if index + 1 < len(self.lexemes):
            return self.lexemes[index + 1]
        return None

    def render(self, replacements: dict) -> str:
        """Reassemble the text with some leaf tokens replaced by position."""
        return "".join(replacements.get(i, token.value) for i, token in enumerate(self.tokens))


def _skip_group(lexemes: List[_Lexeme], position: int) -> int:
    """Index just past the `)` that closes the `(` at position."""
    depth = lexemes[position].depth
    position += 1
    while position < len(lexemes) and not (lexemes[position].is_punct(")") and lexemes[position].depth == depth):
        position += 1
    return position + 1


def _starts_statement(lexemes: List[_Lexeme], index: int) -> bool:
    """True at the first word of the text, after `;`, or opening a CTE body."""
    cursor = index - 1
    while cursor >= 0 and lexemes[cursor].is_punct("("):
        if cursor > 0 and lexemes[cursor - 1].words[-1:] in (("AS",), ("MATERIALIZED",)):
            return True
        cursor -= 1
    return cursor < 0 or lexemes[cursor].is_punct(";")


def _is_integer(lexeme: _Lexeme) -> bool:
    return lexeme.kind == "literal" and lexeme.token.ttype in T.Number.Integer


def _ends_row_count(lexeme: Optional[_Lexeme]) -> bool:
    # What may follow a plain LIMIT count
    return lexeme is None or lexeme.is_punct(";") or lexeme.words[:1] in (("OFFSET",), ("FETCH",), ("FOR",))


def _strip_terminator(sql_text: str) -> str:
    text = sql_text.strip()
    while text.endswith(";"):
        text = text[:-1].rstrip()
    return text


class SQLValidator:
    """
    Read-only SQL policy.

    Args:
        default_limit: LIMIT appended when none is present
        max_limit: Largest LIMIT allowed through unchanged
        default_schema: Schema assumed for unqualified relations
        allowed_schemas: Optional schema allow-list
        allowed_tables: Optional `schema.table` allow-list
        block_dangerous_functions: Reject side-effecting server functions
    """

    def __init__(
        self,
        default_limit: int = 100,
        max_limit: int = 10000,
        default_schema: str = "public",
        allowed_schemas: Optional[Iterable[str]] = None,
        allowed_tables: Optional[Iterable[str]] = None,
        block_dangerous_functions: bool = True,
    ):
        if default_limit < 1 or max_limit < default_limit:
            raise ContractViolationError(
                f"Invalid limits: default_limit={default_limit}, max_limit={max_limit}"
            )
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.default_schema = default_schema
        self.allowed_schemas = self._normalise(allowed_schemas)
        self.allowed_tables = self._normalise(allowed_tables)
        self.block_dangerous_functions = block_dangerous_functions
        self.logger = LoggerFactory.create_logger(ComponentType.VALIDATOR, "SQLValidator")

    @classmethod
    def from_config(cls, query_config, **overrides) -> "SQLValidator":
        """Build from a QueryConfig; keyword overrides win."""
        settings = {
            "default_limit": query_config.default_limit,
            "max_limit": query_config.max_limit,
            "default_schema": query_config.default_schema,
            "block_dangerous_functions": query_config.block_dangerous_functions,
        }
        settings.update(overrides)
        return cls(**settings)

    @staticmethod
    def _normalise(names: Optional[Iterable[str]]) -> Optional[Set[str]]:
        if names is None:
            return None
        return {n.strip().strip('"').lower() for n in names}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def validate(
        self,
        sql_text: str,
        parameters: Optional[Sequence[Any]] = None,
        allowed_schemas: Optional[Iterable[str]] = None,
        allowed_tables: Optional[Iterable[str]] = None,
    ) -> ValidationVerdict:
        """
        Decide whether a SQL text may run.

        Bound parameter values cannot change statement structure, so they
        are accepted as-is. Per-call allow-lists replace the instance ones.
        """
        if not isinstance(sql_text, str):
            raise ContractViolationError(f"sql_text must be str, got {type(sql_text).__name__}")

        schemas = self._normalise(allowed_schemas) if allowed_schemas is not None else self.allowed_schemas
        tables = self._normalise(allowed_tables) if allowed_tables is not None else self.allowed_tables

        if not sql_text.strip():
            return self._reject(sql_text, [(ValidationReason.EMPTY_STATEMENT, "SQL text is empty")])

        scanned = _ScannedSQL(sql_text)
        lexemes = [lx for lx in scanned.lexemes if not lx.is_punct(";")]
        if not lexemes:
            return self._reject(sql_text, [(ValidationReason.EMPTY_STATEMENT, "SQL text has no statement")])

        # Injection findings go first: a stacked DELETE is an injection before it is a write
        findings: List[Tuple[ValidationReason, str]] = []
        findings.extend(self._check_injection(scanned))
        findings.extend(self._check_read_only(scanned))
        if self.block_dangerous_functions:
            findings.extend(self._check_functions(scanned))
        if schemas is not None or tables is not None:
            findings.extend(self._check_allow_list(scanned, schemas, tables))

        if findings:
            return self._reject(sql_text, findings)

        return self._apply_limit(sql_text, scanned)

    def validate_statement(self, statement: CompiledStatement, **allow_lists) -> ValidationVerdict:
        return self.validate(statement.sql, statement.parameters, **allow_lists)

    def approve(self, statement: CompiledStatement, **allow_lists) -> ValidatedStatement:
        """
        Validate and wrap a statement for the executor or publisher.

        Raises:
            SQLRejectedError: If the verdict is REJECT
        """
        verdict = self.validate_statement(statement, **allow_lists)
        if not verdict.is_allowed:
            raise SQLRejectedError(verdict)
        return ValidatedStatement(statement=statement, verdict=verdict)

    def extract_relations(self, sql_text: str) -> List[Tuple[str, str]]:
        """(schema, table) pairs referenced by FROM/JOIN, CTE names excluded."""
        return self._relations(_ScannedSQL(sql_text))

    # ------------------------------------------------------------------
    # Verdicts
    # ------------------------------------------------------------------

    def _reject(self, sql_text: str, findings) -> ValidationVerdict:
        reasons = []
        messages = []
        for reason, message in findings:
            if reason not in reasons:
                reasons.append(reason)
            messages.append(message)
        self.logger.warning(f"❌ SQL rejected: {', '.join(r.value for r in reasons)}")
        return ValidationVerdict(
            outcome=VerdictOutcome.REJECT,
            reasons=tuple(reasons),
            messages=tuple(messages),
            sql=sql_text,
        )

    def _apply_limit(self, sql_text: str, scanned: _ScannedSQL) -> ValidationVerdict:
        top_level = [lx for lx in scanned.lexemes if lx.depth == 0]

        for index, lexeme in enumerate(top_level):
            if lexeme.words[:1] == ("FETCH",):
                return self._apply_fetch(sql_text, scanned, top_level, index)
            if lexeme.words[:1] != ("LIMIT",):
                continue

            value = top_level[index + 1] if index + 1 < len(top_level) else None
            following = top_level[index + 2] if index + 2 < len(top_level) else None
            if value is None:
                return self._accept(sql_text)
            if value.words == ("ALL",):
                return self._cap(sql_text, scanned, value, "LIMIT ALL")
            if _ends_row_count(following):
                if value.kind == "placeholder":
                    return self._accept(sql_text)
                if _is_integer(value):
                    if int(value.value) > self.max_limit:
                        return self._cap(sql_text, scanned, value, f"LIMIT {value.value}")
                    return self._accept(sql_text)
            return self._wrap(sql_text, scanned, "LIMIT expression")

        rewritten = f"{_strip_terminator(sql_text)} LIMIT {self.default_limit}"
        self.logger.debug(f"Appended LIMIT {self.default_limit}")
        return ValidationVerdict(
            outcome=VerdictOutcome.REWRITE,
            reasons=(ValidationReason.LIMIT_APPENDED,),
            messages=(f"No LIMIT present; appended LIMIT {self.default_limit}",),
            sql=sql_text,
            rewritten_sql=rewritten,
        )

    def _apply_fetch(self, sql_text: str, scanned: _ScannedSQL, top_level: List[_Lexeme], index: int) -> ValidationVerdict:
        # FETCH { FIRST | NEXT } [ count ] { ROW | ROWS } { ONLY | WITH TIES }
        count = top_level[index + 2] if index + 2 < len(top_level) else None
        following = top_level[index + 3] if index + 3 < len(top_level) else None
        if count is None or count.words[:1] in (("ROW",), ("ROWS",)):
            return self._accept(sql_text)
        if following is not None and following.words[:1] in (("ROW",), ("ROWS",)):
            if count.kind == "placeholder":
                return self._accept(sql_text)
            if _is_integer(count):
                if int(count.value) > self.max_limit:
                    return self._cap(sql_text, scanned, count, f"FETCH FIRST {count.value}")
                return self._accept(sql_text)
        return self._wrap(sql_text, scanned, "FETCH expression")

    def _cap(self, sql_text: str, scanned: _ScannedSQL, value: _Lexeme, found: str) -> ValidationVerdict:
        rewritten = _strip_terminator(scanned.render({value.position: str(self.max_limit)}))
        return ValidationVerdict(
            outcome=VerdictOutcome.REWRITE,
            reasons=(ValidationReason.LIMIT_CAPPED,),
            messages=(f"{found} exceeds maximum; capped to {self.max_limit} rows",),
            sql=sql_text,
            rewritten_sql=rewritten,
        )

    def _wrap(self, sql_text: str, scanned: _ScannedSQL, found: str) -> ValidationVerdict:
        """
        Cap a row count that cannot be read as a number.

        The statement becomes a derived table under an outer SELECT whose
        LIMIT is the maximum. Comments are dropped so the rewrite validates.
        """
        comments = {i: " " for i, token in enumerate(scanned.tokens) if token.ttype in T.Comment}
        body = _strip_terminator(scanned.render(comments))
        rewritten = f"SELECT * FROM ({body}) AS _limited LIMIT {self.max_limit}"
        self.logger.debug(f"Wrapped {found} under LIMIT {self.max_limit}")
        return ValidationVerdict(
            outcome=VerdictOutcome.REWRITE,
            reasons=(ValidationReason.LIMIT_CAPPED,),
            messages=(f"{found} is not a plain row count; capped to {self.max_limit} rows",),
            sql=sql_text,
            rewritten_sql=rewritten,
        )

    @staticmethod
    def _accept(sql_text: str) -> ValidationVerdict:
        """ACCEPT; a trailing terminator is dropped from the effective text."""
        trimmed = _strip_terminator(sql_text)
        if trimmed == sql_text.strip():
            return ValidationVerdict(outcome=VerdictOutcome.ACCEPT, sql=sql_text)
        return ValidationVerdict(outcome=VerdictOutcome.ACCEPT, sql=sql_text, rewritten_sql=trimmed)

    # ------------------------------------------------------------------
    # Policy checks
    # ------------------------------------------------------------------

    def _check_read_only(self, scanned: _ScannedSQL):
        findings = []
        lexemes = scanned.lexemes

        first = next((lx for lx in lexemes if not lx.is_punct("(")), None)
        leading = first.words[:1] if first is not None else ()
        if leading not in (("SELECT",), ("WITH",)):
            shown = first.value.split()[0].upper() if first is not None else ""
            findings.append((
                ValidationReason.WRITE_OPERATION_BLOCKED,
                f"Only SELECT statements are allowed; statement starts with {shown}",
            ))

        for index, lexeme in enumerate(lexemes):
            phrase = lexeme.phrase
            if not phrase:
                continue
            following = scanned.next_after(index)
            if phrase in ("FOR UPDATE", "FOR SHARE") or (
                lexeme.words == ("FOR",)
                and following is not None
                and following.words[:1]
                and following.words[0] in LOCKING_WORDS
            ):
                findings.append((ValidationReason.WRITE_OPERATION_BLOCKED, "Row locking (FOR UPDATE/SHARE) is not allowed"))
                continue
            blocked = DML_KEYWORDS
            if _starts_statement(lexemes, index):
                blocked = DML_KEYWORDS | STATEMENT_VERBS
            for word in (phrase, lexeme.words[0]):
                if word in blocked:
                    label = "SELECT ... INTO" if word == "INTO" else word
                    findings.append((ValidationReason.WRITE_OPERATION_BLOCKED, f"{label} is not allowed in read-only queries"))
                    break
        return findings

    def _check_injection(self, scanned: _ScannedSQL):
        findings = []
        lexemes = scanned.lexemes

        terminator = next((i for i, lx in enumerate(lexemes) if lx.is_punct(";")), None)
        if terminator is not None and terminator < len(lexemes) - 1:
            findings.append((ValidationReason.INJECTION_PATTERN_DETECTED, "Multiple statements are not allowed"))

        if scanned.comment_after_start:
            findings.append((ValidationReason.INJECTION_PATTERN_DETECTED, "Comments inside the statement are not allowed"))

        for index, lexeme in enumerate(lexemes):
            if lexeme.words[:1] == ("UNION",):
                findings.extend(self._check_union(lexemes, index))
            elif lexeme.words == ("OR",) and self._is_tautology(lexemes, index):
                findings.append((ValidationReason.INJECTION_PATTERN_DETECTED, "Always-true condition after OR"))
        return findings

    @staticmethod
    def _check_union(lexemes: List[_Lexeme], index: int):
        findings = []
        tail = lexemes[index + 1:]
        for lexeme in tail:
            name = lexeme.name
            if name and name.lower() in SYSTEM_CATALOGS:
                findings.append((ValidationReason.INJECTION_PATTERN_DETECTED, f"UNION reads system catalog {name}"))
                break

        # NULL-only select list: UNION [ALL] SELECT NULL, NULL ...
        position = 0
        while position < len(tail) and (tail[position].is_punct("(") or tail[position].words in (("ALL",), ("DISTINCT",))):
            position += 1
        if position < len(tail) and tail[position].words[:1] == ("SELECT",):
            items = []
            for lexeme in tail[position + 1:]:
                if lexeme.words[:1] in (("FROM",), ("WHERE",), ("UNION",), ("LIMIT",)) or lexeme.is_punct(")") or lexeme.is_punct(";"):
                    break
                items.append(lexeme)
            if items and all(lx.words == ("NULL",) or lx.is_punct(",") for lx in items):
                findings.append((ValidationReason.INJECTION_PATTERN_DETECTED, "UNION with a NULL-only select list"))
        return findings

    @staticmethod
    def _is_tautology(lexemes: List[_Lexeme], index: int) -> bool:
        operand = lexemes[index + 1:index + 4]
        if len(operand) >= 1 and operand[0].words == ("TRUE",):
            return True
        if len(operand) < 3:
            return False
        left, operator, right = operand
        if operator.value not in ("=", "<=", ">="):
            return False
        if left.kind != "literal" or right.kind != "literal":
            return False
        return left.value.lower() == right.value.lower()

    def _check_functions(self, scanned: _ScannedSQL):
        findings = []
        for index, lexeme in enumerate(scanned.lexemes):
            if lexeme.kind != "word":
                continue
            nxt = scanned.next_after(index)
            if nxt is None or not nxt.is_punct("("):
                continue
            if lexeme.value.lower() in DANGEROUS_FUNCTIONS:
                findings.append((
                    ValidationReason.DANGEROUS_FUNCTION_BLOCKED,
                    f"Function {lexeme.value.lower()}() is not allowed",
                ))
        return findings

    def _check_allow_list(self, scanned: _ScannedSQL, schemas, tables):
        findings = []
        for schema_name, table_name in self._relations(scanned):
            schema_key = schema_name.lower()
            table_key = f"{schema_key}.{table_name.lower()}"
            if schemas is not None and schema_key not in schemas:
                findings.append((ValidationReason.SCHEMA_NOT_ALLOWED, f"Schema '{schema_name}' is not allowed"))
            elif tables is not None and table_key not in tables:
                findings.append((ValidationReason.SCHEMA_NOT_ALLOWED, f"Table '{schema_name}.{table_name}' is not allowed"))
        return findings

    # ------------------------------------------------------------------
    # Relation extraction
    # ------------------------------------------------------------------

    def _relations(self, scanned: _ScannedSQL) -> List[Tuple[str, str]]:
        lexemes = scanned.lexemes
        cte_names = self._cte_names(lexemes)
        relations: List[Tuple[str, str]] = []

        for index, lexeme in enumerate(lexemes):
            if not lexeme.in_query:
                continue
            if index > 0 and lexemes[index - 1].words[-1:] == ("DISTINCT",) and lexeme.words == ("FROM",):
                continue  # IS [NOT] DISTINCT FROM
            if lexeme.words[:1] == ("FROM",):
                self._read_relation_list(lexemes, index, cte_names, relations)
            elif lexeme.words == ("TABLE",) or (lexeme.words and lexeme.words[-1] == "JOIN"):
                self._read_relation(lexemes, index + 1, cte_names, relations)

        unique = []
        for relation in relations:
            if relation not in unique:
                unique.append(relation)
        return unique

    def _read_relation_list(self, lexemes, keyword_index, cte_names, relations) -> None:
        """
        Read every comma-separated item of the FROM list at keyword_index.

        Aliases, join chains and ON expressions between items are skipped at
        the FROM depth; joined relations are read from their own JOIN.
        """
        depth = lexemes[keyword_index].depth
        position = keyword_index + 1
        while position < len(lexemes):
            position = self._read_relation(lexemes, position, cte_names, relations)
            while position < len(lexemes):
                lexeme = lexemes[position]
                if lexeme.depth < depth or lexeme.is_punct(";"):
                    return
                if lexeme.depth == depth:
                    if lexeme.is_punct(","):
                        break
                    if lexeme.words[:1] and lexeme.words[0] in _FROM_LIST_END_WORDS:
                        return
                position += 1
            position += 1

    def _read_relation(self, lexemes, position, cte_names, relations) -> int:
        """Record the relation starting at position; returns the index after it."""
        while position < len(lexemes) and lexemes[position].phrase in _RELATION_SKIP_WORDS:
            position += 1
        if position >= len(lexemes):
            return position
        if lexemes[position].is_punct("("):
            return _skip_group(lexemes, position)  # subquery, read through its own FROM
        if lexemes[position].name is None:
            return position

        parts = [lexemes[position].name]
        position += 1
        while (position + 1 < len(lexemes) and lexemes[position].is_punct(".")
               and lexemes[position + 1].name is not None):
            parts.append(lexemes[position + 1].name)
            position += 2

        if position < len(lexemes) and lexemes[position].is_punct("("):
            return _skip_group(lexemes, position)  # table function
        if len(parts) == 1 and parts[0].lower() in cte_names:
            return position
        table_name = parts[-1]
        schema_name = parts[-2] if len(parts) >= 2 else self.default_schema
        relations.append((schema_name, table_name))
        return position

    @staticmethod
    def _cte_names(lexemes: List[_Lexeme]) -> Set[str]:
        """Names defined by `name [(cols)] AS (` inside WITH clauses."""
        names: Set[str] = set()
        if not any(lx.words[:1] == ("WITH",) for lx in lexemes):
            return names
        for index, lexeme in enumerate(lexemes):
            if lexeme.name is None or lexeme.words[:1] in (("AS",), ("WITH",), ("RECURSIVE",)):
                continue
            cursor = index + 1
            if cursor < len(lexemes) and lexemes[cursor].is_punct("("):
                cursor = _skip_group(lexemes, cursor)
            if (cursor + 1 < len(lexemes) and lexemes[cursor].words == ("AS",)
                    and lexemes[cursor + 1].is_punct("(")):
                names.add(lexeme.name.lower())
        return names
