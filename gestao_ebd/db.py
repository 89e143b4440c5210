import sqlite3
from datetime import datetime, timezone
from typing import Callable, Iterable, List

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g


TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def utc_now_text() -> str:
    return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)


def timestamp_text(value) -> str | None:
    """Normalize a stored timestamp to the text form used in comparisons."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.strftime(TIMESTAMP_FORMAT)
    return str(value)


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection
        self._after_commit: List[Callable[[], None]] = []

    def after_commit(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once the current transaction commits; dropped on rollback."""
        self._after_commit.append(callback)

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    def executescript(self, sql: str):
        if self.backend != "postgres":
            return self._conn.executescript(sql)
        for statement in _split_sql_statements(sql):
            if statement.strip():
                self.execute(statement)

    def commit(self):
        self._conn.commit()
        pending, self._after_commit = self._after_commit, []
        for callback in pending:
            callback()

    def rollback(self):
        self._after_commit = []
        self._conn.rollback()

    def close(self):
        self._after_commit = []
        self._conn.close()


def _split_sql_statements(sql: str) -> List[str]:
    statements = []
    current = []
    in_single = False
    in_double = False
    for ch in sql:
        if ch == "'" and not in_double:
            in_single = not in_single
        elif ch == '"' and not in_single:
            in_double = not in_double
        elif ch == ";" and not in_single and not in_double:
            statements.append("".join(current))
            current = []
            continue
        current.append(ch)
    if current:
        statements.append("".join(current))
    return statements


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def _connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 nao instalado.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        db_path = current_app.config["DB_PATH"]
        g.db = _connect_database(db_path)
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    db = get_db()
    if db.backend == "postgres":
        _init_db_postgres(db)
        return

    _init_db_sqlite(db)
    db.commit()


def _init_db_sqlite(db: Database):
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS vendedores (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            nome TEXT NOT NULL,
            email TEXT,
            tipo_vendedor TEXT NOT NULL DEFAULT 'vendedor'
                CHECK (tipo_vendedor IN ('vendedor', 'representante')),
            comissao_percentual REAL,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS ebd_clientes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            nome_igreja TEXT NOT NULL,
            cnpj TEXT,
            endereco_cep TEXT,
            endereco_rua TEXT,
            endereco_numero TEXT,
            endereco_bairro TEXT,
            endereco_cidade TEXT,
            endereco_estado TEXT,
            telefone TEXT,
            vendedor_id INTEGER REFERENCES vendedores(id),
            pode_faturar INTEGER NOT NULL DEFAULT 0,
            data_aniversario_pastor TEXT,
            data_aniversario_superintendente TEXT,
            cupom_aniversario_usado INTEGER NOT NULL DEFAULT 0,
            cupom_aniversario_ano INTEGER,
            onboarding_concluido INTEGER NOT NULL DEFAULT 0,
            onboarding_concluido_em TEXT,
            desconto_onboarding REAL,
            onboarding_ciclo_iniciado_em TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS vendedor_propostas (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            token TEXT NOT NULL UNIQUE,
            cliente_id INTEGER REFERENCES ebd_clientes(id),
            cliente_nome TEXT NOT NULL,
            cliente_cnpj TEXT,
            cliente_endereco TEXT,
            itens TEXT NOT NULL DEFAULT '[]',
            valor_produtos REAL NOT NULL DEFAULT 0,
            desconto_percentual REAL NOT NULL DEFAULT 0,
            valor_frete REAL NOT NULL DEFAULT 0,
            metodo_frete TEXT,
            frete_tipo TEXT NOT NULL DEFAULT 'automatico'
                CHECK (frete_tipo IN ('automatico', 'manual')),
            frete_transportadora TEXT,
            frete_prazo_estimado TEXT,
            valor_total REAL NOT NULL DEFAULT 0,
            vendedor_id INTEGER REFERENCES vendedores(id),
            vendedor_nome TEXT,
            status TEXT NOT NULL DEFAULT 'PROPOSTA_PENDENTE',
            pode_faturar INTEGER NOT NULL DEFAULT 0,
            prazo_faturamento_selecionado TEXT,
            payment_url TEXT,
            external_order_id TEXT,
            external_order_number TEXT,
            confirmado_em TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS ebd_pedidos (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            cliente_id INTEGER REFERENCES ebd_clientes(id),
            vendedor_id INTEGER REFERENCES vendedores(id),
            proposta_id INTEGER REFERENCES vendedor_propostas(id),
            order_number TEXT,
            valor_total REAL NOT NULL DEFAULT 0,
            valor_frete REAL NOT NULL DEFAULT 0,
            status_pagamento TEXT,
            order_date TEXT NOT NULL,
            comissao_aprovada INTEGER NOT NULL DEFAULT 0,
            origem TEXT NOT NULL DEFAULT 'online',
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS vendedor_propostas_parcelas (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            vendedor_id INTEGER NOT NULL REFERENCES vendedores(id),
            cliente_id INTEGER REFERENCES ebd_clientes(id),
            pedido_id INTEGER REFERENCES ebd_pedidos(id),
            proposta_id INTEGER REFERENCES vendedor_propostas(id),
            origem TEXT NOT NULL CHECK (origem IN ('online', 'faturado', 'balcao')),
            numero_parcela INTEGER NOT NULL,
            total_parcelas INTEGER NOT NULL,
            valor REAL NOT NULL,
            valor_comissao REAL NOT NULL,
            data_vencimento TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'aguardando',
            comissao_status TEXT NOT NULL DEFAULT 'pendente',
            metodo_pagamento TEXT,
            external_order_id TEXT,
            external_order_number TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (pedido_id, numero_parcela),
            UNIQUE (proposta_id, numero_parcela)
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS ebd_descontos_categoria_representante (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            cliente_id INTEGER NOT NULL REFERENCES ebd_clientes(id),
            categoria TEXT NOT NULL,
            percentual_desconto REAL NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (cliente_id, categoria)
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS ebd_revistas_cliente (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            church_id INTEGER NOT NULL REFERENCES ebd_clientes(id),
            titulo TEXT NOT NULL,
            categoria TEXT NOT NULL DEFAULT 'BASE',
            aplicada INTEGER NOT NULL DEFAULT 0,
            aplicada_em TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS ebd_onboarding_progress (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            church_id INTEGER NOT NULL REFERENCES ebd_clientes(id),
            etapa_id INTEGER NOT NULL,
            completada INTEGER NOT NULL DEFAULT 0,
            completada_em TEXT,
            revista_identificada_id INTEGER,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (church_id, etapa_id)
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS ebd_creditos (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            cliente_id INTEGER NOT NULL REFERENCES ebd_clientes(id),
            tipo TEXT NOT NULL,
            valor REAL NOT NULL,
            descricao TEXT,
            validade TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    for table, extra_columns in _ACTIVITY_TABLES_SQLITE.items():
        db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                church_id INTEGER NOT NULL REFERENCES ebd_clientes(id),
                {extra_columns}
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

    db.execute("CREATE INDEX IF NOT EXISTS idx_propostas_status ON vendedor_propostas (status)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_propostas_vendedor ON vendedor_propostas (vendedor_id)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_parcelas_vendedor ON vendedor_propostas_parcelas (vendedor_id)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_pedidos_cliente ON ebd_pedidos (cliente_id)")


_ACTIVITY_TABLES_SQLITE = {
    "ebd_turmas": "nome TEXT NOT NULL, is_active INTEGER NOT NULL DEFAULT 1,",
    "ebd_professores": "nome TEXT NOT NULL, is_active INTEGER NOT NULL DEFAULT 1,",
    "ebd_planejamento": "data_inicio TEXT NOT NULL, revista_id INTEGER,",
    "ebd_escalas": "data TEXT NOT NULL, professor_id INTEGER, turma_id INTEGER,",
}

_ACTIVITY_TABLES_POSTGRES = {
    "ebd_turmas": "nome TEXT NOT NULL, is_active BOOLEAN NOT NULL DEFAULT TRUE,",
    "ebd_professores": "nome TEXT NOT NULL, is_active BOOLEAN NOT NULL DEFAULT TRUE,",
    "ebd_planejamento": "data_inicio DATE NOT NULL, revista_id INTEGER,",
    "ebd_escalas": "data DATE NOT NULL, professor_id INTEGER, turma_id INTEGER,",
}


def _init_db_postgres(db: Database) -> None:
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS vendedores (
            id SERIAL PRIMARY KEY,
            nome TEXT NOT NULL,
            email TEXT,
            tipo_vendedor TEXT NOT NULL DEFAULT 'vendedor'
                CHECK (tipo_vendedor IN ('vendedor', 'representante')),
            comissao_percentual NUMERIC(5, 2),
            created_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD HH24:MI:SS.US')
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS ebd_clientes (
            id SERIAL PRIMARY KEY,
            nome_igreja TEXT NOT NULL,
            cnpj TEXT,
            endereco_cep TEXT,
            endereco_rua TEXT,
            endereco_numero TEXT,
            endereco_bairro TEXT,
            endereco_cidade TEXT,
            endereco_estado TEXT,
            telefone TEXT,
            vendedor_id INTEGER REFERENCES vendedores(id),
            pode_faturar BOOLEAN NOT NULL DEFAULT FALSE,
            data_aniversario_pastor TEXT,
            data_aniversario_superintendente TEXT,
            cupom_aniversario_usado BOOLEAN NOT NULL DEFAULT FALSE,
            cupom_aniversario_ano INTEGER,
            onboarding_concluido BOOLEAN NOT NULL DEFAULT FALSE,
            onboarding_concluido_em TEXT,
            desconto_onboarding NUMERIC(5, 2),
            onboarding_ciclo_iniciado_em TEXT,
            created_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD HH24:MI:SS.US'),
            updated_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD HH24:MI:SS.US')
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS vendedor_propostas (
            id SERIAL PRIMARY KEY,
            token TEXT NOT NULL UNIQUE,
            cliente_id INTEGER REFERENCES ebd_clientes(id),
            cliente_nome TEXT NOT NULL,
            cliente_cnpj TEXT,
            cliente_endereco TEXT,
            itens TEXT NOT NULL DEFAULT '[]',
            valor_produtos DOUBLE PRECISION NOT NULL DEFAULT 0,
            desconto_percentual DOUBLE PRECISION NOT NULL DEFAULT 0,
            valor_frete DOUBLE PRECISION NOT NULL DEFAULT 0,
            metodo_frete TEXT,
            frete_tipo TEXT NOT NULL DEFAULT 'automatico'
                CHECK (frete_tipo IN ('automatico', 'manual')),
            frete_transportadora TEXT,
            frete_prazo_estimado TEXT,
            valor_total DOUBLE PRECISION NOT NULL DEFAULT 0,
            vendedor_id INTEGER REFERENCES vendedores(id),
            vendedor_nome TEXT,
            status TEXT NOT NULL DEFAULT 'PROPOSTA_PENDENTE',
            pode_faturar BOOLEAN NOT NULL DEFAULT FALSE,
            prazo_faturamento_selecionado TEXT,
            payment_url TEXT,
            external_order_id TEXT,
            external_order_number TEXT,
            confirmado_em TEXT,
            created_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD HH24:MI:SS.US'),
            updated_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD HH24:MI:SS.US')
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS ebd_pedidos (
            id SERIAL PRIMARY KEY,
            cliente_id INTEGER REFERENCES ebd_clientes(id),
            vendedor_id INTEGER REFERENCES vendedores(id),
            proposta_id INTEGER REFERENCES vendedor_propostas(id),
            order_number TEXT,
            valor_total DOUBLE PRECISION NOT NULL DEFAULT 0,
            valor_frete DOUBLE PRECISION NOT NULL DEFAULT 0,
            status_pagamento TEXT,
            order_date TEXT NOT NULL,
            comissao_aprovada BOOLEAN NOT NULL DEFAULT FALSE,
            origem TEXT NOT NULL DEFAULT 'online',
            created_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD HH24:MI:SS.US')
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS vendedor_propostas_parcelas (
            id SERIAL PRIMARY KEY,
            vendedor_id INTEGER NOT NULL REFERENCES vendedores(id),
            cliente_id INTEGER REFERENCES ebd_clientes(id),
            pedido_id INTEGER REFERENCES ebd_pedidos(id),
            proposta_id INTEGER REFERENCES vendedor_propostas(id),
            origem TEXT NOT NULL CHECK (origem IN ('online', 'faturado', 'balcao')),
            numero_parcela INTEGER NOT NULL,
            total_parcelas INTEGER NOT NULL,
            valor DOUBLE PRECISION NOT NULL,
            valor_comissao DOUBLE PRECISION NOT NULL,
            data_vencimento TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'aguardando',
            comissao_status TEXT NOT NULL DEFAULT 'pendente',
            metodo_pagamento TEXT,
            external_order_id TEXT,
            external_order_number TEXT,
            created_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD HH24:MI:SS.US'),
            UNIQUE (pedido_id, numero_parcela),
            UNIQUE (proposta_id, numero_parcela)
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS ebd_descontos_categoria_representante (
            id SERIAL PRIMARY KEY,
            cliente_id INTEGER NOT NULL REFERENCES ebd_clientes(id),
            categoria TEXT NOT NULL,
            percentual_desconto DOUBLE PRECISION NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD HH24:MI:SS.US'),
            UNIQUE (cliente_id, categoria)
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS ebd_revistas_cliente (
            id SERIAL PRIMARY KEY,
            church_id INTEGER NOT NULL REFERENCES ebd_clientes(id),
            titulo TEXT NOT NULL,
            categoria TEXT NOT NULL DEFAULT 'BASE',
            aplicada BOOLEAN NOT NULL DEFAULT FALSE,
            aplicada_em TEXT,
            created_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD HH24:MI:SS.US')
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS ebd_onboarding_progress (
            id SERIAL PRIMARY KEY,
            church_id INTEGER NOT NULL REFERENCES ebd_clientes(id),
            etapa_id INTEGER NOT NULL,
            completada BOOLEAN NOT NULL DEFAULT FALSE,
            completada_em TEXT,
            revista_identificada_id INTEGER,
            created_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD HH24:MI:SS.US'),
            UNIQUE (church_id, etapa_id)
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS ebd_creditos (
            id SERIAL PRIMARY KEY,
            cliente_id INTEGER NOT NULL REFERENCES ebd_clientes(id),
            tipo TEXT NOT NULL,
            valor DOUBLE PRECISION NOT NULL,
            descricao TEXT,
            validade TEXT,
            created_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD HH24:MI:SS.US')
        )
        """
    )

    for table, extra_columns in _ACTIVITY_TABLES_POSTGRES.items():
        db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id SERIAL PRIMARY KEY,
                church_id INTEGER NOT NULL REFERENCES ebd_clientes(id),
                {extra_columns}
                created_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD HH24:MI:SS.US')
            )
            """
        )

    db.execute("CREATE INDEX IF NOT EXISTS idx_propostas_status ON vendedor_propostas (status)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_propostas_vendedor ON vendedor_propostas (vendedor_id)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_parcelas_vendedor ON vendedor_propostas_parcelas (vendedor_id)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_pedidos_cliente ON ebd_pedidos (cliente_id)")


SCHEMA_TABLES = (
    "ebd_creditos",
    "ebd_escalas",
    "ebd_planejamento",
    "ebd_professores",
    "ebd_turmas",
    "ebd_onboarding_progress",
    "ebd_revistas_cliente",
    "ebd_descontos_categoria_representante",
    "vendedor_propostas_parcelas",
    "ebd_pedidos",
    "vendedor_propostas",
    "ebd_clientes",
    "vendedores",
)
