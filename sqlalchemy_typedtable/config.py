from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, make_url
from sqlalchemy.pool import NullPool

from .logger import logger

SQLITE_BEGIN_MODES = ("DEFERRED", "IMMEDIATE", "EXCLUSIVE")


@dataclass(frozen=True)
class BackendConfig:
    """
    Where and how to connect.

    ``database`` is the file path for SQLite and the schema name for MySQL.
    ``statements`` is a directory (or ``importlib.resources`` traversable)
    holding bundled ``.sql`` templates.
    """

    provider: str
    database: str
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None
    driver: Optional[str] = None
    timeout: float = 5.0
    begin_mode: str = "DEFERRED"
    pool_size: int = 5
    statements: Optional[Any] = None
    echo: bool = False

    def __post_init__(self):
        if self.provider not in ("sqlite", "mysql"):
            raise ValueError(f"Unknown database provider: {self.provider}")
        if self.provider == "sqlite" and self.begin_mode.upper() not in SQLITE_BEGIN_MODES:
            raise ValueError(f"Invalid SQLite transaction mode: {self.begin_mode}")

    @classmethod
    def sqlite(cls, path, timeout=5.0, begin_mode="DEFERRED", statements=None, **kwargs):
        return cls("sqlite", str(path), timeout=timeout, begin_mode=begin_mode, statements=statements, **kwargs)

    @classmethod
    def mysql(cls, host, database, username=None, password=None, port=3306, driver="pymysql", **kwargs):
        return cls(
            "mysql",
            database,
            host=host,
            port=port,
            username=username,
            password=password,
            driver=driver,
            **kwargs,
        )

    @classmethod
    def from_mapping(cls, mapping):
        """
        Build a config from a plain dictionary, as found in an application's
        configuration file:

            provider: mysql
            url: mysql://db.local:3306/game
            username: game
            password: secret
        """
        provider = str(mapping.get("provider", "sqlite")).lower()
        options = {
            key: mapping[key]
            for key in ("timeout", "begin_mode", "pool_size", "statements", "echo")
            if key in mapping
        }

        if provider == "sqlite":
            return cls.sqlite(mapping.get("file", mapping.get("database")), **options)

        if provider == "mysql":
            if "url" in mapping:
                url = make_url(mapping["url"])
                return cls.mysql(
                    url.host,
                    url.database,
                    username=mapping.get("username", url.username),
                    password=mapping.get("password", url.password),
                    port=url.port or 3306,
                    driver=mapping.get("driver", url.get_driver_name() if "+" in url.drivername else "pymysql"),
                    **options,
                )
            return cls.mysql(
                mapping["host"],
                mapping["database"],
                username=mapping.get("username"),
                password=mapping.get("password"),
                port=int(mapping.get("port", 3306)),
                driver=mapping.get("driver", "pymysql"),
                **options,
            )

        raise ValueError(f"Unknown database provider: {provider}")

    @property
    def url(self) -> URL:
        if self.provider == "sqlite":
            return URL.create("sqlite", database=self.database)

        return URL.create(
            f"mysql+{self.driver or 'pymysql'}",
            username=self.username,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
        )

    def create_engine(self):
        logger.debug(f"Creating engine for {self.url.render_as_string(hide_password=True)}")

        if self.provider == "mysql":
            return create_engine(
                self.url,
                pool_size=self.pool_size,
                pool_pre_ping=True,
                connect_args={"connect_timeout": int(self.timeout)},
                echo=self.echo,
            )

        engine = create_engine(
            self.url,
            poolclass=NullPool,
            connect_args={"timeout": self.timeout},
            echo=self.echo,
        )
        begin_statement = f"BEGIN {self.begin_mode.upper()}"

        # pysqlite only starts a transaction right before the first write, which
        # would let the reads of a transaction run outside of it.
        @event.listens_for(engine, "connect")
        def _disable_driver_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql(begin_statement)

        return engine
