"""
Build the ordered BackendDescriptor set from configuration.

Read once at startup; the returned tuple is immutable for the process.
"""

import logging

from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError

from dbanchor.core.config import Settings
from dbanchor.core.exceptions import ConfigurationError
from dbanchor.models import BackendDescriptor, BackendKindEnum, DialectEnum

logger = logging.getLogger(__name__)

_DEFAULT_DIALECT = {
    BackendKindEnum.PRIMARY: DialectEnum.POSTGRES,
    BackendKindEnum.SECONDARY: DialectEnum.MYSQL,
    BackendKindEnum.EMBEDDED: DialectEnum.SQLITE,
}

_DEFAULT_PORT = {
    DialectEnum.POSTGRES: 5432,
    DialectEnum.MYSQL: 3306,
}

# SQLAlchemy backend names -> our dialects
_URL_BACKENDS = {
    "postgresql": DialectEnum.POSTGRES,
    "postgres": DialectEnum.POSTGRES,
    "mysql": DialectEnum.MYSQL,
    "mariadb": DialectEnum.MYSQL,
    "sqlite": DialectEnum.SQLITE,
}

_PARAM_FIELDS = ("URL", "DIALECT", "HOST", "PORT", "USER", "PASSWORD", "DB", "SSLMODE", "PATH")


def _raw_params(settings: Settings, kind: BackendKindEnum) -> dict[str, object]:
    prefix = kind.value.upper()
    out: dict[str, object] = {}
    for field in _PARAM_FIELDS:
        value = getattr(settings, f"{prefix}_{field}", None)
        if value not in (None, ""):
            out[field] = value
    return out


def _parse_dialect(kind: BackendKindEnum, value: object) -> DialectEnum:
    try:
        return DialectEnum(str(value).strip().lower())
    except ValueError:
        raise ConfigurationError(
            f"{kind.value.upper()}_DIALECT={value!r} is not one of "
            f"{', '.join(d.value for d in DialectEnum)}"
        ) from None


def _libpq_url(url: URL) -> str:
    # libpq rejects SQLAlchemy driver suffixes such as postgresql+psycopg.
    return url.set(drivername="postgresql").render_as_string(hide_password=False)


def _from_url(kind: BackendKindEnum, raw: dict[str, object]) -> dict[str, object]:
    try:
        url = make_url(str(raw["URL"]))
    except ArgumentError as e:
        raise ConfigurationError(f"{kind.value.upper()}_URL is not a valid URL: {e}") from e
    backend = url.get_backend_name()
    dialect = _URL_BACKENDS.get(backend)
    if dialect is None:
        raise ConfigurationError(
            f"{kind.value.upper()}_URL uses unsupported backend {backend!r}"
        )
    if "DIALECT" in raw and _parse_dialect(kind, raw["DIALECT"]) != dialect:
        raise ConfigurationError(
            f"{kind.value.upper()}_DIALECT contradicts the scheme of {kind.value.upper()}_URL"
        )
    if dialect == DialectEnum.SQLITE:
        return {"dialect": dialect, "path": url.database}
    sslmode = raw.get("SSLMODE") or url.query.get("sslmode")
    return {
        "dialect": dialect,
        "url": _libpq_url(url) if dialect == DialectEnum.POSTGRES else None,
        "host": url.host,
        "port": url.port,
        "database": url.database,
        "username": url.username,
        "password": url.password,
        "sslmode": sslmode if isinstance(sslmode, str) else None,
    }


def _from_params(kind: BackendKindEnum, raw: dict[str, object]) -> dict[str, object]:
    if "DIALECT" in raw:
        dialect = _parse_dialect(kind, raw["DIALECT"])
    else:
        dialect = _DEFAULT_DIALECT[kind]
    if dialect == DialectEnum.SQLITE:
        return {"dialect": dialect, "path": raw.get("PATH")}
    return {
        "dialect": dialect,
        "host": raw.get("HOST"),
        "port": raw.get("PORT"),
        "database": raw.get("DB"),
        "username": raw.get("USER"),
        "password": raw.get("PASSWORD"),
        "sslmode": raw.get("SSLMODE"),
    }


def _validate(kind: BackendKindEnum, params: dict[str, object]) -> None:
    prefix = kind.value.upper()
    dialect = params["dialect"]
    if kind == BackendKindEnum.EMBEDDED and dialect != DialectEnum.SQLITE:
        raise ConfigurationError("the embedded backend must use the sqlite dialect")
    if dialect == DialectEnum.SQLITE:
        if not params.get("path"):
            raise ConfigurationError(f"{prefix}: sqlite needs a file path ({prefix}_PATH or {prefix}_URL)")
        return
    if params.get("url"):
        return
    missing = [
        name
        for name, key in (("HOST", "host"), ("DB", "database"), ("USER", "username"))
        if not params.get(key)
    ]
    if missing:
        raise ConfigurationError(
            f"{prefix}: missing {', '.join(f'{prefix}_{m}' for m in missing)}"
        )


def build_descriptor(
    kind: BackendKindEnum, raw: dict[str, object], priority: int
) -> BackendDescriptor:
    params = _from_url(kind, raw) if "URL" in raw else _from_params(kind, raw)
    _validate(kind, params)
    dialect = params["dialect"]
    if params.get("port") is None and dialect in _DEFAULT_PORT:
        params["port"] = _DEFAULT_PORT[dialect]  # type: ignore[index]
    return BackendDescriptor(kind=kind, priority=priority, **params)  # type: ignore[arg-type]


def load_descriptors(settings: Settings) -> tuple[BackendDescriptor, ...]:
    """
    Descriptors in BACKEND_PRIORITY order (rank 0 = tried first).

    A listed kind with no parameters at all is skipped; partial parameters
    or an empty result raise ConfigurationError.
    """
    descriptors: list[BackendDescriptor] = []
    seen: set[BackendKindEnum] = set()
    for rank, name in enumerate(settings.backend_priority):
        try:
            kind = BackendKindEnum(name)
        except ValueError:
            raise ConfigurationError(
                f"BACKEND_PRIORITY: unknown backend kind {name!r}"
            ) from None
        if kind in seen:
            raise ConfigurationError(f"BACKEND_PRIORITY: {name!r} listed twice")
        seen.add(kind)
        raw = _raw_params(settings, kind)
        if not raw or set(raw) <= {"DIALECT"}:
            logger.info("Backend %s not configured, skipping", kind.value)
            continue
        descriptors.append(build_descriptor(kind, raw, rank))
    if not descriptors:
        raise ConfigurationError(
            "no backend configured: set PRIMARY_*, SECONDARY_* or EMBEDDED_* parameters"
        )
    return tuple(descriptors)
