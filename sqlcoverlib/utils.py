import contextlib
import logging
import time

TRUE_WORDS = frozenset(["1", "true", "yes", "y", "on"])
FALSE_WORDS = frozenset(["0", "false", "no", "n", "off"])


@contextlib.contextmanager
def log_elapsed(logger: logging.Logger, phase: str):
    """Logs how long a phase of a coverage run took, also when it raises."""
    started = time.perf_counter()
    try:
        yield
    finally:
        logger.info("%s took %.2f seconds", phase, time.perf_counter() - started)


def parse_env_flag(name: str, value: str) -> bool:
    """Reads an on/off environment variable, rejecting anything that is neither."""
    word = value.strip().lower()
    if word in TRUE_WORDS:
        return True
    if word in FALSE_WORDS:
        return False
    raise ValueError(f"{name}={value!r} is not a boolean, expected one of {sorted(TRUE_WORDS | FALSE_WORDS)}")


def quote_identifier(name: str) -> str:
    """Quotes a single SQL Server identifier with brackets."""
    return "[" + name.replace("]", "]]") + "]"


def quote_literal(value: str) -> str:
    return "N'" + value.replace("'", "''") + "'"
