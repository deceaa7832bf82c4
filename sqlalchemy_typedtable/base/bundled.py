from pathlib import Path
from string import Template
from threading import Lock

from ..helpers.utils import check_identifier
from ..logger import logger


class StatementLoader:
    """
    Loads ``.sql`` templates from a directory and fills in their
    ``${placeholder}`` substitutions.

    Substituted values are spliced into the SQL text, so they are restricted
    to identifiers (table names, column names). Values go through positional
    parameters.
    """

    def __init__(self, directory):
        if isinstance(directory, str):
            directory = Path(directory)
        self.directory = directory
        self._templates = {}
        self._lock = Lock()

    def load(self, name) -> Template:
        if not name.endswith(".sql"):
            name += ".sql"

        if "/" in name or "\\" in name or name.startswith("."):
            raise ValueError(f"Invalid statement name: {name!r}")

        template = self._templates.get(name)
        if template is not None:
            return template

        with self._lock:
            template = self._templates.get(name)
            if template is None:
                logger.debug(f"Loading bundled statement '{name}' from {self.directory}")
                template = Template((self.directory / name).read_text(encoding="utf-8"))
                self._templates[name] = template

        return template

    def render(self, name, substitutions=None):
        substitutions = dict(substitutions or {})
        for key, value in substitutions.items():
            check_identifier(value, f"substitution '{key}'")

        try:
            return self.load(name).substitute(substitutions).strip()
        except KeyError as exc:
            raise ValueError(f"Missing substitution {exc} for statement '{name}'") from exc
