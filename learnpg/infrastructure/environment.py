"""
Namespace reset and exercise setup.

Every attempt starts from a schema that contains exactly what the exercise's
setup script creates: the schema is dropped with everything in it, created
empty, granted to the exercise users, and then the setup script runs with the
schema as the search path.
"""

from __future__ import annotations

from typing import Optional

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from learnpg.config import get_settings
from learnpg.errors import InfrastructureError, QueryError, SetupScriptError
from learnpg.infrastructure.db_factory import CredentialProfile, open_connection
from learnpg.infrastructure.executor import run_statements
from learnpg.utils.logging import get_logger

log = get_logger(__name__)


class EnvironmentResetter:
    """
    Drops, recreates and seeds exercise namespaces.

    Reset runs under the admin profile when the exercise is elevated and
    under the learner profile otherwise; so does the setup script.
    """

    def __init__(self, setup_timeout_ms: Optional[int] = None) -> None:
        # Setup scripts may seed large tables; give them more room than learner SQL.
        self.setup_timeout_ms = setup_timeout_ms or get_settings().db_statement_timeout_ms * 6

    @staticmethod
    def _profile(elevated: bool) -> CredentialProfile:
        return CredentialProfile.ADMIN if elevated else CredentialProfile.LEARNER

    def reset(self, namespace: str, elevated: bool = False) -> None:
        """
        Drop `namespace` with all dependents and recreate it empty, atomically.

        Raises
        ------
        InfrastructureError
            If the database is unreachable or any reset statement fails.
        """
        settings = get_settings()
        ident = sql.Identifier(namespace)
        grantees = [settings.db_user]
        if elevated:
            grantees.append(settings.db_admin_user)

        try:
            with open_connection(self._profile(elevated)) as conn:
                with conn.transaction():
                    conn.execute(sql.SQL("DROP SCHEMA IF EXISTS {} CASCADE").format(ident))
                    conn.execute(sql.SQL("CREATE SCHEMA {}").format(ident))
                    for grantee in grantees:
                        conn.execute(
                            sql.SQL("GRANT ALL ON SCHEMA {} TO {}").format(
                                ident, sql.Identifier(grantee)
                            )
                        )
        except psycopg.Error as exc:
            log.error(
                "Namespace reset failed",
                extra={"namespace": namespace, "elevated": elevated, "error": str(exc)},
            )
            raise InfrastructureError(
                f"Failed to reset namespace '{namespace}': {exc}",
                extra={"namespace": namespace},
            ) from exc

        log.info("Namespace reset", extra={"namespace": namespace, "elevated": elevated})

    def run_script(self, namespace: str, script: str, elevated: bool = False) -> None:
        """
        Run a setup script with `namespace` as the search path.

        Raises
        ------
        SetupScriptError
            With the engine's message verbatim when the script fails.
        """
        with open_connection(self._profile(elevated), namespace, self.setup_timeout_ms) as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                try:
                    run_statements(cur, script)
                except QueryError as exc:
                    log.warning(
                        "Setup script failed",
                        extra={"namespace": namespace, "error": exc.message},
                    )
                    raise SetupScriptError(exc.message, sqlstate=exc.sqlstate) from exc

        log.info("Setup script applied", extra={"namespace": namespace})

    def prepare(self, namespace: str, script: Optional[str] = None, elevated: bool = False) -> None:
        """Reset `namespace`, then run `script` in it when one is given."""
        self.reset(namespace, elevated=elevated)
        if script and script.strip():
            self.run_script(namespace, script, elevated=elevated)


__all__ = ["EnvironmentResetter"]
