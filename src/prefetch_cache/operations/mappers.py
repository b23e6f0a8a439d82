"""
Error mapping and CLI utilities.

Provides centralized exception-to-exit-code mapping and a CLI command wrapper
to ensure consistent error handling across all Typer commands.
"""
from __future__ import annotations

import typer
from typing import Callable, TypeVar

T = TypeVar('T')

EXIT_CODES = {
    "PackageNotFound": 1,
    "RegistryError": 1,
    "InvalidSpecifier": 2,
    "MalformedIntegrity": 2,
    "ValueError": 2,
    "TransportError": 3,
    "IntegrityMismatch": 4,
}

FALLBACK_EXIT_CODE = 3


def exit_code_for(exc: BaseException) -> int:
    """
    Map exception to standardized exit code.

    - 0: Success
    - 1: Registry failure (RegistryError, PackageNotFound)
    - 2: Invalid input (InvalidSpecifier, MalformedIntegrity, ValueError)
    - 3: Download failure (TransportError) or unknown error
    - 4: Content failed verification (IntegrityMismatch)
    """
    return EXIT_CODES.get(type(exc).__name__, FALLBACK_EXIT_CODE)


def run_and_exit(func: Callable[[], T]) -> T:
    """
    Unified error wrapper for CLI commands.

    Executes ``func`` and maps any exception to an exit code via typer.Exit,
    after printing the error message to stderr.

    Raises:
        typer.Exit: With the mapped exit code if ``func`` raises
    """
    try:
        return func()
    except typer.Exit:
        raise
    except Exception as e:
        from .printers import print_error
        print_error(e)
        raise typer.Exit(code=exit_code_for(e)) from e
