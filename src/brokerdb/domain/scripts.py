"""Splitting of statement scripts into individual statements."""

from __future__ import annotations


def split_statements(script: str) -> list[str]:
    """Split ``script`` on semicolons outside quoted literals.

    ``--`` comments running to the end of a line are dropped, empty statements
    are skipped.
    """

    statements: list[str] = []
    current: list[str] = []
    quote: str | None = None
    index = 0
    length = len(script)
    while index < length:
        char = script[index]
        if quote is not None:
            current.append(char)
            if char == quote:
                quote = None
        elif char in {"'", '"'}:
            quote = char
            current.append(char)
        elif char == "-" and script.startswith("--", index):
            newline = script.find("\n", index)
            index = length if newline == -1 else newline
            continue
        elif char == ";":
            statements.append("".join(current))
            current = []
        else:
            current.append(char)
        index += 1
    statements.append("".join(current))
    return [statement.strip() for statement in statements if statement.strip()]
