from __future__ import annotations

import re

DEMO_FIRST_NAMES_VE: tuple[str, ...] = (
    "José",
    "María",
    "Luis",
    "Carmen",
    "Carlos",
    "Andreína",
    "Gabriel",
    "Yusmary",
    "Rafael",
    "Daniela",
    "Jesús",
    "Mariángel",
    "Ricardo",
    "Valentina",
    "Oswaldo",
    "Génesis",
)

DEMO_LAST_NAMES_VE: tuple[str, ...] = (
    "González",
    "Rodríguez",
    "Pérez",
    "Hernández",
    "Rondón",
    "Guevara",
    "Marcano",
    "Salazar",
    "Bello",
    "Rojas",
    "Velásquez",
    "Medina",
)

GENERIC_NAME_TOKENS_BLOCKLIST: tuple[str, ...] = (
    "DEMO",
    "ALUMNO",
    "ESTUDIANTE",
)

_GENERIC_NUMERIC_PATTERN = re.compile(r"\d")


def is_generic_demo_name(first_name: str, last_name: str) -> bool:
    full_name = f"{(first_name or '').strip()} {(last_name or '').strip()}".strip()
    full_name_upper = full_name.upper()
    if any(token in full_name_upper for token in GENERIC_NAME_TOKENS_BLOCKLIST):
        return True
    return bool(_GENERIC_NUMERIC_PATTERN.search(full_name))


def generate_demo_names(total: int, offset: int = 0) -> list[tuple[str, str]]:
    """Deterministic student names for demo seeds: first name plus both surnames."""
    if total < 0:
        raise ValueError("total must be >= 0")

    generated: list[tuple[str, str]] = []
    first_len = len(DEMO_FIRST_NAMES_VE)
    last_len = len(DEMO_LAST_NAMES_VE)

    for idx in range(total):
        first_name = DEMO_FIRST_NAMES_VE[(idx + offset) % first_len]
        last_name = (
            f"{DEMO_LAST_NAMES_VE[(idx + offset) % last_len]} "
            f"{DEMO_LAST_NAMES_VE[(idx + offset + 5) % last_len]}"
        )
        if is_generic_demo_name(first_name, last_name):
            raise ValueError(f"Generated generic demo name is not allowed: {first_name} {last_name}")
        generated.append((first_name, last_name))
    return generated
