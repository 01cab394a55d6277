"""Utility script to add a notification recipient to the user directory."""

from __future__ import annotations

import argparse

from app.domain.entities import User
from app.domain.errors import StoreUnavailable
from app.infrastructure.database import SessionLocal, initialize_database
from app.infrastructure.email import is_valid_address
from app.infrastructure.repositories import UserRepository


def parse_args() -> argparse.Namespace:
    """Parse command line arguments for recipient registration."""

    parser = argparse.ArgumentParser(
        description="Register a user that can receive email notifications.",
    )
    parser.add_argument("--id", type=int, default=None, help="Identificador del usuario (opcional)")
    parser.add_argument("--name", required=True, help="Nombre completo del usuario")
    parser.add_argument("--email", required=True, help="Correo electrónico de destino")
    parser.add_argument(
        "--inactive",
        action="store_true",
        help="Registra al usuario como inactivo; no recibirá correos.",
    )
    return parser.parse_args()


def main() -> None:
    """Create a recipient using the provided command line arguments."""

    args = parse_args()
    if not is_valid_address(args.email):
        raise SystemExit(f"Correo electrónico inválido: {args.email}")

    initialize_database()

    session = SessionLocal()
    try:
        user = UserRepository(session).create(
            User(id=args.id, name=args.name, email=args.email, is_active=not args.inactive)
        )
    except StoreUnavailable as exc:
        raise SystemExit(f"Error al guardar el usuario en la base de datos: {exc}") from exc
    else:
        print(
            "Usuario registrado exitosamente:\n"
            f"  ID: {user.id}\n"
            f"  Nombre: {user.name}\n"
            f"  Email: {user.email}\n"
            f"  Activo: {'sí' if user.is_active else 'no'}"
        )
    finally:
        session.close()


if __name__ == "__main__":
    main()
