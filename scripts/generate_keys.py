"""
Genera los secretos del servicio:
- claves RSA (RS256) para verificar los JWT de sesión
- Fernet key para el cifrado de PII de contacto
- secreto HS256 de los tokens de capacidad DMP

    python scripts/generate_keys.py
"""

import secrets
from pathlib import Path

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

KEYS_DIR = Path(__file__).parent.parent / "keys"


def write_rsa_keys(keys_dir: Path) -> bool:
    """Escribe private.pem / public.pem. False si el usuario cancela."""
    keys_dir.mkdir(exist_ok=True)
    private_key_path = keys_dir / "private.pem"
    public_key_path = keys_dir / "public.pem"

    if private_key_path.exists():
        print(f"⚠️  Las claves RSA ya existen en {keys_dir}")
        if input("¿Desea regenerarlas? (s/N): ").strip().lower() != "s":
            return False

    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_key_path.write_bytes(
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    public_key_path.write_bytes(
        private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )
    print(f"✅ Claves RSA generadas en {keys_dir}")
    return True


def main():
    rsa_written = write_rsa_keys(KEYS_DIR)

    env_lines = []
    if rsa_written:
        env_lines += [
            "JWT_PRIVATE_KEY_PATH=./keys/private.pem",
            "JWT_PUBLIC_KEY_PATH=./keys/public.pem",
        ]
    env_lines += [
        f"FERNET_KEY={Fernet.generate_key().decode()}",
        f"DMP_TOKEN_SECRET={secrets.token_urlsafe(48)}",
    ]

    print("\n📌 Agrega a tu .env:")
    for line in env_lines:
        print(f"   {line}")


if __name__ == "__main__":
    main()
