"""Generate JWT_SECRET and TOKEN_ENCRYPTION_KEY and write them into .env.

Existing lines in .env are kept; the two keys are replaced or appended.
"""

import os
import secrets

from cryptography.fernet import Fernet

ENV_PATH = ".env"


def generate() -> dict:
    return {
        "JWT_SECRET": secrets.token_urlsafe(32),
        "TOKEN_ENCRYPTION_KEY": Fernet.generate_key().decode(),
    }


def write_env(values: dict, path: str = ENV_PATH) -> None:
    lines = []
    if os.path.exists(path):
        with open(path, "r") as f:
            lines = f.read().splitlines()

    remaining = dict(values)
    new_lines = []
    for line in lines:
        name = line.split("=", 1)[0].strip()
        if name in remaining:
            new_lines.append(f"{name}={remaining.pop(name)}")
        else:
            new_lines.append(line)
    new_lines.extend(f"{name}={value}" for name, value in remaining.items())

    with open(path, "w") as f:
        f.write("\n".join(new_lines) + "\n")


if __name__ == "__main__":
    keys = generate()
    for name, value in keys.items():
        print(f"Generated {name}: {value}")
    write_env(keys)
    print(f"Successfully wrote to {ENV_PATH}")
